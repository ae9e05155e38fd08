"""Tests for the agent card diff engine."""

from nit.diff import diff_cards, format_diff
from nit.models import AgentCard


def make_card(**overrides):
    data = {
        "protocolVersion": "0.3.0",
        "name": "agent",
        "description": "An agent",
        "version": "1.0.0",
        "url": "https://agent.example",
        "defaultInputModes": ["text/plain"],
        "defaultOutputModes": ["text/plain"],
        "skills": [],
    }
    data.update(overrides)
    return data


def test_identical_cards():
    card = make_card(skills=[{"id": "x", "name": "X", "description": "x"}])
    result = diff_cards(card, card)

    assert result.changed is False
    assert result.fields == []
    assert result.skills_added == []
    assert result.skills_removed == []
    assert result.skills_modified == []


def test_skill_changes():
    """Skills are matched by id, not position."""
    a = make_card(skills=[{"id": "x"}])
    b = make_card(skills=[{"id": "x", "name": "changed"}, {"id": "y"}])
    result = diff_cards(a, b)

    assert result.changed is True
    assert result.skills_added == ["y"]
    assert result.skills_modified == ["x"]
    assert result.skills_removed == []


def test_skill_reorder_is_not_a_change():
    a = make_card(skills=[{"id": "x"}, {"id": "y"}])
    b = make_card(skills=[{"id": "y"}, {"id": "x"}])
    assert diff_cards(a, b).changed is False


def test_skill_removed_order():
    a = make_card(skills=[{"id": "z"}, {"id": "x"}, {"id": "y"}])
    b = make_card(skills=[{"id": "x"}])
    assert diff_cards(a, b).skills_removed == ["z", "y"]


def test_scalar_fields_in_fixed_order():
    a = make_card()
    b = make_card(version="2.0.0", name="renamed", iconUrl="https://icon")
    result = diff_cards(a, b)

    assert [f.field for f in result.fields] == ["name", "version", "iconUrl"]
    assert result.fields[0].old == "agent"
    assert result.fields[0].new == "renamed"
    assert result.fields[2].old is None


def test_provider_compared_by_content():
    a = make_card(provider={"organization": "Acme", "url": "https://acme"})
    b = make_card(provider={"url": "https://acme", "organization": "Acme"})
    assert diff_cards(a, b).changed is False

    c = make_card(provider={"organization": "Other"})
    result = diff_cards(a, c)
    assert [f.field for f in result.fields] == ["provider"]


def test_mode_lists_are_ordered():
    a = make_card(defaultInputModes=["text/plain", "application/json"])
    b = make_card(defaultInputModes=["application/json", "text/plain"])
    result = diff_cards(a, b)
    assert [f.field for f in result.fields] == ["defaultInputModes"]


def test_accepts_models():
    a = AgentCard.model_validate(make_card())
    b = AgentCard.model_validate(make_card(description="changed"))
    result = diff_cards(a, b)
    assert [f.field for f in result.fields] == ["description"]


def test_diff_is_deterministic():
    a = make_card(skills=[{"id": "x"}, {"id": "y"}])
    b = make_card(name="b", skills=[{"id": "y", "name": "Y"}, {"id": "w"}])
    assert diff_cards(a, b) == diff_cards(a, b)


def test_format_diff():
    assert format_diff(diff_cards(make_card(), make_card())) == "No changes."

    rendered = format_diff(diff_cards(make_card(), make_card(version="2.0.0", skills=[{"id": "new"}])))
    assert "version:" in rendered
    assert "- 1.0.0" in rendered
    assert "+ 2.0.0" in rendered
    assert "+ skill: new" in rendered
