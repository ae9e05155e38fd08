"""
Structural diff engine for agent cards

Scalar fields are compared exactly, provider as a whole object, the
input/output mode lists as ordered sequences, and skills by id.
"""

import json
from typing import Any, Dict, Union

from rich.markup import escape

from .models import AgentCard, DiffResult, FieldDiff

SCALAR_FIELDS = [
    "protocolVersion",
    "name",
    "description",
    "version",
    "url",
    "publicKey",
    "iconUrl",
    "documentationUrl",
]

ORDERED_LIST_FIELDS = [
    "defaultInputModes",
    "defaultOutputModes",
]

CardLike = Union[AgentCard, Dict[str, Any]]


def _as_dict(card: CardLike) -> Dict[str, Any]:
    if isinstance(card, AgentCard):
        return card.to_dict()
    return card


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def diff_cards(old_card: CardLike, new_card: CardLike) -> DiffResult:
    """Compare two agent cards and return a structured diff."""
    old = _as_dict(old_card)
    new = _as_dict(new_card)
    fields = []

    for field in SCALAR_FIELDS:
        if old.get(field) != new.get(field):
            fields.append(FieldDiff(field=field, old=old.get(field), new=new.get(field)))

    if _canonical(old.get("provider")) != _canonical(new.get("provider")):
        fields.append(FieldDiff(field="provider", old=old.get("provider"), new=new.get("provider")))

    for field in ORDERED_LIST_FIELDS:
        if old.get(field) != new.get(field):
            fields.append(FieldDiff(field=field, old=old.get(field), new=new.get(field)))

    old_skills = {s["id"]: s for s in old.get("skills") or []}
    new_skills = {s["id"]: s for s in new.get("skills") or []}

    added = [sid for sid in new_skills if sid not in old_skills]
    removed = [sid for sid in old_skills if sid not in new_skills]
    modified = [
        sid for sid, skill in new_skills.items()
        if sid in old_skills and _canonical(old_skills[sid]) != _canonical(skill)
    ]

    return DiffResult(
        changed=bool(fields or added or removed or modified),
        fields=fields,
        skills_added=added,
        skills_removed=removed,
        skills_modified=modified,
    )


def _format_value(value: Any) -> str:
    if value is None:
        return "(unset)"
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def format_diff(diff: DiffResult) -> str:
    """Render a diff as rich markup for terminal display."""
    if not diff.changed:
        return "No changes."

    lines = []
    for fd in diff.fields:
        lines.append(f"  {fd.field}:")
        lines.append(f"[red]    - {escape(_format_value(fd.old))}[/red]")
        lines.append(f"[green]    + {escape(_format_value(fd.new))}[/green]")

    for sid in diff.skills_added:
        lines.append(f"[green]  + skill: {escape(sid)}[/green]")
    for sid in diff.skills_removed:
        lines.append(f"[red]  - skill: {escape(sid)}[/red]")
    for sid in diff.skills_modified:
        lines.append(f"[yellow]  ~ skill: {escape(sid)} (modified)[/yellow]")

    return "\n".join(lines)
