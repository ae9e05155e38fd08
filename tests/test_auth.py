"""Tests for signed requests, challenges and login signatures."""

import hashlib

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from nit.auth import (
    AGENT_ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    ChallengeIssuer,
    canonical_request_message,
    check_timestamp,
    create_login_payload,
    http_status_for,
    login_message,
    parse_signed_headers,
    verify_challenge_response,
    verify_login_payload,
    verify_signed_request,
    signed_headers,
)
from nit.errors import AuthRequired, Expired, MalformedInput, NotFound, Unverified
from nit.identity import Identity


NOW = 1700000000


@pytest.fixture
def identity(tmp_path):
    ident = Identity(tmp_path / "identity")
    ident.generate()
    return ident


@pytest.fixture
def other_identity(tmp_path):
    ident = Identity(tmp_path / "other")
    ident.generate()
    return ident


# =============================================================================
# Canonical message
# =============================================================================

def test_canonical_message_without_body():
    message = canonical_request_message("get", "/agent-card/branches", "id-1", NOW)
    assert message == f"GET\n/agent-card/branches\nid-1\n{NOW}"


def test_canonical_message_with_body():
    body = '{"a": 1}'
    message = canonical_request_message("PUT", "/agent-card/branches/main", "id-1", NOW, body)
    assert message == (
        f"PUT\n/agent-card/branches/main\nid-1\n{NOW}\n"
        "f9d86028c6e0d64e225186f96acb69338b2c59764df79162107f5c4bb34d1310"
    )
    assert message.endswith(hashlib.sha256(body.encode()).hexdigest())


def test_empty_body_adds_no_hash_line():
    assert canonical_request_message("DELETE", "/p", "id", NOW, b"") == \
        canonical_request_message("DELETE", "/p", "id", NOW)


# =============================================================================
# Signed requests
# =============================================================================

def test_signed_request_round_trip(identity):
    body = '{"card_json": "{}", "commit_hash": "abc"}'
    headers = signed_headers(identity, "PUT", "/agent-card/branches/main", body, now=NOW)

    agent_id, timestamp, signature = parse_signed_headers(headers)
    assert agent_id == identity.agent_id
    assert timestamp == str(NOW)

    verify_signed_request(
        "PUT", "/agent-card/branches/main", agent_id, timestamp, signature,
        body.encode(), identity.public_key_field, now=NOW + 10,
    )


def test_body_mutation_invalidates_signature(identity):
    body = b'{"card_json": "{}", "commit_hash": "abc"}'
    headers = signed_headers(identity, "PUT", "/agent-card/branches/main", body, now=NOW)
    tampered = body.replace(b"abc", b"abd")

    with pytest.raises(Unverified):
        verify_signed_request(
            "PUT", "/agent-card/branches/main", headers[AGENT_ID_HEADER], headers[TIMESTAMP_HEADER],
            headers[SIGNATURE_HEADER], tampered, identity.public_key_field, now=NOW,
        )


def test_path_and_method_are_bound(identity):
    headers = signed_headers(identity, "DELETE", "/agent-card/branches/faam.io", now=NOW)
    args = (headers[AGENT_ID_HEADER], headers[TIMESTAMP_HEADER], headers[SIGNATURE_HEADER], None,
            identity.public_key_field)

    with pytest.raises(Unverified):
        verify_signed_request("DELETE", "/agent-card/branches/main", *args, now=NOW)
    with pytest.raises(Unverified):
        verify_signed_request("GET", "/agent-card/branches/faam.io", *args, now=NOW)


def test_wrong_key_is_unverified(identity, other_identity):
    headers = signed_headers(identity, "GET", "/agent-card/branches", now=NOW)
    with pytest.raises(Unverified):
        verify_signed_request(
            "GET", "/agent-card/branches", headers[AGENT_ID_HEADER], headers[TIMESTAMP_HEADER],
            headers[SIGNATURE_HEADER], None, other_identity.public_key_field, now=NOW,
        )


def test_stale_signed_request_is_expired(identity):
    headers = signed_headers(identity, "GET", "/agent-card/branches", now=NOW)
    with pytest.raises(Expired):
        verify_signed_request(
            "GET", "/agent-card/branches", headers[AGENT_ID_HEADER], headers[TIMESTAMP_HEADER],
            headers[SIGNATURE_HEADER], None, identity.public_key_field, now=NOW + 301,
        )


def test_signed_headers_require_identity(tmp_path):
    with pytest.raises(AuthRequired):
        signed_headers(Identity(tmp_path / "missing"), "GET", "/", now=NOW)


def test_parse_signed_headers_missing():
    with pytest.raises(MalformedInput):
        parse_signed_headers({AGENT_ID_HEADER: "x", TIMESTAMP_HEADER: "1"})


def test_check_timestamp_window():
    assert check_timestamp(NOW, now=NOW + 300) == NOW
    assert check_timestamp(str(NOW), now=NOW - 300) == NOW
    with pytest.raises(Expired):
        check_timestamp(NOW, now=NOW + 301)
    with pytest.raises(Expired):
        check_timestamp(NOW + 301, now=NOW)
    with pytest.raises(MalformedInput):
        check_timestamp("yesterday", now=NOW)


def test_http_status_mapping():
    assert http_status_for(MalformedInput("x")) == 400
    assert http_status_for(Expired("x")) == 401
    assert http_status_for(Unverified("x")) == 403
    assert http_status_for(NotFound("x")) == 404


# =============================================================================
# Challenges
# =============================================================================

@pytest.fixture
def issuer():
    return ChallengeIssuer(Ed25519PrivateKey.generate())


def test_challenge_round_trip(issuer):
    token, expires = issuer.issue("agent-1", "faam.io", now=NOW)
    assert expires == NOW + 60

    payload = issuer.verify(token, "agent-1", "faam.io", now=NOW + 30)
    assert payload["agent_id"] == "agent-1"
    assert payload["branch"] == "faam.io"


def test_challenges_are_unique(issuer):
    first, _ = issuer.issue("agent-1", "faam.io", now=NOW)
    second, _ = issuer.issue("agent-1", "faam.io", now=NOW)
    assert first != second


def test_expired_challenge(issuer):
    token, expires = issuer.issue("agent-1", "faam.io", now=NOW)
    with pytest.raises(Expired):
        issuer.verify(token, "agent-1", "faam.io", now=expires + 1)


def test_challenge_from_other_server(issuer):
    forger = ChallengeIssuer(Ed25519PrivateKey.generate())
    token, _ = forger.issue("agent-1", "faam.io", now=NOW)
    with pytest.raises(Unverified):
        issuer.verify(token, "agent-1", "faam.io", now=NOW)


def test_challenge_bound_to_agent_and_branch(issuer):
    token, _ = issuer.issue("agent-1", "faam.io", now=NOW)
    with pytest.raises(Unverified):
        issuer.verify(token, "agent-1", "discord.com", now=NOW)
    with pytest.raises(Unverified):
        issuer.verify(token, "agent-2", "faam.io", now=NOW)


def test_malformed_challenge(issuer):
    with pytest.raises(MalformedInput):
        issuer.verify("no-dot-here", "agent-1", "faam.io", now=NOW)


def test_challenge_response_signature(issuer, identity, other_identity):
    token, _ = issuer.issue(identity.agent_id, "faam.io", now=NOW)
    verify_challenge_response(token, identity.sign(token), identity.public_key_field)

    with pytest.raises(Unverified):
        verify_challenge_response(token, other_identity.sign(token), identity.public_key_field)


def test_issuer_key_file_persists(tmp_path):
    key_path = tmp_path / "server.key"
    first = ChallengeIssuer.from_key_file(key_path)
    token, _ = first.issue("agent-1", "faam.io", now=NOW)

    second = ChallengeIssuer.from_key_file(key_path)
    assert second.verify(token, "agent-1", "faam.io", now=NOW)["branch"] == "faam.io"


# =============================================================================
# Login
# =============================================================================

def test_login_message():
    assert login_message("id-1", "faam.io", NOW) == f"id-1\nfaam.io\n{NOW}"


def test_login_round_trip(identity):
    payload = create_login_payload(identity, "faam.io", now=NOW)
    assert payload.agent_id == identity.agent_id
    assert verify_login_payload(payload, identity.public_key_field, now=NOW + 5) is True


def test_login_bound_to_domain(identity):
    """A signature for faam.io is invalid for discord.com."""
    payload = create_login_payload(identity, "faam.io", now=NOW)
    replayed = payload.model_copy(update={"domain": "discord.com"})
    with pytest.raises(Unverified):
        verify_login_payload(replayed, identity.public_key_field, now=NOW)


def test_stale_login_rejected(identity):
    payload = create_login_payload(identity, "faam.io", now=NOW)
    with pytest.raises(Expired):
        verify_login_payload(payload, identity.public_key_field, now=NOW + 301)


def test_login_with_foreign_key(identity, other_identity):
    payload = create_login_payload(identity, "faam.io", now=NOW)
    with pytest.raises(Unverified):
        verify_login_payload(payload, other_identity.public_key_field, now=NOW)


def test_login_requires_domain(identity):
    with pytest.raises(MalformedInput):
        create_login_payload(identity, "", now=NOW)
