"""
nit authentication protocol

Four schemes over the agent's Ed25519 keypair:

1. Signed writes. The canonical message is

       METHOD\\nPATH\\nAGENT_ID\\nTIMESTAMP[\\nsha256hex(body)]

   and travels as X-Nit-Agent-Id / X-Nit-Timestamp / X-Nit-Signature headers.
2. Trust on first use. The first push of `main` pins the key embedded in
   the card (enforced by the server, see nit.server).
3. Challenge-response reads. The server hands out a self-signed,
   short-lived token; the client signs the raw token string.
4. Domain-bound login. The agent signs AGENT_ID\\nDOMAIN\\nTIMESTAMP so a
   signature made for one domain is invalid for any other.
"""

import base64
import binascii
import hashlib
import json
import logging
import secrets
import time
from pathlib import Path
from typing import Optional, Dict, Any, Union, Mapping, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .errors import (
    NitError,
    NotFound,
    Unverified,
    Expired,
    MalformedInput,
    AuthRequired,
)
from .identity import (
    Identity,
    b64decode_strict,
    derive_agent_id,
    parse_public_key_field,
    verify_signature,
)
from .models import LoginPayload
from .objects import write_atomic

logger = logging.getLogger("nit.auth")

SIGNATURE_WINDOW_SECONDS = 300
CHALLENGE_TTL_SECONDS = 60

AGENT_ID_HEADER = "X-Nit-Agent-Id"
TIMESTAMP_HEADER = "X-Nit-Timestamp"
SIGNATURE_HEADER = "X-Nit-Signature"
CHALLENGE_HEADER = "X-Nit-Challenge"


def http_status_for(error: NitError) -> int:
    """Map an auth failure onto the HTTP status a server answers with."""
    if isinstance(error, MalformedInput):
        return 400
    if isinstance(error, (Expired, AuthRequired)):
        return 401
    if isinstance(error, Unverified):
        return 403
    if isinstance(error, NotFound):
        return 404
    return 400


def check_timestamp(timestamp: Union[int, str], now: Optional[int] = None,
                    window: int = SIGNATURE_WINDOW_SECONDS) -> int:
    """Parse a Unix-seconds timestamp and enforce the replay window in both directions."""
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        raise MalformedInput(f"Invalid timestamp: {timestamp!r}")

    now = int(time.time()) if now is None else now
    if abs(now - ts) > window:
        raise Expired(f"Timestamp {ts} is outside the {window}s window")
    return ts


# =============================================================================
# Signed requests
# =============================================================================

def _body_bytes(body: Union[str, bytes, None]) -> bytes:
    if body is None:
        return b""
    return body.encode("utf-8") if isinstance(body, str) else body


def canonical_request_message(
    method: str,
    path: str,
    agent_id: str,
    timestamp: Union[int, str],
    body: Union[str, bytes, None] = None,
) -> str:
    """The exact string signed for a write request. An empty body adds no line."""
    message = f"{method.upper()}\n{path}\n{agent_id}\n{timestamp}"
    data = _body_bytes(body)
    if data:
        message += "\n" + hashlib.sha256(data).hexdigest()
    return message


def signed_headers(
    identity: Identity,
    method: str,
    path: str,
    body: Union[str, bytes, None] = None,
    now: Optional[int] = None,
) -> Dict[str, str]:
    """Build the signature headers for a request."""
    if not identity.exists():
        raise AuthRequired("Signing requires a local identity. Run `nit init` first.")

    timestamp = int(time.time()) if now is None else now
    agent_id = identity.agent_id
    message = canonical_request_message(method, path, agent_id, timestamp, body)
    return {
        AGENT_ID_HEADER: agent_id,
        TIMESTAMP_HEADER: str(timestamp),
        SIGNATURE_HEADER: identity.sign(message),
    }


def parse_signed_headers(headers: Mapping[str, str]) -> Tuple[str, str, str]:
    """Pull (agent_id, timestamp, signature) from request headers."""
    agent_id = headers.get(AGENT_ID_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    signature = headers.get(SIGNATURE_HEADER)
    if not agent_id or not timestamp or not signature:
        raise MalformedInput(
            f"Missing {AGENT_ID_HEADER}, {TIMESTAMP_HEADER} or {SIGNATURE_HEADER} header"
        )
    return agent_id, timestamp, signature


def verify_signed_request(
    method: str,
    path: str,
    agent_id: str,
    timestamp: Union[int, str],
    signature: str,
    body: Union[str, bytes, None],
    public_key_field: str,
    now: Optional[int] = None,
) -> None:
    """
    Server-side check of a signed request.

    Raises MalformedInput, Expired or Unverified.
    """
    ts = check_timestamp(timestamp, now=now)
    pub_b64 = parse_public_key_field(public_key_field)
    message = canonical_request_message(method, path, agent_id, ts, body)
    if not verify_signature(pub_b64, message, signature):
        raise Unverified(f"Signature does not match for agent {agent_id}")


# =============================================================================
# Challenge-response
# =============================================================================

def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        raise MalformedInput("Invalid challenge encoding")


class ChallengeIssuer:
    """
    Issues and verifies stateless challenge tokens.

    Token format: base64url(payload_json).base64url(signature), where the
    signature is the server's Ed25519 signature over the first segment.
    """

    def __init__(self, private_key: Ed25519PrivateKey, ttl: int = CHALLENGE_TTL_SECONDS):
        self._private_key = private_key
        self._public_key = private_key.public_key()
        self.ttl = ttl

    @classmethod
    def from_key_file(cls, path: Union[str, Path], ttl: int = CHALLENGE_TTL_SECONDS) -> "ChallengeIssuer":
        """Load the server key from a base64 seed file, creating it on first use."""
        path = Path(path)
        if path.exists():
            seed = b64decode_strict(path.read_text(encoding="utf-8").strip(), "server key")
            private_key = Ed25519PrivateKey.from_private_bytes(seed)
        else:
            private_key = Ed25519PrivateKey.generate()
            seed_b64 = base64.b64encode(private_key.private_bytes_raw()).decode("ascii")
            write_atomic(path, seed_b64 + "\n", mode=0o600)
            logger.info(f"Generated challenge signing key at {path}")
        return cls(private_key, ttl=ttl)

    def issue(self, agent_id: str, branch: str, now: Optional[int] = None) -> Tuple[str, int]:
        """Return (token, expires) for an agent reading a protected branch."""
        now = int(time.time()) if now is None else now
        expires = now + self.ttl
        payload = {
            "nonce": secrets.token_hex(16),
            "agent_id": agent_id,
            "branch": branch,
            "exp": expires,
        }
        payload_b64 = _b64url_encode(json.dumps(payload, sort_keys=True).encode("utf-8"))
        signature = self._private_key.sign(payload_b64.encode("ascii"))
        return f"{payload_b64}.{_b64url_encode(signature)}", expires

    def verify(self, token: str, agent_id: str, branch: str, now: Optional[int] = None) -> Dict[str, Any]:
        """
        Check that a token was issued here, is unexpired, and was issued for
        this agent and branch. Returns the payload.
        """
        parts = token.split(".") if isinstance(token, str) else []
        if len(parts) != 2:
            raise MalformedInput("Invalid challenge format")
        payload_b64, signature_b64 = parts

        try:
            self._public_key.verify(_b64url_decode(signature_b64), payload_b64.encode("ascii"))
        except (InvalidSignature, UnicodeEncodeError):
            raise Unverified("Challenge was not issued by this server")

        try:
            payload = json.loads(_b64url_decode(payload_b64))
        except ValueError:
            raise MalformedInput("Invalid challenge payload")

        now = int(time.time()) if now is None else now
        if now > int(payload.get("exp", 0)):
            raise Expired("Challenge expired")
        if payload.get("agent_id") != agent_id or payload.get("branch") != branch:
            raise Unverified("Challenge was issued for a different agent or branch")
        return payload


def verify_challenge_response(token: str, signature: str, public_key_field: str):
    """Check the agent's signature over the raw challenge token."""
    pub_b64 = parse_public_key_field(public_key_field)
    if not verify_signature(pub_b64, token, signature):
        raise Unverified("Challenge signature does not match the agent's key")


# =============================================================================
# Domain-bound login
# =============================================================================

def login_message(agent_id: str, domain: str, timestamp: Union[int, str]) -> str:
    return f"{agent_id}\n{domain}\n{timestamp}"


def create_login_payload(identity: Identity, domain: str, now: Optional[int] = None) -> LoginPayload:
    """Sign a login for one domain."""
    if not domain:
        raise MalformedInput("Login domain must not be empty")
    if not identity.exists():
        raise AuthRequired("Signing requires a local identity. Run `nit init` first.")

    timestamp = int(time.time()) if now is None else now
    agent_id = identity.agent_id
    signature = identity.sign(login_message(agent_id, domain, timestamp))
    return LoginPayload(agent_id=agent_id, domain=domain, timestamp=timestamp, signature=signature)


def verify_login_payload(payload: LoginPayload, public_key_field: str, now: Optional[int] = None) -> bool:
    """
    Verify a login payload against the agent's published key.

    Raises Expired for a stale timestamp, Unverified when the key does not
    belong to the agent or the signature does not match this domain.
    """
    ts = check_timestamp(payload.timestamp, now=now)
    pub_b64 = parse_public_key_field(public_key_field)

    if derive_agent_id(public_key_field) != payload.agent_id:
        raise Unverified(f"Public key does not belong to agent {payload.agent_id}")

    message = login_message(payload.agent_id, payload.domain, ts)
    if not verify_signature(pub_b64, message, payload.signature):
        raise Unverified(f"Signature is not valid for domain {payload.domain}")
    return True
