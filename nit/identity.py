"""
Ed25519 identity management

Key storage:
    .nit/identity/agent.pub    base64 raw 32-byte public key
    .nit/identity/agent.key    base64 raw 32-byte private seed (0600)
    .nit/identity/agent-id     derived UUIDv5

Public key format in agent-card.json: "ed25519:<base64>"
Agent ID derivation: uuid5(NIT_NAMESPACE, "ed25519:<base64>")
"""

import base64
import binascii
import logging
import uuid
from pathlib import Path
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .errors import AlreadyExists, MalformedInput, NoIdentity
from .objects import write_atomic

logger = logging.getLogger("nit.identity")

# Fixed forever: changing it changes every agent id ever derived.
NIT_NAMESPACE = uuid.UUID("801ba518-f326-47e5-97c9-d1efd1865a19")

KEY_SCHEME = "ed25519"
PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

PUBLIC_KEY_FILE = "agent.pub"
PRIVATE_KEY_FILE = "agent.key"
AGENT_ID_FILE = "agent-id"


# =============================================================================
# Pure helpers
# =============================================================================

def b64decode_strict(value: str, what: str = "value") -> bytes:
    """Decode standard base64, raising MalformedInput on bad encoding."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise MalformedInput(f"Invalid base64 {what}")


def format_public_key_field(pub_b64: str) -> str:
    return f"{KEY_SCHEME}:{pub_b64}"


def parse_public_key_field(field: str) -> str:
    """Extract the raw base64 key from an "ed25519:<base64>" field."""
    prefix = f"{KEY_SCHEME}:"
    if not isinstance(field, str) or not field.startswith(prefix):
        raise MalformedInput(f'Invalid publicKey format: expected "{prefix}<base64>", got "{field}"')
    return field[len(prefix):]


def derive_agent_id(public_key_field: str) -> str:
    """Deterministic agent id (lowercase hyphenated UUID) for a public key field."""
    return str(uuid.uuid5(NIT_NAMESPACE, public_key_field))


def verify_signature(pub_b64: str, message: Union[str, bytes], signature_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Wrong-length keys or signatures fail without attempting verification.
    """
    try:
        public_bytes = b64decode_strict(pub_b64, "public key")
        signature = b64decode_strict(signature_b64, "signature")
    except MalformedInput:
        return False

    if len(public_bytes) != PUBLIC_KEY_LENGTH or len(signature) != SIGNATURE_LENGTH:
        return False

    data = message.encode("utf-8") if isinstance(message, str) else message
    try:
        Ed25519PublicKey.from_public_bytes(public_bytes).verify(signature, data)
    except InvalidSignature:
        return False
    return True


def sign_with_key(private_key: Ed25519PrivateKey, message: Union[str, bytes]) -> str:
    data = message.encode("utf-8") if isinstance(message, str) else message
    return base64.b64encode(private_key.sign(data)).decode("ascii")


# =============================================================================
# Identity on disk
# =============================================================================

class Identity:
    """The agent's keypair stored under .nit/identity/."""

    def __init__(self, identity_dir: Path):
        self.identity_dir = Path(identity_dir)
        self.public_key_path = self.identity_dir / PUBLIC_KEY_FILE
        self.private_key_path = self.identity_dir / PRIVATE_KEY_FILE
        self.agent_id_path = self.identity_dir / AGENT_ID_FILE

    @classmethod
    def for_nit_dir(cls, nit_dir: Path) -> "Identity":
        return cls(Path(nit_dir) / "identity")

    def exists(self) -> bool:
        return self.public_key_path.is_file() and self.private_key_path.is_file()

    def generate(self) -> str:
        """
        Generate and persist a fresh keypair. Returns the base64 public key.

        Either every identity file is written or none is left behind.
        """
        if self.exists():
            raise AlreadyExists(f"Identity already exists at {self.identity_dir}")

        private_key = Ed25519PrivateKey.generate()
        pub_b64 = base64.b64encode(private_key.public_key().public_bytes_raw()).decode("ascii")
        seed_b64 = base64.b64encode(private_key.private_bytes_raw()).decode("ascii")
        agent_id = derive_agent_id(format_public_key_field(pub_b64))

        files = [
            (self.private_key_path, seed_b64 + "\n", 0o600),
            (self.public_key_path, pub_b64 + "\n", None),
            (self.agent_id_path, agent_id + "\n", None),
        ]
        written = []
        try:
            for path, text, mode in files:
                write_atomic(path, text, mode=mode)
                written.append(path)
        except Exception:
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info(f"Generated identity {agent_id}")
        return pub_b64

    def load_public_key(self) -> str:
        """Base64 of the raw 32-byte public key."""
        try:
            return self.public_key_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise NoIdentity("No identity found. Run `nit init` to generate a keypair.")

    def load_private_key(self) -> Ed25519PrivateKey:
        try:
            seed_b64 = self.private_key_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise NoIdentity("Private key not found at .nit/identity/agent.key. Regenerate with `nit init`.")

        seed = b64decode_strict(seed_b64, "private key")
        if len(seed) != 32:
            raise MalformedInput(f"Private key must be 32 bytes, got {len(seed)}")
        return Ed25519PrivateKey.from_private_bytes(seed)

    @property
    def public_key_field(self) -> str:
        return format_public_key_field(self.load_public_key())

    @property
    def agent_id(self) -> str:
        try:
            stored = self.agent_id_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            stored = ""
        return stored or derive_agent_id(self.public_key_field)

    def sign(self, message: Union[str, bytes]) -> str:
        """Sign a message. Returns a standard base64 signature."""
        return sign_with_key(self.load_private_key(), message)
