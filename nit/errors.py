"""
nit error taxonomy

Every failure carries a human-readable reason. Remote failures keep the
server's original error text verbatim.
"""

from typing import Optional


class NitError(Exception):
    """Base class for all nit failures."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotFound(NitError):
    """Missing object, branch, card or identity."""


class NoIdentity(NotFound):
    """Keypair absent. Run `nit init` first."""


class EmptyRepository(NotFound):
    """HEAD points at a branch that has no commits."""


class UnknownTarget(NotFound):
    """Diff target is neither a branch nor a commit digest."""


class CorruptState(NitError):
    """HEAD is not symbolic, or an object/commit is malformed."""


class AlreadyExists(NitError):
    """Store or branch already exists."""


class NoChanges(NitError):
    """Attempted to commit an unchanged card."""


class UncommittedChanges(NitError):
    """Working card differs from HEAD."""


class AuthRequired(NitError):
    """Signing is needed but no local identity is available."""


class Unverified(NitError):
    """Signature or challenge did not verify."""


class Expired(NitError):
    """Timestamp or challenge outside its validity window."""


class MalformedInput(NitError, ValueError):
    """Badly encoded identity, timestamp, signature, key or name."""


class RemoteError(NitError):
    """Non-2xx response from the remote, with the server's text."""

    def __init__(self, status_code: Optional[int], text: str):
        if status_code is None:
            reason = text
        else:
            reason = f"HTTP {status_code}: {text}"
        super().__init__(reason)
        self.status_code = status_code
        self.text = text
