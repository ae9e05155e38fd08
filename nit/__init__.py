"""
nit - Version Control for Agent Cards

Versions a single agent-card.json with content-addressed commits and
branches, and authenticates every write to a remote with the agent's own
Ed25519 key.
"""

__version__ = "0.1.0"

from .errors import NitError
from .identity import Identity, derive_agent_id
from .models import AgentCard
from .remote import RemoteClient
from .repository import Repository

__all__ = [
    "__version__",
    "AgentCard",
    "Identity",
    "NitError",
    "RemoteClient",
    "Repository",
    "derive_agent_id",
]
