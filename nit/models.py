"""
nit models

Pydantic models for the agent card (A2A-compatible JSON, camelCase keys)
and for results returned by repository and remote operations.
"""

import json
from typing import Optional, List, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CardModel(BaseModel):
    """Base for card parts: camelCase on the wire, unknown keys kept."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="allow",
    )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class AgentCardSkill(CardModel):
    """A single skill entry in an agent card."""
    id: str
    name: str = ""
    description: str = ""
    tags: Optional[List[str]] = None
    examples: Optional[List[str]] = None
    input_modes: Optional[List[str]] = None
    output_modes: Optional[List[str]] = None


class AgentProvider(CardModel):
    organization: str
    url: Optional[str] = None


class AgentCard(CardModel):
    """
    The versioned identity document.

    publicKey ("ed25519:<base64>") is required on the main branch only.
    """
    protocol_version: str = "0.3.0"
    name: str
    description: str = ""
    version: str = "1.0.0"
    url: str = ""
    public_key: Optional[str] = None
    default_input_modes: List[str] = Field(default_factory=lambda: ["text/plain"])
    default_output_modes: List[str] = Field(default_factory=lambda: ["text/plain"])
    skills: List[AgentCardSkill] = Field(default_factory=list)
    icon_url: Optional[str] = None
    documentation_url: Optional[str] = None
    provider: Optional[AgentProvider] = None

    def to_json(self) -> str:
        """Canonical JSON: stored as the card object and written to agent-card.json."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "AgentCard":
        return cls.model_validate_json(raw)


# =============================================================================
# Diff results
# =============================================================================

class FieldDiff(BaseModel):
    """A single field-level change."""
    field: str
    old: Any = None
    new: Any = None


class DiffResult(BaseModel):
    """Structured diff between two agent cards."""
    changed: bool = False
    fields: List[FieldDiff] = Field(default_factory=list)
    skills_added: List[str] = Field(default_factory=list)
    skills_removed: List[str] = Field(default_factory=list)
    skills_modified: List[str] = Field(default_factory=list)


# =============================================================================
# Repository results
# =============================================================================

class InitResult(BaseModel):
    agent_id: str
    public_key: str
    card_url: Optional[str] = None
    skills_found: List[str] = Field(default_factory=list)


class BranchStatus(BaseModel):
    name: str
    ahead: int = 0
    behind: int = 0


class StatusResult(BaseModel):
    """Result returned by the status command."""
    agent_id: str
    card_url: str
    branch: str
    public_key: str
    uncommitted_changes: Optional[DiffResult] = None
    card_missing: bool = False
    branches: List[BranchStatus] = Field(default_factory=list)


class RemoteInfo(BaseModel):
    name: str
    url: str
    card_url: str
    agent_id: str
    has_credential: bool = False


# =============================================================================
# Remote results
# =============================================================================

class PushResult(BaseModel):
    """Result of pushing one branch. Failures carry the server's text."""
    branch: str
    commit_hash: str
    remote_url: str
    success: bool
    error: Optional[str] = None


class RemoteBranch(BaseModel):
    name: str
    commit_hash: str
    pushed_at: Optional[Any] = None


class LoginPayload(BaseModel):
    """Domain-bound login signature handed to a third party."""
    agent_id: str
    domain: str
    timestamp: int
    signature: str
