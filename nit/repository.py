"""
nit Repository

Commit graph operations over one project's .nit store: init, commit, log,
diff, branch, checkout, status and push.

A Repository is a handle, not a lock. Running two mutating operations
against the same store at the same time is unsupported; every mutation
advances its branch ref as the last step so a crash never leaves a ref
pointing at a missing commit.
"""

import logging
import os
import time
from pathlib import Path
from typing import Optional, List, Iterator, Union

import httpx
from pydantic import ValidationError

from .auth import create_login_payload
from .config import (
    DEFAULT_REMOTE,
    config_path,
    create_default_config,
    load_config,
)
from .diff import diff_cards
from .errors import (
    AlreadyExists,
    CorruptState,
    MalformedInput,
    NitError,
    NoChanges,
    NotFound,
    UncommittedChanges,
    UnknownTarget,
)
from .identity import Identity, format_public_key_field, derive_agent_id
from .models import (
    AgentCard,
    AgentCardSkill,
    BranchStatus,
    DiffResult,
    InitResult,
    LoginPayload,
    PushResult,
    RemoteInfo,
    StatusResult,
)
from .objects import Commit, ObjectStore, hash_object, is_digest, write_atomic
from .refs import MAIN_BRANCH, Branch, RefStore, validate_branch_name
from .remote import RemoteClient
from .skills import discover_skills, resolve_skill_pointers

logger = logging.getLogger("nit.repository")

NIT_DIR = ".nit"
CARD_FILE = "agent-card.json"


class Repository:
    """Handle on a project directory containing .nit/ and agent-card.json."""

    def __init__(self, project_dir: Union[str, Path], http_client: Optional[httpx.Client] = None):
        self.project_dir = Path(project_dir).resolve()
        self.nit_dir = self.project_dir / NIT_DIR
        self.card_path = self.project_dir / CARD_FILE
        self.objects = ObjectStore(self.nit_dir)
        self.refs = RefStore(self.nit_dir)
        self.identity = Identity.for_nit_dir(self.nit_dir)
        self._http_client = http_client

    @classmethod
    def find(cls, start: Optional[Union[str, Path]] = None, **kwargs) -> "Repository":
        """Walk up from start (default: cwd) to the nearest directory holding .nit/."""
        current = Path(start or os.getcwd()).resolve()
        for candidate in [current, *current.parents]:
            if (candidate / NIT_DIR).is_dir():
                return cls(candidate, **kwargs)
        raise NotFound("Not a nit repository (or any parent). Run `nit init` first.")

    # =========================================================================
    # init
    # =========================================================================

    @classmethod
    def init(
        cls,
        project_dir: Union[str, Path],
        api_base: Optional[str] = None,
        card_host: Optional[str] = None,
    ) -> InitResult:
        """
        Create a store, an identity and the first commit on main.

        An existing agent-card.json is adopted (its publicKey is replaced);
        otherwise a card is generated from the discovered skills.
        """
        repo = cls(project_dir)
        if repo.nit_dir.exists():
            raise AlreadyExists(f"Already a nit repository: {repo.nit_dir}")

        discovered = discover_skills(repo.project_dir)
        if repo.card_path.exists():
            card = resolve_skill_pointers(repo.read_working_card(), repo.project_dir)
            skills_found = [s.id for s in card.skills]
        else:
            dir_name = repo.project_dir.name
            card = AgentCard(
                name=dir_name,
                description=f"AI agent working in {dir_name}",
                skills=[
                    AgentCardSkill(id=s.id, name=s.name, description=s.description)
                    for s in discovered
                ],
            )
            skills_found = [s.id for s in discovered]

        for sub in ("objects", "refs/heads", "refs/remote", "identity"):
            (repo.nit_dir / sub).mkdir(parents=True, exist_ok=True)
        write_atomic(config_path(repo.nit_dir), create_default_config(api_base, card_host))
        config = load_config(repo.nit_dir)

        public_key_field = format_public_key_field(repo.identity.generate())
        agent_id = derive_agent_id(public_key_field)

        card.public_key = public_key_field
        if not card.url:
            card.url = f"https://agent-{agent_id}.{config.card_host}"
        repo.write_working_card(card)

        card_hash = repo.objects.write("card", card.to_json())
        commit = Commit(
            card=card_hash,
            parent=None,
            author=repo._author(card),
            timestamp=int(time.time()),
            message="Initial commit",
        )
        commit_hash = repo.objects.write_commit(commit)
        repo.refs.set_head(MAIN_BRANCH)
        repo.refs.set_branch(MAIN_BRANCH, commit_hash)

        logger.info(f"Initialized {repo.nit_dir} for agent {agent_id}")
        return InitResult(
            agent_id=agent_id,
            public_key=public_key_field,
            card_url=card.url,
            skills_found=skills_found,
        )

    # =========================================================================
    # Cards
    # =========================================================================

    def read_working_card(self) -> AgentCard:
        try:
            raw = self.card_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFound(f"{CARD_FILE} not found in {self.project_dir}")
        try:
            return AgentCard.from_json(raw)
        except ValidationError as e:
            raise MalformedInput(f"Invalid {CARD_FILE}: {e}")

    def write_working_card(self, card: AgentCard):
        write_atomic(self.card_path, card.to_json() + "\n")

    def _card_json_at(self, commit_hash: str) -> str:
        commit = self.objects.read_commit(commit_hash)
        return self.objects.read(commit.card, kind="card")

    def card_at(self, commit_hash: str) -> AgentCard:
        """The card snapshot a commit points at."""
        raw = self._card_json_at(commit_hash)
        try:
            return AgentCard.from_json(raw)
        except ValidationError as e:
            raise CorruptState(f"Card at commit {commit_hash} is invalid: {e}")

    def _author(self, card: AgentCard) -> str:
        """Commit author: the card name folded onto one line."""
        return " ".join(card.name.split()) or self.project_dir.name

    # =========================================================================
    # commit / log
    # =========================================================================

    def commit(self, message: str) -> Commit:
        """Snapshot the working card onto the current branch."""
        card = resolve_skill_pointers(self.read_working_card(), self.project_dir)
        self.write_working_card(card)
        card_json = card.to_json()
        card_hash = hash_object("card", card_json)

        branch = self.refs.get_head()
        tip = self.refs.resolve_head()
        if self.objects.read_commit(tip).card == card_hash:
            raise NoChanges("Nothing to commit. Working card matches HEAD.")

        self.objects.write("card", card_json)
        commit = Commit(
            card=card_hash,
            parent=tip,
            author=self._author(card),
            timestamp=int(time.time()),
            message=message,
        )
        commit_hash = self.objects.write_commit(commit)
        self.refs.set_branch(branch, commit_hash)

        logger.info(f"[{branch} {commit_hash[:8]}] {message}")
        return commit

    def log(self, limit: int = 50) -> Iterator[Commit]:
        """Commits from the current tip back towards the root, newest first."""
        digest = self.refs.resolve_head()
        count = 0
        while digest and count < limit:
            try:
                commit = self.objects.read_commit(digest)
            except (NotFound, CorruptState) as e:
                logger.warning(f"History truncated at {digest[:12]}: {e.reason}")
                return
            yield commit
            count += 1
            digest = commit.parent

    # =========================================================================
    # diff
    # =========================================================================

    def diff(self, target: Optional[str] = None) -> DiffResult:
        """
        - no target: HEAD vs working card
        - branch name: HEAD vs that branch's tip
        - 64-hex commit hash: HEAD vs that commit
        """
        head_card = self.card_at(self.refs.resolve_head())
        if target is None:
            return diff_cards(head_card, self.read_working_card())

        tip = None
        try:
            tip = self.refs.get_branch(validate_branch_name(target))
        except MalformedInput:
            pass
        if tip is not None:
            return diff_cards(head_card, self.card_at(tip))

        if is_digest(target):
            return diff_cards(head_card, self.card_at(target))

        raise UnknownTarget(f'Unknown target "{target}". Not a branch name or commit hash.')

    # =========================================================================
    # Branches
    # =========================================================================

    def branch(self, name: Optional[str] = None) -> Union[List[Branch], Branch]:
        """List branches, or create one at HEAD's commit. HEAD does not move."""
        if name is None:
            return self.refs.list_branches()

        validate_branch_name(name)
        if self.refs.get_branch(name) is not None:
            raise AlreadyExists(f'Branch "{name}" already exists.')

        tip = self.refs.resolve_head()
        self.refs.set_branch(name, tip)
        logger.info(f"Created branch {name} at {tip[:8]}")
        return Branch(name=name, commit_hash=tip)

    def delete_branch(self, name: str) -> str:
        """Delete a local branch. Returns the commit it pointed at."""
        if name == MAIN_BRANCH:
            raise NitError("Cannot delete the main branch.")
        if name == self.refs.get_head():
            raise NitError(f'Cannot delete the current branch "{name}". Check out another branch first.')

        validate_branch_name(name)
        tip = self.refs.get_branch(name)
        if tip is None:
            raise NotFound(f'Branch "{name}" does not exist.')
        self.refs.delete_branch(name)
        logger.info(f"Deleted branch {name} (was {tip[:8]})")
        return tip

    def checkout(self, name: str):
        """Switch branches. Refuses when the working card has uncommitted changes."""
        head_card = self.card_at(self.refs.resolve_head())
        try:
            working = self.read_working_card()
        except NotFound:
            working = None
        if working is not None and diff_cards(head_card, working).changed:
            raise UncommittedChanges(
                "You have uncommitted changes. Commit or discard them before switching branches."
            )

        validate_branch_name(name)
        target = self.refs.get_branch(name)
        if target is None:
            raise NotFound(f'Branch "{name}" does not exist.')

        self.write_working_card(self.card_at(target))
        self.refs.set_head(name)
        logger.info(f"Switched to branch {name}")

    # =========================================================================
    # status
    # =========================================================================

    def _ahead(self, tip: str, remote_hash: Optional[str]) -> int:
        """Hops from tip back to remote_hash (or to the root when never pushed)."""
        ahead = 0
        digest = tip
        while digest and digest != remote_hash:
            ahead += 1
            try:
                digest = self.objects.read_commit(digest).parent
            except (NotFound, CorruptState) as e:
                logger.warning(f"Ahead count stopped at {digest[:12]}: {e.reason}")
                break
        return ahead

    def status(self, remote: str = DEFAULT_REMOTE) -> StatusResult:
        branch = self.refs.get_head()
        head_card = self.card_at(self.refs.resolve_head())
        try:
            working = self.read_working_card()
        except NotFound:
            working = None
        changes = diff_cards(head_card, working if working is not None else {})

        branches = [
            BranchStatus(
                name=b.name,
                ahead=self._ahead(b.commit_hash, self.refs.get_remote_ref(remote, b.name)),
            )
            for b in self.refs.list_branches()
        ]

        return StatusResult(
            agent_id=self.identity.agent_id,
            card_url=(working or head_card).url,
            branch=branch,
            public_key=self.identity.public_key_field,
            uncommitted_changes=changes if changes.changed else None,
            card_missing=working is None,
            branches=branches,
        )

    # =========================================================================
    # Remote
    # =========================================================================

    def remote_client(self, remote: str = DEFAULT_REMOTE) -> RemoteClient:
        """A client for a configured remote, signing as this repository's identity."""
        try:
            remote_config = load_config(self.nit_dir).get_remote(remote)
        except KeyError as e:
            raise NotFound(str(e.args[0]))
        return RemoteClient(remote_config.url, identity=self.identity, client=self._http_client)

    def push(self, all: bool = False, remote: str = DEFAULT_REMOTE) -> List[PushResult]:
        """
        Push the current branch, or every branch with main first.

        Per-branch failures are reported, not raised.
        """
        if all:
            branches = sorted(self.refs.list_branches(), key=lambda b: b.name != MAIN_BRANCH)
        else:
            branches = [Branch(name=self.refs.get_head(), commit_hash=self.refs.resolve_head())]

        payload = [(b.name, self._card_json_at(b.commit_hash), b.commit_hash) for b in branches]
        with self.remote_client(remote) as client:
            results = client.push_all(payload)

        for result in results:
            if result.success:
                self.refs.set_remote_ref(remote, result.branch, result.commit_hash)
        return results

    def remote_info(self, remote: str = DEFAULT_REMOTE) -> RemoteInfo:
        config = load_config(self.nit_dir)
        try:
            remote_config = config.get_remote(remote)
        except KeyError as e:
            raise NotFound(str(e.args[0]))
        card = self.read_working_card()
        return RemoteInfo(
            name=remote,
            url=remote_config.url,
            card_url=card.url or "(not set)",
            agent_id=self.identity.agent_id,
            has_credential=bool(remote_config.credential),
        )

    def fetch(self, branch: str = MAIN_BRANCH, card_url: Optional[str] = None,
              remote: str = DEFAULT_REMOTE) -> AgentCard:
        """Fetch a branch card from a card URL (default: this agent's own)."""
        card_url = card_url or self.read_working_card().url
        if not card_url:
            raise NotFound(f"No card URL set in {CARD_FILE}")
        with self.remote_client(remote) as client:
            return client.fetch_branch_card(card_url, branch)

    def sign_login(self, domain: str) -> LoginPayload:
        """A login payload valid only for the given domain."""
        return create_login_payload(self.identity, domain)
