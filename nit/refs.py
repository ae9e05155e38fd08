"""
Branch and HEAD reference management

    .nit/HEAD                          -> "ref: refs/heads/main"
    .nit/refs/heads/<branch>           -> "<commit-hash>"
    .nit/refs/remote/<remote>/<branch> -> "<commit-hash>"

Refs are plain files and there is no locking: one writer per store.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import CorruptState, EmptyRepository, MalformedInput
from .objects import write_atomic

logger = logging.getLogger("nit.refs")

HEADS_PREFIX = "refs/heads/"
MAIN_BRANCH = "main"
BRANCH_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")


@dataclass
class Branch:
    """A branch name and the commit it points to."""
    name: str
    commit_hash: str


def validate_branch_name(name: str) -> str:
    """Branch names become file names, so only a conservative charset is allowed."""
    if not name or not BRANCH_NAME_RE.match(name) or ".." in name:
        raise MalformedInput(
            f'Invalid branch name "{name}": use letters, digits, ".", "_" or "-"'
        )
    return name


class RefStore:
    """Symbolic HEAD, local branch refs and remote-tracking refs."""

    def __init__(self, nit_dir: Path):
        self.nit_dir = Path(nit_dir)
        self.head_path = self.nit_dir / "HEAD"
        self.heads_dir = self.nit_dir / "refs" / "heads"
        self.remote_dir = self.nit_dir / "refs" / "remote"

    # =========================================================================
    # HEAD
    # =========================================================================

    def get_head(self) -> str:
        """Return the branch HEAD points at."""
        try:
            content = self.head_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise CorruptState("HEAD is missing")

        if not content.startswith("ref: "):
            raise CorruptState(
                f'HEAD is in an unexpected state: "{content}". Only symbolic refs are supported.'
            )
        ref = content[len("ref: "):]
        if not ref.startswith(HEADS_PREFIX):
            raise CorruptState(f"HEAD ref has unexpected format: {ref}")
        return ref[len(HEADS_PREFIX):]

    def set_head(self, branch: str):
        """Repoint HEAD. Callers are responsible for checking the branch exists."""
        write_atomic(self.head_path, f"ref: {HEADS_PREFIX}{branch}\n")
        logger.debug(f"HEAD -> {branch}")

    def resolve_head(self) -> str:
        """Follow HEAD to the commit its branch points at."""
        branch = self.get_head()
        commit_hash = self.get_branch(branch)
        if commit_hash is None:
            raise EmptyRepository(
                f"Branch ref {HEADS_PREFIX}{branch} does not exist. Repository may be empty."
            )
        return commit_hash

    # =========================================================================
    # Branches
    # =========================================================================

    def set_branch(self, branch: str, commit_hash: str):
        write_atomic(self.heads_dir / branch, commit_hash + "\n")

    def get_branch(self, branch: str) -> Optional[str]:
        try:
            return (self.heads_dir / branch).read_text(encoding="utf-8").strip()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    def list_branches(self) -> List[Branch]:
        """All local branches, sorted by name."""
        if not self.heads_dir.is_dir():
            return []

        branches = []
        for path in self.heads_dir.iterdir():
            if path.is_file() and not path.name.startswith("."):
                branches.append(Branch(
                    name=path.name,
                    commit_hash=path.read_text(encoding="utf-8").strip(),
                ))
        return sorted(branches, key=lambda b: b.name)

    def delete_branch(self, branch: str) -> bool:
        path = self.heads_dir / branch
        if not path.is_file():
            return False
        path.unlink()
        return True

    # =========================================================================
    # Remote-tracking refs
    # =========================================================================

    def set_remote_ref(self, remote: str, branch: str, commit_hash: str):
        write_atomic(self.remote_dir / remote / branch, commit_hash + "\n")

    def get_remote_ref(self, remote: str, branch: str) -> Optional[str]:
        try:
            return (self.remote_dir / remote / branch).read_text(encoding="utf-8").strip()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
