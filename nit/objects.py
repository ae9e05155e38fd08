"""
Content-addressable object store

Objects live at .nit/objects/{first 2 hex chars}/{remaining 62}.

Digest format (same scheme git uses for blobs):
    sha256("{kind} {byteLength}\\0{content}")
"""

import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import CorruptState, NotFound

logger = logging.getLogger("nit.objects")

OBJECT_KINDS = ("card", "commit")
DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
COMMIT_FORMAT_VERSION = 1


def hash_object(kind: str, content: Union[str, bytes]) -> str:
    """Compute the digest of an object without touching disk."""
    if kind not in OBJECT_KINDS:
        raise ValueError(f"Unknown object kind: {kind}")
    data = content.encode("utf-8") if isinstance(content, str) else content
    hasher = hashlib.sha256()
    hasher.update(f"{kind} {len(data)}\0".encode("utf-8"))
    hasher.update(data)
    return hasher.hexdigest()


def is_digest(value: str) -> bool:
    return bool(DIGEST_RE.match(value or ""))


def write_atomic(path: Path, text: str, mode: Optional[int] = None):
    """Write text through a sibling temp file so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except Exception:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ObjectStore:
    """Append-only store of card and commit objects."""

    def __init__(self, nit_dir: Path):
        self.root = Path(nit_dir) / "objects"

    def _path(self, digest: str) -> Path:
        return self.root / digest[:2] / digest[2:]

    def write(self, kind: str, content: str) -> str:
        """Persist an object and return its digest. Existing objects are left untouched."""
        digest = hash_object(kind, content)
        path = self._path(digest)
        if path.exists():
            return digest

        write_atomic(path, content)
        logger.debug(f"Wrote {kind} object {digest[:12]}")
        return digest

    def read(self, digest: str, kind: Optional[str] = None) -> str:
        """
        Read an object's content.

        When kind is given the content is re-hashed and checked against
        the digest it was requested by.
        """
        if not is_digest(digest):
            raise NotFound(f"Object not found: {digest}")
        try:
            data = self._path(digest).read_bytes()
        except FileNotFoundError:
            raise NotFound(f"Object not found: {digest}")
        except OSError as e:
            raise NotFound(f"Object {digest} unreadable: {e}")
        try:
            content = data.decode("utf-8")
        except UnicodeDecodeError:
            raise CorruptState(f"Object {digest} is not valid UTF-8")

        if kind is not None and hash_object(kind, content) != digest:
            raise CorruptState(f"Object {digest} does not hash to its address as {kind}")
        return content

    def exists(self, digest: str) -> bool:
        return is_digest(digest) and self._path(digest).is_file()

    def write_commit(self, commit: "Commit") -> str:
        return self.write("commit", commit.serialize())

    def read_commit(self, digest: str) -> "Commit":
        return Commit.parse(self.read(digest, kind="commit"), digest=digest)


@dataclass(frozen=True)
class Commit:
    """A commit record pointing at one card snapshot."""

    card: str
    parent: Optional[str]
    author: str
    timestamp: int
    message: str

    def serialize(self) -> str:
        """
        Render the canonical text form.

            card <card-hash>
            parent <parent-hash>     (omitted for the first commit)
            author <author> <timestamp>

            <message>
        """
        if "\n" in self.author:
            raise ValueError("Commit author must be a single line")
        lines = [f"card {self.card}"]
        if self.parent is not None:
            lines.append(f"parent {self.parent}")
        lines.append(f"author {self.author} {int(self.timestamp)}")
        lines.append("")
        lines.append(self.message)
        return "\n".join(lines)

    @property
    def hash(self) -> str:
        return hash_object("commit", self.serialize())

    @classmethod
    def parse(cls, raw: str, digest: str = "<unknown>") -> "Commit":
        """Parse the canonical text form. Raises CorruptState on anything unexpected."""
        lines = raw.split("\n")
        card = None
        parent = None
        author = None
        timestamp = None
        message_start = None

        for i, line in enumerate(lines):
            if line == "":
                message_start = i + 1
                break

            key, _, value = line.partition(" ")
            if key == "format":
                if i != 0 or value != str(COMMIT_FORMAT_VERSION):
                    raise CorruptState(f"Malformed commit {digest}: unsupported format {value!r}")
            elif key == "card" and card is None:
                card = value
            elif key == "parent" and parent is None:
                parent = value
            elif key == "author" and author is None:
                author, _, ts = value.rpartition(" ")
                try:
                    timestamp = int(ts)
                except ValueError:
                    raise CorruptState(f"Malformed commit {digest}: bad timestamp {ts!r}")
            else:
                raise CorruptState(f"Malformed commit {digest}: unexpected header {line!r}")

        if not card or not is_digest(card):
            raise CorruptState(f"Malformed commit {digest}: missing card hash")
        if parent is not None and not is_digest(parent):
            raise CorruptState(f"Malformed commit {digest}: bad parent hash")
        if author is None:
            raise CorruptState(f"Malformed commit {digest}: missing author")

        message = "\n".join(lines[message_start:]) if message_start is not None else ""
        return cls(card=card, parent=parent, author=author, timestamp=timestamp, message=message)

    def to_dict(self):
        return {
            "hash": self.hash,
            "card": self.card,
            "parent": self.parent,
            "author": self.author,
            "timestamp": self.timestamp,
            "message": self.message,
        }
