"""Tests for the content-addressable object store and commit format."""

import pytest

from nit.errors import CorruptState, NotFound
from nit.objects import Commit, ObjectStore, hash_object


CARD_DIGEST = "a" * 64
PARENT_DIGEST = "b" * 64


@pytest.fixture
def store(tmp_path):
    return ObjectStore(tmp_path / ".nit")


def test_hash_object_known_vector():
    """Digest is sha256 over '{kind} {len}\\0{content}'."""
    assert hash_object("card", "{}") == "421cdc9e459a818b476fa26d774244c1886fc2929d83f782bd9a0d6c6fc627db"
    assert hash_object("commit", "") == "9f2a7f3b00f22334f6adc2721fb1f89cd969f02264d37cf6a2c32ba09beb6822"


def test_hash_object_uses_byte_length():
    """Non-ASCII content is measured in UTF-8 bytes, not characters."""
    assert hash_object("card", "é") == hash_object("card", "é".encode("utf-8"))
    assert hash_object("card", "é") != hash_object("card", "e")


def test_hash_object_rejects_unknown_kind():
    with pytest.raises(ValueError):
        hash_object("blob", "x")


def test_write_is_idempotent(store):
    """Writing the same object twice keeps the stored bytes."""
    digest = store.write("card", '{"name": "a"}')
    path = store.root / digest[:2] / digest[2:]
    mtime = path.stat().st_mtime_ns

    assert store.write("card", '{"name": "a"}') == digest
    assert path.read_text() == '{"name": "a"}'
    assert path.stat().st_mtime_ns == mtime


def test_read_round_trip(store):
    digest = store.write("card", "hello")
    assert store.read(digest) == "hello"
    assert store.read(digest, kind="card") == "hello"
    assert store.exists(digest)


def test_read_missing_or_malformed(store):
    with pytest.raises(NotFound):
        store.read("c" * 64)
    with pytest.raises(NotFound):
        store.read("../../etc/passwd")
    assert not store.exists("not-a-digest")


def test_read_detects_kind_mismatch(store):
    digest = store.write("card", "hello")
    with pytest.raises(CorruptState):
        store.read(digest, kind="commit")


def test_read_detects_tampering(store):
    digest = store.write("card", "hello")
    (store.root / digest[:2] / digest[2:]).write_text("tampered")
    with pytest.raises(CorruptState):
        store.read(digest, kind="card")


def test_line_endings_are_stored_exactly(store):
    content = "first line\r\nsecond line\rthird"
    digest = store.write("commit", content)

    assert (store.root / digest[:2] / digest[2:]).read_bytes() == content.encode("utf-8")
    assert store.read(digest, kind="commit") == content


def test_read_rejects_invalid_utf8(store):
    digest = store.write("card", "hello")
    (store.root / digest[:2] / digest[2:]).write_bytes(b"\xff\xfe")
    with pytest.raises(CorruptState):
        store.read(digest)


def test_no_temp_files_left_behind(store):
    digest = store.write("card", "hello")
    leftovers = [p for p in (store.root / digest[:2]).iterdir() if p.name.startswith(".")]
    assert leftovers == []


# =============================================================================
# Commit format
# =============================================================================

def test_commit_serialize_root():
    commit = Commit(card=CARD_DIGEST, parent=None, author="my-agent", timestamp=1700000000, message="Initial commit")
    assert commit.serialize() == (
        f"card {CARD_DIGEST}\n"
        "author my-agent 1700000000\n"
        "\n"
        "Initial commit"
    )


def test_commit_round_trip():
    """parse(serialize(c)) == c, including multi-line messages and spaced authors."""
    commits = [
        Commit(card=CARD_DIGEST, parent=None, author="a", timestamp=1, message="m"),
        Commit(card=CARD_DIGEST, parent=PARENT_DIGEST, author="Ada Lovelace", timestamp=1700000000,
               message="line one\n\nline three"),
        Commit(card=CARD_DIGEST, parent=PARENT_DIGEST, author="x", timestamp=0, message=""),
    ]
    for commit in commits:
        assert Commit.parse(commit.serialize()) == commit


def test_commit_hash_is_pure():
    a = Commit(card=CARD_DIGEST, parent=PARENT_DIGEST, author="a", timestamp=5, message="m")
    b = Commit(card=CARD_DIGEST, parent=PARENT_DIGEST, author="a", timestamp=5, message="m")
    c = Commit(card=CARD_DIGEST, parent=PARENT_DIGEST, author="a", timestamp=6, message="m")
    assert a.hash == b.hash
    assert a.hash != c.hash


def test_commit_store_round_trip(store):
    commit = Commit(card=CARD_DIGEST, parent=None, author="a", timestamp=5, message="m")
    digest = store.write_commit(commit)
    assert digest == commit.hash
    assert store.read_commit(digest) == commit


def test_commit_parse_accepts_format_header():
    raw = f"format 1\ncard {CARD_DIGEST}\nauthor a 5\n\nm"
    commit = Commit.parse(raw)
    assert commit.card == CARD_DIGEST
    assert commit.message == "m"


@pytest.mark.parametrize("raw", [
    f"format 2\ncard {CARD_DIGEST}\nauthor a 5\n\nm",
    f"card {CARD_DIGEST}\nformat 1\nauthor a 5\n\nm",
    f"card {CARD_DIGEST}\ntree {CARD_DIGEST}\nauthor a 5\n\nm",
    f"card {CARD_DIGEST}\nauthor a yesterday\n\nm",
    f"author a 5\n\nm",
    f"card nothex\nauthor a 5\n\nm",
    f"card {CARD_DIGEST}\nparent nothex\nauthor a 5\n\nm",
    f"card {CARD_DIGEST}\n\nm",
])
def test_commit_parse_is_strict(raw):
    with pytest.raises(CorruptState):
        Commit.parse(raw)


def test_commit_author_must_be_single_line():
    commit = Commit(card=CARD_DIGEST, parent=None, author="a\nparent x", timestamp=5, message="m")
    with pytest.raises(ValueError):
        commit.serialize()
