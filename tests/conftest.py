"""Shared fixtures for nit tests."""

import pytest
from fastapi.testclient import TestClient

from nit.config import ServerConfig
from nit.repository import Repository
from nit.server import create_app

API_BASE = "http://testserver"
CARD_HOST = "nit.test"


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep user-global skill directories and env overrides out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("NIT_API_BASE", raising=False)
    monkeypatch.delenv("NIT_CARD_HOST", raising=False)
    return home


@pytest.fixture
def project(tmp_path):
    """An empty project directory."""
    path = tmp_path / "my-agent"
    path.mkdir()
    return path


@pytest.fixture
def repo(project):
    """A freshly initialized repository."""
    Repository.init(project, api_base=API_BASE, card_host=CARD_HOST)
    return Repository(project)


@pytest.fixture
def server(tmp_path):
    """TestClient over a reference remote with its own database and key."""
    config = ServerConfig(
        db_path=str(tmp_path / "server" / "nit.db"),
        key_path=str(tmp_path / "server" / "server.key"),
        card_host=CARD_HOST,
    )
    return TestClient(create_app(config), base_url=API_BASE)


@pytest.fixture
def remote_repo(project, server):
    """An initialized repository whose remote is the test server."""
    Repository.init(project, api_base=API_BASE, card_host=CARD_HOST)
    return Repository(project, http_client=server)
