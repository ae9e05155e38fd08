"""Tests for repository and server configuration."""

import pytest

from nit.config import (
    DEFAULT_API_BASE,
    DEFAULT_CARD_HOST,
    NitConfig,
    RemoteConfig,
    create_default_config,
    expand_env_vars,
    load_config,
    load_server_config,
    save_config,
    set_remote_credential,
)


def test_expand_env_vars(monkeypatch):
    monkeypatch.setenv("NIT_TEST_TOKEN", "secret")
    data = {"a": "${NIT_TEST_TOKEN}", "b": ["$NIT_TEST_TOKEN", "plain"], "c": 3, "d": "${UNSET_VAR_XYZ}"}
    assert expand_env_vars(data) == {"a": "secret", "b": ["secret", "plain"], "c": 3, "d": "${UNSET_VAR_XYZ}"}


def test_load_missing_config_uses_defaults(tmp_path):
    config = load_config(tmp_path)
    assert config.remotes == {}
    assert config.card_host == DEFAULT_CARD_HOST
    assert config.get_remote("origin").url == DEFAULT_API_BASE


def test_unknown_remote(tmp_path):
    with pytest.raises(KeyError):
        load_config(tmp_path).get_remote("backup")


def test_default_config_round_trip(tmp_path):
    (tmp_path / "config").write_text(create_default_config("http://localhost:8787", "cards.local"))
    config = load_config(tmp_path)
    assert config.card_host == "cards.local"
    assert config.get_remote("origin").url == "http://localhost:8787"
    assert config.get_remote("origin").credential is None


def test_save_and_load(tmp_path):
    config = NitConfig(
        remotes={"origin": RemoteConfig(url="https://a"), "backup": RemoteConfig(url="https://b", credential="tok")},
        card_host="example.org",
    )
    save_config(tmp_path, config)
    assert load_config(tmp_path) == config


def test_credential_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("NIT_TEST_CREDENTIAL", "from-env")
    (tmp_path / "config").write_text("remotes:\n  origin:\n    credential: ${NIT_TEST_CREDENTIAL}\n")
    assert load_config(tmp_path).get_remote("origin").credential == "from-env"


def test_set_remote_credential(tmp_path):
    (tmp_path / "config").write_text(create_default_config())
    set_remote_credential(tmp_path, "origin", "abc123")
    config = load_config(tmp_path)
    assert config.get_remote("origin").credential == "abc123"
    assert config.get_remote("origin").url == DEFAULT_API_BASE


def test_environment_overrides(tmp_path, monkeypatch):
    (tmp_path / "config").write_text(create_default_config("https://file", "file.host"))
    monkeypatch.setenv("NIT_API_BASE", "https://env")
    monkeypatch.setenv("NIT_CARD_HOST", "env.host")

    config = load_config(tmp_path)
    assert config.get_remote("origin").url == "https://env"
    assert config.card_host == "env.host"


def test_server_config(tmp_path):
    path = tmp_path / "server.yaml"
    path.write_text(
        "server:\n  host: 127.0.0.1\n  port: 9000\n"
        "storage:\n  db_path: /tmp/nit.db\n"
        "card_host: cards.local\n"
    )
    config = load_server_config(path)
    assert config.host == "127.0.0.1"
    assert config.port == 9000
    assert config.db_path == "/tmp/nit.db"
    assert config.key_path == "./data/server.key"
    assert config.card_host == "cards.local"


def test_server_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_server_config(tmp_path / "nope.yaml")
