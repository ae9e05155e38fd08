"""
Configuration management for nit.

Two YAML files, both with environment variable expansion:

- .nit/config, per repository: remotes and the host agent cards are served from.
- the reference server's config: listen address, database and key paths.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Union

import yaml

from .objects import write_atomic

DEFAULT_API_BASE = "https://api.newtype-ai.org"
DEFAULT_CARD_HOST = "newtype-ai.org"
DEFAULT_REMOTE = "origin"


@dataclass
class RemoteConfig:
    """A named remote. The credential is a legacy bearer token, kept for display only."""
    url: str = DEFAULT_API_BASE
    credential: Optional[str] = None


@dataclass
class NitConfig:
    """Root configuration of a nit repository."""
    remotes: Dict[str, RemoteConfig] = field(default_factory=dict)
    card_host: str = DEFAULT_CARD_HOST

    def get_remote(self, name: str = DEFAULT_REMOTE) -> RemoteConfig:
        """Look up a remote. `origin` falls back to the default API base."""
        remote = self.remotes.get(name)
        if remote is None:
            if name != DEFAULT_REMOTE:
                raise KeyError(f'Remote "{name}" is not configured')
            remote = RemoteConfig(url=os.environ.get("NIT_API_BASE", DEFAULT_API_BASE))
        return remote


@dataclass
class ServerConfig:
    """Reference remote server configuration."""
    host: str = "0.0.0.0"
    port: int = 8787
    db_path: str = "./data/nit.db"
    key_path: str = "./data/server.key"
    card_host: str = DEFAULT_CARD_HOST


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values."""
    if isinstance(value, str):
        # Match ${VAR} or $VAR patterns
        pattern = r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)'

        def replace(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return expand_env_vars(raw or {})


def config_path(nit_dir: Union[str, Path]) -> Path:
    return Path(nit_dir) / "config"


def load_config(nit_dir: Union[str, Path]) -> NitConfig:
    """Load .nit/config. A missing file yields the defaults."""
    path = config_path(nit_dir)
    data = _read_yaml(path) if path.exists() else {}

    remotes = {}
    for name, remote_data in (data.get("remotes") or {}).items():
        remote_data = remote_data or {}
        remotes[name] = RemoteConfig(
            url=remote_data.get("url", DEFAULT_API_BASE),
            credential=remote_data.get("credential"),
        )

    config = NitConfig(
        remotes=remotes,
        card_host=data.get("card_host", DEFAULT_CARD_HOST),
    )

    # Environment overrides
    if os.environ.get("NIT_API_BASE"):
        config.remotes.setdefault(DEFAULT_REMOTE, RemoteConfig()).url = os.environ["NIT_API_BASE"]
    if os.environ.get("NIT_CARD_HOST"):
        config.card_host = os.environ["NIT_CARD_HOST"]

    return config


def save_config(nit_dir: Union[str, Path], config: NitConfig):
    """Write .nit/config back as YAML."""
    data: Dict[str, Any] = {"card_host": config.card_host, "remotes": {}}
    for name, remote in config.remotes.items():
        entry: Dict[str, Any] = {"url": remote.url}
        if remote.credential:
            entry["credential"] = remote.credential
        data["remotes"][name] = entry

    write_atomic(config_path(nit_dir), yaml.safe_dump(data, sort_keys=False))


def set_remote_credential(nit_dir: Union[str, Path], remote_name: str, credential: str):
    """Set (or update) the credential stored for a remote."""
    config = load_config(nit_dir)
    config.remotes.setdefault(remote_name, RemoteConfig()).credential = credential
    save_config(nit_dir, config)


def create_default_config(api_base: Optional[str] = None, card_host: Optional[str] = None) -> str:
    """Generate the default .nit/config YAML."""
    return f"""# nit repository configuration

# Host agent cards are served from: https://agent-<agent-id>.<card_host>
card_host: {card_host or DEFAULT_CARD_HOST}

remotes:
  origin:
    url: {api_base or DEFAULT_API_BASE}
    # credential: ${{NIT_CREDENTIAL}}
"""


def load_server_config(path: Optional[Union[str, Path]] = None) -> ServerConfig:
    """Load the reference server configuration; defaults when no path is given."""
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = _read_yaml(path)

    server_data = data.get("server", {})
    storage_data = data.get("storage", {})
    config = ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=int(server_data.get("port", 8787)),
        db_path=storage_data.get("db_path", "./data/nit.db"),
        key_path=storage_data.get("key_path", "./data/server.key"),
        card_host=data.get("card_host", DEFAULT_CARD_HOST),
    )

    if os.environ.get("NIT_CARD_HOST"):
        config.card_host = os.environ["NIT_CARD_HOST"]
    return config

