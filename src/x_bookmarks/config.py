"""Configuration loading and saving.

Config file location: ~/.config/x-bookmarks/config.toml

Schema:
    [x]
    client_id = "..."          # OAuth 2.0 client id (required)
    client_secret = "..."
    callback_url = "http://localhost:5173/callback"
    bearer_token = "..."       # app-only token for research search

    [storage]
    data_dir = "~/.local/share/x-bookmarks"

    [sync]
    page_delay = 0.35

    [research]
    cache_ttl_minutes = 15

    [ai]
    api_key = "..."
    model = "claude-haiku-4-5-20251001"

Blank secrets fall back to X_CLIENT_ID, X_CLIENT_SECRET, X_BEARER_TOKEN
and ANTHROPIC_API_KEY from the environment.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

CONFIG_DIR = Path.home() / ".config" / "x-bookmarks"
CONFIG_FILE = CONFIG_DIR / "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "x-bookmarks"
DEFAULT_CALLBACK_URL = "http://localhost:5173/callback"
DEFAULT_AI_MODEL = "claude-haiku-4-5-20251001"


@dataclass
class XConfig:
    client_id: str
    client_secret: str = ""
    callback_url: str = DEFAULT_CALLBACK_URL
    bearer_token: str = ""


@dataclass
class AIConfig:
    api_key: str = ""
    model: str = DEFAULT_AI_MODEL


@dataclass
class AppConfig:
    x: XConfig
    data_dir: Path = DEFAULT_DATA_DIR
    page_delay: float = 0.35
    cache_ttl_minutes: float = 15
    ai: AIConfig = field(default_factory=AIConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "bookmarks.db"

    @property
    def cache_path(self) -> Path:
        return self.data_dir / "cache.db"


def load_config(config_path: Path = CONFIG_FILE) -> AppConfig:
    """Load and validate config from TOML file."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    x_data = data.get("x", {})
    client_id = x_data.get("client_id") or os.environ.get("X_CLIENT_ID", "")
    if not client_id:
        raise ValueError("Config missing required x.client_id (or X_CLIENT_ID)")

    storage_data = data.get("storage", {})
    sync_data = data.get("sync", {})
    research_data = data.get("research", {})
    ai_data = data.get("ai", {})

    return AppConfig(
        x=XConfig(
            client_id=client_id,
            client_secret=x_data.get("client_secret") or os.environ.get("X_CLIENT_SECRET", ""),
            callback_url=x_data.get("callback_url", DEFAULT_CALLBACK_URL),
            bearer_token=x_data.get("bearer_token") or os.environ.get("X_BEARER_TOKEN", ""),
        ),
        data_dir=Path(storage_data.get("data_dir", DEFAULT_DATA_DIR)).expanduser(),
        page_delay=float(sync_data.get("page_delay", 0.35)),
        cache_ttl_minutes=float(research_data.get("cache_ttl_minutes", 15)),
        ai=AIConfig(
            api_key=ai_data.get("api_key") or os.environ.get("ANTHROPIC_API_KEY", ""),
            model=ai_data.get("model", DEFAULT_AI_MODEL),
        ),
    )


def save_config(config: AppConfig, config_path: Path = CONFIG_FILE) -> None:
    """Write config to TOML file with restricted permissions."""
    config_path.parent.mkdir(parents=True, exist_ok=True)

    x_section = {
        "client_id": config.x.client_id,
        "callback_url": config.x.callback_url,
    }
    if config.x.client_secret:
        x_section["client_secret"] = config.x.client_secret
    if config.x.bearer_token:
        x_section["bearer_token"] = config.x.bearer_token

    data = {
        "x": x_section,
        "storage": {"data_dir": str(config.data_dir)},
        "sync": {"page_delay": config.page_delay},
        "research": {"cache_ttl_minutes": config.cache_ttl_minutes},
    }

    ai_section = {"model": config.ai.model}
    if config.ai.api_key:
        ai_section["api_key"] = config.ai.api_key
    data["ai"] = ai_section

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)

    # Restrict permissions: file contains client and API secrets
    os.chmod(config_path, 0o600)


def config_exists(config_path: Path = CONFIG_FILE) -> bool:
    """Check if config file exists."""
    return config_path.exists()
