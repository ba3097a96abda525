"""Application configuration.

Loads settings from ~/.synaptide/config.json when present, then applies
environment overrides. The config file has this structure:

```json
{
  "storage": {
    "backend": "mongo",
    "mongo_uri": "mongodb://localhost:27017",
    "database": "synaptide",
    "message_layout": "collapsed",
    "fallback_to_memory": true
  },
  "chat": {
    "model": "llama-3.1-70b-versatile",
    "analyze_every": 5
  },
  "log_level": "INFO"
}
```
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".synaptide" / "config.json"

STORAGE_BACKENDS = ("mongo", "memory")
MESSAGE_LAYOUTS = ("flat", "collapsed")
DEV_ENVIRONMENTS = {"dev", "development", "local"}


@dataclass
class StorageConfig:
    """Storage backend selection and tuning.

    Attributes:
        backend: "mongo" for the durable store, "memory" for the fallback only.
        mongo_uri: MongoDB connection string.
        database: Database holding the users/messages/profiles collections.
        message_layout: "flat" (one document per turn) or "collapsed"
            (one document per user/assistant exchange).
        fallback_to_memory: Use the in-memory store if MongoDB is unreachable.
        connect_timeout_ms: Server selection timeout for the start-up ping.
        clear_batch_size: Documents deleted per request when clearing a log.
        merge_retries: Read-merge-write attempts before giving up on a profile.
    """

    backend: str = "mongo"
    mongo_uri: str = "mongodb://localhost:27017"
    database: str = "synaptide"
    message_layout: str = "flat"
    fallback_to_memory: bool = True
    connect_timeout_ms: int = 3000
    clear_batch_size: int = 500
    merge_retries: int = 3

    def __post_init__(self) -> None:
        if self.backend not in STORAGE_BACKENDS:
            raise ValueError(f"backend must be one of {STORAGE_BACKENDS}, got {self.backend!r}")
        if self.message_layout not in MESSAGE_LAYOUTS:
            raise ValueError(
                f"message_layout must be one of {MESSAGE_LAYOUTS}, got {self.message_layout!r}"
            )
        if self.clear_batch_size < 1:
            raise ValueError("clear_batch_size must be at least 1")
        if self.merge_retries < 1:
            raise ValueError("merge_retries must be at least 1")


@dataclass
class ChatConfig:
    """LLM and conversation settings."""

    model: str = "llama-3.1-70b-versatile"
    temperature: float = 0.7
    max_tokens: int = 500
    analysis_temperature: float = 0.3
    analyze_every: int = 5

    def __post_init__(self) -> None:
        if self.analyze_every < 1:
            raise ValueError("analyze_every must be at least 1")


@dataclass
class AppConfig:
    """Top-level configuration for the web process."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    log_dir: Path | None = None
    log_level: str = "INFO"
    app_env: str = "development"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() in DEV_ENVIRONMENTS


def _known(cls: type, data: Any) -> dict[str, Any]:
    """Keep only keys that are fields of the dataclass."""
    if not isinstance(data, dict):
        return {}
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return {k: v for k, v in data.items() if k in names}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_config(data: dict[str, Any]) -> dict[str, Any]:
    """Split a parsed config file into constructor keyword arguments."""
    values = _known(AppConfig, data)
    values["storage"] = _known(StorageConfig, data.get("storage", {}))
    values["chat"] = _known(ChatConfig, data.get("chat", {}))
    return values


def _apply_env(values: dict[str, Any]) -> None:
    """Override config values from environment variables."""
    storage = values["storage"]
    chat = values["chat"]

    env_map: list[tuple[str, dict[str, Any], str, Any]] = [
        ("SYNAPTIDE_STORAGE", storage, "backend", str),
        ("MONGODB_URI", storage, "mongo_uri", str),
        ("MONGODB_DATABASE", storage, "database", str),
        ("SYNAPTIDE_MESSAGE_LAYOUT", storage, "message_layout", str),
        ("SYNAPTIDE_FALLBACK", storage, "fallback_to_memory", _parse_bool),
        ("GROQ_MODEL", chat, "model", str),
        ("SYNAPTIDE_ANALYZE_EVERY", chat, "analyze_every", int),
        ("SYNAPTIDE_LOG_DIR", values, "log_dir", Path),
        ("LOG_LEVEL", values, "log_level", str),
        ("APP_ENV", values, "app_env", str),
        ("HOST", values, "host", str),
        ("PORT", values, "port", int),
    ]
    for var, target, key, convert in env_map:
        raw = os.getenv(var)
        if raw:
            target[key] = convert(raw)


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load AppConfig from a JSON file plus environment overrides.

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        AppConfig instance with loaded values.

    Raises:
        ValueError: If a value fails validation.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)

    values = _parse_config(data if isinstance(data, dict) else {})
    _apply_env(values)

    if values.get("log_dir") is not None:
        values["log_dir"] = Path(values["log_dir"]).expanduser()

    return AppConfig(
        **{k: v for k, v in values.items() if k not in ("storage", "chat")},
        storage=StorageConfig(**values["storage"]),
        chat=ChatConfig(**values["chat"]),
    )
