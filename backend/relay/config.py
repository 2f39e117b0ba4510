"""Chat relay configuration.

Settings come from an optional YAML file (relay.settings.yaml) looked up in
the working directory and in ./config, then a couple of environment variables
override the values that deployments usually change:

  * PORT: listen port
  * CLIENT_ORIGIN: the single browser origin allowed by CORS
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILENAME = "relay.settings.yaml"
SETTINGS_SEARCH_DIRS = (Path("."), Path("config"))


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _find_settings_file() -> Optional[Path]:
    for directory in SETTINGS_SEARCH_DIRS:
        candidate = directory / SETTINGS_FILENAME
        if candidate.exists():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3001
    log_level:       str       = "info"
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"port out of range: {value}")
        return value


class ChatConfig(BaseModel):
    """Tuning for the connection coordinator."""
    outbox_size:            int  = Field(default=256, ge=1)
    max_connections:        int  = Field(default=0, ge=0)  # 0 = no limit
    report_protocol_errors: bool = False


class RelayConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    chat:   ChatConfig   = Field(default_factory=ChatConfig)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    server = dict(data.get("server") or {})

    port = os.environ.get("PORT")
    if port:
        server["port"] = port
    origin = os.environ.get("CLIENT_ORIGIN")
    if origin:
        server["allowed_origins"] = [origin]

    if server:
        data["server"] = server
    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> RelayConfig:
    """Build a fresh *RelayConfig* from the settings file and environment."""
    path = Path(settings_path) if settings_path is not None else _find_settings_file()
    data = _load_yaml(path) if path is not None else {}
    data = _apply_env_overrides(data)

    config = RelayConfig(**data)
    logger.info(
        "Settings loaded (server=%s:%s, outbox_size=%s, max_connections=%s)",
        config.server.host,
        config.server.port,
        config.chat.outbox_size,
        config.chat.max_connections,
    )
    return config


_config: Optional[RelayConfig] = None


def get_config() -> RelayConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    global _config
    _config = None
