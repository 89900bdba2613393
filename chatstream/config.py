"""Configuration loader: reads config.yaml, validates with Pydantic.

One file per deployed app: it lists the chat variants the app serves
(endpoints, signal markers, variant-specific request fields) plus the
LLM and orchestrator settings. Signal kinds are hardcoded in agents/signals.py.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from chatstream.agents.signals import SignalKind

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_ENV_VAR = "CHATSTREAM_CONFIG"


class ChatVariantConfig(BaseModel):
    """One chat type: where to initialise it, where to run its tools, which signals it emits."""

    name: str
    init_endpoint: str
    tool_execute_endpoint: str | None = None  # null for signal-only variants
    signals: list[SignalKind] = []
    required_fields: list[str] = []  # request fields that must be non-empty
    init_fields: list[str] = []      # request fields forwarded to the init endpoint
    tool_fields: list[str] = []      # request fields forwarded to the tool endpoint

    @field_validator("init_endpoint", "tool_execute_endpoint")
    @classmethod
    def must_be_path(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("/"):
            raise ValueError(f"Endpoint '{v}' must be an absolute path starting with '/'")
        return v


class LLMConfig(BaseModel):
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = Field(default=2048, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=0, ge=0)  # SDK-level; a failed model call ends the stream


class OrchestratorConfig(BaseModel):
    """Bounds for the tool-use loop and its collaborator calls."""

    max_loops: int = Field(default=5, ge=1)
    init_timeout_seconds: float = Field(default=20.0, gt=0)
    tool_timeout_seconds: float = Field(default=20.0, gt=0)


class ServiceConfig(BaseModel):
    """Top-level service configuration."""

    chat_types: list[ChatVariantConfig]
    default_chat_type: str | None = None

    user_id_prefix: str = "u-"
    collaborator_base_url: str | None = None  # None → call back into the request's own host
    allowed_origins: list[str] = ["*"]

    llm: LLMConfig = LLMConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()

    @field_validator("chat_types")
    @classmethod
    def must_have_chat_types(cls, v: list[ChatVariantConfig]) -> list[ChatVariantConfig]:
        if not v:
            raise ValueError("At least one chat type must be configured")
        return v

    @model_validator(mode="after")
    def validate_chat_types(self) -> ServiceConfig:
        names = [ct.name for ct in self.chat_types]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate chat type name(s): {duplicates}")

        if self.default_chat_type is None:
            self.default_chat_type = names[0]
        elif self.default_chat_type not in names:
            raise ValueError(
                f"default_chat_type '{self.default_chat_type}' is not configured. "
                f"Available: {names}"
            )
        return self


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: ServiceConfig | None = None
_config_path: str = DEFAULT_CONFIG_PATH


def default_config_path() -> str:
    return os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)


def load_config(path: str | None = None) -> ServiceConfig:
    """Read the YAML config from disk, validate, and cache."""
    global _config, _config_path
    _config_path = path or default_config_path()

    config_file = Path(_config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw = yaml.safe_load(config_file.read_text()) or {}
    _config = ServiceConfig(**raw)

    logger.info(
        f"Loaded config from {_config_path}: "
        f"chat_types={[ct.name for ct in _config.chat_types]}, "
        f"default={_config.default_chat_type}"
    )
    return _config


def get_config() -> ServiceConfig:
    """Return cached config. Raises if not yet loaded."""
    if _config is None:
        raise RuntimeError("Config not loaded, call load_config() first")
    return _config


def reload_config() -> ServiceConfig:
    """Re-read config from disk. Called by /reload endpoint."""
    logger.info(f"Reloading config from {_config_path}")
    return load_config(_config_path)
