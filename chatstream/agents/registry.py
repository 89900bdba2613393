"""Chat variant registry: resolved, read-only chat type definitions.

Built once from the service config at startup and handed to request
handlers, so every request of a given chat type sees the same endpoints
and compiled signal patterns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatstream.agents.signals import SignalPattern

if TYPE_CHECKING:
    from chatstream.config import ChatVariantConfig, ServiceConfig


@dataclass(frozen=True)
class ResolvedVariant:
    name: str
    init_endpoint: str
    tool_execute_endpoint: str | None
    signal_patterns: tuple[SignalPattern, ...] = ()
    required_fields: tuple[str, ...] = ()
    init_fields: tuple[str, ...] = ()
    tool_fields: tuple[str, ...] = ()

    @property
    def has_tools(self) -> bool:
        return self.tool_execute_endpoint is not None

    @classmethod
    def from_config(cls, cfg: ChatVariantConfig) -> ResolvedVariant:
        return cls(
            name=cfg.name,
            init_endpoint=cfg.init_endpoint,
            tool_execute_endpoint=cfg.tool_execute_endpoint,
            signal_patterns=tuple(SignalPattern.for_kind(kind) for kind in cfg.signals),
            required_fields=tuple(cfg.required_fields),
            init_fields=tuple(cfg.init_fields),
            tool_fields=tuple(cfg.tool_fields),
        )


class ChatVariantRegistry:
    """Lookup table from chat type name to its resolved variant."""

    def __init__(self, variants: list[ResolvedVariant], default: str | None = None):
        if not variants:
            raise ValueError("A registry needs at least one chat variant")
        self._variants: dict[str, ResolvedVariant] = {v.name: v for v in variants}
        self.default = default or variants[0].name
        if self.default not in self._variants:
            raise ValueError(
                f"Unknown default chat type '{self.default}'. Available: {self.names()}"
            )

    @classmethod
    def from_config(cls, config: ServiceConfig) -> ChatVariantRegistry:
        return cls(
            [ResolvedVariant.from_config(ct) for ct in config.chat_types],
            default=config.default_chat_type,
        )

    def resolve(self, chat_type: str) -> ResolvedVariant | None:
        """Return the variant for a chat type, or None if it is not configured."""
        return self._variants.get(chat_type)

    def names(self) -> list[str]:
        return list(self._variants.keys())

    def __contains__(self, chat_type: str) -> bool:
        return chat_type in self._variants

    def __len__(self) -> int:
        return len(self._variants)
