"""HandlerRegistry: read-only map from event type to ordered handlers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from eventbus.exceptions import RegistryError
from eventbus.modules.events.constants import HANDLER_MAP
from eventbus.modules.events.gateway import PlatformGateway
from eventbus.modules.events.handlers import build_handlers
from eventbus.modules.events.runtime import HandlerFunc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredHandler:
    name: str
    func: HandlerFunc


class HandlerRegistry:
    """Resolved handler table, built once at startup and never mutated.

    Every handler name in the map is resolved to a function when the
    registry is built; a name without an implementation raises
    ``RegistryError`` there, not at dispatch time.
    """

    def __init__(self, table: Mapping[str, tuple[RegisteredHandler, ...]]) -> None:
        self._table = MappingProxyType(dict(table))

    @classmethod
    def build(
        cls,
        handler_map: Mapping[str, tuple[str, ...]],
        implementations: Mapping[str, HandlerFunc],
    ) -> HandlerRegistry:
        missing = sorted({
            name
            for names in handler_map.values()
            for name in names
            if name not in implementations
        })
        if missing:
            raise RegistryError(f"No implementation for handler(s): {', '.join(missing)}")

        table = {
            event_type: tuple(RegisteredHandler(name, implementations[name]) for name in names)
            for event_type, names in handler_map.items()
        }
        logger.info(
            "Built handler registry: %d event types, %d handler bindings",
            len(table), sum(len(handlers) for handlers in table.values()),
        )
        return cls(table)

    def handlers_for(self, event_type: str) -> tuple[RegisteredHandler, ...]:
        """Ordered handlers for an event type; unknown types get an empty tuple."""
        return self._table.get(event_type, ())

    def handler_names(self, event_type: str) -> list[str]:
        return [handler.name for handler in self.handlers_for(event_type)]

    @property
    def event_types(self) -> list[str]:
        return sorted(self._table)


def build_default_registry(gateway: PlatformGateway) -> HandlerRegistry:
    """Registry for the platform's handler map, bound to ``gateway``."""
    return HandlerRegistry.build(HANDLER_MAP, build_handlers(gateway))
