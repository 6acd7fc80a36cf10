"""Tests for HandlerRegistry: startup resolution and ordered lookup."""

import pytest

from eventbus.exceptions import RegistryError
from eventbus.modules.events import constants as c
from eventbus.modules.events.handlers import HANDLER_IMPLEMENTATIONS
from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.runtime import HandlerResult


async def _noop(event_type, payload, aggregate_id, store_id):
    return HandlerResult.ok()


class TestRegistryBuild:
    def test_every_mapped_handler_has_an_implementation(self):
        names = {name for names in c.HANDLER_MAP.values() for name in names}
        assert names <= set(HANDLER_IMPLEMENTATIONS)

    def test_missing_implementation_fails_at_build(self):
        with pytest.raises(RegistryError, match="x.missing"):
            HandlerRegistry.build({"thing.happened": ("x.present", "x.missing")}, {"x.present": _noop})

    def test_default_registry_covers_all_event_types(self, registry):
        assert registry.event_types == sorted(c.HANDLER_MAP)


class TestRegistryLookup:
    def test_handlers_are_returned_in_map_order(self, registry):
        assert registry.handler_names(c.EVENT_ORDER_CREATED) == [
            c.FINTECH_CREATE_ESCROW,
            c.COMMERCE_DECREMENT_STOCK,
            c.COMMERCE_SEND_CONFIRMATION_EMAIL,
            c.COMMERCE_CREATE_NOTIFICATION,
        ]

    def test_audit_runs_after_escrow_release(self, registry):
        assert registry.handler_names(c.EVENT_DELIVERY_CONFIRMED) == [
            c.FINTECH_RELEASE_ESCROW,
            c.TRUST_AUDIT_LOG,
        ]

    def test_unknown_event_type_has_no_handlers(self, registry):
        assert registry.handlers_for("something.unheard_of") == ()
        assert registry.handler_names("something.unheard_of") == []

    def test_table_is_read_only(self, registry):
        with pytest.raises(TypeError):
            registry._table["order.created"] = ()
