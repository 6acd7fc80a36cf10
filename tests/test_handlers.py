"""Tests for the named handlers against the in-memory platform gateway."""

import pytest

from eventbus.modules.events import handlers


class TestFintechHandlers:
    @pytest.mark.asyncio
    async def test_create_escrow_skips_cash_on_delivery(self, gateway):
        result = await handlers.create_escrow(
            gateway, "order.created", {"payment_method": "cod"}, "ord-1", "store-1"
        )
        assert result.success is True
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_create_escrow_is_idempotent(self, gateway):
        await handlers.create_escrow(gateway, "order.created", {}, "ord-1", "store-1")
        await handlers.create_escrow(gateway, "order.created", {}, "ord-1", "store-1")
        assert len(gateway.called("create_escrow")) == 1

    @pytest.mark.asyncio
    async def test_release_escrow_only_when_held(self, gateway):
        result = await handlers.release_escrow(gateway, "delivery.confirmed", {}, "ord-1", None)
        assert result.success is True
        assert gateway.called("release_escrow") == []

        gateway.escrows["ord-1"] = {"id": 42, "order_id": "ord-1", "status": "held"}
        await handlers.release_escrow(gateway, "delivery.confirmed", {}, "ord-1", None)
        assert gateway.called("release_escrow") == [("release_escrow", "42")]

        # Already released: nothing more to do
        await handlers.release_escrow(gateway, "delivery.confirmed", {}, "ord-1", None)
        assert len(gateway.called("release_escrow")) == 1

    @pytest.mark.asyncio
    async def test_update_payment_status_marks_order_paid(self, gateway):
        await handlers.update_payment_status(gateway, "payment.paid", {}, "ord-1", None)
        assert gateway.called("update_order") == [("update_order", "ord-1", {"payment_status": "paid"})]


class TestCommerceHandlers:
    @pytest.mark.asyncio
    async def test_confirmation_email_requires_customer_email(self, gateway):
        await handlers.send_confirmation_email(gateway, "order.created", {}, "ord-1", "store-1")
        assert gateway.called("send_order_confirmation") == []

    @pytest.mark.asyncio
    async def test_confirmation_email_maps_items(self, gateway):
        payload = {
            "customer_email": "awa@example.com",
            "order_number": "CMD-001",
            "items": [{"product_name": "Bissap", "quantity": 2, "unit_price": 1500}],
        }
        await handlers.send_confirmation_email(gateway, "order.created", payload, "ord-1", "store-1")
        (_, message), = gateway.called("send_order_confirmation")
        assert message["email"] == "awa@example.com"
        assert message["order_id"] == "ord-1"
        assert message["items"] == [{"name": "Bissap", "quantity": 2, "price": 1500}]

    @pytest.mark.asyncio
    async def test_order_notification_defaults_currency(self, gateway):
        await handlers.create_order_notification(
            gateway, "order.created", {"order_number": "CMD-7", "total": 5000}, "ord-7", "store-1"
        )
        (_, store_id, kind, title, body, metadata), = gateway.called("create_notification")
        assert (store_id, kind) == ("store-1", "order")
        assert title == "New order CMD-7"
        assert body == "Order of 5000 XOF received."
        assert metadata == {"order_id": "ord-7"}

    @pytest.mark.asyncio
    async def test_order_notification_without_store_is_a_noop(self, gateway):
        result = await handlers.create_order_notification(gateway, "order.created", {}, "ord-7", None)
        assert result.success is True
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_update_order_status_defaults_to_processing(self, gateway):
        await handlers.update_order_status(gateway, "payment.paid", {}, "ord-1", None)
        await handlers.update_order_status(gateway, "payment.paid", {"new_status": "shipped"}, "ord-2", None)
        assert gateway.called("update_order") == [
            ("update_order", "ord-1", {"status": "processing"}),
            ("update_order", "ord-2", {"status": "shipped"}),
        ]


class TestTrustAndScoringHandlers:
    @pytest.mark.asyncio
    async def test_audit_log_entry(self, gateway):
        await handlers.audit_log(gateway, "payout.requested", {}, "po-1", "store-1")
        assert gateway.called("append_audit_log") == [(
            "append_audit_log",
            "store-1",
            "payout.requested",
            "payout",
            "po-1",
            {"event_type": "payout.requested", "via": "event_bus"},
        )]

    @pytest.mark.asyncio
    async def test_buyer_risk_needs_customer(self, gateway):
        await handlers.recalculate_buyer_risk(gateway, "order.cancelled", {}, "ord-1", "store-1")
        assert gateway.calls == []
        await handlers.recalculate_buyer_risk(
            gateway, "order.cancelled", {"customer_user_id": "user-9"}, "ord-1", "store-1"
        )
        assert gateway.called("request_risk_recalculation") == [
            ("request_risk_recalculation", "user", "user-9")
        ]

    @pytest.mark.asyncio
    async def test_seller_risk_uses_store(self, gateway):
        await handlers.recalculate_seller_risk(gateway, "order.delivered", {}, "ord-1", "store-1")
        assert gateway.called("request_risk_recalculation") == [
            ("request_risk_recalculation", "seller", "store-1")
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"product_ids": ["p1", "p2"]}, ["p1", "p2"]),
            ({"product_id": "p3"}, ["p3"]),
            ({}, ["agg-1"]),
        ],
    )
    async def test_ranking_resolves_product_ids(self, gateway, payload, expected):
        await handlers.recalculate_product_ranking(gateway, "review.added", payload, "agg-1", None)
        assert gateway.called("request_ranking_recalculation") == [
            ("request_ranking_recalculation", expected)
        ]

    @pytest.mark.asyncio
    async def test_gateway_errors_propagate_to_runtime(self, gateway):
        gateway.failures["request_inventory_recalculation"] = ConnectionError("inventory down")
        with pytest.raises(ConnectionError):
            await handlers.recalculate_inventory(gateway, "stock.updated", {}, "p1", None)
