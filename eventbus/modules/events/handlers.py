"""Named event handlers.

Every handler follows the same contract,
``handle(event_type, payload, aggregate_id, store_id) -> HandlerResult``, and
must be safe to run again: the dispatcher re-runs the whole handler list for
an event on every retry. Handlers that mutate external state check the
current state first (e.g. an escrow that already exists is not created twice).

Handlers receive the ``PlatformGateway`` as their first argument;
``build_handlers`` binds it so the registry sees the four-argument contract.
"""

from __future__ import annotations

import logging
from functools import partial

from eventbus.modules.events import constants as c
from eventbus.modules.events.gateway import PlatformGateway
from eventbus.modules.events.runtime import HandlerFunc, HandlerResult

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "XOF"


def _product_ids(payload: dict, aggregate_id: str) -> list[str]:
    """Products affected by an event: explicit list, single id, or the aggregate itself."""
    if payload.get("product_ids"):
        return [str(pid) for pid in payload["product_ids"]]
    if payload.get("product_id"):
        return [str(payload["product_id"])]
    return [aggregate_id]


# ---------------------------------------------------------------------------
# Fintech
# ---------------------------------------------------------------------------


async def create_escrow(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    """Hold the order amount in escrow. Cash-on-delivery orders have no escrow."""
    if payload.get("payment_method") == "cod":
        return HandlerResult.ok()
    existing = await gateway.get_escrow(aggregate_id)
    if existing is not None:
        logger.info("Escrow already exists for order %s, skipping", aggregate_id)
        return HandlerResult.ok()
    await gateway.create_escrow(aggregate_id)
    return HandlerResult.ok()


async def update_payment_status(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    await gateway.update_order(aggregate_id, {"payment_status": "paid"})
    return HandlerResult.ok()


async def release_escrow(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    """Release the held escrow for the order. Nothing held is not an error."""
    escrow = await gateway.get_escrow(aggregate_id)
    if escrow is None or escrow.get("status") != "held":
        return HandlerResult.ok()
    await gateway.release_escrow(str(escrow["id"]))
    return HandlerResult.ok()


async def process_payout(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    # The payout itself is executed by the payout request; this only records the event.
    return HandlerResult.ok()


# ---------------------------------------------------------------------------
# Commerce
# ---------------------------------------------------------------------------


async def decrement_stock(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    # No-op: stock is reserved by checkout before the order exists.
    # Decrementing here would double-count.
    return HandlerResult.ok()


async def send_confirmation_email(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    email = payload.get("customer_email")
    if not email:
        return HandlerResult.ok()
    items = [
        {
            "name": item.get("name") or item.get("product_name"),
            "quantity": item.get("quantity"),
            "price": item.get("price") or item.get("unit_price"),
        }
        for item in payload.get("items") or []
    ]
    await gateway.send_order_confirmation({
        "order_id": aggregate_id,
        "order_number": payload.get("order_number"),
        "tracking_token": payload.get("tracking_token"),
        "email": email,
        "customer_name": payload.get("customer_name") or "",
        "store_name": payload.get("store_name") or "",
        "total": payload.get("total"),
        "currency": payload.get("currency"),
        "items": items,
    })
    return HandlerResult.ok()


async def create_order_notification(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    if not store_id:
        return HandlerResult.ok()
    order_number = payload.get("order_number") or ""
    total = payload.get("total") or 0
    currency = payload.get("currency") or DEFAULT_CURRENCY
    await gateway.create_notification(
        store_id=store_id,
        kind="order",
        title=f"New order {order_number}".strip(),
        body=f"Order of {total} {currency} received.",
        metadata={"order_id": aggregate_id},
    )
    return HandlerResult.ok()


async def update_order_status(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    new_status = payload.get("new_status") or "processing"
    await gateway.update_order(aggregate_id, {"status": new_status})
    return HandlerResult.ok()


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------


async def mark_delivered(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    await gateway.update_order(aggregate_id, {"status": "delivered"})
    return HandlerResult.ok()


# ---------------------------------------------------------------------------
# Trust & compliance
# ---------------------------------------------------------------------------


async def audit_log(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    if not store_id:
        return HandlerResult.ok()
    await gateway.append_audit_log(
        store_id=store_id,
        action=event_type,
        target_type=event_type.split(".")[0],
        target_id=aggregate_id,
        metadata={"event_type": event_type, "via": "event_bus"},
    )
    return HandlerResult.ok()


async def create_ticket_notification(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    if not store_id:
        return HandlerResult.ok()
    await gateway.create_notification(
        store_id=store_id,
        kind="ticket",
        title="New support ticket",
        body=payload.get("subject") or "A customer opened a ticket.",
        metadata={"ticket_id": aggregate_id},
    )
    return HandlerResult.ok()


async def auto_assign_ticket(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    # Placeholder until ticket routing rules exist.
    return HandlerResult.ok()


# ---------------------------------------------------------------------------
# Risk, ranking, inventory (trigger only; success means "job accepted")
# ---------------------------------------------------------------------------


async def recalculate_seller_risk(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    if not store_id:
        return HandlerResult.ok()
    await gateway.request_risk_recalculation("seller", store_id)
    return HandlerResult.ok()


async def recalculate_buyer_risk(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    customer_user_id = payload.get("customer_user_id")
    if not customer_user_id:
        return HandlerResult.ok()
    await gateway.request_risk_recalculation("user", str(customer_user_id))
    return HandlerResult.ok()


async def recalculate_product_ranking(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    await gateway.request_ranking_recalculation(_product_ids(payload, aggregate_id))
    return HandlerResult.ok()


async def recalculate_inventory(
    gateway: PlatformGateway,
    event_type: str,
    payload: dict,
    aggregate_id: str,
    store_id: str | None,
) -> HandlerResult:
    await gateway.request_inventory_recalculation(_product_ids(payload, aggregate_id))
    return HandlerResult.ok()


HANDLER_IMPLEMENTATIONS = {
    c.FINTECH_CREATE_ESCROW: create_escrow,
    c.FINTECH_UPDATE_PAYMENT_STATUS: update_payment_status,
    c.FINTECH_RELEASE_ESCROW: release_escrow,
    c.FINTECH_PROCESS_PAYOUT: process_payout,
    c.COMMERCE_DECREMENT_STOCK: decrement_stock,
    c.COMMERCE_SEND_CONFIRMATION_EMAIL: send_confirmation_email,
    c.COMMERCE_CREATE_NOTIFICATION: create_order_notification,
    c.COMMERCE_UPDATE_ORDER_STATUS: update_order_status,
    c.LOGISTICS_MARK_DELIVERED: mark_delivered,
    c.TRUST_AUDIT_LOG: audit_log,
    c.TRUST_CREATE_NOTIFICATION: create_ticket_notification,
    c.TRUST_AUTO_ASSIGN: auto_assign_ticket,
    c.RISK_RECALCULATE_SELLER: recalculate_seller_risk,
    c.RISK_RECALCULATE_BUYER: recalculate_buyer_risk,
    c.RANKING_RECALCULATE_PRODUCT: recalculate_product_ranking,
    c.INVENTORY_RECALCULATE: recalculate_inventory,
}


def build_handlers(gateway: PlatformGateway) -> dict[str, HandlerFunc]:
    """Bind the gateway into every handler, yielding name -> contract function."""
    return {
        name: partial(func, gateway)
        for name, func in HANDLER_IMPLEMENTATIONS.items()
    }
