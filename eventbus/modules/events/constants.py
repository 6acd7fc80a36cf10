"""Event types, the static handler map, and event bus defaults."""

from __future__ import annotations

from eventbus.models.enums import EventStatus

# Event type strings accepted from producers
EVENT_ORDER_CREATED = "order.created"
EVENT_ORDER_DELIVERED = "order.delivered"
EVENT_ORDER_CANCELLED = "order.cancelled"
EVENT_ORDER_COMPLETED = "order.completed"
EVENT_PAYMENT_PAID = "payment.paid"
EVENT_DELIVERY_DELIVERED = "delivery.delivered"
EVENT_DELIVERY_CONFIRMED = "delivery.confirmed"
EVENT_PAYOUT_REQUESTED = "payout.requested"
EVENT_TICKET_CREATED = "ticket.created"
EVENT_REVIEW_ADDED = "review.added"
EVENT_RETURN_PROCESSED = "return.processed"
EVENT_STOCK_UPDATED = "stock.updated"

# Handler names, grouped by the subsystem they call into
FINTECH_CREATE_ESCROW = "fintech.create_escrow"
FINTECH_UPDATE_PAYMENT_STATUS = "fintech.update_payment_status"
FINTECH_RELEASE_ESCROW = "fintech.release_escrow"
FINTECH_PROCESS_PAYOUT = "fintech.process_payout"
COMMERCE_DECREMENT_STOCK = "commerce.decrement_stock"
COMMERCE_SEND_CONFIRMATION_EMAIL = "commerce.send_confirmation_email"
COMMERCE_CREATE_NOTIFICATION = "commerce.create_notification"
COMMERCE_UPDATE_ORDER_STATUS = "commerce.update_order_status"
LOGISTICS_MARK_DELIVERED = "logistics.mark_delivered"
TRUST_AUDIT_LOG = "trust.audit_log"
TRUST_CREATE_NOTIFICATION = "trust.create_notification"
TRUST_AUTO_ASSIGN = "trust.auto_assign"
RISK_RECALCULATE_SELLER = "risk.recalculate_seller"
RISK_RECALCULATE_BUYER = "risk.recalculate_buyer"
RANKING_RECALCULATE_PRODUCT = "ranking.recalculate_product"
INVENTORY_RECALCULATE = "inventory.recalculate"

# event_type -> ordered handler names. Order matters: ledger handlers run
# before the notifications that reference them, audit runs last.
HANDLER_MAP: dict[str, tuple[str, ...]] = {
    EVENT_ORDER_CREATED: (
        FINTECH_CREATE_ESCROW,
        COMMERCE_DECREMENT_STOCK,
        COMMERCE_SEND_CONFIRMATION_EMAIL,
        COMMERCE_CREATE_NOTIFICATION,
    ),
    EVENT_PAYMENT_PAID: (
        FINTECH_UPDATE_PAYMENT_STATUS,
        COMMERCE_UPDATE_ORDER_STATUS,
    ),
    EVENT_DELIVERY_DELIVERED: (
        LOGISTICS_MARK_DELIVERED,
        FINTECH_RELEASE_ESCROW,
    ),
    EVENT_DELIVERY_CONFIRMED: (
        FINTECH_RELEASE_ESCROW,
        TRUST_AUDIT_LOG,
    ),
    EVENT_PAYOUT_REQUESTED: (
        FINTECH_PROCESS_PAYOUT,
        TRUST_AUDIT_LOG,
    ),
    EVENT_TICKET_CREATED: (
        TRUST_CREATE_NOTIFICATION,
        TRUST_AUTO_ASSIGN,
    ),
    EVENT_ORDER_DELIVERED: (
        RISK_RECALCULATE_SELLER,
    ),
    EVENT_ORDER_CANCELLED: (
        RISK_RECALCULATE_BUYER,
        RISK_RECALCULATE_SELLER,
    ),
    EVENT_ORDER_COMPLETED: (
        RANKING_RECALCULATE_PRODUCT,
        RISK_RECALCULATE_SELLER,
        INVENTORY_RECALCULATE,
    ),
    EVENT_REVIEW_ADDED: (
        RANKING_RECALCULATE_PRODUCT,
    ),
    EVENT_RETURN_PROCESSED: (
        RANKING_RECALCULATE_PRODUCT,
        RISK_RECALCULATE_SELLER,
        RISK_RECALCULATE_BUYER,
        INVENTORY_RECALCULATE,
    ),
    EVENT_STOCK_UPDATED: (
        INVENTORY_RECALCULATE,
    ),
}

# A dispatch may claim an event only from these statuses.
# MAX_RETRIES_EXCEEDED is included for manual replays through ingestion;
# the retry sweep only ever selects FAILED.
CLAIMABLE_STATUSES: tuple[EventStatus, ...] = (
    EventStatus.PENDING,
    EventStatus.FAILED,
    EventStatus.MAX_RETRIES_EXCEEDED,
)

# Operator requeue is allowed from these statuses
REQUEUEABLE_STATUSES: tuple[EventStatus, ...] = (
    EventStatus.FAILED,
    EventStatus.MAX_RETRIES_EXCEEDED,
)

IDEMPOTENCY_KEY_SEPARATOR = ":"
STALE_DISPATCH_ERROR = "Dispatch timed out while processing"
UNKNOWN_HANDLER_ERROR = "Unknown error"

# Ingestion outcome reasons
REASON_ALREADY_COMPLETED = "already_completed"
REASON_IN_PROGRESS = "in_progress"
