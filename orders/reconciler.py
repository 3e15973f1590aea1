"""Reconcile gateway notifications with local order state.

A notification only triggers work: the target status is always computed from
the gateway's authoritative answer, never from the notification body. Status
changes go through a conditional update on `Order.version` and are recorded
in the idempotency ledger inside the same transaction.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import (
    AmountMismatch,
    ConcurrentUpdateConflict,
    DuplicateEvent,
    InvalidTransition,
    OrderNotFound,
)
from .ledger import IdempotencyLedger
from .models import Order

logger = logging.getLogger(__name__)

OUTCOME_APPLIED = "applied"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_DUPLICATE = "duplicate"

# Midtrans transaction_status -> local status; capture depends on fraud_status
VENDOR_STATUS_MAP = {
    "pending": Order.STATUS_PENDING,
    "settlement": Order.STATUS_PAID,
    "expire": Order.STATUS_EXPIRED,
    "cancel": Order.STATUS_CANCELLED,
    "deny": Order.STATUS_DENIED,
    "refund": Order.STATUS_REFUNDED,
}

ALLOWED_TRANSITIONS = {
    Order.STATUS_CREATED: {
        Order.STATUS_PENDING,
        Order.STATUS_PAID,
        Order.STATUS_PENDING_REVIEW,
        Order.STATUS_EXPIRED,
        Order.STATUS_CANCELLED,
        Order.STATUS_DENIED,
    },
    Order.STATUS_PENDING: {
        Order.STATUS_PAID,
        Order.STATUS_PENDING_REVIEW,
        Order.STATUS_EXPIRED,
        Order.STATUS_CANCELLED,
        Order.STATUS_DENIED,
    },
    Order.STATUS_PENDING_REVIEW: {
        Order.STATUS_PAID,
        Order.STATUS_CANCELLED,
        Order.STATUS_DENIED,
    },
    Order.STATUS_PAID: {Order.STATUS_REFUNDED},
}


def target_status(vendor_status, fraud_status=""):
    """Map an authoritative gateway status to a local order status.

    Returns None for statuses that have no local meaning.
    """
    if vendor_status == "capture":
        if fraud_status == "challenge":
            return Order.STATUS_PENDING_REVIEW
        if fraud_status in ("", "accept"):
            return Order.STATUS_PAID
        if fraud_status == "deny":
            return Order.STATUS_DENIED
        return None
    return VENDOR_STATUS_MAP.get(vendor_status)


def is_allowed(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, ())


@dataclass(frozen=True)
class ReconcileResult:
    outcome: str
    order_id: str
    event_id: str
    previous_status: str
    status: str

    @property
    def message(self):
        if self.outcome == OUTCOME_APPLIED:
            return (
                f"Order {self.order_id} moved from "
                f"{self.previous_status} to {self.status}"
            )
        if self.outcome == OUTCOME_DUPLICATE:
            return f"Notification {self.event_id} already processed"
        return f"Order {self.order_id} is {self.status}"


class Reconciler:
    """Apply one notification event to its order, at most once."""

    def __init__(self, gateway, ledger=None, create_missing=False):
        self.gateway = gateway
        self.ledger = ledger or IdempotencyLedger()
        self.create_missing = create_missing

    def handle(self, event):
        try:
            return self._attempt(event)
        except ConcurrentUpdateConflict:
            logger.info(
                "Order %s changed while applying event %s, retrying once",
                event.order_id, event.event_id,
            )
            return self._attempt(event)

    def _attempt(self, event):
        authoritative = None
        try:
            order = Order.objects.get(order_id=event.order_id)
        except Order.DoesNotExist:
            if not self.create_missing:
                logger.warning(
                    "Notification %s for unknown order %s",
                    event.event_id, event.order_id,
                )
                raise OrderNotFound(event.order_id)
            authoritative = self.gateway.fetch_authoritative_status(event.order_id)
            order = self._create_from_gateway(event.order_id, authoritative)

        if self.ledger.has_applied(event.event_id):
            return self._result(OUTCOME_DUPLICATE, event, order.status, order.status)

        if authoritative is None:
            authoritative = self.gateway.fetch_authoritative_status(event.order_id)
        if (
            event.transaction_status != authoritative.vendor_status
            or event.fraud_status != authoritative.fraud_status
        ):
            logger.info(
                "Order %s notification claimed %s/%s, gateway reports %s/%s",
                order.order_id,
                event.transaction_status, event.fraud_status or "-",
                authoritative.vendor_status, authoritative.fraud_status or "-",
            )

        self._check_amount(order, authoritative)

        # Entries are keyed on what the gateway confirmed, so a forged or stale
        # body can never use up the id of a genuine later notification.
        ledger_id = event.confirmed_event_id(
            authoritative.vendor_status, authoritative.fraud_status)

        target = target_status(authoritative.vendor_status, authoritative.fraud_status)
        if target == order.status:
            try:
                self.ledger.record_applied(ledger_id, order.order_id, target)
            except DuplicateEvent:
                return self._result(OUTCOME_DUPLICATE, event, order.status, order.status)
            return self._result(OUTCOME_UNCHANGED, event, order.status, order.status)

        if target is None or not is_allowed(order.status, target):
            logger.warning(
                "Rejected transition for order %s: %s -> %s (gateway status %s, event %s)",
                order.order_id, order.status, target,
                authoritative.vendor_status, ledger_id,
            )
            raise InvalidTransition(order.order_id, order.status, target)

        try:
            with transaction.atomic():
                updated = Order.objects.filter(
                    pk=order.pk, version=order.version,
                ).update(
                    status=target,
                    version=F("version") + 1,
                    last_vendor_status=authoritative.vendor_status,
                    last_fraud_status=authoritative.fraud_status,
                    updated_at=timezone.now(),
                )
                if not updated:
                    raise ConcurrentUpdateConflict(order.order_id)
                self.ledger.record_applied(ledger_id, order.order_id, target)
        except DuplicateEvent:
            # Another delivery of this event won; its transition stands.
            return self._result(OUTCOME_DUPLICATE, event, order.status, order.status)

        logger.info(
            "Order %s moved %s -> %s (event %s)",
            order.order_id, order.status, target, ledger_id,
        )
        return self._result(OUTCOME_APPLIED, event, order.status, target)

    def _check_amount(self, order, authoritative):
        if authoritative.gross_amount is None:
            return
        if Decimal(order.amount) != authoritative.gross_amount:
            logger.warning(
                "Order %s amount %s differs from gateway amount %s",
                order.order_id, order.amount, authoritative.gross_amount,
            )
            raise AmountMismatch(order.order_id, order.amount, authoritative.gross_amount)

    def _create_from_gateway(self, order_id, authoritative):
        amount = authoritative.gross_amount
        if amount is None:
            raise OrderNotFound(order_id)
        order, created = Order.objects.get_or_create(
            order_id=order_id,
            defaults={"amount": int(amount)},
        )
        if created:
            logger.warning("Created order %s from gateway notification", order_id)
        return order

    @staticmethod
    def _result(outcome, event, previous_status, status):
        return ReconcileResult(
            outcome=outcome,
            order_id=event.order_id,
            event_id=event.event_id,
            previous_status=previous_status,
            status=status,
        )
