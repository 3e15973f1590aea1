import hashlib
import hmac
import re
from dataclasses import dataclass, field
from datetime import datetime

from django.utils import timezone

from .exceptions import AuthenticationFailed, InvalidPayload

# Midtrans accepts alphanumerics plus - _ ~ . and at most 50 characters
ORDER_ID_RE = re.compile(r"^[A-Za-z0-9._~-]{1,50}$")


@dataclass(frozen=True)
class NotificationEvent:
    event_id: str
    order_id: str
    source_id: str
    transaction_status: str
    fraud_status: str = ""
    received_at: datetime = field(default_factory=timezone.now)
    payload: dict = field(default_factory=dict, compare=False, repr=False)

    def confirmed_event_id(self, vendor_status, fraud_status=""):
        """Event id for the status the gateway actually reported."""
        return event_key(self.source_id, vendor_status, fraud_status)


def event_key(source_id, transaction_status, fraud_status=""):
    key = f"{source_id}:{transaction_status}"
    if fraud_status:
        key = f"{key}:{fraud_status}"
    return key


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """Return the SHA512 signature Midtrans attaches to a notification."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def _text(payload, key):
    value = payload.get(key)
    if value is None:
        return ""
    return str(value)


def parse_notification(payload, server_key=None, require_signature=False, received_at=None):
    """Validate an inbound notification body and build a NotificationEvent.

    The body's status fields are only a hint: the reconciler re-queries the
    gateway before changing any order. When the body carries a
    `signature_key` it must match, otherwise the notification is rejected.
    """
    if not isinstance(payload, dict):
        raise InvalidPayload("Notification body must be a JSON object")

    order_id = payload.get("order_id")
    if not order_id:
        raise InvalidPayload("Missing order_id")
    if not isinstance(order_id, str) or not ORDER_ID_RE.match(order_id):
        raise InvalidPayload("Malformed order_id")

    transaction_status = payload.get("transaction_status")
    if not transaction_status or not isinstance(transaction_status, str):
        raise InvalidPayload("Missing transaction_status")

    signature = payload.get("signature_key")
    if signature:
        if not server_key:
            raise AuthenticationFailed("No server key configured to verify signature")
        expected = compute_signature(
            order_id,
            _text(payload, "status_code"),
            _text(payload, "gross_amount"),
            server_key,
        )
        if not hmac.compare_digest(expected, str(signature).lower()):
            raise AuthenticationFailed()
    elif require_signature:
        raise AuthenticationFailed("Missing signature_key")

    source_id = _text(payload, "transaction_id") or order_id
    fraud_status = _text(payload, "fraud_status")

    return NotificationEvent(
        event_id=event_key(source_id, transaction_status, fraud_status),
        order_id=order_id,
        source_id=source_id,
        transaction_status=transaction_status,
        fraud_status=fraud_status,
        received_at=received_at or timezone.now(),
        payload=payload,
    )
