from django.db import IntegrityError, transaction

from .exceptions import DuplicateEvent
from .models import LedgerEntry


class IdempotencyLedger:
    """Durable record of which gateway events were already applied."""

    def __init__(self, provider="midtrans"):
        self.provider = provider

    def has_applied(self, event_id: str) -> bool:
        return LedgerEntry.objects.filter(event_id=event_id).exists()

    def record_applied(self, event_id: str, order_id: str, applied_status: str) -> LedgerEntry:
        """Insert the entry for `event_id` or raise DuplicateEvent.

        The unique index decides the race; the savepoint keeps a violation
        from breaking the caller's surrounding transaction.
        """
        try:
            with transaction.atomic():
                return LedgerEntry.objects.create(
                    provider=self.provider,
                    event_id=event_id,
                    order_id=order_id,
                    applied_status=applied_status,
                )
        except IntegrityError as exc:
            raise DuplicateEvent(event_id) from exc
