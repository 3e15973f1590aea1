import json
import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .exceptions import InvalidPayload, InvalidTransition, ReconciliationError
from .models import NotificationRecord
from .payments import GatewayConfig, MidtransClient
from .reconciler import Reconciler
from .validators import parse_notification

logger = logging.getLogger(__name__)


def _archive(payload, outcome, event=None, detail=""):
    data = payload if isinstance(payload, dict) else {}
    order_id = event.order_id if event else data.get("order_id")
    NotificationRecord.objects.create(
        event_id=event.event_id if event else "",
        order_id=str(order_id or "")[:255],
        transaction_status=str(data.get("transaction_status") or "")[:32],
        fraud_status=str(data.get("fraud_status") or "")[:32],
        payload=payload if isinstance(payload, (dict, list)) else None,
        outcome=outcome,
        detail=detail,
    )


@csrf_exempt
@require_POST
def midtrans_notification(request):
    """Handle a Midtrans payment notification.

    Answers 200 once the notification is handled (including replays and
    stale events) and a non-200 status when the gateway should retry or the
    notification is unusable.
    """
    try:
        payload = json.loads(request.body or b"{}")
    except ValueError:
        payload = None

    event = None
    try:
        if payload is None:
            raise InvalidPayload("Malformed JSON body")
        config = GatewayConfig.from_settings()
        event = parse_notification(
            payload,
            server_key=config.server_key,
            require_signature=getattr(settings, "MIDTRANS_REQUIRE_SIGNATURE", False),
        )
        reconciler = Reconciler(
            MidtransClient(config),
            create_missing=getattr(settings, "ORDERS_CREATE_MISSING_ON_NOTIFICATION", False),
        )
        result = reconciler.handle(event)
    except ImproperlyConfigured as exc:
        logger.error("Cannot handle notification: %s", exc)
        _archive(payload, NotificationRecord.OUTCOME_FAILED, event, str(exc))
        return JsonResponse(
            {"status": "ERROR", "message": "Payment gateway is not configured"},
            status=503,
        )
    except InvalidTransition as exc:
        _archive(payload, NotificationRecord.OUTCOME_REJECTED, event, exc.detail)
        return JsonResponse({"status": "OK", "message": exc.detail})
    except ReconciliationError as exc:
        log = logger.warning if exc.retryable else logger.info
        log("Notification rejected (%s): %s", exc.status_code, exc.detail)
        _archive(payload, NotificationRecord.OUTCOME_FAILED, event, exc.detail)
        return JsonResponse(
            {"status": "ERROR", "message": exc.detail},
            status=exc.status_code,
        )

    _archive(payload, result.outcome, event, result.message)
    return JsonResponse({"status": "OK", "message": result.message})
