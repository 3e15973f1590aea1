from decimal import Decimal
from unittest import mock

import requests
from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.db.models import F
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from rest_framework.test import APIClient

from .exceptions import (
    AmountMismatch,
    AuthenticationFailed,
    ConcurrentUpdateConflict,
    DuplicateEvent,
    InvalidPayload,
    InvalidTransition,
    OrderNotFound,
    OrderNotFoundUpstream,
    UpstreamUnavailable,
)
from .ledger import IdempotencyLedger
from .models import LedgerEntry, NotificationRecord, Order
from .payments import (
    PRODUCTION_API_BASE,
    SANDBOX_API_BASE,
    AuthoritativeStatus,
    GatewayConfig,
    MidtransClient,
)
from .reconciler import Reconciler, target_status
from .validators import compute_signature, parse_notification

SERVER_KEY = "SB-Mid-server-test"


def notification(order_id, transaction_status, **extra):
    payload = {
        "order_id": order_id,
        "transaction_id": f"tx-{order_id}",
        "transaction_status": transaction_status,
        "status_code": "200",
        "gross_amount": "10000.00",
    }
    payload.update(extra)
    return payload


def signed(payload, server_key=SERVER_KEY):
    payload["signature_key"] = compute_signature(
        payload["order_id"], payload["status_code"],
        payload["gross_amount"], server_key,
    )
    return payload


class FakeGateway:
    """Stands in for MidtransClient; `on_fetch` runs before each answer."""

    def __init__(self, vendor_status="settlement", fraud_status="",
                 gross_amount=Decimal("10000.00"), error=None, on_fetch=None):
        self.vendor_status = vendor_status
        self.fraud_status = fraud_status
        self.gross_amount = gross_amount
        self.error = error
        self.on_fetch = on_fetch
        self.calls = []

    def fetch_authoritative_status(self, order_id):
        self.calls.append(order_id)
        if self.on_fetch:
            self.on_fetch(len(self.calls))
        if self.error:
            raise self.error
        return AuthoritativeStatus(
            vendor_status=self.vendor_status,
            fraud_status=self.fraud_status,
            gross_amount=self.gross_amount,
        )


class NotificationValidatorTests(SimpleTestCase):
    def test_parses_event_and_derives_event_id_from_transaction(self):
        event = parse_notification(
            notification("ORD-1", "settlement", fraud_status="accept"))
        self.assertEqual(event.order_id, "ORD-1")
        self.assertEqual(event.transaction_status, "settlement")
        self.assertEqual(event.fraud_status, "accept")
        self.assertEqual(event.event_id, "tx-ORD-1:settlement:accept")

    def test_event_id_falls_back_to_order_id(self):
        event = parse_notification(
            {"order_id": "ORD-1", "transaction_status": "pending"})
        self.assertEqual(event.event_id, "ORD-1:pending")
        self.assertEqual(event.fraud_status, "")

    def test_event_id_distinguishes_fraud_status(self):
        challenge = parse_notification(
            notification("ORD-1", "capture", fraud_status="challenge"))
        accept = parse_notification(
            notification("ORD-1", "capture", fraud_status="accept"))
        self.assertEqual(challenge.event_id, "tx-ORD-1:capture:challenge")
        self.assertNotEqual(challenge.event_id, accept.event_id)
        self.assertEqual(
            challenge.confirmed_event_id("capture", "accept"), accept.event_id)

    def test_missing_or_malformed_order_id_is_invalid(self):
        for payload in (
            {"transaction_status": "settlement"},
            {"order_id": "", "transaction_status": "settlement"},
            {"order_id": 42, "transaction_status": "settlement"},
            {"order_id": "ORD 1; drop", "transaction_status": "settlement"},
            {"order_id": "x" * 51, "transaction_status": "settlement"},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(InvalidPayload):
                    parse_notification(payload)

    def test_missing_transaction_status_is_invalid(self):
        with self.assertRaises(InvalidPayload):
            parse_notification({"order_id": "ORD-1"})

    def test_non_object_body_is_invalid(self):
        with self.assertRaises(InvalidPayload):
            parse_notification(["ORD-1"])

    def test_valid_signature_is_accepted(self):
        payload = signed(notification("ORD-1", "settlement"))
        event = parse_notification(payload, server_key=SERVER_KEY)
        self.assertEqual(event.order_id, "ORD-1")

    def test_bad_signature_is_rejected(self):
        payload = signed(notification("ORD-1", "settlement"), server_key="other")
        with self.assertRaises(AuthenticationFailed):
            parse_notification(payload, server_key=SERVER_KEY)

    def test_tampered_amount_breaks_signature(self):
        payload = signed(notification("ORD-1", "settlement"))
        payload["gross_amount"] = "1.00"
        with self.assertRaises(AuthenticationFailed):
            parse_notification(payload, server_key=SERVER_KEY)

    def test_missing_signature_only_rejected_when_required(self):
        payload = notification("ORD-1", "settlement")
        parse_notification(payload, server_key=SERVER_KEY)
        with self.assertRaises(AuthenticationFailed):
            parse_notification(payload, server_key=SERVER_KEY, require_signature=True)


class TargetStatusTests(SimpleTestCase):
    def test_vendor_status_mapping(self):
        cases = [
            ("pending", "", Order.STATUS_PENDING),
            ("settlement", "", Order.STATUS_PAID),
            ("capture", "accept", Order.STATUS_PAID),
            ("capture", "", Order.STATUS_PAID),
            ("capture", "challenge", Order.STATUS_PENDING_REVIEW),
            ("capture", "deny", Order.STATUS_DENIED),
            ("expire", "", Order.STATUS_EXPIRED),
            ("cancel", "", Order.STATUS_CANCELLED),
            ("deny", "", Order.STATUS_DENIED),
            ("refund", "", Order.STATUS_REFUNDED),
            ("authorize", "", None),
            ("partial_refund", "", None),
        ]
        for vendor, fraud, expected in cases:
            with self.subTest(vendor=vendor, fraud=fraud):
                self.assertEqual(target_status(vendor, fraud), expected)


class IdempotencyLedgerTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(order_id="ORD-L", amount=10000)
        self.ledger = IdempotencyLedger()

    def test_record_then_has_applied(self):
        self.assertFalse(self.ledger.has_applied("evt-1"))
        entry = self.ledger.record_applied("evt-1", "ORD-L", Order.STATUS_PAID)
        self.assertTrue(self.ledger.has_applied("evt-1"))
        self.assertEqual(entry.order, self.order)
        self.assertEqual(entry.provider, "midtrans")

    def test_second_record_raises_duplicate(self):
        self.ledger.record_applied("evt-1", "ORD-L", Order.STATUS_PAID)
        with self.assertRaises(DuplicateEvent):
            self.ledger.record_applied("evt-1", "ORD-L", Order.STATUS_PAID)
        self.assertEqual(LedgerEntry.objects.filter(event_id="evt-1").count(), 1)

    def test_duplicate_does_not_break_enclosing_transaction(self):
        with transaction.atomic():
            self.ledger.record_applied("evt-1", "ORD-L", Order.STATUS_PAID)
            with self.assertRaises(DuplicateEvent):
                self.ledger.record_applied("evt-1", "ORD-L", Order.STATUS_PAID)
            # queries still work after the savepoint rollback
            self.assertEqual(Order.objects.count(), 1)


class ReconcilerTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(order_id="ORD-1", amount=10000)

    def handle(self, gateway, payload, **kwargs):
        return Reconciler(gateway, **kwargs).handle(parse_notification(payload))

    def test_settlement_marks_order_paid_and_replay_is_noop(self):
        gateway = FakeGateway("settlement")
        payload = notification("ORD-1", "settlement")

        result = self.handle(gateway, payload)
        self.assertEqual(result.outcome, "applied")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.version, 1)
        self.assertEqual(self.order.last_vendor_status, "settlement")
        self.assertEqual(LedgerEntry.objects.count(), 1)

        replay = self.handle(gateway, payload)
        self.assertEqual(replay.outcome, "duplicate")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.version, 1)
        self.assertEqual(LedgerEntry.objects.count(), 1)
        # the replay was answered from the ledger, not re-verified
        self.assertEqual(len(gateway.calls), 1)

    def test_expired_order_rejects_late_settlement(self):
        Order.objects.create(order_id="ORD-2", amount=10000)
        self.handle(FakeGateway("expire"), notification("ORD-2", "expire"))
        order = Order.objects.get(order_id="ORD-2")
        self.assertEqual(order.status, Order.STATUS_EXPIRED)

        # upstream still reports expire: nothing to do
        result = self.handle(
            FakeGateway("expire"),
            notification("ORD-2", "settlement", transaction_id="tx-late"),
        )
        self.assertEqual(result.outcome, "unchanged")

        # upstream somehow reports settlement: rejected, order stays expired
        with self.assertLogs("orders.reconciler", level="WARNING"):
            with self.assertRaises(InvalidTransition):
                self.handle(
                    FakeGateway("settlement"),
                    notification("ORD-2", "settlement", transaction_id="tx-later"),
                )
        order.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_EXPIRED)

    def test_forged_settlement_does_not_pay_pending_order(self):
        result = self.handle(
            FakeGateway("pending"), notification("ORD-1", "settlement"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING)
        self.assertEqual(result.status, Order.STATUS_PENDING)

    def test_forged_settlement_does_not_block_genuine_settlement(self):
        forged = self.handle(
            FakeGateway("pending"), notification("ORD-1", "settlement"))
        self.assertEqual(forged.status, Order.STATUS_PENDING)
        self.assertEqual(
            list(LedgerEntry.objects.values_list("event_id", flat=True)),
            ["tx-ORD-1:pending"],
        )

        genuine = self.handle(
            FakeGateway("settlement"), notification("ORD-1", "settlement"))
        self.assertEqual(genuine.outcome, "applied")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertTrue(
            LedgerEntry.objects.filter(event_id="tx-ORD-1:settlement").exists())

    def test_capture_challenge_then_capture_accept(self):
        challenge = self.handle(
            FakeGateway("capture", "challenge"),
            notification("ORD-1", "capture", fraud_status="challenge"),
        )
        self.assertEqual(challenge.status, Order.STATUS_PENDING_REVIEW)

        accept = self.handle(
            FakeGateway("capture", "accept"),
            notification("ORD-1", "capture", fraud_status="accept"),
        )
        self.assertEqual(accept.outcome, "applied")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.version, 2)

    def test_upstream_unavailable_changes_nothing(self):
        gateway = FakeGateway(error=UpstreamUnavailable())
        with self.assertRaises(UpstreamUnavailable):
            self.handle(gateway, notification("ORD-1", "settlement"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)
        self.assertEqual(self.order.version, 0)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_unknown_order_is_not_created(self):
        gateway = FakeGateway("settlement")
        with self.assertRaises(OrderNotFound):
            self.handle(gateway, notification("ORD-404", "settlement"))
        self.assertFalse(Order.objects.filter(order_id="ORD-404").exists())
        self.assertEqual(gateway.calls, [])

    def test_unknown_order_created_from_gateway_when_enabled(self):
        gateway = FakeGateway("settlement", gross_amount=Decimal("25000.00"))
        result = self.handle(
            gateway, notification("ORD-NEW", "settlement"), create_missing=True)
        order = Order.objects.get(order_id="ORD-NEW")
        self.assertEqual(order.amount, 25000)
        self.assertEqual(order.status, Order.STATUS_PAID)
        self.assertEqual(result.outcome, "applied")
        self.assertEqual(len(gateway.calls), 1)

    def test_same_status_records_ledger_entry(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.STATUS_PENDING)
        result = self.handle(FakeGateway("pending"), notification("ORD-1", "pending"))
        self.assertEqual(result.outcome, "unchanged")
        self.assertTrue(LedgerEntry.objects.filter(event_id="tx-ORD-1:pending").exists())
        self.order.refresh_from_db()
        self.assertEqual(self.order.version, 0)

    def test_challenge_then_accept(self):
        self.handle(
            FakeGateway("capture", "challenge"),
            notification("ORD-1", "capture", fraud_status="challenge"),
        )
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING_REVIEW)

        self.handle(
            FakeGateway("settlement"),
            notification("ORD-1", "settlement"),
        )
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)

    def test_paid_order_can_be_refunded(self):
        self.handle(FakeGateway("settlement"), notification("ORD-1", "settlement"))
        self.handle(FakeGateway("refund"), notification("ORD-1", "refund"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_REFUNDED)
        self.assertEqual(self.order.version, 2)

    def test_terminal_states_never_move(self):
        vendor_statuses = [
            ("pending", ""), ("settlement", ""), ("capture", "accept"),
            ("capture", "challenge"), ("expire", ""), ("cancel", ""),
            ("deny", ""), ("refund", ""),
        ]
        terminal = [
            Order.STATUS_EXPIRED, Order.STATUS_CANCELLED,
            Order.STATUS_DENIED, Order.STATUS_REFUNDED,
        ]
        for status in terminal:
            for vendor, fraud in vendor_statuses:
                with self.subTest(status=status, vendor=vendor, fraud=fraud):
                    order_id = f"T-{status}-{vendor}-{fraud or 'none'}"
                    Order.objects.create(order_id=order_id, amount=10000, status=status)
                    try:
                        self.handle(
                            FakeGateway(vendor, fraud),
                            notification(order_id, vendor, fraud_status=fraud),
                        )
                    except InvalidTransition:
                        pass
                    self.assertEqual(Order.objects.get(order_id=order_id).status, status)

    def test_paid_only_moves_to_refunded(self):
        for vendor in ("pending", "expire", "cancel", "deny"):
            with self.subTest(vendor=vendor):
                order_id = f"P-{vendor}"
                Order.objects.create(order_id=order_id, amount=10000, status=Order.STATUS_PAID)
                with self.assertRaises(InvalidTransition):
                    self.handle(FakeGateway(vendor), notification(order_id, vendor))
                self.assertEqual(
                    Order.objects.get(order_id=order_id).status, Order.STATUS_PAID)

    def test_unknown_vendor_status_is_rejected(self):
        with self.assertRaises(InvalidTransition):
            self.handle(FakeGateway("authorize"), notification("ORD-1", "authorize"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_amount_mismatch_is_rejected(self):
        gateway = FakeGateway("settlement", gross_amount=Decimal("500.00"))
        with self.assertRaises(AmountMismatch):
            self.handle(gateway, notification("ORD-1", "settlement"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)

    def test_version_conflict_is_retried_once(self):
        def bump_first(call):
            if call == 1:
                Order.objects.filter(pk=self.order.pk).update(version=F("version") + 1)

        gateway = FakeGateway("settlement", on_fetch=bump_first)
        result = self.handle(gateway, notification("ORD-1", "settlement"))
        self.assertEqual(result.outcome, "applied")
        self.assertEqual(len(gateway.calls), 2)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.version, 2)
        self.assertEqual(LedgerEntry.objects.count(), 1)

    def test_second_version_conflict_is_surfaced(self):
        def bump_always(call):
            Order.objects.filter(pk=self.order.pk).update(version=F("version") + 1)

        gateway = FakeGateway("settlement", on_fetch=bump_always)
        with self.assertRaises(ConcurrentUpdateConflict):
            self.handle(gateway, notification("ORD-1", "settlement"))
        self.assertEqual(len(gateway.calls), 2)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_concurrent_delivery_of_same_event_applies_once(self):
        payload = notification("ORD-1", "settlement")
        event_id = parse_notification(payload).event_id

        def other_delivery_wins(call):
            # the competing delivery commits its transition and ledger entry
            if call == 1:
                Order.objects.filter(pk=self.order.pk).update(
                    status=Order.STATUS_PAID, version=F("version") + 1)
                LedgerEntry.objects.create(
                    event_id=event_id, order_id="ORD-1",
                    applied_status=Order.STATUS_PAID)

        result = self.handle(FakeGateway("settlement", on_fetch=other_delivery_wins), payload)
        self.assertEqual(result.outcome, "duplicate")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.version, 1)
        self.assertEqual(LedgerEntry.objects.filter(event_id=event_id).count(), 1)

    def test_ledger_race_rolls_back_status_update(self):
        payload = notification("ORD-1", "settlement")
        event_id = parse_notification(payload).event_id

        def ledger_taken(call):
            LedgerEntry.objects.create(
                event_id=event_id, order_id="ORD-1",
                applied_status=Order.STATUS_PAID)

        result = self.handle(FakeGateway("settlement", on_fetch=ledger_taken), payload)
        self.assertEqual(result.outcome, "duplicate")
        self.order.refresh_from_db()
        self.assertEqual(self.order.version, 0)
        self.assertEqual(self.order.status, Order.STATUS_CREATED)


@override_settings(MIDTRANS_SERVER_KEY=SERVER_KEY, MIDTRANS_API_BASE="")
class MidtransClientTests(SimpleTestCase):
    def setUp(self):
        self.client = MidtransClient(GatewayConfig.from_settings())

    def response(self, status_code=200, body=None):
        resp = mock.Mock(status_code=status_code)
        resp.json.return_value = body if body is not None else {}
        return resp

    def test_config_requires_server_key(self):
        with self.settings(MIDTRANS_SERVER_KEY=""):
            with self.assertRaises(ImproperlyConfigured):
                GatewayConfig.from_settings()

    def test_base_url_follows_environment(self):
        self.assertEqual(GatewayConfig("k").base_url, SANDBOX_API_BASE)
        self.assertEqual(GatewayConfig("k", is_production=True).base_url, PRODUCTION_API_BASE)
        self.assertEqual(
            GatewayConfig("k", api_base="http://mock.local/").base_url, "http://mock.local")

    @mock.patch("orders.payments.requests.get")
    def test_fetch_status_parses_response(self, mock_get):
        mock_get.return_value = self.response(body={
            "status_code": "200",
            "order_id": "ORD-1",
            "transaction_status": "capture",
            "fraud_status": "accept",
            "gross_amount": "10000.00",
        })
        status = self.client.fetch_authoritative_status("ORD-1")
        self.assertEqual(status.vendor_status, "capture")
        self.assertEqual(status.fraud_status, "accept")
        self.assertEqual(status.gross_amount, Decimal("10000.00"))
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], f"{SANDBOX_API_BASE}/v2/ORD-1/status")
        self.assertEqual(kwargs["auth"], (SERVER_KEY, ""))
        self.assertEqual(kwargs["timeout"], 10.0)

    @mock.patch("orders.payments.requests.get")
    def test_timeout_and_network_errors_are_unavailable(self, mock_get):
        for error in (requests.exceptions.Timeout(), requests.exceptions.ConnectionError()):
            with self.subTest(error=error):
                mock_get.side_effect = error
                with self.assertRaises(UpstreamUnavailable):
                    self.client.fetch_authoritative_status("ORD-1")

    @mock.patch("orders.payments.requests.get")
    def test_server_error_is_unavailable(self, mock_get):
        mock_get.return_value = self.response(status_code=502)
        with self.assertRaises(UpstreamUnavailable):
            self.client.fetch_authoritative_status("ORD-1")

    @mock.patch("orders.payments.requests.get")
    def test_unknown_transaction_is_not_found_upstream(self, mock_get):
        mock_get.return_value = self.response(body={
            "status_code": "404",
            "status_message": "Transaction doesn't exist.",
        })
        with self.assertRaises(OrderNotFoundUpstream):
            self.client.fetch_authoritative_status("ORD-1")
        mock_get.return_value = self.response(status_code=404)
        with self.assertRaises(OrderNotFoundUpstream):
            self.client.fetch_authoritative_status("ORD-1")

    @mock.patch("orders.payments.requests.get")
    def test_gateway_error_body_is_unavailable(self, mock_get):
        mock_get.return_value = self.response(body={
            "status_code": "401",
            "status_message": "Access denied",
        })
        with self.assertRaises(UpstreamUnavailable):
            self.client.fetch_authoritative_status("ORD-1")

    @mock.patch("orders.payments.midtransclient.Snap")
    def test_create_snap_transaction(self, mock_snap):
        mock_snap.return_value.create_transaction.return_value = {
            "token": "snap-token", "redirect_url": "https://app.sandbox.midtrans.com/x"}
        resp = self.client.create_snap_transaction(
            {"transaction_details": {"order_id": "ORD-1", "gross_amount": 10000}})
        self.assertEqual(resp["token"], "snap-token")
        mock_snap.assert_called_once_with(
            is_production=False, server_key=SERVER_KEY, client_key="")

    @mock.patch("orders.payments.midtransclient.Snap")
    def test_create_snap_transaction_failure(self, mock_snap):
        mock_snap.return_value.create_transaction.side_effect = Exception("boom")
        with self.assertRaises(UpstreamUnavailable):
            self.client.create_snap_transaction(
                {"transaction_details": {"order_id": "ORD-1", "gross_amount": 10000}})


@override_settings(MIDTRANS_SERVER_KEY=SERVER_KEY, MIDTRANS_REQUIRE_SIGNATURE=False)
class NotificationWebhookTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.order = Order.objects.create(order_id="ORD-1", amount=10000)
        self.url = reverse("orders-notification")

    def authoritative(self, vendor_status, fraud_status=""):
        return mock.patch.object(
            MidtransClient,
            "fetch_authoritative_status",
            return_value=AuthoritativeStatus(
                vendor_status=vendor_status,
                fraud_status=fraud_status,
                gross_amount=Decimal("10000.00"),
            ),
        )

    def test_settlement_notification_pays_order(self):
        with self.authoritative("settlement"):
            resp = self.client.post(
                self.url, signed(notification("ORD-1", "settlement")), format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "OK")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        record = NotificationRecord.objects.get()
        self.assertEqual(record.outcome, NotificationRecord.OUTCOME_APPLIED)
        self.assertEqual(record.order_id, "ORD-1")

    def test_replayed_notification_is_acknowledged_once(self):
        payload = notification("ORD-1", "settlement")
        with self.authoritative("settlement") as fetch:
            resp1 = self.client.post(self.url, payload, format="json")
            resp2 = self.client.post(self.url, payload, format="json")
        self.assertEqual(resp1.status_code, 200)
        self.assertEqual(resp2.status_code, 200)
        self.assertEqual(fetch.call_count, 1)
        self.assertEqual(LedgerEntry.objects.count(), 1)
        outcomes = set(NotificationRecord.objects.values_list("outcome", flat=True))
        self.assertEqual(outcomes, {"applied", "duplicate"})

    def test_webhook_alias_routes_to_same_handler(self):
        with self.authoritative("pending"):
            resp = self.client.post(
                reverse("orders-webhook"), notification("ORD-1", "pending"), format="json")
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING)

    def test_forged_callback_does_not_pay_order(self):
        with self.authoritative("pending"):
            resp = self.client.post(
                self.url, notification("ORD-1", "settlement"), format="json")
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING)

    def test_unknown_order_returns_404(self):
        with self.authoritative("settlement"):
            resp = self.client.post(
                self.url, notification("ORD-404", "settlement"), format="json")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["status"], "ERROR")
        self.assertFalse(Order.objects.filter(order_id="ORD-404").exists())

    def test_missing_order_id_returns_400(self):
        resp = self.client.post(self.url, {"transaction_status": "settlement"}, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            NotificationRecord.objects.get().outcome, NotificationRecord.OUTCOME_FAILED)

    def test_malformed_json_returns_400(self):
        resp = self.client.post(self.url, data="{not json", content_type="application/json")
        self.assertEqual(resp.status_code, 400)

    def test_bad_signature_returns_401(self):
        payload = signed(notification("ORD-1", "settlement"), server_key="wrong")
        with self.authoritative("settlement") as fetch:
            resp = self.client.post(self.url, payload, format="json")
        self.assertEqual(resp.status_code, 401)
        fetch.assert_not_called()
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)

    def test_missing_signature_rejected_when_required(self):
        with self.settings(MIDTRANS_REQUIRE_SIGNATURE=True):
            resp = self.client.post(
                self.url, notification("ORD-1", "settlement"), format="json")
        self.assertEqual(resp.status_code, 401)

    def test_upstream_unavailable_asks_for_redelivery(self):
        with mock.patch.object(
            MidtransClient, "fetch_authoritative_status",
            side_effect=UpstreamUnavailable("Payment gateway timed out"),
        ):
            resp = self.client.post(
                self.url, notification("ORD-1", "settlement"), format="json")
        self.assertEqual(resp.status_code, 503)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_invalid_transition_is_acknowledged(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.STATUS_EXPIRED)
        with self.authoritative("settlement"):
            resp = self.client.post(
                self.url, notification("ORD-1", "settlement"), format="json")
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_EXPIRED)
        self.assertEqual(
            NotificationRecord.objects.get().outcome, NotificationRecord.OUTCOME_REJECTED)

    @override_settings(ORDERS_CREATE_MISSING_ON_NOTIFICATION=True)
    def test_missing_order_created_when_enabled(self):
        with self.authoritative("settlement"):
            resp = self.client.post(
                self.url, notification("ORD-NEW", "settlement"), format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Order.objects.get(order_id="ORD-NEW").status, Order.STATUS_PAID)

    @override_settings(MIDTRANS_SERVER_KEY="")
    def test_missing_server_key_returns_503(self):
        with self.assertLogs("orders.webhooks", level="ERROR"):
            resp = self.client.post(
                self.url, notification("ORD-1", "settlement"), format="json")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["status"], "ERROR")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CREATED)
        self.assertEqual(
            NotificationRecord.objects.get().outcome, NotificationRecord.OUTCOME_FAILED)

    def test_json_with_charset_is_accepted(self):
        resp = self.client.post(
            self.url,
            data='{"order_id": "ORD-404", "transaction_status": "settlement"}',
            content_type="application/json; charset=utf-8",
        )
        self.assertEqual(resp.status_code, 404)

    def test_non_json_post_returns_415(self):
        with self.assertLogs("orders.middleware", level="INFO"):
            resp = self.client.post(self.url, data={"order_id": "ORD-1"})
        self.assertEqual(resp.status_code, 415)
        self.assertEqual(resp.json()["status"], "ERROR")
        self.assertFalse(NotificationRecord.objects.exists())

    @override_settings(ORDERS_JSON_ONLY_VIEWS=("orders-create-transaction",))
    def test_json_requirement_follows_configured_routes(self):
        resp = self.client.post(self.url, data={"order_id": "ORD-1"})
        # reaches the view, which cannot parse the form body
        self.assertEqual(resp.status_code, 400)


@override_settings(MIDTRANS_SERVER_KEY=SERVER_KEY)
class CreateTransactionTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse("orders-create-transaction")
        self.payload = {
            "order_id": "ORD-100",
            "amount": 20000,
            "customer_details": {"nickname": "Budi", "referral_code": "REF1"},
            "item_details": {"id": "gem-1", "price": 10000, "quantity": 2, "name": "Gems"},
        }

    @mock.patch("orders.payments.midtransclient.Snap")
    def test_creates_order_and_returns_token(self, mock_snap):
        create = mock_snap.return_value.create_transaction
        create.return_value = {
            "token": "snap-token",
            "redirect_url": "https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token",
        }
        resp = self.client.post(self.url, self.payload, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["token"], "snap-token")

        order = Order.objects.get(order_id="ORD-100")
        self.assertEqual(order.status, Order.STATUS_CREATED)
        self.assertEqual(order.amount, 20000)
        self.assertEqual(order.customer_name, "Budi")
        self.assertEqual(order.snap_token, "snap-token")

        params = create.call_args[0][0]
        self.assertEqual(
            params["transaction_details"], {"order_id": "ORD-100", "gross_amount": 20000})
        self.assertEqual(params["item_details"][0]["quantity"], 2)
        self.assertEqual(params["custom_field2"], "REF1")

    @mock.patch("orders.payments.midtransclient.Snap")
    def test_duplicate_order_id_returns_409(self, mock_snap):
        Order.objects.create(order_id="ORD-100", amount=20000)
        resp = self.client.post(self.url, self.payload, format="json")
        self.assertEqual(resp.status_code, 409)
        mock_snap.assert_not_called()

    @mock.patch("orders.payments.midtransclient.Snap")
    def test_gateway_failure_returns_500_without_order(self, mock_snap):
        mock_snap.return_value.create_transaction.side_effect = Exception("Access denied")
        resp = self.client.post(self.url, self.payload, format="json")
        self.assertEqual(resp.status_code, 500)
        self.assertTrue(resp.json()["error"])
        self.assertFalse(Order.objects.exists())

    def test_missing_amount_returns_400(self):
        resp = self.client.post(self.url, {"order_id": "ORD-100"}, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_amount_must_match_items(self):
        self.payload["amount"] = 5
        resp = self.client.post(self.url, self.payload, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_non_json_post_returns_415(self):
        resp = self.client.post(self.url, data={"order_id": "ORD-100"})
        self.assertEqual(resp.status_code, 415)


@override_settings(MIDTRANS_SERVER_KEY=SERVER_KEY)
class CheckTransactionTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        Order.objects.create(order_id="ORD-1", amount=10000)

    def test_returns_authoritative_and_local_status(self):
        with mock.patch.object(
            MidtransClient, "fetch_authoritative_status",
            return_value=AuthoritativeStatus(
                vendor_status="pending", raw={"transaction_status": "pending"}),
        ):
            resp = self.client.get(reverse("orders-check-transaction", args=["ORD-1"]))
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["local_status"], Order.STATUS_CREATED)
        self.assertEqual(data["transaction_details"], {"transaction_status": "pending"})

    def test_upstream_errors_map_to_status_codes(self):
        cases = [
            (OrderNotFoundUpstream("ORD-1"), 404),
            (UpstreamUnavailable(), 503),
        ]
        for error, expected in cases:
            with self.subTest(error=error):
                with mock.patch.object(
                    MidtransClient, "fetch_authoritative_status", side_effect=error):
                    resp = self.client.get(
                        reverse("orders-check-transaction", args=["ORD-1"]))
                self.assertEqual(resp.status_code, expected)


class ServiceEndpointTests(TestCase):
    def test_index_banner(self):
        resp = self.client.get(reverse("orders-index"))
        self.assertEqual(resp.status_code, 200)
        self.assertIn(b"Midtrans", resp.content)

    def test_health_check(self):
        resp = self.client.get(reverse("orders-health"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "OK")
        self.assertIn("timestamp", body)
