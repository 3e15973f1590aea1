import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from urllib.parse import quote

import midtransclient
import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .exceptions import OrderNotFoundUpstream, UpstreamUnavailable

logger = logging.getLogger(__name__)

SANDBOX_API_BASE = "https://api.sandbox.midtrans.com"
PRODUCTION_API_BASE = "https://api.midtrans.com"


@dataclass(frozen=True)
class GatewayConfig:
    server_key: str
    client_key: str = ""
    is_production: bool = False
    api_base: str = ""
    timeout: float = 10.0

    @classmethod
    def from_settings(cls):
        server_key = getattr(settings, "MIDTRANS_SERVER_KEY", "")
        if not server_key:
            raise ImproperlyConfigured("MIDTRANS_SERVER_KEY is not set")
        return cls(
            server_key=server_key,
            client_key=getattr(settings, "MIDTRANS_CLIENT_KEY", ""),
            is_production=bool(getattr(settings, "MIDTRANS_IS_PRODUCTION", False)),
            api_base=getattr(settings, "MIDTRANS_API_BASE", ""),
            timeout=float(getattr(settings, "MIDTRANS_TIMEOUT", 10)),
        )

    @property
    def base_url(self) -> str:
        if self.api_base:
            return self.api_base.rstrip("/")
        return PRODUCTION_API_BASE if self.is_production else SANDBOX_API_BASE


@dataclass(frozen=True)
class AuthoritativeStatus:
    vendor_status: str
    fraud_status: str = ""
    gross_amount: Decimal | None = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)


def _parse_amount(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise UpstreamUnavailable(f"Malformed gross_amount from gateway: {value!r}") from exc


class MidtransClient:
    """Outbound calls to the Midtrans gateway.

    Status queries go straight to the REST API so the request timeout can be
    enforced; Snap tokens are issued through the `midtransclient` SDK.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

    def fetch_authoritative_status(self, order_id: str) -> AuthoritativeStatus:
        """Ask the gateway for the current status of `order_id`.

        Raises UpstreamUnavailable on network errors, timeouts and upstream
        failures, and OrderNotFoundUpstream if the gateway has no record.
        """
        url = f"{self.config.base_url}/v2/{quote(order_id, safe='')}/status"
        try:
            response = requests.get(
                url,
                auth=(self.config.server_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout as exc:
            logger.warning("Midtrans status query timed out for order %s", order_id)
            raise UpstreamUnavailable("Payment gateway timed out") from exc
        except requests.exceptions.RequestException as exc:
            logger.exception("Midtrans status query failed for order %s", order_id)
            raise UpstreamUnavailable(str(exc)) from exc

        if response.status_code == 404:
            raise OrderNotFoundUpstream(order_id)
        if response.status_code >= 400:
            logger.error(
                "Midtrans status query for order %s returned HTTP %s",
                order_id, response.status_code,
            )
            raise UpstreamUnavailable(f"Payment gateway returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Payment gateway returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise UpstreamUnavailable("Payment gateway returned an unexpected body")

        # Midtrans reports most errors with HTTP 200 and a status_code field
        status_code = str(body.get("status_code") or "")
        if status_code == "404":
            raise OrderNotFoundUpstream(order_id)
        if status_code[:1] in ("4", "5"):
            logger.error(
                "Midtrans status query for order %s failed: %s %s",
                order_id, status_code, body.get("status_message", ""),
            )
            raise UpstreamUnavailable(body.get("status_message") or f"Gateway status {status_code}")

        vendor_status = body.get("transaction_status")
        if not vendor_status:
            raise UpstreamUnavailable("Payment gateway response has no transaction_status")

        return AuthoritativeStatus(
            vendor_status=vendor_status,
            fraud_status=body.get("fraud_status") or "",
            gross_amount=_parse_amount(body.get("gross_amount")),
            raw=body,
        )

    def create_snap_transaction(self, params: dict) -> dict:
        """Create a Snap transaction and return the gateway response.

        The response holds `token` and `redirect_url`.
        """
        snap = midtransclient.Snap(
            is_production=self.config.is_production,
            server_key=self.config.server_key,
            client_key=self.config.client_key,
        )
        try:
            return snap.create_transaction(params)
        except Exception as exc:
            order_id = params.get("transaction_details", {}).get("order_id")
            logger.exception("Failed to create Midtrans transaction for order %s", order_id)
            raise UpstreamUnavailable(str(exc) or "Failed to create transaction") from exc
