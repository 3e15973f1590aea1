import logging

from django.db import IntegrityError
from rest_framework import status, views
from rest_framework.parsers import JSONParser
from rest_framework.response import Response

from .exceptions import OrderNotFoundUpstream, UpstreamUnavailable
from .models import Order
from .payments import GatewayConfig, MidtransClient
from .serializers import CreateTransactionSerializer

logger = logging.getLogger(__name__)


class CreateTransactionView(views.APIView):
    """Issue a Snap token for a new order and start tracking it locally.

    The order is stored in `created` status only after the gateway accepted
    the transaction; later status changes arrive through notifications.
    """

    parser_classes = [JSONParser]

    def post(self, request, *args, **kwargs):
        serializer = CreateTransactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order_id = data["order_id"]

        if Order.objects.filter(order_id=order_id).exists():
            return Response(
                {"error": True, "message": f"Order {order_id} already exists"},
                status=status.HTTP_409_CONFLICT,
            )

        logger.info("Create transaction request for order %s", order_id)
        client = MidtransClient(GatewayConfig.from_settings())
        try:
            transaction = client.create_snap_transaction(
                serializer.build_transaction_params()
            )
        except UpstreamUnavailable as exc:
            return Response(
                {"error": True, "message": exc.detail},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        customer = data.get("customer_details") or {}
        try:
            Order.objects.create(
                order_id=order_id,
                amount=data["amount"],
                customer_name=customer.get("nickname", ""),
                customer_email=customer.get("email", ""),
                snap_token=transaction.get("token", ""),
                redirect_url=transaction.get("redirect_url", ""),
            )
        except IntegrityError:
            return Response(
                {"error": True, "message": f"Order {order_id} already exists"},
                status=status.HTTP_409_CONFLICT,
            )

        return Response({
            "token": transaction.get("token"),
            "redirect_url": transaction.get("redirect_url"),
        })


class CheckTransactionView(views.APIView):
    """Report the gateway's authoritative status for an order.

    Read-only: local order state is only changed by notifications.
    """

    def get(self, request, order_id):
        client = MidtransClient(GatewayConfig.from_settings())
        try:
            authoritative = client.fetch_authoritative_status(order_id)
        except OrderNotFoundUpstream as exc:
            return Response(
                {"error": True, "message": exc.detail},
                status=status.HTTP_404_NOT_FOUND,
            )
        except UpstreamUnavailable as exc:
            return Response(
                {"error": True, "message": exc.detail},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        order = Order.objects.filter(order_id=order_id).first()
        return Response({
            "status": authoritative.vendor_status,
            "transaction_details": authoritative.raw,
            "local_status": order.status if order else None,
        })
