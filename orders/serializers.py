from django.core.validators import RegexValidator
from rest_framework import serializers

from .validators import ORDER_ID_RE


class CustomerDetailsSerializer(serializers.Serializer):
    nickname = serializers.CharField(max_length=255)
    email = serializers.EmailField(required=False)
    phone = serializers.CharField(max_length=32, required=False)
    current_rank = serializers.CharField(max_length=255, required=False, allow_blank=True)
    referral_code = serializers.CharField(max_length=255, required=False, allow_blank=True)


class ItemDetailsSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=50)
    price = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)
    name = serializers.CharField(max_length=50)


class CreateTransactionSerializer(serializers.Serializer):
    order_id = serializers.CharField(
        max_length=50,
        validators=[RegexValidator(ORDER_ID_RE, "Malformed order_id")],
    )
    amount = serializers.IntegerField(min_value=1)
    payment_type = serializers.CharField(max_length=32, required=False)
    customer_details = CustomerDetailsSerializer(required=False)
    item_details = ItemDetailsSerializer(required=False)

    def validate(self, attrs):
        item = attrs.get("item_details")
        if item and item["price"] * item["quantity"] != attrs["amount"]:
            raise serializers.ValidationError(
                {"amount": "Amount must equal item price times quantity"})
        return attrs

    def build_transaction_params(self):
        """Shape validated data into the Snap create-transaction body."""
        data = self.validated_data
        params = {
            "transaction_details": {
                "order_id": data["order_id"],
                "gross_amount": data["amount"],
            },
            "credit_card": {"secure": True},
        }
        if data.get("payment_type"):
            params["enabled_payments"] = [data["payment_type"]]

        customer = data.get("customer_details")
        if customer:
            details = {"first_name": customer["nickname"]}
            if customer.get("email"):
                details["email"] = customer["email"]
            if customer.get("phone"):
                details["phone"] = customer["phone"]
            params["customer_details"] = details
            params["custom_field1"] = customer.get("current_rank", "")
            params["custom_field2"] = customer.get("referral_code", "")

        item = data.get("item_details")
        if item:
            params["item_details"] = [{
                "id": item["id"],
                "price": item["price"],
                "quantity": item["quantity"],
                "name": item["name"],
            }]
        return params
