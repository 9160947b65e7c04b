import re

from django.conf import settings
from rest_framework import serializers

from .models import Transaction

PHONE_PATTERN = re.compile(r"^254\d{9}$")


def normalize_phone(value):
    """
    Brings 0712345678, +254 712 345 678 and 712345678 to 254712345678.
    Anything else is returned digits-only and left for validation to reject.
    """
    cleaned = re.sub(r"\D", "", str(value))
    if cleaned.startswith("0"):
        return "254" + cleaned[1:]
    if cleaned.startswith("254"):
        return cleaned
    if len(cleaned) == 9:
        return "254" + cleaned
    return cleaned


def parse_code(value):
    """Gateway codes arrive as 0, "0", "1032" or 1032."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class AliasedFieldsMixin:
    """
    Accepts alternate input keys for a field, e.g. the gateway's
    CamelCase names or the form's "msisdn".
    """

    field_aliases = {}

    def to_internal_value(self, data):
        if hasattr(data, "keys"):
            normalized = {key: data[key] for key in data.keys()}
            for alias, field_name in self.field_aliases.items():
                if alias in normalized and normalized.get(field_name) in (None, ""):
                    normalized[field_name] = normalized[alias]
            data = normalized
        return super().to_internal_value(data)


class InitiatePaymentSerializer(AliasedFieldsMixin, serializers.Serializer):
    field_aliases = {"msisdn": "phone", "phone_number": "phone"}

    phone = serializers.CharField(
        max_length=20, help_text="M-Pesa number, e.g. 0712345678 or 254712345678"
    )
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    email = serializers.EmailField()
    reference = serializers.CharField(
        max_length=100, help_text="Caller generated reference, unique per payment."
    )

    def validate_phone(self, value):
        phone = normalize_phone(value)
        if not PHONE_PATTERN.match(phone):
            raise serializers.ValidationError(
                "Invalid phone number. Use format: 0712345678 or 254712345678"
            )
        return phone

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        if value < settings.PAYMENT_MIN_AMOUNT:
            raise serializers.ValidationError(
                f"Amount must be at least KES {settings.PAYMENT_MIN_AMOUNT}"
            )
        return value

    def validate_reference(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("This field may not be blank.")
        return value


class StatusQuerySerializer(AliasedFieldsMixin, serializers.Serializer):
    field_aliases = {"request_id": "transaction_request_id"}

    transaction_request_id = serializers.CharField(
        max_length=100, help_text="Request id returned by the initiate endpoint."
    )


class WebhookSerializer(AliasedFieldsMixin, serializers.Serializer):
    field_aliases = {
        "ResponseCode": "response_code",
        "ResultCode": "response_code",
        "ResponseDescription": "description",
        "ResultDesc": "description",
        "MerchantRequestID": "merchant_request_id",
        "CheckoutRequestID": "checkout_request_id",
        "TransactionID": "transaction_id",
        "TransactionAmount": "amount",
        "TransactionReceipt": "receipt",
        "TransactionDate": "date",
        "TransactionReference": "reference",
        "Msisdn": "phone",
    }

    response_code = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    merchant_request_id = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=100
    )
    checkout_request_id = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=100
    )
    transaction_id = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=100
    )
    amount = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    receipt = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=100
    )
    date = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=50
    )
    reference = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=100
    )
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_response_code(self, value):
        code = parse_code(value)
        if code is None:
            raise serializers.ValidationError("Response code must be numeric.")
        return code

    def validate_phone(self, value):
        if not value:
            return value
        return normalize_phone(value)


class TransactionStatusSerializer(serializers.ModelSerializer):
    request_id = serializers.CharField(source="transaction_request_id")
    description = serializers.CharField(source="result_description", allow_null=True)
    receipt = serializers.CharField(source="receipt_number", allow_null=True)

    class Meta:
        model = Transaction
        fields = [
            "request_id",
            "status",
            "result_code",
            "description",
            "receipt",
            "amount",
            "currency",
            "phone",
            "reference",
            "merchant_request_id",
            "checkout_request_id",
            "transaction_id",
            "transaction_date",
            "created_at",
            "updated_at",
            "completed_at",
        ]
        read_only_fields = fields
