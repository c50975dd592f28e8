from decimal import Decimal
from django.core.validators import RegexValidator
from rest_framework import serializers
from .models import PaymentRecord

MAX_AMOUNT = Decimal("1000000")

PHONE_VALIDATOR = RegexValidator(
    regex=r"^\+?\d{7,15}$",
    message="Enter a valid phone number (7-15 digits, optional leading +).",
)

# Values joined into the hash string must not contain the delimiter
SIGNED_FIELDS = ("product_info", "first_name", "email")


class PaymentInitiateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    product_info = serializers.CharField(max_length=255)
    first_name = serializers.CharField(max_length=60)
    last_name = serializers.CharField(max_length=60, required=False, allow_blank=True)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=16, validators=[PHONE_VALIDATOR])
    address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    city = serializers.CharField(max_length=60, required=False, allow_blank=True)
    state = serializers.CharField(max_length=60, required=False, allow_blank=True)
    country = serializers.CharField(max_length=60, required=False, allow_blank=True)
    zip_code = serializers.CharField(max_length=16, required=False, allow_blank=True)
    payment_method = serializers.CharField(max_length=16, required=False, allow_blank=True)

    def validate_amount(self, v: Decimal):
        if v <= 0 or v > MAX_AMOUNT:
            raise serializers.ValidationError("Invalid amount. Must be greater than 0 and at most 1,000,000.")
        return v

    def validate(self, attrs):
        errors = {f: "Must not contain '|'." for f in SIGNED_FIELDS if "|" in str(attrs.get(f, ""))}
        if errors:
            raise serializers.ValidationError(errors)
        return attrs


class PaymentRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentRecord
        fields = [
            "id", "txn_id", "amount", "currency", "product_info", "payment_method",
            "status", "server_verification", "metadata", "settled_at",
            "created", "updated",
        ]
        read_only_fields = fields


class CheckoutResponseSchema(serializers.Serializer):
    payment_id = serializers.IntegerField()
    txnid = serializers.CharField()
    action = serializers.URLField()
    params = serializers.DictField(child=serializers.CharField(allow_blank=True))


class VerifyResponseSchema(serializers.Serializer):
    txnid = serializers.CharField()
    status = serializers.CharField()
    payment_id = serializers.IntegerField()
    server_verification = serializers.CharField()
