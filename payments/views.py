# payments/views.py
import json
import logging
from typing import Any, Dict
from urllib.parse import urlencode

from django.conf import settings
from django.http import HttpResponseRedirect
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator
from rest_framework.views import APIView
from rest_framework.generics import ListAPIView, RetrieveAPIView
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated, IsAdminUser, AllowAny
from rest_framework.response import Response
from rest_framework.exceptions import APIException, NotFound, ValidationError
from rest_framework import status

from drf_spectacular.utils import extend_schema, OpenApiResponse

from core.logging import make_gateway_logger
from notifications.utils import send_payment_receipt
from .models import PaymentRecord, PaymentAlreadySettled
from .serializers import (
    PaymentInitiateSerializer,
    PaymentRecordSerializer,
    CheckoutResponseSchema,
    VerifyResponseSchema,
)
from .payu import (
    GatewayConfig,
    GatewayConfigError,
    build_checkout_params,
    check_connectivity,
    connectivity_recommendations,
    format_amount,
    generate_txn_id,
    map_callback_status,
    verify_response_signature,
    verify_with_gateway,
)

logger = logging.getLogger(__name__)


class InvalidSignature(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid payment signature."
    default_code = "invalid_signature"


class PaymentConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Payment has already been settled with a different status."
    default_code = "already_settled"


# ---- helpers ----------------------------------------------------------------

def _to_plain_dict(maybe_mapping: Any) -> Dict[str, str]:
    # QueryDict is a dict too; its items() yields the last value per key
    if isinstance(maybe_mapping, dict):
        return {k: ("" if v is None else str(v)) for k, v in maybe_mapping.items()}
    if isinstance(maybe_mapping, (bytes, bytearray, str)):
        try:
            parsed = json.loads(maybe_mapping)
        except ValueError:
            return {}
        return _to_plain_dict(parsed) if isinstance(parsed, dict) else {}
    return {}


def _verify_on_gateway(payment: PaymentRecord, config: GatewayConfig) -> str:
    result = verify_with_gateway(config, payment.txn_id, log_fn=make_gateway_logger(payment.user))
    outcome = payment.record_server_verification(result)
    if outcome != PaymentRecord.VERIFICATION_CONFIRMED:
        logger.warning("PayU server verification %s for transaction %s", outcome, payment.txn_id)
    return outcome


def _settle_callback(payload: Dict[str, str]) -> PaymentRecord:
    """
    Authenticate a gateway callback and settle the matching payment.

    The status field is only trusted after the reverse hash matches. A fresh
    success is re-checked server-to-server; that check can flag the record
    but never changes its status.
    """
    txnid = payload.get("txnid")
    if not txnid:
        raise ValidationError({"txnid": "Transaction ID is required."})

    config = GatewayConfig.from_settings()
    log = make_gateway_logger()

    if not verify_response_signature(config, payload):
        logger.error("Hash verification failed for transaction %s", txnid)
        log("in", "callback", request=payload, status_code=401, txn_id=txnid, error="invalid signature")
        raise InvalidSignature()
    log("in", "callback", request=payload, status_code=200, txn_id=txnid)

    try:
        payment = PaymentRecord.objects.get(txn_id=txnid)
    except PaymentRecord.DoesNotExist:
        raise NotFound("Payment record not found.")

    new_status = map_callback_status(payload.get("status"))
    try:
        changed = payment.settle(new_status, payload)
    except PaymentAlreadySettled as e:
        logger.warning("%s", e)
        raise PaymentConflict()

    if changed:
        logger.info("Payment %s settled as %s", txnid, new_status)
        if new_status == PaymentRecord.STATUS_SUCCESS:
            _verify_on_gateway(payment, config)
            payer_email = (payment.metadata or {}).get("email")
            if payer_email:
                send_payment_receipt(payer_email, payment)
    return payment


def _result_redirect(page: str, params: Dict[str, str]) -> HttpResponseRedirect:
    return HttpResponseRedirect(f"{settings.FRONTEND_URL}/payment/{page}?{urlencode(params)}")


# ---- endpoints ---------------------------------------------------------------

@extend_schema(
    description="Create a pending payment and return the signed PayU form fields.",
    request=PaymentInitiateSerializer,
    responses={
        201: CheckoutResponseSchema,
        400: OpenApiResponse(description="Validation error"),
        500: OpenApiResponse(description="Payment gateway not configured"),
    },
)
class PaymentInitiateView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = PaymentInitiateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        try:
            config = GatewayConfig.from_settings()
        except GatewayConfigError:
            logger.error("PayU configuration missing; refusing to initiate payment")
            return Response({"detail": "Payment gateway is not configured."},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        amount = format_amount(data["amount"])
        metadata = {
            k: data.get(k, "")
            for k in ("first_name", "last_name", "email", "phone", "address", "city", "state", "country", "zip_code")
        }
        payment = PaymentRecord.objects.create(
            user=request.user,
            txn_id=generate_txn_id(),
            amount=amount,
            currency=config.currency,
            product_info=data["product_info"],
            payment_method=data.get("payment_method", ""),
            metadata=metadata,
        )

        params = build_checkout_params(
            config,
            txnid=payment.txn_id,
            amount=amount,
            productinfo=payment.product_info,
            firstname=data["first_name"],
            lastname=data.get("last_name", ""),
            email=data["email"],
            phone=data["phone"],
            udfs=[str(payment.pk)],
            address=metadata,
            payment_method=payment.payment_method,
        )
        make_gateway_logger(request.user)("out", "/_payment", request=params, status_code=201, txn_id=payment.txn_id)
        logger.info("Initiated payment %s for user #%s", payment.txn_id, request.user.pk)

        return Response({
            "payment_id": payment.pk,
            "txnid": payment.txn_id,
            "action": config.payment_url,
            "params": params,
        }, status=status.HTTP_201_CREATED)


@method_decorator(csrf_exempt, name="dispatch")
class PaymentCallbackView(APIView):
    """
    PayU surl/furl target. The browser arrives here from the gateway with a
    form post (or a query string); we settle and bounce to the frontend.
    """
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = []
    parser_classes = [FormParser, MultiPartParser, JSONParser]

    @extend_schema(exclude=True)
    def post(self, request):
        return self._handle(_to_plain_dict(request.data))

    @extend_schema(exclude=True)
    def get(self, request):
        return self._handle(_to_plain_dict(request.query_params))

    def _handle(self, payload):
        txnid = payload.get("txnid", "")
        try:
            payment = _settle_callback(payload)
        except InvalidSignature:
            return _result_redirect("failure", {"txnid": txnid, "error": "invalid_signature"})
        except NotFound:
            return _result_redirect("failure", {"txnid": txnid, "error": "unknown_transaction"})
        except ValidationError:
            return _result_redirect("failure", {"error": "missing_transaction"})
        except PaymentConflict:
            payment = PaymentRecord.objects.get(txn_id=txnid)
        except GatewayConfigError:
            logger.exception("PayU callback received but gateway is not configured")
            return _result_redirect("failure", {"txnid": txnid, "error": "processing_failed"})

        page = "success" if payment.status == PaymentRecord.STATUS_SUCCESS else "failure"
        return _result_redirect(page, {"txnid": payment.txn_id, "status": payment.status})


@extend_schema(
    description="Verify a PayU response payload and settle the matching payment.",
    request=None,
    responses={
        200: VerifyResponseSchema,
        400: OpenApiResponse(description="Transaction ID missing"),
        401: OpenApiResponse(description="Invalid payment signature"),
        404: OpenApiResponse(description="Payment record not found"),
        409: OpenApiResponse(description="Already settled with a different status"),
    },
)
class PaymentVerifyView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def post(self, request):
        try:
            payment = _settle_callback(_to_plain_dict(request.data))
        except GatewayConfigError:
            logger.error("PayU configuration missing; cannot verify payment")
            return Response({"detail": "Payment gateway is not configured."},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({
            "txnid": payment.txn_id,
            "status": payment.status,
            "payment_id": payment.pk,
            "server_verification": payment.server_verification,
        })


@extend_schema(description="List the authenticated user's payments (most recent first).")
class PaymentListView(ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = PaymentRecordSerializer
    filterset_fields = ["status", "currency", "server_verification"]
    search_fields = ["txn_id", "product_info"]
    ordering_fields = ["created", "amount"]

    def get_queryset(self):
        return PaymentRecord.objects.filter(user=self.request.user).order_by("-created")


@extend_schema(description="One of the authenticated user's payments, by transaction id.")
class PaymentDetailView(RetrieveAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = PaymentRecordSerializer
    lookup_field = "txn_id"

    def get_queryset(self):
        return PaymentRecord.objects.filter(user=self.request.user)


@extend_schema(
    description="Probe PayU endpoints and report which gateway settings are present (admin only).",
    request=None,
    responses={200: OpenApiResponse(description="Connectivity report")},
)
class GatewayDiagnosticsView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        connectivity = check_connectivity()
        base = getattr(settings, "APP_BASE_URL", "")
        env = {
            "merchant_key": bool(getattr(settings, "PAYU_MERCHANT_KEY", "")),
            "merchant_salt": bool(getattr(settings, "PAYU_MERCHANT_SALT", "")),
            "app_base_url": bool(base) and "localhost" not in base and "127.0.0.1" not in base,
            "mode": str(getattr(settings, "PAYU_MODE", "TEST")).upper(),
        }
        make_gateway_logger(request.user)("out", "connectivity", response={"results": connectivity}, status_code=200)
        return Response({
            "connectivity": connectivity,
            "environment": env,
            "recommendations": connectivity_recommendations(connectivity, env),
        })
