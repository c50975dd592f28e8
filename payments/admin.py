from __future__ import annotations

from django.contrib import admin, messages

from .models import PaymentRecord
from .payu import GatewayConfig, GatewayConfigError, verify_with_gateway
from core.logging import make_gateway_logger


def _mask_email(s: str | None) -> str:
    s = str(s or "")
    name, at, domain = s.partition("@")
    return f"{name[:2]}***@{domain}" if at else "****"


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    list_display = (
        "txn_id",
        "user",
        "amount",
        "currency",
        "status",
        "server_verification",
        "payer_email",
        "created",
        "settled_at",
    )
    search_fields = ("txn_id", "product_info", "user__email")
    list_filter = ("status", "server_verification", "currency", "created")
    date_hierarchy = "created"
    ordering = ("-created",)

    readonly_fields = (
        "txn_id",
        "user",
        "amount",
        "currency",
        "product_info",
        "payment_method",
        "status",
        "metadata",
        "callback_payload",
        "server_verification",
        "server_verification_payload",
        "settled_at",
        "created",
        "updated",
    )

    actions = ("admin_reverify",)

    @admin.display(description="Payer")
    def payer_email(self, obj: PaymentRecord) -> str:
        return _mask_email((obj.metadata or {}).get("email"))

    @admin.action(description="Re-verify with gateway")
    def admin_reverify(self, request, queryset):
        try:
            config = GatewayConfig.from_settings()
        except GatewayConfigError as e:
            self.message_user(request, str(e), level=messages.ERROR)
            return
        checked = 0
        for payment in queryset.filter(status=PaymentRecord.STATUS_SUCCESS):
            result = verify_with_gateway(config, payment.txn_id, log_fn=make_gateway_logger(request.user))
            payment.record_server_verification(result)
            checked += 1
        self.message_user(request, f"Re-verified {checked} successful payment(s).", level=messages.INFO)
