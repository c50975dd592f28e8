from __future__ import annotations

from django.apps import AppConfig
from django.conf import settings
from django.core.checks import register, Warning


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"


# ---------------------------------------------------------------------------
# System checks: surface gateway config issues early with `manage.py check`
# ---------------------------------------------------------------------------
@register()
def payments_system_checks(app_configs, **kwargs):
    messages = []

    missing = [k for k in ("PAYU_MERCHANT_KEY", "PAYU_MERCHANT_SALT") if not getattr(settings, k, "")]
    if missing:
        messages.append(
            Warning(
                "PayU credentials are missing; checkout and callback verification will refuse to run.",
                id="payments.W001",
                hint=f"Missing settings: {', '.join(missing)}",
            )
        )

    base = str(getattr(settings, "APP_BASE_URL", ""))
    if getattr(settings, "ENV", "development") == "production" and ("localhost" in base or "127.0.0.1" in base):
        messages.append(
            Warning(
                "APP_BASE_URL points at localhost in production.",
                id="payments.W002",
                hint="PayU posts surl/furl callbacks to APP_BASE_URL; set it to the public API host.",
            )
        )

    mode = str(getattr(settings, "PAYU_MODE", "TEST")).upper()
    if mode not in {"TEST", "LIVE"}:
        messages.append(
            Warning(
                f"Unknown PAYU_MODE {mode!r}; falling back to TEST.",
                id="payments.W003",
                hint="Use TEST or LIVE.",
            )
        )

    return messages
