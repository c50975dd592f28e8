import logging

from django.conf import settings
from django.core.mail import send_mail

from .models import EmailLog

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str, kind: str) -> bool:
    # Body is not persisted: reset links are credentials.
    log = EmailLog.objects.create(to=to_email, kind=kind, subject=subject, status="queued")
    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [to_email], fail_silently=False)
        log.status = "sent"
    except Exception as e:
        logger.warning("%s email to log #%s failed: %s", kind, log.pk, e)
        log.status = "failed"
        log.error = str(e)
    finally:
        log.save(update_fields=["status", "error"])
    return log.status == "sent"


def send_password_reset_email(to_email: str, reset_link: str) -> bool:
    body = (
        "We received a request to reset your Payportal password.\n\n"
        f"Choose a new password here: {reset_link}\n\n"
        "If you didn't ask for this, you can ignore this email."
    )
    return send_email(to_email, "Reset your password", body, kind="password_reset")


def send_payment_receipt(to_email: str, payment) -> bool:
    body = (
        f"Payment received for {payment.product_info}.\n\n"
        f"Transaction: {payment.txn_id}\n"
        f"Amount: {payment.amount} {payment.currency}\n"
        f"Status: {payment.get_status_display()}\n"
    )
    return send_email(to_email, f"Receipt for {payment.txn_id}", body, kind="payment_receipt")
