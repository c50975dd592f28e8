import logging
from typing import Dict, Optional

from .models import GatewayLog

logger = logging.getLogger(__name__)

MASKED_KEYS = {"email", "phone", "key", "salt", "hash", "merchant_key", "merchant_salt"}


def mask_value(val: Optional[str]) -> str:
    if not val:
        return ""
    s = str(val)
    if "@" in s:
        name, _, domain = s.partition("@")
        return (name[:2] + "***@" + domain) if name else "***@" + domain
    if s.isdigit() and len(s) >= 7:
        return f"{s[:3]}***{s[-4:]}"
    if len(s) > 6:
        return s[:3] + "***" + s[-3:]
    return "***"


def mask_payload(payload: Optional[Dict]) -> Dict:
    if not payload:
        return {}
    masked = dict(payload)
    for k in MASKED_KEYS:
        if k in masked:
            masked[k] = mask_value(masked[k])
    return masked


def make_gateway_logger(user=None):
    """
    Returns a callable that records one gateway exchange. A failing write is
    logged and dropped; it must never break the payment flow.
    """
    def _save(direction, endpoint, request=None, response=None, status_code="", txn_id=None, error=None):
        try:
            GatewayLog.objects.create(
                user=user if getattr(user, "pk", None) else None,
                direction=direction,
                endpoint=endpoint,
                txn_id=txn_id,
                request_payload=mask_payload(request),
                response_payload=mask_payload(response),
                status_code=str(status_code),
                error_message=(str(error)[:255] if error else None),
            )
        except Exception:
            logger.exception("could not write gateway log for %s", endpoint)
    return _save
