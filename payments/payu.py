# payments/payu.py
"""
PayU hosted-checkout client.

Outbound requests are signed with
    sha512(key|txnid|amount|productinfo|firstname|email|udf1|...|udf5||||||salt)
and gateway responses carry the reverse construction
    sha512(salt|status||||||udf5|...|udf1|email|firstname|productinfo|amount|txnid|key)

Credentials travel in an explicit GatewayConfig; nothing in here reads the
environment directly.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

PAYMENT_BASE_URLS = {
    "LIVE": "https://secure.payu.in",
    "TEST": "https://test.payu.in",
}
VERIFY_BASE_URLS = {
    "LIVE": "https://secure.payu.in",
    "TEST": "https://sandboxsecure.payu.in",
}
CONNECTIVITY_URLS = [
    "https://test.payu.in/_payment",
    "https://sandboxsecure.payu.in/_payment",
    "https://secure.payu.in/_payment",
]

VERIFY_COMMAND = "verify_payment"
DELIMITER = "|"
UDF_COUNT = 5
RESERVED_FIELD_COUNT = 5  # fixed empty slots between udf5 and the salt
DEFAULT_TIMEOUT = (5, 25)  # connect, read

Session = requests.Session()


class GatewayConfigError(Exception):
    """Merchant key or salt is missing; nothing may be signed."""


@dataclass(frozen=True)
class GatewayConfig:
    merchant_key: str
    merchant_salt: str = field(repr=False)
    mode: str = "TEST"
    success_url: str = ""
    failure_url: str = ""
    currency: str = "INR"
    timeout: Tuple[int, int] = DEFAULT_TIMEOUT

    def __post_init__(self):
        if not self.merchant_key or not self.merchant_salt:
            raise GatewayConfigError("PayU merchant key/salt not configured")
        mode = (self.mode or "TEST").upper()
        object.__setattr__(self, "mode", mode if mode in PAYMENT_BASE_URLS else "TEST")

    @property
    def payment_url(self) -> str:
        return f"{PAYMENT_BASE_URLS[self.mode]}/_payment"

    @property
    def verify_url(self) -> str:
        return f"{VERIFY_BASE_URLS[self.mode]}/merchant/postservice?form=2"

    @classmethod
    def from_settings(cls) -> "GatewayConfig":
        base = getattr(settings, "APP_BASE_URL", "").rstrip("/")
        return cls(
            merchant_key=getattr(settings, "PAYU_MERCHANT_KEY", ""),
            merchant_salt=getattr(settings, "PAYU_MERCHANT_SALT", ""),
            mode=getattr(settings, "PAYU_MODE", "TEST"),
            success_url=f"{base}/api/payments/callback/success/",
            failure_url=f"{base}/api/payments/callback/failure/",
            currency=getattr(settings, "PAYU_CURRENCY", "INR"),
            timeout=getattr(settings, "PAYU_TIMEOUT", DEFAULT_TIMEOUT),
        )


@dataclass
class GatewayVerification:
    reachable: bool
    verified: bool
    data: Optional[Dict] = None
    error: str = ""


# ============================================================================
# Helpers
# ============================================================================

def format_amount(amount) -> str:
    """Canonical 2dp string; the same text must be signed and posted."""
    d = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return str(d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def generate_txn_id() -> str:
    # 24 chars; PayU caps txnid at 25
    return f"PP{timezone.now().strftime('%Y%m%d%H%M%S')}{uuid.uuid4().hex[:8].upper()}"


def _digest(parts: Sequence[str]) -> str:
    return hashlib.sha512(DELIMITER.join(parts).encode("utf-8")).hexdigest()


def _udfs(values: Sequence[str]) -> List[str]:
    values = [str(v or "") for v in values]
    if len(values) > UDF_COUNT:
        raise ValueError(f"PayU accepts at most {UDF_COUNT} udf fields")
    return values + [""] * (UDF_COUNT - len(values))


# ============================================================================
# Hashes
# ============================================================================

def sign_payment_request(
    config: GatewayConfig,
    *,
    txnid: str,
    amount: str,
    productinfo: str,
    firstname: str,
    email: str,
    udfs: Sequence[str] = (),
) -> str:
    parts = [
        config.merchant_key,
        txnid,
        amount,
        productinfo,
        firstname,
        email,
        *_udfs(udfs),
        *([""] * RESERVED_FIELD_COUNT),
        config.merchant_salt,
    ]
    return _digest(parts)


def response_hash(config: GatewayConfig, payload: Mapping[str, str]) -> str:
    def f(name):
        return str(payload.get(name) or "")

    parts = [
        config.merchant_salt,
        f("status"),
        *([""] * RESERVED_FIELD_COUNT),
        *[f(f"udf{i}") for i in range(UDF_COUNT, 0, -1)],
        f("email"),
        f("firstname"),
        f("productinfo"),
        f("amount"),
        f("txnid"),
        config.merchant_key,
    ]
    return _digest(parts)


def verify_response_signature(config: GatewayConfig, payload: Mapping[str, str]) -> bool:
    supplied = str(payload.get("hash") or "").strip().lower()
    if not supplied:
        return False
    return hmac.compare_digest(response_hash(config, payload), supplied)


def command_hash(config: GatewayConfig, txnid: str, command: str = VERIFY_COMMAND) -> str:
    return _digest([config.merchant_key, command, txnid, config.merchant_salt])


def map_callback_status(raw: Optional[str]) -> str:
    s = (raw or "").strip().lower()
    if s == "success":
        return "success"
    if s in {"cancel", "cancelled"}:
        return "cancelled"
    return "failed"


# ============================================================================
# Checkout
# ============================================================================

def build_checkout_params(
    config: GatewayConfig,
    *,
    txnid: str,
    amount: str,
    productinfo: str,
    firstname: str,
    email: str,
    phone: str,
    lastname: str = "",
    udfs: Sequence[str] = (),
    address: Optional[Dict[str, str]] = None,
    payment_method: str = "",
) -> Dict[str, str]:
    """Form fields the browser posts to config.payment_url."""
    udf_values = _udfs(udfs)
    address = address or {}
    params = {
        "key": config.merchant_key,
        "txnid": txnid,
        "amount": amount,
        "productinfo": productinfo,
        "firstname": firstname,
        "lastname": lastname or "",
        "email": email,
        "phone": phone,
        "surl": config.success_url,
        "furl": config.failure_url,
        "hash": sign_payment_request(
            config,
            txnid=txnid,
            amount=amount,
            productinfo=productinfo,
            firstname=firstname,
            email=email,
            udfs=udf_values,
        ),
        "address1": address.get("address") or "",
        "city": address.get("city") or "",
        "state": address.get("state") or "",
        "country": address.get("country") or "India",
        "zipcode": address.get("zip_code") or "",
        "pg": payment_method or "",
        "enforce_paymethod": payment_method or "",
    }
    for i, value in enumerate(udf_values, start=1):
        params[f"udf{i}"] = value
    return params


# ============================================================================
# Server-to-server
# ============================================================================

def verify_with_gateway(
    config: GatewayConfig,
    txnid: str,
    *,
    log_fn: Optional[Callable[..., None]] = None,
) -> GatewayVerification:
    """
    Ask PayU for the transaction status. Single attempt; network trouble is
    reported as reachable=False and never raised.
    """
    form = {
        "key": config.merchant_key,
        "command": VERIFY_COMMAND,
        "var1": txnid,
        "hash": command_hash(config, txnid),
    }
    try:
        r = Session.post(config.verify_url, data=form, timeout=config.timeout)
        data = r.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("PayU verification unreachable for %s: %s", txnid, e)
        if log_fn:
            log_fn("out", "/merchant/postservice", request=form, status_code=0, txn_id=txnid, error=e)
        return GatewayVerification(reachable=False, verified=False, error=str(e))

    if log_fn:
        log_fn("out", "/merchant/postservice", request=form, response=data if isinstance(data, dict) else {"raw": data},
               status_code=r.status_code, txn_id=txnid)

    if not isinstance(data, dict):
        return GatewayVerification(reachable=True, verified=False, data={"raw": data})

    overall = str(data.get("status", "")).strip().lower()
    all_details = data.get("transaction_details")
    details = all_details.get(txnid) if isinstance(all_details, dict) else None
    tx_status = str(details.get("status", "")).strip().lower() if isinstance(details, dict) else ""
    verified = overall in {"1", "success"} and tx_status == "success"
    return GatewayVerification(reachable=True, verified=verified, data=data)


def check_connectivity(urls: Sequence[str] = CONNECTIVITY_URLS, timeout: Tuple[int, int] = (5, 10)) -> List[Dict]:
    results = []
    for url in urls:
        started = time.monotonic()
        try:
            r = Session.get(url, timeout=timeout, headers={"User-Agent": "Payportal-Connectivity/1.0"})
            results.append({
                "url": url,
                "status": r.status_code,
                "status_text": r.reason or "",
                "accessible": True,
                "response_time_ms": int((time.monotonic() - started) * 1000),
            })
        except requests.RequestException as e:
            results.append({
                "url": url,
                "status": 0,
                "status_text": str(e),
                "accessible": False,
                "response_time_ms": None,
            })
    return results


def connectivity_recommendations(connectivity: Sequence[Dict], env: Mapping[str, object]) -> List[str]:
    recs: List[str] = []

    accessible = [c for c in connectivity if c.get("accessible")]
    if not accessible:
        recs.append("No PayU URLs are accessible. Check your internet connection and firewall settings.")
    elif len(accessible) < len(connectivity):
        recs.append("Some PayU URLs are not accessible. This may cause intermittent issues.")

    if not env.get("merchant_key"):
        recs.append("PAYU_MERCHANT_KEY is not configured.")
    if not env.get("merchant_salt"):
        recs.append("PAYU_MERCHANT_SALT is not configured.")
    if not env.get("app_base_url"):
        recs.append("APP_BASE_URL should point at a public host so PayU can post back.")

    if any("test.payu.in" in c["url"] and c.get("accessible") for c in connectivity):
        recs.append("Use https://test.payu.in/_payment for sandbox testing.")

    if not recs:
        recs.append("All connectivity tests passed. Your PayU integration should work correctly.")
    return recs
