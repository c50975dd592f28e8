import hashlib
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch, MagicMock
from urllib.parse import urlparse, parse_qs

import requests
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import GatewayLog
from payments.apps import payments_system_checks
from payments.models import PaymentRecord, PaymentAlreadySettled
from payments.payu import (
    GatewayConfig,
    GatewayConfigError,
    GatewayVerification,
    build_checkout_params,
    command_hash,
    connectivity_recommendations,
    format_amount,
    generate_txn_id,
    map_callback_status,
    response_hash,
    sign_payment_request,
    verify_response_signature,
    verify_with_gateway,
)

User = get_user_model()

PAYU_SETTINGS = dict(
    PAYU_MERCHANT_KEY="testkey",
    PAYU_MERCHANT_SALT="testsalt",
    PAYU_MODE="TEST",
    PAYU_CURRENCY="INR",
    APP_BASE_URL="https://api.example.test",
    FRONTEND_URL="https://app.example.test",
)


def sha512(s: str) -> str:
    return hashlib.sha512(s.encode("utf-8")).hexdigest()


def gateway_reply(payload, status_code=200):
    resp = MagicMock(status_code=status_code)
    resp.json.return_value = payload
    return resp


def verified_reply(txnid):
    return gateway_reply({"status": 1, "transaction_details": {txnid: {"status": "success", "txnid": txnid}}})


def signed_callback(config, payment, status="success", **overrides):
    payload = {
        "mihpayid": "403993715531",
        "key": config.merchant_key,
        "txnid": payment.txn_id,
        "amount": format_amount(payment.amount),
        "productinfo": payment.product_info,
        "firstname": payment.metadata.get("first_name", ""),
        "email": payment.metadata.get("email", ""),
        "udf1": str(payment.pk),
        "status": status,
    }
    payload["hash"] = response_hash(config, payload)
    payload.update(overrides)
    return payload


class HashTests(SimpleTestCase):
    def setUp(self):
        self.config = GatewayConfig(merchant_key="key", merchant_salt="salt")
        self.fields = dict(
            txnid="TXN1", amount="500.00", productinfo="Widget", firstname="Asha", email="a@b.com", udfs=["7"]
        )

    def test_request_hash_layout(self):
        expected = sha512("key|TXN1|500.00|Widget|Asha|a@b.com|7" + "|" * 10 + "salt")
        self.assertEqual(sign_payment_request(self.config, **self.fields), expected)

    def test_request_hash_without_udfs_matches_documented_form(self):
        fields = dict(self.fields, udfs=())
        expected = sha512("key|TXN1|500.00|Widget|Asha|a@b.com|||||||||||salt")
        self.assertEqual(sign_payment_request(self.config, **fields), expected)

    def test_signing_is_deterministic_lowercase_hex(self):
        first = sign_payment_request(self.config, **self.fields)
        second = sign_payment_request(self.config, **self.fields)
        self.assertEqual(first, second)
        self.assertEqual(len(first), 128)
        self.assertEqual(first, first.lower())

    def test_different_salt_changes_signature(self):
        other = GatewayConfig(merchant_key="key", merchant_salt="other")
        self.assertNotEqual(
            sign_payment_request(self.config, **self.fields),
            sign_payment_request(other, **self.fields),
        )

    def test_too_many_udfs_rejected(self):
        with self.assertRaises(ValueError):
            sign_payment_request(self.config, **dict(self.fields, udfs=["1", "2", "3", "4", "5", "6"]))

    def test_response_hash_is_reverse_order(self):
        payload = {
            "status": "success", "udf1": "7", "email": "a@b.com", "firstname": "Asha",
            "productinfo": "Widget", "amount": "500.00", "txnid": "TXN1",
        }
        expected = sha512("salt|success" + "|" * 10 + "7|a@b.com|Asha|Widget|500.00|TXN1|key")
        self.assertEqual(response_hash(self.config, payload), expected)

    def test_verifier_accepts_genuine_payload(self):
        payload = {"status": "success", "txnid": "TXN1", "amount": "500.00", "email": "a@b.com"}
        payload["hash"] = response_hash(self.config, payload)
        self.assertTrue(verify_response_signature(self.config, payload))

    def test_verifier_ignores_hash_case(self):
        payload = {"status": "success", "txnid": "TXN1"}
        payload["hash"] = response_hash(self.config, payload).upper()
        self.assertTrue(verify_response_signature(self.config, payload))

    def test_verifier_rejects_other_secret(self):
        forger = GatewayConfig(merchant_key="key", merchant_salt="guessed")
        payload = {"status": "success", "txnid": "TXN1", "amount": "500.00"}
        payload["hash"] = response_hash(forger, payload)
        self.assertFalse(verify_response_signature(self.config, payload))

    def test_verifier_rejects_mutated_status(self):
        payload = {"status": "failure", "txnid": "TXN1", "amount": "500.00"}
        payload["hash"] = response_hash(self.config, payload)
        payload["status"] = "success"
        self.assertFalse(verify_response_signature(self.config, payload))

    def test_verifier_rejects_missing_hash(self):
        self.assertFalse(verify_response_signature(self.config, {"status": "success", "txnid": "TXN1"}))

    def test_command_hash(self):
        self.assertEqual(command_hash(self.config, "TXN1"), sha512("key|verify_payment|TXN1|salt"))

    def test_checkout_params_carry_signature_and_return_urls(self):
        config = GatewayConfig(
            merchant_key="key", merchant_salt="salt",
            success_url="https://api/s/", failure_url="https://api/f/",
        )
        params = build_checkout_params(
            config, txnid="TXN1", amount="500.00", productinfo="Widget",
            firstname="Asha", email="a@b.com", phone="9999999999", udfs=["7"],
        )
        self.assertEqual(params["hash"], sign_payment_request(config, **self.fields))
        self.assertEqual(params["udf1"], "7")
        self.assertEqual(params["udf5"], "")
        self.assertEqual(params["surl"], "https://api/s/")
        self.assertEqual(params["furl"], "https://api/f/")
        self.assertEqual(params["country"], "India")


class ConfigTests(SimpleTestCase):
    def test_missing_salt_fails_closed(self):
        with self.assertRaises(GatewayConfigError):
            GatewayConfig(merchant_key="key", merchant_salt="")

    def test_missing_key_fails_closed(self):
        with self.assertRaises(GatewayConfigError):
            GatewayConfig(merchant_key="", merchant_salt="salt")

    def test_salt_not_in_repr(self):
        self.assertNotIn("topsecret", repr(GatewayConfig(merchant_key="key", merchant_salt="topsecret")))

    def test_mode_urls(self):
        test = GatewayConfig(merchant_key="k", merchant_salt="s", mode="test")
        live = GatewayConfig(merchant_key="k", merchant_salt="s", mode="LIVE")
        self.assertEqual(test.payment_url, "https://test.payu.in/_payment")
        self.assertEqual(test.verify_url, "https://sandboxsecure.payu.in/merchant/postservice?form=2")
        self.assertEqual(live.payment_url, "https://secure.payu.in/_payment")
        self.assertEqual(live.verify_url, "https://secure.payu.in/merchant/postservice?form=2")

    def test_unknown_mode_falls_back_to_test(self):
        self.assertEqual(GatewayConfig(merchant_key="k", merchant_salt="s", mode="staging").mode, "TEST")

    @override_settings(**PAYU_SETTINGS)
    def test_from_settings(self):
        config = GatewayConfig.from_settings()
        self.assertEqual(config.merchant_key, "testkey")
        self.assertEqual(config.success_url, "https://api.example.test/api/payments/callback/success/")
        self.assertEqual(config.failure_url, "https://api.example.test/api/payments/callback/failure/")

    @override_settings(PAYU_MERCHANT_KEY="testkey", PAYU_MERCHANT_SALT="")
    def test_from_settings_without_salt(self):
        with self.assertRaises(GatewayConfigError):
            GatewayConfig.from_settings()


class HelperTests(SimpleTestCase):
    def test_format_amount(self):
        self.assertEqual(format_amount("500"), "500.00")
        self.assertEqual(format_amount(Decimal("12.345")), "12.35")
        self.assertEqual(format_amount(500.0), "500.00")

    def test_txn_ids_are_unique_and_short(self):
        ids = {generate_txn_id() for _ in range(50)}
        self.assertEqual(len(ids), 50)
        for txn in ids:
            self.assertEqual(len(txn), 24)
            self.assertTrue(txn.isalnum())

    def test_status_mapping(self):
        self.assertEqual(map_callback_status("success"), "success")
        self.assertEqual(map_callback_status("SUCCESS"), "success")
        self.assertEqual(map_callback_status("failure"), "failed")
        self.assertEqual(map_callback_status("failed"), "failed")
        self.assertEqual(map_callback_status("cancel"), "cancelled")
        self.assertEqual(map_callback_status("cancelled"), "cancelled")
        self.assertEqual(map_callback_status("pending"), "failed")
        self.assertEqual(map_callback_status(None), "failed")

    def test_recommendations(self):
        down = [{"url": "https://test.payu.in/_payment", "accessible": False}]
        recs = connectivity_recommendations(down, {"merchant_key": False, "merchant_salt": True, "app_base_url": True})
        self.assertTrue(any("No PayU URLs" in r for r in recs))
        self.assertIn("PAYU_MERCHANT_KEY is not configured.", recs)

        up = [{"url": "https://secure.payu.in/_payment", "accessible": True}]
        recs = connectivity_recommendations(up, {"merchant_key": True, "merchant_salt": True, "app_base_url": True})
        self.assertEqual(recs, ["All connectivity tests passed. Your PayU integration should work correctly."])


class GatewayVerificationTests(SimpleTestCase):
    def setUp(self):
        self.config = GatewayConfig(merchant_key="key", merchant_salt="salt")

    @patch("payments.payu.Session.post")
    def test_verified_when_gateway_reports_success(self, mock_post):
        mock_post.return_value = verified_reply("TXN1")
        result = verify_with_gateway(self.config, "TXN1")
        self.assertTrue(result.reachable)
        self.assertTrue(result.verified)

        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://sandboxsecure.payu.in/merchant/postservice?form=2")
        self.assertEqual(kwargs["data"]["command"], "verify_payment")
        self.assertEqual(kwargs["data"]["var1"], "TXN1")
        self.assertEqual(kwargs["data"]["hash"], command_hash(self.config, "TXN1"))

    @patch("payments.payu.Session.post")
    def test_not_verified_when_transaction_failed(self, mock_post):
        mock_post.return_value = gateway_reply({"status": 1, "transaction_details": {"TXN1": {"status": "failure"}}})
        result = verify_with_gateway(self.config, "TXN1")
        self.assertTrue(result.reachable)
        self.assertFalse(result.verified)

    @patch("payments.payu.Session.post")
    def test_not_verified_when_transaction_unknown(self, mock_post):
        mock_post.return_value = gateway_reply({"status": 0, "msg": "0 out of 1 Transactions Fetched Successfully"})
        result = verify_with_gateway(self.config, "TXN1")
        self.assertFalse(result.verified)

    @patch("payments.payu.Session.post")
    def test_malformed_transaction_details_is_not_verified(self, mock_post):
        for details in ([{"status": "success"}], "TXN1", None):
            mock_post.return_value = gateway_reply({"status": 1, "transaction_details": details})
            result = verify_with_gateway(self.config, "TXN1")
            self.assertTrue(result.reachable)
            self.assertFalse(result.verified)

    @patch("payments.payu.Session.post", side_effect=requests.ConnectionError("boom"))
    def test_network_error_is_unreachable_not_raised(self, mock_post):
        result = verify_with_gateway(self.config, "TXN1")
        self.assertFalse(result.reachable)
        self.assertFalse(result.verified)
        self.assertIn("boom", result.error)
        self.assertEqual(mock_post.call_count, 1)

    @patch("payments.payu.Session.post")
    def test_non_json_body_is_unreachable(self, mock_post):
        resp = MagicMock(status_code=502)
        resp.json.side_effect = ValueError("not json")
        mock_post.return_value = resp
        result = verify_with_gateway(self.config, "TXN1")
        self.assertFalse(result.reachable)


class PaymentRecordTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="payer@example.com", password="S3cure-pass-123")
        self.payment = PaymentRecord.objects.create(
            user=self.user, txn_id="TXN1", amount=Decimal("500.00"), product_info="Widget",
        )

    def test_created_pending(self):
        self.assertEqual(self.payment.status, PaymentRecord.STATUS_PENDING)
        self.assertFalse(self.payment.is_settled)
        self.assertEqual(self.payment.server_verification, PaymentRecord.VERIFICATION_UNCHECKED)

    def test_settles_once(self):
        self.assertTrue(self.payment.settle("success", {"status": "success"}))
        self.assertEqual(self.payment.status, "success")
        self.assertIsNotNone(self.payment.settled_at)
        self.assertEqual(self.payment.callback_payload, {"status": "success"})

    def test_replay_of_same_status_is_noop(self):
        self.payment.settle("failed", {"n": 1})
        self.assertFalse(self.payment.settle("failed", {"n": 2}))
        self.assertEqual(self.payment.callback_payload, {"n": 1})

    def test_different_terminal_status_refused(self):
        self.payment.settle("success")
        with self.assertRaises(PaymentAlreadySettled):
            self.payment.settle("cancelled")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "success")

    def test_never_returns_to_pending(self):
        self.payment.settle("cancelled")
        with self.assertRaises(ValueError):
            self.payment.settle("pending")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "cancelled")

    def test_record_server_verification(self):
        cases = [
            (GatewayVerification(reachable=True, verified=True, data={"status": 1}), "confirmed"),
            (GatewayVerification(reachable=True, verified=False, data={"status": 0}), "rejected"),
            (GatewayVerification(reachable=False, verified=False, error="timeout"), "unconfirmed"),
        ]
        for result, expected in cases:
            self.assertEqual(self.payment.record_server_verification(result), expected)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.server_verification_payload, {"error": "timeout"})

    def test_account_deletion_keeps_payment(self):
        self.user.delete()
        self.payment.refresh_from_db()
        self.assertIsNone(self.payment.user)


@override_settings(**PAYU_SETTINGS)
class PaymentInitiateTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="payer@example.com", password="S3cure-pass-123")
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.body = {
            "amount": "500.00",
            "product_info": "Widget",
            "first_name": "Asha",
            "email": "a@b.com",
            "phone": "9999999999",
        }

    def test_requires_authentication(self):
        resp = APIClient().post("/api/payments/initiate/", self.body, format="json")
        self.assertIn(resp.status_code, (401, 403))

    def test_signed_payload_matches_independent_recomputation(self):
        resp = self.client.post("/api/payments/initiate/", self.body, format="json")
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        params = data["params"]

        payment = PaymentRecord.objects.get(pk=data["payment_id"])
        self.assertEqual(payment.user, self.user)
        self.assertEqual(payment.status, PaymentRecord.STATUS_PENDING)
        self.assertEqual(payment.txn_id, data["txnid"])
        self.assertEqual(payment.amount, Decimal("500.00"))
        self.assertEqual(payment.currency, "INR")
        self.assertEqual(payment.metadata["email"], "a@b.com")

        recomputed = sha512(
            f"testkey|{payment.txn_id}|500.00|Widget|Asha|a@b.com|{payment.pk}" + "|" * 10 + "testsalt"
        )
        self.assertEqual(params["hash"], recomputed)
        self.assertEqual(params["amount"], "500.00")
        self.assertEqual(params["key"], "testkey")
        self.assertEqual(params["udf1"], str(payment.pk))
        self.assertEqual(params["surl"], "https://api.example.test/api/payments/callback/success/")
        self.assertEqual(data["action"], "https://test.payu.in/_payment")
        self.assertNotIn("testsalt", str(data))

    def test_each_attempt_gets_its_own_txn_id(self):
        first = self.client.post("/api/payments/initiate/", self.body, format="json").json()
        second = self.client.post("/api/payments/initiate/", self.body, format="json").json()
        self.assertNotEqual(first["txnid"], second["txnid"])
        self.assertEqual(PaymentRecord.objects.filter(user=self.user).count(), 2)

    def test_gateway_log_is_masked(self):
        self.client.post("/api/payments/initiate/", self.body, format="json")
        log = GatewayLog.objects.get(endpoint="/_payment")
        self.assertEqual(log.user, self.user)
        self.assertEqual(len(log.request_payload["hash"]), 9)
        self.assertIn("***", log.request_payload["hash"])
        self.assertEqual(log.request_payload["email"], "a***@b.com")
        self.assertEqual(log.request_payload["phone"], "999***9999")
        self.assertEqual(log.request_payload["key"], "tes***key")

    def test_amount_bounds(self):
        for amount in ("0", "-5", "1000000.01"):
            resp = self.client.post("/api/payments/initiate/", dict(self.body, amount=amount), format="json")
            self.assertEqual(resp.status_code, 400, amount)
            self.assertIn("amount", resp.json())
        resp = self.client.post("/api/payments/initiate/", dict(self.body, amount="1000000"), format="json")
        self.assertEqual(resp.status_code, 201)

    def test_missing_required_fields(self):
        resp = self.client.post("/api/payments/initiate/", {"amount": "10"}, format="json")
        self.assertEqual(resp.status_code, 400)
        for field in ("product_info", "first_name", "email", "phone"):
            self.assertIn(field, resp.json())

    def test_delimiter_in_signed_field_rejected(self):
        resp = self.client.post("/api/payments/initiate/", dict(self.body, product_info="A|B"), format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("product_info", resp.json())

    @override_settings(PAYU_MERCHANT_SALT="")
    def test_missing_secret_fails_closed(self):
        resp = self.client.post("/api/payments/initiate/", self.body, format="json")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["detail"], "Payment gateway is not configured.")
        self.assertFalse(PaymentRecord.objects.exists())


@override_settings(**PAYU_SETTINGS)
class PaymentVerifyTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="payer@example.com", password="S3cure-pass-123")
        self.config = GatewayConfig.from_settings()
        self.payment = PaymentRecord.objects.create(
            user=self.user,
            txn_id="PP20260101000000ABCDEF12",
            amount=Decimal("500.00"),
            product_info="Widget",
            metadata={"first_name": "Asha", "email": "a@b.com", "phone": "9999999999"},
        )
        self.client = APIClient()

    def verify(self, payload):
        return self.client.post("/api/payments/verify/", payload, format="json")

    @patch("payments.payu.Session.post")
    def test_success_is_settled_and_confirmed(self, mock_post):
        mock_post.return_value = verified_reply(self.payment.txn_id)
        resp = self.verify(signed_callback(self.config, self.payment))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {
            "txnid": self.payment.txn_id,
            "status": "success",
            "payment_id": self.payment.pk,
            "server_verification": "confirmed",
        })
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "success")
        self.assertEqual(self.payment.callback_payload["mihpayid"], "403993715531")
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.payment.txn_id, mail.outbox[0].subject)

    @patch("payments.payu.Session.post")
    def test_wrong_secret_rejected(self, mock_post):
        forger = GatewayConfig(merchant_key="testkey", merchant_salt="not-the-salt")
        resp = self.verify(signed_callback(forger, self.payment))
        self.assertEqual(resp.status_code, 401)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "pending")
        mock_post.assert_not_called()

    @patch("payments.payu.Session.post")
    def test_tampered_status_rejected(self, mock_post):
        payload = signed_callback(self.config, self.payment, status="failure")
        payload["status"] = "success"
        resp = self.verify(payload)
        self.assertEqual(resp.status_code, 401)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "pending")

    def test_unsigned_callback_rejected(self):
        payload = signed_callback(self.config, self.payment)
        del payload["hash"]
        resp = self.verify(payload)
        self.assertEqual(resp.status_code, 401)
        self.assertTrue(GatewayLog.objects.filter(endpoint="callback", status_code="401").exists())

    def test_missing_txnid(self):
        resp = self.verify({"status": "success"})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_txnid(self):
        other = PaymentRecord(pk=999, txn_id="PPUNKNOWN", amount=Decimal("1.00"), product_info="X", metadata={})
        resp = self.verify(signed_callback(self.config, other, status="failure"))
        self.assertEqual(resp.status_code, 404)

    @patch("payments.payu.Session.post", side_effect=requests.Timeout("slow"))
    def test_gateway_unreachable_keeps_success_but_unconfirmed(self, mock_post):
        resp = self.verify(signed_callback(self.config, self.payment))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "success")
        self.assertEqual(resp.json()["server_verification"], "unconfirmed")
        self.assertEqual(mock_post.call_count, 1)

    @patch("payments.payu.Session.post")
    def test_gateway_disagreement_flags_without_downgrade(self, mock_post):
        mock_post.return_value = gateway_reply(
            {"status": 1, "transaction_details": {self.payment.txn_id: {"status": "failure"}}}
        )
        resp = self.verify(signed_callback(self.config, self.payment))
        self.assertEqual(resp.status_code, 200)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "success")
        self.assertEqual(self.payment.server_verification, "rejected")

    @patch("payments.payu.Session.post")
    def test_list_shaped_gateway_details_flags_rejected(self, mock_post):
        mock_post.return_value = gateway_reply({"status": 0, "transaction_details": [{"status": "failure"}]})
        resp = self.verify(signed_callback(self.config, self.payment))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "success")
        self.assertEqual(resp.json()["server_verification"], "rejected")
        self.assertEqual(len(mail.outbox), 1)

    @patch("payments.payu.Session.post")
    def test_failure_callback_skips_server_check(self, mock_post):
        resp = self.verify(signed_callback(self.config, self.payment, status="failure"))
        self.assertEqual(resp.json()["status"], "failed")
        self.assertEqual(resp.json()["server_verification"], "unchecked")
        mock_post.assert_not_called()
        self.assertEqual(len(mail.outbox), 0)

    @patch("payments.payu.Session.post")
    def test_replayed_callback_is_idempotent(self, mock_post):
        mock_post.return_value = verified_reply(self.payment.txn_id)
        payload = signed_callback(self.config, self.payment)
        self.assertEqual(self.verify(payload).status_code, 200)
        resp = self.verify(payload)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "success")
        self.assertEqual(mock_post.call_count, 1)
        self.assertEqual(len(mail.outbox), 1)

    @patch("payments.payu.Session.post")
    def test_conflicting_terminal_status(self, mock_post):
        mock_post.return_value = verified_reply(self.payment.txn_id)
        self.verify(signed_callback(self.config, self.payment))
        resp = self.verify(signed_callback(self.config, self.payment, status="cancel"))
        self.assertEqual(resp.status_code, 409)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "success")

    def test_form_encoded_payload(self):
        payload = signed_callback(self.config, self.payment, status="failure")
        resp = self.client.post("/api/payments/verify/", payload)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "failed")


@override_settings(**PAYU_SETTINGS)
class PaymentCallbackTests(TestCase):
    def setUp(self):
        self.config = GatewayConfig.from_settings()
        self.payment = PaymentRecord.objects.create(
            txn_id="PP20260101000000FEDCBA98",
            amount=Decimal("250.00"),
            product_info="Widget",
            metadata={"first_name": "Ravi", "email": "r@example.com"},
        )

    def assertRedirectsTo(self, resp, page):
        self.assertEqual(resp.status_code, 302)
        url = urlparse(resp["Location"])
        self.assertEqual(f"{url.scheme}://{url.netloc}{url.path}", f"https://app.example.test/payment/{page}")
        return {k: v[0] for k, v in parse_qs(url.query).items()}

    @patch("payments.payu.Session.post")
    def test_success_post_redirects_to_success_page(self, mock_post):
        mock_post.return_value = verified_reply(self.payment.txn_id)
        resp = self.client.post("/api/payments/callback/success/", signed_callback(self.config, self.payment))
        query = self.assertRedirectsTo(resp, "success")
        self.assertEqual(query, {"txnid": self.payment.txn_id, "status": "success"})
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "success")
        self.assertEqual(self.payment.server_verification, "confirmed")

    def test_status_field_decides_not_the_url(self):
        payload = signed_callback(self.config, self.payment, status="failure")
        resp = self.client.post("/api/payments/callback/success/", payload)
        query = self.assertRedirectsTo(resp, "failure")
        self.assertEqual(query["status"], "failed")

    def test_bad_signature_redirects_with_error(self):
        payload = signed_callback(self.config, self.payment, hash="0" * 128)
        resp = self.client.post("/api/payments/callback/success/", payload)
        query = self.assertRedirectsTo(resp, "failure")
        self.assertEqual(query["error"], "invalid_signature")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, "pending")

    def test_query_string_callback(self):
        payload = signed_callback(self.config, self.payment, status="cancel")
        resp = self.client.get("/api/payments/callback/failure/", payload)
        query = self.assertRedirectsTo(resp, "failure")
        self.assertEqual(query["status"], "cancelled")

    def test_unknown_transaction(self):
        other = PaymentRecord(pk=4242, txn_id="PPNOPE", amount=Decimal("1.00"), product_info="X", metadata={})
        resp = self.client.post("/api/payments/callback/failure/", signed_callback(self.config, other, status="failure"))
        query = self.assertRedirectsTo(resp, "failure")
        self.assertEqual(query["error"], "unknown_transaction")

    @override_settings(PAYU_MERCHANT_SALT="")
    def test_unconfigured_gateway(self):
        resp = self.client.post("/api/payments/callback/success/", {"txnid": self.payment.txn_id, "status": "success"})
        query = self.assertRedirectsTo(resp, "failure")
        self.assertEqual(query["error"], "processing_failed")


@override_settings(**PAYU_SETTINGS)
class PaymentHistoryTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="payer@example.com", password="S3cure-pass-123")
        self.other = User.objects.create_user(email="other@example.com", password="S3cure-pass-123")
        self.mine_ok = PaymentRecord.objects.create(
            user=self.user, txn_id="PPMINE1", amount=Decimal("10.00"), product_info="A", status="success"
        )
        self.mine_pending = PaymentRecord.objects.create(
            user=self.user, txn_id="PPMINE2", amount=Decimal("20.00"), product_info="B"
        )
        self.theirs = PaymentRecord.objects.create(
            user=self.other, txn_id="PPTHEIRS", amount=Decimal("30.00"), product_info="C"
        )
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_lists_only_own_payments(self):
        resp = self.client.get("/api/payments/")
        self.assertEqual(resp.status_code, 200)
        txns = {row["txn_id"] for row in resp.json()["results"]}
        self.assertEqual(txns, {"PPMINE1", "PPMINE2"})

    def test_filter_by_status(self):
        resp = self.client.get("/api/payments/", {"status": "success"})
        self.assertEqual([row["txn_id"] for row in resp.json()["results"]], ["PPMINE1"])

    def test_detail(self):
        resp = self.client.get("/api/payments/PPMINE2/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "pending")
        self.assertEqual(self.client.get("/api/payments/PPTHEIRS/").status_code, 404)


@override_settings(**PAYU_SETTINGS)
class DiagnosticsTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_superuser(email="admin@example.com", password="S3cure-pass-123")
        self.user = User.objects.create_user(email="payer@example.com", password="S3cure-pass-123")
        self.client = APIClient()

    def test_admin_only(self):
        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.get("/api/payments/diagnostics/").status_code, 403)

    @patch("payments.payu.Session.get")
    def test_report(self, mock_get):
        mock_get.side_effect = [
            MagicMock(status_code=200, reason="OK"),
            requests.ConnectionError("refused"),
            MagicMock(status_code=405, reason="Method Not Allowed"),
        ]
        self.client.force_authenticate(self.admin)
        resp = self.client.get("/api/payments/diagnostics/")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual([c["accessible"] for c in data["connectivity"]], [True, False, True])
        self.assertEqual(data["environment"]["merchant_salt"], True)
        self.assertEqual(data["environment"]["mode"], "TEST")
        self.assertNotIn("testsalt", str(data))
        self.assertIn("Some PayU URLs are not accessible. This may cause intermittent issues.", data["recommendations"])


@override_settings(**PAYU_SETTINGS)
class ReverifyCommandTests(TestCase):
    def setUp(self):
        old = timezone.now() - timedelta(minutes=30)
        self.unconfirmed = PaymentRecord.objects.create(
            txn_id="PPOLD1", amount=Decimal("10.00"), product_info="A", status="success",
            server_verification="unconfirmed", settled_at=old,
        )
        self.confirmed = PaymentRecord.objects.create(
            txn_id="PPOLD2", amount=Decimal("10.00"), product_info="A", status="success",
            server_verification="confirmed", settled_at=old,
        )
        self.failed = PaymentRecord.objects.create(
            txn_id="PPOLD3", amount=Decimal("10.00"), product_info="A", status="failed", settled_at=old,
        )

    @patch("payments.payu.Session.post")
    def test_only_unconfirmed_successes_are_rechecked(self, mock_post):
        mock_post.return_value = verified_reply("PPOLD1")
        out = StringIO()
        call_command("reverify_payments", stdout=out)
        self.assertEqual(mock_post.call_count, 1)
        self.unconfirmed.refresh_from_db()
        self.failed.refresh_from_db()
        self.assertEqual(self.unconfirmed.server_verification, "confirmed")
        self.assertEqual(self.unconfirmed.status, "success")
        self.assertEqual(self.failed.server_verification, "unchecked")
        self.assertIn("confirmed 1", out.getvalue())


class SystemCheckTests(SimpleTestCase):
    @override_settings(PAYU_MERCHANT_KEY="", PAYU_MERCHANT_SALT="")
    def test_missing_credentials_warn(self):
        ids = [m.id for m in payments_system_checks(None)]
        self.assertIn("payments.W001", ids)

    @override_settings(ENV="production", APP_BASE_URL="http://localhost:8000", **{
        k: v for k, v in PAYU_SETTINGS.items() if k != "APP_BASE_URL"
    })
    def test_localhost_callback_in_production(self):
        ids = [m.id for m in payments_system_checks(None)]
        self.assertEqual(ids, ["payments.W002"])
