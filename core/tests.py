from unittest.mock import patch

from django.test import SimpleTestCase, TestCase

from core.logging import make_gateway_logger, mask_payload, mask_value
from core.models import GatewayLog


class MaskTests(SimpleTestCase):
    def test_mask_value(self):
        self.assertEqual(mask_value("asha@example.com"), "as***@example.com")
        self.assertEqual(mask_value("9876543210"), "987***3210")
        self.assertEqual(mask_value("abcdefghij"), "abc***hij")
        self.assertEqual(mask_value("abc"), "***")
        self.assertEqual(mask_value(None), "")

    def test_mask_payload_leaves_other_fields(self):
        masked = mask_payload({"email": "asha@example.com", "txnid": "PP1", "amount": "10.00"})
        self.assertEqual(masked, {"email": "as***@example.com", "txnid": "PP1", "amount": "10.00"})
        self.assertEqual(mask_payload(None), {})


class GatewayLoggerTests(TestCase):
    def test_writes_masked_row(self):
        make_gateway_logger()("in", "callback", request={"hash": "f" * 128, "txnid": "PP1"},
                              status_code=401, txn_id="PP1", error="invalid signature")
        row = GatewayLog.objects.get()
        self.assertIsNone(row.user)
        self.assertEqual(row.request_payload["hash"], "fff***fff")
        self.assertEqual(row.status_code, "401")
        self.assertEqual(row.error_message, "invalid signature")

    def test_write_failure_is_swallowed(self):
        with patch.object(GatewayLog.objects, "create", side_effect=RuntimeError("db down")):
            make_gateway_logger()("out", "/_payment", request={"txnid": "PP1"})
        self.assertFalse(GatewayLog.objects.exists())
