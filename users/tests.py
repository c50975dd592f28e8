from decimal import Decimal
from urllib.parse import urlparse, parse_qs

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from rest_framework.test import APIClient

from notifications.models import EmailLog
from payments.models import PaymentRecord

User = get_user_model()

PASSWORD = "S3cure-pass-123"


class RegisterLoginTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_register_returns_tokens(self):
        resp = self.client.post("/api/users/register/", {
            "email": "New@Example.com",
            "display_name": "Asha",
            "password": PASSWORD,
            "confirm_password": PASSWORD,
        }, format="json")
        self.assertEqual(resp.status_code, 201)
        self.assertIn("access", resp.json())
        self.assertIn("refresh", resp.json())
        user = User.objects.get(email="new@example.com")
        self.assertTrue(user.check_password(PASSWORD))
        self.assertEqual(user.display_name, "Asha")

    def test_register_rejects_duplicate_email(self):
        User.objects.create_user(email="dup@example.com", password=PASSWORD)
        resp = self.client.post("/api/users/register/", {
            "email": "DUP@example.com", "password": PASSWORD, "confirm_password": PASSWORD,
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["email"], ["An account with this email already exists."])

    def test_register_rejects_mismatched_passwords(self):
        resp = self.client.post("/api/users/register/", {
            "email": "x@example.com", "password": PASSWORD, "confirm_password": PASSWORD + "x",
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("confirm_password", resp.json())

    def test_register_rejects_weak_password(self):
        resp = self.client.post("/api/users/register/", {
            "email": "x@example.com", "password": "123", "confirm_password": "123",
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("password", resp.json())

    def test_login(self):
        User.objects.create_user(email="me@example.com", password=PASSWORD)
        resp = self.client.post("/api/users/login/", {"email": "me@example.com", "password": PASSWORD}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("access", resp.json())

    def test_login_bad_password(self):
        User.objects.create_user(email="me@example.com", password=PASSWORD)
        resp = self.client.post("/api/users/login/", {"email": "me@example.com", "password": "nope"}, format="json")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["detail"], "Incorrect email or password.")

    def test_login_requires_both_fields(self):
        resp = self.client.post("/api/users/login/", {"email": "me@example.com"}, format="json")
        self.assertEqual(resp.status_code, 400)


class AllauthSignupTests(TestCase):
    def test_display_name_is_saved(self):
        resp = self.client.post("/accounts/signup/", {
            "email": "web@example.com",
            "display_name": "  Web User ",
            "password1": PASSWORD,
            "password2": PASSWORD,
        })
        self.assertEqual(resp.status_code, 302)
        user = User.objects.get(email="web@example.com")
        self.assertEqual(user.display_name, "Web User")


class AccountTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="me@example.com", password=PASSWORD, display_name="Me")
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_profile_read_and_update(self):
        resp = self.client.get("/api/users/profile/")
        self.assertEqual(resp.json()["email"], "me@example.com")

        resp = self.client.patch("/api/users/profile/", {"display_name": "Renamed", "email": "x@y.z"}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.user.refresh_from_db()
        self.assertEqual(self.user.display_name, "Renamed")
        self.assertEqual(self.user.email, "me@example.com")

    def test_dashboard_counts_payments(self):
        PaymentRecord.objects.create(user=self.user, txn_id="PPA", amount=Decimal("1.00"), product_info="A",
                                     status="success")
        PaymentRecord.objects.create(user=self.user, txn_id="PPB", amount=Decimal("2.00"), product_info="B")
        resp = self.client.get("/api/users/dashboard/")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["payments"]["total"], 2)
        self.assertEqual(data["payments"]["success"], 1)
        self.assertEqual(data["payments"]["pending"], 1)
        self.assertEqual(len(data["recent_payments"]), 2)

    def test_change_password(self):
        resp = self.client.post("/api/users/change-password/", {
            "current_password": PASSWORD,
            "new_password": "An0ther-pass-456",
            "confirm_password": "An0ther-pass-456",
        }, format="json")
        self.assertEqual(resp.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("An0ther-pass-456"))

    def test_change_password_wrong_current(self):
        resp = self.client.post("/api/users/change-password/", {
            "current_password": "wrong",
            "new_password": "An0ther-pass-456",
            "confirm_password": "An0ther-pass-456",
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("current_password", resp.json())

    def test_delete_account_keeps_payment_history(self):
        payment = PaymentRecord.objects.create(user=self.user, txn_id="PPKEEP", amount=Decimal("9.00"),
                                               product_info="A", status="success")
        resp = self.client.post("/api/users/delete-account/", {"password": "wrong"}, format="json")
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post("/api/users/delete-account/", {"password": PASSWORD}, format="json")
        self.assertEqual(resp.status_code, 204)
        self.assertFalse(User.objects.filter(email="me@example.com").exists())
        payment.refresh_from_db()
        self.assertIsNone(payment.user)
        self.assertEqual(payment.status, "success")

    def test_requires_authentication(self):
        anon = APIClient()
        for url in ("/api/users/profile/", "/api/users/dashboard/"):
            self.assertIn(anon.get(url).status_code, (401, 403))


class LogoutTests(TestCase):
    def test_refresh_token_is_revoked(self):
        User.objects.create_user(email="me@example.com", password=PASSWORD)
        client = APIClient()
        tokens = client.post("/api/users/login/", {"email": "me@example.com", "password": PASSWORD},
                             format="json").json()

        client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
        resp = client.post("/api/users/logout/", {"refresh": tokens["refresh"]}, format="json")
        self.assertEqual(resp.status_code, 205)

        resp = APIClient().post("/api/token/refresh/", {"refresh": tokens["refresh"]}, format="json")
        self.assertEqual(resp.status_code, 401)


class PasswordResetTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="me@example.com", password=PASSWORD)
        self.client = APIClient()

    def _reset_params(self):
        link = next(line for line in mail.outbox[0].body.splitlines() if "uid=" in line).split(": ", 1)[1]
        query = parse_qs(urlparse(link).query)
        return query["uid"][0], query["token"][0]

    def test_unknown_email_gives_same_answer(self):
        resp = self.client.post("/api/users/password-reset/", {"email": "ghost@example.com"}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(mail.outbox), 0)

    def test_full_reset_flow(self):
        resp = self.client.post("/api/users/password-reset/", {"email": "me@example.com"}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(EmailLog.objects.get().status, "sent")

        uid, token = self._reset_params()
        resp = self.client.post("/api/users/password-reset/confirm/", {
            "uid": uid, "token": token, "new_password": "Brand-new-pass-789",
        }, format="json")
        self.assertEqual(resp.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("Brand-new-pass-789"))

        # token is single use once the password changes
        resp = self.client.post("/api/users/password-reset/confirm/", {
            "uid": uid, "token": token, "new_password": "Other-new-pass-000",
        }, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_bad_token(self):
        resp = self.client.post("/api/users/password-reset/confirm/", {
            "uid": "bogus", "token": "bogus", "new_password": "Brand-new-pass-789",
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "Reset link is invalid or has expired.")
