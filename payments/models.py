# payments/models.py
from django.db import models, transaction
from django.conf import settings
from django.utils import timezone


class PaymentAlreadySettled(Exception):
    """Payment already reached a different terminal status."""


class PaymentRecord(models.Model):
    STATUS_PENDING = "pending"
    STATUS_SUCCESS = "success"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SUCCESS, "Success"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]
    TERMINAL_STATUSES = {STATUS_SUCCESS, STATUS_FAILED, STATUS_CANCELLED}

    # Outcome of the server-to-server status check; never changes `status`.
    VERIFICATION_UNCHECKED = "unchecked"
    VERIFICATION_CONFIRMED = "confirmed"
    VERIFICATION_UNCONFIRMED = "unconfirmed"  # gateway unreachable
    VERIFICATION_REJECTED = "rejected"        # gateway disagrees
    VERIFICATION = [
        (VERIFICATION_UNCHECKED, "Unchecked"),
        (VERIFICATION_CONFIRMED, "Confirmed"),
        (VERIFICATION_UNCONFIRMED, "Unconfirmed"),
        (VERIFICATION_REJECTED, "Rejected"),
    ]

    # SET_NULL: account deletion must not remove payment history
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="payments"
    )
    txn_id = models.CharField(max_length=32, unique=True, db_index=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")
    product_info = models.CharField(max_length=255)
    payment_method = models.CharField(max_length=16, blank=True)
    status = models.CharField(max_length=16, choices=STATUS, default=STATUS_PENDING)

    # Payer name/contact/address
    metadata = models.JSONField(default=dict, blank=True)

    # Raw gateway payloads for audit
    callback_payload = models.JSONField(blank=True, null=True)
    server_verification = models.CharField(max_length=16, choices=VERIFICATION, default=VERIFICATION_UNCHECKED)
    server_verification_payload = models.JSONField(blank=True, null=True)

    settled_at = models.DateTimeField(blank=True, null=True)
    created = models.DateTimeField(auto_now_add=True)
    updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created",)
        indexes = [
            models.Index(fields=["user", "status"], name="payment_user_status_idx"),
            models.Index(fields=["status", "server_verification"], name="payment_status_verif_idx"),
        ]

    def __str__(self) -> str:
        return f"Payment({self.txn_id}, {self.amount} {self.currency}, {self.status})"

    @property
    def is_settled(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def settle(self, status: str, payload=None) -> bool:
        """
        Move a pending payment to a terminal status, exactly once.

        Returns True when this call performed the transition and False when the
        payment already holds `status` (a replayed callback). Raises
        PaymentAlreadySettled if it already holds a different terminal status.
        """
        if status not in self.TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status!r}")

        with transaction.atomic():
            locked = PaymentRecord.objects.select_for_update().get(pk=self.pk)
            if locked.status == status:
                changed = False
            elif locked.status != self.STATUS_PENDING:
                raise PaymentAlreadySettled(
                    f"{locked.txn_id} is already {locked.status}; refusing {status}"
                )
            else:
                locked.status = status
                locked.callback_payload = payload
                locked.settled_at = timezone.now()
                locked.save(update_fields=["status", "callback_payload", "settled_at", "updated"])
                changed = True

        self.refresh_from_db()
        return changed

    def record_server_verification(self, result) -> str:
        """Store a GatewayVerification outcome."""
        if not result.reachable:
            self.server_verification = self.VERIFICATION_UNCONFIRMED
        elif result.verified:
            self.server_verification = self.VERIFICATION_CONFIRMED
        else:
            self.server_verification = self.VERIFICATION_REJECTED
        self.server_verification_payload = result.data if result.data is not None else {"error": result.error}
        self.save(update_fields=["server_verification", "server_verification_payload", "updated"])
        return self.server_verification
