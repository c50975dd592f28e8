# core/models.py
from django.db import models
from django.conf import settings


class GatewayLog(models.Model):
    """Payment gateway I/O log with masked payloads."""

    DIRECTION_CHOICES = [
        ("out", "Outbound"),
        ("in", "Inbound"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    provider = models.CharField(max_length=32, default="payu")
    direction = models.CharField(max_length=3, choices=DIRECTION_CHOICES, default="out")
    endpoint = models.CharField(max_length=128)

    # Correlation
    txn_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)

    request_payload = models.JSONField(blank=True, null=True)
    response_payload = models.JSONField(blank=True, null=True)
    status_code = models.CharField(max_length=10, blank=True)
    error_message = models.CharField(max_length=255, blank=True, null=True)

    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-timestamp",)
        indexes = [
            models.Index(fields=["endpoint", "timestamp"], name="gatewaylog_endpoint_ts_idx"),
        ]

    def __str__(self):
        return f"{self.provider} | {self.endpoint} | {self.txn_id or '-'} | {self.status_code}"
