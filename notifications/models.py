from django.db import models

class EmailLog(models.Model):
    KIND_CHOICES = [
        ("password_reset", "Password reset"),
        ("payment_receipt", "Payment receipt"),
    ]

    to = models.EmailField()
    kind = models.CharField(max_length=32, choices=KIND_CHOICES)
    subject = models.CharField(max_length=200)
    status = models.CharField(max_length=16, choices=[("queued","Queued"),("sent","Sent"),("failed","Failed")], default="queued")
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["to", "created_at"], name="emaillog_to_created_idx")]

    def __str__(self):
        return f"{self.to} [{self.status}] {self.subject}"
