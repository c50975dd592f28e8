from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GatewayLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider", models.CharField(default="payu", max_length=32)),
                ("direction", models.CharField(choices=[("out", "Outbound"), ("in", "Inbound")], default="out", max_length=3)),
                ("endpoint", models.CharField(max_length=128)),
                ("txn_id", models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ("request_payload", models.JSONField(blank=True, null=True)),
                ("response_payload", models.JSONField(blank=True, null=True)),
                ("status_code", models.CharField(blank=True, max_length=10)),
                ("error_message", models.CharField(blank=True, max_length=255, null=True)),
                ("timestamp", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ("-timestamp",),
                "indexes": [models.Index(fields=["endpoint", "timestamp"], name="gatewaylog_endpoint_ts_idx")],
            },
        ),
    ]
