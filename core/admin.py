from django.contrib import admin

from .models import GatewayLog


@admin.register(GatewayLog)
class GatewayLogAdmin(admin.ModelAdmin):
    list_display = ("id", "provider", "direction", "endpoint", "txn_id", "status_code", "timestamp")
    search_fields = ("txn_id", "endpoint", "user__email")
    list_filter = ("provider", "direction", "endpoint", "timestamp")
    date_hierarchy = "timestamp"
    readonly_fields = (
        "user", "provider", "direction", "endpoint", "txn_id",
        "request_payload", "response_payload", "status_code", "error_message", "timestamp",
    )
