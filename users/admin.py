from django.contrib import admin

from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    ordering = ("email",)
    list_display = ("email", "display_name", "is_staff", "is_active", "date_joined")
    search_fields = ("email", "display_name")
    list_filter = ("is_staff", "is_active")
    readonly_fields = ("password", "last_login", "date_joined")
    exclude = ("groups", "user_permissions")
