# users/adapters.py

from allauth.account.adapter import DefaultAccountAdapter


class NoUsernameAccountAdapter(DefaultAccountAdapter):
    """Email-only signups; carries the optional display name onto the user."""

    def save_user(self, request, user, form, commit=True):
        user = super().save_user(request, user, form, commit=False)
        data = getattr(form, "cleaned_data", {}) or {}
        if data.get("display_name"):
            user.display_name = data["display_name"].strip()
        if commit:
            user.save()
        return user
