from django import forms


class SignupForm(forms.Form):
    """Extra allauth signup fields."""

    display_name = forms.CharField(max_length=150, required=False)

    def signup(self, request, user):
        # display_name is copied onto the user by NoUsernameAccountAdapter.save_user
        pass
