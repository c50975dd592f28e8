# users/urls.py

from django.urls import path
from .views import (
    RegisterView,
    LoginView,
    LogoutView,
    DashboardView,
    ProfileView,
    ChangePasswordView,
    PasswordResetRequestView,
    PasswordResetConfirmView,
    DeleteAccountView,
)

urlpatterns = [
    path('register/',               RegisterView.as_view(),             name='user-register'),
    path('login/',                  LoginView.as_view(),                name='user-login'),
    path('logout/',                 LogoutView.as_view(),               name='user-logout'),
    path('dashboard/',              DashboardView.as_view(),            name='user-dashboard'),
    path('profile/',                ProfileView.as_view(),              name='user-profile'),
    path('change-password/',        ChangePasswordView.as_view(),       name='user-change-password'),
    path('password-reset/',         PasswordResetRequestView.as_view(), name='user-password-reset'),
    path('password-reset/confirm/', PasswordResetConfirmView.as_view(), name='user-password-reset-confirm'),
    path('delete-account/',         DeleteAccountView.as_view(),        name='user-delete-account'),
]
