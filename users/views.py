# users/views.py
import logging

from django.conf import settings
from django.contrib.auth import get_user_model, authenticate
from django.contrib.auth.password_validation import validate_password
from django.contrib.auth.tokens import default_token_generator
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Count, Q
from django.utils.encoding import force_bytes, force_str
from django.utils.http import urlsafe_base64_encode, urlsafe_base64_decode

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated

from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.exceptions import TokenError

from drf_spectacular.utils import extend_schema, OpenApiResponse

from notifications.utils import send_password_reset_email
from payments.models import PaymentRecord
from payments.serializers import PaymentRecordSerializer

from .serializers import (
    UserSerializer,
    ProfileSerializer,
    ChangePasswordSerializer,
    PasswordResetRequestSerializer,
    PasswordResetConfirmSerializer,
    DeleteAccountSerializer,
    LogoutSerializer,
    LoginRequestSchema,
    TokenPairSchema,
)

logger = logging.getLogger(__name__)

User = get_user_model()


# ---------------------------
# Helpers
# ---------------------------
def _token_pair(user) -> dict:
    refresh = RefreshToken.for_user(user)
    return {"refresh": str(refresh), "access": str(refresh.access_token)}


def _user_from_uid(uid: str):
    try:
        pk = force_str(urlsafe_base64_decode(uid))
        return User.objects.get(pk=pk)
    except (TypeError, ValueError, OverflowError, User.DoesNotExist):
        return None


# ---------------------------
# Register / Login / Logout
# ---------------------------
@extend_schema(
    description="Register a new user and return JWT tokens.",
    request=UserSerializer,
    responses={
        201: TokenPairSchema,
        400: OpenApiResponse(description="Validation error"),
    },
)
class RegisterView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = UserSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        user = serializer.save()
        logger.info("registered user #%s", user.pk)
        return Response(_token_pair(user), status=status.HTTP_201_CREATED)


@extend_schema(
    description="Login with email & password, return JWT tokens.",
    request=LoginRequestSchema,
    responses={
        200: TokenPairSchema,
        401: OpenApiResponse(description="Invalid credentials"),
        400: OpenApiResponse(description="Bad request"),
    },
)
class LoginView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        email = request.data.get("email")
        password = request.data.get("password")

        if not email or not password:
            return Response({"detail": "email and password are required"}, status=status.HTTP_400_BAD_REQUEST)

        user = authenticate(request, username=email, password=password)
        if not user:
            return Response({"detail": "Incorrect email or password."}, status=status.HTTP_401_UNAUTHORIZED)

        return Response(_token_pair(user), status=status.HTTP_200_OK)


@extend_schema(
    description="Revoke a refresh token.",
    request=LogoutSerializer,
    responses={205: None, 400: OpenApiResponse(description="Invalid or expired token")},
)
class LogoutView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = LogoutSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            RefreshToken(ser.validated_data["refresh"]).blacklist()
        except TokenError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(status=status.HTTP_205_RESET_CONTENT)


# ---------------------------
# Dashboard / Profile
# ---------------------------
@extend_schema(
    description="Authenticated user dashboard: profile, payment counts and the five latest payments.",
    request=None,
    responses={200: OpenApiResponse(description="Dashboard payload")},
)
class DashboardView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = request.user
        payments = PaymentRecord.objects.filter(user=user)
        counts = payments.aggregate(
            total=Count("id"),
            pending=Count("id", filter=Q(status=PaymentRecord.STATUS_PENDING)),
            success=Count("id", filter=Q(status=PaymentRecord.STATUS_SUCCESS)),
            failed=Count("id", filter=Q(status=PaymentRecord.STATUS_FAILED)),
            cancelled=Count("id", filter=Q(status=PaymentRecord.STATUS_CANCELLED)),
        )
        return Response(
            {
                "id": user.id,
                "email": user.email,
                "display_name": user.display_name,
                "date_joined": user.date_joined,
                "payments": counts,
                "recent_payments": PaymentRecordSerializer(payments.order_by("-created")[:5], many=True).data,
            },
            status=status.HTTP_200_OK,
        )


@extend_schema(
    description="Read or update the authenticated user's profile.",
    request=ProfileSerializer,
    responses={200: ProfileSerializer},
)
class ProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(ProfileSerializer(request.user).data)

    def patch(self, request):
        ser = ProfileSerializer(request.user, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        ser.save()
        return Response(ser.data)


# ---------------------------
# Passwords
# ---------------------------
@extend_schema(
    description="Change password for the authenticated user.",
    request=ChangePasswordSerializer,
    responses={200: OpenApiResponse(description="Password updated"), 400: OpenApiResponse(description="Validation error")},
)
class ChangePasswordView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = ChangePasswordSerializer(data=request.data, context={"request": request})
        ser.is_valid(raise_exception=True)
        request.user.set_password(ser.validated_data["new_password"])
        request.user.save(update_fields=["password"])
        logger.info("user #%s changed password", request.user.pk)
        return Response({"detail": "Password updated."})


@extend_schema(
    description="Email a password reset link. Always answers 200 so accounts can't be enumerated.",
    request=PasswordResetRequestSerializer,
    responses={200: OpenApiResponse(description="Reset email sent if the account exists")},
)
class PasswordResetRequestView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        ser = PasswordResetRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        user = User.objects.filter(email__iexact=ser.validated_data["email"], is_active=True).first()
        if user is not None:
            uid = urlsafe_base64_encode(force_bytes(user.pk))
            token = default_token_generator.make_token(user)
            send_password_reset_email(user.email, f"{settings.PASSWORD_RESET_URL}?uid={uid}&token={token}")
        return Response({"detail": "If an account exists for this email, a reset link has been sent."})


@extend_schema(
    description="Set a new password using the uid/token from the reset email.",
    request=PasswordResetConfirmSerializer,
    responses={200: OpenApiResponse(description="Password reset"), 400: OpenApiResponse(description="Invalid link")},
)
class PasswordResetConfirmView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        ser = PasswordResetConfirmSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        user = _user_from_uid(ser.validated_data["uid"])
        if user is None or not default_token_generator.check_token(user, ser.validated_data["token"]):
            return Response({"detail": "Reset link is invalid or has expired."}, status=status.HTTP_400_BAD_REQUEST)
        try:
            validate_password(ser.validated_data["new_password"], user=user)
        except DjangoValidationError as e:
            return Response({"new_password": list(e.messages)}, status=status.HTTP_400_BAD_REQUEST)
        user.set_password(ser.validated_data["new_password"])
        user.save(update_fields=["password"])
        return Response({"detail": "Password has been reset."})


# ---------------------------
# Account deletion
# ---------------------------
@extend_schema(
    description="Permanently delete the authenticated account. Payment records are kept, detached from the user.",
    request=DeleteAccountSerializer,
    responses={204: None, 400: OpenApiResponse(description="Wrong password")},
)
class DeleteAccountView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = DeleteAccountSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        user = request.user
        if not user.check_password(ser.validated_data["password"]):
            return Response({"password": ["Password is incorrect."]}, status=status.HTTP_400_BAD_REQUEST)
        user_id = user.pk
        user.delete()
        logger.info("deleted account #%s", user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
