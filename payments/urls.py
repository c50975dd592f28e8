from django.urls import path
from .views import (
    PaymentInitiateView,
    PaymentCallbackView,
    PaymentVerifyView,
    PaymentListView,
    PaymentDetailView,
    GatewayDiagnosticsView,
)

urlpatterns = [
    path("", PaymentListView.as_view(), name="payments_list"),
    path("initiate/", PaymentInitiateView.as_view(), name="payments_initiate"),
    path("callback/success/", PaymentCallbackView.as_view(), name="payments_callback_success"),
    path("callback/failure/", PaymentCallbackView.as_view(), name="payments_callback_failure"),
    path("verify/", PaymentVerifyView.as_view(), name="payments_verify"),
    path("diagnostics/", GatewayDiagnosticsView.as_view(), name="payments_diagnostics"),
    path("<str:txn_id>/", PaymentDetailView.as_view(), name="payments_detail"),
]
