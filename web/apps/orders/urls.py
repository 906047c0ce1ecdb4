from django.urls import path

from .views import (
    AdminDepositProofView,
    AdminDepositView,
    AdminRefundView,
    AdminStatusView,
    AdminTrackingTokenView,
    CheckoutSessionView,
    CustomerCancelView,
    DepositProofView,
    ExpireDepositsCronView,
    OrderCancelView,
    OrderDetailView,
    OrdersCollectionView,
    PaymentWebhookView,
    SessionStatusView,
)

app_name = "orders"

urlpatterns = [
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),
    path("orders/<str:code>/", OrderDetailView.as_view(), name="orders-detail"),
    path("orders/<str:code>/cancel/", OrderCancelView.as_view(), name="orders-cancel"),
    path("orders/<str:code>/customer-cancel/", CustomerCancelView.as_view(), name="orders-customer-cancel"),
    path("orders/<str:code>/deposit-proof/", DepositProofView.as_view(), name="orders-deposit-proof"),
    path("payments/checkout-session/", CheckoutSessionView.as_view(), name="payments-checkout-session"),
    path("payments/session-status/", SessionStatusView.as_view(), name="payments-session-status"),
    path("payments/webhook/", PaymentWebhookView.as_view(), name="payments-webhook"),
    path("admin/orders/<str:code>/status/", AdminStatusView.as_view(), name="admin-orders-status"),
    path("admin/orders/<str:code>/deposit/", AdminDepositView.as_view(), name="admin-orders-deposit"),
    path("admin/orders/<str:code>/deposit-proof/", AdminDepositProofView.as_view(), name="admin-orders-deposit-proof"),
    path("admin/orders/<str:code>/refund/", AdminRefundView.as_view(), name="admin-orders-refund"),
    path("admin/orders/<str:code>/tracking-token/", AdminTrackingTokenView.as_view(),
         name="admin-orders-tracking-token"),
    path("cron/expire-deposits/", ExpireDepositsCronView.as_view(), name="cron-expire-deposits"),
]
