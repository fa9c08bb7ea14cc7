from django.urls import path
from .views import (
    CancelOrderView,
    ConfirmPaymentView,
    OrderStatusView,
    OrdersCollectionView,
    RetrieveOrderView,
)

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="order-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="order-status"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="order-cancel"),
    path("<uuid:oid>/confirm-payment/", ConfirmPaymentView.as_view(), name="order-confirm-payment"),
]
