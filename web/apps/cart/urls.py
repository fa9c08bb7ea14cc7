from django.urls import path
from .views import CartItemView, CartItemsView, CartView, CheckoutSummaryView

urlpatterns = [
    path("", CartView.as_view(), name="cart"),
    path("items/", CartItemsView.as_view(), name="cart-items"),
    path("items/<int:line_id>/", CartItemView.as_view(), name="cart-item"),
    path("checkout-summary/", CheckoutSummaryView.as_view(), name="checkout-summary"),
]
