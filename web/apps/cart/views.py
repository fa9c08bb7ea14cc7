"""HTTP views for the cart.

The cart is always the caller's own (``X-User-ID``). Reads never modify the
cart; lines that no longer fit the stock come back flagged ``outOfStock``.
"""

from pydantic import ValidationError as PydanticValidationError
from rest_framework.response import Response

from apps.orders import providers
from apps.orders.checkout import load_checkout_settings
from apps.orders.domain import DomainError
from gateway.api import UserAPIView, error_response, validation_response
from .schemas import (
    AddCartItemDTO,
    CartSummaryOut,
    TotalsOut,
    UpdateCartItemDTO,
    dump,
    items_out,
)


class CartView(UserAPIView):
    throttle_scope = "cart"

    def get(self, request):
        ledger = providers.get_cart_ledger()
        summary = ledger.get_summary(self.user_id, load_checkout_settings(providers.get_settings_port()))
        body = CartSummaryOut(**summary.totals.as_dict(), item_count=summary.item_count)
        return Response({"items": items_out(summary.entries), "summary": dump(body)}, status=200)

    def delete(self, request):
        providers.get_cart_ledger().clear(self.user_id)
        return Response({"cartCount": 0}, status=200)


class CartItemsView(UserAPIView):
    throttle_scope = "cart"

    def post(self, request):
        try:
            dto = AddCartItemDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return validation_response(e)
        ledger = providers.get_cart_ledger()
        try:
            ledger.add_item(self.user_id, dto.product_id, dto.quantity, dto.options)
        except DomainError as e:
            return error_response(e)
        return Response({"cartCount": ledger.count(self.user_id)}, status=200)


class CartItemView(UserAPIView):
    throttle_scope = "cart"

    def patch(self, request, line_id: int):
        try:
            dto = UpdateCartItemDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return validation_response(e)
        ledger = providers.get_cart_ledger()
        try:
            ledger.update_item(self.user_id, line_id, dto.quantity)
        except DomainError as e:
            return error_response(e)
        return Response({"cartCount": ledger.count(self.user_id)}, status=200)

    def delete(self, request, line_id: int):
        ledger = providers.get_cart_ledger()
        try:
            ledger.remove_item(self.user_id, line_id)
        except DomainError as e:
            return error_response(e)
        return Response({"cartCount": ledger.count(self.user_id)}, status=200)


class CheckoutSummaryView(UserAPIView):
    """Read-only checkout preview: 400 if the cart is empty or out of stock."""

    throttle_scope = "checkout"

    def get(self, request):
        try:
            quote = providers.get_order_service().quote(self.user_id)
        except DomainError as e:
            return error_response(e)
        return Response(
            {
                "items": items_out(quote.entries),
                "totals": dump(TotalsOut.from_totals(quote.totals)),
                "currency": quote.currency,
                "addresses": quote.addresses,
                "paymentMethods": quote.payment_methods,
            },
            status=200,
        )
