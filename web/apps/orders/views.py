"""HTTP views for the orders app.

Views are kept small: they validate the request with a Pydantic DTO, call
the order service or the state machine obtained from ``providers``, and map
domain errors to responses through ``gateway.api.error_response``.

Idempotency: when an ``Idempotency-Key`` header is sent on order creation,
payment confirmation or cancellation, the first request runs and its
response is stored; a retry with the same key and payload replays the stored
status and body with an ``Idempotent-Replay: true`` header. Reusing a key
with a different payload returns 409. A request that crashes before producing
a response frees its key so the client can retry.
"""

import logging

import httpx
from django.core.paginator import Paginator
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response

from gateway.api import UserAPIView, error_response, validation_response
from . import providers
from .domain import DomainError, OrderStatus
from .http_adapters import CircuitOpen
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent, release
from .schemas import (
    ConfirmPaymentDTO,
    CreateOrderDTO,
    OrderCreatedDTO,
    OrderStatusDTO,
    UpdateStatusDTO,
    order_detail,
    order_read,
)

logger = logging.getLogger("orders")

UPSTREAM_ERRORS = (httpx.HTTPError, CircuitOpen)


def _dump(dto) -> dict:
    return dto.model_dump(mode="json", by_alias=True)


class IdempotentMixin:
    """Run a handler at most once per ``Idempotency-Key``."""

    def run_idempotent(self, request, action: str, payload: dict, handler):
        key = request.headers.get("Idempotency-Key")
        if not key:
            return handler()
        try:
            existing, rec = get_or_create_idempotent(key, self.user_id, action, payload)
        except IdempotencyConflict:
            return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
        if existing:
            if not rec.response_status:
                return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
            resp = Response(rec.response_body, status=rec.response_status)
            resp["Idempotent-Replay"] = "true"
            return resp
        try:
            resp = handler()
        except Exception:
            logger.exception("idempotent request failed", extra={"action": action, "user_id": self.user_id})
            release(rec)
            raise
        finalize(rec, resp.status_code, resp.data, order_id=getattr(resp, "order_id", None))
        return resp


class OrdersCollectionView(IdempotentMixin, UserAPIView):
    """List the caller's orders or place a new one from the cart."""

    def get_throttles(self):
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return super().get_throttles()

    def get(self, request):
        qs = providers.get_order_service().repository.list_for_user(self.user_id)
        try:
            page = int(request.GET.get("page", 1))
            page_size = min(max(int(request.GET.get("page_size", 20)), 1), 100)
        except ValueError:
            return Response({"detail": "VALIDATION_ERROR", "message": "Invalid pagination."}, status=400)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [_dump(order_read(o)) for o in page_obj.object_list],
            },
            status=200,
        )

    def post(self, request):
        """Place an order from the caller's cart.

        Returns:
            - 201 with {orderId, orderNumber, totalAmount, status}.
            - 400 VALIDATION_ERROR / EMPTY_CART / INSUFFICIENT_STOCK (with items).
            - 404 NOT_FOUND for an address that is not the caller's.
            - 409 IDEMPOTENCY_CONFLICT.
        """
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return validation_response(e)

        def handler():
            try:
                order = providers.get_order_service().place_order(
                    self.user_id,
                    shipping_address_id=dto.shipping_address_id,
                    billing_address_id=dto.billing_address_id,
                    shipping_method=dto.shipping_method,
                    payment_method=dto.payment_method,
                    notes=dto.notes,
                )
            except DomainError as e:
                return error_response(e)
            body = OrderCreatedDTO(
                order_id=order.pk,
                order_number=order.order_number,
                total_amount=order.total_amount,
                status=order.status,
            )
            resp = Response(_dump(body), status=status.HTTP_201_CREATED)
            resp.order_id = order.pk
            return resp

        return self.run_idempotent(request, "place_order", dto.model_dump(mode="json"), handler)


class RetrieveOrderView(UserAPIView):
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            o = providers.get_order_service().repository.get_for_user(oid, self.user_id)
        except DomainError as e:
            return error_response(e)
        return Response(_dump(order_detail(o)), status=200)


class OrderStatusView(UserAPIView):
    """Read the order status (owner) or apply an operator transition (staff)."""

    def get_throttles(self):
        self.throttle_scope = "orders_detail" if self.request.method == "GET" else "orders_transition"
        return super().get_throttles()

    def get(self, request, oid):
        try:
            o = providers.get_order_service().repository.get_for_user(oid, self.user_id)
        except DomainError as e:
            return error_response(e)
        body = OrderStatusDTO(order_status=o.status, payment_status=o.payment_status, last_updated=o.updated_at)
        return Response(_dump(body), status=200)

    def put(self, request, oid):
        self.require_staff(request)
        try:
            dto = UpdateStatusDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return validation_response(e)
        try:
            o = providers.get_state_machine().advance(oid, OrderStatus(dto.status))
        except DomainError as e:
            return error_response(e)
        return Response(_dump(order_read(o)), status=200)


class CancelOrderView(IdempotentMixin, UserAPIView):
    throttle_scope = "orders_transition"

    def post(self, request, oid):
        def handler():
            try:
                o = providers.get_state_machine().cancel(oid, user_id=self.user_id)
            except DomainError as e:
                return error_response(e)
            return Response({"status": o.status}, status=200)

        return self.run_idempotent(request, "cancel", {"order": str(oid)}, handler)


class ConfirmPaymentView(IdempotentMixin, UserAPIView):
    """Confirm payment for an order.

    With ``transactionId`` the reference reported by the payment provider is
    recorded. Without it the order total is charged through the payments
    port first (402 PAYMENT_FAILED when declined, 503 when the payments
    service is unavailable).
    """

    throttle_scope = "orders_transition"

    def post(self, request, oid):
        try:
            dto = ConfirmPaymentDTO.model_validate(request.data or {})
        except PydanticValidationError as e:
            return validation_response(e)

        key = request.headers.get("Idempotency-Key")

        def handler():
            machine = providers.get_state_machine()
            try:
                if dto.transaction_id:
                    o = machine.confirm_payment(oid, dto.transaction_id, user_id=self.user_id)
                else:
                    o = machine.charge_and_confirm(
                        oid, providers.get_payments(idempotency_key=key), user_id=self.user_id
                    )
            except DomainError as e:
                return error_response(e)
            except UPSTREAM_ERRORS:
                logger.exception("payments upstream unavailable", extra={"order_id": str(oid)})
                return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
            return Response({"status": o.status, "paymentStatus": o.payment_status}, status=200)

        payload = {"order": str(oid), **dto.model_dump(mode="json")}
        return self.run_idempotent(request, "confirm_payment", payload, handler)
