"""Pydantic schemas for the orders API.

Request DTOs validate incoming JSON (camelCase on the wire); read DTOs shape
the responses. Money is serialized as strings with two decimals.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import Field, field_validator

from apps.cart.schemas import CamelModel
from .models import OrderLineModel, OrderModel


class CreateOrderDTO(CamelModel):
    """Body of ``POST /api/orders/``.

    Attributes:
        shipping_address_id: Address book id of the shipping address.
        billing_address_id: Optional billing address; defaults to shipping.
        shipping_method: Carrier / speed chosen by the user.
        payment_method: Payment method id offered at checkout.
        notes: Free text for the merchant.
    """

    shipping_address_id: int = Field(gt=0)
    billing_address_id: Optional[int] = Field(default=None, gt=0)
    shipping_method: str = Field(min_length=1, max_length=100)
    payment_method: str = Field(min_length=1, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("shipping_method", "payment_method")
    @classmethod
    def strip_method(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("must not be blank")
        return v2


class ConfirmPaymentDTO(CamelModel):
    transaction_id: Optional[str] = Field(default=None, min_length=1, max_length=100)


class UpdateStatusDTO(CamelModel):
    status: Literal["shipped", "delivered", "refunded"]


class OrderCreatedDTO(CamelModel):
    order_id: UUID
    order_number: str
    total_amount: Decimal
    status: str


class OrderStatusDTO(CamelModel):
    order_status: str
    payment_status: str
    last_updated: datetime


class OrderLineDTO(CamelModel):
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    options: Dict[str, Any]

    @classmethod
    def from_model(cls, line: OrderLineModel) -> "OrderLineDTO":
        return cls(
            product_id=line.product_id,
            product_name=line.product_name,
            product_sku=line.product_sku,
            quantity=line.quantity,
            unit_price=line.unit_price,
            line_total=line.line_total,
            options=line.options or {},
        )


class OrderReadDTO(CamelModel):
    id: UUID
    order_number: str
    status: str
    payment_status: str
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    currency: str
    shipping_method: str
    payment_method: str
    transaction_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class OrderDetailDTO(OrderReadDTO):
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    notes: str = ""
    items: List[OrderLineDTO]


def order_read(o: OrderModel) -> OrderReadDTO:
    return OrderReadDTO.model_validate(o, from_attributes=True)


def order_detail(o: OrderModel) -> OrderDetailDTO:
    base = order_read(o).model_dump()
    return OrderDetailDTO(
        **base,
        shipping_address=o.shipping_address,
        billing_address=o.billing_address,
        notes=o.notes,
        items=[OrderLineDTO.from_model(line) for line in o.lines.all()],
    )
