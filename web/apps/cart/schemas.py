"""Pydantic schemas for the cart API."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from apps.orders.checkout import Totals, round_money
from apps.orders.domain import CartEntry


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddCartItemDTO(CamelModel):
    """Body of ``POST /api/cart/items/``.

    Attributes:
        product_id: Catalog product id.
        quantity: Units to add (merged into an existing line).
        options: Free-form selections (size, color...).
    """

    product_id: int = Field(gt=0)
    quantity: int = Field(default=1, gt=0, le=1000)
    options: Dict[str, Any] = Field(default_factory=dict)


class UpdateCartItemDTO(CamelModel):
    quantity: int = Field(gt=0, le=1000)


class CartItemOut(CamelModel):
    id: int
    product_id: int
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    options: Dict[str, Any]
    available_stock: Optional[int]
    out_of_stock: bool

    @classmethod
    def from_entry(cls, e: CartEntry) -> "CartItemOut":
        return cls(
            id=e.line_id,
            product_id=e.product.id,
            sku=e.product.sku,
            name=e.product.name,
            quantity=e.quantity,
            unit_price=e.unit_price,
            line_total=round_money(e.unit_price * e.quantity),
            options=e.options,
            available_stock=e.product.available(),
            out_of_stock=e.out_of_stock,
        )


class TotalsOut(CamelModel):
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    @classmethod
    def from_totals(cls, t: Totals) -> "TotalsOut":
        return cls(**t.as_dict())


class CartSummaryOut(TotalsOut):
    item_count: int


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def items_out(entries: List[CartEntry]) -> List[dict]:
    return [dump(CartItemOut.from_entry(e)) for e in entries]
