# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from decimal import Decimal
from datetime import datetime


class ItemIn(BaseModel):
    """Adding an item to the cart."""

    item_id: int = Field(..., gt=0, description="Catalog item id")
    quantity: int = Field(1, ge=1, description="How many to add (>= 1)")


class QuantityIn(BaseModel):
    """Setting the quantity of a line. 0 or less removes the line."""

    quantity: int


class MergeIn(BaseModel):
    session_id: str = Field(..., min_length=1, description="Guest session being signed in")


class CartLineOut(BaseModel):
    item_id: int
    quantity: int
    name: Optional[str] = None
    current_price: Optional[Decimal] = None
    line_total: Decimal
    available: bool

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    """Cart priced at current catalog prices."""

    lines: List[CartLineOut]
    subtotal: Decimal
    item_count: int

    model_config = ConfigDict(from_attributes=True)


class MergeOut(CartOut):
    merged: List[int]
    skipped: List[int]


class CheckoutOut(BaseModel):
    order_id: int
    reference: str
    subtotal: Decimal


class OrderLineOut(BaseModel):
    item_id: int
    item_name: Optional[str] = None
    quantity: int
    unit_price_at_purchase: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    reference: str
    user_id: int
    subtotal: Decimal
    created_at: datetime
    lines: List[OrderLineOut]

    model_config = ConfigDict(from_attributes=True)


class PaymentIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = Field(..., min_length=1, max_length=50)
    transaction_id: Optional[str] = Field(None, max_length=255)


class PaymentFailedIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class PaymentOut(BaseModel):
    payment_id: int = Field(..., validation_alias="id")
    order_id: int
    amount: Decimal
    method: str
    status: str
    failure_reason: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
