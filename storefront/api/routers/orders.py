# storefront/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends

from storefront.api.deps import get_checkout_service, get_order_service, get_user_identity
from storefront.domain.schemas import CheckoutOut, OrderOut
from storefront.domain.types import CartIdentity
from storefront.services.checkout_service import CheckoutService
from storefront.services.order_service import OrderService

router = APIRouter(tags=["orders"])


@router.post("/checkout", response_model=CheckoutOut, status_code=201)
def checkout(
    identity: CartIdentity = Depends(get_user_identity),
    svc: CheckoutService = Depends(get_checkout_service),
):
    """
    Turns the current cart into an order and empties the cart.
    409 on an empty cart, 422 when an item left the catalog.
    """
    order = svc.checkout(identity)
    return CheckoutOut(order_id=order.id, reference=order.reference, subtotal=order.subtotal)


@router.get("/orders", response_model=List[OrderOut])
def list_orders(
    identity: CartIdentity = Depends(get_user_identity),
    svc: OrderService = Depends(get_order_service),
):
    return svc.list_orders(identity)


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    identity: CartIdentity = Depends(get_user_identity),
    svc: OrderService = Depends(get_order_service),
):
    return svc.get_order(order_id, identity)
