# storefront/api/routers/carts.py
from fastapi import APIRouter, Depends

from storefront.api.deps import get_cart_service, get_identity, get_user_identity
from storefront.domain.schemas import CartLineOut, CartOut, ItemIn, MergeIn, MergeOut, QuantityIn
from storefront.domain.types import CartIdentity, CartSnapshot
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


def to_cart_out(snapshot: CartSnapshot) -> CartOut:
    return CartOut(
        lines=[CartLineOut.model_validate(line) for line in snapshot.lines],
        subtotal=snapshot.subtotal,
        item_count=snapshot.item_count,
    )


@router.get("", response_model=CartOut)
def get_cart(
    identity: CartIdentity = Depends(get_identity),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.snapshot(identity))


@router.post("/items", response_model=CartOut)
def add_item(
    payload: ItemIn,
    identity: CartIdentity = Depends(get_identity),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.add_item(identity, payload.item_id, payload.quantity))


@router.put("/items/{item_id}", response_model=CartOut)
def set_quantity(
    item_id: int,
    payload: QuantityIn,
    identity: CartIdentity = Depends(get_identity),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.update_quantity(identity, item_id, payload.quantity))


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: int,
    identity: CartIdentity = Depends(get_identity),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.remove_item(identity, item_id))


@router.delete("", response_model=CartOut)
def clear_cart(
    identity: CartIdentity = Depends(get_identity),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.clear_cart(identity))


@router.post("/merge", response_model=MergeOut)
def merge_guest_cart(
    payload: MergeIn,
    user: CartIdentity = Depends(get_user_identity),
    svc: CartService = Depends(get_cart_service),
):
    """
    Called by the auth service right after a guest signs in.
    """
    result = svc.merge_guest_cart_into_user_cart(CartIdentity.for_session(payload.session_id), user)
    cart = to_cart_out(result.snapshot)
    return MergeOut(
        **cart.model_dump(),
        merged=[line.item_id for line in result.merged],
        skipped=[line.item_id for line in result.skipped],
    )


@router.post("/buy-now/{item_id}", response_model=CartOut)
def buy_now(
    item_id: int,
    user: CartIdentity = Depends(get_user_identity),
    svc: CartService = Depends(get_cart_service),
):
    """
    Empties the cart and puts one unit of item_id in it; the client goes to
    checkout next.
    """
    return to_cart_out(svc.buy_now(user, item_id))
