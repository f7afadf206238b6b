# storefront/api/routers/payments.py
from typing import List

from fastapi import APIRouter, Depends

from storefront.api.deps import get_payment_service, get_user_identity
from storefront.domain.schemas import PaymentFailedIn, PaymentIn, PaymentOut
from storefront.domain.types import CartIdentity
from storefront.services.payment_service import PaymentService

router = APIRouter(tags=["payments"])


@router.post("/orders/{order_id}/payments", response_model=PaymentOut, status_code=201)
def record_payment(
    order_id: int,
    payload: PaymentIn,
    identity: CartIdentity = Depends(get_user_identity),
    svc: PaymentService = Depends(get_payment_service),
):
    payment = svc.record_attempt(
        order_id, payload.amount, payload.method, payload.transaction_id, identity=identity
    )
    return PaymentOut.model_validate(payment)


@router.get("/orders/{order_id}/payments", response_model=List[PaymentOut])
def list_payments(
    order_id: int,
    identity: CartIdentity = Depends(get_user_identity),
    svc: PaymentService = Depends(get_payment_service),
):
    return [PaymentOut.model_validate(p) for p in svc.payments_for_order(order_id, identity)]


@router.get("/payments/{payment_id}", response_model=PaymentOut)
def get_payment(
    payment_id: int,
    identity: CartIdentity = Depends(get_user_identity),
    svc: PaymentService = Depends(get_payment_service),
):
    return PaymentOut.model_validate(svc.get_payment(payment_id, identity))


@router.post("/payments/{payment_id}/paid", response_model=PaymentOut)
def mark_paid(
    payment_id: int,
    identity: CartIdentity = Depends(get_user_identity),
    svc: PaymentService = Depends(get_payment_service),
):
    """
    409 when the order is already paid; the body names the paid payment,
    so a repeated call can be treated as a read.
    """
    return PaymentOut.model_validate(svc.mark_paid(payment_id, identity))


@router.post("/payments/{payment_id}/failed", response_model=PaymentOut)
def mark_failed(
    payment_id: int,
    payload: PaymentFailedIn,
    identity: CartIdentity = Depends(get_user_identity),
    svc: PaymentService = Depends(get_payment_service),
):
    return PaymentOut.model_validate(svc.mark_failed(payment_id, payload.reason, identity))
