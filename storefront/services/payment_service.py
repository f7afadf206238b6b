# storefront/services/payment_service.py
from datetime import datetime, timedelta, timezone
from decimal import InvalidOperation
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.payment import PaymentModel
from storefront.domain.types import CartIdentity, PaymentStatus, money
from storefront.exceptions import (
    AlreadyPaidError,
    InvalidPaymentStateError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from storefront.repos.order_repo import OrderRepo
from storefront.repos.payment_repo import PaymentRepo
from storefront.services.lock_service import ConsistencyGuard
from storefront.services.notification_service import NotificationService, PAYMENT_RECORDED
from storefront.utils.settings import PAYMENT_PENDING_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def _order_key(order_id: int) -> str:
    return f"order:{order_id}:payments"


class PaymentService:
    """
    Local ledger of payment attempts against orders.

    pending -> paid | failed. At most one payment per order reaches paid:
    the guard serializes writers per order, the compare-and-set update
    refuses a second paid row, and the partial unique index backs both.
    """

    def __init__(self, db: Session, guard: ConsistencyGuard, notifier: NotificationService | None = None):
        self.db = db
        self.repo = PaymentRepo(db)
        self.orders = OrderRepo(db)
        self.guard = guard
        self.notifier = notifier or NotificationService()

    def _get_payment(self, payment_id: int, identity: CartIdentity | None = None) -> PaymentModel:
        payment = self.repo.get_payment(payment_id)
        # payments of another user's order are reported as missing
        if not payment or (identity is not None and payment.order.user_id != identity.user_id):
            raise PaymentNotFoundError(payment_id)
        return payment

    def _require_order(self, order_id: int, identity: CartIdentity | None = None):
        order = self.orders.get_order(order_id)
        if not order or (identity is not None and order.user_id != identity.user_id):
            raise OrderNotFoundError(order_id)
        return order

    # query
    def get_payment(self, payment_id: int, identity: CartIdentity | None = None) -> PaymentModel:
        return self._get_payment(payment_id, identity)

    def payments_for_order(self, order_id: int, identity: CartIdentity | None = None) -> List[PaymentModel]:
        self._require_order(order_id, identity)
        return self.repo.list_for_order(order_id)

    # commands
    def record_attempt(
        self,
        order_id: int,
        amount,
        method: str,
        transaction_id: str | None = None,
        identity: CartIdentity | None = None,
    ) -> PaymentModel:
        try:
            amount = money(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Amount must be a number", payload={"order_id": order_id})
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0", payload={"order_id": order_id})
        if not method or not method.strip():
            raise ValidationError("Payment method is required", payload={"order_id": order_id})

        self._require_order(order_id, identity)

        with self.guard.hold(_order_key(order_id)):
            paid = self.repo.paid_for_order(order_id)
            if paid:
                raise AlreadyPaidError(paid)

            payment = self.repo.create_payment(
                PaymentModel(
                    order_id=order_id,
                    amount=amount,
                    method=method.strip(),
                    status=PaymentStatus.PENDING.value,
                    transaction_id=transaction_id,
                )
            )
            self.repo.commit()

        logger.info(f"Payment {payment.id} recorded for order {order_id}: {amount} via {payment.method}")
        self._recorded(payment)
        return payment

    def mark_paid(self, payment_id: int, identity: CartIdentity | None = None) -> PaymentModel:
        payment = self._get_payment(payment_id, identity)
        order_id = payment.order_id

        with self.guard.hold(_order_key(order_id)):
            try:
                updated = self.repo.mark_paid_if_unpaid(payment_id, order_id)
                if updated:
                    self.repo.commit()
            except IntegrityError:
                # lost the race on the unique index to another writer
                self.repo.rollback()
                updated = 0

            if not updated:
                self.repo.rollback()
                winner = self.repo.paid_for_order(order_id)
                if winner:
                    logger.info(f"Payment {payment_id}: order {order_id} already paid by payment {winner.id}")
                    raise AlreadyPaidError(winner)

                current = self._get_payment(payment_id)
                raise InvalidPaymentStateError(payment_id, current.status, PaymentStatus.PAID.value)

        self.db.refresh(payment)
        logger.info(f"Payment {payment_id} marked paid for order {order_id}")
        self._recorded(payment)
        return payment

    def mark_failed(self, payment_id: int, reason: str, identity: CartIdentity | None = None) -> PaymentModel:
        payment = self._get_payment(payment_id, identity)

        with self.guard.hold(_order_key(payment.order_id)):
            updated = self.repo.mark_failed_if_pending(payment_id, reason)
            self.repo.commit()

            if not updated:
                self.db.refresh(payment)
                if payment.status == PaymentStatus.FAILED.value:
                    return payment
                raise InvalidPaymentStateError(payment_id, payment.status, PaymentStatus.FAILED.value)

        self.db.refresh(payment)
        logger.info(f"Payment {payment_id} failed: {reason}")
        self._recorded(payment)
        return payment

    def expire_stale_attempts(self, older_than: int = PAYMENT_PENDING_TTL_SECONDS, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=older_than)
        count = self.repo.fail_pending_before(cutoff, "expired")
        self.repo.commit()

        if count:
            logger.info(f"Expired {count} pending payments created before {cutoff.isoformat()}")
        return count

    def _recorded(self, payment: PaymentModel):
        self.notifier.publish(
            PAYMENT_RECORDED,
            {
                "payment_id": payment.id,
                "order_id": payment.order_id,
                "amount": payment.amount,
                "method": payment.method,
                "status": payment.status,
            },
        )
