# storefront/repos/payment_repo.py
from datetime import datetime, timezone
from typing import List

from sqlalchemy import select, update, exists
from sqlalchemy.orm import Session, aliased

from storefront.data.models.payment import PaymentModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_payment(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_payment(self, payment_id: int) -> PaymentModel | None:
        return self.db.get(PaymentModel, payment_id)

    def list_for_order(self, order_id: int) -> List[PaymentModel]:
        return list(
            self.db.execute(
                select(PaymentModel).where(PaymentModel.order_id == order_id).order_by(PaymentModel.id)
            ).scalars()
        )

    def paid_for_order(self, order_id: int) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel).where(
                PaymentModel.order_id == order_id,
                PaymentModel.status == "paid",
            )
        ).scalar_one_or_none()

    def mark_paid_if_unpaid(self, payment_id: int, order_id: int) -> int:
        """
        Compare-and-set: pending -> paid only while the order has no paid row.
        Returns rowcount (0 or 1).
        """
        other = aliased(PaymentModel)
        already_paid = exists().where(other.order_id == order_id, other.status == "paid")

        result = self.db.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status == "pending",
                ~already_paid,
            )
            .values(status="paid", updated_at=datetime.now(timezone.utc)),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def mark_failed_if_pending(self, payment_id: int, reason: str) -> int:
        result = self.db.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.status == "pending")
            .values(status="failed", failure_reason=reason, updated_at=datetime.now(timezone.utc)),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def fail_pending_before(self, cutoff: datetime, reason: str) -> int:
        result = self.db.execute(
            update(PaymentModel)
            .where(PaymentModel.status == "pending", PaymentModel.created_at < cutoff)
            .values(status="failed", failure_reason=reason, updated_at=datetime.now(timezone.utc)),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
