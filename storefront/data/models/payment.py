# storefront/data/models/payment.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # at most one paid payment per order
        Index(
            "uq_payments_order_paid",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'paid'"),
            sqlite_where=text("status = 'paid'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, paid, failed
    failure_reason = Column(String(255), nullable=True)
    transaction_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    order = relationship("OrderModel", back_populates="payments")
