# storefront/data/models/order.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    reference = Column(String(32), unique=True, nullable=True)
    user_id = Column(Integer, nullable=False, index=True)

    # written once inside the checkout transaction, never recomputed
    subtotal = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    lines = relationship(
        "OrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineModel.item_id",
    )
    payments = relationship(
        "PaymentModel",
        back_populates="order",
        order_by="PaymentModel.id",
    )
