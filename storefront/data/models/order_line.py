# storefront/data/models/order_line.py
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class OrderLineModel(Base):
    __tablename__ = "order_lines"
    __table_args__ = (
        UniqueConstraint("order_id", "item_id", name="uq_order_lines_order_item"),
        CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, nullable=False)
    item_name = Column(String(255), nullable=True)

    quantity = Column(Integer, nullable=False)
    # price captured at checkout, independent of the catalog from then on
    unit_price_at_purchase = Column(Numeric(10, 2), nullable=False)

    order = relationship("OrderModel", back_populates="lines")
