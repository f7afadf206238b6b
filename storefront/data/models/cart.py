# storefront/data/models/cart.py
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from storefront.data.database import Base


class CartModel(Base):
    """Persisted cart of a signed-in user. One row per user, kept across checkouts."""

    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    lines = relationship(
        "CartLineModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartLineModel.item_id",
    )
