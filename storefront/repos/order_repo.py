# storefront/repos/order_repo.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order(self, user_id: int, subtotal: Decimal) -> OrderModel:
        order = OrderModel(user_id=user_id, subtotal=subtotal)
        self.db.add(order)
        self.db.flush()

        # the id only exists after flush
        created = order.created_at or datetime.now(timezone.utc)
        order.reference = f"ORD-{created:%Y%m%d}-{order.id:06d}"
        return order

    def add_lines(self, order: OrderModel, lines: Iterable[dict]) -> List[OrderLineModel]:
        models = [OrderLineModel(order_id=order.id, **line) for line in lines]
        self.db.add_all(models)
        self.db.flush()
        return models

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.lines))
            .where(OrderModel.id == order_id)
        ).scalar_one_or_none()

    def list_orders(self, user_id: int) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.lines))
                .where(OrderModel.user_id == user_id)
                .order_by(OrderModel.id.desc())
            ).scalars()
        )
