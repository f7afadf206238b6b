# storefront/services/order_service.py
from typing import List

from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.types import CartIdentity
from storefront.exceptions import AuthenticationRequiredError, OrderNotFoundError
from storefront.repos.order_repo import OrderRepo


class OrderService:
    """
    Read side of orders. Orders are written only by CheckoutService and
    never change afterwards, so this service has no commands.
    """

    def __init__(self, db: Session):
        self.repo = OrderRepo(db)

    def get_order(self, order_id: int, identity: CartIdentity) -> OrderModel:
        if not identity.is_user:
            raise AuthenticationRequiredError()

        order = self.repo.get_order(order_id)
        # someone else's order is reported as missing
        if not order or order.user_id != identity.user_id:
            raise OrderNotFoundError(order_id)
        return order

    def list_orders(self, identity: CartIdentity) -> List[OrderModel]:
        if not identity.is_user:
            raise AuthenticationRequiredError()
        return self.repo.list_orders(identity.user_id)
