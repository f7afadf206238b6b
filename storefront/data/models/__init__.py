# import all models so SQLAlchemy registers them on Base.metadata

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_line import CartLineModel
from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel
from storefront.data.models.payment import PaymentModel

__all__ = ["CartModel", "CartLineModel", "OrderModel", "OrderLineModel", "PaymentModel"]
