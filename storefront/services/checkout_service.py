# storefront/services/checkout_service.py
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.types import CartIdentity, CartLine, CatalogItem, CheckoutState, money
from storefront.exceptions import (
    AuthenticationRequiredError,
    CartChangedError,
    EmptyCartError,
    MissingItemError,
    StorefrontError,
    TransactionError,
)
from storefront.repos.cart_repo import PersistentCartStore
from storefront.repos.order_repo import OrderRepo
from storefront.services.catalog_client import CatalogClient
from storefront.services.lock_service import ConsistencyGuard, Lease
from storefront.services.notification_service import NotificationService, ORDER_CREATED
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutAttempt:
    """State of one checkout run, logged on every transition."""

    def __init__(self, identity: CartIdentity):
        self.identity = identity
        self.state = CheckoutState.ACTIVE
        self.history = [self.state]

    def advance(self, state: CheckoutState):
        logger.info(f"Checkout {self.identity}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def abort(self, reason: str):
        logger.warning(f"Checkout {self.identity} aborted in {self.state.value}: {reason}")
        self.state = CheckoutState.ABORTED
        self.history.append(CheckoutState.ABORTED)


class CheckoutService:
    """
    Turns the cart of a signed-in user into an order.

    1. read the cart lines under the identity lock (empty -> EmptyCartError)
    2. price every line from the catalog, any missing item fails the whole checkout;
       the lease is renewed after each lookup
    3. one transaction: re-read the lines (changed -> CartChangedError), order row,
       order lines with captured prices, subtotal summed from those captured
       prices, exactly the priced quantities taken out of the cart
    4. confirm the lease, commit; any failure in 3 or 4 rolls everything back

    Nothing is written before step 3, so every failure leaves the cart as it was.
    """

    def __init__(
        self,
        db: Session,
        catalog: CatalogClient,
        guard: ConsistencyGuard,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.catalog = catalog
        self.guard = guard
        self.notifier = notifier or NotificationService()
        self.cart_store = PersistentCartStore(db)
        self.orders = OrderRepo(db)
        self.last_attempt: CheckoutAttempt | None = None

    def checkout(self, identity: CartIdentity) -> OrderModel:
        if not identity.is_user:
            raise AuthenticationRequiredError("Sign in to check out; the guest cart is merged on login")

        attempt = CheckoutAttempt(identity)
        self.last_attempt = attempt

        with self.guard.hold(identity) as lease:
            attempt.advance(CheckoutState.VALIDATING)
            lines = self.cart_store.all_lines(identity)
            if not lines:
                attempt.abort("cart is empty")
                raise EmptyCartError()

            attempt.advance(CheckoutState.PRICE_SNAPSHOTTING)
            try:
                items = self._price_snapshot(lines, lease)
            except StorefrontError as e:
                attempt.abort(e.message)
                raise

            attempt.advance(CheckoutState.MATERIALIZING)
            try:
                order = self._materialize(identity, lines, items, lease)
            except StorefrontError as e:
                attempt.abort(e.message)
                raise
            except Exception as e:
                attempt.abort(f"transaction rolled back: {e}")
                raise TransactionError() from e

            attempt.advance(CheckoutState.COMMITTED)
            attempt.advance(CheckoutState.CART_CLEARED)

        logger.info(
            f"Order {order.id} ({order.reference}) created for user {order.user_id}, "
            f"subtotal {order.subtotal}"
        )
        self.notifier.publish(
            ORDER_CREATED,
            {
                "order_id": order.id,
                "reference": order.reference,
                "user_id": order.user_id,
                "subtotal": order.subtotal,
            },
        )
        return order

    def _price_snapshot(self, lines: List[CartLine], lease: Lease) -> dict:
        items = {}
        missing = []
        for line in lines:
            item = self.catalog.fetch_item(line.item_id)
            if item is None:
                missing.append(line.item_id)
            else:
                items[line.item_id] = item
            # renews the lock, raises if it already expired
            lease.confirm()

        if missing:
            raise MissingItemError(missing)
        return items

    def _materialize(self, identity: CartIdentity, lines: List[CartLine], items: dict, lease: Lease) -> OrderModel:
        with self.cart_store.transaction():
            if self.cart_store.all_lines(identity) != lines:
                raise CartChangedError(identity)

            subtotal = Decimal("0.00")
            order_lines = []
            for line in lines:
                item: CatalogItem = items[line.item_id]
                unit_price = money(item.price)
                subtotal += unit_price * line.quantity
                order_lines.append(
                    {
                        "item_id": line.item_id,
                        "item_name": item.name,
                        "quantity": line.quantity,
                        "unit_price_at_purchase": unit_price,
                    }
                )

            order = self.orders.create_order(identity.user_id, money(subtotal))
            self.orders.add_lines(order, order_lines)
            self.cart_store.subtract_lines(identity, lines)
            lease.confirm()

        return order
