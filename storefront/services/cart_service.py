from decimal import Decimal
from typing import List

import redis
from sqlalchemy.orm import Session

from storefront.domain.types import (
    CartIdentity,
    CartLine,
    CartSnapshot,
    MergeResult,
    SnapshotLine,
    UpsertMode,
    money,
)
from storefront.exceptions import (
    AuthenticationRequiredError,
    ItemNotFoundError,
    LineNotFoundError,
    ValidationError,
)
from storefront.repos.cart_store import CartStore, store_for
from storefront.services.catalog_client import CatalogClient
from storefront.services.lock_service import ConsistencyGuard
from storefront.services.notification_service import NotificationService, CART_UPDATED
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartService:
    """
    Use cases of the cart domain.

    commands (add, update, remove, clear, merge) run under the identity lock
    and inside the store transaction; the query (snapshot) only reads.
    The store is picked from the identity shape, nothing below branches on
    guest vs user.
    """

    def __init__(
        self,
        db: Session,
        redis_client: redis.Redis,
        catalog: CatalogClient,
        guard: ConsistencyGuard,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.redis = redis_client
        self.catalog = catalog
        self.guard = guard
        self.notifier = notifier or NotificationService()

    def _store(self, identity: CartIdentity) -> CartStore:
        return store_for(identity, self.db, self.redis)

    # query
    def snapshot(self, identity: CartIdentity) -> CartSnapshot:
        """Price the cart at current catalog prices. Never used as an order value."""
        lines = self._store(identity).all_lines(identity)

        out: List[SnapshotLine] = []
        subtotal = Decimal("0.00")

        for line in lines:
            item = self.catalog.fetch_item(line.item_id)
            if item is None:
                # item left the catalog; shown, but checkout will refuse it
                out.append(
                    SnapshotLine(
                        item_id=line.item_id,
                        quantity=line.quantity,
                        name=None,
                        current_price=None,
                        line_total=Decimal("0.00"),
                        available=False,
                    )
                )
                continue

            line_total = money(item.price * line.quantity)
            subtotal += line_total
            out.append(
                SnapshotLine(
                    item_id=line.item_id,
                    quantity=line.quantity,
                    name=item.name,
                    current_price=item.price,
                    line_total=line_total,
                    available=True,
                )
            )

        return CartSnapshot(identity=identity, lines=out, subtotal=money(subtotal))

    # commands
    def resolve_cart(self, identity: CartIdentity):
        """Find or create the single active cart of identity."""
        store = self._store(identity)
        with self.guard.hold(identity), store.transaction():
            return store.get(identity)

    def add_item(self, identity: CartIdentity, item_id: int, quantity: int) -> CartSnapshot:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", payload={"item_id": item_id})

        # catalog round trip before taking the lock
        if not self.catalog.exists(item_id):
            raise ItemNotFoundError(item_id)

        store = self._store(identity)
        with self.guard.hold(identity), store.transaction():
            line = store.upsert_line(identity, item_id, quantity, UpsertMode.DELTA)

        logger.info(f"Added {quantity} x item {item_id} to {identity}, now {line.quantity if line else 0}")
        self._cart_updated(identity, "add", item_id, line)
        return self.snapshot(identity)

    def update_quantity(self, identity: CartIdentity, item_id: int, quantity: int) -> CartSnapshot:
        if quantity <= 0:
            return self.remove_item(identity, item_id)

        store = self._store(identity)
        with self.guard.hold(identity), store.transaction():
            if store.get_line(identity, item_id) is None:
                raise LineNotFoundError(item_id)
            line = store.upsert_line(identity, item_id, quantity, UpsertMode.ABSOLUTE)

        logger.info(f"Set item {item_id} in {identity} to {quantity}")
        self._cart_updated(identity, "update", item_id, line)
        return self.snapshot(identity)

    def remove_item(self, identity: CartIdentity, item_id: int) -> CartSnapshot:
        store = self._store(identity)
        with self.guard.hold(identity), store.transaction():
            removed = store.remove_line(identity, item_id)

        if removed:
            logger.info(f"Removed item {item_id} from {identity}")
            self._cart_updated(identity, "remove", item_id, None)
        return self.snapshot(identity)

    def clear_cart(self, identity: CartIdentity) -> CartSnapshot:
        store = self._store(identity)
        with self.guard.hold(identity), store.transaction():
            removed = store.clear(identity)

        if removed:
            self._cart_updated(identity, "clear", None, None)
        return self.snapshot(identity)

    def buy_now(self, identity: CartIdentity, item_id: int) -> CartSnapshot:
        """Replace the whole cart of a signed-in user with one unit of item_id, ready for checkout."""
        if not identity.is_user:
            raise AuthenticationRequiredError("Sign in to buy now")
        if not self.catalog.exists(item_id):
            raise ItemNotFoundError(item_id)

        store = self._store(identity)
        with self.guard.hold(identity), store.transaction():
            removed = store.clear(identity)
            line = store.upsert_line(identity, item_id, 1, UpsertMode.ABSOLUTE)

        logger.info(f"Buy now {identity}: dropped {removed} lines, cart holds item {item_id} only")
        self._cart_updated(identity, "buy_now", item_id, line)
        return self.snapshot(identity)

    def merge_guest_cart_into_user_cart(self, guest: CartIdentity, user: CartIdentity) -> MergeResult:
        """
        Called once, when a guest signs in. Quantities are summed into the
        user cart; the guest cart is cleared only after the user side committed.
        Lines whose item is gone from the catalog cannot be added and are
        reported back in `skipped`.
        """
        if guest.is_user or not user.is_user:
            raise ValidationError("Merge needs a guest cart and a user cart", status_code=400)

        guest_store = self._store(guest)
        user_store = self._store(user)

        merged: List[CartLine] = []
        skipped: List[CartLine] = []

        with self.guard.hold(guest, user) as lease:
            guest_lines = guest_store.all_lines(guest)

            for line in guest_lines:
                if self.catalog.exists(line.item_id):
                    merged.append(line)
                else:
                    skipped.append(line)
                lease.confirm()

            with user_store.transaction():
                user_store.get(user)
                for line in merged:
                    user_store.upsert_line(user, line.item_id, line.quantity, UpsertMode.DELTA)
                lease.confirm()

            # only the lines read above
            guest_store.subtract_lines(guest, guest_lines)

        if skipped:
            logger.warning(
                f"Merge {guest} -> {user}: items {[l.item_id for l in skipped]} no longer exist"
            )
        logger.info(f"Merged {len(merged)} lines from {guest} into {user}")

        if merged:
            self._cart_updated(user, "merge", None, None)
        return MergeResult(snapshot=self.snapshot(user), merged=merged, skipped=skipped)

    def _cart_updated(self, identity: CartIdentity, action: str, item_id, line):
        self.notifier.publish(
            CART_UPDATED,
            {
                "cart": identity.lock_key,
                "action": action,
                "item_id": item_id,
                "quantity": line.quantity if line else 0,
            },
        )
