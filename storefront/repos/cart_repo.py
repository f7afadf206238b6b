# storefront/repos/cart_repo.py
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import select, delete, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_line import CartLineModel
from storefront.domain.types import Cart, CartIdentity, CartLine, UpsertMode
from storefront.repos.cart_store import CartStore
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# dialects with INSERT ... ON CONFLICT
_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class PersistentCartStore(CartStore):
    """
    Carts of signed-in users, stored in the relational database.

    Methods only execute/flush; the caller decides when to commit through
    transaction(), so checkout can clear lines inside its own transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        if dialect not in _INSERTS:
            raise NotImplementedError(f"Atomic cart upserts are not supported on {dialect}")
        return _INSERTS[dialect](model)

    @staticmethod
    def _user_id(identity: CartIdentity) -> int:
        if not identity.is_user:
            raise ValueError(f"PersistentCartStore cannot hold {identity}")
        return identity.user_id

    def _cart_id(self, identity: CartIdentity, create: bool = True) -> Optional[int]:
        user_id = self._user_id(identity)
        query = select(CartModel.id).where(CartModel.user_id == user_id)

        cart_id = self.db.execute(query).scalar_one_or_none()
        if cart_id is not None or not create:
            return cart_id

        # unique(user_id) + DO NOTHING: concurrent creators end up on the same row
        stmt = self._insert(CartModel).values(user_id=user_id)
        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["user_id"]))
        cart_id = self.db.execute(query).scalar_one()

        logger.info(f"Resolved cart {cart_id} for user {user_id}")
        return cart_id

    def _touch(self, cart_id: int):
        self.db.execute(
            update(CartModel).where(CartModel.id == cart_id).values(updated_at=func.now())
        )

    def _lines(self, cart_id: int) -> List[CartLine]:
        rows = self.db.execute(
            select(CartLineModel.item_id, CartLineModel.quantity)
            .where(CartLineModel.cart_id == cart_id)
            .order_by(CartLineModel.item_id)
        ).all()
        return [CartLine(item_id=r.item_id, quantity=r.quantity) for r in rows]

    # reads
    def get(self, identity: CartIdentity) -> Cart:
        cart_id = self._cart_id(identity)
        lines = self._lines(cart_id)
        return Cart(identity=identity, lines={line.item_id: line for line in lines})

    def get_line(self, identity: CartIdentity, item_id: int) -> Optional[CartLine]:
        cart_id = self._cart_id(identity, create=False)
        if cart_id is None:
            return None

        row = self.db.execute(
            select(CartLineModel.quantity).where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.item_id == item_id,
            )
        ).scalar_one_or_none()
        return CartLine(item_id=item_id, quantity=row) if row is not None else None

    def all_lines(self, identity: CartIdentity) -> List[CartLine]:
        cart_id = self._cart_id(identity, create=False)
        if cart_id is None:
            return []
        return self._lines(cart_id)

    # writes
    def upsert_line(
        self,
        identity: CartIdentity,
        item_id: int,
        value: int,
        mode: UpsertMode = UpsertMode.DELTA,
    ) -> Optional[CartLine]:
        if mode == UpsertMode.ABSOLUTE and value <= 0:
            self.remove_line(identity, item_id)
            return None

        cart_id = self._cart_id(identity)

        if mode == UpsertMode.DELTA and value < 0:
            self._decrement(cart_id, item_id, value)
        elif mode == UpsertMode.DELTA and value == 0:
            pass
        else:
            stmt = self._insert(CartLineModel).values(
                cart_id=cart_id,
                item_id=item_id,
                quantity=value,
            )
            if mode == UpsertMode.DELTA:
                # quantity = quantity + delta, evaluated by the database
                new_quantity = CartLineModel.quantity + stmt.excluded.quantity
            else:
                new_quantity = stmt.excluded.quantity

            self.db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["cart_id", "item_id"],
                    set_={"quantity": new_quantity},
                )
            )

        self._touch(cart_id)
        self.db.flush()
        return self.get_line(identity, item_id)

    def _decrement(self, cart_id: int, item_id: int, delta: int):
        # lines that would fall to <= 0 go away instead of breaking the check constraint
        self.db.execute(
            delete(CartLineModel).where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.item_id == item_id,
                CartLineModel.quantity + delta <= 0,
            )
        )
        self.db.execute(
            update(CartLineModel)
            .where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.item_id == item_id,
            )
            .values(quantity=CartLineModel.quantity + delta)
        )

    def remove_line(self, identity: CartIdentity, item_id: int) -> bool:
        cart_id = self._cart_id(identity, create=False)
        if cart_id is None:
            return False

        result = self.db.execute(
            delete(CartLineModel).where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.item_id == item_id,
            )
        )
        if result.rowcount:
            self._touch(cart_id)
        self.db.flush()
        return result.rowcount > 0

    def clear(self, identity: CartIdentity) -> int:
        cart_id = self._cart_id(identity, create=False)
        if cart_id is None:
            return 0

        result = self.db.execute(delete(CartLineModel).where(CartLineModel.cart_id == cart_id))
        self._touch(cart_id)
        self.db.flush()

        logger.info(f"Cleared {result.rowcount} lines from cart {cart_id}")
        return result.rowcount

    @contextmanager
    def transaction(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
