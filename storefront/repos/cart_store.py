# storefront/repos/cart_store.py
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from storefront.domain.types import Cart, CartIdentity, CartLine, UpsertMode


class CartStore(ABC):
    """
    Line-level storage for carts of one identity shape.

    Implementations must apply DELTA upserts at the storage layer
    (quantity = quantity + delta), never as a read-then-write in Python.
    """

    @abstractmethod
    def get(self, identity: CartIdentity) -> Cart:
        """Return the cart for identity, creating it if it does not exist yet."""

    @abstractmethod
    def get_line(self, identity: CartIdentity, item_id: int) -> Optional[CartLine]:
        ...

    @abstractmethod
    def upsert_line(
        self,
        identity: CartIdentity,
        item_id: int,
        value: int,
        mode: UpsertMode = UpsertMode.DELTA,
    ) -> Optional[CartLine]:
        """
        DELTA adds value to the stored quantity, ABSOLUTE replaces it.
        Returns the resulting line, or None when it dropped to <= 0 and was removed.
        """

    @abstractmethod
    def remove_line(self, identity: CartIdentity, item_id: int) -> bool:
        ...

    @abstractmethod
    def clear(self, identity: CartIdentity) -> int:
        """Delete every line, keep the cart. Returns the number of removed lines."""

    @abstractmethod
    def all_lines(self, identity: CartIdentity) -> List[CartLine]:
        ...

    def subtract_lines(self, identity: CartIdentity, lines: Iterable[CartLine]):
        """Take exactly these quantities out of the cart. Anything added since stays."""
        for line in lines:
            self.upsert_line(identity, line.item_id, -line.quantity, UpsertMode.DELTA)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield


def store_for(identity: CartIdentity, db, redis_client) -> CartStore:
    """Pick the store matching the identity shape."""
    if identity.is_user:
        from storefront.repos.cart_repo import PersistentCartStore

        return PersistentCartStore(db)

    from storefront.repos.session_cart_repo import SessionCartStore

    return SessionCartStore(redis_client)
