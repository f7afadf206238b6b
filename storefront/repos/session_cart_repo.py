# storefront/repos/session_cart_repo.py
from typing import List, Optional

import redis

from storefront.domain.types import Cart, CartIdentity, CartLine, UpsertMode
from storefront.repos.cart_store import CartStore
from storefront.utils.retry import redis_retry
from storefront.utils.settings import CART_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class SessionCartStore(CartStore):
    """
    Guest carts keyed by anonymous session id.

    One redis hash per session: field = item id, value = quantity.
    HINCRBY makes DELTA upserts atomic without any locking on our side,
    and the key expires CART_TTL_SECONDS after the last write.
    """

    def __init__(self, client: redis.Redis, ttl: int = CART_TTL_SECONDS):
        self.redis = client
        self.ttl = ttl

    @staticmethod
    def key(identity: CartIdentity) -> str:
        if identity.is_user:
            raise ValueError(f"SessionCartStore cannot hold {identity}")
        return f"cart:session:{identity.session_id}:lines"

    @staticmethod
    def _to_lines(raw: dict) -> List[CartLine]:
        lines = [CartLine(item_id=int(k), quantity=int(v)) for k, v in raw.items()]
        return sorted((line for line in lines if line.quantity > 0), key=lambda line: line.item_id)

    @redis_retry()
    def get(self, identity: CartIdentity) -> Cart:
        lines = self._to_lines(self.redis.hgetall(self.key(identity)))
        return Cart(identity=identity, lines={line.item_id: line for line in lines})

    @redis_retry()
    def get_line(self, identity: CartIdentity, item_id: int) -> Optional[CartLine]:
        raw = self.redis.hget(self.key(identity), str(item_id))
        if raw is None or int(raw) <= 0:
            return None
        return CartLine(item_id=item_id, quantity=int(raw))

    @redis_retry()
    def all_lines(self, identity: CartIdentity) -> List[CartLine]:
        return self._to_lines(self.redis.hgetall(self.key(identity)))

    def upsert_line(
        self,
        identity: CartIdentity,
        item_id: int,
        value: int,
        mode: UpsertMode = UpsertMode.DELTA,
    ) -> Optional[CartLine]:
        key = self.key(identity)
        field = str(item_id)

        if mode == UpsertMode.DELTA:
            quantity = self._incr(key, field, value)
        else:
            quantity = value
            if quantity > 0:
                self._set(key, field, quantity)

        if quantity <= 0:
            self.redis.hdel(key, field)
            return None
        return CartLine(item_id=item_id, quantity=quantity)

    def _incr(self, key: str, field: str, delta: int) -> int:
        pipe = self.redis.pipeline(transaction=True)
        pipe.hincrby(key, field, delta)
        pipe.expire(key, self.ttl)
        quantity, _ = pipe.execute()
        return int(quantity)

    @redis_retry()
    def _set(self, key: str, field: str, quantity: int):
        pipe = self.redis.pipeline(transaction=True)
        pipe.hset(key, field, quantity)
        pipe.expire(key, self.ttl)
        pipe.execute()

    @redis_retry()
    def remove_line(self, identity: CartIdentity, item_id: int) -> bool:
        return bool(self.redis.hdel(self.key(identity), str(item_id)))

    @redis_retry()
    def clear(self, identity: CartIdentity) -> int:
        key = self.key(identity)
        pipe = self.redis.pipeline(transaction=True)
        pipe.hlen(key)
        pipe.delete(key)
        removed, _ = pipe.execute()

        logger.info(f"Cleared {removed} lines from guest cart {identity.session_id}")
        return int(removed)
