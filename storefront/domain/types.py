# storefront/domain/types.py
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional

from storefront.exceptions import ValidationError

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Normalise a price or amount to a two-place Decimal."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartIdentity:
    """Who a cart belongs to: a signed-in user or an anonymous session, never both."""

    user_id: Optional[int] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if (self.user_id is None) == (self.session_id is None):
            raise ValidationError(
                "Cart identity needs exactly one of user_id or session_id",
                status_code=400,
            )
        if self.session_id is not None and not self.session_id.strip():
            raise ValidationError("session_id must not be blank", status_code=400)

    @classmethod
    def for_user(cls, user_id: int) -> "CartIdentity":
        return cls(user_id=user_id)

    @classmethod
    def for_session(cls, session_id: str) -> "CartIdentity":
        return cls(session_id=session_id)

    @property
    def is_user(self) -> bool:
        return self.user_id is not None

    @property
    def lock_key(self) -> str:
        if self.is_user:
            return f"cart:user:{self.user_id}"
        return f"cart:session:{self.session_id}"

    def __str__(self):
        return self.lock_key


class UpsertMode(str, Enum):
    DELTA = "delta"
    ABSOLUTE = "absolute"


@dataclass(frozen=True)
class CartLine:
    item_id: int
    quantity: int


@dataclass
class Cart:
    identity: CartIdentity
    lines: Dict[int, CartLine] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def quantity_of(self, item_id: int) -> int:
        line = self.lines.get(item_id)
        return line.quantity if line else 0


@dataclass(frozen=True)
class CatalogItem:
    id: int
    name: str
    price: Decimal


@dataclass(frozen=True)
class SnapshotLine:
    item_id: int
    quantity: int
    name: Optional[str]
    current_price: Optional[Decimal]
    line_total: Decimal
    available: bool


@dataclass(frozen=True)
class CartSnapshot:
    """Cart contents priced at current catalog prices, for display only."""

    identity: CartIdentity
    lines: List[SnapshotLine]
    subtotal: Decimal

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class MergeResult:
    snapshot: CartSnapshot
    merged: List[CartLine]
    skipped: List[CartLine]


class CheckoutState(str, Enum):
    ACTIVE = "active"
    VALIDATING = "validating"
    PRICE_SNAPSHOTTING = "price_snapshotting"
    MATERIALIZING = "materializing"
    COMMITTED = "committed"
    CART_CLEARED = "cart_cleared"
    ABORTED = "aborted"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
