import os

# must be set before storefront.utils.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCK_BACKEND"] = "local"
os.environ["EVENTS_ENABLED"] = "false"

from decimal import Decimal

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.data.database import init_db
from storefront.domain.types import CartIdentity, CatalogItem, money
from storefront.exceptions import CatalogUnavailableError, ItemNotFoundError
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import ConsistencyGuard, LocalLockBackend
from storefront.services.payment_service import PaymentService


class FakeCatalog:
    """In-memory stand-in for the catalog service."""

    def __init__(self, items=None):
        self.items = dict(items or {})
        self.available = True
        self.lookups = 0

    def add(self, item_id, name, price):
        self.items[item_id] = CatalogItem(id=item_id, name=name, price=money(price))

    def set_price(self, item_id, price):
        item = self.items[item_id]
        self.items[item_id] = CatalogItem(id=item.id, name=item.name, price=money(price))

    def remove(self, item_id):
        self.items.pop(item_id, None)

    def fetch_item(self, item_id):
        self.lookups += 1
        if not self.available:
            raise CatalogUnavailableError()
        return self.items.get(item_id)

    def exists(self, item_id):
        return self.fetch_item(item_id) is not None

    def current_price(self, item_id):
        item = self.fetch_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item.price


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database per test, one shared connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """File-backed database for tests that use one session per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture(scope="function")
def catalog():
    catalog = FakeCatalog()
    catalog.add(1, "House Blend 250g", Decimal("12.50"))
    catalog.add(2, "Single Origin Ethiopia 250g", Decimal("16.00"))
    catalog.add(3, "Decaf Colombia 250g", Decimal("13.75"))
    catalog.add(7, "Espresso Roast 1kg", Decimal("24.99"))
    return catalog


@pytest.fixture(scope="function")
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def guard():
    return ConsistencyGuard(LocalLockBackend(), wait=2)


@pytest.fixture(scope="function")
def user():
    return CartIdentity.for_user(42)


@pytest.fixture(scope="function")
def guest():
    return CartIdentity.for_session("sess-abc123")


@pytest.fixture(scope="function")
def cart_service(db, redis_client, catalog, guard, notifier):
    return CartService(db=db, redis_client=redis_client, catalog=catalog, guard=guard, notifier=notifier)


@pytest.fixture(scope="function")
def checkout_service(db, catalog, guard, notifier):
    return CheckoutService(db=db, catalog=catalog, guard=guard, notifier=notifier)


@pytest.fixture(scope="function")
def payment_service(db, guard, notifier):
    return PaymentService(db, guard=guard, notifier=notifier)


@pytest.fixture(scope="function")
def placed_order(cart_service, checkout_service, user):
    """An order for 3 x item 7 at 24.99."""
    cart_service.add_item(user, 7, 3)
    return checkout_service.checkout(user)
