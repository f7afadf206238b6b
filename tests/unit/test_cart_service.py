"""
Unit tests for CartService.

Guest carts run against fakeredis, user carts against in-memory SQLite.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from storefront.domain.types import CartIdentity, CartLine
from storefront.exceptions import (
    AuthenticationRequiredError,
    CatalogUnavailableError,
    ItemNotFoundError,
    LineNotFoundError,
    LockLostError,
    ValidationError,
)
from storefront.repos.cart_repo import PersistentCartStore
from storefront.repos.session_cart_repo import SessionCartStore
from storefront.services.cart_service import CartService
from storefront.services.lock_service import ConsistencyGuard, LocalLockBackend
from storefront.services.notification_service import CART_UPDATED


def quantities(snapshot):
    return {line.item_id: line.quantity for line in snapshot.lines}


@pytest.fixture(params=["user", "guest"])
def identity(request, user, guest):
    return user if request.param == "user" else guest


class TestAddItem:

    def test_add_sums_quantities(self, cart_service, identity):
        cart_service.add_item(identity, 1, 2)
        snapshot = cart_service.add_item(identity, 1, 3)

        assert quantities(snapshot) == {1: 5}

    def test_unknown_item_rejected_before_write(self, cart_service, identity):
        with pytest.raises(ItemNotFoundError) as exc:
            cart_service.add_item(identity, 999, 1)

        assert exc.value.status_code == 404
        assert cart_service.snapshot(identity).lines == []

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, cart_service, catalog, identity, quantity):
        with pytest.raises(ValidationError):
            cart_service.add_item(identity, 1, quantity)

        assert catalog.lookups == 0

    def test_catalog_outage_propagates(self, cart_service, catalog, identity):
        catalog.available = False

        with pytest.raises(CatalogUnavailableError):
            cart_service.add_item(identity, 1, 1)

    def test_publishes_cart_updated(self, cart_service, notifier, user):
        cart_service.add_item(user, 2, 4)

        assert notifier.names() == [CART_UPDATED]
        payload = notifier.events[0][1]
        assert payload["cart"] == "cart:user:42"
        assert payload["action"] == "add"
        assert payload["quantity"] == 4


class TestUpdateAndRemove:

    def test_update_sets_absolute_quantity(self, cart_service, identity):
        cart_service.add_item(identity, 1, 5)
        snapshot = cart_service.update_quantity(identity, 1, 2)

        assert quantities(snapshot) == {1: 2}

    def test_update_to_zero_removes_line(self, cart_service, identity):
        cart_service.add_item(identity, 1, 5)
        cart_service.add_item(identity, 2, 1)
        snapshot = cart_service.update_quantity(identity, 1, 0)

        assert quantities(snapshot) == {2: 1}

    def test_update_missing_line(self, cart_service, identity):
        with pytest.raises(LineNotFoundError):
            cart_service.update_quantity(identity, 3, 2)

    def test_remove_missing_line_is_noop(self, cart_service, notifier, identity):
        snapshot = cart_service.remove_item(identity, 3)

        assert snapshot.lines == []
        assert notifier.events == []

    def test_clear_cart(self, cart_service, identity):
        cart_service.add_item(identity, 1, 1)
        cart_service.add_item(identity, 2, 2)
        snapshot = cart_service.clear_cart(identity)

        assert snapshot.lines == []
        assert snapshot.subtotal == Decimal("0.00")


class TestSnapshot:

    def test_prices_at_current_catalog_price(self, cart_service, catalog, user):
        cart_service.add_item(user, 7, 2)
        cart_service.add_item(user, 1, 1)
        assert cart_service.snapshot(user).subtotal == Decimal("62.48")

        catalog.set_price(7, "20.00")
        snapshot = cart_service.snapshot(user)

        assert snapshot.subtotal == Decimal("52.50")
        assert snapshot.item_count == 3

    def test_vanished_item_marked_unavailable(self, cart_service, catalog, user):
        cart_service.add_item(user, 1, 2)
        cart_service.add_item(user, 3, 1)
        catalog.remove(3)

        snapshot = cart_service.snapshot(user)
        by_id = {line.item_id: line for line in snapshot.lines}

        assert by_id[3].available is False
        assert by_id[3].line_total == Decimal("0.00")
        assert snapshot.subtotal == Decimal("25.00")

    def test_resolve_cart_creates_user_cart_once(self, cart_service, db, user):
        first = cart_service.resolve_cart(user)
        second = cart_service.resolve_cart(user)

        assert first.is_empty and second.is_empty
        assert PersistentCartStore(db)._cart_id(user, create=False) is not None


class TestMerge:

    def test_merge_sums_and_empties_guest(self, cart_service, redis_client, user, guest):
        cart_service.add_item(user, 1, 1)
        cart_service.add_item(user, 2, 3)
        cart_service.add_item(guest, 1, 2)

        result = cart_service.merge_guest_cart_into_user_cart(guest, user)

        assert quantities(result.snapshot) == {1: 3, 2: 3}
        assert [line.item_id for line in result.merged] == [1]
        assert result.skipped == []
        assert SessionCartStore(redis_client).all_lines(guest) == []

    def test_merge_skips_items_gone_from_catalog(self, cart_service, catalog, user, guest):
        cart_service.add_item(guest, 1, 1)
        cart_service.add_item(guest, 3, 2)
        catalog.remove(3)

        result = cart_service.merge_guest_cart_into_user_cart(guest, user)

        assert quantities(result.snapshot) == {1: 1}
        assert [line.item_id for line in result.skipped] == [3]
        assert cart_service.snapshot(guest).lines == []

    def test_merge_empty_guest_cart(self, cart_service, notifier, user, guest):
        cart_service.add_item(user, 2, 1)
        notifier.events.clear()

        result = cart_service.merge_guest_cart_into_user_cart(guest, user)

        assert quantities(result.snapshot) == {2: 1}
        assert notifier.events == []

    def test_merge_needs_guest_and_user(self, cart_service, user, guest):
        with pytest.raises(ValidationError):
            cart_service.merge_guest_cart_into_user_cart(user, user)
        with pytest.raises(ValidationError):
            cart_service.merge_guest_cart_into_user_cart(guest, CartIdentity.for_session("other"))


class TestConcurrentAdds:

    WORKERS = 8
    ADDS = 5

    def _run(self, make_service, identity):
        errors = []

        def worker():
            service = make_service()
            try:
                for _ in range(self.ADDS):
                    service.add_item(identity, 1, 1)
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)
            finally:
                service.db.close()

        threads = [threading.Thread(target=worker) for _ in range(self.WORKERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return errors

    def test_no_lost_updates_on_user_cart(self, file_engine, redis_client, catalog, guard, notifier, user):
        factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)

        def make_service():
            return CartService(factory(), redis_client, catalog, guard, notifier)

        assert self._run(make_service, user) == []

        with factory() as db:
            line = PersistentCartStore(db).get_line(user, 1)
        assert line.quantity == self.WORKERS * self.ADDS

    def test_no_lost_updates_on_guest_cart(self, file_engine, redis_client, catalog, guard, notifier, guest):
        factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)

        def make_service():
            return CartService(factory(), redis_client, catalog, guard, notifier)

        assert self._run(make_service, guest) == []
        assert SessionCartStore(redis_client).get_line(guest, 1).quantity == self.WORKERS * self.ADDS


class TestBuyNow:

    def test_replaces_cart_with_single_unit(self, cart_service, notifier, user):
        cart_service.add_item(user, 1, 4)
        cart_service.add_item(user, 2, 1)

        snapshot = cart_service.buy_now(user, 7)

        assert quantities(snapshot) == {7: 1}
        assert snapshot.subtotal == Decimal("24.99")
        assert notifier.events[-1][1]["action"] == "buy_now"

    def test_item_already_in_cart_reset_to_one(self, cart_service, user):
        cart_service.add_item(user, 7, 3)

        assert quantities(cart_service.buy_now(user, 7)) == {7: 1}

    def test_unknown_item_keeps_cart(self, cart_service, user):
        cart_service.add_item(user, 1, 2)

        with pytest.raises(ItemNotFoundError):
            cart_service.buy_now(user, 999)

        assert quantities(cart_service.snapshot(user)) == {1: 2}

    def test_guest_must_sign_in(self, cart_service, guest):
        with pytest.raises(AuthenticationRequiredError):
            cart_service.buy_now(guest, 1)

    def test_failed_add_rolls_back_the_clear(self, cart_service, monkeypatch, user):
        cart_service.add_item(user, 1, 2)

        def broken_upsert(self, *args, **kwargs):
            raise SQLAlchemyError("connection reset")

        monkeypatch.setattr(PersistentCartStore, "upsert_line", broken_upsert)

        with pytest.raises(SQLAlchemyError):
            cart_service.buy_now(user, 7)

        monkeypatch.undo()
        assert quantities(cart_service.snapshot(user)) == {1: 2}


class TestMergeWithLostLock:

    def test_nothing_moves_when_lock_lapses(self, db, redis_client, catalog, notifier, user, guest):
        class ExpiringBackend(LocalLockBackend):
            def extend(self, key, token):
                return False

        service = CartService(db, redis_client, catalog, ConsistencyGuard(ExpiringBackend(), wait=1), notifier)
        service.add_item(guest, 1, 2)

        with pytest.raises(LockLostError):
            service.merge_guest_cart_into_user_cart(guest, user)

        assert quantities(service.snapshot(guest)) == {1: 2}
        assert service.snapshot(user).lines == []

    def test_guest_line_added_after_read_survives(self, cart_service, catalog, redis_client, monkeypatch, user, guest):
        cart_service.add_item(guest, 1, 2)
        lookup = catalog.exists

        def exists_and_sneak_in(item_id):
            SessionCartStore(redis_client).upsert_line(guest, 3, 1)
            return lookup(item_id)

        monkeypatch.setattr(catalog, "exists", exists_and_sneak_in)

        result = cart_service.merge_guest_cart_into_user_cart(guest, user)

        assert quantities(result.snapshot) == {1: 2}
        assert SessionCartStore(redis_client).all_lines(guest) == [CartLine(3, 1)]
