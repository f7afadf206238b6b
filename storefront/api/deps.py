# storefront/api/deps.py
from typing import Optional

import redis
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.domain.types import CartIdentity
from storefront.exceptions import AuthenticationRequiredError, ValidationError
from storefront.services.cart_service import CartService
from storefront.services.catalog_client import CatalogClient
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import ConsistencyGuard
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.utils.settings import REDIS_URL

# process-wide singletons, overridable through app.dependency_overrides
_redis: Optional[redis.Redis] = None
_guard: Optional[ConsistencyGuard] = None


def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def get_guard() -> ConsistencyGuard:
    global _guard
    if _guard is None:
        _guard = ConsistencyGuard()
    return _guard


def get_catalog() -> CatalogClient:
    return CatalogClient()


def get_notifier() -> NotificationService:
    return NotificationService()


def get_identity(
    x_user_id: Optional[int] = Header(None),
    x_session_id: Optional[str] = Header(None),
) -> CartIdentity:
    """
    Identity is established upstream (auth / session middleware).
    A signed-in request carries X-User-Id, a guest request X-Session-Id.
    """
    if x_user_id is not None and x_session_id is not None:
        raise ValidationError("Send either X-User-Id or X-Session-Id, not both", status_code=400)
    if x_user_id is None and x_session_id is None:
        raise ValidationError("Missing X-User-Id or X-Session-Id header", status_code=400)
    return CartIdentity(user_id=x_user_id, session_id=x_session_id)


def get_user_identity(identity: CartIdentity = Depends(get_identity)) -> CartIdentity:
    if not identity.is_user:
        raise AuthenticationRequiredError()
    return identity


def get_cart_service(
    db: Session = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
    catalog: CatalogClient = Depends(get_catalog),
    guard: ConsistencyGuard = Depends(get_guard),
    notifier: NotificationService = Depends(get_notifier),
) -> CartService:
    return CartService(db=db, redis_client=redis_client, catalog=catalog, guard=guard, notifier=notifier)


def get_checkout_service(
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
    guard: ConsistencyGuard = Depends(get_guard),
    notifier: NotificationService = Depends(get_notifier),
) -> CheckoutService:
    return CheckoutService(db=db, catalog=catalog, guard=guard, notifier=notifier)


def get_order_service(db: Session = Depends(get_db)) -> OrderService:
    return OrderService(db)


def get_payment_service(
    db: Session = Depends(get_db),
    guard: ConsistencyGuard = Depends(get_guard),
    notifier: NotificationService = Depends(get_notifier),
) -> PaymentService:
    return PaymentService(db, guard=guard, notifier=notifier)
