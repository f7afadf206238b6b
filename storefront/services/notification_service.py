# storefront/services/notification_service.py
from decimal import Decimal
from typing import Any, Dict

from storefront.celery_worker import celery_app
from storefront.utils.settings import EVENTS_ENABLED
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

CART_UPDATED = "cart.updated"
ORDER_CREATED = "order.created"
PAYMENT_RECORDED = "payment.recorded"


def _jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: str(v) if isinstance(v, Decimal) else v for k, v in payload.items()}


class NotificationService:
    """
    Fire-and-forget sink for cart/order/payment events.
    Delivery problems are logged and swallowed, they never fail the caller.
    """

    def __init__(self, enabled: bool = EVENTS_ENABLED):
        self.enabled = enabled

    def publish(self, event: str, payload: Dict[str, Any]):
        if not self.enabled:
            return
        try:
            publish_event_task.delay(event, _jsonable(payload))
        except Exception as e:
            logger.warning(f"Could not publish {event}: {e}")


@celery_app.task(name="storefront.services.notification_service.publish_event_task")
def publish_event_task(event: str, payload: Dict[str, Any]):
    """
    Celery task - downstream consumers (mail, analytics) hook in here.
    For now it only logs.
    """
    logger.info(f"[EVENT] {event}: {payload}")
    return {"event": event, "status": "delivered"}
