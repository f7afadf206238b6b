# storefront/tasks/expire.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.services.lock_service import ConsistencyGuard
from storefront.services.payment_service import PaymentService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.expire.expire_stale_payments_task")
def expire_stale_payments_task():
    logger.info("Expire stale payments task started")

    db = SessionLocal()
    try:
        count = PaymentService(db, guard=ConsistencyGuard()).expire_stale_attempts()
        logger.info(f"Expired {count} stale payment attempts")
        return count
    finally:
        db.close()
