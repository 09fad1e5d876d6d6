"""
Celery beat task: delete expired and consumed sign-in nonces.
"""
import logging

from comicpay.core.celery_app import celery_app
from comicpay.db.session import SessionLocal
from comicpay.services.nonces.service import NonceRegistry

logger = logging.getLogger(__name__)


@celery_app.task(
    name="comicpay.workers.tasks.nonce_sweep.sweep_expired_nonces",
    time_limit=60,
    soft_time_limit=55,
)
def sweep_expired_nonces() -> dict:
    db = SessionLocal()
    try:
        deleted = NonceRegistry(db).purge_expired()
        if deleted:
            logger.info("nonce_sweep_done", extra={"deleted": deleted})
        return {"ok": True, "deleted": deleted}
    except Exception:
        db.rollback()
        logger.exception("nonce_sweep_failed")
        raise
    finally:
        db.close()
