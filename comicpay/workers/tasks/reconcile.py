"""
Celery beat task: nightly balance reconciliation.
Recomputes every account's balance from the transaction log; a drifted cache
is corrected and the correction is written to the audit log.
"""
import logging

from comicpay.core.celery_app import celery_app
from comicpay.db.session import SessionLocal
from comicpay.models.account import Account
from comicpay.services.audit.service import AuditService
from comicpay.services.ledger.service import LedgerStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 500


def reconcile_all(db) -> dict:
    ledger = LedgerStore(db)
    audit = AuditService(db)
    checked = 0
    corrected = 0
    last_id = ""
    while True:
        ids = [
            row[0]
            for row in db.query(Account.id)
            .filter(Account.id > last_id)
            .order_by(Account.id)
            .limit(BATCH_SIZE)
            .all()
        ]
        if not ids:
            break
        for account_id in ids:
            result = ledger.reconcile(account_id, fix=True)
            checked += 1
            if result.drift:
                corrected += 1
                # Commits the correction with its audit entry and releases the row lock
                audit.log(
                    actor_type="system",
                    actor_id=None,
                    action="balance_reconciled",
                    entity_type="account",
                    entity_id=account_id,
                    payload={"cached": result.cached, "derived": result.derived, "drift": result.drift},
                )
            else:
                db.commit()
        last_id = ids[-1]
    return {"checked": checked, "corrected": corrected}


@celery_app.task(
    name="comicpay.workers.tasks.reconcile.reconcile_balances",
    time_limit=1800,
    soft_time_limit=1750,
)
def reconcile_balances() -> dict:
    db = SessionLocal()
    try:
        stats = reconcile_all(db)
        logger.info("balance_reconcile_done", extra=stats)
        return {"ok": True, **stats}
    except Exception:
        db.rollback()
        logger.exception("balance_reconcile_failed")
        raise
    finally:
        db.close()
