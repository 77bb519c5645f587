"""
Background tasks for the invoice ledger
"""
from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.invoices.payments import PaymentReconciler
from app.modules.sequences.service import SequenceService
import logging

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def reconcile_invoice_balances(self):
    """
    Periodic consistency sweep: recompute paid amount and status of every
    invoice from its payments and credit notes.
    """
    db = SessionLocal()
    try:
        logger.info("Starting invoice reconciliation")
        summary = PaymentReconciler(db).reconcile_all()
        return {"status": "completed", **summary}

    except Exception as e:
        logger.error(f"Invoice reconciliation failed: {str(e)}", exc_info=True)
        raise self.retry(exc=e, countdown=60, max_retries=3)
    finally:
        db.close()


@celery_app.task(bind=True)
def sync_ncf_sequences(self):
    """
    Periodic task to align NCF and document-number counters with the
    documents actually stored.
    """
    db = SessionLocal()
    try:
        updated = SequenceService(db).sync_sequences()
        logger.info(f"Sequence sync completed, {updated} counters updated")
        return {"status": "completed", "updated": updated}

    except Exception as e:
        logger.error(f"Sequence sync failed: {str(e)}", exc_info=True)
        raise self.retry(exc=e, countdown=60, max_retries=3)
    finally:
        db.close()
