# dongnegage/api/jobs/billing_reconciliation.py
"""
Daily refresh of every shop's cached billing state, so a trial that ended
overnight locks the shop even if its owner never opens the console.
"""

import logging

from dongnegage.api.services.billing_service import reconcile_billing_states
from dongnegage.core.database import get_db_manager
from dongnegage.core.utils.kst import utcnow

logger = logging.getLogger(__name__)


def reconcile_shop_billing():
    logger.info("▶️ Billing reconciliation started")
    now = utcnow()

    with get_db_manager() as db:
        try:
            changed = reconcile_billing_states(db, now)
        except Exception as e:
            db.rollback()
            logger.error("billing_reconciliation_failed", extra={"error": str(e)}, exc_info=True)
            raise

    logger.info("billing_reconciliation_completed", extra={"changed": changed, "run_at": now.isoformat()})
    return changed
