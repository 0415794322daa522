"""
Toss Payments webhook & redirect callbacks
==========================================
Success / fail redirects after the checkout widget, and the asynchronous
payment status webhook.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import RedirectResponse

from dongnegage.api.services import billing_service
from dongnegage.api.services.toss_payments_service import get_toss_service
from dongnegage.core.config import config
from dongnegage.core.database import GetDBDep
from dongnegage.core.security.hmac import verify_signature

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Toss Webhook"], prefix="/webhook")


def _billing_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(f"{config.site_url}/admin/billing?status={status}", status_code=302)


@router.get("/toss/success")
def toss_success(
        db: GetDBDep,
        paymentKey: Optional[str] = None,
        orderId: Optional[str] = None,
        amount: Optional[str] = None,
):
    logger.info(f"💳 [TOSS] Success callback for {orderId}")

    parsed_amount = billing_service.parse_amount(amount)
    if not paymentKey or not orderId or parsed_amount is None or not config.TOSS_SECRET_KEY:
        return _billing_redirect("failed")

    try:
        confirmed = billing_service.confirm_checkout(
            db, get_toss_service(), paymentKey, orderId, parsed_amount
        )
    except Exception as e:
        db.rollback()
        logger.error(f"❌ [TOSS] Success callback error: {e}", exc_info=True)
        return _billing_redirect("failed")

    return _billing_redirect("success" if confirmed else "failed")


@router.get("/toss/fail")
def toss_fail(
        db: GetDBDep,
        code: Optional[str] = None,
        message: Optional[str] = None,
        orderId: Optional[str] = None,
):
    logger.warning(f"⚠️ [TOSS] Fail callback for {orderId}: {code} {message}")

    try:
        billing_service.record_checkout_failure(db, orderId, code, message)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ [TOSS] Fail callback log error: {e}", exc_info=True)

    return _billing_redirect("failed")


@router.post("/toss")
async def toss_webhook(
        request: Request,
        db: GetDBDep,
        toss_signature: Optional[str] = Header(None, alias="toss-signature"),
):
    """
    Payment status webhook.

    Headers:
    - toss-signature: hex HMAC-SHA256 of the raw body, required whenever
      TOSS_WEBHOOK_SECRET is configured
    """
    logger.info("=" * 60)
    logger.info("📨 [WEBHOOK] Toss notification received")

    try:
        raw_body = await request.body()

        if config.TOSS_WEBHOOK_SECRET and not verify_signature(
                config.TOSS_WEBHOOK_SECRET, raw_body, toss_signature
        ):
            logger.warning("🚨 [WEBHOOK] Invalid Toss signature")
            raise HTTPException(status_code=401, detail="invalid signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid json")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="invalid json")

        event = billing_service.apply_webhook_event(db, payload)
        logger.info(f"✅ [WEBHOOK] {'Processed' if event else 'Duplicate acknowledged'}")
        return {"ok": True}
    finally:
        logger.info("=" * 60)
