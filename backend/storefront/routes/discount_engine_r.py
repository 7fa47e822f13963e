import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from storefront.dependencies.auth_d import require_admin, require_cron_secret
from storefront.db.session import get_db_transactional
from storefront.services.discount_engine_s import (
    clear_expired_campaigns_for_session,
    run_discount_engine_for_session,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _engine_message(result: dict) -> str:
    if not result["success"]:
        return "Discount engine completed with errors"
    return (
        f"Discount engine completed. Processed {result['rules_processed']} rules, "
        f"updated {result['products_updated']} products, "
        f"cleared {result['products_cleared']} expired campaigns."
    )


def _run_engine_or_fail(db: Session, trigger: str) -> dict:
    try:
        return run_discount_engine_for_session(db=db, now=datetime.utcnow())
    except Exception as exc:
        db.rollback()
        logger.exception("event=discount_engine_failed trigger=%s", trigger)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run discount engine",
        ) from exc


@router.post("/admin/discount/engine")
def run_engine(
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db_transactional),
):
    result = _run_engine_or_fail(db, trigger="admin")
    return {"data": {**result, "message": _engine_message(result)}}


@router.delete("/admin/discount/engine")
def clear_campaigns(
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db_transactional),
):
    try:
        cleared_count = clear_expired_campaigns_for_session(db=db, now=datetime.utcnow())
    except Exception as exc:
        db.rollback()
        logger.exception("event=clear_campaigns_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear expired campaigns",
        ) from exc

    return {
        "data": {
            "success": True,
            "cleared_count": int(cleared_count),
            "message": f"Cleared {cleared_count} expired campaign prices",
        }
    }


@router.get("/cron/discount-engine")
def run_engine_from_cron(
    _: None = Depends(require_cron_secret),
    db: Session = Depends(get_db_transactional),
):
    result = _run_engine_or_fail(db, trigger="cron")
    logger.info(
        "event=cron_discount_engine rules_processed=%s products_updated=%s "
        "products_cleared=%s errors=%s",
        result["rules_processed"],
        result["products_updated"],
        result["products_cleared"],
        len(result["errors"]),
    )
    return {
        "data": {
            "success": result["success"],
            "rules_processed": result["rules_processed"],
            "products_updated": result["products_updated"],
            "products_cleared": result["products_cleared"],
        }
    }
