# ---------- routes/intervention_routes.py ----------
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth import get_current_user
from config import CRON_SECRET
from database import get_db
from errors import GENERIC_ERROR_MESSAGE, NotFoundError
from services.intervention_service import InterventionService
from services.proactive_service import RiskEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/interventions", tags=["Interventions"])


class AcknowledgeRequest(BaseModel):
    action_taken: Optional[str] = None
    was_helpful: Optional[bool] = None


def get_risk_engine(db: Session = Depends(get_db)) -> RiskEngine:
    return RiskEngine(db)


def get_intervention_service(db: Session = Depends(get_db)) -> InterventionService:
    return InterventionService(db)


def require_cron_secret(x_cron_secret: Optional[str] = Header(default=None)):
    if not CRON_SECRET or not x_cron_secret or not hmac.compare_digest(x_cron_secret, CRON_SECRET):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.get("/check")
async def check(
    user_id: int = Depends(get_current_user),
    engine: RiskEngine = Depends(get_risk_engine),
):
    """Stateless risk poll for the current user."""
    try:
        return await engine.check(user_id)
    except Exception:
        logger.exception("Risk check failed")
        raise HTTPException(status_code=500, detail=GENERIC_ERROR_MESSAGE)


@router.post("/{intervention_id}/acknowledge")
async def acknowledge(
    intervention_id: int,
    body: AcknowledgeRequest,
    user_id: int = Depends(get_current_user),
    service: InterventionService = Depends(get_intervention_service),
):
    try:
        service.acknowledge(user_id, intervention_id, body.action_taken, body.was_helpful)
        return {"status": "success"}
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Intervention not found")


@router.post("/{intervention_id}/dismiss")
async def dismiss(
    intervention_id: int,
    user_id: int = Depends(get_current_user),
    service: InterventionService = Depends(get_intervention_service),
):
    try:
        service.dismiss(user_id, intervention_id)
        return {"status": "success"}
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Intervention not found")


@router.post("/sweep", dependencies=[Depends(require_cron_secret)])
async def sweep(engine: RiskEngine = Depends(get_risk_engine)):
    """Scheduled sweep across all users; called by the platform scheduler."""
    try:
        return {"success": True, **await engine.run_scheduled()}
    except Exception:
        logger.exception("Scheduled sweep failed")
        raise HTTPException(status_code=500, detail=GENERIC_ERROR_MESSAGE)
