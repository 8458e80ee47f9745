"""
Patient-journey insight endpoints
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional

from dental_vitals.models.base import get_db
from dental_vitals.services.dashboard_service import DashboardService
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.utils.logger import log

router = APIRouter(prefix="/insights", tags=["insights"])


class GenerateInsightsRequest(BaseModel):
    client_id: Optional[str] = Field(None, alias="clientId")
    force_refresh: bool = Field(False, alias="forceRefresh")


@router.post("/generate")
async def generate_insights(
    request: GenerateInsightsRequest,
    db: Session = Depends(get_db)
):
    """
    This month's insight report for a client

    Returns the stored report for the current month unless forceRefresh is set.
    """
    if not request.client_id:
        raise HTTPException(status_code=400, detail="Missing required parameter: clientId")

    try:
        service = DashboardService(db)
        report, cached = service.generate_insights(request.client_id, force_refresh=request.force_refresh)
        return {
            "success": True,
            "data": report,
            "message": "Returned cached insights for this month" if cached else "AI insights generated successfully"
        }
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Error generating insights for {request.client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/monthly-run")
async def run_monthly_insights(db: Session = Depends(get_db)):
    """Regenerate this month's insights for every active client now"""
    try:
        service = DashboardService(db)
        return service.run_monthly_insights()
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Monthly insights run error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{client_id}")
async def get_latest_insights(client_id: str, db: Session = Depends(get_db)):
    """Most recent stored insight report for a client"""
    report = DashboardService(db).get_latest_insights(client_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"No insights found for client {client_id}")
    return {"success": True, "data": report}
