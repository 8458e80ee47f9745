"""
Vital Signs endpoint
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from dental_vitals.models.base import get_db
from dental_vitals.services.aggregation import SOURCE_ORDER
from dental_vitals.services.dashboard_service import DashboardService
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.utils.helpers import parse_iso_date, safe_parse_number
from dental_vitals.utils.logger import log

router = APIRouter(prefix="/vital-signs", tags=["vital-signs"])


class VitalSignsRequest(BaseModel):
    client_id: Optional[str] = Field(None, alias="clientId")
    metrics: Optional[Dict[str, Optional[Dict[str, Any]]]] = None
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")


def scores_from_metrics(metrics: Dict[str, Optional[Dict[str, Any]]]) -> Dict[str, Optional[float]]:
    """Pull calculatedScore per source out of a dashboard metrics payload"""
    scores = {}
    for source in SOURCE_ORDER:
        entry = metrics.get(source) or {}
        value = entry.get("calculatedScore")
        scores[source] = safe_parse_number(value) if value is not None else None
    return scores


@router.post("")
async def calculate_vital_signs(
    request: VitalSignsRequest,
    db: Session = Depends(get_db)
):
    """
    Composite Vital Signs score for a client

    Uses the calculatedScore of each source in `metrics` when given, otherwise
    aggregates the stored metrics for the window (default: insights lookback).
    Sources without data score a neutral 50. The stored previous score is
    replaced by this result.
    """
    if not request.client_id:
        raise HTTPException(status_code=400, detail="Missing required parameter: clientId")

    start = parse_iso_date(request.start_date)
    end = parse_iso_date(request.end_date)
    if (request.start_date and start is None) or (request.end_date and end is None):
        raise HTTPException(status_code=400, detail="Dates must be in YYYY-MM-DD format")

    try:
        service = DashboardService(db)
        scores = scores_from_metrics(request.metrics) if request.metrics is not None else None
        result = service.get_vital_signs(request.client_id, scores=scores, start_date=start, end_date=end)
        return {"success": True, "data": result.to_dict()}
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Vital Signs calculation error for {request.client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


class AnalysisRequest(BaseModel):
    client_id: Optional[str] = Field(None, alias="clientId")
    force_refresh: bool = Field(False, alias="forceRefresh")


@router.post("/analysis")
async def vital_signs_analysis(
    request: AnalysisRequest,
    db: Session = Depends(get_db)
):
    """
    Vital Signs score with this month's insights as dashboard cards

    Adds priorityOpportunities (from recommendations), recentWins (from key
    wins) and recommendations (from next best steps) to the score and report.
    """
    if not request.client_id:
        raise HTTPException(status_code=400, detail="Missing required parameter: clientId")

    try:
        service = DashboardService(db)
        analysis = service.get_vital_signs_analysis(request.client_id, force_refresh=request.force_refresh)
        return {
            "success": True,
            "data": analysis,
            "message": "AI vital signs analysis completed successfully"
        }
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Vital Signs analysis error for {request.client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
