"""
Per-source metrics endpoints

Aggregated totals, score and trend for one data source over a date window.
"""
from datetime import date
from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional, Tuple

from dental_vitals.models.base import get_db
from dental_vitals.services.dashboard_service import DashboardService
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.services.source_configs import SOURCE_CONFIGS
from dental_vitals.utils.helpers import parse_iso_date
from dental_vitals.utils.logger import log

router = APIRouter(prefix="/metrics", tags=["metrics"])


class MetricsRequest(BaseModel):
    client_id: Optional[str] = Field(None, alias="clientId")
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    include_raw: bool = Field(False, alias="includeRaw")


def _validate_window(
    client_id: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str]
) -> Tuple[str, date, date]:
    missing = [
        name for name, value in (("clientId", client_id), ("startDate", start_date), ("endDate", end_date))
        if not value
    ]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required parameters: {', '.join(missing)}")

    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Dates must be in YYYY-MM-DD format")
    if start > end:
        raise HTTPException(status_code=400, detail="startDate must be on or before endDate")
    return client_id, start, end


def _source_metrics(db: Session, source: str, client_id, start_date, end_date, include_raw: bool) -> dict:
    if source.lower() not in SOURCE_CONFIGS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown data source: {source}. Valid options: {', '.join(SOURCE_CONFIGS)}"
        )
    client_id, start, end = _validate_window(client_id, start_date, end_date)

    try:
        service = DashboardService(db)
        result = service.get_source_aggregate(source, client_id, start, end, include_raw=include_raw)
        return {"success": True, **result}
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Error aggregating {source} metrics for {client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/summary")
async def get_metrics_summary(
    client_id: Optional[str] = Query(None, alias="clientId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db)
):
    """
    All five source aggregates for a client and window

    Sources without rows are returned as zeros and listed in missingSources.
    """
    client_id, start, end = _validate_window(client_id, start_date, end_date)
    try:
        service = DashboardService(db)
        return {"success": True, "data": service.get_summary(client_id, start, end)}
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Error building metrics summary for {client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{source}")
async def get_source_metrics(
    source: str,
    client_id: Optional[str] = Query(None, alias="clientId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    include_raw: bool = Query(False, alias="includeRaw"),
    db: Session = Depends(get_db)
):
    """
    Aggregated metrics for one source (ga4, gsc, gbp, clarity, pms)

    Returns totals, rates (as percentages), calculatedScore, trend and
    changePercent. includeRaw adds the daily rows.
    """
    return _source_metrics(db, source, client_id, start_date, end_date, include_raw)


@router.post("/{source}")
async def post_source_metrics(
    source: str,
    request: MetricsRequest,
    db: Session = Depends(get_db)
):
    """Same as GET with parameters in the JSON body"""
    return _source_metrics(
        db, source, request.client_id, request.start_date, request.end_date, request.include_raw
    )
