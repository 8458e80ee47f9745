"""
Performance alerts endpoint
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional

from dental_vitals.models.base import get_db
from dental_vitals.services.dashboard_service import DashboardService
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.utils.helpers import parse_iso_date
from dental_vitals.utils.logger import log

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("/{client_id}")
async def get_performance_alerts(
    client_id: str,
    as_of: Optional[str] = Query(None, alias="asOf"),
    db: Session = Depends(get_db)
):
    """
    Positive performance alerts for a client's last full week

    The week is Monday to Sunday, ending on the most recent Sunday on or
    before asOf (default: today). At most 5 alerts, high impact first.
    """
    today = parse_iso_date(as_of)
    if as_of and today is None:
        raise HTTPException(status_code=400, detail="Dates must be in YYYY-MM-DD format")

    try:
        service = DashboardService(db)
        return {"success": True, "data": service.get_performance_alerts(client_id, today)}
    except UpstreamFailure:
        raise
    except Exception as e:
        log.error(f"Performance alerts error for {client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
