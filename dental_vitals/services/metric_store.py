"""
Read access to the per-source daily metric tables.

Rows are written by the ingestion functions; this module only reads date
ranges. A failing database is the one condition that is surfaced to callers
as a hard error (UpstreamFailure), since there is no sensible default.
"""
from datetime import date
from typing import Dict, List, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dental_vitals.models import Client, GA4Metric, GSCMetric, GBPMetric, ClarityMetric, PMSRecord
from dental_vitals.utils.logger import log


SOURCE_MODELS: Dict[str, Type] = {
    "ga4": GA4Metric,
    "gsc": GSCMetric,
    "gbp": GBPMetric,
    "clarity": ClarityMetric,
    "pms": PMSRecord,
}


class UpstreamFailure(Exception):
    """The metric store could not be queried"""

    def __init__(self, message: str, source: str = None):
        super().__init__(message)
        self.source = source


class MetricStore:
    """Date-range queries over the metric tables"""

    def __init__(self, db: Session):
        self.db = db

    def fetch_rows(self, source: str, client_id: str, start_date: date, end_date: date) -> List:
        """
        Rows for one source and client within [start_date, end_date], oldest first.

        Raises:
            KeyError: unknown source
            UpstreamFailure: the database query failed
        """
        model = SOURCE_MODELS.get((source or "").lower())
        if model is None:
            raise KeyError(f"Unknown data source: {source}. Valid options: {', '.join(SOURCE_MODELS)}")

        try:
            rows = self.db.query(model).filter(
                model.client_id == client_id,
                model.date >= start_date,
                model.date <= end_date,
            ).order_by(model.date.asc(), model.id.asc()).all()
        except SQLAlchemyError as e:
            log.error(f"Metric store query failed for {source} ({client_id}): {str(e)}")
            raise UpstreamFailure(f"Failed to read {source} metrics: {str(e)}", source=source) from e

        log.debug(f"Fetched {len(rows)} {source} rows for {client_id} ({start_date} to {end_date})")
        return rows

    def active_client_ids(self) -> List[str]:
        """Ids of clients whose account_status is 'active'"""
        try:
            clients = self.db.query(Client).filter(Client.account_status == "active").order_by(Client.id).all()
        except SQLAlchemyError as e:
            log.error(f"Failed to list active clients: {str(e)}")
            raise UpstreamFailure(f"Failed to list active clients: {str(e)}") from e
        return [c.id for c in clients]
