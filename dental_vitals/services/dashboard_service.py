"""
Dashboard Service

Wires the metric store, the per-source aggregators, the Vital Signs scorer and
the insight generator together for the API and the scheduler.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from dental_vitals.config import get_settings
from dental_vitals.services.alert_service import alerts_response, detect_positive_changes, last_week
from dental_vitals.services.aggregation import (
    ClientMetrics,
    PeriodAggregate,
    SOURCE_ORDER,
    aggregate,
    empty_aggregate,
)
from dental_vitals.services.insight_service import InsightGenerator
from dental_vitals.services.metric_store import MetricStore
from dental_vitals.services.narrative_providers import FallbackNarrativeChain, build_provider_chain
from dental_vitals.services.source_configs import get_config
from dental_vitals.services.vital_signs_service import (
    SqlScoreStore,
    VitalSignsScore,
    VitalSignsScorer,
    analysis_view,
)
from dental_vitals.utils.helpers import report_month_start
from dental_vitals.utils.logger import log


def _serialize_row(row: Any) -> Dict[str, Any]:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        elif value is not None and not isinstance(value, (int, float, str, bool)):
            value = float(value)
        data[column.name] = value
    return data


class DashboardService:
    """Per-client metric, score and insight operations"""

    def __init__(self, db: Session, chain: Optional[FallbackNarrativeChain] = None):
        self.db = db
        self.settings = get_settings()
        self.store = MetricStore(db)
        self._chain = chain

    @property
    def chain(self) -> FallbackNarrativeChain:
        if self._chain is None:
            self._chain = build_provider_chain(self.settings)
        return self._chain

    def default_window(self, end_date: Optional[date] = None) -> Tuple[date, date]:
        end_date = end_date or datetime.utcnow().date()
        return end_date - timedelta(days=self.settings.insights_lookback_days), end_date

    # Metrics

    def get_source_aggregate(
        self,
        source: str,
        client_id: str,
        start_date: date,
        end_date: date,
        include_raw: bool = False
    ) -> Dict[str, Any]:
        """
        Aggregate one source for a client and window.

        Returns:
            {"data": aggregate dict, "rawData": [...] (only with include_raw)}
        """
        config = get_config(source)
        rows = self.store.fetch_rows(config.source, client_id, start_date, end_date)
        result = {"data": aggregate(rows, config).to_dict()}
        if include_raw:
            result["rawData"] = [_serialize_row(r) for r in rows]
        return result

    def get_client_metrics(self, client_id: str, start_date: date, end_date: date) -> ClientMetrics:
        """Aggregates for every source with rows in the window; sources without rows stay None"""
        aggregates: Dict[str, PeriodAggregate] = {}
        for source in SOURCE_ORDER:
            config = get_config(source)
            rows = self.store.fetch_rows(source, client_id, start_date, end_date)
            if rows:
                aggregates[source] = aggregate(rows, config)

        metrics = ClientMetrics(**aggregates)
        log.info(
            f"Collected metrics for {client_id} ({start_date} to {end_date}): "
            f"present {metrics.present_sources()}, missing {metrics.missing_sources()}"
        )
        return metrics

    def get_summary(self, client_id: str, start_date: date, end_date: date) -> Dict[str, Any]:
        """All five aggregates; sources with no rows render as zeros"""
        metrics = self.get_client_metrics(client_id, start_date, end_date)
        summary = {}
        for source in SOURCE_ORDER:
            agg = metrics.get(source) or empty_aggregate(get_config(source))
            summary[source] = agg.to_dict()
        summary["missingSources"] = metrics.missing_sources()
        return summary

    # Vital Signs

    def get_vital_signs(
        self,
        client_id: str,
        scores: Optional[Dict[str, Optional[float]]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> VitalSignsScore:
        """Composite score from supplied per-source scores, or from the store when none are given"""
        if scores is None:
            if start_date is None or end_date is None:
                start_date, end_date = self.default_window(end_date)
            scores = self.get_client_metrics(client_id, start_date, end_date).scores()

        scorer = VitalSignsScorer(
            SqlScoreStore(self.db),
            neutral_score=self.settings.neutral_source_score,
            default_previous=self.settings.default_previous_score,
        )
        return scorer.calculate(client_id, scores)

    def get_vital_signs_analysis(self, client_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Composite score from stored metrics plus this month's insight report,
        flattened into opportunities, wins and recommendations.

        Like get_vital_signs this replaces the stored previous score.
        """
        report, cached = self.generate_insights(client_id, force_refresh=force_refresh)
        vital_signs = self.get_vital_signs(client_id)
        return analysis_view(report, vital_signs, cached=cached)

    # Alerts

    def get_performance_alerts(self, client_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """Positive performance alerts for the last full week (Monday to Sunday)"""
        start_date, end_date = last_week(today)
        metrics = self.get_client_metrics(client_id, start_date, end_date)
        alerts = detect_positive_changes(metrics)
        log.info(f"{len(alerts)} performance alert(s) for {client_id} ({start_date} to {end_date})")
        return alerts_response(client_id, alerts, start_date, end_date)

    # Insights

    def generate_insights(
        self,
        client_id: str,
        force_refresh: bool = False,
        report_month: Optional[date] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """
        This month's insight report for a client.

        Returns:
            (report dict, True when served from the monthly cache)
        """
        generator = InsightGenerator(self.db, self.chain)
        month = report_month_start(report_month)

        if not force_refresh:
            existing = generator.get_report(client_id, month)
            if existing:
                log.info(f"Found existing insights for {client_id} this month, returning cached data")
                return existing.to_dict(), True

        start_date, end_date = self.default_window()
        metrics = self.get_client_metrics(client_id, start_date, end_date)
        report = generator.generate(client_id, metrics, force_refresh=True, report_month=month)
        return report, False

    def get_latest_insights(self, client_id: str) -> Optional[Dict[str, Any]]:
        return InsightGenerator(self.db, self.chain).get_latest(client_id)

    def run_monthly_insights(self) -> Dict[str, Any]:
        """Regenerate this month's insights for every active client, continuing past failures"""
        client_ids = self.store.active_client_ids()
        log.info(f"Monthly insights: {len(client_ids)} active client(s)")

        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        for client_id in client_ids:
            try:
                report, _ = self.generate_insights(client_id, force_refresh=True)
                results.append({
                    "clientId": client_id,
                    "success": True,
                    "provider": report.get("provider"),
                })
            except Exception as e:
                log.error(f"Monthly insights failed for {client_id}: {str(e)}")
                errors.append({"clientId": client_id, "success": False, "error": str(e)})

        log.info(f"Monthly insights complete: {len(results)} succeeded, {len(errors)} failed")
        return {
            "success": True,
            "processed": len(client_ids),
            "succeeded": len(results),
            "failed": len(errors),
            "results": results,
            "errors": errors,
        }
