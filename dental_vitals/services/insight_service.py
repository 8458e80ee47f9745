"""
Monthly Insight Reports

One report per client per calendar month, stored in ai_insights and upserted
on (client_id, report_date). A second request in the same month returns the
stored report unchanged unless force_refresh is set.

Every report passes through `enforce_missing_sources` before it is stored:
items citing a source that is not connected, or citing a number that does not
appear in the connected sources' metrics, are dropped.
"""
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from dental_vitals.models import AIInsight
from dental_vitals.services.aggregation import ClientMetrics, PeriodAggregate
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.services.narrative_providers import (
    FallbackNarrativeChain,
    JOURNEY_STAGES,
    SOURCE_LABELS,
    CONNECT_MESSAGES,
    empty_sections,
    format_source_for_prompt,
)
from dental_vitals.services.source_configs import SOURCE_CONFIGS
from dental_vitals.utils.helpers import report_month_start, safe_parse_number
from dental_vitals.utils.logger import log


# Names a report may use for each source
SOURCE_ALIASES = {
    "ga4": ("ga4", "ga 4", "google analytics", "analytics 4"),
    "gsc": ("gsc", "search console", "webmaster tools", "search rankings"),
    "gbp": (
        "gbp", "gmb", "business profile", "google business", "google my business",
        "business listing", "google listing", "google reviews", "google review", "google maps",
    ),
    "clarity": ("clarity", "heatmap", "heatmaps", "session recording", "session recordings"),
    "pms": ("pms", "practice management", "practice software", "referral data"),
}

# Metric names that identify their source, on top of field names and output keys
METRIC_ALIASES = {
    "ga4": ("users", "new users", "engagement", "engagement rate", "conversions", "pages per session"),
    "gsc": (
        "impressions", "search impressions", "clicks", "ctr", "click-through rate",
        "position", "average position", "search position", "ranking", "queries",
    ),
    "gbp": (
        "rating", "average rating", "star rating", "reviews", "total reviews", "new reviews",
        "review count", "phone calls", "calls", "profile views", "views", "search views",
        "maps views", "direction requests", "directions", "website clicks",
    ),
    "clarity": ("dead clicks", "rage clicks", "quick backs", "ux score"),
    "pms": (
        "patients", "total patients", "new patients", "referrals", "self-referrals",
        "self-referral rate", "doctor referrals", "production", "total production",
    ),
}

_ALIAS_PATTERNS = {
    source: re.compile(r"\b(" + "|".join(re.escape(a) for a in aliases) + r")\b", re.IGNORECASE)
    for source, aliases in SOURCE_ALIASES.items()
}

# Digits not glued to a preceding letter ("GA4" is a name, not a value)
_NUMBER = re.compile(r"(?<![A-Za-z\d.])\d[\d,]*(?:\.\d+)?")


def _normalize(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def _build_metric_sources() -> Dict[str, str]:
    owners: Dict[str, Set[str]] = {}
    for source, config in SOURCE_CONFIGS.items():
        names = list(config.numeric_fields) + list(config.output_keys.values()) + list(METRIC_ALIASES[source])
        for name in names:
            owners.setdefault(_normalize(name), set()).add(source)
    # Names shared between sources (bounce rate, session duration) identify nothing
    return {name: next(iter(sources)) for name, sources in owners.items() if len(sources) == 1}


METRIC_SOURCES = _build_metric_sources()


def _mentions(text: Any, sources: Iterable[str]) -> bool:
    if not isinstance(text, str):
        return False
    return any(_ALIAS_PATTERNS[s].search(text) for s in sources)


def cited_sources(evidence: Dict[str, Any]) -> Set[str]:
    """Sources an evidence item points at, by source name or else by metric name"""
    named = {s for s in SOURCE_ALIASES if _mentions(evidence.get("source"), [s])}
    if named:
        return named
    metric = evidence.get("metric")
    if isinstance(metric, str) and _normalize(metric) in METRIC_SOURCES:
        return {METRIC_SOURCES[_normalize(metric)]}
    return set()


def _numbers(text: Any) -> List[str]:
    if isinstance(text, bool):
        return []
    if isinstance(text, (int, float)):
        return [repr(float(text))]
    if not isinstance(text, str):
        return []
    return [m.rstrip(",") for m in _NUMBER.findall(text)]


def _collect_values(value: Any, out: List[float]):
    if isinstance(value, bool):
        return
    if isinstance(value, (int, float)):
        out.append(abs(float(value)))
    elif isinstance(value, str):
        out.extend(safe_parse_number(n) for n in _numbers(value))
    elif isinstance(value, dict):
        for key, item in value.items():
            if key != "warnings":
                _collect_values(item, out)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_values(item, out)


def source_values(source: str, agg: PeriodAggregate) -> List[float]:
    """Every number a report may quote for one connected source"""
    values: List[float] = []
    for bucket in (agg.totals, agg.means, agg.all_time):
        _collect_values(bucket, values)
    _collect_values([v * 100 for v in agg.rates.values()], values)
    _collect_values(agg.to_dict(), values)
    _collect_values(format_source_for_prompt(source, agg), values)
    return values


def _is_supported(number: str, allowed: List[float]) -> bool:
    value = safe_parse_number(number)
    decimals = len(number.split(".", 1)[1]) if "." in number else 0
    tolerance = 0.5 * 10 ** -decimals * 1.001 + 1e-9
    return any(abs(value - a) <= tolerance for a in allowed)


def _unsupported_numbers(text: Any, allowed: List[float]) -> List[str]:
    return [n for n in _numbers(text) if not _is_supported(n, allowed)]


def _cites_missing(item: Any, missing: List[str]) -> bool:
    if isinstance(item, str):
        return _mentions(item, missing)
    if not isinstance(item, dict):
        return True
    if _mentions(item.get("text"), missing):
        return True
    for evidence in item.get("supportingEvidence") or []:
        if isinstance(evidence, dict) and cited_sources(evidence) & set(missing):
            return True
    return False


def _cites_unsupported_value(item: Any, allowed: Dict[str, List[float]]) -> bool:
    everything = [v for values in allowed.values() for v in values]
    if isinstance(item, str):
        return bool(_unsupported_numbers(item, everything))

    evidence_list = [e for e in item.get("supportingEvidence") or [] if isinstance(e, dict)]

    for evidence in evidence_list:
        sources = cited_sources(evidence) & set(allowed)
        pool = [v for s in sources for v in allowed[s]] if sources else everything
        if _unsupported_numbers(evidence.get("value"), pool):
            return True

    # Targets and benchmarks in an evidence comparison may be quoted in the text
    targets = []
    for evidence in evidence_list:
        _collect_values(evidence.get("comparison"), targets)
    return bool(_unsupported_numbers(item.get("text"), everything + targets))


def enforce_missing_sources(report: Dict[str, Any], metrics: ClientMetrics) -> Dict[str, Any]:
    """
    Make a report consistent with the sources actually present.

    - missingSources is exactly the sources absent from the bundle
    - key wins, recommendations and next steps that cite an absent source are dropped
    - key wins and recommendations quoting a number not found in the cited
      source's metrics are dropped
    - recommendations without supporting evidence are dropped
    - each absent source has a "Connect ..." data gap
    """
    missing = metrics.missing_sources()
    allowed = {s: source_values(s, metrics.get(s)) for s in metrics.present_sources()}
    dropped = 0

    raw_sections = report.get("sections") or {}
    sections = empty_sections()
    for stage in JOURNEY_STAGES:
        stage_data = raw_sections.get(stage) or {}
        for key in ("keyWins", "recommendations", "nextBestSteps"):
            kept = []
            for item in stage_data.get(key) or []:
                if _cites_missing(item, missing):
                    dropped += 1
                    continue
                if key == "recommendations" and not (isinstance(item, dict) and item.get("supportingEvidence")):
                    dropped += 1
                    continue
                if key != "nextBestSteps" and _cites_unsupported_value(item, allowed):
                    text = item.get("text") if isinstance(item, dict) else item
                    log.warning(f"Dropped {stage} item quoting values not in the metrics: {text!r}")
                    dropped += 1
                    continue
                kept.append(item)
            sections[stage][key] = kept

    quality = report.get("dataQuality") or {}
    data_gaps = [g for g in quality.get("dataGaps") or [] if isinstance(g, str)]
    for source in missing:
        if not any(_mentions(g, [source]) for g in data_gaps):
            data_gaps.append(CONNECT_MESSAGES[source])

    if dropped:
        log.warning(f"Dropped {dropped} insight item(s) citing missing sources, unsupported values or no evidence")

    return {
        "sections": sections,
        "dataQuality": {
            "missingSources": [SOURCE_LABELS[s] for s in missing],
            "dataGaps": data_gaps,
            "anomalies": list(quality.get("anomalies") or []),
        },
        "lastUpdated": report.get("lastUpdated") or datetime.utcnow().isoformat(),
        "provider": report.get("provider"),
    }


class InsightGenerator:
    """Read-through monthly cache in front of the narrative provider chain"""

    def __init__(self, db: Session, chain: Optional[FallbackNarrativeChain] = None):
        self.db = db
        self.chain = chain or FallbackNarrativeChain([])

    def get_report(self, client_id: str, report_month: date) -> Optional[AIInsight]:
        try:
            return self.db.query(AIInsight).filter(
                AIInsight.client_id == client_id,
                AIInsight.report_date == report_month
            ).first()
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to read insights: {str(e)}") from e

    def get_latest(self, client_id: str) -> Optional[Dict[str, Any]]:
        """Most recent stored report for a client, or None"""
        try:
            record = self.db.query(AIInsight).filter(
                AIInsight.client_id == client_id
            ).order_by(AIInsight.report_date.desc()).first()
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to read insights: {str(e)}") from e
        return record.to_dict() if record else None

    def generate(
        self,
        client_id: str,
        metrics: ClientMetrics,
        force_refresh: bool = False,
        report_month: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Return this month's report, generating and storing it when needed.

        Args:
            client_id: Client id
            metrics: Per-source aggregates; absent sources are None
            force_refresh: Regenerate even if a report exists for the month
            report_month: Any day in the report month (defaults to today)

        Returns:
            Stored report dict (identical on cached calls)
        """
        month = report_month_start(report_month)

        if not force_refresh:
            existing = self.get_report(client_id, month)
            if existing:
                log.info(f"Returning cached insights for {client_id} ({month.isoformat()})")
                return existing.to_dict()

        log.info(f"Generating insights for {client_id} ({month.isoformat()}), sources: {metrics.present_sources()}")
        report = enforce_missing_sources(self.chain.generate(metrics), metrics)
        record = self._upsert(client_id, month, report)

        log.info(
            f"Stored {report['provider']} insights for {client_id} ({month.isoformat()}), "
            f"missing sources: {report['dataQuality']['missingSources']}"
        )
        return record.to_dict()

    def _upsert(self, client_id: str, month: date, report: Dict[str, Any]) -> AIInsight:
        try:
            return self._write(client_id, month, report)
        except IntegrityError:
            # A concurrent request stored this month first; last write wins
            self.db.rollback()
            log.info(f"Insights for {client_id} ({month.isoformat()}) stored concurrently, updating instead")
            try:
                return self._write(client_id, month, report)
            except SQLAlchemyError as e:
                self.db.rollback()
                log.error(f"Failed to store insights for {client_id}: {str(e)}")
                raise UpstreamFailure(f"Failed to store insights: {str(e)}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error(f"Failed to store insights for {client_id}: {str(e)}")
            raise UpstreamFailure(f"Failed to store insights: {str(e)}") from e

    def _write(self, client_id: str, month: date, report: Dict[str, Any]) -> AIInsight:
        record = self.get_report(client_id, month)
        if record is None:
            record = AIInsight(client_id=client_id, report_date=month)
            self.db.add(record)

        record.sections = report["sections"]
        record.data_quality = report["dataQuality"]
        record.provider = report["provider"]
        record.generated_at = report["lastUpdated"]
        record.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(record)
        return record
