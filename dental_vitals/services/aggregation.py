"""
Per-Source Metric Aggregation

Reduces a date window of daily metric rows for one data source into a
PeriodAggregate: summed totals, averaged rates, all-time values, a bounded
0-100 score and an up/down/stable trend versus the first half of the window.

One generic `aggregate(rows, config)` serves all five sources; everything
source-specific lives in an AggregationConfig (see source_configs).

Unit convention: rate fields are fractions (0.45 == 45%) everywhere inside
this module. Percentages only appear in `PeriodAggregate.to_dict()`.

The aggregator never raises on bad data. Unparsable values count as 0 and
inconsistencies are reported as warnings on the aggregate.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from dental_vitals.utils.helpers import (
    safe_parse_number,
    is_malformed_number,
    safe_divide,
    calculate_percentage_change,
    round_half_up,
    clamp,
)
from dental_vitals.utils.logger import log


TREND_THRESHOLD_PERCENT = 5.0

TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"

# All-time reducers
ALL_TIME_MAX = "max"
ALL_TIME_POSITIVE_MEAN = "positive_mean"


@dataclass
class ScoreTerm:
    """One additive piece of a source score, clamped to [low, high] on its own"""
    name: str
    compute: Callable[["PeriodAggregate"], float]
    low: float = 0.0
    high: float = 0.0


@dataclass
class AggregationConfig:
    """Everything that differs between the five per-source aggregations"""
    source: str
    label: str
    trend_field: str
    sum_fields: Sequence[str] = ()
    rate_fields: Sequence[str] = ()
    mean_fields: Sequence[str] = ()
    # Mean fields where 0 means "no data" and is left out of the average
    positive_mean_fields: Sequence[str] = ()
    all_time_fields: Dict[str, str] = field(default_factory=dict)
    score_terms: Sequence[ScoreTerm] = ()
    output_keys: Dict[str, str] = field(default_factory=dict)
    extras: Optional[Callable[[List[Any]], Dict[str, Any]]] = None
    checks: Optional[Callable[["PeriodAggregate"], List[str]]] = None

    @property
    def numeric_fields(self) -> List[str]:
        return [
            *self.sum_fields, *self.rate_fields,
            *self.mean_fields, *self.all_time_fields.keys()
        ]


@dataclass
class PeriodAggregate:
    """Reduced totals, score and trend for one source over a date range"""
    source: str
    label: str
    row_count: int = 0
    totals: Dict[str, float] = field(default_factory=dict)
    rates: Dict[str, float] = field(default_factory=dict)
    means: Dict[str, float] = field(default_factory=dict)
    all_time: Dict[str, float] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)
    calculated_score: int = 0
    score_breakdown: Dict[str, float] = field(default_factory=dict)
    trend: str = TREND_STABLE
    change_percent: str = "0"
    warnings: List[str] = field(default_factory=list)
    output_keys: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def has_data(self) -> bool:
        return self.row_count > 0

    def value(self, name: str, default: float = 0.0) -> float:
        """Look a metric up by row field name across totals, rates, means and all-time values"""
        for bucket in (self.totals, self.rates, self.means, self.all_time):
            if name in bucket:
                return bucket[name]
        extra = self.extras.get(name)
        if isinstance(extra, (int, float)):
            return extra
        return default

    def to_dict(self) -> Dict[str, Any]:
        """Presentation shape: camelCase keys, rates as percentages"""
        data: Dict[str, Any] = {}
        for name, value in self.totals.items():
            data[self._key(name)] = _present(value)
        for name, value in self.rates.items():
            data[self._key(name)] = round(value * 100, 2)
        for name, value in self.means.items():
            data[self._key(name)] = round(value, 2)
        for name, value in self.all_time.items():
            data[self._key(name)] = _present(round(value, 2))
        data.update(self.extras)
        data.update({
            "calculatedScore": self.calculated_score,
            "trend": self.trend,
            "changePercent": self.change_percent,
            "rowCount": self.row_count,
            "warnings": list(self.warnings),
        })
        return data

    def _key(self, name: str) -> str:
        return self.output_keys.get(name, name)


def _present(value: float) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def read_field(row: Any, name: str) -> Any:
    """Read a raw field from a dict row or an ORM row"""
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def _number(row: Any, name: str) -> float:
    return safe_parse_number(read_field(row, name))


def _rate(row: Any, name: str) -> float:
    raw = read_field(row, name)
    value = safe_parse_number(raw)
    if isinstance(raw, str) and raw.strip().endswith("%"):
        return value / 100.0
    # Bare values above 1.0 were stored as percentages
    return value / 100.0 if value > 1.0 else value


def _mean(rows: Sequence[Any], name: str, positive_only: bool = False) -> float:
    values = [_number(r, name) for r in rows]
    if positive_only:
        values = [v for v in values if v > 0]
    return safe_divide(sum(values), len(values))


def calculate_trend(rows: Sequence[Any], trend_field: str) -> tuple:
    """
    Compare the mean of `trend_field` in the second half of the window to the first.

    Returns (trend, change_percent) where change_percent is signed.
    """
    count = len(rows)
    midpoint = count // 2
    first_half = rows[:midpoint]
    second_half = rows[midpoint:]

    first_avg = safe_divide(sum(_number(r, trend_field) for r in first_half), len(first_half))
    second_avg = safe_divide(sum(_number(r, trend_field) for r in second_half), len(second_half))

    change = 0.0
    if first_avg > 0:
        change = calculate_percentage_change(second_avg, first_avg)

    return classify_change(change), change


def classify_change(change: float, threshold: float = TREND_THRESHOLD_PERCENT) -> str:
    """Exclusive +/- threshold classification"""
    change = round(change, 6)
    if change > threshold:
        return TREND_UP
    if change < -threshold:
        return TREND_DOWN
    return TREND_STABLE


def _reduce_all_time(rows: Sequence[Any], name: str, reducer: str) -> float:
    if reducer == ALL_TIME_MAX:
        return max((_number(r, name) for r in rows), default=0.0)
    if reducer == ALL_TIME_POSITIVE_MEAN:
        return _mean(rows, name, positive_only=True)
    raise ValueError(f"Unknown all-time reducer: {reducer}")


def score_aggregate(aggregate: PeriodAggregate, terms: Sequence[ScoreTerm]) -> tuple:
    """Sum independently clamped terms, clamp the total to [0, 100] and round."""
    breakdown = {}
    for term in terms:
        breakdown[term.name] = round(clamp(term.compute(aggregate), term.low, term.high), 2)
    total = clamp(sum(breakdown.values()), 0.0, 100.0)
    return round_half_up(total), breakdown


def empty_aggregate(config: AggregationConfig) -> PeriodAggregate:
    """All-zero aggregate used when a window has no rows"""
    return PeriodAggregate(
        source=config.source,
        label=config.label,
        totals={name: 0.0 for name in config.sum_fields},
        rates={name: 0.0 for name in config.rate_fields},
        means={name: 0.0 for name in config.mean_fields},
        all_time={name: 0.0 for name in config.all_time_fields},
        extras=config.extras([]) if config.extras else {},
        output_keys=config.output_keys,
    )


def aggregate(rows: Sequence[Any], config: AggregationConfig) -> PeriodAggregate:
    """
    Reduce a window of daily rows (ordered by date ascending) for one source.

    Args:
        rows: ORM rows or dicts for exactly one source, already filtered to the window
        config: Source configuration

    Returns:
        PeriodAggregate with totals, rates, score and trend
    """
    rows = list(rows or [])
    if not rows:
        log.debug(f"No {config.label} rows to aggregate, returning zeros")
        return empty_aggregate(config)

    count = len(rows)
    result = PeriodAggregate(
        source=config.source,
        label=config.label,
        row_count=count,
        output_keys=config.output_keys,
    )

    malformed = sum(
        1 for r in rows for name in config.numeric_fields
        if is_malformed_number(read_field(r, name))
    )
    if malformed:
        result.warnings.append(
            f"{config.label}: {malformed} value(s) could not be parsed as numbers and were counted as 0"
        )

    result.totals = {name: sum(_number(r, name) for r in rows) for name in config.sum_fields}
    result.rates = {name: sum(_rate(r, name) for r in rows) / count for name in config.rate_fields}
    result.means = {name: _mean(rows, name, name in config.positive_mean_fields) for name in config.mean_fields}
    # All-time values are never part of the sum accumulator
    result.all_time = {
        name: _reduce_all_time(rows, name, reducer)
        for name, reducer in config.all_time_fields.items()
    }

    if config.extras:
        result.extras = config.extras(rows)

    trend, change = calculate_trend(rows, config.trend_field)
    result.trend = trend
    result.change_percent = f"{abs(change):.1f}"

    if config.checks:
        result.warnings.extend(config.checks(result))

    result.calculated_score, result.score_breakdown = score_aggregate(result, config.score_terms)

    for warning in result.warnings:
        log.warning(warning)

    log.debug(
        f"{config.label} aggregate: {count} rows, score {result.calculated_score}, "
        f"trend {result.trend} ({result.change_percent}%)"
    )
    return result


SOURCE_ORDER = ("ga4", "gbp", "gsc", "clarity", "pms")


@dataclass
class ClientMetrics:
    """Bundle of per-source aggregates for one client; absent sources are None"""
    ga4: Optional[PeriodAggregate] = None
    gbp: Optional[PeriodAggregate] = None
    gsc: Optional[PeriodAggregate] = None
    clarity: Optional[PeriodAggregate] = None
    pms: Optional[PeriodAggregate] = None

    def get(self, source: str) -> Optional[PeriodAggregate]:
        return getattr(self, source)

    def present_sources(self) -> List[str]:
        return [s for s in SOURCE_ORDER if self.get(s) is not None]

    def missing_sources(self) -> List[str]:
        return [s for s in SOURCE_ORDER if self.get(s) is None]

    def scores(self) -> Dict[str, Optional[int]]:
        return {
            s: (self.get(s).calculated_score if self.get(s) is not None else None)
            for s in SOURCE_ORDER
        }

    def to_dict(self) -> Dict[str, Any]:
        return {s: (self.get(s).to_dict() if self.get(s) is not None else None) for s in SOURCE_ORDER}
