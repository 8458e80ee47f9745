"""
Aggregation configuration for the five data sources.

Score weight tables (each term is capped on its own before summing):

    GA4      users 0-25, engagement 0-35, conversions 0-40
    GBP      views 0-30, phone calls 0-35, rating 0-35
    GSC      clicks 0-40, CTR 0-30, average position 0-30
    Clarity  base 30, bounce rate 0-40, dead clicks 0-30 (fewer is better)
    PMS      base 50, patient volume 0-40, trend -10..+10
"""
from collections import OrderedDict
from typing import Any, Dict, List

from dental_vitals.services.aggregation import (
    AggregationConfig,
    PeriodAggregate,
    ScoreTerm,
    ALL_TIME_MAX,
    ALL_TIME_POSITIVE_MEAN,
    TREND_UP,
    TREND_DOWN,
    read_field,
)
from dental_vitals.utils.helpers import safe_parse_number, safe_divide


# ---------------------------------------------------------------------------
# GA4
# ---------------------------------------------------------------------------

GA4_CONFIG = AggregationConfig(
    source="ga4",
    label="GA4",
    trend_field="total_users",
    sum_fields=("total_users", "new_users", "sessions", "conversions"),
    rate_fields=("engagement_rate", "bounce_rate"),
    mean_fields=("avg_session_duration", "pages_per_session"),
    score_terms=(
        ScoreTerm("users", lambda a: a.value("total_users") / 1000 * 25, 0, 25),
        ScoreTerm("engagement", lambda a: a.value("engagement_rate") * 35, 0, 35),
        ScoreTerm("conversions", lambda a: a.value("conversions") / 50 * 40, 0, 40),
    ),
    output_keys={
        "total_users": "totalUsers",
        "new_users": "newUsers",
        "sessions": "sessions",
        "conversions": "conversions",
        "engagement_rate": "engagementRate",
        "bounce_rate": "bounceRate",
        "avg_session_duration": "avgSessionDuration",
        "pages_per_session": "pagesPerSession",
    },
    checks=lambda a: (
        ["GA4: both users and sessions are 0 - this may indicate data fetching issues"]
        if a.value("total_users") == 0 and a.value("sessions") == 0 else []
    ),
)


# ---------------------------------------------------------------------------
# GSC
# ---------------------------------------------------------------------------

def _gsc_extras(rows: List[Any]) -> Dict[str, Any]:
    queries = {read_field(r, "query") for r in rows}
    return {"totalQueries": len({q for q in queries if q})}


def _gsc_checks(agg: PeriodAggregate) -> List[str]:
    if agg.value("clicks") == 0 and agg.value("impressions") > 0:
        return [
            f"GSC: clicks are 0 but impressions exist ({agg.value('impressions'):.0f}) - data inconsistency"
        ]
    return []


def _gsc_position_points(agg: PeriodAggregate) -> float:
    position = agg.value("position")
    if position <= 0:
        # No ranking data
        return 0.0
    return 30 - (position - 1) * 3


GSC_CONFIG = AggregationConfig(
    source="gsc",
    label="GSC",
    trend_field="clicks",
    sum_fields=("impressions", "clicks"),
    rate_fields=("ctr",),
    mean_fields=("position",),
    positive_mean_fields=("position",),
    score_terms=(
        ScoreTerm("clicks", lambda a: a.value("clicks") / 500 * 40, 0, 40),
        ScoreTerm("ctr", lambda a: a.value("ctr") * 100 * 0.3, 0, 30),
        ScoreTerm("position", _gsc_position_points, 0, 30),
    ),
    output_keys={
        "impressions": "totalImpressions",
        "clicks": "totalClicks",
        "ctr": "averageCTR",
        "position": "averagePosition",
    },
    extras=_gsc_extras,
    checks=_gsc_checks,
)


# ---------------------------------------------------------------------------
# GBP
# ---------------------------------------------------------------------------

def _gbp_checks(agg: PeriodAggregate) -> List[str]:
    reviews = agg.value("total_reviews")
    rating = agg.value("average_rating")
    if reviews == 0 and rating == 0:
        return ["GBP: both reviews and rating are 0 - this may indicate data fetching issues"]
    if reviews > 0 and rating == 0:
        return [f"GBP: {reviews:.0f} reviews exist but rating is 0 - data inconsistency"]
    return []


GBP_CONFIG = AggregationConfig(
    source="gbp",
    label="GBP",
    trend_field="total_views",
    sum_fields=(
        "total_views", "search_views", "maps_views", "phone_calls",
        "website_clicks", "direction_requests", "new_reviews",
    ),
    all_time_fields=OrderedDict([
        ("total_reviews", ALL_TIME_MAX),
        ("average_rating", ALL_TIME_POSITIVE_MEAN),
    ]),
    score_terms=(
        ScoreTerm("views", lambda a: a.value("total_views") / 1000 * 30, 0, 30),
        ScoreTerm("phone_calls", lambda a: a.value("phone_calls") / 100 * 35, 0, 35),
        ScoreTerm("rating", lambda a: a.value("average_rating") / 5 * 35, 0, 35),
    ),
    output_keys={
        "total_views": "totalViews",
        "search_views": "searchViews",
        "maps_views": "mapsViews",
        "phone_calls": "phoneCallsTotal",
        "website_clicks": "websiteClicksTotal",
        "direction_requests": "directionRequestsTotal",
        "new_reviews": "newReviews",
        "total_reviews": "totalReviews",
        "average_rating": "averageRating",
    },
    checks=_gbp_checks,
)


# ---------------------------------------------------------------------------
# Clarity
# ---------------------------------------------------------------------------

CLARITY_CONFIG = AggregationConfig(
    source="clarity",
    label="Clarity",
    trend_field="total_sessions",
    sum_fields=(
        "total_sessions", "unique_users", "page_views",
        "dead_clicks", "rage_clicks", "quick_backs",
    ),
    rate_fields=("bounce_rate",),
    mean_fields=("avg_session_duration",),
    score_terms=(
        ScoreTerm("base", lambda a: 30, 30, 30),
        ScoreTerm("bounce_rate", lambda a: 40 - min(a.value("bounce_rate") * 40, 40), 0, 40),
        ScoreTerm("dead_clicks", lambda a: 30 - min(a.value("dead_clicks") / 50 * 30, 30), 0, 30),
    ),
    output_keys={
        "total_sessions": "totalSessions",
        "unique_users": "uniqueUsers",
        "page_views": "pageViews",
        "dead_clicks": "deadClicks",
        "rage_clicks": "rageClicks",
        "quick_backs": "quickBacks",
        "bounce_rate": "bounceRate",
        "avg_session_duration": "avgSessionDuration",
    },
)


# ---------------------------------------------------------------------------
# PMS
# ---------------------------------------------------------------------------

SELF_REFERRAL = "self_referral"
DOCTOR_REFERRAL = "doctor_referral"


def _as_count(value: float):
    return int(value) if float(value).is_integer() else value


def _pms_extras(rows: List[Any]) -> Dict[str, Any]:
    self_referred = 0.0
    dr_referred = 0.0
    production = 0.0
    patients = 0.0
    months: Dict[str, Dict[str, Any]] = {}

    for row in rows:
        count = safe_parse_number(read_field(row, "patient_count"))
        amount = safe_parse_number(read_field(row, "production_amount"))
        referral_type = read_field(row, "referral_type")
        patients += count
        production += amount

        month_key = str(read_field(row, "date") or "")[:7]
        month = months.setdefault(month_key, {
            "month": month_key,
            "totalPatients": 0.0,
            "selfReferred": 0.0,
            "drReferred": 0.0,
            "production": 0.0,
        })
        month["totalPatients"] += count
        month["production"] += amount

        if referral_type == SELF_REFERRAL:
            self_referred += count
            month["selfReferred"] += count
        elif referral_type == DOCTOR_REFERRAL:
            dr_referred += count
            month["drReferred"] += count

    monthly = [months[k] for k in sorted(months)]
    for month in monthly:
        month["production"] = round(month["production"], 2)
        for key in ("totalPatients", "selfReferred", "drReferred"):
            month[key] = _as_count(month[key])

    return {
        "selfReferred": _as_count(self_referred),
        "drReferred": _as_count(dr_referred),
        "totalProduction": round(production, 2),
        "averageProductionPerPatient": round(safe_divide(production, patients), 2),
        "selfReferralRate": round(safe_divide(self_referred, patients) * 100, 2),
        "monthlyData": monthly,
    }


def _pms_trend_points(agg: PeriodAggregate) -> float:
    if agg.trend == TREND_UP:
        return 10
    if agg.trend == TREND_DOWN:
        return -10
    return 0


PMS_CONFIG = AggregationConfig(
    source="pms",
    label="PMS",
    trend_field="patient_count",
    sum_fields=("patient_count",),
    score_terms=(
        ScoreTerm("base", lambda a: 50, 50, 50),
        ScoreTerm("volume", lambda a: a.value("patient_count") / 200 * 40, 0, 40),
        ScoreTerm("trend", _pms_trend_points, -10, 10),
    ),
    output_keys={"patient_count": "totalPatients"},
    extras=_pms_extras,
)


SOURCE_CONFIGS: Dict[str, AggregationConfig] = {
    "ga4": GA4_CONFIG,
    "gsc": GSC_CONFIG,
    "gbp": GBP_CONFIG,
    "clarity": CLARITY_CONFIG,
    "pms": PMS_CONFIG,
}


def get_config(source: str) -> AggregationConfig:
    """Look up a source configuration; raises KeyError for unknown sources"""
    key = (source or "").lower()
    if key not in SOURCE_CONFIGS:
        raise KeyError(f"Unknown data source: {source}. Valid options: {', '.join(SOURCE_CONFIGS)}")
    return SOURCE_CONFIGS[key]
