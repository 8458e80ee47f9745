"""
Performance Alerts

Detects positive changes in a client's last full week of metrics: new reviews,
profile views, phone calls, new website visitors, conversions, search clicks,
top rankings, new patients and self-referrals.

Detection only. Alerts are returned to the caller, nothing is sent.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from dental_vitals.services.aggregation import ClientMetrics, PeriodAggregate
from dental_vitals.utils.helpers import format_number
from dental_vitals.utils.logger import log


# Alert types
REVIEWS = "reviews"
WEBSITE_TRAFFIC = "website_traffic"
SEARCH_VISIBILITY = "search_visibility"
LOCAL_PRESENCE = "local_presence"
PRACTICE_GROWTH = "practice_growth"

IMPACT_ORDER = {"high": 3, "medium": 2, "low": 1}

MAX_ALERTS = 5

# Thresholds over one week
MIN_NEW_REVIEWS = 3
MIN_PROFILE_VIEWS = 100       # exclusive
MIN_PHONE_CALLS = 5
MIN_NEW_USERS = 50            # exclusive
MIN_CONVERSIONS = 3
MIN_SEARCH_CLICKS = 20        # exclusive
TOP_POSITION = 5              # exclusive
MIN_RANKING_IMPRESSIONS = 100  # exclusive
MIN_NEW_PATIENTS = 5
MIN_SELF_REFERRALS = 3
HIGH_RATING = 4.0             # exclusive


@dataclass
class PerformanceAlert:
    type: str
    title: str
    message: str
    metric: str
    change: str
    impact: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "metric": self.metric,
            "change": self.change,
            "impact": self.impact,
        }


def last_week(today: Optional[date] = None) -> Tuple[date, date]:
    """
    The seven days ending on the most recent Sunday.

    On a Sunday the week ends that day.
    """
    today = today or date.today()
    end = today - timedelta(days=(today.weekday() + 1) % 7)
    return end - timedelta(days=6), end


def _plural(count: float, word: str) -> str:
    return f"{format_number(count)} {word}{'' if count == 1 else 's'}"


def _gbp_alerts(gbp: PeriodAggregate) -> List[PerformanceAlert]:
    alerts = []
    new_reviews = gbp.value("new_reviews")
    rating = gbp.value("average_rating")
    views = gbp.value("total_views")
    calls = gbp.value("phone_calls")

    if new_reviews >= MIN_NEW_REVIEWS:
        rating_note = f" with an average rating of {rating:.1f} stars" if rating > HIGH_RATING else ""
        alerts.append(PerformanceAlert(
            type=REVIEWS,
            title="New Patient Reviews!",
            message=f"You received {_plural(new_reviews, 'new review')} this week{rating_note}!",
            metric=f"{format_number(new_reviews)} new reviews",
            change=f"+{format_number(new_reviews)}",
            impact="high",
        ))
    if views > MIN_PROFILE_VIEWS:
        alerts.append(PerformanceAlert(
            type=LOCAL_PRESENCE,
            title="Strong Local Visibility!",
            message=(
                f"Your Google Business Profile was viewed {format_number(views)} times this week, "
                f"showing strong local presence!"
            ),
            metric=f"{format_number(views)} profile views",
            change=f"{format_number(views)} views",
            impact="medium",
        ))
    if calls >= MIN_PHONE_CALLS:
        alerts.append(PerformanceAlert(
            type=LOCAL_PRESENCE,
            title="Phone Calls Increasing!",
            message=f"You received {_plural(calls, 'phone call')} from your Google Business Profile this week!",
            metric=f"{format_number(calls)} phone calls",
            change=f"+{format_number(calls)}",
            impact="high",
        ))
    return alerts


def _ga4_alerts(ga4: PeriodAggregate) -> List[PerformanceAlert]:
    alerts = []
    new_users = ga4.value("new_users")
    conversions = ga4.value("conversions")

    if new_users > MIN_NEW_USERS:
        alerts.append(PerformanceAlert(
            type=WEBSITE_TRAFFIC,
            title="Website Traffic Growing!",
            message=(
                f"Your website attracted {format_number(new_users)} new visitors this week, "
                f"showing strong online growth!"
            ),
            metric=f"{format_number(new_users)} new visitors",
            change=f"+{format_number(new_users)}",
            impact="medium",
        ))
    if conversions >= MIN_CONVERSIONS:
        alerts.append(PerformanceAlert(
            type=WEBSITE_TRAFFIC,
            title="Form Submissions Up!",
            message=f"You received {_plural(conversions, 'new form submission')} this week - potential new patients!",
            metric=f"{format_number(conversions)} conversions",
            change=f"+{format_number(conversions)}",
            impact="high",
        ))
    return alerts


def _gsc_alerts(gsc: PeriodAggregate) -> List[PerformanceAlert]:
    alerts = []
    clicks = gsc.value("clicks")
    impressions = gsc.value("impressions")
    position = gsc.value("position")

    if clicks > MIN_SEARCH_CLICKS:
        alerts.append(PerformanceAlert(
            type=SEARCH_VISIBILITY,
            title="Search Clicks Increasing!",
            message=(
                f"Your website received {format_number(clicks)} clicks from Google search this week, "
                f"showing improved visibility!"
            ),
            metric=f"{format_number(clicks)} search clicks",
            change=f"+{format_number(clicks)}",
            impact="medium",
        ))
    # position 0 means no ranking data
    if 0 < position < TOP_POSITION and impressions > MIN_RANKING_IMPRESSIONS:
        alerts.append(PerformanceAlert(
            type=SEARCH_VISIBILITY,
            title="Top Search Rankings!",
            message=(
                f"Your website is ranking in the top {TOP_POSITION} positions for key searches "
                f"with {format_number(impressions)} impressions this week!"
            ),
            metric=f"Position {position:.1f}",
            change=f"Top {TOP_POSITION} ranking",
            impact="high",
        ))
    return alerts


def _pms_alerts(pms: PeriodAggregate) -> List[PerformanceAlert]:
    alerts = []
    patients = pms.value("patient_count")
    production = pms.value("totalProduction")
    self_referrals = pms.value("selfReferred")

    if patients >= MIN_NEW_PATIENTS:
        production_note = f" generating ${format_number(production)} in production" if production > 0 else ""
        alerts.append(PerformanceAlert(
            type=PRACTICE_GROWTH,
            title="New Patient Growth!",
            message=f"You welcomed {_plural(patients, 'new patient')} this week{production_note}!",
            metric=f"{format_number(patients)} new patients",
            change=f"+{format_number(patients)}",
            impact="high",
        ))
    if self_referrals >= MIN_SELF_REFERRALS:
        alerts.append(PerformanceAlert(
            type=PRACTICE_GROWTH,
            title="Word-of-Mouth Success!",
            message=(
                f"{_plural(self_referrals, 'patient')} found you through self-referrals this week "
                f"- your reputation is growing!"
            ),
            metric=f"{format_number(self_referrals)} self-referrals",
            change=f"+{format_number(self_referrals)}",
            impact="medium",
        ))
    return alerts


DETECTORS = (
    ("gbp", _gbp_alerts),
    ("ga4", _ga4_alerts),
    ("gsc", _gsc_alerts),
    ("pms", _pms_alerts),
)


def detect_positive_changes(metrics: ClientMetrics, limit: int = MAX_ALERTS) -> List[PerformanceAlert]:
    """
    Positive performance alerts for one week of metrics.

    Args:
        metrics: One week of per-source aggregates; absent sources are skipped
        limit: Maximum alerts returned

    Returns:
        Alerts ordered high impact first, detection order kept within an impact
    """
    alerts: List[PerformanceAlert] = []
    for source, detector in DETECTORS:
        agg = metrics.get(source)
        if agg is not None:
            alerts.extend(detector(agg))

    alerts.sort(key=lambda a: IMPACT_ORDER.get(a.impact, 0), reverse=True)
    if len(alerts) > limit:
        log.debug(f"Keeping top {limit} of {len(alerts)} performance alerts")
    return alerts[:limit]


def alerts_response(
    client_id: str,
    alerts: List[PerformanceAlert],
    period_start: date,
    period_end: date
) -> Dict[str, Any]:
    return {
        "clientId": client_id,
        "periodStart": period_start.isoformat(),
        "periodEnd": period_end.isoformat(),
        "alerts": [a.to_dict() for a in alerts],
    }
