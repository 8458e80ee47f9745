"""
Per-source aggregation tests.

Guards against:
1. Empty windows producing NaN / None instead of zeros
2. All-time fields (GBP reviews, rating) being summed or diluted
3. Scores escaping [0, 100] on extreme input
4. Trend boundary drift (the +/-5% threshold is exclusive)
5. Rate unit mix-ups (fractions internally, percentages on output)

Pure logic, no database.
"""
import math
from datetime import date, timedelta

import pytest

from dental_vitals.services.aggregation import (
    aggregate,
    calculate_trend,
    classify_change,
    score_aggregate,
    ScoreTerm,
    PeriodAggregate,
    ClientMetrics,
    TREND_UP,
    TREND_DOWN,
    TREND_STABLE,
)
from dental_vitals.services.source_configs import (
    GA4_CONFIG,
    GSC_CONFIG,
    GBP_CONFIG,
    CLARITY_CONFIG,
    PMS_CONFIG,
    SOURCE_CONFIGS,
    get_config,
)


def _days(values, field, start=date(2024, 3, 1), **extra):
    """Daily dict rows with `field` taken from values"""
    return [
        {"date": start + timedelta(days=i), field: v, **extra}
        for i, v in enumerate(values)
    ]


def _all_numbers(data):
    for value in data.values():
        if isinstance(value, (int, float)):
            yield value


# ---------------------------------------------------------------------------
# Empty windows
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("source", sorted(SOURCE_CONFIGS))
def test_empty_rows_return_all_zero_aggregate(source):
    result = aggregate([], SOURCE_CONFIGS[source])

    assert result.row_count == 0
    assert result.trend == TREND_STABLE
    assert result.change_percent == "0"
    assert result.calculated_score == 0
    assert all(v == 0 for v in result.totals.values())
    assert all(v == 0 for v in result.rates.values())
    assert all(v == 0 for v in result.all_time.values())

    data = result.to_dict()
    assert data["changePercent"] == "0"
    assert data["trend"] == "stable"
    for value in _all_numbers(data):
        assert not math.isnan(value)


def test_none_rows_treated_as_empty():
    assert aggregate(None, GA4_CONFIG).row_count == 0


# ---------------------------------------------------------------------------
# All-time fields
# ---------------------------------------------------------------------------

def test_gbp_all_time_values_are_not_summed():
    rows = _days([100, 120, 140], "total_views", total_reviews=49, average_rating=4.9)
    result = aggregate(rows, GBP_CONFIG)

    assert result.value("total_reviews") == 49
    assert result.value("average_rating") == pytest.approx(4.9)
    assert "total_reviews" not in result.totals

    data = result.to_dict()
    assert data["totalReviews"] == 49
    assert data["averageRating"] == 4.9
    assert data["totalViews"] == 360


def test_gbp_reviews_use_max_and_rating_ignores_zero_rows():
    rows = [
        {"date": date(2024, 3, 1), "total_reviews": 40, "average_rating": 4.8},
        {"date": date(2024, 3, 2), "total_reviews": 0, "average_rating": 0},
        {"date": date(2024, 3, 3), "total_reviews": 42, "average_rating": 4.6},
    ]
    result = aggregate(rows, GBP_CONFIG)

    assert result.value("total_reviews") == 42
    assert result.value("average_rating") == pytest.approx(4.7)


def test_gbp_zero_reviews_and_rating_is_warning_not_error():
    rows = _days([10, 10], "total_views", total_reviews=0, average_rating=0)
    result = aggregate(rows, GBP_CONFIG)

    assert any("both reviews and rating are 0" in w for w in result.warnings)
    assert result.calculated_score >= 0


def test_gbp_reviews_without_rating_flagged_inconsistent():
    rows = _days([10], "total_views", total_reviews=12, average_rating=0)
    result = aggregate(rows, GBP_CONFIG)

    assert any("data inconsistency" in w for w in result.warnings)


# ---------------------------------------------------------------------------
# Score bounds
# ---------------------------------------------------------------------------

HUGE = 10 ** 12


@pytest.mark.parametrize("source", sorted(SOURCE_CONFIGS))
def test_score_bounded_for_huge_values(source):
    config = SOURCE_CONFIGS[source]
    row = {name: HUGE for name in config.numeric_fields}
    row.update({"date": date(2024, 3, 1), "patient_count": HUGE})
    result = aggregate([row, dict(row)], config)

    assert 0 <= result.calculated_score <= 100


@pytest.mark.parametrize("source", sorted(SOURCE_CONFIGS))
def test_score_bounded_for_negative_values(source):
    config = SOURCE_CONFIGS[source]
    row = {name: -HUGE for name in config.numeric_fields}
    row.update({"date": date(2024, 3, 1), "patient_count": -HUGE})
    result = aggregate([row], config)

    assert 0 <= result.calculated_score <= 100


def test_terms_are_clamped_individually():
    """One saturated term must not make up for another at zero"""
    terms = (
        ScoreTerm("a", lambda a: 500, 0, 40),
        ScoreTerm("b", lambda a: 0, 0, 60),
    )
    score, breakdown = score_aggregate(PeriodAggregate(source="x", label="X"), terms)

    assert breakdown == {"a": 40, "b": 0}
    assert score == 40


# ---------------------------------------------------------------------------
# Per-source scoring
# ---------------------------------------------------------------------------

def test_ga4_score():
    rows = [{"date": date(2024, 3, 1), "total_users": 500, "sessions": 600,
             "engagement_rate": 0.6, "conversions": 25}]
    result = aggregate(rows, GA4_CONFIG)

    # users 12.5 + engagement 21 + conversions 20
    assert result.calculated_score == 54
    assert result.score_breakdown["users"] == 12.5


def test_gsc_score():
    rows = [{"date": date(2024, 3, 1), "query": "dentist near me", "impressions": 5000,
             "clicks": 250, "ctr": 0.05, "position": 3.0}]
    result = aggregate(rows, GSC_CONFIG)

    # clicks 20 + ctr 1.5 + position 24
    assert result.calculated_score == 46


def test_gsc_position_without_data_scores_zero():
    rows = [{"date": date(2024, 3, 1), "impressions": 100, "clicks": 10, "ctr": 0.1, "position": 0}]
    result = aggregate(rows, GSC_CONFIG)

    assert result.score_breakdown["position"] == 0


def test_gsc_deep_position_floors_at_zero():
    rows = [{"date": date(2024, 3, 1), "clicks": 0, "impressions": 0, "position": 25}]
    assert aggregate(rows, GSC_CONFIG).score_breakdown["position"] == 0


def test_gsc_counts_distinct_queries_and_flags_missing_clicks():
    rows = [
        {"date": date(2024, 3, 1), "query": "dentist", "impressions": 50, "clicks": 0},
        {"date": date(2024, 3, 1), "query": "dentist", "impressions": 30, "clicks": 0},
        {"date": date(2024, 3, 2), "query": "implants", "impressions": 20, "clicks": 0},
        {"date": date(2024, 3, 2), "query": None, "impressions": 0, "clicks": 0},
    ]
    result = aggregate(rows, GSC_CONFIG)

    assert result.to_dict()["totalQueries"] == 2
    assert any("clicks are 0 but impressions exist" in w for w in result.warnings)


def test_gbp_score():
    rows = [{"date": date(2024, 3, 1), "total_views": 500, "phone_calls": 50,
             "total_reviews": 30, "average_rating": 4.0}]
    result = aggregate(rows, GBP_CONFIG)

    # views 15 + calls 17.5 + rating 28
    assert result.calculated_score == 61


def test_clarity_score():
    rows = [{"date": date(2024, 3, 1), "total_sessions": 100, "bounce_rate": 0.5, "dead_clicks": 25}]
    result = aggregate(rows, CLARITY_CONFIG)

    # base 30 + bounce 20 + dead clicks 15
    assert result.calculated_score == 65


def test_clarity_perfect_site_scores_100():
    rows = [{"date": date(2024, 3, 1), "total_sessions": 100, "bounce_rate": 0, "dead_clicks": 0}]
    assert aggregate(rows, CLARITY_CONFIG).calculated_score == 100


def test_pms_score_with_rising_trend():
    rows = [
        {"date": date(2024, 1, 10), "patient_count": 40, "referral_type": "self_referral"},
        {"date": date(2024, 2, 10), "patient_count": 60, "referral_type": "doctor_referral"},
    ]
    result = aggregate(rows, PMS_CONFIG)

    # base 50 + volume 20 + trend 10
    assert result.trend == TREND_UP
    assert result.calculated_score == 80


def test_pms_score_with_falling_trend():
    rows = [
        {"date": date(2024, 1, 10), "patient_count": 60},
        {"date": date(2024, 2, 10), "patient_count": 40},
    ]
    result = aggregate(rows, PMS_CONFIG)

    # base 50 + volume 20 - trend 10
    assert result.calculated_score == 60


def test_pms_extras():
    rows = [
        {"date": date(2024, 1, 15), "patient_count": 1, "referral_type": "self_referral", "production_amount": 200},
        {"date": date(2024, 1, 20), "patient_count": 1, "referral_type": "self_referral", "production_amount": 300},
        {"date": date(2024, 2, 3), "patient_count": 1, "referral_type": "doctor_referral", "production_amount": "1,000.50"},
    ]
    data = aggregate(rows, PMS_CONFIG).to_dict()

    assert data["totalPatients"] == 3
    assert data["selfReferred"] == 2
    assert data["drReferred"] == 1
    assert data["totalProduction"] == 1500.5
    assert data["averageProductionPerPatient"] == 500.17
    assert data["selfReferralRate"] == 66.67
    assert [m["month"] for m in data["monthlyData"]] == ["2024-01", "2024-02"]
    assert data["monthlyData"][0]["selfReferred"] == 2
    assert data["monthlyData"][1]["production"] == 1000.5


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------

def test_trend_just_above_threshold_is_up():
    rows = _days([100, 100, 105.01, 105.01], "total_users")
    trend, change = calculate_trend(rows, "total_users")

    assert trend == TREND_UP
    assert change == pytest.approx(5.01)


def test_trend_exactly_at_threshold_is_stable():
    rows = _days([100, 100, 105, 105], "total_users")
    trend, change = calculate_trend(rows, "total_users")

    assert trend == TREND_STABLE
    assert change == pytest.approx(5.0)


def test_trend_exactly_at_negative_threshold_is_stable():
    rows = _days([100, 100, 95, 95], "total_users")
    assert calculate_trend(rows, "total_users")[0] == TREND_STABLE


def test_trend_down_and_change_percent_is_absolute():
    rows = _days([100, 90], "total_users")
    result = aggregate(rows, GA4_CONFIG)

    assert result.trend == TREND_DOWN
    assert result.change_percent == "10.0"


def test_trend_odd_row_count_splits_at_floor():
    # first half: [100]; second half: [100, 130] -> mean 115
    rows = _days([100, 100, 130], "total_users")
    trend, change = calculate_trend(rows, "total_users")

    assert trend == TREND_UP
    assert change == pytest.approx(15.0)


def test_trend_zero_first_half_is_stable():
    rows = _days([0, 0, 50, 50], "total_users")
    trend, change = calculate_trend(rows, "total_users")

    assert trend == TREND_STABLE
    assert change == 0


def test_single_row_is_stable():
    result = aggregate(_days([100], "total_users"), GA4_CONFIG)
    assert result.trend == TREND_STABLE
    assert result.change_percent == "0.0"


def test_classify_change_bounds():
    assert classify_change(5.0) == TREND_STABLE
    assert classify_change(5.01) == TREND_UP
    assert classify_change(-5.0) == TREND_STABLE
    assert classify_change(-5.01) == TREND_DOWN


# ---------------------------------------------------------------------------
# Malformed values and rate units
# ---------------------------------------------------------------------------

def test_malformed_values_coerce_and_warn():
    rows = [
        {"date": date(2024, 3, 1), "total_users": "1,200", "sessions": "abc", "conversions": None},
        {"date": date(2024, 3, 2), "total_users": "45%", "sessions": 10, "conversions": "3"},
    ]
    result = aggregate(rows, GA4_CONFIG)

    assert result.value("total_users") == 1245
    assert result.value("sessions") == 10
    assert result.value("conversions") == 3
    assert len(result.warnings) == 1
    assert "1 value(s) could not be parsed" in result.warnings[0]


def test_rates_are_fractions_and_presented_as_percent():
    rows = [
        {"date": date(2024, 3, 1), "total_users": 10, "engagement_rate": 0.55},
        # stored as a percentage
        {"date": date(2024, 3, 2), "total_users": 10, "engagement_rate": 45},
    ]
    result = aggregate(rows, GA4_CONFIG)

    assert result.value("engagement_rate") == pytest.approx(0.5)
    assert result.to_dict()["engagementRate"] == 50.0


@pytest.mark.parametrize("raw, expected", [
    ("0.8%", 0.008),
    ("45%", 0.45),
    (" 100 % ", 1.0),
    ("0.8", 0.8),
    (80, 0.8),
])
def test_percent_strings_are_always_percentages(raw, expected):
    rows = [{"date": date(2024, 3, 1), "total_sessions": 100, "bounce_rate": raw}]
    result = aggregate(rows, CLARITY_CONFIG)

    assert result.value("bounce_rate") == pytest.approx(expected)


def test_low_percent_string_bounce_rate_scores_high():
    rows = [{"date": date(2024, 3, 1), "total_sessions": 100, "bounce_rate": "0.8%", "dead_clicks": 0}]
    result = aggregate(rows, CLARITY_CONFIG)

    assert result.to_dict()["bounceRate"] == 0.8
    # base 30 + bounce 39.68 + dead clicks 30
    assert result.calculated_score == 100


def test_gsc_position_mean_skips_unranked_rows():
    rows = [
        {"date": date(2024, 3, 1), "query": "dentist", "clicks": 10, "impressions": 100, "position": 6.0},
        {"date": date(2024, 3, 2), "query": "implants", "clicks": 0, "impressions": 50, "position": 0},
        {"date": date(2024, 3, 3), "query": "braces", "clicks": 5, "impressions": 80, "position": 8.0},
    ]
    result = aggregate(rows, GSC_CONFIG)

    assert result.value("position") == pytest.approx(7.0)
    # 30 - (7 - 1) * 3
    assert result.score_breakdown["position"] == 12


def test_orm_like_rows_are_supported():
    class Row:
        def __init__(self, **kwargs):
            self.__dict__.update(kwargs)

    rows = [Row(date=date(2024, 3, 1), total_sessions=10, bounce_rate=0.2, dead_clicks=0)]
    assert aggregate(rows, CLARITY_CONFIG).value("total_sessions") == 10


# ---------------------------------------------------------------------------
# Config lookup and bundle
# ---------------------------------------------------------------------------

def test_get_config():
    assert get_config("GA4") is GA4_CONFIG
    with pytest.raises(KeyError):
        get_config("facebook")


def test_client_metrics_bundle():
    ga4 = aggregate(_days([100], "total_users"), GA4_CONFIG)
    metrics = ClientMetrics(ga4=ga4)

    assert metrics.present_sources() == ["ga4"]
    assert metrics.missing_sources() == ["gbp", "gsc", "clarity", "pms"]
    assert metrics.scores() == {"ga4": ga4.calculated_score, "gbp": None, "gsc": None, "clarity": None, "pms": None}
    assert metrics.to_dict()["gbp"] is None
