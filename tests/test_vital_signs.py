"""
Vital Signs composite score tests.

Covers the weighting, the neutral default for missing sources, every grade
boundary, the write-on-read previous score and the analysis view.
"""
import pytest
from sqlalchemy.orm import sessionmaker

from dental_vitals.models import VitalSignsScoreRecord
from dental_vitals.services.vital_signs_service import (
    VitalSignsScorer,
    InMemoryScoreStore,
    SqlScoreStore,
    SOURCE_WEIGHTS,
    analysis_view,
    get_grade,
)

ALL_SOURCES = ("ga4", "gbp", "gsc", "clarity", "pms")


def _scores(value):
    return {source: value for source in ALL_SOURCES}


# ────────────────────────────────────────────
# COMPOSITE SCORE
# ────────────────────────────────────────────


class TestCompositeScore:

    def test_weights_sum_to_one(self):
        assert sum(SOURCE_WEIGHTS.values()) == pytest.approx(1.0)

    def test_all_sources_perfect_is_100(self):
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(100))
        assert result.score == 100
        assert result.grade == "A+"

    def test_all_sources_absent_is_neutral_50(self):
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", {})
        assert result.score == 50
        assert result.breakdown == {s: 50 for s in ALL_SOURCES}
        assert result.missing_sources == list(ALL_SOURCES)

    def test_none_scores_are_treated_as_absent(self):
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(None))
        assert result.score == 50

    def test_absent_source_is_not_scored_as_zero(self):
        scores = _scores(100)
        scores["pms"] = None
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", scores)
        # 85 + 0.15 * 50
        assert result.score == 93

    def test_weighted_mix(self):
        scores = {"ga4": 80, "gbp": 90, "gsc": 70, "clarity": 60, "pms": None}
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", scores)
        # 20 + 22.5 + 14 + 9 + 7.5
        assert result.score == 73
        assert result.grade == "C"

    def test_half_point_rounds_up(self):
        # 0.25 * 2 = 0.5 over a base of 50 * 0.75
        scores = {"ga4": 52, "gbp": 50, "gsc": 50, "clarity": 50, "pms": 50}
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", scores)
        assert result.score == 51

    def test_to_dict_shape(self):
        data = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(90)).to_dict()
        assert data["breakdown"] == {
            "ga4Score": 90, "gbpScore": 90, "gscScore": 90, "clarityScore": 90, "pmsScore": 90
        }
        assert set(data) >= {"score", "grade", "monthlyChange", "previousScore", "trend", "lastUpdated"}


# ────────────────────────────────────────────
# GRADE LADDER
# ────────────────────────────────────────────


@pytest.mark.parametrize("score, grade", [
    (100, "A+"), (97, "A+"),
    (96, "A"), (93, "A"),
    (92, "A-"), (90, "A-"),
    (89, "B+"), (87, "B+"),
    (86, "B"), (83, "B"),
    (82, "B-"), (80, "B-"),
    (79, "C+"), (77, "C+"),
    (76, "C"), (73, "C"),
    (72, "C-"), (70, "C-"),
    (69, "D+"), (67, "D+"),
    (66, "D"), (65, "D"),
    (64, "F"), (0, "F"),
])
def test_grade_boundaries(score, grade):
    assert get_grade(score) == grade


def test_composite_grade_matches_ladder():
    result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(65))
    assert result.grade == "D"
    result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(64))
    assert result.grade == "F"


# ────────────────────────────────────────────
# PREVIOUS SCORE AND TREND
# ────────────────────────────────────────────


class TestPreviousScore:

    def test_default_previous_is_80(self):
        result = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(100))
        assert result.previous_score == 80
        assert result.monthly_change == 20
        assert result.trend == "up"

    def test_second_call_has_zero_monthly_change(self):
        scorer = VitalSignsScorer(InMemoryScoreStore())
        scorer.calculate("c1", _scores(100))
        second = scorer.calculate("c1", _scores(100))

        assert second.previous_score == 100
        assert second.monthly_change == 0
        assert second.trend == "stable"

    def test_store_is_keyed_by_client(self):
        store = InMemoryScoreStore()
        scorer = VitalSignsScorer(store)
        scorer.calculate("c1", _scores(100))

        assert scorer.calculate("c2", _scores(100)).previous_score == 80
        assert store.get("c1") == 100

    @pytest.mark.parametrize("previous, trend", [
        (75, "stable"),   # +5
        (74, "up"),       # +6
        (85, "stable"),   # -5
        (86, "down"),     # -6
    ])
    def test_monthly_trend_threshold_is_exclusive(self, previous, trend):
        scorer = VitalSignsScorer(InMemoryScoreStore({"c1": previous}))
        result = scorer.calculate("c1", _scores(80))
        assert result.score == 80
        assert result.trend == trend

    def test_custom_defaults(self):
        scorer = VitalSignsScorer(InMemoryScoreStore(), neutral_score=60, default_previous=70)
        result = scorer.calculate("c1", {})
        assert result.score == 60
        assert result.monthly_change == -10


class TestSqlScoreStore:

    def test_get_missing_returns_none(self, db_session):
        assert SqlScoreStore(db_session).get("nobody") is None

    def test_set_then_overwrite(self, db_session):
        store = SqlScoreStore(db_session)
        store.set("c1", 72)
        assert store.get("c1") == 72

        store.set("c1", 88)
        assert store.get("c1") == 88

    def test_write_on_read_with_database(self, db_session):
        scorer = VitalSignsScorer(SqlScoreStore(db_session))
        first = scorer.calculate("c1", _scores(90))
        second = scorer.calculate("c1", _scores(90))

        assert first.monthly_change == 10
        assert second.monthly_change == 0

    def test_concurrent_first_write_last_write_wins(self, db_session, monkeypatch):
        other = sessionmaker(bind=db_session.get_bind())()
        try:
            SqlScoreStore(other).set("c1", 70)
        finally:
            other.close()

        store = SqlScoreStore(db_session)
        real_find = store._find
        lookups = []

        def stale_find(client_id):
            lookups.append(client_id)
            # The first lookup ran before the other request committed
            return None if len(lookups) == 1 else real_find(client_id)

        monkeypatch.setattr(store, "_find", stale_find)
        store.set("c1", 91)

        assert SqlScoreStore(db_session).get("c1") == 91
        assert db_session.query(VitalSignsScoreRecord).count() == 1


# ────────────────────────────────────────────
# ANALYSIS VIEW
# ────────────────────────────────────────────


def _report():
    stages = ("Awareness", "Research", "Consideration", "Decision", "Loyalty", "Growth")
    sections = {stage: {"keyWins": [], "recommendations": [], "nextBestSteps": []} for stage in stages}
    sections["Awareness"]["recommendations"].append({
        "text": "Improve search rankings from current position 8.0 to top 3",
        "supportingEvidence": [{"source": "GSC", "metric": "average position", "value": "8.0",
                                "comparison": "target: top 3"}],
        "impact": "High",
        "timeframe": "4-6 weeks",
    })
    sections["Awareness"]["nextBestSteps"].append("Optimize content for primary dental keywords")
    sections["Decision"]["keyWins"].append({
        "text": "12 conversions tracked this period",
        "supportingEvidence": [{"source": "GA4", "metric": "conversions", "value": "12", "comparison": ""}],
    })
    sections["Growth"]["recommendations"].append({"text": "", "supportingEvidence": []})
    sections["Growth"]["nextBestSteps"].append("Track referral source for every new patient")
    return {
        "sections": sections,
        "dataQuality": {"missingSources": ["PMS"], "dataGaps": [], "anomalies": []},
        "lastUpdated": "2024-03-01T00:00:00",
    }


class TestAnalysisView:

    def _view(self, cached=False):
        vital_signs = VitalSignsScorer(InMemoryScoreStore({"c1": 70})).calculate("c1", _scores(80))
        return analysis_view(_report(), vital_signs, cached=cached)

    def test_score_fields_come_from_the_calculation(self):
        view = self._view()

        assert view["overallScore"] == 80
        assert view["grade"] == "B-"
        assert view["monthlyChange"] == 10
        assert view["trend"] == "up"
        assert view["breakdown"]["ga4Score"] == 80
        assert view["dataQuality"]["missingSources"] == ["PMS"]
        assert view["lastUpdated"] == "2024-03-01T00:00:00"
        assert view["cached"] is False

    def test_recommendations_become_priority_opportunities(self):
        first, fallback = self._view()["priorityOpportunities"]

        assert first == {
            "title": "Improve search rankings from current position 8.0 to top 3",
            "description": "average position",
            "impact": "high",
            "category": "awareness",
            "actionable": True,
            "estimatedImpact": "target: top 3",
            "timeframe": "4-6 weeks",
        }
        assert fallback["title"] == "Growth Opportunity"
        assert fallback["description"] == "Optimization opportunity"
        assert fallback["impact"] == "medium"
        assert fallback["estimatedImpact"] == "improvement expected"
        assert fallback["timeframe"] == "2-4 weeks"

    def test_key_wins_become_recent_wins(self):
        wins = self._view()["recentWins"]

        assert wins == [{
            "title": "12 conversions tracked this period",
            "description": "conversions",
            "metric": "conversions",
            "improvement": "positive trend",
            "timeframe": "this period",
        }]

    def test_next_steps_become_numbered_recommendations(self):
        recommendations = self._view(cached=True)["recommendations"]

        assert [r["priority"] for r in recommendations] == [1, 2]
        assert recommendations[1]["description"] == "Growth optimization: Track referral source for every new patient"
        assert recommendations[0]["difficulty"] == "medium"

    def test_plain_string_wins_are_accepted(self):
        report = _report()
        report["sections"]["Loyalty"]["keyWins"].append("Steady stream of new reviews")
        vital_signs = VitalSignsScorer(InMemoryScoreStore()).calculate("c1", _scores(80))

        wins = analysis_view(report, vital_signs)["recentWins"]

        assert wins[-1]["title"] == "Steady stream of new reviews"
        assert wins[-1]["metric"] == "Performance"
