"""
Composite Vital Signs Score

Combines the five per-source scores into one weighted 0-100 score with a
letter grade and a month-over-month delta.

The delta is taken against a previous score held in a PreviousScoreStore.
Computing a score overwrites the stored previous score (write-on-read), so two
calculations in a row for the same client give a monthly change of 0 on the
second one.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from dental_vitals.models import VitalSignsScoreRecord
from dental_vitals.services.aggregation import SOURCE_ORDER, classify_change
from dental_vitals.services.metric_store import UpstreamFailure
from dental_vitals.services.narrative_providers import JOURNEY_STAGES
from dental_vitals.utils.helpers import clamp, round_half_up
from dental_vitals.utils.logger import log


SOURCE_WEIGHTS: Dict[str, float] = {
    "ga4": 0.25,
    "gbp": 0.25,
    "gsc": 0.20,
    "clarity": 0.15,
    "pms": 0.15,
}

# (minimum score, grade), checked top-down
GRADE_LADDER = (
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (65, "D"),
)

MONTHLY_TREND_THRESHOLD = 5.0

NEUTRAL_SOURCE_SCORE = 50
DEFAULT_PREVIOUS_SCORE = 80


def get_grade(score: float) -> str:
    """Letter grade for a 0-100 score"""
    for minimum, grade in GRADE_LADDER:
        if score >= minimum:
            return grade
    return "F"


# Previous score stores

class PreviousScoreStore(ABC):
    """Single-slot, last-write-wins previous score per client"""

    @abstractmethod
    def get(self, client_id: str) -> Optional[int]:
        ...

    @abstractmethod
    def set(self, client_id: str, score: int) -> None:
        ...


class InMemoryScoreStore(PreviousScoreStore):

    def __init__(self, initial: Optional[Dict[str, int]] = None):
        self._scores: Dict[str, int] = dict(initial or {})

    def get(self, client_id: str) -> Optional[int]:
        return self._scores.get(client_id)

    def set(self, client_id: str, score: int) -> None:
        self._scores[client_id] = score


class SqlScoreStore(PreviousScoreStore):
    """Previous scores kept in the vital_signs_scores table"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, client_id: str) -> Optional[int]:
        try:
            record = self._find(client_id)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to read previous score: {str(e)}") from e
        return record.score if record else None

    def set(self, client_id: str, score: int) -> None:
        try:
            self._write(client_id, score)
        except IntegrityError:
            # Another request stored this client's first score in between; last write wins
            self.db.rollback()
            log.debug(f"Previous score for {client_id} written concurrently, updating instead")
            try:
                self._write(client_id, score)
            except SQLAlchemyError as e:
                self.db.rollback()
                raise UpstreamFailure(f"Failed to store previous score: {str(e)}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise UpstreamFailure(f"Failed to store previous score: {str(e)}") from e

    def _find(self, client_id: str) -> Optional[VitalSignsScoreRecord]:
        return self.db.query(VitalSignsScoreRecord).filter(
            VitalSignsScoreRecord.client_id == client_id
        ).first()

    def _write(self, client_id: str, score: int) -> None:
        record = self._find(client_id)
        if record:
            record.score = score
            record.updated_at = datetime.utcnow()
        else:
            self.db.add(VitalSignsScoreRecord(client_id=client_id, score=score))
        self.db.commit()


@dataclass
class VitalSignsScore:
    score: int
    grade: str
    monthly_change: int
    previous_score: int
    trend: str
    breakdown: Dict[str, int] = field(default_factory=dict)
    missing_sources: list = field(default_factory=list)
    last_updated: str = ""

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "grade": self.grade,
            "monthlyChange": self.monthly_change,
            "previousScore": self.previous_score,
            "trend": self.trend,
            "breakdown": {f"{source}Score": value for source, value in self.breakdown.items()},
            "missingSources": list(self.missing_sources),
            "lastUpdated": self.last_updated,
        }


class VitalSignsScorer:
    """
    Weighted composite of the per-source scores.

    Args:
        store: Previous-score store, read then overwritten on every calculation
        neutral_score: Score used for a source with no data (never 0)
        default_previous: Previous score assumed when the store has none
    """

    def __init__(
        self,
        store: PreviousScoreStore,
        neutral_score: int = NEUTRAL_SOURCE_SCORE,
        default_previous: int = DEFAULT_PREVIOUS_SCORE
    ):
        self.store = store
        self.neutral_score = neutral_score
        self.default_previous = default_previous

    def composite(self, scores: Dict[str, Optional[float]]) -> tuple:
        """Weighted score plus the per-source breakdown actually used"""
        breakdown = {}
        for source in SOURCE_ORDER:
            value = scores.get(source)
            if value is None:
                breakdown[source] = self.neutral_score
            else:
                breakdown[source] = int(clamp(round_half_up(value), 0, 100))

        weighted = sum(SOURCE_WEIGHTS[s] * breakdown[s] for s in SOURCE_ORDER)
        return int(clamp(round_half_up(weighted), 0, 100)), breakdown

    def calculate(self, client_id: str, scores: Dict[str, Optional[float]]) -> VitalSignsScore:
        """
        Compute the Vital Signs score for a client.

        Args:
            client_id: Client the previous score is keyed by
            scores: Per-source calculated scores; None or absent means no data

        Returns:
            VitalSignsScore
        """
        score, breakdown = self.composite(scores)
        missing = [s for s in SOURCE_ORDER if scores.get(s) is None]

        previous = self.store.get(client_id)
        if previous is None:
            previous = self.default_previous
        monthly_change = score - previous
        self.store.set(client_id, score)

        result = VitalSignsScore(
            score=score,
            grade=get_grade(score),
            monthly_change=monthly_change,
            previous_score=previous,
            trend=classify_change(monthly_change, MONTHLY_TREND_THRESHOLD),
            breakdown=breakdown,
            missing_sources=missing,
            last_updated=datetime.utcnow().isoformat(),
        )

        log.info(
            f"Vital Signs for {client_id}: {result.score} ({result.grade}), "
            f"change {result.monthly_change:+d} vs {previous}"
        )
        if missing:
            log.debug(f"Vital Signs for {client_id} used neutral score for: {', '.join(missing)}")
        return result


# Analysis view

def _first_evidence(item: Dict[str, Any]) -> Dict[str, Any]:
    evidence = item.get("supportingEvidence") or []
    first = evidence[0] if evidence else {}
    return first if isinstance(first, dict) else {}


def _as_item(item: Any) -> Dict[str, Any]:
    return item if isinstance(item, dict) else {"text": str(item)}


def analysis_view(report: Dict[str, Any], vital_signs: VitalSignsScore, cached: bool = False) -> Dict[str, Any]:
    """
    Vital Signs analysis: the composite score plus an insight report, with the
    journey sections also flattened into dashboard cards.

    - every recommendation becomes a priority opportunity
    - every key win becomes a recent win
    - every next best step becomes a numbered recommendation
    """
    sections = report.get("sections") or {}
    opportunities: List[Dict[str, Any]] = []
    wins: List[Dict[str, Any]] = []
    recommendations: List[Dict[str, Any]] = []

    for stage in JOURNEY_STAGES:
        stage_data = sections.get(stage) or {}

        for rec in map(_as_item, stage_data.get("recommendations") or []):
            evidence = _first_evidence(rec)
            opportunities.append({
                "title": rec.get("text") or f"{stage} Opportunity",
                "description": evidence.get("metric") or rec.get("text") or "Optimization opportunity",
                "impact": (rec.get("impact") or "medium").lower(),
                "category": stage.lower(),
                "actionable": True,
                "estimatedImpact": evidence.get("comparison") or "improvement expected",
                "timeframe": rec.get("timeframe") or "2-4 weeks",
            })

        for win in map(_as_item, stage_data.get("keyWins") or []):
            evidence = _first_evidence(win)
            wins.append({
                "title": win.get("text") or f"{stage} Success",
                "description": evidence.get("metric") or win.get("text") or "Performance improvement",
                "metric": evidence.get("metric") or "Performance",
                "improvement": evidence.get("comparison") or "positive trend",
                "timeframe": "this period",
            })

        for step in stage_data.get("nextBestSteps") or []:
            recommendations.append({
                "title": step,
                "description": f"{stage} optimization: {step}",
                "estimatedImpact": "performance improvement",
                "timeframe": "2-4 weeks",
                "difficulty": "medium",
                "priority": len(recommendations) + 1,
            })

    score = vital_signs.to_dict()
    return {
        "overallScore": score["score"],
        "grade": score["grade"],
        "trend": score["trend"],
        "monthlyChange": score["monthlyChange"],
        "breakdown": score["breakdown"],
        "sections": sections,
        "dataQuality": report.get("dataQuality") or {},
        "priorityOpportunities": opportunities,
        "recentWins": wins,
        "recommendations": recommendations,
        "lastUpdated": report.get("lastUpdated") or score["lastUpdated"],
        "cached": cached,
    }
