"""Database models for the Dental Vitals platform"""

from dental_vitals.models.metrics import (
    GA4Metric,
    GSCMetric,
    GBPMetric,
    ClarityMetric,
    PMSRecord
)

from dental_vitals.models.insights import (
    Client,
    AIInsight,
    VitalSignsScoreRecord
)

__all__ = [
    "GA4Metric",
    "GSCMetric",
    "GBPMetric",
    "ClarityMetric",
    "PMSRecord",
    "Client",
    "AIInsight",
    "VitalSignsScoreRecord",
]
