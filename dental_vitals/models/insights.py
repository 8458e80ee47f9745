"""
Persisted derivations: monthly insight reports, previous Vital Signs scores,
and the client registry used by the monthly job.
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, JSON, UniqueConstraint
from datetime import datetime

from dental_vitals.models.base import Base


class Client(Base):
    """Dental practice account"""
    __tablename__ = "clients"

    id = Column(String, primary_key=True)
    practice_name = Column(String, nullable=False, default="Default Practice")
    account_status = Column(String, nullable=False, default="trial", index=True)
    # active, suspended, trial, cancelled
    timezone = Column(String, default="America/New_York")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Client {self.id} {self.practice_name}>"


class AIInsight(Base):
    """Monthly patient-journey insight report, one per client per month"""
    __tablename__ = "ai_insights"
    __table_args__ = (
        UniqueConstraint("client_id", "report_date", name="uq_ai_insights_client_report_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, index=True, nullable=False)
    report_date = Column(Date, nullable=False)
    # First day of the report month

    sections = Column(JSON, nullable=False, default=dict)
    data_quality = Column(JSON, nullable=False, default=dict)
    provider = Column(String, nullable=True)
    # "llm" or "rule_based"
    generated_at = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "reportDate": self.report_date.isoformat(),
            "sections": self.sections or {},
            "dataQuality": self.data_quality or {},
            "provider": self.provider,
            "lastUpdated": self.generated_at,
        }

    def __repr__(self):
        return f"<AIInsight {self.client_id} - {self.report_date}>"


class VitalSignsScoreRecord(Base):
    """Last computed Vital Signs score per client (single slot, last write wins)"""
    __tablename__ = "vital_signs_scores"

    client_id = Column(String, primary_key=True)
    score = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<VitalSignsScoreRecord {self.client_id}={self.score}>"
