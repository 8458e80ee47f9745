"""
Daily Metric Models

One table per data source, written by the ingestion functions and read here
by date range. Rate columns (engagement_rate, ctr, bounce_rate) hold fractions.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Numeric, UniqueConstraint, Index
from datetime import datetime

from dental_vitals.models.base import Base


class GA4Metric(Base):
    """Google Analytics 4 website metrics (daily)"""
    __tablename__ = "ga4_metrics"
    __table_args__ = (
        UniqueConstraint("client_id", "date", name="uq_ga4_metrics_client_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)

    new_users = Column(Integer, default=0)
    total_users = Column(Integer, default=0)
    sessions = Column(Integer, default=0)
    engagement_rate = Column(Float, default=0)
    conversions = Column(Integer, default=0)
    avg_session_duration = Column(Float, default=0)
    # In seconds
    bounce_rate = Column(Float, default=0)
    pages_per_session = Column(Float, default=0)

    # Per-day score written at ingestion; period scores are recomputed
    calculated_score = Column(Integer, default=0)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<GA4Metric {self.client_id} - {self.date}>"


class GSCMetric(Base):
    """Google Search Console query/page performance (daily)"""
    __tablename__ = "gsc_metrics"
    __table_args__ = (
        Index("ix_gsc_metrics_client_date", "client_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)

    query = Column(String, nullable=True)
    page = Column(String, nullable=True)
    device = Column(String, default="desktop")

    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    ctr = Column(Float, default=0)
    position = Column(Float, default=0)

    calculated_score = Column(Integer, default=0)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<GSCMetric {self.client_id} {self.query!r} - {self.date}>"


class GBPMetric(Base):
    """Google Business Profile location metrics (daily)

    total_reviews and average_rating are all-time values repeated on every
    daily row for a location.
    """
    __tablename__ = "gbp_metrics"
    __table_args__ = (
        UniqueConstraint("client_id", "date", "location_name", name="uq_gbp_metrics_client_date_location"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)
    location_name = Column(String, nullable=True)

    total_views = Column(Integer, default=0)
    search_views = Column(Integer, default=0)
    maps_views = Column(Integer, default=0)
    phone_calls = Column(Integer, default=0)
    website_clicks = Column(Integer, default=0)
    direction_requests = Column(Integer, default=0)

    # All-time
    total_reviews = Column(Integer, default=0)
    average_rating = Column(Numeric(3, 2), default=0)

    new_reviews = Column(Integer, default=0)

    calculated_score = Column(Integer, default=0)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<GBPMetric {self.client_id} {self.location_name} - {self.date}>"


class ClarityMetric(Base):
    """Microsoft Clarity user-experience metrics (daily)"""
    __tablename__ = "clarity_metrics"
    __table_args__ = (
        UniqueConstraint("client_id", "date", name="uq_clarity_metrics_client_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)

    total_sessions = Column(Integer, default=0)
    unique_users = Column(Integer, default=0)
    page_views = Column(Integer, default=0)
    avg_session_duration = Column(Float, default=0)
    bounce_rate = Column(Float, default=0)

    # Frustration indicators
    dead_clicks = Column(Integer, default=0)
    rage_clicks = Column(Integer, default=0)
    quick_backs = Column(Integer, default=0)

    calculated_score = Column(Integer, default=0)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ClarityMetric {self.client_id} - {self.date}>"


class PMSRecord(Base):
    """Practice management referral event (one row per referral)"""
    __tablename__ = "pms_data"
    __table_args__ = (
        Index("ix_pms_data_client_date", "client_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)

    referral_type = Column(String, nullable=False, default="other")
    # doctor_referral, self_referral, insurance_referral, emergency, other
    referral_source = Column(String, nullable=True)
    patient_count = Column(Integer, default=1)
    production_amount = Column(Numeric(10, 2), default=0)

    appointment_type = Column(String, nullable=True)
    treatment_category = Column(String, nullable=True)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PMSRecord {self.client_id} {self.referral_type} - {self.date}>"
