"""
Monthly insights job tests.
"""
from sqlalchemy.orm import sessionmaker

from dental_vitals import scheduler as scheduler_module
from dental_vitals.models import AIInsight, Client


def test_run_monthly_insights_with_session_factory(db_session):
    db_session.add_all([
        Client(id="c1", practice_name="Smile Dental", account_status="active"),
        Client(id="c2", practice_name="Trial Practice", account_status="trial"),
    ])
    db_session.commit()
    factory = sessionmaker(bind=db_session.get_bind())

    result = scheduler_module.run_monthly_insights(session_factory=factory)

    assert result["success"] is True
    assert result["processed"] == 1
    assert result["results"][0]["clientId"] == "c1"
    assert result["results"][0]["provider"] == "rule_based"
    assert db_session.query(AIInsight).filter(AIInsight.client_id == "c1").count() == 1


def test_run_monthly_insights_reports_store_failure():
    from dental_vitals.models.base import build_engine

    # No tables created
    factory = sessionmaker(bind=build_engine("sqlite://"))
    result = scheduler_module.run_monthly_insights(session_factory=factory)

    assert result["success"] is False
    assert "active clients" in result["error"]


def test_setup_scheduler_registers_monthly_job():
    scheduler_module.setup_scheduler()
    try:
        job = scheduler_module.scheduler.get_job("monthly_insights")
        assert job is not None
        assert job.name == "Monthly Patient Journey Insights"
    finally:
        scheduler_module.scheduler.remove_job("monthly_insights")


def test_stop_scheduler_when_not_running():
    assert not scheduler_module.scheduler.running
    scheduler_module.stop_scheduler()
