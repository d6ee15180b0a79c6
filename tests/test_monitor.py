from datetime import timedelta

import pytest

from app import create_app
from extensions import db
from models import ApplicationStatus, utcnow
from storage import store
from utils import assignment, delay_monitor
from utils.delay_monitor import DelayMonitor, run_delay_sweep
from utils.state_machine import transition

from conftest import days_ago


@pytest.fixture
def official(make_user):
    return make_user("officer", role="official", department="Health")


def _aged(citizen, official, submit, submitted_days, updated_days=None):
    submitted = days_ago(submitted_days)
    application = submit(citizen.id, now=submitted)
    assignment.auto_assign(application.id, application.department, 0, now=submitted)
    transition(application.id, "In Progress", official.id, now=days_ago(updated_days or submitted_days))
    return store.get_application(application.id)


def _notes(user_id, kind):
    return [item for item in store.list_user_notifications(user_id) if item.type == kind]


def test_overdue_application_is_auto_approved_once(citizen, official, submit):
    application = _aged(citizen, official, submit, 31)

    summary = run_delay_sweep()

    stored = store.get_application(application.id)
    assert stored.status is ApplicationStatus.AUTO_APPROVED
    assert store.get_history(application.id)[-1].updated_by == "system"
    assert store.get_history(application.id)[-1].comment == "Auto-approved after 30 days"
    assert store.get_blockchain_hash(application.id) is not None
    assert summary["auto_approved"] == 1
    assert len(_notes(citizen.id, "approval")) == 1

    second = run_delay_sweep()
    assert second["checked"] == 0
    assert len(_notes(citizen.id, "approval")) == 1


def test_unassigned_overdue_application_is_auto_approved(citizen, submit):
    application = submit(citizen.id, application_type="Unknown Office", now=days_ago(30))

    run_delay_sweep()

    assert store.get_application(application.id).status is ApplicationStatus.AUTO_APPROVED


def test_delay_alerts_respect_cooldown(app, citizen, official, submit):
    application = _aged(citizen, official, submit, 10)
    now = utcnow()

    assert run_delay_sweep(now)["delayed"] == 1
    citizen_alerts = _notes(citizen.id, "delay")
    assert len(citizen_alerts) == 1
    assert citizen_alerts[0].message == f"Your application {application.tracking_id} has been pending for 10 days."
    assert _notes(official.id, "delay")[0].title == "Delayed Application Alert"

    assert run_delay_sweep(now + timedelta(hours=1))["delayed"] == 0
    assert len(_notes(citizen.id, "delay")) == 1

    hours = app.config["DELAY_ALERT_COOLDOWN_HOURS"]
    assert run_delay_sweep(now + timedelta(hours=hours + 1))["delayed"] == 1
    assert len(_notes(citizen.id, "delay")) == 2


def test_recent_or_unassigned_applications_are_not_flagged(citizen, official, submit):
    _aged(citizen, official, submit, 5)
    submit(citizen.id, application_type="Unknown Office", now=days_ago(12))

    summary = run_delay_sweep()

    assert summary == {"checked": 2, "delayed": 0, "auto_approved": 0, "errors": 0}
    assert _notes(citizen.id, "delay") == []


def test_sweep_continues_after_a_failure(citizen, official, submit, monkeypatch):
    _aged(citizen, official, submit, 12)
    _aged(citizen, official, submit, 31, updated_days=1)

    def broken(*args, **kwargs):
        raise RuntimeError("notification channel down")

    monkeypatch.setattr(delay_monitor, "notify_delay", broken)
    summary = run_delay_sweep()

    assert summary["errors"] == 1
    assert summary["auto_approved"] == 1


def test_monitor_thread_starts_and_stops(app):
    monitor = DelayMonitor(app, interval_seconds=3600)

    monitor.start()
    assert monitor.running
    monitor.stop()
    assert not monitor.running


def test_monitor_cli_refuses_the_memory_backend(app, citizen, official, submit):
    application = _aged(citizen, official, submit, 40)

    result = app.test_cli_runner().invoke(args=["monitor-run"])

    assert result.exit_code != 0
    assert "STORAGE_BACKEND=sql" in result.output
    assert store.get_application(application.id).status is ApplicationStatus.IN_PROGRESS


@pytest.fixture
def sql_app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("STORAGE_BACKEND", "sql")
    application = create_app("testing")
    with application.app_context():
        yield application


def test_monitor_cli_runs_one_sweep_on_shared_storage(sql_app):
    citizen = store.create_user(username="cron-citizen", password="x")
    official = store.create_user(username="cron-official", password="x", role="official", department="Health")
    submitted = days_ago(40)
    application = store.create_application(citizen.id, "Health – Clinic", now=submitted)
    assignment.auto_assign(application.id, application.department, 0, now=submitted)
    transition(application.id, "In Progress", official.id, now=submitted)

    result = sql_app.test_cli_runner().invoke(args=["monitor-run"])

    assert result.exit_code == 0
    assert "auto_approved=1" in result.output
    db.session.expire_all()
    assert store.get_application(application.id).status is ApplicationStatus.AUTO_APPROVED
