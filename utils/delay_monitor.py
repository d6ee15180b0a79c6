"""Periodic sweep that flags stalled applications and auto-approves overdue ones."""
import threading
from datetime import datetime
from typing import Dict, Optional

from flask import current_app

from models import AUTO_APPROVAL_DAYS, SYSTEM_ACTOR, Application, ApplicationStatus, utcnow
from storage import store
from utils.alert_engine import notify_auto_approval, notify_delay
from utils.state_machine import transition

DELAY_THRESHOLD_DAYS = 7


def _whole_days(later: datetime, earlier: Optional[datetime]) -> int:
    if earlier is None:
        return 0
    return (later - earlier).days


def _check_application(application: Application, now: datetime, summary: Dict[str, int]) -> None:
    days_since_update = _whole_days(now, application.last_updated_at)
    if days_since_update > DELAY_THRESHOLD_DAYS and application.status is not ApplicationStatus.SUBMITTED:
        if notify_delay(application, days_since_update, now=now):
            summary["delayed"] += 1
            current_app.logger.info(
                "Delay alert dispatched",
                extra={"application_id": application.id, "days_since_update": days_since_update},
            )

    if _whole_days(now, application.submitted_at) >= AUTO_APPROVAL_DAYS:
        approved = transition(
            application.id,
            ApplicationStatus.AUTO_APPROVED,
            SYSTEM_ACTOR,
            f"Auto-approved after {AUTO_APPROVAL_DAYS} days",
            now=now,
        )
        notify_auto_approval(approved)
        summary["auto_approved"] += 1


def run_delay_sweep(now: Optional[datetime] = None) -> Dict[str, int]:
    """One pass over every open application. Needs an application context."""
    now = now or utcnow()
    summary = {"checked": 0, "delayed": 0, "auto_approved": 0, "errors": 0}

    for application in store.list_applications():
        if application.is_terminal:
            continue
        summary["checked"] += 1
        try:
            _check_application(application, now, summary)
        except Exception:
            summary["errors"] += 1
            current_app.logger.exception(
                "Delay sweep failed for application",
                extra={"application_id": application.id},
            )

    current_app.logger.info("Delay sweep complete", extra=summary)
    return summary


def run_monitor_cycle(app, now: Optional[datetime] = None) -> Dict[str, int]:
    with app.app_context():
        return run_delay_sweep(now)


class DelayMonitor:
    """Background daemon thread running the sweep on a fixed interval."""

    def __init__(self, app, interval_seconds: Optional[int] = None) -> None:
        self.app = app
        self.interval_seconds = int(interval_seconds or app.config.get("MONITOR_INTERVAL_SECONDS", 3600))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="delay-monitor", daemon=True)
        self._thread.start()
        self.app.logger.info("Delay monitor started", extra={"interval_seconds": self.interval_seconds})

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                run_monitor_cycle(self.app)
            except Exception:
                self.app.logger.exception("Delay monitor cycle crashed")
