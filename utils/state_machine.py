"""Application status transitions with an explicit adjacency table."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from flask import current_app

from models import (
    HASHED_STATUSES,
    TERMINAL_STATUSES,
    Application,
    ApplicationStatus,
    utcnow,
)
from storage import store
from utils.blockchain_ready import record_anchor
from utils.errors import InvalidTransition, ValidationError

S = ApplicationStatus

ALLOWED_TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    S.SUBMITTED: frozenset({S.ASSIGNED, S.AUTO_APPROVED}),
    S.ASSIGNED: frozenset({S.ASSIGNED, S.IN_PROGRESS, S.APPROVED, S.REJECTED, S.AUTO_APPROVED}),
    S.IN_PROGRESS: frozenset({S.ASSIGNED, S.IN_PROGRESS, S.APPROVED, S.REJECTED, S.AUTO_APPROVED}),
    S.APPROVED: frozenset(),
    S.REJECTED: frozenset(),
    S.AUTO_APPROVED: frozenset(),
}

# A citizen rejecting a decision sends the application back to an official.
REOPENABLE_STATUSES: FrozenSet[ApplicationStatus] = frozenset({S.APPROVED, S.REJECTED})


def parse_status(value) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in ApplicationStatus)
        raise ValidationError(f"Invalid status '{value}'. Expected one of: {allowed}") from None


def can_transition(current: ApplicationStatus, target: ApplicationStatus, reopen: bool = False) -> bool:
    if reopen and target is S.ASSIGNED and current in REOPENABLE_STATUSES:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(application: Application, target: ApplicationStatus, reopen: bool = False) -> None:
    if not can_transition(application.status, target, reopen=reopen):
        raise InvalidTransition(application.status.value, target.value)
    # Unassigned applications only leave Submitted through assignment or auto-approval.
    if application.official_id is None and target is not S.AUTO_APPROVED:
        raise InvalidTransition(application.status.value, target.value)


def apply_transition(
    application: Application,
    target: ApplicationStatus,
    actor_id: str,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
    reopen: bool = False,
) -> Application:
    """Mutate and persist; the caller holds the application lock."""
    now = now or utcnow()
    ensure_transition(application, target, reopen=reopen)
    previous = application.status
    application.status = target
    application.last_updated_at = now
    if target in TERMINAL_STATUSES:
        application.approved_at = now
    elif previous in TERMINAL_STATUSES:
        application.approved_at = None
    store.save_application(application)
    store.add_history(application.id, target.value, actor_id, comment, now=now)
    if target in HASHED_STATUSES:
        record_anchor(application.id)
    current_app.logger.info(
        "Application status changed",
        extra={
            "application_id": application.id,
            "from": previous.value,
            "to": target.value,
            "actor": actor_id,
        },
    )
    return application


def transition(
    application_id: str,
    new_status,
    actor_id: str,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Application:
    target = new_status if isinstance(new_status, ApplicationStatus) else parse_status(new_status)
    with store.application_lock(application_id):
        application = store.require_application(application_id)
        return apply_transition(application, target, actor_id, comment, now=now)
