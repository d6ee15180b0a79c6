"""Assignment and escalation engine.

New applications go to the least-loaded official of the matching department
whose rating falls inside the band for the current escalation level. Each
time a citizen reports that an application was not solved, the escalation
level goes up and the application is routed again, now preferring better
rated officials:

    level 0   ratings 0.0 - 2.9
    level 1   ratings 2.0 - 3.9
    level 2+  ratings 3.0 - 5.0

Bands overlap on purpose. When nobody in the department falls inside the
band, the whole department is considered instead.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple

from flask import current_app

from models import ApplicationStatus, Application, User, normalize_department, utcnow
from storage import store
from utils.alert_engine import notify_assignment
from utils.errors import Forbidden, NotFound, ValidationError
from utils.rating import RATING_MAX, RATING_MIN, credit_resolution
from utils.state_machine import apply_transition, ensure_transition

RATING_TIERS: Tuple[Tuple[float, float], ...] = (
    (0.0, 2.9),
    (2.0, 3.9),
    (3.0, 5.0),
)


def rating_range(escalation_level: int) -> Tuple[float, float]:
    return RATING_TIERS[min(max(int(escalation_level), 0), len(RATING_TIERS) - 1)]


def department_officials(department_name: Optional[str]) -> List[User]:
    target = normalize_department(department_name)
    if not target:
        return []
    return [official for official in store.list_officials() if official.normalized_department == target]


def eligible_officials(department_name: Optional[str], escalation_level: int) -> List[User]:
    """Department officials for the level's rating band, least loaded first."""
    candidates = department_officials(department_name)
    if not candidates:
        return []
    low, high = rating_range(escalation_level)
    in_band = [official for official in candidates if low <= (official.rating or 0) <= high]
    pool = in_band or candidates
    return sorted(pool, key=lambda official: official.assigned_count or 0)


def select_official(department_name: Optional[str], escalation_level: int) -> Optional[User]:
    ranked = eligible_officials(department_name, escalation_level)
    return ranked[0] if ranked else None


def _assign(
    application: Application,
    official_id: str,
    actor_id: str,
    comment: str,
    now: Optional[datetime] = None,
    reopen: bool = False,
) -> Tuple[Application, User]:
    """Hand the application to an official. Caller holds the application lock.

    Only escalation passes ``reopen``; everyone else gets ``InvalidTransition``
    on a decided application.
    """
    now = now or utcnow()
    previous_official = application.official_id
    application.official_id = official_id
    try:
        ensure_transition(application, ApplicationStatus.ASSIGNED, reopen=reopen)
    except Exception:
        application.official_id = previous_official
        raise

    application.assigned_at = now
    apply_transition(application, ApplicationStatus.ASSIGNED, actor_id, comment, now=now, reopen=reopen)

    with store.user_lock(official_id):
        official = store.require_user(official_id)
        official.assigned_count = (official.assigned_count or 0) + 1
        store.save_user(official)
    return application, official


def auto_assign(
    application_id: str,
    department_name: Optional[str],
    escalation_level: int = 0,
    now: Optional[datetime] = None,
    reopen: bool = False,
) -> Optional[User]:
    with store.application_lock(application_id):
        application = store.require_application(application_id)
        official = select_official(department_name, escalation_level)
        if official is None:
            current_app.logger.info(
                "No matching official for application",
                extra={"application_id": application_id, "department": department_name, "level": escalation_level},
            )
            return None

        application.escalation_level = int(escalation_level)
        application, official = _assign(
            application,
            official.id,
            official.id,
            "Application assigned to official",
            now=now,
            reopen=reopen,
        )

    current_app.logger.info(
        "Application auto-assigned",
        extra={
            "application_id": application_id,
            "official_id": official.id,
            "level": escalation_level,
            "assigned_count": official.assigned_count,
        },
    )
    notify_assignment(application)
    return official


def accept(application_id: str, official: User) -> Application:
    """An official (or admin) takes an application for themselves."""
    with store.application_lock(application_id):
        application = store.require_application(application_id)
        application, _ = _assign(application, official.id, official.id, "Application accepted by official")
    current_app.logger.info("Application accepted", extra={"application_id": application_id, "official_id": official.id})
    notify_assignment(application)
    return application


def force_assign(application_id: str, official_id: Optional[str], admin: User) -> Application:
    """Admin override: assign to any official, skipping the rating bands."""
    if not official_id:
        raise ValidationError("officialId is required")
    target = store.get_user(official_id)
    if target is None:
        raise NotFound("Official not found")
    if target.role != "official":
        raise ValidationError("Applications can only be assigned to officials")

    with store.application_lock(application_id):
        application = store.require_application(application_id)
        application, _ = _assign(application, target.id, admin.id, f"Assigned by administrator to {target.username}")
    current_app.logger.info(
        "Application assigned by admin",
        extra={"application_id": application_id, "official_id": target.id, "admin_id": admin.id},
    )
    notify_assignment(application)
    return application


def _owned_application(application_id: str, citizen_id: str) -> Application:
    application = store.require_application(application_id)
    if application.citizen_id != citizen_id:
        raise Forbidden("Unauthorized")
    return application


def escalate(application_id: str, citizen_id: str) -> Tuple[Application, Optional[User]]:
    """Citizen reports the application as not solved."""
    with store.application_lock(application_id):
        application = _owned_application(application_id, citizen_id)
        if not application.department:
            raise ValidationError("Application has no department")
        if application.status is ApplicationStatus.AUTO_APPROVED:
            raise ValidationError("Auto-approved applications cannot be escalated")

        next_level = (application.escalation_level or 0) + 1
        application.escalation_level = next_level
        store.save_application(application)
        current_app.logger.info(
            "Application escalated",
            extra={"application_id": application_id, "level": next_level, "previous_official": application.official_id},
        )
        official = auto_assign(application_id, application.department, next_level, reopen=True)

    return store.require_application(application_id), official


def resolve(
    application_id: str,
    citizen_id: str,
    rating: Optional[int] = None,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Application:
    """Citizen confirms the application was solved, optionally rating the official."""
    if rating is not None and not (RATING_MIN <= int(rating) <= RATING_MAX):
        raise ValidationError(f"Rating must be between {RATING_MIN} and {RATING_MAX}")

    with store.application_lock(application_id):
        application = _owned_application(application_id, citizen_id)
        application.is_solved = True
        application.last_updated_at = now or utcnow()
        store.save_application(application)

        if rating and application.official_id and not store.get_feedback_for_application(application_id):
            store.create_feedback(
                application_id=application_id,
                citizen_id=citizen_id,
                official_id=application.official_id,
                rating=int(rating),
                comment=comment,
            )
            official = credit_resolution(application.official_id)
            current_app.logger.info(
                "Official rating updated",
                extra={
                    "official_id": application.official_id,
                    "rating": official.rating if official else None,
                    "solved_count": official.solved_count if official else None,
                },
            )

    return application
