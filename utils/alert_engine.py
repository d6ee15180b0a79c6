"""In-app notifications and alert deduplication without third-party services."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app

from models import NOTIFICATION_TYPES, Application, Notification, utcnow
from storage import store


def notify(
    user_id: Optional[str],
    notification_type: str,
    title: str,
    message: str,
    application_id: Optional[str] = None,
) -> Optional[Notification]:
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError("Invalid notification type")
    if not user_id:
        return None
    notification = store.create_notification(user_id, notification_type, title, message, application_id)
    current_app.logger.info(
        "Notification created",
        extra={"type": notification_type, "user_id": user_id, "application_id": application_id},
    )
    return notification


def alert_due(application_id: str, alert_type: str, now: datetime, cooldown_hours: int) -> bool:
    """True when no alert of this type went out for the application inside the cooldown."""
    mark = store.get_alert_mark(application_id, alert_type)
    if mark is None:
        return True
    return now - mark.last_notified_at >= timedelta(hours=cooldown_hours)


def notify_delay(application: Application, days_since_update: int, now: Optional[datetime] = None) -> List[Notification]:
    now = now or utcnow()
    cooldown = int(current_app.config.get("DELAY_ALERT_COOLDOWN_HOURS", 24))
    if not alert_due(application.id, "delay", now, cooldown):
        return []

    sent: List[Notification] = []
    citizen = store.get_user(application.citizen_id)
    if citizen:
        sent.append(
            notify(
                citizen.id,
                "delay",
                "Application Delayed",
                f"Your application {application.tracking_id} has been pending for {days_since_update} days.",
                application.id,
            )
        )
    if application.official_id:
        sent.append(
            notify(
                application.official_id,
                "delay",
                "Delayed Application Alert",
                f"Application {application.tracking_id} requires attention. {days_since_update} days since last update.",
                application.id,
            )
        )
    store.record_alert_mark(application.id, "delay", now)
    return [item for item in sent if item is not None]


def notify_assignment(application: Application) -> Optional[Notification]:
    return notify(
        application.citizen_id,
        "assignment",
        "Application Assigned",
        f"Your application {application.tracking_id} has been assigned to an official and is now being processed.",
        application.id,
    )


def notify_auto_approval(application: Application) -> Optional[Notification]:
    return notify(
        application.citizen_id,
        "approval",
        "Application Auto-Approved",
        f"Your application {application.tracking_id} has been automatically approved after 30 days.",
        application.id,
    )


def unread_count(user_id: str) -> int:
    return sum(1 for item in store.list_user_notifications(user_id) if not item.read)
