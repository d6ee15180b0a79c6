"""Entity store: typed access to the portal's key-value maps.

The store owns every entity. Callers get copies back and write changes through
``save_*`` methods, which hand the entity to the configured repository. The
repository engine is chosen per application from ``STORAGE_BACKEND``.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from flask import current_app

from models import (
    Application,
    ApplicationHistory,
    BlockchainHash,
    DelayAlertMark,
    Department,
    Feedback,
    Notification,
    OfficialWarning,
    OTPRecord,
    User,
    normalize_department,
    utcnow,
)
from storage.repository import MemoryRepository, Repository, SqlRepository
from utils.errors import Conflict, NotFound
from utils.locks import KeyedLocks

EXTENSION_KEY = "entity_store"


class _StoreState:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self.application_locks = KeyedLocks()
        self.user_locks = KeyedLocks()
        self.sequence_lock = threading.Lock()


def build_repository(app) -> Repository:
    backend = (app.config.get("STORAGE_BACKEND") or "memory").lower()
    if backend == "sql":
        from extensions import db

        return SqlRepository(db)
    if backend != "memory":
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
    return MemoryRepository(
        data_dir=app.config.get("DATA_DIR"),
        snapshot_on_write=bool(app.config.get("SNAPSHOT_ON_WRITE", True)),
    )


class EntityStore:
    def __init__(self, repository: Optional[Repository] = None) -> None:
        self._state = _StoreState(repository) if repository is not None else None

    def init_app(self, app, repository: Optional[Repository] = None) -> None:
        app.extensions[EXTENSION_KEY] = _StoreState(repository or build_repository(app))

    @property
    def state(self) -> _StoreState:
        if self._state is not None:
            return self._state
        return current_app.extensions[EXTENSION_KEY]

    @property
    def repository(self) -> Repository:
        return self.state.repository

    @contextmanager
    def application_lock(self, application_id: str) -> Iterator[None]:
        with self.state.application_locks.hold(application_id):
            yield

    @contextmanager
    def user_lock(self, user_id: str) -> Iterator[None]:
        with self.state.user_locks.hold(user_id):
            yield

    # Users -----------------------------------------------------------------

    def get_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return self.repository.get(User.kind, str(user_id))

    def require_user(self, user_id: Optional[str]) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def _find_user(self, predicate) -> Optional[User]:
        return next((user for user in self.repository.list(User.kind) if predicate(user)), None)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._find_user(lambda user: user.username == username)

    def get_user_by_email(self, email: str) -> Optional[User]:
        target = (email or "").strip().lower()
        if not target:
            return None
        return self._find_user(lambda user: (user.email or "").lower() == target)

    def get_user_by_phone(self, phone: str) -> Optional[User]:
        if not phone:
            return None
        return self._find_user(lambda user: (user.phone or "") == phone)

    def get_user_by_aadhar(self, aadhar_number: str) -> Optional[User]:
        if not aadhar_number:
            return None
        return self._find_user(lambda user: (user.aadhar_number or "") == aadhar_number)

    def create_user(self, **fields) -> User:
        user = User(**fields)
        self.repository.put(User.kind, user)
        return user

    def save_user(self, user: User) -> User:
        self.repository.put(User.kind, user)
        return user

    def update_user_password(self, user_id: str, password_hash: str) -> User:
        with self.user_lock(user_id):
            user = self.require_user(user_id)
            user.password = password_hash
            return self.save_user(user)

    def list_users(self) -> List[User]:
        return self.repository.list(User.kind)

    def list_officials(self, department: Optional[str] = None) -> List[User]:
        officials = [user for user in self.repository.list(User.kind) if user.role == "official"]
        if department is None:
            return officials
        target = normalize_department(department)
        return [user for user in officials if user.normalized_department == target]

    # Applications ----------------------------------------------------------

    def next_tracking_id(self, now: Optional[datetime] = None) -> str:
        year = (now or utcnow()).year
        sequence = self.repository.count(Application.kind) + 1
        return f"APP-{year}-{sequence:06d}"

    def create_application(self, citizen_id: str, application_type: str, now: Optional[datetime] = None, **fields) -> Application:
        now = now or utcnow()
        with self.state.sequence_lock:
            application = Application(
                citizen_id=citizen_id,
                application_type=application_type,
                tracking_id=self.next_tracking_id(now),
                submitted_at=now,
                **fields,
            )
            self.repository.put(Application.kind, application)
        self.add_history(application.id, application.status.value, citizen_id, "Application submitted", now=now)
        return application

    def get_application(self, application_id: Optional[str]) -> Optional[Application]:
        if not application_id:
            return None
        return self.repository.get(Application.kind, str(application_id))

    def require_application(self, application_id: Optional[str]) -> Application:
        application = self.get_application(application_id)
        if not application:
            raise NotFound("Application not found")
        return application

    def get_application_by_tracking_id(self, tracking_id: str) -> Optional[Application]:
        return next(
            (app for app in self.repository.list(Application.kind) if app.tracking_id == tracking_id),
            None,
        )

    def save_application(self, application: Application) -> Application:
        self.repository.put(Application.kind, application)
        return application

    def list_applications(self) -> List[Application]:
        return sorted(self.repository.list(Application.kind), key=lambda app: app.submitted_at, reverse=True)

    def list_citizen_applications(self, citizen_id: str) -> List[Application]:
        return [app for app in self.list_applications() if app.citizen_id == citizen_id]

    def list_official_applications(self, official: User) -> List[Application]:
        """Applications assigned to the official plus unassigned ones in their department."""
        department = official.normalized_department
        visible = []
        for app in self.list_applications():
            if app.official_id == official.id:
                visible.append(app)
            elif app.official_id is None and department and app.department == department:
                visible.append(app)
        return visible

    # History ---------------------------------------------------------------

    def add_history(
        self,
        application_id: str,
        status: str,
        updated_by: str,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApplicationHistory:
        entry = ApplicationHistory(
            application_id=application_id,
            status=str(status),
            updated_by=updated_by,
            comment=comment,
            updated_at=now or utcnow(),
        )
        self.repository.put(ApplicationHistory.kind, entry)
        return entry

    def get_history(self, application_id: str) -> List[ApplicationHistory]:
        return [entry for entry in self.repository.list(ApplicationHistory.kind) if entry.application_id == application_id]

    # Feedback --------------------------------------------------------------

    def create_feedback(
        self,
        application_id: str,
        citizen_id: str,
        rating: int,
        official_id: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Feedback:
        with self.application_lock(application_id):
            if self.get_feedback_for_application(application_id):
                raise Conflict("You have already submitted feedback for this application. Ratings cannot be changed.")
            feedback = Feedback(
                application_id=application_id,
                citizen_id=citizen_id,
                official_id=official_id,
                rating=int(rating),
                comment=comment,
            )
            self.repository.put(Feedback.kind, feedback)
            return feedback

    def get_feedback_for_application(self, application_id: str) -> Optional[Feedback]:
        return next(
            (item for item in self.repository.list(Feedback.kind) if item.application_id == application_id),
            None,
        )

    def list_official_feedback(self, official_id: str) -> List[Feedback]:
        return [item for item in self.repository.list(Feedback.kind) if item.official_id == official_id]

    def list_feedback(self) -> List[Feedback]:
        return self.repository.list(Feedback.kind)

    def verify_feedback(self, feedback_id: str) -> None:
        feedback = self.repository.get(Feedback.kind, feedback_id)
        if feedback:
            feedback.verified = True
            self.repository.put(Feedback.kind, feedback)

    # OTP -------------------------------------------------------------------

    def create_otp(self, identifier: str, channel: str, otp: str, purpose: str, ttl_minutes: int = 10) -> OTPRecord:
        now = utcnow()
        record = OTPRecord(
            otp=otp,
            purpose=purpose,
            expires_at=now + timedelta(minutes=ttl_minutes),
            phone=identifier if channel == "phone" else None,
            email=identifier if channel == "email" else None,
            created_at=now,
        )
        self.repository.put(OTPRecord.kind, record)
        return record

    def latest_otp(self, identifier: str, channel: str, purpose: str) -> Optional[OTPRecord]:
        def matches(record: OTPRecord) -> bool:
            value = record.phone if channel == "phone" else record.email
            if channel == "email":
                return (value or "").lower() == (identifier or "").lower() and record.purpose == purpose
            return value == identifier and record.purpose == purpose

        candidates = [record for record in self.repository.list(OTPRecord.kind) if matches(record)]
        if not candidates:
            return None
        return max(candidates, key=lambda record: record.created_at)

    def mark_otp_verified(self, record_id: str) -> None:
        record = self.repository.get(OTPRecord.kind, record_id)
        if record:
            record.verified = True
            self.repository.put(OTPRecord.kind, record)

    def delete_otp(self, record_id: str) -> bool:
        return self.repository.delete(OTPRecord.kind, record_id)

    def purge_otps(self, identifier: str, channel: str, purpose: str) -> int:
        """Drop every code issued for the identifier and purpose."""
        removed = 0
        while True:
            record = self.latest_otp(identifier, channel, purpose)
            if record is None:
                return removed
            removed += int(self.repository.delete(OTPRecord.kind, record.id))

    # Blockchain hashes -----------------------------------------------------

    def count_blockchain_hashes(self) -> int:
        return self.repository.count(BlockchainHash.kind)

    def create_blockchain_hash(self, application_id: str, document_hash: str, block_number: int) -> BlockchainHash:
        record = BlockchainHash(application_id=application_id, document_hash=document_hash, block_number=block_number)
        self.repository.put(BlockchainHash.kind, record)
        return record

    def get_blockchain_hash(self, application_id: str) -> Optional[BlockchainHash]:
        return next(
            (item for item in self.repository.list(BlockchainHash.kind) if item.application_id == application_id),
            None,
        )

    def list_blockchain_hashes(self) -> List[BlockchainHash]:
        return sorted(self.repository.list(BlockchainHash.kind), key=lambda item: item.block_number)

    # Notifications ---------------------------------------------------------

    def create_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        application_id: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            application_id=application_id,
        )
        self.repository.put(Notification.kind, notification)
        return notification

    def list_user_notifications(self, user_id: str) -> List[Notification]:
        items = [item for item in self.repository.list(Notification.kind) if item.user_id == user_id]
        return sorted(items, key=lambda item: item.created_at, reverse=True)

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self.repository.get(Notification.kind, notification_id)

    def mark_notification_read(self, notification_id: str) -> Optional[Notification]:
        notification = self.repository.get(Notification.kind, notification_id)
        if notification:
            notification.read = True
            self.repository.put(Notification.kind, notification)
        return notification

    # Delay alert cooldown marks ---------------------------------------------

    def get_alert_mark(self, application_id: str, alert_type: str) -> Optional[DelayAlertMark]:
        return self.repository.get(DelayAlertMark.kind, f"{alert_type}:{application_id}")

    def record_alert_mark(self, application_id: str, alert_type: str, when: datetime) -> DelayAlertMark:
        mark = DelayAlertMark(application_id=application_id, alert_type=alert_type, last_notified_at=when)
        self.repository.put(DelayAlertMark.kind, mark)
        return mark

    # Departments & warnings ------------------------------------------------

    def create_department(self, name: str, description: Optional[str] = None, image: Optional[str] = None) -> Department:
        department = Department(name=name, description=description, image=image)
        self.repository.put(Department.kind, department)
        return department

    def list_departments(self) -> List[Department]:
        return self.repository.list(Department.kind)

    def get_department(self, department_id: str) -> Optional[Department]:
        return self.repository.get(Department.kind, department_id)

    def create_warning(self, official_id: str, message: str, admin_id: Optional[str] = None) -> OfficialWarning:
        warning = OfficialWarning(official_id=official_id, message=message, admin_id=admin_id)
        self.repository.put(OfficialWarning.kind, warning)
        return warning

    def list_warnings(self, official_id: str) -> List[OfficialWarning]:
        items = [item for item in self.repository.list(OfficialWarning.kind) if item.official_id == official_id]
        return sorted(items, key=lambda item: item.sent_at, reverse=True)


store = EntityStore()
