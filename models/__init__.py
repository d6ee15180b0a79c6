"""Core entities for users, applications, audit history, feedback, OTPs and notifications."""
import copy
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from flask_login import UserMixin

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def utcnow() -> datetime:
	return datetime.now(timezone.utc).replace(tzinfo=None)


class ApplicationStatus(str, Enum):
	SUBMITTED = "Submitted"
	ASSIGNED = "Assigned"
	IN_PROGRESS = "In Progress"
	APPROVED = "Approved"
	REJECTED = "Rejected"
	AUTO_APPROVED = "Auto-Approved"

	def __str__(self) -> str:
		return self.value


TERMINAL_STATUSES: frozenset = frozenset(
	{ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.AUTO_APPROVED}
)

HASHED_STATUSES: frozenset = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.AUTO_APPROVED})

USER_ROLES: tuple[str, ...] = (
	"citizen",
	"official",
	"admin",
)

NOTIFICATION_TYPES: tuple[str, ...] = (
	"delay",
	"approval",
	"assignment",
	"warning",
)

OTP_PURPOSES: tuple[str, ...] = (
	"register",
	"login",
	"reset-password",
)

PRIORITY_VALUES: tuple[str, ...] = (
	"Low",
	"Normal",
	"High",
	"Urgent",
)

SYSTEM_ACTOR = "system"
DEPARTMENT_DELIMITER = "–"
AUTO_APPROVAL_DAYS = 30


def normalize_department(name: Optional[str]) -> Optional[str]:
	"""Reduce "Health – Ministry of Health" to "Health"."""
	if not name:
		return None
	prefix = name.split(DEPARTMENT_DELIMITER, 1)[0].strip()
	return prefix or None


def _to_json_value(value: Any) -> Any:
	if isinstance(value, datetime):
		return value.isoformat()
	if isinstance(value, Enum):
		return value.value
	if isinstance(value, dict):
		return {k: _to_json_value(v) for k, v in value.items()}
	if isinstance(value, list):
		return [_to_json_value(v) for v in value]
	return value


def _parse_datetime(value: Any) -> Optional[datetime]:
	if value is None or isinstance(value, datetime):
		return value
	return datetime.fromisoformat(str(value))


class Entity:
	"""Mixin giving dataclass entities a JSON-safe dict form for snapshots."""

	kind: str = ""
	_datetime_fields: tuple = ()

	def to_dict(self) -> Dict[str, Any]:
		return _to_json_value(asdict(self))

	@classmethod
	def from_dict(cls, data: Dict[str, Any]):
		known = {f.name for f in fields(cls)}
		kwargs = {key: value for key, value in data.items() if key in known}
		for name in cls._datetime_fields:
			if name in kwargs:
				kwargs[name] = _parse_datetime(kwargs[name])
		return cls(**kwargs)

	def clone(self):
		return copy.deepcopy(self)

	def public_payload(self) -> Dict[str, Any]:
		return self.to_dict()


@dataclass(eq=True)
class User(UserMixin, Entity):
	username: str
	password: str
	role: str = "citizen"
	full_name: Optional[str] = None
	email: Optional[str] = None
	phone: Optional[str] = None
	aadhar_number: Optional[str] = None
	department: Optional[str] = None
	rating: float = 0.0
	assigned_count: int = 0
	solved_count: int = 0
	is_active: bool = True
	id: str = field(default_factory=generate_uuid)
	created_at: datetime = field(default_factory=utcnow)

	kind = "users"
	_datetime_fields = ("created_at",)

	def __hash__(self) -> int:
		return hash(self.id)

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	@property
	def is_official(self) -> bool:
		return self.role == "official"

	@property
	def normalized_department(self) -> Optional[str]:
		return normalize_department(self.department)

	def public_payload(self) -> Dict[str, Any]:
		payload = self.to_dict()
		payload.pop("password", None)
		return payload


@dataclass
class Application(Entity):
	citizen_id: str
	application_type: str
	tracking_id: str
	title: Optional[str] = None
	description: Optional[str] = None
	department: Optional[str] = None
	status: ApplicationStatus = ApplicationStatus.SUBMITTED
	official_id: Optional[str] = None
	priority: str = "Normal"
	remarks: Optional[str] = None
	payload: Dict[str, Any] = field(default_factory=dict)
	image: Optional[str] = None
	escalation_level: int = 0
	is_solved: bool = False
	submitted_at: datetime = field(default_factory=utcnow)
	last_updated_at: Optional[datetime] = None
	assigned_at: Optional[datetime] = None
	approved_at: Optional[datetime] = None
	auto_approval_date: Optional[datetime] = None
	id: str = field(default_factory=generate_uuid)

	kind = "applications"
	_datetime_fields = ("submitted_at", "last_updated_at", "assigned_at", "approved_at", "auto_approval_date")

	def __post_init__(self) -> None:
		self.status = ApplicationStatus(self.status)
		if self.last_updated_at is None:
			self.last_updated_at = self.submitted_at
		if self.auto_approval_date is None:
			self.auto_approval_date = self.submitted_at + timedelta(days=AUTO_APPROVAL_DAYS)
		if self.department is None:
			self.department = normalize_department(self.application_type)

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES


@dataclass
class ApplicationHistory(Entity):
	application_id: str
	status: str
	updated_by: str
	comment: Optional[str] = None
	id: str = field(default_factory=generate_uuid)
	updated_at: datetime = field(default_factory=utcnow)

	kind = "application_history"
	_datetime_fields = ("updated_at",)


@dataclass
class Feedback(Entity):
	application_id: str
	citizen_id: str
	rating: int
	official_id: Optional[str] = None
	comment: Optional[str] = None
	# Set only by EntityStore.verify_feedback, which nothing calls yet.
	verified: bool = False
	id: str = field(default_factory=generate_uuid)
	created_at: datetime = field(default_factory=utcnow)

	kind = "feedback"
	_datetime_fields = ("created_at",)


@dataclass
class OTPRecord(Entity):
	otp: str
	purpose: str
	expires_at: datetime
	phone: Optional[str] = None
	email: Optional[str] = None
	verified: bool = False
	id: str = field(default_factory=generate_uuid)
	created_at: datetime = field(default_factory=utcnow)

	kind = "otp_records"
	_datetime_fields = ("expires_at", "created_at")

	@property
	def identifier(self) -> Optional[str]:
		return self.phone or self.email

	def is_expired(self, now: Optional[datetime] = None) -> bool:
		return (now or utcnow()) > self.expires_at


@dataclass
class BlockchainHash(Entity):
	application_id: str
	document_hash: str
	block_number: int
	id: str = field(default_factory=generate_uuid)
	timestamp: datetime = field(default_factory=utcnow)

	kind = "blockchain_hashes"
	_datetime_fields = ("timestamp",)


@dataclass
class Notification(Entity):
	user_id: str
	type: str
	title: str
	message: str
	application_id: Optional[str] = None
	read: bool = False
	id: str = field(default_factory=generate_uuid)
	created_at: datetime = field(default_factory=utcnow)

	kind = "notifications"
	_datetime_fields = ("created_at",)


@dataclass
class Department(Entity):
	name: str
	description: Optional[str] = None
	image: Optional[str] = None
	id: str = field(default_factory=generate_uuid)
	created_at: datetime = field(default_factory=utcnow)

	kind = "departments"
	_datetime_fields = ("created_at",)


@dataclass
class OfficialWarning(Entity):
	official_id: str
	message: str
	admin_id: Optional[str] = None
	read: bool = False
	id: str = field(default_factory=generate_uuid)
	sent_at: datetime = field(default_factory=utcnow)

	kind = "warnings"
	_datetime_fields = ("sent_at",)


@dataclass
class DelayAlertMark(Entity):
	"""Last time an alert of a given type went out for an application."""

	application_id: str
	alert_type: str
	last_notified_at: datetime
	id: str = ""

	kind = "delay_alerts"
	_datetime_fields = ("last_notified_at",)

	def __post_init__(self) -> None:
		if not self.id:
			self.id = f"{self.alert_type}:{self.application_id}"


ENTITY_TYPES: Dict[str, type] = {
	cls.kind: cls
	for cls in (
		User,
		Application,
		ApplicationHistory,
		Feedback,
		OTPRecord,
		BlockchainHash,
		Notification,
		Department,
		OfficialWarning,
		DelayAlertMark,
	)
}

# OTP codes expire on their own and are kept out of snapshots.
TRANSIENT_KINDS: frozenset = frozenset({OTPRecord.kind})


class StoredEntity(db.Model):
	__tablename__ = "stored_entities"

	seq = db.Column(db.Integer, primary_key=True, autoincrement=True)
	kind = db.Column(db.String(50), nullable=False, index=True)
	entity_id = db.Column(db.String(120), nullable=False, index=True)
	payload = db.Column(db.JSON, nullable=False)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("kind", "entity_id", name="uq_stored_entity_kind_id"),
		db.Index("ix_stored_entity_lookup", "kind", "seq"),
	)
