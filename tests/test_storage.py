import json
import os
from datetime import datetime

import pytest

from extensions import db
from models import Application, Feedback, OTPRecord, User
from storage import EntityStore
from storage.repository import MemoryRepository, Repository, SqlRepository
from utils.errors import Conflict

HEALTH = "Health – Ministry of Health and Family Welfare"


def _populate(entity_store: EntityStore):
    citizen = entity_store.create_user(username="ravi", password="x", email="Ravi@Example.com", phone="9000000001")
    official = entity_store.create_user(username="meera", password="x", role="official", department="Health – X", rating=3.5)
    application = entity_store.create_application(
        citizen.id,
        HEALTH,
        now=datetime(2025, 3, 1, 9, 30),
        title="Clinic licence",
        payload={"ward": 12, "documents": ["id.pdf"]},
    )
    application.official_id = official.id
    entity_store.save_application(application)
    entity_store.create_feedback(application.id, citizen.id, 4, official_id=official.id, comment="quick")
    entity_store.create_otp("9000000001", "phone", "123456", "login")
    return citizen, official, application


def _snapshot(repository, kind):
    return sorted((entity.to_dict() for entity in repository.list(kind)), key=lambda item: item["id"])


def test_memory_snapshot_round_trip(tmp_path):
    data_dir = str(tmp_path / "data")
    original = MemoryRepository(data_dir=data_dir)
    _populate(EntityStore(original))

    reloaded = MemoryRepository(data_dir=data_dir)

    for kind in (User.kind, Application.kind, Feedback.kind, "application_history"):
        assert _snapshot(reloaded, kind) == _snapshot(original, kind)
    assert reloaded.list(OTPRecord.kind) == []
    assert not os.path.exists(os.path.join(data_dir, "otp_records.json"))

    application = reloaded.list(Application.kind)[0]
    assert application.submitted_at == datetime(2025, 3, 1, 9, 30)
    assert application.payload == {"ward": 12, "documents": ["id.pdf"]}


def test_snapshot_files_are_maps_keyed_by_id(tmp_path):
    data_dir = str(tmp_path / "data")
    citizen, _, application = _populate(EntityStore(MemoryRepository(data_dir=data_dir)))

    with open(os.path.join(data_dir, "applications.json"), encoding="utf-8") as handle:
        raw = json.load(handle)

    assert list(raw) == [application.id]
    assert raw[application.id]["status"] == "Submitted"
    assert raw[application.id]["citizen_id"] == citizen.id


def test_snapshot_on_write_can_be_deferred(tmp_path):
    data_dir = str(tmp_path / "data")
    repository = MemoryRepository(data_dir=data_dir, snapshot_on_write=False)
    EntityStore(repository).create_user(username="later", password="x")

    assert not os.path.exists(os.path.join(data_dir, "users.json"))
    repository.flush()
    assert [user.username for user in MemoryRepository(data_dir=data_dir).list(User.kind)] == ["later"]


def test_store_hands_out_copies(tmp_path):
    entity_store = EntityStore(MemoryRepository())
    user = entity_store.create_user(username="copy", password="x")

    user.rating = 5.0

    assert entity_store.get_user(user.id).rating == 0.0


def test_tracking_ids_are_sequential():
    entity_store = EntityStore(MemoryRepository())
    first = entity_store.create_application("c1", HEALTH, now=datetime(2025, 1, 5))
    second = entity_store.create_application("c1", HEALTH, now=datetime(2025, 1, 6))

    assert first.tracking_id == "APP-2025-000001"
    assert second.tracking_id == "APP-2025-000002"
    assert first.department == "Health"
    assert (first.auto_approval_date - first.submitted_at).days == 30


def test_user_lookups_and_duplicate_feedback():
    entity_store = EntityStore(MemoryRepository())
    citizen, official, application = _populate(entity_store)

    assert entity_store.get_user_by_email("ravi@example.com").id == citizen.id
    assert entity_store.get_user_by_phone("9000000001").id == citizen.id
    assert [item.id for item in entity_store.list_officials("Health – Anything")] == [official.id]
    with pytest.raises(Conflict):
        entity_store.create_feedback(application.id, citizen.id, 2, official_id=official.id)


def test_latest_otp_wins():
    entity_store = EntityStore(MemoryRepository())
    entity_store.create_otp("a@example.com", "email", "111111", "login")
    latest = entity_store.create_otp("a@example.com", "email", "222222", "login")
    entity_store.create_otp("a@example.com", "email", "333333", "register")

    assert entity_store.latest_otp("A@example.com", "email", "login").id == latest.id


def test_sql_repository_round_trip(app):
    db.create_all()
    repository = SqlRepository(db)
    citizen, official, application = _populate(EntityStore(repository))

    fresh = SqlRepository(db)
    assert fresh.get(Application.kind, application.id).to_dict() == application.to_dict()
    assert fresh.count(User.kind) == 2
    assert fresh.list(Feedback.kind)[0].official_id == official.id
    assert fresh.list(OTPRecord.kind) == []
    assert len(repository.list(OTPRecord.kind)) == 1

    user = fresh.get(User.kind, citizen.id)
    user.full_name = "Ravi Kumar"
    fresh.put(User.kind, user)
    assert repository.get(User.kind, citizen.id).full_name == "Ravi Kumar"
    assert repository.count(User.kind) == 2


def test_repository_is_abstract():
    with pytest.raises(TypeError):
        Repository()


def test_memory_delete_updates_snapshot(tmp_path):
    data_dir = str(tmp_path / "data")
    repository = MemoryRepository(data_dir=data_dir)
    entity_store = EntityStore(repository)
    keep = entity_store.create_user(username="keep", password="x")
    gone = entity_store.create_user(username="gone", password="x")

    assert repository.delete(User.kind, gone.id) is True
    assert repository.delete(User.kind, gone.id) is False
    assert [user.id for user in MemoryRepository(data_dir=data_dir).list(User.kind)] == [keep.id]


def test_sql_delete_and_purged_otps(app):
    db.create_all()
    repository = SqlRepository(db)
    entity_store = EntityStore(repository)
    user = entity_store.create_user(username="short-lived", password="x")
    entity_store.create_otp("b@example.com", "email", "111111", "login")
    entity_store.create_otp("b@example.com", "email", "222222", "login")

    assert repository.delete(User.kind, user.id) is True
    assert repository.get(User.kind, user.id) is None
    assert entity_store.purge_otps("b@example.com", "email", "login") == 2
    assert entity_store.latest_otp("b@example.com", "email", "login") is None
