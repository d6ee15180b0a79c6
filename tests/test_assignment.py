import pytest

from models import ApplicationStatus, normalize_department
from storage import store
from utils import assignment
from utils.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from utils.state_machine import transition

from conftest import HEALTH


def _assert_invariant():
    for application in store.list_applications():
        if application.official_id is not None:
            assert application.status is not ApplicationStatus.SUBMITTED


def test_normalize_department_uses_prefix_before_dash():
    assert normalize_department("Health – Ministry of Health") == "Health"
    assert normalize_department("Health – X") == "Health"
    assert normalize_department("Passport") == "Passport"
    assert normalize_department("  ") is None
    assert normalize_department(None) is None


def test_rating_range_per_level():
    assert assignment.rating_range(0) == (0.0, 2.9)
    assert assignment.rating_range(1) == (2.0, 3.9)
    assert assignment.rating_range(2) == (3.0, 5.0)
    assert assignment.rating_range(7) == (3.0, 5.0)


def test_level_zero_prefers_least_loaded_official_in_band(citizen, make_user, submit):
    busy = make_user("busy", role="official", department="Health – X", rating=1.0, assigned_count=5)
    light = make_user("light", role="official", department="Health – Y", rating=2.0, assigned_count=2)
    application = submit(citizen.id)

    chosen = assignment.auto_assign(application.id, application.department, 0)

    assert chosen.id == light.id
    stored = store.get_application(application.id)
    assert stored.official_id == light.id
    assert stored.status is ApplicationStatus.ASSIGNED
    assert stored.assigned_at is not None
    assert store.get_user(light.id).assigned_count == 3
    assert store.get_user(busy.id).assigned_count == 5
    history = store.get_history(application.id)
    assert [entry.status for entry in history] == ["Submitted", "Assigned"]
    assert history[-1].updated_by == light.id
    assert history[-1].comment == "Application assigned to official"
    notes = store.list_user_notifications(citizen.id)
    assert [note.type for note in notes] == ["assignment"]
    _assert_invariant()


def test_no_matching_department_leaves_application_unassigned(citizen, make_user, submit):
    make_user("police", role="official", department="Police – State Police Department")
    application = submit(citizen.id)

    assert assignment.auto_assign(application.id, application.department, 0) is None

    stored = store.get_application(application.id)
    assert stored.official_id is None
    assert stored.status is ApplicationStatus.SUBMITTED
    assert len(store.get_history(application.id)) == 1


def test_empty_band_falls_back_to_whole_department(citizen, make_user, submit):
    senior = make_user("senior", role="official", department="Health", rating=4.5)
    application = submit(citizen.id)

    assert assignment.auto_assign(application.id, application.department, 0).id == senior.id


def test_escalation_moves_to_next_rating_band(citizen, make_user, submit):
    junior = make_user("junior", role="official", department="Health – X", rating=1.0)
    middle = make_user("middle", role="official", department="Health – X", rating=3.5, assigned_count=9)
    application = submit(citizen.id)
    assignment.auto_assign(application.id, application.department, 0)
    assert store.get_application(application.id).official_id == junior.id

    updated, official = assignment.escalate(application.id, citizen.id)

    assert official.id == middle.id
    assert updated.escalation_level == 1
    assert updated.official_id == middle.id
    assert updated.status is ApplicationStatus.ASSIGNED
    _assert_invariant()


def test_escalation_reopens_a_rejected_application(citizen, make_user, submit):
    make_user("junior", role="official", department="Health", rating=1.0)
    application = submit(citizen.id)
    official = assignment.auto_assign(application.id, application.department, 0)
    transition(application.id, "Rejected", official.id)
    updated, _ = assignment.escalate(application.id, citizen.id)

    assert updated.status is ApplicationStatus.ASSIGNED
    assert updated.escalation_level == 1


def test_escalation_persists_level_without_candidates(citizen, submit):
    application = submit(citizen.id)

    updated, official = assignment.escalate(application.id, citizen.id)

    assert official is None
    assert updated.escalation_level == 1
    assert updated.status is ApplicationStatus.SUBMITTED


def test_escalation_requires_owner(citizen, make_user, submit):
    stranger = make_user("stranger")
    application = submit(citizen.id)

    with pytest.raises(Forbidden):
        assignment.escalate(application.id, stranger.id)


def test_escalation_requires_department(citizen, submit):
    application = submit(citizen.id, application_type="– orphan")

    with pytest.raises(ValidationError, match="Application has no department"):
        assignment.escalate(application.id, citizen.id)


def test_repeated_resolution_records_one_feedback(citizen, make_user, submit):
    official = make_user("official", role="official", department="Health", rating=0.0)
    earlier = submit(citizen.id)
    assignment.auto_assign(earlier.id, earlier.department, 0)
    store.create_feedback(earlier.id, citizen.id, 5, official_id=official.id)

    application = submit(citizen.id)
    assignment.auto_assign(application.id, application.department, 0)
    assignment.resolve(application.id, citizen.id, rating=3, comment="ok")
    assignment.resolve(application.id, citizen.id, rating=1)

    feedback = [item for item in store.list_feedback() if item.application_id == application.id]
    assert len(feedback) == 1
    assert feedback[0].rating == 3
    refreshed = store.get_user(official.id)
    assert refreshed.rating == pytest.approx(4.0)
    assert refreshed.solved_count == 1
    assert store.get_application(application.id).is_solved is True


def test_resolution_rejects_out_of_range_rating(citizen, submit):
    application = submit(citizen.id)

    with pytest.raises(ValidationError):
        assignment.resolve(application.id, citizen.id, rating=9)


def test_accept_assigns_caller_and_counts_workload(citizen, make_user, submit):
    official = make_user("taker", role="official", department="Health")
    application = submit(citizen.id)

    updated = assignment.accept(application.id, official)

    assert updated.official_id == official.id
    assert updated.status is ApplicationStatus.ASSIGNED
    assert store.get_user(official.id).assigned_count == 1
    assert store.list_user_notifications(citizen.id)[0].title == "Application Assigned"


def test_force_assign_validates_target(citizen, make_user, submit, admin):
    other_citizen = make_user("other")
    official = make_user("far", role="official", department="Police")
    application = submit(citizen.id)

    with pytest.raises(NotFound):
        assignment.force_assign(application.id, "missing", admin)
    with pytest.raises(ValidationError):
        assignment.force_assign(application.id, other_citizen.id, admin)

    updated = assignment.force_assign(application.id, official.id, admin)
    assert updated.official_id == official.id
    assert store.get_history(application.id)[-1].updated_by == admin.id


def test_assignment_is_rejected_for_auto_approved_application(citizen, make_user, submit):
    official = make_user("late", role="official", department="Health")
    application = submit(citizen.id, application_type=HEALTH)
    transition(application.id, "Auto-Approved", "system")

    with pytest.raises(InvalidTransition):
        assignment.accept(application.id, official)
    assert store.get_application(application.id).official_id is None
    assert store.get_user(official.id).assigned_count == 0


@pytest.mark.parametrize("decision", ["Approved", "Rejected"])
def test_officials_cannot_take_over_decided_applications(citizen, make_user, submit, admin, decision):
    first = make_user("first", role="official", department="Health")
    second = make_user("second", role="official", department="Health")
    application = submit(citizen.id)
    assignment.auto_assign(application.id, application.department, 0)
    decided = transition(application.id, decision, first.id)

    with pytest.raises(InvalidTransition):
        assignment.accept(application.id, second)
    with pytest.raises(InvalidTransition):
        assignment.force_assign(application.id, second.id, admin)

    stored = store.get_application(application.id)
    assert stored.status.value == decision
    assert stored.official_id == first.id
    assert stored.approved_at == decided.approved_at
    assert store.get_user(second.id).assigned_count == 0


def test_failed_transition_leaves_workload_untouched(citizen, make_user, submit, monkeypatch):
    official = make_user("unlucky", role="official", department="Health")
    application = submit(citizen.id)

    def broken(*args, **kwargs):
        raise RuntimeError("history write failed")

    monkeypatch.setattr(assignment, "apply_transition", broken)

    with pytest.raises(RuntimeError):
        assignment.accept(application.id, official)
    assert store.get_user(official.id).assigned_count == 0
