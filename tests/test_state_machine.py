import pytest

from models import ApplicationStatus
from storage import store
from utils import assignment
from utils.errors import InvalidTransition, NotFound, ValidationError
from utils.state_machine import can_transition, parse_status, transition

S = ApplicationStatus


@pytest.fixture
def official(make_user):
    return make_user("officer", role="official", department="Health")


@pytest.fixture
def assigned(citizen, official, submit):
    def _assigned():
        application = submit(citizen.id)
        assignment.auto_assign(application.id, application.department, 0)
        return store.get_application(application.id)

    return _assigned


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (S.SUBMITTED, S.ASSIGNED, True),
        (S.SUBMITTED, S.AUTO_APPROVED, True),
        (S.SUBMITTED, S.APPROVED, False),
        (S.ASSIGNED, S.IN_PROGRESS, True),
        (S.IN_PROGRESS, S.APPROVED, True),
        (S.IN_PROGRESS, S.SUBMITTED, False),
        (S.APPROVED, S.REJECTED, False),
        (S.REJECTED, S.ASSIGNED, False),
        (S.AUTO_APPROVED, S.ASSIGNED, False),
    ],
)
def test_adjacency_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_reopen_only_from_decided_states():
    assert can_transition(S.REJECTED, S.ASSIGNED, reopen=True)
    assert can_transition(S.APPROVED, S.ASSIGNED, reopen=True)
    assert not can_transition(S.AUTO_APPROVED, S.ASSIGNED, reopen=True)
    assert not can_transition(S.REJECTED, S.IN_PROGRESS, reopen=True)


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        parse_status("Done")


def test_missing_application(app):
    with pytest.raises(NotFound):
        transition("nope", "Approved", "someone")


def test_transition_records_history(assigned, official):
    application = assigned()

    updated = transition(application.id, "In Progress", official.id, "Looking into it")

    assert updated.status is S.IN_PROGRESS
    assert updated.last_updated_at >= application.last_updated_at
    entry = store.get_history(application.id)[-1]
    assert (entry.status, entry.updated_by, entry.comment) == ("In Progress", official.id, "Looking into it")


def test_unassigned_application_cannot_skip_assignment(citizen, submit):
    application = submit(citizen.id)

    with pytest.raises(InvalidTransition):
        transition(application.id, "In Progress", "someone")
    assert store.get_application(application.id).status is S.SUBMITTED


def test_terminal_states_are_final(assigned, official):
    application = assigned()
    transition(application.id, "Rejected", official.id)

    with pytest.raises(InvalidTransition, match="Cannot move application from Rejected to Approved"):
        transition(application.id, "Approved", official.id)


def test_approval_creates_one_hash_with_increasing_blocks(assigned, official):
    first, second = assigned(), assigned()

    approved = transition(first.id, "Approved", official.id)
    transition(second.id, "Approved", official.id)

    assert approved.approved_at is not None
    one = store.get_blockchain_hash(first.id)
    two = store.get_blockchain_hash(second.id)
    assert len(one.document_hash) == 64
    assert two.block_number > one.block_number
    assert [item.application_id for item in store.list_blockchain_hashes()] == [first.id, second.id]

    # A reopened and re-approved application keeps its original fingerprint.
    assignment.escalate(first.id, first.citizen_id)
    transition(first.id, "Approved", official.id)
    assert store.count_blockchain_hashes() == 2
    assert store.get_blockchain_hash(first.id).document_hash == one.document_hash


def test_rejection_creates_no_hash(assigned, official):
    application = assigned()

    transition(application.id, "Rejected", official.id)

    assert store.get_blockchain_hash(application.id) is None
