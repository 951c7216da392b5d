import itertools

import pytest

from app.quotation.authority import QuotationLifecycle, authorize, permitted_actions
from app.quotation.errors import InvalidTransitionError, UnauthorizedTransitionError
from app.quotation.models import Action, ActorRole, QuotationStatus

PENDING = QuotationStatus.PENDING
APPROVED = QuotationStatus.APPROVED
STAFF = ActorRole.STAFF
CUSTOMER = ActorRole.CUSTOMER

PERMITTED = {
    (PENDING, STAFF, Action.APPROVE): APPROVED,
    (PENDING, STAFF, Action.REJECT): QuotationStatus.REJECTED,
    (APPROVED, STAFF, Action.CONVERT): QuotationStatus.CONVERTED,
    (APPROVED, CUSTOMER, Action.APPROVE): APPROVED,
    (APPROVED, CUSTOMER, Action.REJECT): QuotationStatus.REJECTED,
    (PENDING, STAFF, Action.REPLY): PENDING,
    (APPROVED, STAFF, Action.REPLY): APPROVED,
}

ALL_COMBINATIONS = list(itertools.product(QuotationStatus, ActorRole, Action))


@pytest.mark.parametrize("status,role,action", list(PERMITTED))
def test_permitted_transitions_reach_their_destination(status, role, action):
    assert authorize(status, role, action) == PERMITTED[(status, role, action)]


@pytest.mark.parametrize(
    "status,role,action",
    [combo for combo in ALL_COMBINATIONS if combo not in PERMITTED],
)
def test_everything_else_is_refused(status, role, action):
    with pytest.raises((InvalidTransitionError, UnauthorizedTransitionError)):
        authorize(status, role, action)


def test_wrong_role_is_unauthorized_not_invalid():
    with pytest.raises(UnauthorizedTransitionError):
        authorize(PENDING, CUSTOMER, Action.APPROVE)
    with pytest.raises(UnauthorizedTransitionError):
        authorize(APPROVED, CUSTOMER, Action.CONVERT)
    with pytest.raises(UnauthorizedTransitionError):
        authorize(PENDING, CUSTOMER, Action.REPLY)


def test_undefined_action_for_state_is_invalid():
    with pytest.raises(InvalidTransitionError):
        authorize(PENDING, STAFF, Action.CONVERT)
    with pytest.raises(InvalidTransitionError):
        authorize(QuotationStatus.CONVERTED, STAFF, Action.REPLY)


@pytest.mark.parametrize("status", [QuotationStatus.REJECTED, QuotationStatus.CONVERTED, QuotationStatus.EXPIRED])
def test_terminal_states_allow_nothing(status):
    for role in ActorRole:
        assert permitted_actions(status, role) == set()
    assert QuotationLifecycle(status.value).is_terminal


def test_permitted_actions_per_role():
    assert permitted_actions(PENDING, STAFF) == {Action.APPROVE, Action.REJECT, Action.REPLY}
    assert permitted_actions(PENDING, CUSTOMER) == set()
    assert permitted_actions(APPROVED, STAFF) == {Action.CONVERT, Action.REPLY}
    assert permitted_actions(APPROVED, CUSTOMER) == {Action.APPROVE, Action.REJECT}


def test_lifecycle_try_trigger():
    lifecycle = QuotationLifecycle("pending")
    assert lifecycle.try_trigger("customer_approve") == (False, "Cannot 'customer_approve' from state 'pending'")
    assert lifecycle.try_trigger("staff_approve") == (True, "approved")
    assert lifecycle.try_trigger("customer_approve") == (True, "approved")
    assert lifecycle.try_trigger("staff_convert") == (True, "converted")
    assert lifecycle.get_available_triggers() == []
