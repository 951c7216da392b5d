"""
Quotation Transition Authority

5 states / 6 role-scoped triggers, built on the transitions library.
Pure permission checks: no DB/IO and no ambient role lookup; the acting
role is always passed in.
"""

from typing import List, Set, Tuple

from transitions import Machine

from app.quotation.errors import InvalidTransitionError, UnauthorizedTransitionError
from app.quotation.models import Action, ActorRole, QuotationStatus, TERMINAL_STATES

STATES = [s.value for s in QuotationStatus]

# Triggers are named <role>_<action>; dest None = internal transition (status unchanged)
TRANSITIONS = [
    {"trigger": "staff_approve",    "source": "pending",               "dest": "approved"},
    {"trigger": "staff_reject",     "source": "pending",               "dest": "rejected"},
    {"trigger": "staff_convert",    "source": "approved",              "dest": "converted"},
    {"trigger": "customer_approve", "source": "approved",              "dest": None},
    {"trigger": "customer_reject",  "source": "approved",              "dest": "rejected"},
    {"trigger": "staff_reply",      "source": ["pending", "approved"], "dest": None},
]


def trigger_name(role: ActorRole, action: Action) -> str:
    return f"{role.value}_{action.value}"


class QuotationLifecycle:
    """Quotation state machine (validation only, no IO)"""

    def __init__(self, initial_state: str = QuotationStatus.PENDING.value):
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial_state,
            auto_transitions=False,
            send_event=False,
        )

    def try_trigger(self, trigger: str) -> Tuple[bool, str]:
        """
        Attempt a transition.

        Returns:
            (True, new_state) on success
            (False, error_message) on failure
        """
        if trigger not in self.get_available_triggers():
            return False, f"Cannot '{trigger}' from state '{self.state}'"
        getattr(self, trigger)()
        return True, self.state

    def get_available_triggers(self) -> List[str]:
        return self.machine.get_triggers(self.state)

    @property
    def is_terminal(self) -> bool:
        return QuotationStatus(self.state) in TERMINAL_STATES


def permitted_actions(status: QuotationStatus, role: ActorRole) -> Set[Action]:
    """Actions the given role may invoke on a quotation in the given status."""
    available = set(QuotationLifecycle(status.value).get_available_triggers())
    return {action for action in Action if trigger_name(role, action) in available}


def ensure_defined(status: QuotationStatus, action: Action) -> None:
    """Raise InvalidTransitionError unless some role may perform action from status."""
    available = set(QuotationLifecycle(status.value).get_available_triggers())
    if not any(trigger_name(role, action) in available for role in ActorRole):
        raise InvalidTransitionError(action.value, status.value)


def authorize(status: QuotationStatus, role: ActorRole, action: Action) -> QuotationStatus:
    """
    Check a (status, role, action) request against the transition table.

    Returns the destination status. Raises InvalidTransitionError when the
    action is undefined for status, UnauthorizedTransitionError when it is
    defined only for another role.
    """
    ensure_defined(status, action)

    lifecycle = QuotationLifecycle(status.value)
    ok, result = lifecycle.try_trigger(trigger_name(role, action))
    if not ok:
        raise UnauthorizedTransitionError(action.value, status.value, role.value)
    return QuotationStatus(result)
