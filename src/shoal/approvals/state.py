"""
Approval state machine.

    pending --> approved
            --> rejected
            --> expired

Every transition leaves PENDING. Terminal states never transition again,
and re-applying PENDING to a pending request is not a transition.
"""

from shoal.schema import TERMINAL_STATES, ApprovalState


def can_transition(from_state: ApprovalState | str, to_state: ApprovalState | str) -> bool:
    """Return True only for PENDING -> a terminal state."""
    try:
        from_state = ApprovalState(from_state)
        to_state = ApprovalState(to_state)
    except ValueError:
        return False
    return from_state is ApprovalState.PENDING and to_state in TERMINAL_STATES
