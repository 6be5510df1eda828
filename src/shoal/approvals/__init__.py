"""
Approval lifecycle for Shoal.

The state machine lives here; request creation and decisions are driven by
GovernanceService against an ApprovalRepository.
"""

from shoal.approvals.state import can_transition

__all__ = [
    "can_transition",
]
