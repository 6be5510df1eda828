"""
Shoal - Governance layer for autonomous agents.

Shoal gates the actions agents take:
- Content filtering of inbound and outbound messages
- Tool restrictions by allow/deny list and role
- Human approval gates with an exactly-once decision lifecycle
- An append-only audit trail of every decision

Example usage:
    $ shoal init --config shoal.yaml
    $ shoal check-tool wire_transfer --agent agent-1 --role member
    $ shoal decide <approval_id> approved --decider user-1
"""

from shoal.errors import (
    ApprovalConflictError,
    ApprovalNotFoundError,
    InvalidInputError,
    ShoalError,
    StorageUnavailableError,
)
from shoal.schema import (
    ApprovalRequest,
    ApprovalState,
    ConstraintExpression,
    Policy,
    PolicyCategory,
    Principal,
    Role,
)
from shoal.service import GovernanceService
from shoal.store import ShoalDB

__version__ = "0.1.0"
__author__ = "Shoal Contributors"

__all__ = [
    "ApprovalConflictError",
    "ApprovalNotFoundError",
    "ApprovalRequest",
    "ApprovalState",
    "ConstraintExpression",
    "GovernanceService",
    "InvalidInputError",
    "Policy",
    "PolicyCategory",
    "Principal",
    "Role",
    "ShoalDB",
    "ShoalError",
    "StorageUnavailableError",
    "__author__",
    "__version__",
]
