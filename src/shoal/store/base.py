"""
Collaborator interfaces consumed by GovernanceService.

Any storage backend can stand in for these; ShoalDB implements all three
against a single SQLite file.
"""

from typing import Any, Protocol

from shoal.schema import (
    ActorType,
    ApprovalRequest,
    ApprovalState,
    AuditEntry,
    Policy,
    PolicyCategory,
)


class PolicyRepository(Protocol):
    """Read-only source of policies."""

    def list_enabled(self, category: PolicyCategory) -> list[Policy]:
        """Return every enabled policy of ``category``."""
        ...


class ApprovalRepository(Protocol):
    """Storage for approval requests."""

    def create(
        self,
        agent_id: str,
        action_type: str,
        params: dict[str, Any],
    ) -> ApprovalRequest:
        """Insert a new request. The state is always PENDING."""
        ...

    def get_by_id(self, approval_id: str) -> ApprovalRequest | None:
        """Return the request, or None if the id is unknown."""
        ...

    def update_state_if_pending(
        self,
        approval_id: str,
        new_state: ApprovalState,
        decider_id: str | None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """
        Atomically move a PENDING request to ``new_state``.

        When ``expected_version`` is given the write also requires the stored
        version to match it.

        Raises:
            ApprovalNotFoundError: If the id is unknown
            ApprovalConflictError: If the request is no longer PENDING
        """
        ...

    def list_pending(self, limit: int = 20) -> list[ApprovalRequest]:
        """Return pending requests, newest first."""
        ...


class AuditSink(Protocol):
    """Append-only log of governance decisions."""

    def append(
        self,
        actor_id: str,
        actor_type: ActorType,
        action: str,
        detail: str,
        cost_tokens: int = 0,
    ) -> AuditEntry:
        """Append one entry and return it."""
        ...
