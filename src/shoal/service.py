"""
Governance service for Shoal.

GovernanceService is the public operation surface. It coordinates between:
- Policy evaluators: Decide what is filtered, blocked or gated
- Approval repository: Creates and transitions approval requests
- Audit sink: Records every decision

Tool call flow:
    1. Evaluate tool_restriction policies (a deny wins)
        a. If blocked: audit policy.tool.blocked, no approval is created
    2. Evaluate approval_required policies
        a. If no gate: audit approval.tool_call.not_required
        b. If gated: create a PENDING request, audit approval.tool_call.pending
    3. Every audit entry is written after the decision it records took effect

The service holds its collaborators explicitly; construct one per deployment
and pass it to call sites.
"""

import json
import logging
from typing import Any

from shoal.approvals import can_transition
from shoal.errors import ApprovalConflictError, ApprovalNotFoundError, InvalidInputError
from shoal.policy import (
    aggregate_constraints,
    evaluate_approval_policies,
    evaluate_content_policies,
    evaluate_tool_policies,
)
from shoal.schema import (
    ActorType,
    ApprovalRequest,
    ApprovalState,
    AuditEntry,
    ConstraintExpression,
    ContentDirection,
    ContentPolicyResult,
    PolicyCategory,
    Principal,
    Role,
    RuleSet,
    ToolCallDecision,
)
from shoal.store.base import ApprovalRepository, AuditSink, PolicyRepository

logger = logging.getLogger(__name__)

MAX_PENDING_LIMIT = 100


def _require(field_name: str, value: Any) -> str:
    """Return ``value`` if it is a non-blank string, else raise InvalidInputError."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(field_name=field_name, value=value)
    return value


def _parse_role(role: Role | str | None) -> Role | None:
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        raise InvalidInputError(field_name="role", value=role) from None


def _dumps(detail: dict[str, Any]) -> str:
    return json.dumps(detail, separators=(",", ":"), default=str)


class GovernanceService:
    """
    Gatekeeper for agent actions.

    Usage:
        service = GovernanceService(policies=db, approvals=db, audit=db)
        decision = service.evaluate_tool_call(
            actor_id="user-1",
            role="member",
            agent_id="agent-1",
            action_type="tool_call",
            tool_name="wire_transfer",
            params={"amount": 100},
        )
        if decision.approval_id:
            # wait for a human to decide
        elif decision.blocked:
            # refuse, decision.reasons explains why

    Attributes:
        policies: Source of enabled policies
        approvals: Storage for approval requests
        audit: Append-only audit sink
    """

    def __init__(
        self,
        policies: PolicyRepository,
        approvals: ApprovalRepository,
        audit: AuditSink,
    ) -> None:
        self.policies = policies
        self.approvals = approvals
        self.audit = audit

    def _rules(self, category: PolicyCategory) -> list[RuleSet]:
        return [policy.rules for policy in self.policies.list_enabled(category)]

    def _record(
        self,
        actor_id: str,
        actor_type: ActorType,
        action: str,
        detail: dict[str, Any] | str,
        cost_tokens: int = 0,
    ) -> AuditEntry:
        if not isinstance(detail, str):
            detail = _dumps(detail)
        return self.audit.append(actor_id, actor_type, action, detail, cost_tokens)

    # =========================================================================
    # Content
    # =========================================================================

    def evaluate_content(
        self,
        text: str,
        direction: ContentDirection | str,
        actor_id: str,
    ) -> ContentPolicyResult:
        """
        Evaluate message text against all enabled content_filter policies.

        Args:
            text: Message text (may be empty)
            direction: "inbound" or "outbound"
            actor_id: Agent the message belongs to

        Returns:
            ContentPolicyResult with accumulated reasons
        """
        if not isinstance(text, str):
            raise InvalidInputError(field_name="text", value=text)
        _require("actor_id", actor_id)
        try:
            direction = ContentDirection(direction)
        except ValueError:
            raise InvalidInputError(field_name="direction", value=direction) from None

        result = evaluate_content_policies(
            text, self._rules(PolicyCategory.CONTENT_FILTER)
        )
        if result.allowed:
            logger.debug("Content %s for %s allowed", direction.value, actor_id)
        else:
            logger.info(
                "Content %s for %s blocked: %s",
                direction.value,
                actor_id,
                ", ".join(result.reasons),
            )

        self._record(
            actor_id,
            ActorType.AGENT,
            f"policy.content.{direction.value}",
            {"allowed": result.allowed, "reasons": result.reasons},
        )
        return result

    # =========================================================================
    # Tool Calls
    # =========================================================================

    def evaluate_tool_call(
        self,
        actor_id: str,
        role: Role | str | None,
        agent_id: str,
        action_type: str,
        tool_name: str,
        params: dict[str, Any] | None = None,
    ) -> ToolCallDecision:
        """
        Decide whether a tool call may proceed.

        Args:
            actor_id: Caller on whose behalf the request is made
            role: Role of the principal, or None
            agent_id: Agent that wants to call the tool
            action_type: Kind of action (e.g. "tool_call")
            tool_name: Tool to call
            params: Tool parameters, stored on any approval request

        Returns:
            ToolCallDecision. ``blocked`` with no ``approval_id`` means a tool
            policy refused the call; with an ``approval_id`` the call waits
            on a human decision.
        """
        _require("actor_id", actor_id)
        _require("agent_id", agent_id)
        _require("action_type", action_type)
        _require("tool_name", tool_name)
        if params is not None and not isinstance(params, dict):
            raise InvalidInputError(field_name="params", value=params)
        principal = Principal(agent_id=agent_id, role=_parse_role(role))

        tool_result = evaluate_tool_policies(
            tool_name,
            principal.role,
            self._rules(PolicyCategory.TOOL_RESTRICTION),
        )
        if not tool_result.allowed:
            logger.info(
                "Tool %s blocked for agent %s: %s",
                tool_name,
                agent_id,
                ", ".join(tool_result.reasons),
            )
            self._record(
                agent_id,
                ActorType.AGENT,
                "policy.tool.blocked",
                {
                    "toolName": tool_name,
                    "actionType": action_type,
                    "requestedBy": actor_id,
                    "reasons": tool_result.reasons,
                },
            )
            return ToolCallDecision(blocked=True, reasons=tool_result.reasons)

        approval_result = evaluate_approval_policies(
            action_type,
            tool_name,
            principal.role,
            self._rules(PolicyCategory.APPROVAL_REQUIRED),
        )
        if not approval_result.requires_approval:
            logger.debug("Tool %s allowed for agent %s", tool_name, agent_id)
            self._record(
                agent_id,
                ActorType.AGENT,
                "approval.tool_call.not_required",
                {
                    "toolName": tool_name,
                    "actionType": action_type,
                    "requestedBy": actor_id,
                },
            )
            return ToolCallDecision(blocked=False)

        request = self.approvals.create(
            agent_id,
            action_type,
            {**(params or {}), "toolName": tool_name},
        )
        logger.info(
            "Tool %s for agent %s awaits approval %s",
            tool_name,
            agent_id,
            request.id,
        )
        self._record(
            agent_id,
            ActorType.AGENT,
            "approval.tool_call.pending",
            {
                "approvalId": request.id,
                "toolName": tool_name,
                "actionType": action_type,
                "requestedBy": actor_id,
                "reasons": approval_result.reasons,
            },
        )
        return ToolCallDecision(
            blocked=True,
            approval_required=True,
            reasons=approval_result.reasons,
            approval_id=request.id,
        )

    # =========================================================================
    # Approvals
    # =========================================================================

    def get_approval(self, approval_id: str) -> ApprovalRequest:
        """Fetch an approval request or raise ApprovalNotFoundError."""
        _require("approval_id", approval_id)
        request = self.approvals.get_by_id(approval_id)
        if request is None:
            raise ApprovalNotFoundError(approval_id=approval_id)
        return request

    def list_pending_approvals(self, limit: int = 20) -> list[ApprovalRequest]:
        """List pending approval requests, newest first (1 <= limit <= 100)."""
        if not isinstance(limit, int) or not 1 <= limit <= MAX_PENDING_LIMIT:
            raise InvalidInputError(field_name="limit", value=limit)
        return self.approvals.list_pending(limit)

    def decide_approval(
        self,
        approval_id: str,
        decision: ApprovalState | str,
        decider_id: str,
    ) -> ApprovalRequest:
        """
        Apply a human decision to a pending approval request.

        The write is a compare-and-swap on ``state == pending`` and on the
        version read here. When two decisions race, exactly one succeeds and
        the other raises ApprovalConflictError.

        Args:
            approval_id: Request to decide
            decision: approved, rejected or expired
            decider_id: Principal making the decision

        Returns:
            The decided ApprovalRequest

        Raises:
            InvalidInputError: Unknown decision value or blank ids
            ApprovalNotFoundError: Unknown approval id
            ApprovalConflictError: Request is not pending, or target is not terminal
        """
        _require("decider_id", decider_id)
        try:
            decision = ApprovalState(decision)
        except ValueError:
            raise InvalidInputError(field_name="decision", value=decision) from None

        current = self.get_approval(approval_id)
        if not can_transition(current.state, decision):
            logger.warning(
                "Rejected decision %s on approval %s in state %s",
                decision.value,
                approval_id,
                current.state.value,
            )
            raise ApprovalConflictError(
                approval_id=approval_id,
                current_state=current.state.value,
                requested_state=decision.value,
            )

        try:
            updated = self.approvals.update_state_if_pending(
                approval_id, decision, decider_id, expected_version=current.version
            )
        except ApprovalConflictError:
            logger.warning("Lost decision race on approval %s", approval_id)
            raise

        logger.info(
            "Approval %s decided %s by %s", approval_id, decision.value, decider_id
        )
        self._record(
            decider_id,
            ActorType.USER,
            "approval.request.decided",
            {
                "approvalId": approval_id,
                "previousState": current.state.value,
                "decision": decision.value,
            },
        )
        return updated

    # =========================================================================
    # Constraints / Results
    # =========================================================================

    def query_constraints(
        self,
        principal: Principal,
        action_type: str,
    ) -> ConstraintExpression:
        """Summarise the restrictions that apply to ``principal`` for ``action_type``."""
        _require("action_type", action_type)
        return aggregate_constraints(
            principal,
            action_type,
            self._rules(PolicyCategory.TOOL_RESTRICTION),
            self._rules(PolicyCategory.APPROVAL_REQUIRED),
        )

    def record_tool_result(
        self,
        actor_id: str,
        tool_name: str,
        detail: str,
        cost_tokens: int = 0,
    ) -> AuditEntry:
        """Audit the outcome of an executed tool call as tool.result.<tool_name>."""
        _require("actor_id", actor_id)
        _require("tool_name", tool_name)
        if not isinstance(cost_tokens, int) or cost_tokens < 0:
            raise InvalidInputError(field_name="cost_tokens", value=cost_tokens)
        return self._record(
            actor_id,
            ActorType.AGENT,
            f"tool.result.{tool_name}",
            detail,
            cost_tokens,
        )
