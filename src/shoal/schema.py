"""
Schema definitions for Shoal.

This module defines the Pydantic models used throughout Shoal:
- Policy and its per-category rule-sets: what is filtered, restricted, gated
- Principal: on whose behalf an action is evaluated
- ApprovalRequest: a human approval gate and its lifecycle state
- AuditEntry: one append-only record of a governance decision
- Evaluation results and the aggregated ConstraintExpression

Design Decisions:
    - Rule-sets are a tagged union keyed by PolicyCategory
    - Rule parsing is lenient: wrong shapes degrade to defaults, never errors,
      so one misconfigured policy cannot deny service to unrelated evaluations
    - JSON field names are camelCase (``blockedTerms``); Python attributes are
      snake_case. Both are accepted on input.
    - Records are immutable (frozen=True)
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================


class PolicyCategory(str, Enum):
    """The category a policy belongs to; selects the shape of its rules."""

    CONTENT_FILTER = "content_filter"
    TOOL_RESTRICTION = "tool_restriction"
    APPROVAL_REQUIRED = "approval_required"


class Role(str, Enum):
    """Role of a principal. A principal may also have no role at all."""

    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class ApprovalState(str, Enum):
    """
    State of an approval request.

    PENDING is the only non-terminal state. APPROVED, REJECTED and EXPIRED
    are terminal: once reached, no further transition is valid.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset(
    {ApprovalState.APPROVED, ApprovalState.REJECTED, ApprovalState.EXPIRED}
)


class ActorType(str, Enum):
    """Who performed an audited action."""

    USER = "user"
    AGENT = "agent"


class ContentDirection(str, Enum):
    """Whether evaluated text is entering or leaving the agent."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


def role_name(role: Role | str | None) -> str | None:
    """Return the plain string value of a role (or None)."""
    if isinstance(role, Enum):
        return role.value
    return role


class _CamelModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Rule-set Models
# =============================================================================


def _as_string_list(value: Any) -> list[str]:
    """Keep only non-blank strings; anything that is not a list becomes []."""
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


class _RuleSet(_CamelModel):
    model_config = ConfigDict(extra="ignore")


class ContentFilterRules(_RuleSet):
    """
    Rules for ``content_filter`` policies.

    Attributes:
        blocked_terms: Terms matched case-insensitively as substrings
        pii_patterns: Custom PII regular expressions (invalid ones are dropped)
        block_on_pii: Whether PII detection contributes reasons. Default: True
    """

    blocked_terms: list[str] = Field(default_factory=list)
    pii_patterns: list[str] = Field(default_factory=list)
    block_on_pii: bool = True

    @field_validator("blocked_terms", "pii_patterns", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> list[str]:
        return _as_string_list(v)

    @field_validator("block_on_pii", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return v if isinstance(v, bool) else True


class ToolRestrictionRules(_RuleSet):
    """
    Rules for ``tool_restriction`` policies.

    Attributes:
        allow_tools: If non-empty, only these tools are permitted
        deny_tools: Tools that are always denied
        roles_allowed: If non-empty, only these roles may use tools
    """

    allow_tools: list[str] = Field(default_factory=list)
    deny_tools: list[str] = Field(default_factory=list)
    roles_allowed: list[str] = Field(default_factory=list)

    @field_validator("allow_tools", "deny_tools", "roles_allowed", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> list[str]:
        return _as_string_list(v)


class ApprovalRequiredRules(_RuleSet):
    """
    Rules for ``approval_required`` policies.

    Every non-empty list is a constraint that must be satisfied for the
    rule-set to match; an empty list matches anything.
    """

    action_types: list[str] = Field(default_factory=list)
    tool_names: list[str] = Field(default_factory=list)
    roles_requiring_approval: list[str] = Field(default_factory=list)

    @field_validator(
        "action_types", "tool_names", "roles_requiring_approval", mode="before"
    )
    @classmethod
    def _coerce_lists(cls, v: Any) -> list[str]:
        return _as_string_list(v)


RuleSet = Union[ContentFilterRules, ToolRestrictionRules, ApprovalRequiredRules]

RULES_BY_CATEGORY: dict[PolicyCategory, type[_RuleSet]] = {
    PolicyCategory.CONTENT_FILTER: ContentFilterRules,
    PolicyCategory.TOOL_RESTRICTION: ToolRestrictionRules,
    PolicyCategory.APPROVAL_REQUIRED: ApprovalRequiredRules,
}


def parse_rules(category: PolicyCategory | str, raw: Any) -> RuleSet:
    """
    Parse a raw rules payload into the rule-set model for ``category``.

    Never raises for a malformed payload: a non-mapping becomes the
    all-defaults rule-set, and malformed fields fall back to their defaults.
    """
    model = RULES_BY_CATEGORY[PolicyCategory(category)]
    if isinstance(raw, model):
        return raw
    if not isinstance(raw, dict):
        raw = {}
    return model.model_validate(raw)


# =============================================================================
# Policy / Principal
# =============================================================================


class Policy(BaseModel):
    """
    A stored policy. Read-only from Shoal's perspective.

    Multiple enabled policies of the same category coexist and are all
    evaluated; the outcome is the union of their effects.

    Attributes:
        id: Unique identifier
        category: Which evaluator consumes this policy
        rules: The category-specific rule-set
        enabled: Disabled policies are never evaluated
        name: Optional human-readable label
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier")
    category: PolicyCategory = Field(..., description="Policy category")
    rules: RuleSet = Field(..., description="Category-specific rules")
    enabled: bool = Field(default=True, description="Whether the policy is active")
    name: str | None = Field(default=None, description="Optional label")

    @model_validator(mode="before")
    @classmethod
    def _parse_rules_for_category(cls, data: Any) -> Any:
        """Parse ``rules`` into the rule-set matching ``category``."""
        if isinstance(data, dict) and "category" in data:
            try:
                category = PolicyCategory(data["category"])
            except ValueError:
                # Let field validation report the bad category
                return data
            data = {**data, "rules": parse_rules(category, data.get("rules"))}
        return data


class Principal(BaseModel):
    """
    The identity on whose behalf an action is evaluated.

    Constructed per request from caller context, never persisted.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str = Field(..., description="Agent identifier")
    role: Role | None = Field(default=None, description="Role, if any")


# =============================================================================
# Approval / Audit Records
# =============================================================================


class ApprovalRequest(BaseModel):
    """
    A human approval gate for a permitted-but-sensitive action.

    Created in state PENDING. Decided exactly once; terminal thereafter.

    Attributes:
        id: Unique identifier
        agent_id: Agent that requested the action
        action_type: Kind of action (e.g. "tool_call")
        params: Action parameters; always includes ``toolName``
        state: Current lifecycle state
        requested_at: When the request was created
        decided_by: Principal id of the decider, once decided
        version: Optimistic concurrency counter, bumped on every write
    """

    model_config = ConfigDict(frozen=True)

    id: str
    agent_id: str
    action_type: str
    params: dict[str, Any] = Field(default_factory=dict)
    state: ApprovalState = ApprovalState.PENDING
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    decided_by: str | None = None
    version: int = Field(default=0, ge=0)


class AuditEntry(BaseModel):
    """One append-only governance record. Never updated or deleted."""

    model_config = ConfigDict(frozen=True)

    id: str
    actor_id: str
    actor_type: ActorType
    action: str = Field(..., description="Dotted action name, e.g. policy.tool.blocked")
    detail: str = Field(default="", description="Serialized context")
    cost_tokens: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# =============================================================================
# Evaluation Results
# =============================================================================


class ContentPolicyResult(_CamelModel):
    """Outcome of content evaluation."""

    allowed: bool
    reasons: list[str] = Field(default_factory=list)
    matched_terms: list[str] = Field(default_factory=list)


class ToolPolicyResult(_CamelModel):
    """Outcome of tool restriction evaluation."""

    allowed: bool
    reasons: list[str] = Field(default_factory=list)


class ApprovalPolicyResult(_CamelModel):
    """Outcome of approval gate evaluation."""

    requires_approval: bool
    reasons: list[str] = Field(default_factory=list)


class ToolCallDecision(_CamelModel):
    """
    Final decision for a tool call.

    ``blocked`` is True both when a tool policy denied the call and when
    the call waits on an approval gate; ``approval_id`` tells them apart.
    """

    blocked: bool
    approval_required: bool = False
    reasons: list[str] = Field(default_factory=list)
    approval_id: str | None = None


class ConstraintExpression(_CamelModel):
    """
    Advisory summary of what a principal may or may not do.

    List fields are always deduplicated and sorted ascending.
    """

    allowed_tools: list[str] = Field(default_factory=list)
    forbidden_tools: list[str] = Field(default_factory=list)
    requires_approval: list[str] = Field(default_factory=list)
    scope_note: str = ""

    @field_validator("allowed_tools", "forbidden_tools", "requires_approval")
    @classmethod
    def _unique_sorted(cls, v: list[str]) -> list[str]:
        return sorted(set(v))
