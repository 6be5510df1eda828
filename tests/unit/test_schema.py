"""
Unit tests for schema models.

Tests cover:
- Lenient per-category rule parsing
- Policy rules tagged by category
- Approval state machine
- ConstraintExpression normalization and camelCase serialization
"""

import pytest
from pydantic import ValidationError

from shoal.approvals import can_transition
from shoal.schema import (
    ApprovalRequiredRules,
    ApprovalState,
    ConstraintExpression,
    ContentFilterRules,
    Policy,
    PolicyCategory,
    Principal,
    Role,
    ToolRestrictionRules,
    parse_rules,
)


class TestParseRules:
    """Tests for parse_rules."""

    def test_defaults(self) -> None:
        """Missing fields take their documented defaults."""
        rules = parse_rules(PolicyCategory.CONTENT_FILTER, {})
        assert rules == ContentFilterRules()
        assert rules.blocked_terms == []
        assert rules.pii_patterns == []
        assert rules.block_on_pii is True

    def test_camel_case_fields(self) -> None:
        """JSON camelCase fields populate snake_case attributes."""
        rules = parse_rules(
            "approval_required",
            {"actionTypes": ["a"], "toolNames": ["t"], "rolesRequiringApproval": ["r"]},
        )
        assert isinstance(rules, ApprovalRequiredRules)
        assert rules.action_types == ["a"]
        assert rules.tool_names == ["t"]
        assert rules.roles_requiring_approval == ["r"]

    def test_wrong_shapes_degrade(self) -> None:
        """Non-list fields become empty lists; bad entries are dropped."""
        rules = parse_rules(
            PolicyCategory.TOOL_RESTRICTION,
            {"allowTools": "search", "denyTools": ["rm", 3, "", "  ", None]},
        )
        assert rules.allow_tools == []
        assert rules.deny_tools == ["rm"]

    def test_non_bool_flag_defaults_true(self) -> None:
        """blockOnPii only accepts real booleans."""
        rules = parse_rules(PolicyCategory.CONTENT_FILTER, {"blockOnPii": "no"})
        assert rules.block_on_pii is True

    def test_unknown_fields_ignored(self) -> None:
        """Unrecognized fields do not fail parsing."""
        rules = parse_rules(PolicyCategory.TOOL_RESTRICTION, {"extra": 1, "denyTools": ["x"]})
        assert rules.deny_tools == ["x"]

    @pytest.mark.parametrize("raw", [None, [], "rules", 42])
    def test_non_mapping_payload(self, raw: object) -> None:
        """A non-mapping payload yields the all-defaults rule-set."""
        assert parse_rules(PolicyCategory.TOOL_RESTRICTION, raw) == ToolRestrictionRules()


class TestPolicy:
    """Tests for the Policy model."""

    def test_rules_parsed_for_category(self) -> None:
        """rules is parsed into the rule-set of the policy's category."""
        policy = Policy(id="p1", category="tool_restriction", rules={"denyTools": ["rm"]})
        assert isinstance(policy.rules, ToolRestrictionRules)
        assert policy.rules.deny_tools == ["rm"]
        assert policy.enabled is True

    def test_malformed_rules_become_defaults(self) -> None:
        """A malformed rules payload never fails policy construction."""
        policy = Policy(id="p1", category="content_filter", rules=["not", "a", "map"])
        assert policy.rules == ContentFilterRules()

    def test_unknown_category_rejected(self) -> None:
        """An unknown category is a validation error."""
        with pytest.raises(ValidationError):
            Policy(id="p1", category="rate_limit", rules={})


class TestApprovalStateMachine:
    """Tests for can_transition."""

    @pytest.mark.parametrize(
        "target", [ApprovalState.APPROVED, ApprovalState.REJECTED, ApprovalState.EXPIRED]
    )
    def test_pending_to_terminal(self, target: ApprovalState) -> None:
        """pending moves to every terminal state."""
        assert can_transition(ApprovalState.PENDING, target) is True

    def test_pending_to_pending(self) -> None:
        """pending -> pending is not a transition."""
        assert can_transition(ApprovalState.PENDING, ApprovalState.PENDING) is False

    @pytest.mark.parametrize(
        "source", [ApprovalState.APPROVED, ApprovalState.REJECTED, ApprovalState.EXPIRED]
    )
    @pytest.mark.parametrize("target", list(ApprovalState))
    def test_terminal_states_are_final(
        self, source: ApprovalState, target: ApprovalState
    ) -> None:
        """No transition leaves a terminal state, including to itself."""
        assert can_transition(source, target) is False

    def test_string_states(self) -> None:
        """Plain strings are accepted; unknown ones never transition."""
        assert can_transition("pending", "approved") is True
        assert can_transition("approved", "rejected") is False
        assert can_transition("pending", "maybe") is False


class TestConstraintExpression:
    """Tests for ConstraintExpression."""

    def test_lists_sorted_and_deduplicated(self) -> None:
        """Lists are normalized on construction."""
        expr = ConstraintExpression(allowed_tools=["b", "a", "b"], forbidden_tools=["z", "z"])
        assert expr.allowed_tools == ["a", "b"]
        assert expr.forbidden_tools == ["z"]

    def test_camel_case_dump(self) -> None:
        """Serialization by alias uses camelCase keys."""
        data = ConstraintExpression(scope_note="n").model_dump(by_alias=True)
        assert set(data) == {"allowedTools", "forbiddenTools", "requiresApproval", "scopeNote"}


class TestPrincipal:
    """Tests for Principal."""

    def test_role_coerced(self) -> None:
        """String roles become Role members."""
        assert Principal(agent_id="a", role="viewer").role is Role.VIEWER

    def test_unknown_role_rejected(self) -> None:
        """Only admin, member and viewer are roles."""
        with pytest.raises(ValidationError):
            Principal(agent_id="a", role="root")
