"""
Unit tests for the policy evaluators.

Tests cover:
- Content filtering (blocked terms, default and custom PII detectors)
- Tool restriction (deny list, allow list, roles)
- Approval gate matching
- Accumulation of reasons across multiple policies
"""

import pytest

from shoal.policy import (
    evaluate_approval_policies,
    evaluate_content_policies,
    evaluate_tool_policies,
)
from shoal.schema import ContentFilterRules, Role, ToolRestrictionRules


# =============================================================================
# Content Filter Tests
# =============================================================================


class TestContentBlockedTerms:
    """Tests for blocked-term matching."""

    def test_clean_text_allowed(self) -> None:
        """Text without blocked terms or PII is allowed."""
        result = evaluate_content_policies("hello world", [{"blockedTerms": ["forbidden"]}])
        assert result.allowed is True
        assert result.reasons == []
        assert result.matched_terms == []

    @pytest.mark.parametrize(
        "text",
        ["This is FORBIDDEN", "forbidden fruit", "unforbiddenly so", "ForBidden"],
    )
    def test_case_insensitive_substring(self, text: str) -> None:
        """Blocked terms match case-insensitively anywhere in the text."""
        result = evaluate_content_policies(text, [{"blockedTerms": ["forbidden"]}])
        assert result.allowed is False
        assert "blocked_term:forbidden" in result.reasons
        assert result.matched_terms == ["forbidden"]

    def test_term_reported_lowercase(self) -> None:
        """Configured terms are normalized to lowercase in reasons."""
        result = evaluate_content_policies("Top Secret plans", [{"blockedTerms": ["Top Secret"]}])
        assert result.reasons == ["blocked_term:top secret"]

    def test_matched_terms_deduplicated_across_policies(self) -> None:
        """The same term in two policies yields two reasons but one matched term."""
        rules = [{"blockedTerms": ["secret"]}, {"blockedTerms": ["secret", "leak"]}]
        result = evaluate_content_policies("secret leak", rules)
        assert result.reasons == [
            "blocked_term:secret",
            "blocked_term:secret",
            "blocked_term:leak",
        ]
        assert result.matched_terms == ["secret", "leak"]

    def test_no_policies_allows_everything(self) -> None:
        """Without content policies nothing is checked, not even PII."""
        result = evaluate_content_policies("mail test@example.com", [])
        assert result.allowed is True

    def test_accepts_parsed_rule_models(self) -> None:
        """Evaluators accept parsed rule-sets as well as raw dicts."""
        rules = ContentFilterRules(blocked_terms=["nope"], block_on_pii=False)
        result = evaluate_content_policies("nope", [rules])
        assert result.reasons == ["blocked_term:nope"]


class TestContentPii:
    """Tests for PII detection."""

    def test_default_email_detector(self) -> None:
        """Email addresses are detected by the built-in detector."""
        result = evaluate_content_policies("Reach me at test@example.com", [{}])
        assert result.allowed is False
        assert result.reasons[0].startswith("pii_detected:email")

    def test_default_phone_detector(self) -> None:
        """Phone numbers are detected by the built-in detector."""
        result = evaluate_content_policies("call 555-123-4567 today", [{}])
        assert result.reasons == ["pii_detected:phone"]

    def test_default_ssn_detector(self) -> None:
        """SSN-like numbers are detected by the built-in detector."""
        result = evaluate_content_policies("ssn 123-45-6789", [{}])
        assert result.reasons == ["pii_detected:ssn"]

    def test_block_on_pii_disabled(self) -> None:
        """blockOnPii false skips PII detection entirely."""
        result = evaluate_content_policies(
            "Reach me at test@example.com", [{"blockOnPii": False}]
        )
        assert result.allowed is True

    def test_custom_patterns_replace_defaults(self) -> None:
        """A valid custom pattern disables the built-in detectors."""
        rules = [{"piiPatterns": [r"\bACCT-\d+\b"]}]
        result = evaluate_content_policies("acct-991 test@example.com", rules)
        assert result.reasons == [r"pii_detected:custom:\bACCT-\d+\b"]

    def test_invalid_custom_pattern_dropped(self) -> None:
        """Invalid patterns are discarded; valid ones still apply."""
        rules = [{"piiPatterns": ["([", r"\d{16}"]}]
        result = evaluate_content_policies("card 4111111111111111", rules)
        assert result.reasons == [r"pii_detected:custom:\d{16}"]

    def test_all_invalid_patterns_fall_back_to_defaults(self) -> None:
        """When no custom pattern compiles, the defaults are used."""
        rules = [{"piiPatterns": ["([", "*bad"]}]
        result = evaluate_content_policies("test@example.com", rules)
        assert result.reasons == ["pii_detected:email"]

    def test_terms_and_pii_accumulate(self) -> None:
        """Blocked terms and PII reasons accumulate in one result."""
        rules = [{"blockedTerms": ["secret"]}]
        result = evaluate_content_policies("secret: test@example.com", rules)
        assert result.reasons == ["blocked_term:secret", "pii_detected:email"]


# =============================================================================
# Tool Restriction Tests
# =============================================================================


class TestToolPolicies:
    """Tests for tool restriction evaluation."""

    def test_deny_list(self) -> None:
        """A denied tool is blocked."""
        result = evaluate_tool_policies(
            "wire_transfer", "member", [{"denyTools": ["wire_transfer"]}]
        )
        assert result.allowed is False
        assert "tool_denied:wire_transfer" in result.reasons

    def test_role_not_allowed(self) -> None:
        """A role outside rolesAllowed is blocked."""
        result = evaluate_tool_policies(
            "search", "viewer", [{"rolesAllowed": ["admin", "member"]}]
        )
        assert "role_not_allowed:viewer" in result.reasons

    def test_anonymous_role_not_allowed(self) -> None:
        """A principal without a role is reported as anonymous."""
        result = evaluate_tool_policies("search", None, [{"rolesAllowed": ["admin"]}])
        assert result.reasons == ["role_not_allowed:anonymous"]

    def test_role_enum_accepted(self) -> None:
        """Role enums render as their plain value."""
        result = evaluate_tool_policies("search", Role.VIEWER, [{"rolesAllowed": ["admin"]}])
        assert result.reasons == ["role_not_allowed:viewer"]

    def test_not_allowlisted(self) -> None:
        """A non-empty allow list blocks tools missing from it."""
        result = evaluate_tool_policies("shell", "admin", [{"allowTools": ["search"]}])
        assert result.reasons == ["tool_not_allowlisted:shell"]

    def test_allowlisted_tool_allowed(self) -> None:
        """A tool on the allow list with a permitted role passes."""
        rules = [{"allowTools": ["search"], "rolesAllowed": ["member"]}]
        result = evaluate_tool_policies("search", "member", rules)
        assert result.allowed is True
        assert result.reasons == []

    def test_no_policies_allows(self) -> None:
        """Without tool policies every tool is allowed."""
        assert evaluate_tool_policies("anything", None, []).allowed is True

    def test_reasons_accumulate_across_policies(self) -> None:
        """Every policy contributes; there is no short-circuit."""
        rules = [
            {"denyTools": ["rm"]},
            {"allowTools": ["search"]},
            ToolRestrictionRules(roles_allowed=["admin"]),
        ]
        result = evaluate_tool_policies("rm", "member", rules)
        assert result.reasons == [
            "tool_denied:rm",
            "tool_not_allowlisted:rm",
            "role_not_allowed:member",
        ]

    def test_malformed_rules_degrade_to_defaults(self) -> None:
        """Wrong shapes are ignored instead of raising."""
        rules = [{"denyTools": "rm", "allowTools": None}, "not a dict"]
        result = evaluate_tool_policies("rm", "member", rules)
        assert result.allowed is True


# =============================================================================
# Approval Gate Tests
# =============================================================================


class TestApprovalPolicies:
    """Tests for approval gate evaluation."""

    def test_full_match_requires_approval(self) -> None:
        """All constraints satisfied means approval is required."""
        rules = [
            {
                "actionTypes": ["tool_call"],
                "toolNames": ["wire_transfer"],
                "rolesRequiringApproval": ["member", "viewer"],
            }
        ]
        result = evaluate_approval_policies("tool_call", "wire_transfer", "member", rules)
        assert result.requires_approval is True
        assert result.reasons == [
            "approval_policy_matched:action=tool_call:tool=wire_transfer:role=member"
        ]

    def test_role_mismatch(self) -> None:
        """A role outside rolesRequiringApproval skips the gate."""
        rules = [{"toolNames": ["wire_transfer"], "rolesRequiringApproval": ["viewer"]}]
        result = evaluate_approval_policies("tool_call", "wire_transfer", "admin", rules)
        assert result.requires_approval is False
        assert result.reasons == []

    def test_action_mismatch(self) -> None:
        """An action type outside actionTypes skips the gate."""
        rules = [{"actionTypes": ["deploy"]}]
        result = evaluate_approval_policies("tool_call", "search", "member", rules)
        assert result.requires_approval is False

    def test_empty_rules_match_everything(self) -> None:
        """A rule-set with no constraints gates every action."""
        result = evaluate_approval_policies("tool_call", "search", "member", [{}])
        assert result.requires_approval is True

    def test_missing_tool_does_not_match_tool_list(self) -> None:
        """A tool list never matches when no tool is given."""
        rules = [{"toolNames": ["search"]}]
        result = evaluate_approval_policies("message", None, "member", rules)
        assert result.requires_approval is False

    def test_missing_role_does_not_match_role_list(self) -> None:
        """A role list never matches an anonymous principal."""
        rules = [{"rolesRequiringApproval": ["member"]}]
        result = evaluate_approval_policies("tool_call", "search", None, rules)
        assert result.requires_approval is False

    def test_absent_tool_and_role_labels(self) -> None:
        """Absent tool renders as none and absent role as unknown."""
        result = evaluate_approval_policies("message", None, None, [{}])
        assert result.reasons == ["approval_policy_matched:action=message:tool=none:role=unknown"]

    def test_each_matching_policy_adds_reason(self) -> None:
        """Every matching rule-set contributes one reason."""
        rules = [{}, {"toolNames": ["search"]}, {"toolNames": ["other"]}]
        result = evaluate_approval_policies("tool_call", "search", "member", rules)
        assert len(result.reasons) == 2
