"""
Policy evaluators for Shoal.

Three pure functions, one per policy category. Each takes the rule-sets of
every enabled policy in its category and returns a result object; none of
them touch storage or raise for policy content.

Design Principles:
    - Accumulate-all: every rule-set is evaluated and contributes reasons;
      there is no short-circuit on the first match
    - Reasons are data: "blocked" is a result, never an exception
    - Degrade, don't fail: an invalid regex or malformed rule-set falls back
      to defaults instead of erroring

Reason formats:
    blocked_term:<term>
    pii_detected:<name>               (email, phone, ssn, custom:<pattern>)
    tool_denied:<tool>
    tool_not_allowlisted:<tool>
    role_not_allowed:<role|anonymous>
    approval_policy_matched:action=<a>:tool=<t|none>:role=<r|unknown>
"""

import re
from collections.abc import Iterable
from typing import Any

from shoal.schema import (
    ApprovalPolicyResult,
    ApprovalRequiredRules,
    ContentFilterRules,
    ContentPolicyResult,
    PolicyCategory,
    Role,
    ToolPolicyResult,
    ToolRestrictionRules,
    parse_rules,
    role_name,
)

# Built-in detectors used when a rule-set has no valid custom pattern
DEFAULT_PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (
        "email",
        re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE),
    ),
    (
        "phone",
        re.compile(r"\b(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b"),
    ),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
]


def _coerce(
    category: PolicyCategory,
    rules_list: Iterable[Any],
) -> list[Any]:
    """Accept parsed rule-sets or raw dicts; parse raw dicts leniently."""
    return [parse_rules(category, rules) for rules in rules_list]


def compile_pii_patterns(patterns: list[str]) -> list[tuple[str, re.Pattern[str]]]:
    """
    Compile custom PII patterns, silently dropping invalid ones.

    Returns:
        (name, compiled) pairs named ``custom:<pattern>``
    """
    compiled = []
    for pattern in patterns:
        try:
            compiled.append((f"custom:{pattern}", re.compile(pattern, re.IGNORECASE)))
        except re.error:
            continue
    return compiled


# =============================================================================
# Content Filter
# =============================================================================


def evaluate_content_policies(
    text: str,
    rules_list: Iterable[ContentFilterRules | dict[str, Any]],
) -> ContentPolicyResult:
    """
    Score text against blocked-term and PII rules.

    Blocked terms match case-insensitively as substrings. PII detection runs
    per rule-set when ``block_on_pii`` is set: its valid custom patterns are
    used if it has any, otherwise the built-in email/phone/ssn detectors.

    Args:
        text: Raw message text
        rules_list: Rule-sets of all enabled content_filter policies

    Returns:
        ContentPolicyResult; allowed only when no reason was recorded
    """
    reasons: list[str] = []
    matched_terms: dict[str, None] = {}
    normalized = text.lower()

    for rules in _coerce(PolicyCategory.CONTENT_FILTER, rules_list):
        for term in (t.lower() for t in rules.blocked_terms):
            if term in normalized:
                matched_terms[term] = None
                reasons.append(f"blocked_term:{term}")

        if not rules.block_on_pii:
            continue

        patterns = compile_pii_patterns(rules.pii_patterns) or DEFAULT_PII_PATTERNS
        for name, regex in patterns:
            if regex.search(text):
                reasons.append(f"pii_detected:{name}")

    return ContentPolicyResult(
        allowed=not reasons,
        reasons=reasons,
        matched_terms=list(matched_terms),
    )


# =============================================================================
# Tool Restriction
# =============================================================================


def evaluate_tool_policies(
    tool_name: str,
    role: Role | str | None,
    rules_list: Iterable[ToolRestrictionRules | dict[str, Any]],
) -> ToolPolicyResult:
    """
    Decide whether a tool invocation is permitted.

    Every rule-set contributes independently:
        - tool in deny_tools                      -> tool_denied
        - allow_tools non-empty, tool not in it   -> tool_not_allowlisted
        - roles_allowed non-empty, role not in it -> role_not_allowed

    Returns:
        ToolPolicyResult; allowed only when the combined reason list is empty
    """
    role = role_name(role)
    reasons: list[str] = []

    for rules in _coerce(PolicyCategory.TOOL_RESTRICTION, rules_list):
        if tool_name in rules.deny_tools:
            reasons.append(f"tool_denied:{tool_name}")

        if rules.allow_tools and tool_name not in rules.allow_tools:
            reasons.append(f"tool_not_allowlisted:{tool_name}")

        if rules.roles_allowed and (not role or role not in rules.roles_allowed):
            reasons.append(f"role_not_allowed:{role or 'anonymous'}")

    return ToolPolicyResult(allowed=not reasons, reasons=reasons)


# =============================================================================
# Approval Gate
# =============================================================================


def approval_rules_match(
    rules: ApprovalRequiredRules,
    action_type: str,
    tool_name: str | None,
    role: str | None,
) -> bool:
    """True when every non-empty constraint in ``rules`` is satisfied."""
    action_matched = not rules.action_types or action_type in rules.action_types
    tool_matched = not rules.tool_names or (
        tool_name is not None and tool_name in rules.tool_names
    )
    role_matched = not rules.roles_requiring_approval or (
        role is not None and role in rules.roles_requiring_approval
    )
    return action_matched and tool_matched and role_matched


def evaluate_approval_policies(
    action_type: str,
    tool_name: str | None,
    role: Role | str | None,
    rules_list: Iterable[ApprovalRequiredRules | dict[str, Any]],
) -> ApprovalPolicyResult:
    """
    Decide whether a permitted action still needs a human approval gate.

    Each matching rule-set appends one reason; approval is required iff at
    least one rule-set matched.
    """
    role = role_name(role)
    reasons: list[str] = []

    for rules in _coerce(PolicyCategory.APPROVAL_REQUIRED, rules_list):
        if approval_rules_match(rules, action_type, tool_name, role):
            reasons.append(
                f"approval_policy_matched:action={action_type}"
                f":tool={tool_name or 'none'}:role={role or 'unknown'}"
            )

    return ApprovalPolicyResult(requires_approval=bool(reasons), reasons=reasons)
