"""
Constraint aggregation for Shoal.

Merges every applicable tool_restriction and approval_required policy for a
principal into one advisory ConstraintExpression. This runs out-of-band so an
agent can be briefed on its restrictions before it acts; it is never on the
decision path.
"""

from collections.abc import Iterable
from typing import Any

from shoal.schema import (
    ApprovalRequiredRules,
    ConstraintExpression,
    PolicyCategory,
    Principal,
    ToolRestrictionRules,
    parse_rules,
    role_name,
)


def applies_to_role(roles: list[str], role: str | None) -> bool:
    """A role-scoping list applies when it is empty or names the role."""
    if not roles:
        return True
    return role is not None and role in roles


def _label(values: list[str]) -> str:
    return ", ".join(values) if values else "none"


def aggregate_constraints(
    principal: Principal,
    action_type: str,
    tool_rules: Iterable[ToolRestrictionRules | dict[str, Any]],
    approval_rules: Iterable[ApprovalRequiredRules | dict[str, Any]],
) -> ConstraintExpression:
    """
    Build the ConstraintExpression for ``principal`` performing ``action_type``.

    Policies whose role-scoping list excludes the principal are skipped
    entirely. Applying tool policies contribute their allow/deny lists.
    Applying approval policies whose action types admit ``action_type``
    contribute their tool names, or the action type itself when they name
    no tools.

    Args:
        principal: Who is acting
        action_type: What kind of action is anticipated
        tool_rules: Rule-sets of enabled tool_restriction policies
        approval_rules: Rule-sets of enabled approval_required policies

    Returns:
        ConstraintExpression with deduplicated, ascending lists
    """
    role = role_name(principal.role)
    allowed: set[str] = set()
    forbidden: set[str] = set()
    requires_approval: set[str] = set()

    for raw in tool_rules:
        rules = parse_rules(PolicyCategory.TOOL_RESTRICTION, raw)
        if not applies_to_role(rules.roles_allowed, role):
            continue
        allowed.update(rules.allow_tools)
        forbidden.update(rules.deny_tools)

    for raw in approval_rules:
        rules = parse_rules(PolicyCategory.APPROVAL_REQUIRED, raw)
        if not applies_to_role(rules.roles_requiring_approval, role):
            continue
        if rules.action_types and action_type not in rules.action_types:
            continue
        if rules.tool_names:
            requires_approval.update(rules.tool_names)
        else:
            requires_approval.add(action_type)

    forbidden_list = sorted(forbidden)
    approval_list = sorted(requires_approval)
    scope_note = (
        f"Role: {role or 'anonymous'}. "
        f"Restricted: {_label(forbidden_list)}. "
        f"Approval required: {_label(approval_list)}."
    )

    return ConstraintExpression(
        allowed_tools=sorted(allowed),
        forbidden_tools=forbidden_list,
        requires_approval=approval_list,
        scope_note=scope_note,
    )


def format_constraints_for_prompt(constraints: ConstraintExpression) -> str:
    """
    Render constraints as a block for an agent's operating context.

    Empty sections are omitted; the scope note is always the last line.
    """
    lines = ["[Policy Constraints]"]
    if constraints.forbidden_tools:
        lines.append(f"Restricted tools: {', '.join(constraints.forbidden_tools)}")
    if constraints.allowed_tools:
        lines.append(f"Permitted tools: {', '.join(constraints.allowed_tools)}")
    if constraints.requires_approval:
        lines.append(f"Requires approval: {', '.join(constraints.requires_approval)}")
    if constraints.scope_note:
        lines.append(constraints.scope_note)
    return "\n".join(lines)
