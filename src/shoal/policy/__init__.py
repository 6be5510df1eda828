"""
Policy evaluation for Shoal.

Pure evaluators for each policy category plus the constraint aggregator.
None of these functions touch storage; callers load the enabled rule-sets
and pass them in.

Usage:
    from shoal.policy import evaluate_tool_policies

    result = evaluate_tool_policies("wire_transfer", "member", rules_list)
    if not result.allowed:
        print(result.reasons)
"""

from shoal.policy.constraints import aggregate_constraints, format_constraints_for_prompt
from shoal.policy.engine import (
    DEFAULT_PII_PATTERNS,
    evaluate_approval_policies,
    evaluate_content_policies,
    evaluate_tool_policies,
)

__all__ = [
    "DEFAULT_PII_PATTERNS",
    "aggregate_constraints",
    "evaluate_approval_policies",
    "evaluate_content_policies",
    "evaluate_tool_policies",
    "format_constraints_for_prompt",
]
