"""
Storage module for Shoal.

This module provides SQLite-based persistence for the three collaborators
GovernanceService depends on: a policy repository, an approval repository
and an audit sink.

Tables:
    - policies: Policy configuration (category, JSON rules, enabled flag)
    - approval_requests: Approval gates (state, decider, version counter)
    - audit_entries: Append-only governance decisions

Design principles:
    - Append-only audit trail
    - Approval decisions are compare-and-swap on state == 'pending'
    - Self-contained: Single .db file
"""

from shoal.store.base import ApprovalRepository, AuditSink, PolicyRepository
from shoal.store.db import ShoalDB, generate_id

__all__ = [
    "ApprovalRepository",
    "AuditSink",
    "PolicyRepository",
    "ShoalDB",
    "generate_id",
]
