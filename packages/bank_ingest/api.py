"""Public entry points for the ``bank_ingest`` package.

Orchestration lives in the implementation modules; this module only gathers
the callables other services (the sync job, the admin API, the CLI) use.
"""

from __future__ import annotations

from .matching_rules import (
    RuleMutation,
    RulePayload,
    RuleSample,
    RuleTestResult,
    RuleUpdate,
    create_default_rules,
    create_global_rule,
    create_rule,
    delete_rule,
    get_rule,
    list_rules,
    reorder_rules,
    test_rule,
    update_rule,
)
from .persistence import IngestError, IngestResult, ingest, write_outcome
from .reprocess import ReprocessResult, RuleChange, reprocess
from .review import (
    BulkResult,
    PendingItem,
    approve_pending,
    bulk_approve,
    bulk_reject,
    bulk_update_pending,
    count_unreviewed,
    list_pending,
    reject_pending,
    update_pending_fields,
)

__all__ = [
    # Ingestion
    "ingest",
    "write_outcome",
    "IngestResult",
    "IngestError",
    # Reprocessing
    "reprocess",
    "RuleChange",
    "ReprocessResult",
    # Rules
    "create_rule",
    "create_global_rule",
    "update_rule",
    "delete_rule",
    "reorder_rules",
    "get_rule",
    "list_rules",
    "test_rule",
    "create_default_rules",
    "RulePayload",
    "RuleUpdate",
    "RuleSample",
    "RuleMutation",
    "RuleTestResult",
    # Review
    "list_pending",
    "count_unreviewed",
    "update_pending_fields",
    "bulk_update_pending",
    "approve_pending",
    "bulk_approve",
    "reject_pending",
    "bulk_reject",
    "PendingItem",
    "BulkResult",
]
