"""Bank transaction ingestion and rule-based classification.

Raw provider records are normalized, checked for duplicates, classified by
user-defined matching rules and either posted as ledger transactions or parked
as pending items for review. Only symbol re-exports live here.
"""

from .api import (
    IngestError,
    IngestResult,
    ReprocessResult,
    RuleChange,
    approve_pending,
    create_default_rules,
    create_rule,
    ingest,
    list_pending,
    reject_pending,
    reprocess,
)
from .config import PipelineSettings
from .errors import (
    ApprovalError,
    BankIngestError,
    NormalizationError,
    NotFoundError,
    RuleScopeError,
    RuleValidationError,
)
from .models import Classification, ClassificationFields, NormalizedTransaction

__all__ = [
    # API
    "ingest",
    "reprocess",
    "create_rule",
    "create_default_rules",
    "list_pending",
    "approve_pending",
    "reject_pending",
    # Models / types
    "IngestResult",
    "IngestError",
    "RuleChange",
    "ReprocessResult",
    "PipelineSettings",
    "NormalizedTransaction",
    "ClassificationFields",
    "Classification",
    # Errors
    "BankIngestError",
    "NormalizationError",
    "NotFoundError",
    "RuleValidationError",
    "RuleScopeError",
    "ApprovalError",
]
