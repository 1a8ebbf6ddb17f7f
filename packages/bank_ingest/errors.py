"""Exception types raised by ``bank_ingest``.

Each concrete error also derives from the closest builtin so callers that only
know about ``ValueError``/``LookupError``/``PermissionError`` keep working.
Classification outcomes that end in a pending item are *not* errors and never
raise.
"""

from __future__ import annotations


class BankIngestError(Exception):
    """Base class for all package errors."""


class NormalizationError(BankIngestError, ValueError):
    """A raw provider record could not be turned into a normalized transaction."""

    def __init__(self, message: str, *, external_id: str | None = None) -> None:
        super().__init__(message)
        self.external_id = external_id


class NotFoundError(BankIngestError, LookupError):
    """A referenced account, rule, property or pending item does not exist."""

    def __init__(self, kind: str, ident: object) -> None:
        super().__init__(f"{kind} not found: {ident!r}")
        self.kind = kind
        self.ident = ident


class RuleValidationError(BankIngestError, ValueError):
    """A matching-rule payload is malformed."""


class RuleScopeError(BankIngestError, PermissionError):
    """Global rules cannot be modified through the account-scoped rule surface."""


class ApprovalError(BankIngestError, ValueError):
    """A pending item cannot be approved (already reviewed, or fields missing/invalid)."""


__all__ = [
    "BankIngestError",
    "NormalizationError",
    "NotFoundError",
    "RuleValidationError",
    "RuleScopeError",
    "ApprovalError",
]
