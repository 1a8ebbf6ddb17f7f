"""Provider record → :class:`~bank_ingest.models.NormalizedTransaction`.

Input records follow the bank-feed shape delivered by the sync collaborator
(Monzo-style keys)::

    {
        "id": "tx_0000A1",                # provider transaction id (required)
        "account_id": "acc_00009",        # provider account id (optional)
        "created": "2026-01-20T10:00:00Z",# ISO-8601 timestamp (required)
        "amount": -10000,                 # signed integer, minor units (required)
        "currency": "GBP",
        "description": "TESCO STORES 2231",
        "notes": "",                      # free text → ``reference``
        "merchant": {"name": "Tesco"},    # object or plain string
        "counterparty": {"name": "..."},
        "category": "groceries",          # provider category, informational
        "settled": "2026-01-21T09:00:00Z" # optional; "" means unsettled
    }

Out of scope: currency conversion, provider-specific sign conventions (the
amount sign is carried through untouched), and synthesizing ids.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Annotated, Any

from db.models.ledger import BankAccount
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from .config import PipelineSettings
from .errors import NormalizationError
from .models import NormalizedTransaction

# amount_minor is stored as a signed 64-bit BIGINT.
MIN_AMOUNT_MINOR = -(2**63)
MAX_AMOUNT_MINOR = 2**63 - 1


class _Named(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str | None = None


class RawBankRecord(BaseModel):
    """Validated view of one raw provider record; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    account_id: str | None = None
    created: datetime
    amount: Annotated[StrictInt, Field(ge=MIN_AMOUNT_MINOR, le=MAX_AMOUNT_MINOR)]
    currency: str | None = None
    description: str
    notes: str | None = None
    merchant: _Named | str | None = None
    counterparty: _Named | None = None
    category: str | None = None
    settled: datetime | None = None

    @field_validator(
        "account_id", "currency", "notes", "category", "settled", "merchant", "counterparty",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("id", "description")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("must be non-empty")
        return v

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, v: str | None) -> str | None:
        if v is None:
            return None
        code = v.upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"invalid currency code: {v!r}")
        return code


def _as_utc(dt: datetime) -> datetime:
    # Naive provider timestamps are taken to be UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _name_of(value: _Named | str | None) -> str | None:
    if value is None:
        return None
    name = value if isinstance(value, str) else value.name
    return name or None


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "record"
    return f"{loc}: {err.get('msg', 'invalid value')}"


def normalize_record(
    raw: Mapping[str, Any],
    *,
    bank_account: BankAccount | None = None,
    settings: PipelineSettings | None = None,
) -> NormalizedTransaction:
    """Validate ``raw`` and convert it to a :class:`NormalizedTransaction`.

    Raises :class:`~bank_ingest.errors.NormalizationError` for malformed input,
    including a record whose ``account_id`` disagrees with the bank account's
    provider id.
    """

    settings = settings or PipelineSettings()
    raw_id = raw.get("id") if isinstance(raw, Mapping) else None
    external_id = str(raw_id) if raw_id is not None else None
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"record must be a mapping, got {type(raw).__name__}")

    try:
        rec = RawBankRecord.model_validate(dict(raw))
    except ValidationError as exc:
        raise NormalizationError(_first_error(exc), external_id=external_id) from exc

    if (
        bank_account is not None
        and bank_account.external_account_id
        and rec.account_id
        and rec.account_id != bank_account.external_account_id
    ):
        raise NormalizationError(
            f"record account_id {rec.account_id!r} does not belong to bank account "
            f"{bank_account.id}",
            external_id=rec.id,
        )

    return NormalizedTransaction(
        external_id=rec.id,
        amount_minor=rec.amount,
        currency=rec.currency or settings.default_currency,
        description=rec.description,
        transaction_date=_as_utc(rec.created),
        settled_date=_as_utc(rec.settled) if rec.settled is not None else None,
        counterparty_name=_name_of(rec.counterparty),
        reference=rec.notes,
        merchant=_name_of(rec.merchant),
        provider_category=rec.category,
        provider_account_id=rec.account_id,
    )


__all__ = ["RawBankRecord", "normalize_record"]
