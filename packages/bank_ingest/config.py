"""Runtime settings for the ingestion pipeline.

Values come from the environment (optionally populated from ``.env`` by the
CLI via python-dotenv). Every entry point also accepts an explicit
``settings=`` argument, which tests use to avoid touching the environment.

Environment variables
---------------------
- ``BANK_INGEST_FUZZY_THRESHOLD``: minimum description similarity (0..1) for a
  fuzzy duplicate. Default ``0.8``.
- ``BANK_INGEST_FUZZY_WINDOW_SECONDS``: maximum distance between transaction
  timestamps for a fuzzy duplicate. Default ``86400`` (one day).
- ``BANK_INGEST_FUZZY_CANDIDATE_LIMIT``: cap on prior rows examined per fuzzy
  lookup. Default ``100``.
- ``BANK_INGEST_DEFAULT_CURRENCY``: currency assumed when a record omits one.
  Default ``GBP``.
"""

from __future__ import annotations

import os
from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_ENV_PREFIX = "BANK_INGEST_"


class PipelineSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    fuzzy_similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    fuzzy_window_seconds: int = Field(default=86_400, gt=0)
    fuzzy_candidate_limit: int = Field(default=100, gt=0)
    default_currency: str = "GBP"

    @field_validator("default_currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO code")
        return code

    @property
    def fuzzy_window(self) -> timedelta:
        return timedelta(seconds=self.fuzzy_window_seconds)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> PipelineSettings:
        """Build settings from ``BANK_INGEST_*`` variables; invalid values raise ``ValueError``."""

        env = os.environ if environ is None else environ
        raw: dict[str, str] = {}
        for name, key in (
            ("fuzzy_similarity_threshold", "FUZZY_THRESHOLD"),
            ("fuzzy_window_seconds", "FUZZY_WINDOW_SECONDS"),
            ("fuzzy_candidate_limit", "FUZZY_CANDIDATE_LIMIT"),
            ("default_currency", "DEFAULT_CURRENCY"),
        ):
            val = env.get(_ENV_PREFIX + key)
            if val is not None and val.strip():
                raw[name] = val.strip()
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"invalid {_ENV_PREFIX}* setting: {exc}") from exc


__all__ = ["PipelineSettings"]
