"""Typed records for the split-resolution flow.

Provides:

- :class:`Participant` — an entry of the participant directory.
- :class:`SplitCandidate` — one participant's share, before persistence.
- :class:`SplitResult` — a complete, reconciled distribution of an expense.
- :class:`SplitSource` — which resolution stage produced a result.
- :class:`UnmatchedName` — a name phrase that could not be resolved, with
  ranked suggestions for the user to pick from.
- :class:`SplitResolution` — the tagged outcome returned to callers.

All model-facing and row-facing data passes through these models once, at
ingestion; business logic never handles loose dicts.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

from splitledger.exceptions import AmbiguousOrUnmatchedName

CENT = Decimal("0.01")

# Largest value a Numeric(12, 2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")


def to_cents(value: Decimal) -> Decimal:
    """Round a monetary value half-up to two decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(value: Any) -> Decimal | None:
    """Read a number written the way people and models write it.

    Accepts ``"$1,200.50"``, ``"30%"`` and plain numbers.  Returns ``None``
    for anything non-numeric, non-finite or larger than :data:`MAX_AMOUNT`.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip().replace(",", "").lstrip("$").rstrip("%").strip()
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    if not result.is_finite() or abs(result) > MAX_AMOUNT:
        return None
    return result


def _loose_number(v: Any) -> Any:
    if isinstance(v, str):
        parsed = parse_decimal(v)
        return v if parsed is None else parsed
    return v


def _in_range(v: Decimal) -> Decimal:
    if not v.is_finite() or abs(v) > MAX_AMOUNT:
        raise ValueError(f"amount out of range: {v}")
    return to_cents(v)


# ── Participants ──────────────────────────────────────────────────────────────


class Participant(BaseModel):
    """A person who can take part in a split.

    ``id`` is the identity key.  ``display_name`` is the only field used for
    fuzzy matching and is not guaranteed to be unique.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    display_name: str = Field(
        validation_alias=AliasChoices("display_name", "displayName", "name"),
        serialization_alias="name",
    )
    email: str = ""


# ── Splits ────────────────────────────────────────────────────────────────────


class SplitCandidate(BaseModel):
    """One participant's share of an expense."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    participant_id: str = Field(
        default="",
        validation_alias=AliasChoices("participant_id", "participantId", "userId"),
        serialization_alias="userId",
    )
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("display_name", "displayName", "userName", "name"),
        serialization_alias="userName",
    )
    amount: Decimal = Decimal("0.00")
    percentage: Decimal = Decimal("0")

    @field_validator("amount", mode="before")
    @classmethod
    def loose_amount(cls, v: Any) -> Any:
        return Decimal("0.00") if v is None else _loose_number(v)

    @field_validator("percentage", mode="before")
    @classmethod
    def loose_percentage(cls, v: Any) -> Any:
        return Decimal("0") if v is None else _loose_number(v)

    @field_validator("amount")
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return _in_range(v)

    @field_serializer("amount", "percentage", when_used="json")
    def decimal_as_number(self, v: Decimal) -> float:
        return float(v)


class SplitResult(BaseModel):
    """A distribution of ``total_amount`` across every participant.

    ``splits`` holds exactly one entry per participant.  Amounts add up to
    the total within a cent and percentages to 100 within 0.1, except for
    the equal-split fallback whose percentages are derived, not stated.
    """

    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    category: str = "General"
    subcategory: str | None = None
    total_amount: Decimal = Field(
        validation_alias=AliasChoices("total_amount", "totalAmount"),
        serialization_alias="totalAmount",
    )
    currency: str = "USD"
    splits: list[SplitCandidate] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("total_amount", mode="before")
    @classmethod
    def loose_total(cls, v: Any) -> Any:
        return _loose_number(v)

    @field_validator("total_amount")
    @classmethod
    def round_total(cls, v: Decimal) -> Decimal:
        return _in_range(v)

    @field_serializer("total_amount", when_used="json")
    def decimal_as_number(self, v: Decimal) -> float:
        return float(v)

    def amount_sum(self) -> Decimal:
        """Sum of all split amounts."""
        return sum((s.amount for s in self.splits), Decimal("0"))

    def percentage_sum(self) -> Decimal:
        """Sum of all split percentages."""
        return sum((s.percentage for s in self.splits), Decimal("0"))

    def participant_ids(self) -> list[str]:
        """Participant IDs in split order (duplicates preserved)."""
        return [s.participant_id for s in self.splits]


# ── Resolution outcome ────────────────────────────────────────────────────────


class SplitSource(StrEnum):
    """Resolution stage that produced a :class:`SplitResult`."""

    PARSED = "parsed"
    AI_GENERATED = "ai_generated"
    FALLBACK = "fallback"


class UnmatchedName(BaseModel):
    """A name phrase from the request that matched no participant."""

    name_phrase: str
    suggestions: list[Participant] = Field(default_factory=list)


class SplitResolution(BaseModel):
    """Outcome of :func:`~splitledger.engine.resolve_split`.

    Carries the result together with its provenance so callers and tests
    can tell which stage produced it.
    """

    result: SplitResult
    source: SplitSource

    #: Name phrases the user should disambiguate before confirming.
    unmatched: list[UnmatchedName] = Field(default_factory=list)

    #: Soft reconciliation issues (e.g. a model total that does not add up).
    warnings: list[str] = Field(default_factory=list)

    @property
    def needs_attention(self) -> bool:
        """``True`` if the user should review names or sums before saving."""
        return bool(self.unmatched or self.warnings)

    def raise_for_unmatched(self) -> None:
        """Raise for the first name phrase that matched no participant.

        Raises:
            AmbiguousOrUnmatchedName: Carrying the ranked suggestions.
        """
        if self.unmatched:
            first = self.unmatched[0]
            raise AmbiguousOrUnmatchedName(first.name_phrase, first.suggestions)
