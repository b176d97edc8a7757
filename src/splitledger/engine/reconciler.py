"""Split reconciliation rules and the equal-split fallback.

Provides:

- :func:`validate_split` — checks whether a candidate split is safe to hand
  to persistence: one entry per participant, amounts adding up to the
  total, percentages adding up to 100.
- :func:`equal_split` — the terminal safety net that divides a total
  evenly across every participant.

Validation errors are returned as a list of human-readable strings.
An empty list means the split reconciles.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Collection, Sequence
from decimal import Decimal

from splitledger.engine.models import (
    CENT,
    Participant,
    SplitCandidate,
    SplitResult,
    to_cents,
)

#: Slack allowed between the summed split amounts and the total.
AMOUNT_TOLERANCE = Decimal("0.01")

#: Looser amount slack used by the percentage parser (two roundings).
PARSER_AMOUNT_TOLERANCE = Decimal("0.02")

#: Slack allowed between the summed percentages and 100.
PERCENTAGE_TOLERANCE = Decimal("0.1")

WARNING_PREFIX = "WARNING:"

FALLBACK_CATEGORY = "Miscellaneous"
FALLBACK_REASONING = "Equal split applied because no stated split could be reconciled."


def validate_split(
    result: SplitResult,
    participant_ids: Collection[str] | None = None,
    *,
    amount_tolerance: Decimal = AMOUNT_TOLERANCE,
    percentage_tolerance: Decimal = PERCENTAGE_TOLERANCE,
    check_percentages: bool = True,
) -> list[str]:
    """Validate a candidate split.

    Args:
        result: The split to check.
        participant_ids: Every participant that must appear exactly once.
            When ``None`` only duplicates are checked.
        amount_tolerance: Maximum ``|sum(amount) - total|``.
        percentage_tolerance: Maximum ``|sum(percentage) - 100|``.
        check_percentages: ``False`` for derived splits (the equal-split
            fallback) whose percentages are not reconciled.

    Returns:
        A list of validation error strings.  Empty means valid.
    """
    errors: list[str] = []

    if not result.splits:
        errors.append("Split has no participants.")
        return errors

    counts = Counter(result.participant_ids())
    duplicates = sorted(pid for pid, n in counts.items() if n > 1)
    if duplicates:
        errors.append(f"Participants assigned more than once: {', '.join(duplicates)}.")

    if participant_ids is not None:
        expected = set(participant_ids)
        missing = sorted(expected - counts.keys())
        unexpected = sorted(counts.keys() - expected)
        if missing:
            errors.append(f"Participants without a share: {', '.join(missing)}.")
        if unexpected:
            errors.append(f"Shares for unknown participants: {', '.join(unexpected)}.")

    negative = [s.participant_id for s in result.splits if s.amount < 0]
    if negative:
        errors.append(f"Negative share for: {', '.join(negative)}.")

    amount_sum = result.amount_sum()
    if abs(amount_sum - result.total_amount) > amount_tolerance:
        errors.append(
            f"Split amounts add up to {amount_sum}, expected {result.total_amount}."
        )

    if check_percentages:
        percentage_sum = result.percentage_sum()
        if abs(percentage_sum - Decimal("100")) > percentage_tolerance:
            errors.append(f"Split percentages add up to {percentage_sum}, expected 100.")

    return errors


def as_warnings(errors: list[str]) -> list[str]:
    """Downgrade validation errors to soft ``WARNING:`` entries."""
    return [
        e if e.startswith(WARNING_PREFIX) else f"{WARNING_PREFIX} {e}"
        for e in errors
    ]


def equal_split(
    total_amount: Decimal,
    participants: Sequence[Participant],
    *,
    description: str = "",
    category: str | None = None,
    currency: str = "USD",
    reasoning: str = FALLBACK_REASONING,
) -> SplitResult:
    """Divide *total_amount* evenly across *participants*.

    Every participant gets ``round(total / n, 2)`` and ``100 / n`` percent
    (rounded to 2dp).  Rounding slack is bounded by one cent per
    participant and is not redistributed.

    Raises:
        ValueError: If *participants* is empty.
    """
    if not participants:
        raise ValueError("Cannot split an expense across zero participants.")

    count = Decimal(len(participants))
    share = to_cents(total_amount / count)
    percentage = (Decimal("100") / count).quantize(CENT)

    return SplitResult(
        description=description,
        category=category or FALLBACK_CATEGORY,
        total_amount=total_amount,
        currency=currency,
        splits=[
            SplitCandidate(
                participant_id=p.id,
                display_name=p.display_name,
                amount=share,
                percentage=percentage,
            )
            for p in participants
        ],
        reasoning=reasoning,
    )
