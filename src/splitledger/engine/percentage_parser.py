"""Deterministic parsing of percentage split requests.

Handles requests such as::

    split $100 with John (30%) and rest on me
    dinner $60 with Alice (40%) Bob (60%)

Each ``<name> (<N>%)`` occurrence is resolved against the participant
directory, with "me" (or "myself") standing for the current user; a
"rest on me" phrase hands the remaining percentage to the current user.
The parser never partially succeeds: a candidate set that does not
reconcile is discarded as a whole.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from splitledger.engine.models import (
    Participant,
    SplitCandidate,
    SplitResult,
    UnmatchedName,
    to_cents,
)
from splitledger.engine.reconciler import (
    PARSER_AMOUNT_TOLERANCE,
    PERCENTAGE_TOLERANCE,
    validate_split,
)
from splitledger.engine.resolver import (
    SCORE_EXACT,
    NameMatch,
    normalize_name,
    resolve_participant,
    suggest_participants,
)

logger = logging.getLogger(__name__)

_PERCENTAGE_PATTERN = re.compile(
    r"(?:^|[^a-zA-Z])([a-zA-Z]+(?:\s+[a-zA-Z]+)*)\s*\((\d+(?:\.\d+)?)\s*%\)",
)
_REMAINDER_PATTERN = re.compile(
    r"\b(?:rest|remaining|remainder)\s+(?:on|to|for)\s+me\b",
    re.IGNORECASE,
)

DEFAULT_CATEGORY = "General"

# Phrases that name the requester rather than a directory entry.
_SELF_REFERENCES = frozenset({"me", "myself", "self"})


@dataclass
class PercentageParse:
    """Outcome of :func:`parse_percentage_split`.

    ``result`` is ``None`` when no reconciled split could be built; the
    caller should then try the model.
    """

    result: SplitResult | None = None
    unmatched: list[UnmatchedName] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def extract_percentage_mentions(text: str) -> list[tuple[str, Decimal]]:
    """Return ``(name_phrase, percentage)`` pairs found in *text*.

    Leading filler words ("with", "and", a bare comma) are stripped from
    each phrase.
    """
    mentions: list[tuple[str, Decimal]] = []
    for match in _PERCENTAGE_PATTERN.finditer(text):
        phrase = normalize_name(match.group(1))
        if phrase:
            mentions.append((phrase, Decimal(match.group(2))))
    return mentions


def has_remainder_phrase(text: str) -> bool:
    """``True`` if *text* asks for the remainder to go to the current user."""
    return bool(_REMAINDER_PATTERN.search(text))


def parse_percentage_split(
    text: str,
    participants: Sequence[Participant],
    current_user: Participant,
    total_amount: Decimal,
    *,
    currency: str = "USD",
    category: str | None = None,
) -> PercentageParse:
    """Turn an explicit percentage request into a reconciled split.

    Args:
        text: The raw request text.
        participants: Everyone in the split, current user included.
        current_user: The requesting participant ("me").
        total_amount: Expense total to distribute.
        currency: Currency code for the result.
        category: Category to attach (defaults to ``"General"``).

    Returns:
        A :class:`PercentageParse`.  ``result`` is set only when every
        participant received exactly one share and the amounts and
        percentages reconcile.
    """
    outcome = PercentageParse()
    mentions = extract_percentage_mentions(text)
    if not mentions:
        return outcome

    splits: list[SplitCandidate] = []
    assigned: set[str] = set()
    percentage_sum = Decimal("0")

    for phrase, percentage in mentions:
        if phrase in _SELF_REFERENCES and current_user.id not in assigned:
            match = NameMatch(current_user, SCORE_EXACT)
        else:
            match = resolve_participant(phrase, participants, exclude_ids=assigned)
        if match is None:
            logger.info("No participant matches %r", phrase)
            outcome.unmatched.append(
                UnmatchedName(
                    name_phrase=phrase,
                    suggestions=suggest_participants(phrase, participants, exclude_ids=assigned),
                )
            )
            continue

        logger.debug(
            "Matched %r to %s (score %d)",
            phrase, match.participant.display_name, match.score,
        )
        splits.append(
            SplitCandidate(
                participant_id=match.participant.id,
                display_name=match.participant.display_name,
                amount=to_cents(total_amount * percentage / Decimal("100")),
                percentage=percentage,
            )
        )
        assigned.add(match.participant.id)
        percentage_sum += percentage

    if has_remainder_phrase(text) and current_user.id not in assigned:
        remaining = Decimal("100") - percentage_sum
        splits.append(
            SplitCandidate(
                participant_id=current_user.id,
                display_name=current_user.display_name,
                amount=to_cents(total_amount * remaining / Decimal("100")),
                percentage=remaining,
            )
        )
        assigned.add(current_user.id)

    if not splits:
        return outcome

    candidate = SplitResult(
        description="Percentage-based split: "
        + ", ".join(f"{s.display_name} ({s.percentage}%)" for s in splits),
        category=category or DEFAULT_CATEGORY,
        total_amount=total_amount,
        currency=currency,
        splits=splits,
        reasoning="Split based on specified percentages: "
        + ", ".join(f"{s.display_name} pays {s.percentage}% = {s.amount}" for s in splits),
    )

    outcome.errors = validate_split(
        candidate,
        [p.id for p in participants],
        amount_tolerance=PARSER_AMOUNT_TOLERANCE,
        percentage_tolerance=PERCENTAGE_TOLERANCE,
    )
    if outcome.errors:
        logger.info("Percentage split rejected: %s", "; ".join(outcome.errors))
        return outcome

    outcome.result = candidate
    return outcome
