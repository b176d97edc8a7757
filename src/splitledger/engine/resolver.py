"""Fuzzy resolution of free-text name phrases to participants.

The scoring function is pure: it takes two strings and returns a 0-100
confidence.  Resolution picks the best-scoring participant, keeping the
first one seen on ties so results are deterministic.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Sequence
from dataclasses import dataclass

from splitledger.config import settings
from splitledger.engine.models import Participant

_WHITESPACE = re.compile(r"\s+")
_LEADING_FILLER = re.compile(r"^(?:(?:with|and)\b|,)\s*", re.IGNORECASE)

SCORE_EXACT = 100
SCORE_CANDIDATE_CONTAINS = 80
SCORE_TOKEN_CONTAINS = 70
SCORE_PER_WORD = 20
SCORE_WORD_CAP = 60

# Candidate words this short never count toward word overlap.
_MIN_WORD_LENGTH = 3
_MIN_SHARED_PREFIX = 2


@dataclass(frozen=True)
class NameMatch:
    """A participant together with the score that selected it."""

    participant: Participant
    score: int


def normalize_name(text: str) -> str:
    """Lower-case, collapse whitespace and drop leading filler words.

    ``"  with   John  Smith"`` → ``"john smith"``.
    """
    normalized = _WHITESPACE.sub(" ", text.lower()).strip()
    while True:
        stripped = _LEADING_FILLER.sub("", normalized, count=1).strip()
        if stripped == normalized:
            return normalized
        normalized = stripped


def score_name_match(token: str, candidate_name: str) -> int:
    """Score how well *token* refers to a participant named *candidate_name*.

    Returns:
        - 100 for an exact (normalized) match
        - 80 if the candidate name contains the token
        - 70 if the token contains the candidate name
        - otherwise 20 per overlapping word, capped at 60
        - 0 when nothing overlaps
    """
    token_norm = normalize_name(token)
    candidate_norm = normalize_name(candidate_name)
    if not token_norm or not candidate_norm:
        return 0

    if token_norm == candidate_norm:
        return SCORE_EXACT
    if token_norm in candidate_norm:
        return SCORE_CANDIDATE_CONTAINS
    if candidate_norm in token_norm:
        return SCORE_TOKEN_CONTAINS

    token_words = token_norm.split(" ")
    matching = [
        word
        for word in candidate_norm.split(" ")
        if len(word) >= _MIN_WORD_LENGTH
        and any(tw in word or word in tw for tw in token_words)
    ]
    if matching:
        return min(SCORE_WORD_CAP, SCORE_PER_WORD * len(matching))
    return 0


def rank_participants(
    token: str,
    participants: Sequence[Participant],
    exclude_ids: Collection[str] = (),
) -> list[NameMatch]:
    """Score every participant not in *exclude_ids*, best first.

    The sort is stable, so equal scores keep directory order.
    """
    scored = [
        NameMatch(participant=p, score=score_name_match(token, p.display_name))
        for p in participants
        if p.id not in exclude_ids
    ]
    return sorted(scored, key=lambda m: m.score, reverse=True)


def resolve_participant(
    token: str,
    participants: Sequence[Participant],
    exclude_ids: Collection[str] = (),
    threshold: int | None = None,
) -> NameMatch | None:
    """Return the best match for *token*, or ``None`` below the threshold.

    Args:
        token: Free-text name phrase (e.g. ``"with John"``).
        participants: Directory to search, in priority order.
        exclude_ids: Participants already claimed in the current parse.
        threshold: Minimum accepted score (defaults to
            ``settings.name_match_threshold``).
    """
    if threshold is None:
        threshold = settings.name_match_threshold

    ranked = rank_participants(token, participants, exclude_ids)
    if not ranked or ranked[0].score < threshold or ranked[0].score == 0:
        return None
    return ranked[0]


def _shared_prefix(a: str, b: str) -> int:
    n = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        n += 1
    return n


def suggest_participants(
    token: str,
    participants: Sequence[Participant],
    exclude_ids: Collection[str] = (),
    limit: int = 3,
) -> list[Participant]:
    """Rank likely participants for a phrase that did not resolve.

    A participant is suggested when any word of its name shares at least
    two leading characters with a word of the phrase, or when it scored
    above zero.  Ordered by score, then prefix length, then directory order.
    """
    token_words = normalize_name(token).split(" ")
    ranked: list[tuple[int, int, int, Participant]] = []
    for index, participant in enumerate(participants):
        if participant.id in exclude_ids:
            continue
        score = score_name_match(token, participant.display_name)
        prefix = max(
            (
                _shared_prefix(tw, cw)
                for tw in token_words
                for cw in normalize_name(participant.display_name).split(" ")
            ),
            default=0,
        )
        if score > 0 or prefix >= _MIN_SHARED_PREFIX:
            ranked.append((-score, -prefix, index, participant))

    ranked.sort(key=lambda item: item[:3])
    return [item[3] for item in ranked[:limit]]
