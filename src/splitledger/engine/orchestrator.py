"""Three-stage split resolution.

    percentage parser → model → equal split

Every request ends in a :class:`~splitledger.engine.models.SplitResolution`
tagged with the stage that produced it.  Failures at one stage are logged
and absorbed; the equal split at the end cannot fail, so
:meth:`SplitOrchestrator.resolve_split` never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation

from splitledger.config import settings
from splitledger.engine.ai_splitter import AISplitGenerator
from splitledger.engine.llm_client import TextGenerator
from splitledger.engine.models import (
    MAX_AMOUNT,
    Participant,
    SplitResolution,
    SplitResult,
    SplitSource,
    UnmatchedName,
)
from splitledger.engine.percentage_parser import parse_percentage_split
from splitledger.engine.reconciler import FALLBACK_REASONING, equal_split
from splitledger.exceptions import (
    MalformedModelOutput,
    NoDeterministicMatch,
    ReconciliationMismatch,
    SplitGenerationError,
)

logger = logging.getLogger(__name__)

Amount = Decimal | int | float | str


def participant_set(
    participants: Sequence[Participant],
    current_user: Participant,
) -> list[Participant]:
    """Current user first, then everyone else once, in directory order."""
    everyone = [current_user]
    seen = {current_user.id}
    for p in participants:
        if p.id not in seen:
            everyone.append(p)
            seen.add(p.id)
    return everyone


def coerce_amount(value: Amount | None) -> Decimal | None:
    """Convert a caller-supplied total to ``Decimal``.

    Non-numeric, non-finite, non-positive values and values above
    :data:`~splitledger.engine.models.MAX_AMOUNT` count as "no total".
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        logger.warning("Ignoring non-numeric total amount %r", value)
        return None
    if not amount.is_finite() or amount <= 0 or amount > MAX_AMOUNT:
        logger.warning("Ignoring invalid total amount %r", value)
        return None
    return amount


class SplitOrchestrator:
    """Resolve free-form split requests into reconciled splits.

    Args:
        text_generator: Model client used when deterministic parsing fails.
        ai_splitter: Pre-built generator (overrides *text_generator*).
    """

    def __init__(
        self,
        text_generator: TextGenerator | None = None,
        ai_splitter: AISplitGenerator | None = None,
    ) -> None:
        if ai_splitter is None:
            if text_generator is None:
                raise ValueError("Either text_generator or ai_splitter is required")
            ai_splitter = AISplitGenerator(text_generator)
        self._ai = ai_splitter

    @property
    def ai_splitter(self) -> AISplitGenerator:
        return self._ai

    async def resolve_split(
        self,
        request_text: str,
        participants: Sequence[Participant],
        current_user: Participant,
        total_amount: Amount | None = None,
        category: str | None = None,
        currency: str | None = None,
    ) -> SplitResolution:
        """Resolve *request_text* into a split covering every participant.

        Args:
            request_text: Free-form request, e.g.
                ``"split $100 with John (30%) and rest on me"``.
            participants: Directory entries to split with.  The current user
                is added if absent.
            current_user: The requesting participant ("me").
            total_amount: Expense total, if known.
            category: Expense category, if known.
            currency: Currency code (defaults to ``settings.default_currency``).

        Returns:
            A :class:`SplitResolution`.  Never raises.
        """
        currency = currency or settings.default_currency
        everyone = participant_set(participants, current_user)
        total = coerce_amount(total_amount)
        unmatched: list[UnmatchedName] = []
        notes: list[str] = []
        if total is None and total_amount is not None:
            notes.append(f"WARNING: Ignored unusable total amount {str(total_amount)[:40]!r}.")

        try:
            result = self._parse_stage(
                request_text, everyone, current_user, total, category, currency, unmatched,
            )
        except NoDeterministicMatch as exc:
            logger.info("No deterministic split (%s), asking the model", exc)
        except Exception:
            logger.exception("Percentage parsing failed for: %s", request_text[:100])
        else:
            return SplitResolution(
                result=result, source=SplitSource.PARSED, unmatched=unmatched, warnings=notes,
            )

        try:
            generation = await self._ai.generate(
                request_text, everyone, current_user, total, category, currency,
            )
        except MalformedModelOutput as exc:
            logger.warning(
                "%s; falling back to equal split\nraw: %s\nrepaired: %s",
                exc, exc.raw_text, exc.repaired_text,
            )
        except ReconciliationMismatch as exc:
            logger.warning("Model split rejected (%s); falling back to equal split", exc)
        except SplitGenerationError as exc:
            logger.warning("%s; falling back to equal split", exc)
        except Exception:
            logger.exception("Unexpected error generating split for: %s", request_text[:100])
        else:
            return SplitResolution(
                result=generation.result,
                source=SplitSource.AI_GENERATED,
                unmatched=unmatched,
                warnings=notes + generation.warnings,
            )

        return self._fallback_stage(
            request_text, everyone, total, category, currency, unmatched, notes,
        )

    # ── Stages ────────────────────────────────────────────────────────────

    def _parse_stage(
        self,
        request_text: str,
        everyone: list[Participant],
        current_user: Participant,
        total: Decimal | None,
        category: str | None,
        currency: str,
        unmatched: list[UnmatchedName],
    ) -> SplitResult:
        """Run the percentage parser or raise :class:`NoDeterministicMatch`."""
        if total is None:
            raise NoDeterministicMatch("no total amount")
        if "%" not in request_text:
            raise NoDeterministicMatch("no percentages in request")

        parsed = parse_percentage_split(
            request_text, everyone, current_user, total,
            currency=currency, category=category,
        )
        unmatched.extend(parsed.unmatched)
        if parsed.result is None:
            raise NoDeterministicMatch("; ".join(parsed.errors) or "no participant matched")
        return parsed.result

    def _fallback_stage(
        self,
        request_text: str,
        everyone: list[Participant],
        total: Decimal | None,
        category: str | None,
        currency: str,
        unmatched: list[UnmatchedName],
        notes: list[str],
    ) -> SplitResolution:
        """Divide the total equally; used when nothing else produced a split."""
        warnings = list(notes)
        if total is None:
            total = settings.fallback_total_amount
            warnings.append(
                f"WARNING: No total amount given; assumed {total} for the equal split."
            )
            logger.warning("No total amount for equal split, assuming %s", total)

        result = equal_split(
            total,
            everyone,
            description=request_text,
            category=category,
            currency=currency,
            reasoning=FALLBACK_REASONING,
        )
        logger.info(
            "Equal split of %s across %d participant(s)", total, len(everyone),
        )
        return SplitResolution(
            result=result,
            source=SplitSource.FALLBACK,
            unmatched=unmatched,
            warnings=warnings,
        )
