"""Model-backed split generation.

Used when the deterministic percentage parser declines a request.  The
model's answer is untrusted: it is extracted, repaired and validated into
typed records here, once, before anything downstream sees it.

Policy for the numbers themselves: missing participants are added with a
zero share, but a total that does not add up is *flagged*, not rescaled.
Set ``settings.reject_ai_sum_mismatch`` to reject such splits instead.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from splitledger.config import settings
from splitledger.engine.json_repair import parse_model_json
from splitledger.engine.llm_client import TextGenerator
from splitledger.engine.models import (
    Participant,
    SplitCandidate,
    SplitResult,
    parse_decimal,
    to_cents,
)
from splitledger.engine.prompts import (
    EXPENSE_CATEGORIES,
    build_categorize_prompt,
    build_split_prompt,
)
from splitledger.engine.reconciler import FALLBACK_CATEGORY, as_warnings, validate_split
from splitledger.engine.resolver import resolve_participant
from splitledger.exceptions import (
    MalformedModelOutput,
    ReconciliationMismatch,
    SplitGenerationError,
)

logger = logging.getLogger(__name__)


@dataclass
class AIGeneration:
    """A model-produced split plus anything worth flagging about it."""

    result: SplitResult
    warnings: list[str] = field(default_factory=list)

    #: ``True`` when only the splits array could be recovered.
    salvaged: bool = False


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text if text and text.lower() not in ("null", "none") else default


class AISplitGenerator:
    """Turns a split request into a :class:`SplitResult` via a text generator.

    Args:
        generator: The text-generation client (injected so tests can supply
            a deterministic fake).
        reject_sum_mismatch: Raise instead of flagging when the model's
            amounts do not reconcile (defaults to
            ``settings.reject_ai_sum_mismatch``).
    """

    def __init__(
        self,
        generator: TextGenerator,
        reject_sum_mismatch: bool | None = None,
    ) -> None:
        self._generator = generator
        self._reject_sum_mismatch = (
            settings.reject_ai_sum_mismatch
            if reject_sum_mismatch is None
            else reject_sum_mismatch
        )

    async def generate(
        self,
        description: str,
        participants: Sequence[Participant],
        current_user: Participant,
        total_amount: Decimal | None = None,
        category: str | None = None,
        currency: str | None = None,
    ) -> AIGeneration:
        """Ask the model for a split and validate its answer.

        Raises:
            SplitGenerationError: The generator failed or returned nothing.
            MalformedModelOutput: The response could not be parsed or held
                no usable splits.
            ReconciliationMismatch: The amounts do not add up and
                ``reject_sum_mismatch`` is enabled.
        """
        currency = currency or settings.default_currency
        prompt = build_split_prompt(
            description, participants, current_user, total_amount, category, currency,
        )

        try:
            text = await self._generator.generate(prompt)
        except Exception as exc:
            raise SplitGenerationError(f"Text generator failed: {type(exc).__name__}: {exc}") from exc

        logger.info(
            "Model split response: %s",
            text if len(text) <= 500 else text[:500] + "...",
        )
        if not text.strip():
            raise MalformedModelOutput("Model returned an empty response", raw_text=text)

        data, salvaged = parse_model_json(text)
        generation = self._build_result(
            data,
            raw_text=text,
            description=description,
            participants=participants,
            total_amount=total_amount,
            category=category,
            currency=currency,
        )
        generation.salvaged = salvaged
        return generation

    def _build_result(
        self,
        data: dict[str, Any],
        *,
        raw_text: str,
        description: str,
        participants: Sequence[Participant],
        total_amount: Decimal | None,
        category: str | None,
        currency: str,
    ) -> AIGeneration:
        """Map parsed model output onto the request's participants."""
        raw_splits = data.get("splits")
        if not isinstance(raw_splits, list):
            raise MalformedModelOutput("Model output has no splits array", raw_text=raw_text)

        warnings: list[str] = []
        by_id = {p.id: p for p in participants}
        assigned: set[str] = set()
        splits: list[SplitCandidate] = []

        for item in raw_splits:
            if not isinstance(item, dict):
                logger.warning("Ignoring non-object split entry: %r", item)
                continue
            try:
                candidate = SplitCandidate.model_validate(item)
            except ValidationError as exc:
                logger.warning("Ignoring invalid split entry %r: %s", item, exc)
                continue

            participant = by_id.get(candidate.participant_id)
            if participant is None and candidate.display_name:
                match = resolve_participant(
                    candidate.display_name, participants, exclude_ids=assigned,
                )
                participant = match.participant if match else None
            if participant is None:
                warnings.append(
                    f"WARNING: Dropped share for unknown participant "
                    f"{candidate.display_name or candidate.participant_id!r}."
                )
                continue
            if participant.id in assigned:
                warnings.append(
                    f"WARNING: Dropped duplicate share for {participant.display_name}."
                )
                continue

            assigned.add(participant.id)
            splits.append(
                candidate.model_copy(
                    update={
                        "participant_id": participant.id,
                        "display_name": participant.display_name,
                    }
                )
            )

        if not splits:
            raise MalformedModelOutput("Model output holds no usable splits", raw_text=raw_text)

        for p in participants:
            if p.id not in assigned:
                logger.info("Model omitted %s; adding a zero share", p.display_name)
                splits.append(
                    SplitCandidate(
                        participant_id=p.id,
                        display_name=p.display_name,
                        amount=Decimal("0.00"),
                        percentage=Decimal("0"),
                    )
                )

        model_total = parse_decimal(data.get("totalAmount", data.get("total_amount")))
        if total_amount is not None:
            total = total_amount
            if model_total is not None and to_cents(model_total) != to_cents(total_amount):
                warnings.append(
                    f"WARNING: Model reported a total of {to_cents(model_total)}, "
                    f"request total is {to_cents(total_amount)}."
                )
        elif model_total is not None:
            total = model_total
        else:
            total = sum((s.amount for s in splits), Decimal("0"))

        result = SplitResult(
            description=_text(data.get("description"), description),
            category=category or _text(data.get("category"), FALLBACK_CATEGORY),
            subcategory=_text(data.get("subcategory")) or None,
            total_amount=total,
            currency=_text(data.get("currency"), currency),
            splits=splits,
            reasoning=_text(data.get("reasoning")),
        )

        errors = validate_split(result, by_id.keys())
        if errors:
            if self._reject_sum_mismatch:
                raise ReconciliationMismatch(errors)
            logger.warning(
                "Model split does not reconcile, keeping model numbers: %s",
                "; ".join(errors),
            )
            warnings.extend(as_warnings(errors))

        return AIGeneration(result=result, warnings=warnings)

    async def categorize_expense(self, description: str) -> str:
        """Pick one of :data:`EXPENSE_CATEGORIES` for *description*.

        Returns ``"Miscellaneous"`` when the model fails or answers with
        something outside the list.
        """
        try:
            text = await self._generator.generate(build_categorize_prompt(description))
        except Exception:
            logger.exception("Categorization failed for: %s", description[:100])
            return FALLBACK_CATEGORY

        answer = text.strip().strip(".\"'`*").lower()
        for category in EXPENSE_CATEGORIES:
            if answer == category.lower():
                return category
        for category in EXPENSE_CATEGORIES:
            if category.lower() in answer:
                return category

        logger.info("Model category %r not recognised, using %s", text.strip(), FALLBACK_CATEGORY)
        return FALLBACK_CATEGORY
