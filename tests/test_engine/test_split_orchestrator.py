"""Tests for three-stage split resolution (parser → model → equal split)."""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import splitledger.engine as engine_pkg
from splitledger.engine.ai_splitter import AISplitGenerator
from splitledger.engine.models import Participant, SplitSource
from splitledger.engine.orchestrator import (
    SplitOrchestrator,
    coerce_amount,
    participant_set,
)

# ── Helpers ───────────────────────────────────────────────────────────────────

MAYA = Participant(id="u1", display_name="Maya")
JOHN = Participant(id="u2", display_name="John")
ALICE = Participant(id="u3", display_name="Alice")
BOB = Participant(id="u4", display_name="Bob")
JOHN_SMITH = Participant(id="u5", display_name="John Smith")


class FakeTextGenerator:
    """Deterministic stand-in for a model: returns canned responses in order."""

    def __init__(self, *responses: str | Exception) -> None:
        self._responses = list(responses)
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _orchestrator(*responses: str | Exception) -> tuple[SplitOrchestrator, FakeTextGenerator]:
    fake = FakeTextGenerator(*responses)
    return SplitOrchestrator(text_generator=fake), fake


# ── Helper function tests ─────────────────────────────────────────────────────


def test_participant_set_puts_current_user_first_once() -> None:
    assert participant_set([JOHN, MAYA, JOHN, ALICE], MAYA) == [MAYA, JOHN, ALICE]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (100, Decimal("100")),
        ("42.50", Decimal("42.50")),
        (12.5, Decimal("12.5")),
        (None, None),
        ("abc", None),
        (0, None),
        (-5, None),
        ("NaN", None),
        (True, None),
        ("9999999999.99", Decimal("9999999999.99")),
        ("10000000000", None),
        ("1e26", None),
    ],
)
def test_coerce_amount(value, expected) -> None:
    assert coerce_amount(value) == expected


def test_orchestrator_requires_a_generator() -> None:
    with pytest.raises(ValueError):
        SplitOrchestrator()


# ── resolve_split tests ───────────────────────────────────────────────────────


class TestResolveSplit:
    """Stage selection and provenance tagging."""

    @pytest.mark.asyncio
    async def test_parsed_stage(self) -> None:
        """'split $100 with John (30%) and rest on me' never reaches the model."""
        orch, fake = _orchestrator()
        resolution = await orch.resolve_split(
            "split $100 with John (30%) and rest on me", [JOHN], MAYA, total_amount=100,
        )

        assert resolution.source is SplitSource.PARSED
        assert fake.calls == 0
        shares = {s.participant_id: s.amount for s in resolution.result.splits}
        assert shares == {"u2": Decimal("30.00"), "u1": Decimal("70.00")}
        assert resolution.needs_attention is False

    @pytest.mark.asyncio
    async def test_ai_stage_when_parser_declines(self) -> None:
        answer = json.dumps({
            "splits": [
                {"userId": "u1", "amount": 25, "percentage": 50},
                {"userId": "u2", "amount": 25, "percentage": 50},
            ],
        })
        orch, fake = _orchestrator(answer)
        resolution = await orch.resolve_split("lunch with John", [JOHN], MAYA, total_amount="50")

        assert resolution.source is SplitSource.AI_GENERATED
        assert fake.calls == 1
        assert resolution.result.amount_sum() == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_uncovered_percentages_fall_back_to_equal_split(self) -> None:
        """Alice 40% / Bob 60% leaves Maya out; the model fails; equal split wins."""
        orch, fake = _orchestrator("not json")
        resolution = await orch.resolve_split(
            "dinner with Alice (40%) Bob (60%)", [ALICE, BOB], MAYA, total_amount=60,
        )

        assert resolution.source is SplitSource.FALLBACK
        assert fake.calls == 1
        assert [s.amount for s in resolution.result.splits] == [Decimal("20.00")] * 3
        assert resolution.result.participant_ids() == ["u1", "u3", "u4"]

    @pytest.mark.asyncio
    async def test_generator_failure_falls_back(self) -> None:
        orch, _ = _orchestrator(ConnectionError("down"))
        resolution = await orch.resolve_split("taxi with John", [JOHN], MAYA, total_amount=30)

        assert resolution.source is SplitSource.FALLBACK
        assert [s.amount for s in resolution.result.splits] == [Decimal("15.00")] * 2

    @pytest.mark.asyncio
    async def test_rejected_mismatch_falls_back(self) -> None:
        answer = json.dumps({"splits": [
            {"userId": "u1", "amount": 10, "percentage": 50},
            {"userId": "u2", "amount": 10, "percentage": 50},
        ]})
        splitter = AISplitGenerator(FakeTextGenerator(answer), reject_sum_mismatch=True)
        orch = SplitOrchestrator(ai_splitter=splitter)

        resolution = await orch.resolve_split("taxi", [JOHN], MAYA, total_amount=30)

        assert resolution.source is SplitSource.FALLBACK

    @pytest.mark.asyncio
    async def test_unexpected_error_falls_back(self) -> None:
        splitter = MagicMock()
        splitter.generate = AsyncMock(side_effect=KeyError("boom"))
        orch = SplitOrchestrator(ai_splitter=splitter)

        resolution = await orch.resolve_split("taxi", [JOHN], MAYA, total_amount=30)

        assert resolution.source is SplitSource.FALLBACK

    @pytest.mark.asyncio
    async def test_fallback_without_total_uses_default(self) -> None:
        orch, _ = _orchestrator("nope")
        resolution = await orch.resolve_split("pizza with John", [JOHN], MAYA)

        assert resolution.source is SplitSource.FALLBACK
        assert resolution.result.total_amount == Decimal("50.00")
        assert [s.amount for s in resolution.result.splits] == [Decimal("25.00")] * 2
        assert resolution.warnings and resolution.warnings[0].startswith("WARNING:")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", ["1e26", "1e30", Decimal("1E+40")])
    async def test_unstorable_total_falls_back_without_raising(self, total) -> None:
        """A total too large to round to cents is ignored, not fatal."""
        orch, _ = _orchestrator("nope")
        resolution = await orch.resolve_split("taxi with John", [JOHN], MAYA, total)

        assert resolution.source is SplitSource.FALLBACK
        assert resolution.result.total_amount == Decimal("50.00")
        assert resolution.warnings[0].startswith("WARNING: Ignored unusable total amount")
        assert any("assumed 50" in w for w in resolution.warnings)

    @pytest.mark.asyncio
    async def test_model_total_too_large_is_ignored(self) -> None:
        answer = json.dumps({
            "totalAmount": "1e26",
            "splits": [
                {"userId": "u1", "amount": 20, "percentage": 50},
                {"userId": "u2", "amount": 20, "percentage": 50},
            ],
        })
        orch, _ = _orchestrator(answer)
        resolution = await orch.resolve_split("taxi with John", [JOHN], MAYA)

        assert resolution.source is SplitSource.AI_GENERATED
        assert resolution.result.total_amount == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_unmatched_names_surface_with_suggestions(self) -> None:
        """'Jon' is reported with 'John Smith' as a suggestion."""
        orch, _ = _orchestrator(RuntimeError("model unavailable"))
        resolution = await orch.resolve_split(
            "split with Jon (30%) and rest on me", [JOHN_SMITH], MAYA, total_amount=100,
        )

        assert resolution.source is SplitSource.FALLBACK
        assert len(resolution.unmatched) == 1
        assert resolution.unmatched[0].suggestions == [JOHN_SMITH]
        assert resolution.needs_attention is True

    @pytest.mark.asyncio
    async def test_every_outcome_covers_each_participant_once(self) -> None:
        orch, _ = _orchestrator("garbage")
        resolution = await orch.resolve_split(
            "split it", [JOHN, ALICE, JOHN], MAYA, total_amount=Decimal("10"),
        )
        ids = resolution.result.participant_ids()
        assert sorted(ids) == ["u1", "u2", "u3"]
        assert len(ids) == len(set(ids))


# ── Module-level entry points ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_module_resolve_split_uses_injected_generator() -> None:
    fake = FakeTextGenerator("not json")
    engine_pkg.set_text_generator(fake)
    try:
        resolution = await engine_pkg.resolve_split("coffee", [JOHN], MAYA, total_amount=8)
    finally:
        engine_pkg.set_orchestrator(None)
        engine_pkg._text_generator = None

    assert resolution.source is SplitSource.FALLBACK
    assert fake.calls == 1


@pytest.mark.asyncio
async def test_module_categorize_expense() -> None:
    orch = MagicMock()
    orch.ai_splitter.categorize_expense = AsyncMock(return_value="Travel")

    with patch.object(engine_pkg, "get_orchestrator", return_value=orch):
        assert await engine_pkg.categorize_expense("flight") == "Travel"
