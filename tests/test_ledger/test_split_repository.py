"""Tests for the ledger repository (participant directory + split records)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from splitledger.engine.models import SplitCandidate, SplitResult
from splitledger.exceptions import ReconciliationMismatch
from splitledger.ledger.models import Expense, ExpenseSplit
from splitledger.ledger.repository import (
    as_uuid,
    get_participants,
    get_unpaid_split_records,
    get_user,
    save_split_result,
)

# ── Helpers ───────────────────────────────────────────────────────────────────

MAYA_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
JOHN_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
ALICE_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")


def _user(user_id: uuid.UUID, name: str) -> MagicMock:
    user = MagicMock()
    user.id = user_id
    user.name = name
    user.email = f"{name.lower()}@example.com"
    return user


def _scalar_result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _scalars_result(values: list) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    return result


def _write_session(known_ids: tuple[uuid.UUID, ...] = (MAYA_ID, JOHN_ID, ALICE_ID)) -> AsyncMock:
    """A session mock whose ``begin_nested()`` works as an async context manager.

    The user lookup made before writing finds *known_ids*.
    """
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_scalars_result(list(known_ids)))
    session.add = MagicMock()
    session.flush = AsyncMock()
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=nested)
    return session


def _split_result(*shares: tuple[uuid.UUID, str, str], total: str = "30") -> SplitResult:
    return SplitResult(
        description="Taxi",
        category="Transportation",
        total_amount=Decimal(total),
        currency="USD",
        splits=[
            SplitCandidate(participant_id=str(uid), amount=Decimal(a), percentage=Decimal(p))
            for uid, a, p in shares
        ],
        reasoning="Split evenly",
    )


# ── as_uuid tests ─────────────────────────────────────────────────────────────


def test_as_uuid_parses_strings() -> None:
    assert as_uuid(str(MAYA_ID)) == MAYA_ID
    assert as_uuid(MAYA_ID) is MAYA_ID


def test_as_uuid_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        as_uuid("not-a-uuid")


# ── Participant directory tests ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_user_found() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_scalar_result(_user(MAYA_ID, "Maya")))

    participant = await get_user(session, str(MAYA_ID))

    assert participant is not None
    assert participant.id == str(MAYA_ID)
    assert participant.display_name == "Maya"
    assert participant.email == "maya@example.com"


@pytest.mark.asyncio
async def test_get_user_missing() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_scalar_result(None))

    assert await get_user(session, str(MAYA_ID)) is None


@pytest.mark.asyncio
async def test_get_participants_current_user_first() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=[
        _scalar_result(_user(MAYA_ID, "Maya")),
        _scalars_result([_user(ALICE_ID, "Alice"), _user(JOHN_ID, "John")]),
    ])

    participants = await get_participants(session, str(MAYA_ID))

    assert [p.display_name for p in participants] == ["Maya", "Alice", "John"]
    assert session.execute.await_count == 2


@pytest.mark.asyncio
async def test_get_participants_with_explicit_friends_skips_self() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=[
        _scalar_result(_user(MAYA_ID, "Maya")),
        _scalars_result([_user(JOHN_ID, "John"), _user(MAYA_ID, "Maya")]),
    ])

    participants = await get_participants(
        session, str(MAYA_ID), [str(JOHN_ID), str(MAYA_ID)],
    )

    assert [p.id for p in participants] == [str(MAYA_ID), str(JOHN_ID)]


@pytest.mark.asyncio
async def test_get_participants_unknown_user() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_scalar_result(None))

    assert await get_participants(session, str(MAYA_ID)) == []
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_get_participants_invalid_friend_id() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_scalar_result(_user(MAYA_ID, "Maya")))

    with pytest.raises(ValueError):
        await get_participants(session, str(MAYA_ID), ["bogus"])


# ── Split record reader tests ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_unpaid_split_records_maps_rows() -> None:
    created = datetime(2026, 5, 1, tzinfo=timezone.utc)
    expense_id = uuid.uuid4()
    row = {
        "expense_id": expense_id,
        "payer_id": MAYA_ID,
        "payer_name": "Maya",
        "participant_id": JOHN_ID,
        "participant_name": "John",
        "amount": Decimal("15.00"),
        "paid": False,
        "created_at": created,
        "description": "Taxi",
        "category": None,
    }
    result = MagicMock()
    result.mappings.return_value.all.return_value = [row]
    session = AsyncMock()
    session.execute = AsyncMock(return_value=result)

    records = await get_unpaid_split_records(session, str(MAYA_ID))

    assert len(records) == 1
    record = records[0]
    assert record.expense_id == str(expense_id)
    assert record.payer_id == str(MAYA_ID)
    assert record.participant_id == str(JOHN_ID)
    assert record.amount == Decimal("15.00")
    assert record.created_at == created

    sql = str(session.execute.call_args[0][0])
    assert "expense_splits.paid IS" in sql
    assert "ORDER BY expenses.created_at DESC" in sql


# ── save_split_result tests ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_save_split_result_writes_expense_and_splits_together() -> None:
    """The expense and every split are added and flushed inside one savepoint."""
    session = _write_session()
    result = _split_result((MAYA_ID, "15", "50"), (JOHN_ID, "15", "50"))

    expense = await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    session.begin_nested.assert_called_once()
    session.add.assert_called_once()
    session.flush.assert_awaited_once()

    added = session.add.call_args[0][0]
    assert added is expense
    assert isinstance(expense, Expense)
    assert expense.user_id == MAYA_ID
    assert expense.amount == Decimal("30.00")
    assert expense.category == "Transportation"
    assert expense.reasoning == "Split evenly"
    assert len(expense.splits) == 2
    assert all(isinstance(s, ExpenseSplit) for s in expense.splits)
    assert [s.user_id for s in expense.splits] == [MAYA_ID, JOHN_ID]
    assert [s.percentage for s in expense.splits] == [Decimal("50"), Decimal("50")]


@pytest.mark.asyncio
async def test_save_split_result_accepts_equal_split_rounding() -> None:
    """Three-way 100.00 → 33.33 each is off by a cent and still saved."""
    session = _write_session()
    result = _split_result(
        (MAYA_ID, "33.33", "33.33"),
        (JOHN_ID, "33.33", "33.33"),
        (ALICE_ID, "33.33", "33.33"),
        total="100",
    )

    expense = await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    assert len(expense.splits) == 3


@pytest.mark.asyncio
async def test_save_split_result_zero_percentage_stored_as_null() -> None:
    session = _write_session()
    result = _split_result((MAYA_ID, "30", "0"), (JOHN_ID, "0", "0"))

    expense = await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    assert [s.percentage for s in expense.splits] == [None, None]


@pytest.mark.asyncio
async def test_save_split_result_rejects_mismatch_before_writing() -> None:
    session = _write_session()
    result = _split_result((MAYA_ID, "10", "50"), (JOHN_ID, "10", "50"))

    with pytest.raises(ReconciliationMismatch):
        await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    session.begin_nested.assert_not_called()
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_save_split_result_rejects_duplicates() -> None:
    session = _write_session()
    result = _split_result((JOHN_ID, "15", "50"), (JOHN_ID, "15", "50"))

    with pytest.raises(ReconciliationMismatch) as exc_info:
        await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    assert any("more than once" in e for e in exc_info.value.errors)
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_save_split_result_flush_failure_propagates() -> None:
    """A failing flush leaves the savepoint to roll the whole expense back."""
    session = _write_session()
    session.flush = AsyncMock(side_effect=RuntimeError("constraint violated"))
    result = _split_result((MAYA_ID, "15", "50"), (JOHN_ID, "15", "50"))

    with pytest.raises(RuntimeError):
        await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    nested = session.begin_nested.return_value
    exit_args = nested.__aexit__.call_args[0]
    assert exit_args[0] is RuntimeError


@pytest.mark.asyncio
async def test_save_split_result_rejects_non_positive_total() -> None:
    session = _write_session()
    result = _split_result((MAYA_ID, "0", "50"), (JOHN_ID, "0", "50"), total="0")

    with pytest.raises(ReconciliationMismatch) as exc_info:
        await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    assert any("must be positive" in e for e in exc_info.value.errors)
    session.execute.assert_not_called()
    session.begin_nested.assert_not_called()


@pytest.mark.asyncio
async def test_save_split_result_rejects_percentage_out_of_range() -> None:
    session = _write_session()
    result = _split_result((MAYA_ID, "15", "1500"), (JOHN_ID, "15", "50"))

    with pytest.raises(ReconciliationMismatch) as exc_info:
        await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    assert exc_info.value.errors == [f"Percentage outside 0-100 for: {MAYA_ID}."]
    session.begin_nested.assert_not_called()


@pytest.mark.asyncio
async def test_save_split_result_rejects_unknown_participant() -> None:
    stranger = uuid.UUID("00000000-0000-0000-0000-000000000009")
    session = _write_session(known_ids=(MAYA_ID,))
    result = _split_result((MAYA_ID, "15", "50"), (stranger, "15", "50"))

    with pytest.raises(ReconciliationMismatch) as exc_info:
        await save_split_result(session, payer_id=str(MAYA_ID), result=result)

    assert exc_info.value.errors == [f"Unknown users: {stranger}."]
    session.execute.assert_awaited_once()
    session.add.assert_not_called()
