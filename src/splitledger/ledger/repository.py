"""Database repository for the participant directory and split records.

Provides async functions used by the HTTP layer:

- participant lookup (:func:`get_user`, :func:`get_participants`)
- the unpaid split-record reader behind the balances view
  (:func:`get_unpaid_split_records`)
- the single atomic write path for a confirmed split
  (:func:`save_split_result`)

Functions never commit; the caller's session scope does (see
:func:`splitledger.db.session.get_session`).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from splitledger.engine.models import Participant, SplitResult
from splitledger.engine.reconciler import AMOUNT_TOLERANCE, validate_split
from splitledger.exceptions import ReconciliationMismatch
from splitledger.ledger.models import Expense, ExpenseSplit, Friend, User
from splitledger.ledger.records import ExpenseSplitRecord

logger = logging.getLogger(__name__)


def as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    """Parse an ID coming from outside.

    Raises:
        ValueError: If *value* is not a valid UUID.
    """
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _participant(user: User) -> Participant:
    return Participant(id=str(user.id), display_name=user.name, email=user.email)


# ── Participant directory ─────────────────────────────────────────────────────


async def get_user(session: AsyncSession, user_id: str) -> Participant | None:
    """Return the participant for *user_id*, or ``None`` if unknown."""
    result = await session.execute(select(User).where(User.id == as_uuid(user_id)))
    user = result.scalar_one_or_none()
    return _participant(user) if user is not None else None


async def get_participants(
    session: AsyncSession,
    user_id: str,
    friend_ids: Sequence[str] | None = None,
) -> list[Participant]:
    """Return the requesting user followed by the people to split with.

    Args:
        session: Active async database session.
        user_id: The requesting user (always first in the result).
        friend_ids: Specific users to include.  When empty, every friend of
            *user_id* is included.

    Returns:
        Participants ordered current user first, then by name.  Empty if
        *user_id* is unknown.
    """
    current = await get_user(session, user_id)
    if current is None:
        return []

    if friend_ids:
        ids = [as_uuid(fid) for fid in friend_ids]
        stmt = select(User).where(User.id.in_(ids))
    else:
        stmt = (
            select(User)
            .join(Friend, Friend.friend_id == User.id)
            .where(Friend.user_id == as_uuid(user_id))
        )
    result = await session.execute(stmt.order_by(User.name, User.id))

    participants = [current]
    for user in result.scalars().all():
        if str(user.id) != current.id:
            participants.append(_participant(user))
    return participants


# ── Split records ─────────────────────────────────────────────────────────────


def _row_to_record(row: Any) -> ExpenseSplitRecord:
    """Validate a joined split row into a typed record."""
    return ExpenseSplitRecord(
        expense_id=str(row["expense_id"]),
        payer_id=str(row["payer_id"]),
        payer_name=row["payer_name"] or "",
        participant_id=str(row["participant_id"]),
        participant_name=row["participant_name"] or "",
        amount=row["amount"],
        paid=bool(row["paid"]),
        created_at=row["created_at"],
        description=row["description"] or "",
        category=row["category"],
    )


async def get_unpaid_split_records(
    session: AsyncSession,
    user_id: str,
) -> list[ExpenseSplitRecord]:
    """Return unpaid split records of expenses *user_id* paid for or shares.

    Newest expenses first.
    """
    uid = as_uuid(user_id)
    payer = aliased(User)
    participant = aliased(User)

    stmt = (
        select(
            ExpenseSplit.expense_id,
            Expense.user_id.label("payer_id"),
            payer.name.label("payer_name"),
            ExpenseSplit.user_id.label("participant_id"),
            participant.name.label("participant_name"),
            ExpenseSplit.amount,
            ExpenseSplit.paid,
            Expense.created_at,
            Expense.description,
            Expense.category,
        )
        .join(Expense, ExpenseSplit.expense_id == Expense.id)
        .join(payer, Expense.user_id == payer.id)
        .join(participant, ExpenseSplit.user_id == participant.id)
        .where(
            or_(Expense.user_id == uid, ExpenseSplit.user_id == uid),
            ExpenseSplit.paid.is_(False),
        )
        .order_by(Expense.created_at.desc(), ExpenseSplit.expense_id)
    )
    result = await session.execute(stmt)
    return [_row_to_record(row) for row in result.mappings().all()]


def _storage_errors(result: SplitResult) -> list[str]:
    """Checks the schema enforces, reported before the database rejects them."""
    errors: list[str] = []
    if result.total_amount <= 0:
        errors.append(f"Total amount must be positive, got {result.total_amount}.")
    out_of_range = [
        s.participant_id for s in result.splits
        if not Decimal("0") <= s.percentage <= Decimal("100")
    ]
    if out_of_range:
        errors.append(f"Percentage outside 0-100 for: {', '.join(out_of_range)}.")
    return errors


async def _unknown_user_ids(session: AsyncSession, ids: set[uuid.UUID]) -> list[str]:
    result = await session.execute(select(User.id).where(User.id.in_(ids)))
    known = set(result.scalars().all())
    return sorted(str(i) for i in ids - known)


async def save_split_result(
    session: AsyncSession,
    *,
    payer_id: str,
    result: SplitResult,
) -> Expense:
    """Persist a confirmed split: the expense row and every split row.

    All rows are written inside one savepoint, so either the expense and all
    of its splits land together or nothing does.  The outer transaction is
    committed by the caller's session scope.

    Args:
        session: Active async database session (caller manages commit).
        payer_id: The user who paid the full amount.
        result: The confirmed split.

    Returns:
        The new :class:`Expense` (with ``id`` populated after flush).

    Raises:
        ReconciliationMismatch: If the split has duplicate or negative
            shares, a non-positive total, percentages outside 0-100, shares
            for unknown users, or amounts that miss the total by more than a
            cent per participant.
        ValueError: If an ID is not a valid UUID.
    """
    errors = validate_split(
        result,
        amount_tolerance=AMOUNT_TOLERANCE * max(len(result.splits), 1),
        check_percentages=False,
    )
    errors += _storage_errors(result)
    if errors:
        raise ReconciliationMismatch(errors)

    payer_uuid = as_uuid(payer_id)
    split_uuids = [as_uuid(split.participant_id) for split in result.splits]
    unknown = await _unknown_user_ids(session, {payer_uuid, *split_uuids})
    if unknown:
        raise ReconciliationMismatch([f"Unknown users: {', '.join(unknown)}."])

    expense = Expense(
        user_id=payer_uuid,
        description=result.description,
        amount=result.total_amount,
        currency=result.currency,
        category=result.category,
        subcategory=result.subcategory,
        reasoning=result.reasoning or None,
    )
    expense.splits = [
        ExpenseSplit(
            user_id=user_id,
            amount=split.amount,
            percentage=split.percentage if split.percentage != Decimal("0") else None,
        )
        for user_id, split in zip(split_uuids, result.splits)
    ]

    async with session.begin_nested():
        session.add(expense)
        await session.flush()

    logger.info(
        "Saved expense %s (%s %s) with %d split(s)",
        expense.id, result.total_amount, result.currency, len(expense.splits),
    )
    return expense
