"""Balance derivation from unpaid split records.

Provides :func:`compute_balances` which nets every unpaid split record
involving a viewer into one :class:`~splitledger.ledger.records.BalanceEntry`
per counterparty, plus an overall summary.

The balance is **always derived**, never stored.  An external cache may
memoize the report, but correctness never depends on it.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.ledger.records import (
    BalanceEntry,
    BalanceReport,
    BalanceSummary,
    ContributingExpense,
    Direction,
    ExpenseSplitRecord,
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


async def get_balances(session: AsyncSession, user_id: str) -> BalanceReport:
    """Load *user_id*'s unpaid split records and derive their balances."""
    from splitledger.ledger.repository import get_unpaid_split_records

    records = await get_unpaid_split_records(session, user_id)
    return compute_balances(user_id, records)


def compute_balances(
    user_id: str,
    records: Iterable[ExpenseSplitRecord],
) -> BalanceReport:
    """Net unpaid split records into per-counterparty balances.

    Args:
        user_id: The viewer.
        records: Unpaid records of expenses the viewer created or takes
            part in.  Records not involving the viewer are ignored.

    Returns:
        A :class:`BalanceReport`.  The result does not depend on the order
        of *records*: balances are sorted by counterparty name, then ID, and
        each entry's expenses newest first.
    """
    entries: dict[str, BalanceEntry] = {}

    for record in records:
        if record.paid:
            continue
        effect = _record_effect(record, user_id)
        if effect is None:
            continue
        counterparty_id, counterparty_name, direction = effect

        entry = entries.get(counterparty_id)
        if entry is None:
            entry = BalanceEntry(
                counterparty_id=counterparty_id,
                counterparty_name=counterparty_name,
            )
            entries[counterparty_id] = entry
        elif not entry.counterparty_name and counterparty_name:
            entry.counterparty_name = counterparty_name

        if direction is Direction.OWES_YOU:
            entry.owes_you += record.amount
            entry.net_balance += record.amount
        else:
            entry.you_owe += record.amount
            entry.net_balance -= record.amount

        entry.contributing_expenses.append(
            ContributingExpense(
                expense_id=record.expense_id,
                description=record.description,
                amount=record.amount,
                direction=direction,
                created_at=record.created_at,
                category=record.category,
            )
        )

    balances = sorted(
        entries.values(),
        key=lambda e: (e.counterparty_name.lower(), e.counterparty_id),
    )
    for entry in balances:
        entry.contributing_expenses.sort(key=_expense_sort_key, reverse=True)

    summary = BalanceSummary(
        total_owed_to_you=sum((e.owes_you for e in balances), Decimal("0.00")),
        total_you_owe=sum((e.you_owe for e in balances), Decimal("0.00")),
        net_balance=sum((e.net_balance for e in balances), Decimal("0.00")),
        friend_count=len(balances),
    )
    return BalanceReport(summary=summary, balances=balances)


def _record_effect(
    record: ExpenseSplitRecord,
    user_id: str,
) -> tuple[str, str, Direction] | None:
    """Classify a record from the viewer's side.

    Returns ``(counterparty_id, counterparty_name, direction)``, or ``None``
    for records that do not move money between the viewer and anyone else:
    the payer's own share (a self-split) and records not involving the
    viewer at all.
    """
    viewer_paid = record.payer_id == user_id
    viewer_owes = record.participant_id == user_id

    if viewer_paid and viewer_owes:
        return None
    if viewer_paid:
        # Viewer paid → the participant owes the viewer their share.
        return record.participant_id, record.participant_name, Direction.OWES_YOU
    if viewer_owes:
        # Someone else paid → the viewer owes the payer their share.
        return record.payer_id, record.payer_name, Direction.YOU_OWE
    return None


def _expense_sort_key(expense: ContributingExpense) -> tuple[datetime, str, str, Decimal]:
    created = expense.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created, expense.expense_id, expense.direction.value, expense.amount
