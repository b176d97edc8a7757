"""Typed ledger records and the derived balance view.

:class:`ExpenseSplitRecord` is the boundary type for persisted split rows;
everything else here is derived from those records on every read and never
stored (see :mod:`splitledger.ledger.balance`).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import (
    AliasChoices,
    AliasGenerator,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
)
from pydantic.alias_generators import to_camel

from splitledger.engine.models import to_cents

# Balance view models dump camelCase keys under ``by_alias=True``.
_CAMEL_OUT = ConfigDict(alias_generator=AliasGenerator(serialization_alias=to_camel))


class ExpenseSplitRecord(BaseModel):
    """One participant's share of a persisted expense.

    There is one record per participant per expense, including the payer's
    own share.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    expense_id: str = Field(validation_alias=AliasChoices("expense_id", "expenseId"))
    payer_id: str = Field(validation_alias=AliasChoices("payer_id", "payerId", "created_by"))
    payer_name: str = Field(
        default="",
        validation_alias=AliasChoices("payer_name", "payerName", "created_by_name"),
    )
    participant_id: str = Field(
        validation_alias=AliasChoices("participant_id", "participantId", "user_id"),
    )
    participant_name: str = Field(
        default="",
        validation_alias=AliasChoices("participant_name", "participantName", "split_user_name"),
    )
    amount: Decimal
    paid: bool = False
    created_at: datetime | None = None
    description: str = ""
    category: str | None = None


class Direction(StrEnum):
    """Which way a contributing expense moves money, from the viewer's side."""

    OWES_YOU = "owes_you"
    YOU_OWE = "you_owe"


class ContributingExpense(BaseModel):
    """An expense line behind a :class:`BalanceEntry`."""

    model_config = _CAMEL_OUT

    expense_id: str
    description: str = ""
    amount: Decimal
    direction: Direction = Field(serialization_alias="type")
    created_at: datetime | None = Field(default=None, serialization_alias="date")
    category: str | None = None

    @field_serializer("amount", when_used="json")
    def decimal_as_number(self, v: Decimal) -> float:
        return float(v)


class BalanceEntry(BaseModel):
    """Net position between the viewer and one counterparty.

    ``net_balance`` is positive when the counterparty owes the viewer.
    """

    model_config = _CAMEL_OUT

    counterparty_id: str = Field(serialization_alias="userId")
    counterparty_name: str = Field(default="", serialization_alias="userName")
    owes_you: Decimal = Decimal("0.00")
    you_owe: Decimal = Decimal("0.00")
    net_balance: Decimal = Decimal("0.00")
    contributing_expenses: list[ContributingExpense] = Field(
        default_factory=list, serialization_alias="expenses",
    )

    @field_serializer("owes_you", "you_owe", "net_balance", when_used="json")
    def decimal_as_number(self, v: Decimal) -> float:
        return float(to_cents(v))


class BalanceSummary(BaseModel):
    """Totals across every counterparty."""

    model_config = _CAMEL_OUT

    total_owed_to_you: Decimal = Decimal("0.00")
    total_you_owe: Decimal = Decimal("0.00")
    net_balance: Decimal = Decimal("0.00")
    friend_count: int = 0

    @field_serializer("total_owed_to_you", "total_you_owe", "net_balance", when_used="json")
    def decimal_as_number(self, v: Decimal) -> float:
        return float(to_cents(v))


class BalanceReport(BaseModel):
    """Everything the balances view needs for one viewer."""

    summary: BalanceSummary = Field(default_factory=BalanceSummary)
    balances: list[BalanceEntry] = Field(default_factory=list)
