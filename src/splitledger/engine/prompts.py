"""Prompt templates for the text-generation model.

The split prompt enumerates participants (flagging the current user),
restates the request, and pins down the exact JSON shape expected back.
Models still stray from it, which is why responses go through
:mod:`splitledger.engine.json_repair` before use.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from splitledger.engine.models import Participant

# ── Expense splitting ─────────────────────────────────────────────────────────

SPLIT_EXPENSE_PROMPT = """\
You are an expense splitting assistant. Split the expense described below \
among the listed participants.

Expense description: "{description}"
Total amount: {total_line}
Category: {category_line}
Currency: {currency}

Current user: {current_user_name} (ID: {current_user_id})
Participants:
{participant_lines}

Parsing rules:
- "me", "myself" and "I" always refer to the current user ({current_user_name}).
- The current user is part of every split.
- "Split with John and Mary" means {current_user_name}, John and Mary.
- If explicit percentages are given, use exactly those percentages.
- Otherwise split evenly unless the description clearly says otherwise.

Arithmetic rules:
- amount = totalAmount × (percentage ÷ 100), rounded to 2 decimals.
- The amounts MUST add up exactly to the total amount.
- The percentages MUST add up to exactly 100.
- Include every participant exactly once, using the IDs given above.

Category guidelines:
- Entertainment: movies, sports, concerts
- Food: restaurants, coffee, groceries
- Transportation: taxi, rideshare, fuel, transit
- Shopping: clothes, electronics
- Bills: electricity, internet, phone
Use a subcategory for the specific item when it helps (e.g. "Pizza" under "Food").

JSON requirements:
- Use double quotes for every key and string, never single quotes.
- No trailing commas.
- Numbers must be plain decimals (no NaN, no Infinity, no currency symbols).

Respond with ONLY a JSON object in exactly this format:
{{
  "description": "cleaned up description",
  "category": "main category",
  "subcategory": "specific item or null",
  "totalAmount": 0.00,
  "currency": "{currency}",
  "splits": [
    {{"userId": "participant id", "userName": "participant name", "amount": 0.00, "percentage": 0.00}}
  ],
  "reasoning": "one or two sentences explaining the split"
}}\
"""

# ── Categorization ────────────────────────────────────────────────────────────

EXPENSE_CATEGORIES: list[str] = [
    "Food & Dining",
    "Transportation",
    "Entertainment",
    "Shopping",
    "Utilities",
    "Healthcare",
    "Travel",
    "Education",
    "Business",
    "Miscellaneous",
]

CATEGORIZE_EXPENSE_PROMPT = """\
Categorize this expense description into exactly one of these categories:
{category_lines}

Description: "{description}"

Respond with just the category name, nothing else.\
"""


def build_split_prompt(
    description: str,
    participants: Sequence[Participant],
    current_user: Participant,
    total_amount: Decimal | None = None,
    category: str | None = None,
    currency: str = "USD",
) -> str:
    """Render :data:`SPLIT_EXPENSE_PROMPT` for a request."""
    lines = []
    for i, p in enumerate(participants, start=1):
        marker = " [CURRENT USER]" if p.id == current_user.id else ""
        lines.append(f"{i}. {p.display_name} (ID: {p.id}){marker}")

    return SPLIT_EXPENSE_PROMPT.format(
        description=description,
        total_line=f"{total_amount} {currency}" if total_amount is not None
        else "Not specified (estimate it from the description)",
        category_line=category or "Not specified (categorize from the description)",
        currency=currency,
        current_user_name=current_user.display_name,
        current_user_id=current_user.id,
        participant_lines="\n".join(lines),
    )


def build_categorize_prompt(description: str) -> str:
    """Render :data:`CATEGORIZE_EXPENSE_PROMPT` for *description*."""
    return CATEGORIZE_EXPENSE_PROMPT.format(
        category_lines="\n".join(f"- {c}" for c in EXPENSE_CATEGORIES),
        description=description,
    )
