"""Expense split resolution engine.

Provides entry points for the HTTP layer:

- :func:`resolve_split` — turn a free-form split request into a reconciled
  :class:`~splitledger.engine.models.SplitResolution` (parser → model →
  equal split).  Never raises.
- :func:`categorize_expense` — pick a category for an expense description.

The text generator and orchestrator are module-level singletons, created
lazily and replaceable for tests.
"""

from __future__ import annotations

from collections.abc import Sequence

from splitledger.engine.llm_client import TextGenerator, build_default_generator
from splitledger.engine.models import Participant, SplitResolution
from splitledger.engine.orchestrator import Amount, SplitOrchestrator

# Module-level text generator — lazily initialized.
_text_generator: TextGenerator | None = None

# Module-level orchestrator — lazily initialized.
_orchestrator: SplitOrchestrator | None = None


def get_text_generator() -> TextGenerator:
    """Return the module-level text generator, creating it on first call."""
    global _text_generator
    if _text_generator is None:
        _text_generator = build_default_generator()
    return _text_generator


def set_text_generator(generator: TextGenerator) -> None:
    """Override the module-level text generator (useful for testing)."""
    global _text_generator, _orchestrator
    _text_generator = generator
    # Reset orchestrator so it picks up the new generator.
    _orchestrator = None


def get_orchestrator() -> SplitOrchestrator:
    """Return the module-level orchestrator, creating it on first call."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SplitOrchestrator(text_generator=get_text_generator())
    return _orchestrator


def set_orchestrator(orch: SplitOrchestrator | None) -> None:
    """Override the module-level orchestrator (useful for testing)."""
    global _orchestrator
    _orchestrator = orch


async def resolve_split(
    request_text: str,
    participants: Sequence[Participant],
    current_user: Participant,
    total_amount: Amount | None = None,
    category: str | None = None,
) -> SplitResolution:
    """Resolve a split request through the module-level orchestrator.

    Args:
        request_text: Free-form request text.
        participants: Participant directory for the split.
        current_user: The requesting participant.
        total_amount: Expense total, if known.
        category: Expense category, if known.

    Returns:
        A :class:`SplitResolution` tagged with the stage that produced it.
    """
    return await get_orchestrator().resolve_split(
        request_text,
        participants,
        current_user,
        total_amount=total_amount,
        category=category,
    )


async def categorize_expense(description: str) -> str:
    """Categorize *description* with the module-level model client."""
    return await get_orchestrator().ai_splitter.categorize_expense(description)
