"""Custom exceptions for SplitLedger."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from splitledger.engine.models import Participant


class SplitLedgerError(Exception):
    """Base exception for all SplitLedger errors."""


class ConfigurationError(SplitLedgerError):
    """Raised when configuration is invalid or missing."""


class NoDeterministicMatch(SplitLedgerError):
    """The percentage parser produced no reconciled split.

    Not a failure: it tells the caller to try the model next.
    """


class AmbiguousOrUnmatchedName(SplitLedgerError):
    """A name phrase could not be resolved to a participant."""

    def __init__(
        self,
        name_phrase: str,
        suggestions: list[Participant] | None = None,
    ) -> None:
        self.name_phrase = name_phrase
        self.suggestions = list(suggestions or [])
        hint = ", ".join(p.display_name for p in self.suggestions)
        message = f"No participant matches {name_phrase!r}"
        if hint:
            message += f" (did you mean: {hint}?)"
        super().__init__(message)


class SplitGenerationError(SplitLedgerError):
    """The text generator failed or returned nothing usable."""


class MalformedModelOutput(SplitGenerationError):
    """Model output was not valid JSON even after repair and salvage."""

    def __init__(self, message: str, raw_text: str = "", repaired_text: str = "") -> None:
        self.raw_text = raw_text
        self.repaired_text = repaired_text
        super().__init__(message)


class ReconciliationMismatch(SplitLedgerError):
    """Split amounts or percentages do not add up within tolerance."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Split does not reconcile")
