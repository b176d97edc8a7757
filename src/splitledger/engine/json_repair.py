"""Extraction and repair of JSON objects from free-form model output.

Language models wrap JSON in prose or code fences and routinely emit
JavaScript-isms (unquoted keys, single quotes, trailing commas,
``undefined``).  This module turns such text into something
:func:`json.loads` accepts:

- :func:`extract_json_block` — pull the JSON object out of the response.
- :func:`repair_json` — ordered, idempotent textual repairs.
- :func:`salvage_splits` — last resort: parse each object in the
  ``"splits"`` array independently.
- :func:`parse_model_json` — the whole pipeline.

Repairs only touch text outside string literals (double- or single-quoted),
so string values containing commas, colons or quotes survive intact.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from splitledger.exceptions import MalformedModelOutput

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*(\{.*?\})\s*```", re.DOTALL)
_SPLITS_ARRAY = re.compile(r"""["']?splits["']?\s*:\s*\[""")

_SMART_DOUBLE = str.maketrans({"“": '"', "”": '"', "„": '"', "″": '"'})
_SMART_SINGLE = str.maketrans({"‘": "'", "’": "'", "′": "'"})

_UNESCAPED_DOUBLE = re.compile(r'(?<!\\)"')
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*):")
_MISSING_OBJECT_COMMA = re.compile(r"}(\s*){")
_SPACED_DECIMAL = re.compile(r"(\d)\s*\.\s+(\d)|(\d)\s+\.(\d)")
_DANGLING_POINT = re.compile(r"(?<![\d.])\.\s*(\d)")
_INCOMPLETE_DECIMAL = re.compile(r"(\d)\.(?!\d)")

_LITERALS = [
    (re.compile(r"\bundefined\b"), "null"),
    (re.compile(r"\bNaN\b"), "0"),
    (re.compile(r"\bNone\b"), "null"),
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
]


# ── Scanning helpers ──────────────────────────────────────────────────────────


def _string_end(text: str, i: int) -> int | None:
    """Return the index just past the string opening at ``text[i]``.

    Double-quoted strings run to their closing quote or the end of the
    text.  Single-quoted strings must close on the same line; otherwise the
    quote is a stray apostrophe and ``None`` is returned.
    """
    quote = text[i]
    n = len(text)
    j = i + 1
    while j < n:
        ch = text[j]
        if ch == "\\":
            j += 2
            continue
        if ch == quote:
            return j + 1
        if ch == "\n" and quote == "'":
            return None
        j += 1
    return None if quote == "'" else n


def _segments(text: str) -> list[tuple[bool, str]]:
    """Split *text* into ``(is_string, chunk)`` pairs.

    String chunks are double- or single-quoted strings including their
    quotes, recognised in a single left-to-right pass so a quote of one
    kind inside a string of the other kind is just a character.
    """
    segments: list[tuple[bool, str]] = []
    start = 0
    i = 0
    n = len(text)
    while i < n:
        if text[i] not in "\"'":
            i += 1
            continue
        end = _string_end(text, i)
        if end is None:
            i += 1
            continue
        if i > start:
            segments.append((False, text[start:i]))
        segments.append((True, text[i:end]))
        start = i = end
    if start < n:
        segments.append((False, text[start:]))
    return segments


def _balanced_span(text: str, start: int) -> int | None:
    """Return the index just past the ``}`` closing the ``{`` at *start*."""
    depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch in "\"'":
            end = _string_end(text, i)
            if end is not None:
                i = end
                continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return None


# ── Extraction ────────────────────────────────────────────────────────────────


def extract_json_block(text: str) -> str | None:
    """Pull the JSON object out of a model response.

    Prefers a fenced code block; otherwise returns the first balanced
    ``{...}`` span.  A truncated object (never closed) yields everything
    from its opening brace to the last ``}`` seen, or ``None``.
    """
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        return fenced.group(1)

    start = text.find("{")
    if start == -1:
        return None
    end = _balanced_span(text, start)
    if end is not None:
        return text[start:end]

    last = text.rfind("}")
    if last > start:
        return text[start : last + 1]
    return None


# ── Repair ────────────────────────────────────────────────────────────────────


def _as_double_quoted(chunk: str) -> str:
    if not chunk.startswith("'"):
        return chunk
    inner = chunk[1:-1].replace("\\'", "'")
    return '"' + _UNESCAPED_DOUBLE.sub(r'\\"', inner) + '"'


def _fix_decimal_spacing(chunk: str) -> str:
    chunk = _SPACED_DECIMAL.sub(
        lambda m: f"{m.group(1) or m.group(3)}.{m.group(2) or m.group(4)}", chunk
    )
    chunk = _DANGLING_POINT.sub(r"0.\1", chunk)
    return _INCOMPLETE_DECIMAL.sub(r"\1.0", chunk)


def _repair_structure(chunk: str) -> str:
    chunk = _TRAILING_COMMA.sub(r"\1", chunk)
    chunk = _UNQUOTED_KEY.sub(r'\1"\2"\3:', chunk)
    chunk = _MISSING_OBJECT_COMMA.sub(r"},\1{", chunk)
    for pattern, replacement in _LITERALS:
        chunk = pattern.sub(replacement, chunk)
    return _fix_decimal_spacing(chunk)


def repair_json(text: str) -> str:
    """Apply textual repairs so near-JSON parses as JSON.

    In order:

    1. normalize smart quotes and apostrophes to ASCII
    2. convert single-quoted keys and values to double-quoted strings
    3. strip trailing commas before ``}`` / ``]``
    4. quote bare object keys
    5. insert a comma between adjacent objects
    6. replace ``undefined`` → ``null`` and ``NaN`` → ``0`` (and the Python
       literals ``None``/``True``/``False``)
    7. collapse decimal-point spacing (``"25. 50"`` → ``25.50``,
       ``". 50"`` → ``0.50``, ``"25."`` → ``25.0``)

    Running it twice gives the same text as running it once.
    """
    repaired = text.translate(_SMART_DOUBLE).translate(_SMART_SINGLE).strip()
    return "".join(
        _as_double_quoted(chunk) if is_str else _repair_structure(chunk)
        for is_str, chunk in _segments(repaired)
    )


# ── Salvage ───────────────────────────────────────────────────────────────────


def salvage_splits(text: str) -> list[dict[str, Any]]:
    """Parse each object inside the ``"splits"`` array on its own.

    Objects that still fail to parse after repair are discarded.  A
    truncated array yields whatever complete objects precede the cut.
    """
    match = _SPLITS_ARRAY.search(text)
    if not match:
        return []

    salvaged: list[dict[str, Any]] = []
    i = match.end()
    while i < len(text):
        ch = text[i]
        if ch == "]":
            break
        if ch != "{":
            i += 1
            continue
        end = _balanced_span(text, i)
        if end is None:
            break
        fragment = text[i:end]
        try:
            obj = json.loads(repair_json(fragment))
        except json.JSONDecodeError:
            logger.debug("Discarding unparseable split object: %s", fragment)
        else:
            if isinstance(obj, dict):
                salvaged.append(obj)
        i = end
    return salvaged


# ── Pipeline ──────────────────────────────────────────────────────────────────


def parse_model_json(text: str) -> tuple[dict[str, Any], bool]:
    """Extract, repair and parse the JSON object in a model response.

    Returns:
        ``(data, salvaged)`` — *salvaged* is ``True`` when only the splits
        array could be recovered, in which case *data* holds nothing but
        ``splits`` and a ``reasoning`` note.

    Raises:
        MalformedModelOutput: If neither parsing nor salvage produced a
            usable object.
    """
    block = extract_json_block(text)
    repaired = repair_json(block if block is not None else text)

    if block is not None:
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as exc:
            logger.warning(
                "Model JSON failed to parse after repair (%s)\nraw: %s\nrepaired: %s",
                exc, text, repaired,
            )
        else:
            if isinstance(data, dict):
                return data, False
            logger.warning("Model JSON is a %s, not an object", type(data).__name__)

    splits = salvage_splits(repaired)
    if splits:
        logger.info("Salvaged %d split(s) from malformed model output", len(splits))
        return {"splits": splits, "reasoning": "Parsed from malformed JSON"}, True

    raise MalformedModelOutput(
        "Model output is not valid JSON after repair and salvage",
        raw_text=text,
        repaired_text=repaired,
    )
