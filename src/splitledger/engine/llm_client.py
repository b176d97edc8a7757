"""Text-generation clients with Ollama primary and paid API fallback.

Defines a protocol-based interface — a prompt goes in, response text comes
out — with four concrete implementations:

- :class:`OllamaTextGenerator` — wraps the Ollama async client (primary, local)
- :class:`PaidTextGenerator` — wraps Anthropic or OpenAI SDKs (fallback)
- :class:`FallbackTextGenerator` — composite: tries Ollama first, falls back
  to the paid API
- :class:`RetryingTextGenerator` — bounds every attempt with a timeout and
  retries once on transient failures

:func:`build_default_generator` gives each backend its own
:class:`RetryingTextGenerator`; a hung Ollama times out and hands over to
the paid API.

The response carries no schema guarantee; callers must validate it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol, runtime_checkable

from splitledger.config import settings
from splitledger.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_MAX_TOKENS = 2048


def _require_key(value: str, env_name: str) -> str:
    if not value:
        raise ConfigurationError(f"{env_name} is not set")
    return value


# ── Protocol ──────────────────────────────────────────────────────────────────


@runtime_checkable
class TextGenerator(Protocol):
    """Abstract interface for text generation."""

    async def generate(self, prompt: str) -> str:
        """Send *prompt* to the model and return its raw text response."""
        ...


# ── Ollama implementation ─────────────────────────────────────────────────────


class OllamaTextGenerator:
    """Text generator wrapping the Ollama async API.

    Uses ``settings.ollama_base_url`` and ``settings.ollama_model``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
    ) -> None:
        self._base_url = base_url or settings.ollama_base_url
        self._model = model or settings.ollama_model

    async def generate(self, prompt: str) -> str:
        """Send a single-turn chat request to the Ollama server."""
        import ollama

        client = ollama.AsyncClient(host=self._base_url)

        start = time.monotonic()
        try:
            response = await client.chat(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
            )
        finally:
            latency_ms = int((time.monotonic() - start) * 1000)

        message = response.get("message", {})
        content = message.get("content", "") or ""
        logger.debug(
            "Ollama %s responded in %dms (tokens: %s/%s)",
            self._model,
            latency_ms,
            response.get("prompt_eval_count"),
            response.get("eval_count"),
        )
        return content


# ── Paid API implementation ──────────────────────────────────────────────────


class PaidTextGenerator:
    """Text generator wrapping Anthropic or OpenAI SDKs.

    Provider is selected via ``settings.fallback_llm_provider``.
    """

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
    ) -> None:
        self._provider = provider or settings.fallback_llm_provider
        self._model = model or settings.fallback_llm_model

    async def generate(self, prompt: str) -> str:
        """Send a request to the paid API.

        Raises:
            ConfigurationError: The selected provider has no API key.
            ValueError: The provider is unknown.
        """
        if self._provider == "anthropic":
            return await self._generate_anthropic(prompt)
        elif self._provider == "openai":
            return await self._generate_openai(prompt)
        else:
            raise ValueError(f"Unknown LLM provider: {self._provider}")

    async def _generate_anthropic(self, prompt: str) -> str:
        """Send a request to the Anthropic API."""
        import anthropic

        client = anthropic.AsyncAnthropic(
            api_key=_require_key(settings.anthropic_api_key, "ANTHROPIC_API_KEY"),
        )

        start = time.monotonic()
        response = await client.messages.create(
            model=self._model,
            max_tokens=_MAX_TOKENS,
            messages=[{"role": "user", "content": prompt}],
        )
        latency_ms = int((time.monotonic() - start) * 1000)

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        logger.debug(
            "Anthropic %s responded in %dms (tokens: %s/%s)",
            self._model,
            latency_ms,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return content

    async def _generate_openai(self, prompt: str) -> str:
        """Send a request to the OpenAI API."""
        import openai

        client = openai.AsyncOpenAI(
            api_key=_require_key(settings.openai_api_key, "OPENAI_API_KEY"),
        )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
        }

        start = time.monotonic()
        response = await client.chat.completions.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        content = response.choices[0].message.content or ""
        logger.debug(
            "OpenAI %s responded in %dms (tokens: %s/%s)",
            self._model,
            latency_ms,
            response.usage.prompt_tokens if response.usage else None,
            response.usage.completion_tokens if response.usage else None,
        )
        return content


# ── Fallback composite ────────────────────────────────────────────────────────


class FallbackTextGenerator:
    """Composite generator: tries local Ollama first, falls back to paid API.

    On Ollama failure (connection error, timeout, malformed response), the
    prompt is re-sent to the paid API.
    """

    def __init__(
        self,
        primary: TextGenerator | None = None,
        fallback: TextGenerator | None = None,
    ) -> None:
        self._primary = primary or OllamaTextGenerator()
        self._fallback = fallback or PaidTextGenerator()

    async def generate(self, prompt: str) -> str:
        """Try Ollama; on failure fall back to the paid API."""
        try:
            return await self._primary.generate(prompt)
        except Exception as exc:
            fallback_reason = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Primary text generator failed (%s), falling back to paid API",
                fallback_reason,
            )

        try:
            text = await self._fallback.generate(prompt)
        except Exception as fallback_exc:
            logger.error("Fallback API also failed: %s", fallback_exc)
            raise

        logger.info("Fallback API responded (reason: %s)", fallback_reason)
        return text


# ── Timeout / retry wrapper ───────────────────────────────────────────────────

_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "rate limit",
    "ratelimit",
    "overloaded",
    "temporarily unavailable",
    "429",
    "500",
    "502",
    "503",
    "504",
)


def _is_transient_error(exc: BaseException) -> bool:
    """True if *exc* looks like a failure worth retrying (timeouts, 5xx, 429)."""
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class RetryingTextGenerator:
    """Bound each call with a timeout and retry transient failures.

    Args:
        inner: The generator to call.
        timeout: Seconds allowed per attempt (``settings.llm_timeout_seconds``).
        max_retries: Extra attempts after a transient failure
            (``settings.llm_max_retries``).
        backoff: Seconds to sleep between attempts.
    """

    def __init__(
        self,
        inner: TextGenerator,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff: float = 0.5,
    ) -> None:
        self._inner = inner
        self._timeout = timeout if timeout is not None else settings.llm_timeout_seconds
        self._max_retries = max_retries if max_retries is not None else settings.llm_max_retries
        self._backoff = backoff

    async def generate(self, prompt: str) -> str:
        """Call the inner generator, retrying once on a transient failure."""
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(self._inner.generate(prompt), self._timeout)
            except Exception as exc:
                if attempt >= self._max_retries or not _is_transient_error(exc):
                    raise
                attempt += 1
                logger.warning(
                    "Text generation attempt %d failed (%s: %s), retrying",
                    attempt, type(exc).__name__, exc,
                )
                if self._backoff:
                    await asyncio.sleep(self._backoff)


def build_default_generator() -> TextGenerator:
    """Ollama with paid fallback, each bounded by its own timeout and retry."""
    return FallbackTextGenerator(
        RetryingTextGenerator(OllamaTextGenerator()),
        RetryingTextGenerator(PaidTextGenerator()),
    )
