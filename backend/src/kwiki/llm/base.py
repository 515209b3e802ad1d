# backend/src/kwiki/llm/base.py
"""Provider contract and the types shared by every adapter.

Every backend adapter subclasses ``Provider`` and implements the two wire-level
hooks ``_generate`` and ``_stream_deltas``. The base class owns the parts of the
contract that must behave identically across backends:

- option defaulting (model, max tokens, stream flag)
- transport error translation into the ``kwiki.llm.errors`` taxonomy
- usage accounting (requests, tokens, cost, errors, rolling latency)
- streaming delivery with early stop and exactly one terminal delta
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import httpx

from kwiki.llm.errors import LLMBadResponseError, LLMConnectionError, LLMError, LLMTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text`` as one token per four characters.

    This is an approximation for backends that report no usage. It is not
    billing-accurate and can be swapped for a real tokenizer here.
    """
    return len(text) // 4


@dataclass(frozen=True)
class GenerationOptions:
    """Per-call tuning for one generation request.

    Attributes:
        prompt: User prompt text (required, non-empty).
        model: Model identifier; empty means the adapter default.
        system_prompt: Optional system/role instruction.
        temperature: Sampling temperature in [0, 2].
        max_tokens: Output token budget; non-positive means the adapter default.
        top_p: Optional nucleus sampling value.
        top_k: Optional top-k sampling value.
        stop: Stop sequences.
        stream: Set by the adapter for the call path taken.
        extra: Provider-specific parameters; unknown keys are ignored.
    """

    prompt: str
    model: str = ""
    system_prompt: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    top_p: float | None = None
    top_k: int | None = None
    stop: tuple[str, ...] = ()
    stream: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt must not be empty")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be within [0, 2], got {self.temperature}")

    def messages(self) -> list[dict[str, str]]:
        """Build the ordered chat message list: system first, then the user prompt."""
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.prompt})
        return messages


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for one call; ``estimated`` marks char/4 estimates."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated: bool = False

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class GenerationResult:
    """Output of one generation call."""

    text: str
    usage: TokenUsage | None = None
    model: str = ""
    provider: str = ""
    duration_ms: int = 0
    finish_reason: str = ""
    raw: Any = None


@dataclass(frozen=True)
class StreamDelta:
    """One increment of a streaming response.

    Only the terminal delta (``done=True``) carries usage and finish reason.
    """

    text: str = ""
    done: bool = False
    usage: TokenUsage | None = None
    finish_reason: str | None = None


# Returning False stops the stream; any other value continues.
DeltaCallback = Callable[[StreamDelta], bool | None]


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time copy of an adapter's cumulative usage."""

    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    last_used: datetime | None = None
    error_count: int = 0
    average_latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "error_count": self.error_count,
            "average_latency_ms": self.average_latency_ms,
        }


class Usage:
    """Process-lifetime usage counters for one adapter, safe across threads and tasks."""

    def __init__(self):
        self._lock = threading.Lock()
        self._total_requests = 0
        self._total_tokens = 0
        self._total_cost = 0.0
        self._last_used: datetime | None = None
        self._error_count = 0
        self._average_latency_ms = 0

    def record_success(self, tokens: int, cost: float, duration_ms: int) -> None:
        with self._lock:
            self._total_requests += 1
            self._total_tokens += tokens
            self._total_cost += cost
            self._last_used = datetime.now()
            # Smoothed, not a true mean: each sample halves the weight of history.
            self._average_latency_ms = (self._average_latency_ms + duration_ms) // 2

    def record_error(self) -> None:
        with self._lock:
            self._error_count += 1

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(
                total_requests=self._total_requests,
                total_tokens=self._total_tokens,
                total_cost=self._total_cost,
                last_used=self._last_used,
                error_count=self._error_count,
                average_latency_ms=self._average_latency_ms,
            )


def translate_transport_error(provider: str, exc: httpx.HTTPError, partial_text: str = "") -> LLMError:
    """Map an httpx transport exception onto the error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return LLMTimeoutError(f"{provider} request timed out: {exc}", provider, partial_text)
    return LLMConnectionError(f"Failed to connect to {provider}: {exc}", provider, partial_text)


# Raised when reading fields out of a decoded body that has the wrong shape
RESPONSE_SHAPE_ERRORS = (AttributeError, IndexError, KeyError, TypeError, ValueError)


def decode_json_object(provider: str, response: httpx.Response) -> dict[str, Any]:
    """Decode a response body that must be a JSON object.

    Raises:
        LLMBadResponseError: If the body is not JSON or not an object.
    """
    try:
        data = response.json()
    except ValueError as e:
        raise LLMBadResponseError(f"{provider} returned invalid JSON: {e}", provider=provider) from e
    if not isinstance(data, dict):
        raise LLMBadResponseError(
            f"{provider} returned a JSON {type(data).__name__} instead of an object", provider=provider
        )
    return data


class Provider(ABC):
    """Uniform text-generation contract over one HTTP backend.

    Subclasses set ``name`` and ``default_model`` and implement ``_generate``,
    ``_stream_deltas``, ``is_available`` and ``get_models``.
    """

    name: str = ""
    default_model: str = ""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        default_model: str | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the adapter.

        Args:
            base_url: Backend base URL (trailing slash is trimmed).
            api_key: Optional credential.
            default_model: Overrides the class-level default model.
            default_max_tokens: Budget used when a call passes max_tokens <= 0.
            timeout: Request timeout in seconds for the owned client.
            client: Optional pre-built client (tests inject a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        if default_model:
            self.default_model = default_model
        self.default_max_tokens = default_max_tokens if default_max_tokens > 0 else DEFAULT_MAX_TOKENS
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._usage = Usage()

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    @abstractmethod
    async def _generate(self, options: GenerationOptions) -> GenerationResult:
        """Perform one non-streaming round trip."""

    @abstractmethod
    def _stream_deltas(self, options: GenerationOptions) -> AsyncIterator[StreamDelta]:
        """Yield text deltas from one streaming round trip.

        Deltas may carry usage or a finish reason; the base class folds those
        into the terminal delta it emits itself.
        """

    @abstractmethod
    async def is_available(self) -> bool:
        """Best-effort readiness probe; never raises."""

    @abstractmethod
    async def get_models(self) -> list[str]:
        """Model identifiers, falling back to a static list on discovery failure."""

    def calculate_cost(self, model: str, usage: TokenUsage) -> float:
        """Estimated cost in USD for one call. Free unless the adapter overrides it."""
        return 0.0

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def get_usage(self) -> UsageSnapshot:
        return self._usage.snapshot()

    def prepare_options(self, options: GenerationOptions, stream: bool) -> GenerationOptions:
        """Apply adapter defaults and force the stream flag for the call path."""
        return replace(
            options,
            model=options.model or self.default_model,
            max_tokens=options.max_tokens if options.max_tokens > 0 else self.default_max_tokens,
            stream=stream,
        )

    def _estimate_usage(self, options: GenerationOptions, text: str) -> TokenUsage:
        prompt_chars = options.prompt + (options.system_prompt or "")
        return TokenUsage(
            prompt_tokens=estimate_tokens(prompt_chars),
            completion_tokens=estimate_tokens(text),
            estimated=True,
        )

    async def generate(self, options: GenerationOptions) -> GenerationResult:
        """Perform one non-streaming generation call.

        Raises:
            LLMError: One of the taxonomy kinds on failure.
        """
        opts = self.prepare_options(options, stream=False)
        start_time = time.perf_counter()
        try:
            result = await self._generate(opts)
        except LLMError as e:
            self._usage.record_error()
            logger.warning(f"{self.name} generate failed ({opts.model}): {e}")
            raise
        except httpx.HTTPError as e:
            self._usage.record_error()
            logger.warning(f"{self.name} generate failed ({opts.model}): {e}")
            raise translate_transport_error(self.name, e) from e

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        usage = result.usage or self._estimate_usage(opts, result.text)
        self._usage.record_success(usage.total_tokens, self.calculate_cost(opts.model, usage), duration_ms)
        logger.info(
            f"{self.name} generated {len(result.text)} chars with {opts.model} "
            f"in {duration_ms}ms ({usage.total_tokens} tokens)"
        )
        return replace(
            result,
            usage=usage,
            model=result.model or opts.model,
            provider=self.name,
            duration_ms=duration_ms,
        )

    async def iter_stream(self, options: GenerationOptions) -> AsyncIterator[StreamDelta]:
        """Stream a generation as an async iterator of deltas.

        Yields one delta per received text fragment, then exactly one terminal
        delta (``done=True``) when the transport completes. Closing the iterator
        early closes the underlying HTTP response.

        Raises:
            LLMError: On failure; ``partial_text`` holds the text received so far.
        """
        opts = self.prepare_options(options, stream=True)
        start_time = time.perf_counter()
        parts: list[str] = []
        usage: TokenUsage | None = None
        finish_reason: str | None = None
        outcome = "error"
        try:
            try:
                async with aclosing(self._stream_deltas(opts)) as deltas:
                    async for delta in deltas:
                        if delta.usage is not None:
                            usage = delta.usage
                        if delta.finish_reason:
                            finish_reason = delta.finish_reason
                        if delta.text:
                            parts.append(delta.text)
                            yield StreamDelta(text=delta.text)
            except LLMError as e:
                e.partial_text = "".join(parts)
                raise
            except httpx.HTTPError as e:
                raise translate_transport_error(self.name, e, "".join(parts)) from e

            outcome = "completed"
            usage = usage or self._estimate_usage(opts, "".join(parts))
            yield StreamDelta(text="", done=True, usage=usage, finish_reason=finish_reason)
        except GeneratorExit:
            if outcome == "error":
                outcome = "stopped"
            raise
        finally:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            if outcome == "error":
                self._usage.record_error()
                logger.warning(f"{self.name} stream failed ({opts.model}) after {len(''.join(parts))} chars")
            else:
                final_usage = usage or self._estimate_usage(opts, "".join(parts))
                self._usage.record_success(
                    final_usage.total_tokens, self.calculate_cost(opts.model, final_usage), duration_ms
                )
                logger.info(
                    f"{self.name} stream {outcome} with {opts.model}: "
                    f"{len(''.join(parts))} chars in {duration_ms}ms"
                )

    async def stream(
        self, options: GenerationOptions, on_delta: DeltaCallback | None = None
    ) -> GenerationResult:
        """Perform a streaming call, dispatching each delta to ``on_delta``.

        ``on_delta`` runs synchronously before the next chunk is read. Returning
        False stops the stream gracefully: no further network reads happen and
        the text accumulated so far is returned. The terminal delta is dispatched
        exactly once in every non-error case.
        """
        model = options.model or self.default_model
        start_time = time.perf_counter()
        parts: list[str] = []
        terminal: StreamDelta | None = None
        stopped = False

        async with aclosing(self.iter_stream(options)) as deltas:
            async for delta in deltas:
                if delta.done:
                    terminal = delta
                    break
                parts.append(delta.text)
                if on_delta is not None and on_delta(delta) is False:
                    stopped = True
                    break

        text = "".join(parts)
        if terminal is None:
            terminal = StreamDelta(text="", done=True, finish_reason="stopped" if stopped else None)
        if on_delta is not None:
            on_delta(terminal)

        return GenerationResult(
            text=text,
            usage=terminal.usage or self._estimate_usage(replace(options, model=model), text),
            model=model,
            provider=self.name,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
            finish_reason=terminal.finish_reason or "",
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()
