"""OpenRouter LLM client."""

from __future__ import annotations

import time
from typing import Any

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from signal_trading.config import Settings
from signal_trading.errors import RecommendationEngineError
from signal_trading.utils.logging import get_logger, log_llm_call

_OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

_SYSTEM_PROMPT = (
    "You are a cryptocurrency swing trader. Analyze the market snapshot and return "
    "only one JSON object with keys: signal, confidence, entry_price, stop_loss, "
    "take_profit, reasoning.\n"
    "signal is one of STRONG_BUY, BUY, HOLD, SELL, STRONG_SELL. confidence is 0-100 and "
    "reflects the probability that the trade succeeds, accounting for divergences, "
    "overbought/oversold readings and conflicting indicators.\n"
    "For BUY/SELL signals entry_price, stop_loss and take_profit must be positive numbers. "
    "For HOLD use 0 for all three.\n"
    "reasoning is a short analysis (at most five sentences) that ends with a clear "
    "recommendation for an already open long or short position."
)


class OpenRouterAPIError(RecommendationEngineError):
    """Raised when API transport/request fails.

    Only transport failures, 429 and 5xx are retryable; auth errors and
    malformed bodies fail on the first attempt.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, OpenRouterAPIError) and exc.retryable


class OpenRouterClient:
    """Thin client for OpenRouter chat completion endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = get_logger("signal_trading.ai.openrouter_client")

    def complete(self, serialized_snapshot: str) -> str:
        """Send one serialized snapshot and return the raw model text."""
        started = time.perf_counter()
        try:
            if not self._settings.openrouter_api_key:
                raise OpenRouterAPIError("missing_openrouter_api_key")
            content = self._request_completion(serialized_snapshot)
        except OpenRouterAPIError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            log_llm_call(
                self._logger,
                model=self._settings.openrouter_model,
                success=False,
                latency_ms=elapsed_ms,
                reason=str(exc),
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        log_llm_call(
            self._logger,
            model=self._settings.openrouter_model,
            success=True,
            latency_ms=elapsed_ms,
            response_chars=len(content),
        )
        return content

    def _user_prompt(self, serialized_snapshot: str) -> str:
        return (
            f"Market data:\n\n{serialized_snapshot}\n\n"
            "Using these indicators, determine the market direction and the best entry price. "
            f"Exit rules: take profit at ATR x{self._settings.atr_multiplier_tp}, "
            f"stop loss at ATR x{self._settings.atr_multiplier_sl}."
        )

    @retry(
        retry=retry_if_exception(_is_retryable),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _request_completion(self, serialized_snapshot: str) -> str:
        headers = {
            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self._settings.openrouter_model,
            "temperature": self._settings.openrouter_temperature,
            "max_tokens": self._settings.openrouter_max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": self._user_prompt(serialized_snapshot)},
            ],
        }

        try:
            with httpx.Client(timeout=self._settings.openrouter_timeout) as client:
                response = client.post(_OPENROUTER_URL, headers=headers, json=payload)
        except httpx.TransportError as exc:
            raise OpenRouterAPIError(f"transport: {exc}", retryable=True) from exc

        status = response.status_code
        if response.is_error:
            raise OpenRouterAPIError(
                f"http_{status}: {response.text[:200]}",
                retryable=status == 429 or status >= 500,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise OpenRouterAPIError("response_not_json") from exc

        if _finish_reason(body) == "length":
            self._logger.warning("llm_response_truncated", model=self._settings.openrouter_model)

        content = _extract_message_content(body)
        if not content:
            raise OpenRouterAPIError("empty_model_response")
        return content


def _first_choice(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    return first if isinstance(first, dict) else None


def _finish_reason(payload: Any) -> str | None:
    choice = _first_choice(payload)
    if choice is None:
        return None
    reason = choice.get("finish_reason")
    return reason if isinstance(reason, str) else None


def _extract_message_content(payload: Any) -> str:
    """Read assistant content, falling back to the reasoning field some models fill."""
    choice = _first_choice(payload)
    if choice is None:
        return ""
    message = choice.get("message")
    if not isinstance(message, dict):
        return ""
    for key in ("content", "reasoning"):
        value = message.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""
