from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest
from tenacity import wait_none

from signal_trading.ai.openrouter_client import OpenRouterAPIError, OpenRouterClient
from signal_trading.config import Settings
from signal_trading.errors import RecommendationEngineError

_REAL_CLIENT = httpx.Client


def _use_transport(monkeypatch: pytest.MonkeyPatch, handler: Callable[[httpx.Request], httpx.Response]) -> None:
    def _client(**kwargs: Any) -> httpx.Client:
        return _REAL_CLIENT(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr("signal_trading.ai.openrouter_client.httpx.Client", _client)
    monkeypatch.setattr(OpenRouterClient._request_completion.retry, "wait", wait_none())


def _completion(message: dict[str, Any], finish_reason: str = "stop") -> dict[str, Any]:
    return {"choices": [{"message": message, "finish_reason": finish_reason}]}


def test_complete_returns_message_content(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[dict[str, Any]] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer sk-test"
        return httpx.Response(200, json=_completion({"content": '{"signal": "HOLD"}'}))

    _use_transport(monkeypatch, _handler)
    settings = Settings(openrouter_api_key="sk-test", openrouter_model="test/model")
    text = OpenRouterClient(settings).complete('{"metadata": {}}')

    assert text == '{"signal": "HOLD"}'
    body = seen[0]
    assert body["model"] == "test/model"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["role"] == "system"
    assert '{"metadata": {}}' in body["messages"][1]["content"]
    assert "ATR x3.5" in body["messages"][1]["content"]


def test_complete_falls_back_to_reasoning(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        lambda request: httpx.Response(200, json=_completion({"content": "", "reasoning": "{}"}, "length")),
    )
    assert OpenRouterClient(Settings(openrouter_api_key="sk-test")).complete("{}") == "{}"


def test_server_errors_are_retried_then_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(503, json={"error": "overloaded"})

    _use_transport(monkeypatch, _handler)
    with pytest.raises(RecommendationEngineError):
        OpenRouterClient(Settings(openrouter_api_key="sk-test")).complete("{}")
    assert len(attempts) == 3


def test_empty_content_is_an_engine_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(monkeypatch, lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(OpenRouterAPIError, match="empty_model_response"):
        OpenRouterClient(Settings(openrouter_api_key="sk-test")).complete("{}")


def test_missing_key_fails_without_request(monkeypatch: pytest.MonkeyPatch) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    _use_transport(monkeypatch, _handler)
    with pytest.raises(OpenRouterAPIError, match="missing_openrouter_api_key"):
        OpenRouterClient(Settings(openrouter_api_key="")).complete("{}")


def _counting(attempts: list[int], status: int, **kwargs: Any) -> Callable[[httpx.Request], httpx.Response]:
    def _handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(status, **kwargs)

    return _handler


def test_rate_limit_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []
    _use_transport(monkeypatch, _counting(attempts, 429, json={"error": "rate limited"}))
    with pytest.raises(OpenRouterAPIError, match="http_429"):
        OpenRouterClient(Settings(openrouter_api_key="sk-test")).complete("{}")
    assert len(attempts) == 3


def test_transport_errors_are_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    _use_transport(monkeypatch, _handler)
    with pytest.raises(OpenRouterAPIError, match="transport"):
        OpenRouterClient(Settings(openrouter_api_key="sk-test")).complete("{}")
    assert len(attempts) == 3


@pytest.mark.parametrize(
    ("status", "body", "message"),
    [
        (401, {"json": {"error": "invalid key"}}, "http_401"),
        (400, {"json": {"error": "bad model"}}, "http_400"),
        (200, {"text": "<html>gateway</html>"}, "response_not_json"),
        (200, {"json": {"choices": []}}, "empty_model_response"),
    ],
)
def test_permanent_failures_are_not_retried(
    monkeypatch: pytest.MonkeyPatch, status: int, body: dict[str, Any], message: str
) -> None:
    attempts: list[int] = []
    _use_transport(monkeypatch, _counting(attempts, status, **body))
    with pytest.raises(OpenRouterAPIError, match=message):
        OpenRouterClient(Settings(openrouter_api_key="sk-test")).complete("{}")
    assert len(attempts) == 1
