"""AI input/output schemas and strict parsing helpers."""

from __future__ import annotations

import json
import re
import time
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from signal_trading.errors import RecommendationDecodeError
from signal_trading.types import Candle, IndicatorSnapshot

_MIN_RATIONALE_CHARS = 10


class HistoryBar(BaseModel):
    """One candle of recent history as sent to the model."""

    model_config = ConfigDict(extra="forbid")

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class SnapshotMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    symbol: str = Field(pattern=r"^[A-Z0-9]+$")
    interval: str
    timestamp: int
    candle_count: int = Field(ge=0)
    history_depth: int = Field(ge=0)


class MarketSnapshot(BaseModel):
    """Market state serialized for the recommendation engine."""

    model_config = ConfigDict(extra="forbid")

    metadata: SnapshotMetadata
    current: dict[str, float | int]
    recent_history: list[HistoryBar] = Field(default_factory=list)

    @classmethod
    def from_candles(
        cls,
        candles: list[Candle],
        indicators: IndicatorSnapshot,
        *,
        symbol: str,
        interval: str,
        history_depth: int,
    ) -> "MarketSnapshot":
        """Build a snapshot from the candle window and its indicator values."""
        recent = candles[-history_depth:] if history_depth > 0 else []
        return cls(
            metadata=SnapshotMetadata(
                symbol=symbol,
                interval=interval,
                timestamp=int(time.time() * 1000),
                candle_count=len(candles),
                history_depth=len(recent),
            ),
            current=indicators.as_dict(),
            recent_history=[
                HistoryBar(
                    timestamp=c.open_time,
                    open=c.open,
                    high=c.high,
                    low=c.low,
                    close=c.close,
                    volume=c.volume,
                )
                for c in recent
            ],
        )

    def serialize(self) -> str:
        return self.model_dump_json()


class Recommendation(BaseModel):
    """Raw model proposal. Shape is checked here, business rules in the validator."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    direction: str = Field(validation_alias=AliasChoices("direction", "signal"))
    confidence: float
    entry: float = Field(default=0.0, validation_alias=AliasChoices("entry", "entry_price"))
    stop: float = Field(default=0.0, validation_alias=AliasChoices("stop", "stop_loss"))
    target: float = Field(default=0.0, validation_alias=AliasChoices("target", "take_profit"))
    rationale: str = Field(
        min_length=_MIN_RATIONALE_CHARS,
        validation_alias=AliasChoices("rationale", "reasoning"),
    )

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, v: Any) -> Any:
        """Accept 'STRONG BUY', 'strong-buy' and 'STRONG_BUY' alike."""
        if isinstance(v, str):
            return re.sub(r"[\s\-]+", "_", v.strip()).lower()
        return v

    @field_validator("entry", "stop", "target", mode="before")
    @classmethod
    def missing_price_is_zero(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @classmethod
    def parse_strict(cls, payload: dict[str, Any]) -> "Recommendation":
        """Validate a decoded dict, mapping schema errors to a decode error."""
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise RecommendationDecodeError(
                f"schema_validation_error: {location}: {first['msg']}"
            ) from exc

    @classmethod
    def parse_response_text(cls, text: str) -> "Recommendation":
        """Parse model text that may wrap the JSON object in commentary."""
        try:
            json_obj = _extract_json_obj(text)
        except ValueError as exc:
            raise RecommendationDecodeError(str(exc)) from exc
        return cls.parse_strict(json_obj)


def parse_recommendation_text(text: str) -> Recommendation:
    return Recommendation.parse_response_text(text)


def _extract_json_obj(text: str) -> dict[str, Any]:
    """Extract the first JSON object from plain text or fenced content."""
    stripped = text.strip()
    if not stripped:
        raise ValueError("model_response_empty")

    if stripped.startswith("{") and stripped.endswith("}"):
        return _decode_object(stripped)

    fenced_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", stripped, re.DOTALL)
    if fenced_match:
        return _decode_object(fenced_match.group(1))

    brace_match = re.search(r"\{.*\}", stripped, re.DOTALL)
    if brace_match:
        return _decode_object(brace_match.group(0))

    raise ValueError("model_response_not_json")


def _decode_object(raw: str) -> dict[str, Any]:
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"model_response_invalid_json: {exc.msg}") from exc
    if isinstance(decoded, dict):
        return decoded
    raise ValueError("model_response_json_not_object")
