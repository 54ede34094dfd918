import json

import pytest

from signal_trading.ai.schemas import MarketSnapshot, Recommendation, parse_recommendation_text
from signal_trading.errors import RecommendationDecodeError
from signal_trading.features.indicators import build_indicator_snapshot
from signal_trading.types import Candle


def _candles(count: int) -> list[Candle]:
    return [
        Candle(
            symbol="BTCUSDT",
            interval="4h",
            open_time=1_700_000_000_000 + i * 14_400_000,
            close_time=1_700_000_000_000 + (i + 1) * 14_400_000 - 1,
            open=100.0 + i,
            high=102.0 + i,
            low=99.0 + i,
            close=101.0 + i,
            volume=10.0,
        )
        for i in range(count)
    ]


def test_recommendation_parse_plain_json() -> None:
    raw = """
    {
      "direction": "buy",
      "confidence": 72,
      "entry": 90000,
      "stop": 88000,
      "target": 96000,
      "rationale": "trend remains intact above the 50 SMA"
    }
    """
    rec = parse_recommendation_text(raw)
    assert rec.direction == "buy"
    assert rec.confidence == 72
    assert rec.entry == 90000
    assert rec.target == 96000


def test_recommendation_accepts_legacy_field_names_and_fences() -> None:
    raw = (
        "Here is my analysis:\n```json\n"
        '{"signal": "STRONG SELL", "confidence": 81, "entry_price": 100,'
        ' "stop_loss": 105, "take_profit": 85, "reasoning": "lower highs on rising volume"}'
        "\n```\nGood luck."
    )
    rec = Recommendation.parse_response_text(raw)
    assert rec.direction == "strong_sell"
    assert (rec.entry, rec.stop, rec.target) == (100, 105, 85)
    assert rec.rationale.startswith("lower highs")


def test_recommendation_hold_missing_prices_default_to_zero() -> None:
    rec = parse_recommendation_text(
        '{"direction": "hold", "confidence": 40, "stop": null, "rationale": "range bound market"}'
    )
    assert rec.direction == "hold"
    assert (rec.entry, rec.stop, rec.target) == (0.0, 0.0, 0.0)


def test_recommendation_embedded_object_in_prose() -> None:
    raw = 'Answer: {"direction": "sell", "confidence": 55, "entry": 10, "stop": 11, "target": 7, "rationale": "breakdown below support"} end'
    assert parse_recommendation_text(raw).direction == "sell"


@pytest.mark.parametrize(
    "raw, fragment",
    [
        ("", "model_response_empty"),
        ("hello world", "model_response_not_json"),
        ("[1, 2, 3]", "model_response_not_json"),
        ('{"direction": "buy", "confidence": }', "model_response_invalid_json"),
        ('{"direction": "buy", "confidence": "bad", "rationale": "long enough text"}', "confidence"),
        ('{"direction": "buy", "confidence": 50, "rationale": "short"}', "rationale"),
    ],
)
def test_recommendation_decode_errors(raw: str, fragment: str) -> None:
    with pytest.raises(RecommendationDecodeError) as excinfo:
        parse_recommendation_text(raw)
    assert fragment in str(excinfo.value)


def test_market_snapshot_serializes_current_and_history() -> None:
    candles = _candles(60)
    indicators = build_indicator_snapshot(candles)
    snapshot = MarketSnapshot.from_candles(
        candles,
        indicators,
        symbol="BTCUSDT",
        interval="4h",
        history_depth=20,
    )
    payload = json.loads(snapshot.serialize())
    assert payload["metadata"]["symbol"] == "BTCUSDT"
    assert payload["metadata"]["candle_count"] == 60
    assert payload["metadata"]["history_depth"] == 20
    assert payload["current"]["price"] == candles[-1].close
    assert len(payload["recent_history"]) == 20
    assert payload["recent_history"][-1]["timestamp"] == candles[-1].open_time
