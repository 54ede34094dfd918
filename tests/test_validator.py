import pytest

from signal_trading.ai.schemas import Recommendation
from signal_trading.config import Settings
from signal_trading.errors import RecommendationValidationError, ValidationErrorKind
from signal_trading.risk.validator import (
    WARNING_LOW_RISK_REWARD,
    WARNING_PSYCHOLOGICAL_LEVEL,
    RecommendationValidator,
)
from signal_trading.types import Direction


def _rec(direction: str, entry: float, stop: float, target: float, confidence: float = 70.0) -> Recommendation:
    return Recommendation(
        direction=direction,
        confidence=confidence,
        entry=entry,
        stop=stop,
        target=target,
        rationale="test rationale text",
    )


def _kind(validator: RecommendationValidator, rec: Recommendation) -> ValidationErrorKind:
    with pytest.raises(RecommendationValidationError) as excinfo:
        validator.validate(rec)
    return excinfo.value.kind


def test_buy_three_to_one_has_no_risk_reward_warning() -> None:
    validated = RecommendationValidator().validate(_rec("buy", 90_000, 88_000, 96_000))
    assert validated.direction is Direction.BUY
    assert validated.risk_reward == pytest.approx(3.0)
    assert WARNING_LOW_RISK_REWARD not in validated.warnings


def test_sell_with_levels_on_the_wrong_side_is_inverted() -> None:
    assert _kind(RecommendationValidator(), _rec("sell", 100, 95, 105)) is ValidationErrorKind.INVERTED_LEVELS


def test_buy_with_target_below_entry_is_inverted() -> None:
    assert _kind(RecommendationValidator(), _rec("strong_buy", 100, 90, 95)) is ValidationErrorKind.INVERTED_LEVELS


@pytest.mark.parametrize(
    ("direction", "entry", "stop", "target"),
    [
        ("buy", 100, 100, 110),
        ("buy", 100, 105, 110),
        ("strong_buy", 90_000, 91_000, 96_000),
        ("buy", 100, 90, 100),
        ("sell", 100, 100, 90),
        ("sell", 100, 95, 90),
        ("strong_sell", 100, 110, 100),
        ("strong_sell", 100, 110, 120),
    ],
)
def test_levels_on_the_wrong_side_of_entry_are_inverted(
    direction: str, entry: float, stop: float, target: float
) -> None:
    kind = _kind(RecommendationValidator(), _rec(direction, entry, stop, target))
    assert kind is ValidationErrorKind.INVERTED_LEVELS


@pytest.mark.parametrize(
    ("entry", "stop", "target"),
    [(100, 120, 80), (100, 90, 130), (100, 100, 100), (-5, 0, 7)],
)
def test_hold_is_valid_whatever_the_levels(entry: float, stop: float, target: float) -> None:
    validated = RecommendationValidator().validate(_rec("hold", entry, stop, target))
    assert validated.direction is Direction.HOLD
    assert (validated.entry, validated.stop, validated.target) == (None, None, None)


def test_stop_too_close_is_degenerate_risk() -> None:
    kind = _kind(RecommendationValidator(min_risk_abs=1.0), _rec("buy", 100, 99.9999, 110))
    assert kind is ValidationErrorKind.DEGENERATE_RISK


def test_hold_is_valid_with_zero_prices_and_drops_levels() -> None:
    validated = RecommendationValidator().validate(_rec("hold", 0, 0, 0, confidence=30))
    assert validated.direction is Direction.HOLD
    assert validated.entry is None
    assert validated.stop is None
    assert validated.target is None
    assert validated.warnings == []


def test_hold_still_requires_confidence_in_range() -> None:
    kind = _kind(RecommendationValidator(), _rec("hold", 0, 0, 0, confidence=140))
    assert kind is ValidationErrorKind.CONFIDENCE_OUT_OF_RANGE


def test_unknown_direction_is_rejected_first() -> None:
    kind = _kind(RecommendationValidator(), _rec("to_the_moon", -1, -1, -1, confidence=500))
    assert kind is ValidationErrorKind.INVALID_DIRECTION


def test_non_positive_price_is_rejected() -> None:
    assert _kind(RecommendationValidator(), _rec("sell", 100, 0, 90)) is ValidationErrorKind.NON_POSITIVE_PRICE


def test_low_risk_reward_is_a_warning_not_an_error() -> None:
    validated = RecommendationValidator().validate(_rec("buy", 100, 90, 110))
    assert validated.risk_reward == pytest.approx(1.0)
    assert WARNING_LOW_RISK_REWARD in validated.warnings


def test_round_number_exit_is_flagged() -> None:
    validated = RecommendationValidator().validate(_rec("buy", 90_000, 88_000, 96_000))
    assert WARNING_PSYCHOLOGICAL_LEVEL in validated.warnings


def test_levels_are_rounded_to_tick() -> None:
    validated = RecommendationValidator(price_tick=0.1).validate(_rec("sell", 100.04, 103.26, 90.01))
    assert validated.entry == pytest.approx(100.0)
    assert validated.stop == pytest.approx(103.3)
    assert validated.target == pytest.approx(90.0)


def test_rounding_that_collapses_levels_is_rejected() -> None:
    validator = RecommendationValidator(min_risk_abs=0.01, price_tick=0.1)
    kind = _kind(validator, _rec("buy", 100.04, 100.0, 100.5))
    assert kind is ValidationErrorKind.INVERTED_LEVELS


def test_from_settings_uses_configured_floor() -> None:
    validator = RecommendationValidator.from_settings(Settings(min_risk_abs=20.0))
    assert _kind(validator, _rec("buy", 100, 90, 140)) is ValidationErrorKind.DEGENERATE_RISK
