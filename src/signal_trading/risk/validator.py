"""Business rules applied to a decoded model recommendation."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

from signal_trading.ai.schemas import Recommendation
from signal_trading.config import Settings
from signal_trading.errors import RecommendationValidationError, ValidationErrorKind
from signal_trading.types import Direction
from signal_trading.utils.exchange_filters import is_multiple_of, round_price
from signal_trading.utils.logging import get_logger, log_risk_event

WARNING_LOW_RISK_REWARD = "risk_reward_below_target"
WARNING_PSYCHOLOGICAL_LEVEL = "psychological_level"


@dataclass(slots=True)
class ValidatedRecommendation:
    """Recommendation that satisfies every hard rule.

    Levels are rounded to the price tick; they are None for hold.
    """

    direction: Direction
    confidence: float
    entry: float | None
    stop: float | None
    target: float | None
    rationale: str
    risk_reward: float | None = None
    warnings: list[str] = field(default_factory=list)


class RecommendationValidator:
    """Hard and soft rules for untrusted recommendations."""

    def __init__(
        self,
        *,
        min_risk_reward: float = 3.0,
        min_risk_abs: float = 1.0,
        psychological_levels: Sequence[float] = (1000.0, 5000.0),
        price_tick: float = 0.1,
    ) -> None:
        self._min_risk_reward = min_risk_reward
        self._min_risk_abs = min_risk_abs
        self._psychological_levels = tuple(psychological_levels)
        self._price_tick = price_tick
        self._logger = get_logger("signal_trading.risk.validator")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecommendationValidator":
        return cls(
            min_risk_reward=settings.min_risk_reward,
            min_risk_abs=settings.min_risk_abs,
            psychological_levels=settings.psychological_levels,
            price_tick=settings.price_tick,
        )

    def validate(self, rec: Recommendation) -> ValidatedRecommendation:
        """Apply the rules in order, raising on the first hard failure."""
        direction = _parse_direction(rec.direction)

        if not (math.isfinite(rec.confidence) and 0.0 <= rec.confidence <= 100.0):
            raise RecommendationValidationError(
                ValidationErrorKind.CONFIDENCE_OUT_OF_RANGE,
                f"confidence {rec.confidence} outside [0, 100]",
            )

        if direction.is_hold:
            return ValidatedRecommendation(
                direction=direction,
                confidence=rec.confidence,
                entry=None,
                stop=None,
                target=None,
                rationale=rec.rationale,
            )

        self._check_levels(direction, rec.entry, rec.stop, rec.target)

        entry = round_price(rec.entry, self._price_tick)
        stop = round_price(rec.stop, self._price_tick)
        target = round_price(rec.target, self._price_tick)
        # rounding can collapse levels that were distinct before
        self._check_levels(direction, entry, stop, target, note=" after tick rounding")

        risk = abs(entry - stop)
        reward = abs(target - entry)
        risk_reward = reward / risk
        warnings: list[str] = []

        if risk_reward < self._min_risk_reward:
            warnings.append(WARNING_LOW_RISK_REWARD)
            log_risk_event(
                self._logger,
                event_type=WARNING_LOW_RISK_REWARD,
                action="accepted",
                ratio=round(risk_reward, 2),
                target=self._min_risk_reward,
                entry=entry,
                stop=stop,
                take_profit=target,
            )

        touched = [
            level
            for level in self._psychological_levels
            if is_multiple_of(stop, level) or is_multiple_of(target, level)
        ]
        if touched:
            warnings.append(WARNING_PSYCHOLOGICAL_LEVEL)
            log_risk_event(
                self._logger,
                event_type=WARNING_PSYCHOLOGICAL_LEVEL,
                action="flagged",
                stop=stop,
                take_profit=target,
                levels=touched,
            )

        return ValidatedRecommendation(
            direction=direction,
            confidence=rec.confidence,
            entry=entry,
            stop=stop,
            target=target,
            rationale=rec.rationale,
            risk_reward=risk_reward,
            warnings=warnings,
        )

    def _check_levels(
        self,
        direction: Direction,
        entry: float,
        stop: float,
        target: float,
        *,
        note: str = "",
    ) -> None:
        for name, value in (("entry", entry), ("stop", stop), ("target", target)):
            if not math.isfinite(value) or value <= 0:
                raise RecommendationValidationError(
                    ValidationErrorKind.NON_POSITIVE_PRICE,
                    f"{name} must be positive, got {value}{note}",
                )

        if direction.is_buy and not (stop < entry < target):
            raise RecommendationValidationError(
                ValidationErrorKind.INVERTED_LEVELS,
                f"buy requires stop < entry < target, got {stop} / {entry} / {target}{note}",
            )
        if direction.is_sell and not (target < entry < stop):
            raise RecommendationValidationError(
                ValidationErrorKind.INVERTED_LEVELS,
                f"sell requires target < entry < stop, got {target} / {entry} / {stop}{note}",
            )

        risk = abs(entry - stop)
        if risk < self._min_risk_abs:
            raise RecommendationValidationError(
                ValidationErrorKind.DEGENERATE_RISK,
                f"risk {risk:.8g} below floor {self._min_risk_abs}{note}",
            )


def _parse_direction(raw: str) -> Direction:
    try:
        return Direction(raw)
    except ValueError:
        raise RecommendationValidationError(
            ValidationErrorKind.INVALID_DIRECTION,
            f"unknown direction {raw!r}",
        ) from None
