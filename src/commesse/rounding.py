"""Rounding rules and payable-duration math for work sessions."""

import math
from datetime import datetime, timezone
from enum import Enum

__all__ = [
    "RoundingRule",
    "ensure_utc",
    "round_instant",
    "payable_minutes",
    "format_minutes",
]


class RoundingRule(str, Enum):
    """Quantization step applied to session start/end before duration math."""

    OFF = "off"
    NEAREST_5 = "nearest5"
    NEAREST_15 = "nearest15"
    NEAREST_30 = "nearest30"

    @property
    def step_seconds(self) -> int:
        return _STEP_SECONDS[self]

    @classmethod
    def parse(cls, value) -> "RoundingRule":
        """Accept a rule, its raw value, or a bare minute count ("15")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text.isdigit():
            text = "off" if text == "0" else f"nearest{text}"
        return cls(text)


_STEP_SECONDS = {
    RoundingRule.OFF: 0,
    RoundingRule.NEAREST_5: 5 * 60,
    RoundingRule.NEAREST_15: 15 * 60,
    RoundingRule.NEAREST_30: 30 * 60,
}


def ensure_utc(instant: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def round_instant(instant: datetime, rule: RoundingRule) -> datetime:
    """Round an instant to the nearest multiple of the rule's step.

    Works on the epoch-seconds value, halves go away from zero, so
    09:07:30 with ``nearest15`` becomes 09:15:00.
    """
    instant = ensure_utc(instant)
    step = RoundingRule.parse(rule).step_seconds
    if step == 0:
        return instant

    quotient = instant.timestamp() / step
    steps = math.copysign(math.floor(abs(quotient) + 0.5), quotient)
    return datetime.fromtimestamp(steps * step, tz=timezone.utc)


def payable_minutes(
    start: datetime, end: datetime, break_minutes: int, rule: RoundingRule
) -> int:
    """Worked minutes between start and end after rounding and break.

    Never negative: a break longer than the interval, or rounding that
    flips the ends, yields 0.
    """
    rounded_start = round_instant(start, rule)
    rounded_end = round_instant(end, rule)
    raw_minutes = int((rounded_end - rounded_start).total_seconds() / 60)
    return max(0, raw_minutes - max(0, break_minutes))


def format_minutes(minutes: int) -> str:
    """Format a minute total as `Xh Ym`."""
    hours = int(minutes) // 60
    mins = int(minutes) % 60
    return f"{hours}h {mins}m"
