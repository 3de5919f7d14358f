from enum import StrEnum

from gmboard.domain.exceptions import InvalidArgument


class Timeframe(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ALL_TIME = "allTime"

    @classmethod
    def parse(cls, value: str) -> "Timeframe":
        """Accepts the canonical values, case-insensitively."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        raise InvalidArgument(f"Unknown timeframe: {value!r}")

    @property
    def window_seconds(self):
        return _WINDOW_SECONDS[self]


SECONDS_PER_DAY = 86400

_WINDOW_SECONDS = {
    Timeframe.DAILY: SECONDS_PER_DAY,
    Timeframe.WEEKLY: 7 * SECONDS_PER_DAY,
    Timeframe.ALL_TIME: None,
}
