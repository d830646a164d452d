import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from croniter import croniter, CroniterBadDateError


SECOND = timedelta(seconds=1)
MINUTE = timedelta(minutes=1)

# bare day numbers, not step sizes or "#nth" suffixes
_DAY_NUMBER = re.compile(r"(?<![/#\d])\d+")
_WILDCARDS = ("*", "?")


def _quartz_weekdays(field: str) -> str:
    # Quartz counts 1 = Sunday .. 7 = Saturday, croniter 0 = Sunday .. 6 = Saturday
    def shift(match: re.Match) -> str:
        day = int(match.group())
        if not 1 <= day <= 7:
            raise ValueError(f"Day of week {day} out of range 1-7")
        return str(day - 1)

    return _DAY_NUMBER.sub(shift, field)


def _normalize(expression: str) -> List[str]:
    """
    Translate a 5/6/7 field expression into croniter fields.

    Raises ValueError for layouts croniter would accept but that mean something
    else (or nothing) in Quartz.
    """
    fields = expression.split()
    if len(fields) not in (5, 6, 7):
        raise ValueError(f"Expected 5, 6 or 7 fields, got {len(fields)}")
    quartz = len(fields) >= 6
    day_of_month, day_of_week = (3, 5) if quartz else (2, 4)

    for index, field in enumerate(fields):
        if "?" in field and (index not in (day_of_month, day_of_week) or field != "?"):
            raise ValueError("'?' is only allowed as a whole day-of-month or day-of-week field")

    if quartz:
        if fields[day_of_month] not in _WILDCARDS and fields[day_of_week] not in _WILDCARDS:
            raise ValueError("Specifying both day-of-month and day-of-week is not supported")
        fields[day_of_week] = _quartz_weekdays(fields[day_of_week])

    return ["*" if field == "?" else field for field in fields]


class CronMatcher:
    """
    Compiled cron expression.

    Accepts five fields (minute resolution, plain cron) or six/seven fields with
    seconds first and an optional trailing year, Quartz style: ``?`` in one of the
    day fields and numeric weekdays counted from 1 = Sunday. The expression is
    parsed once, in the constructor; ``matches`` only steps a prepared iterator.
    """

    def __init__(self, expression: str):
        if not self.is_valid_expression(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        fields = _normalize(expression)
        self.expression: str = expression
        self.has_seconds: bool = len(fields) >= 6
        self.resolution: timedelta = SECOND if self.has_seconds else MINUTE
        self._iter = croniter(
            " ".join(fields),
            datetime.now(timezone.utc),
            second_at_beginning=True,
        )
        expanded = self._iter.expanded
        # the year field is optional, the last year it allows bounds every search
        self._last_year: Optional[int] = None
        if len(expanded) > 6 and "*" not in expanded[6]:
            self._last_year = max(int(year) for year in expanded[6])

    @staticmethod
    def is_valid_expression(expression: str) -> bool:
        if not isinstance(expression, str):
            return False
        try:
            fields = _normalize(expression)
            croniter(" ".join(fields), datetime.now(timezone.utc), second_at_beginning=True)
        except (ValueError, KeyError, TypeError):
            return False
        return True

    def slot(self, instant: datetime) -> datetime:
        """
        Truncate ``instant`` to the resolution of the expression.
        """
        if self.has_seconds:
            return instant.replace(microsecond=0)
        return instant.replace(second=0, microsecond=0)

    def matches(self, instant: datetime) -> bool:
        slot = self.slot(instant)
        if self._exhausted(slot):
            return False
        self._iter.set_current(slot - self.resolution, force=True)
        try:
            return self._iter.get_next(datetime) == slot
        except CroniterBadDateError:
            return False

    def next_occurrence(self, from_instant: datetime) -> Optional[datetime]:
        """
        Next instant strictly after ``from_instant`` that satisfies the expression,
        or None when the expression can never match again.
        """
        if self._exhausted(from_instant):
            return None
        self._iter.set_current(from_instant, force=True)
        try:
            return self._iter.get_next(datetime)
        except CroniterBadDateError:
            return None

    def _exhausted(self, instant: datetime) -> bool:
        return self._last_year is not None and instant.year > self._last_year

    def __repr__(self) -> str:
        return f"CronMatcher({self.expression!r})"
