from __future__ import annotations

import enum
import re


class Weekday(str, enum.Enum):
    SUN = "sun"
    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"


# Every token the catalog or a subscriber may use for a day. The catalog
# publishes single Arabic letters ("ن ر" is Monday/Wednesday); the web client
# may send English names.
DAY_ALIASES: dict[Weekday, list[str]] = {
    Weekday.SUN: ["sunday", "su", "ح", "أحد", "الأحد"],
    Weekday.MON: ["monday", "mo", "ن", "اثنين", "الاثنين"],
    Weekday.TUE: ["tuesday", "tu", "ث", "ثلاثاء", "الثلاثاء"],
    Weekday.WED: ["wednesday", "we", "ر", "أربعاء", "الأربعاء"],
    Weekday.THU: ["thursday", "th", "خ", "خميس", "الخميس"],
    Weekday.FRI: ["friday", "fr", "ج", "جمعة", "الجمعة"],
    Weekday.SAT: ["saturday", "sa", "س", "سبت", "السبت"],
}

_DAY_SEPARATORS = re.compile(r"[\s,/]+")
_TIME_RANGE_SEPARATOR = re.compile(r"\s*(?:-|–|—|\bto\b|إلى)\s*", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def _normalise_day(token: str) -> Weekday | None:
    cleaned = token.strip().lower().rstrip(".")

    for day in Weekday:
        if cleaned == day.value or cleaned in DAY_ALIASES[day]:
            return day

    return None


def parse_days(text: str) -> frozenset[Weekday]:
    """Parse a days pattern like ``"Mon Wed"`` or ``"ن ر"`` into weekdays.

    Raises ValueError for an empty pattern or any unrecognised token, so a
    half-understood pattern never silently widens or narrows a match.
    """
    tokens = [t for t in _DAY_SEPARATORS.split(text.strip()) if t]
    if not tokens:
        raise ValueError("days pattern is empty")

    days: set[Weekday] = set()
    for token in tokens:
        day = _normalise_day(token)
        if day is None:
            raise ValueError(f"unrecognised day token: {token!r}")
        days.add(day)

    return frozenset(days)


def try_parse_days(text: str | None) -> frozenset[Weekday] | None:
    if not text:
        return None
    try:
        return parse_days(text)
    except ValueError:
        return None


def normalise_time_range(text: str) -> str:
    """Canonicalise a time range so equivalent spellings compare equal.

    ``"08:00 AM   إلى   09:30 AM"`` -> ``"08:00 am-09:30 am"``
    ``"10:00 - 11:00"`` -> ``"10:00-11:00"``
    """
    cleaned = _WHITESPACE.sub(" ", text.strip().lower())
    parts = [p.strip() for p in _TIME_RANGE_SEPARATOR.split(cleaned)]
    if len(parts) == 2 and all(parts):
        return f"{parts[0]}-{parts[1]}"
    return cleaned
