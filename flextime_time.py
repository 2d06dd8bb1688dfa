#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Parsed times: a fully-specified AbsoluteTime (4-digit year, concrete range)
or a partially-specified RelativeTime resolved against a reference instant.

Both are immutable. ``add``/``with_field`` return a new value whose text is
rebuilt from the field model, keeping each element's original style.
"""
from __future__ import annotations
import calendar
import re
from dataclasses import dataclass, field as dc_field, replace
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Callable, Union

from flextime_core import (
    CALENDAR_FIELDS,
    EVALUATION_NAME,
    MONTH_NAMES,
    TWENTY_FOUR_HOUR,
    WEEKDAY_ABBREVS,
    WEEKDAY_NAMES,
    DateElementType as F,
    ParseError,
    ScratchCalendar,
    TimeFieldError,
    default_zone,
    diag,
    ensure_aware,
    lenient_datetime,
    match_case,
    month_len,
    now_utc,
    pad,
)
from flextime_tokens import ParsedElement, match_time


class Evaluation(Enum):
    PAST = "past"
    FUTURE = "future"
    CLOSEST = "closest"


Reference = Union[datetime, Callable[[], datetime], None]


@dataclass(frozen=True)
class TimeEvaluationOptions:
    """How parsed text is interpreted: zone, resolution cap, 12/24-hour clock, evaluation policy."""
    zone: tzinfo = dc_field(default_factory=default_zone)
    max_resolution: F = F.SUBSECOND
    twenty_four_hour: bool = TWENTY_FOUR_HOUR
    evaluation: Evaluation = Evaluation(EVALUATION_NAME)

    def with_zone(self, zone: tzinfo) -> "TimeEvaluationOptions":
        return self if zone is self.zone else replace(self, zone=zone)

    def with_max_resolution(self, resolution: F) -> "TimeEvaluationOptions":
        return self if resolution == self.max_resolution else replace(self, max_resolution=resolution)

    def with_24_hour(self, twenty_four_hour: bool = True) -> "TimeEvaluationOptions":
        if twenty_four_hour == self.twenty_four_hour:
            return self
        return replace(self, twenty_four_hour=twenty_four_hour)

    def with_evaluation(self, evaluation: Evaluation) -> "TimeEvaluationOptions":
        return self if evaluation is self.evaluation else replace(self, evaluation=evaluation)


def _resolve_reference(reference: Reference) -> datetime:
    if reference is None:
        return now_utc()
    ref = reference() if callable(reference) else reference
    return ensure_aware(ref)


# ==============================================================================
# SECTION: Element rendering
# ==============================================================================
def _is_full_name(el: ParsedElement, names: tuple) -> bool:
    return el.text.lower() == names[el.value].lower()


def _render_element(el: ParsedElement, value: int, twelve_hour: bool, keep_width: bool = True) -> str:
    if el.style == "month":
        name = MONTH_NAMES[value] if _is_full_name(el, MONTH_NAMES) else MONTH_NAMES[value][:3]
        return match_case(el.text, name)
    if el.style == "weekday":
        name = WEEKDAY_NAMES[value] if _is_full_name(el, WEEKDAY_NAMES) else WEEKDAY_ABBREVS[value]
        return match_case(el.text, name)
    if el.style == "ampm":
        ch = "p" if value else "a"
        return (ch.upper() if el.text[0].isupper() else ch) + el.text[1:]
    if el.style == "zone":
        return el.text
    width = len(el.text) if keep_width else 1
    if el.field == F.YEAR and len(el.text) <= 2:
        return pad(value % 100, 2)
    if el.field == F.MONTH:
        return pad(value + 1, width)
    if el.field == F.HOUR and twelve_hour:
        return pad(value % 12 or 12, width)
    return pad(value, width)


# ==============================================================================
# SECTION: Shared field access
# ==============================================================================
@dataclass(frozen=True)
class _TimeFields:
    text: str
    elements: tuple[ParsedElement, ...]     # ordered by start offset
    zone: tzinfo

    def __str__(self):
        return self.text

    def field(self, field_type: F) -> ParsedElement | None:
        for el in self.elements:
            if el.field == field_type:
                return el
        return None

    def get(self, field_type: F) -> int | None:
        el = self.field(field_type)
        return None if el is None else el.value

    @property
    def resolution(self) -> F:
        """Finest calendar field present."""
        return max(el.field for el in self.elements if el.field in CALENDAR_FIELDS)

    def _coarsest(self) -> F:
        return min(el.field for el in self.elements if el.field in CALENDAR_FIELDS)

    def _values(self) -> dict:
        return {el.field: el.value for el in self.elements}

    def _adjustable(self, field_type: F) -> ParsedElement:
        if field_type in (F.AMPM, F.TIMEZONE):
            raise TimeFieldError(f"{field_type.label} is derived and cannot be adjusted directly")
        el = self.field(field_type)
        if el is None:
            raise TimeFieldError(f"No {field_type.label.lower()} field in {self.text!r}")
        return el

    def _rendered(self, values: dict) -> tuple[str, tuple[ParsedElement, ...]]:
        """Rebuild the display text and element offsets from new field values."""
        twelve_hour = F.AMPM in values
        numeric_date = any(el.field == F.MONTH and el.style == "num" for el in self.elements)
        minute = self.field(F.MINUTE)
        compact_clock = minute is not None and any(
            el.field == F.HOUR and el.end == minute.start for el in self.elements
        )
        parts: list[str] = []
        out: list[ParsedElement] = []
        pos = 0
        cursor = 0
        for el in self.elements:
            gap = self.text[pos:el.start]
            parts.append(gap)
            cursor += len(gap)
            value = values[el.field]
            # zero padding is kept where it was written or where the format needs it
            keep_width = (
                el.text.startswith("0")
                or el.field not in (F.DAY, F.HOUR)
                or (el.field == F.DAY and numeric_date)
                or (el.field == F.HOUR and compact_clock)
            )
            rendered = _render_element(el, value, twelve_hour, keep_width)
            out.append(replace(el, start=cursor, value=value, text=rendered))
            parts.append(rendered)
            cursor += len(rendered)
            pos = el.end
        parts.append(self.text[pos:])
        return "".join(parts), tuple(out)


def _subsecond_nanos(el: ParsedElement) -> int:
    return el.value * 10 ** (9 - len(el.text))


# ==============================================================================
# SECTION: Fully-specified time
# ==============================================================================
@dataclass(frozen=True)
class AbsoluteTime(_TimeFields):
    """A time with a 4-digit year: the range [time, max_time)."""
    time: datetime
    max_time: datetime

    def evaluate(self, reference: Reference = None) -> datetime:
        return self.time

    def may_match(self, time: datetime) -> bool:
        t = ensure_aware(time)
        return self.time <= t < self.max_time

    def is_comparable(self, other: ParsedTime) -> bool:
        return True

    def compare_to(self, other: ParsedTime) -> int:
        match other:
            case AbsoluteTime():
                if self.max_time <= other.time:
                    return -1
                if other.max_time <= self.time:
                    return 1
                return 0
            case RelativeTime():
                t = other.evaluate(self.time)
                if t < self.time:
                    return 1
                if t >= self.max_time:
                    return -1
                return 0
        raise TypeError(f"Cannot compare a parsed time with {type(other).__name__}")

    def add(self, field_type: F, amount: int) -> "AbsoluteTime":
        el = self._adjustable(field_type)
        cal = ScratchCalendar(self.time, self.zone)
        sub = self.field(F.SUBSECOND)
        # nanoseconds below the microsecond the datetime can hold
        below_micros = _subsecond_nanos(sub) % 1000 if sub is not None else 0
        if field_type == F.SUBSECOND:
            micros, below_micros = divmod(below_micros + amount * 10 ** (9 - len(el.text)), 1000)
            cal.add(F.SUBSECOND, micros * 1000)
        else:
            cal.add(field_type, amount)
        return self._at(cal.time, below_micros)

    def with_field(self, field_type: F, value: int) -> "AbsoluteTime":
        el = self._adjustable(field_type)
        return self.add(field_type, value - el.value)

    def _at(self, time: datetime, below_micros: int = 0) -> "AbsoluteTime":
        cal = ScratchCalendar(time, self.zone)
        values = {}
        for el in self.elements:
            if el.field == F.SUBSECOND:
                values[el.field] = (cal.get(F.SUBSECOND) + below_micros) // 10 ** (9 - len(el.text))
            elif el.field == F.TIMEZONE:
                values[el.field] = el.value
            else:
                values[el.field] = cal.get(el.field)
        text, elements = self._rendered(values)
        return AbsoluteTime(text, elements, self.zone, cal.time,
                            _max_time(cal.time, self.zone, elements))


def _max_time(time: datetime, zone: tzinfo, elements: tuple[ParsedElement, ...]) -> datetime:
    resolution = max(el.field for el in elements if el.field in CALENDAR_FIELDS)
    if resolution == F.SUBSECOND:
        digits = len(next(el for el in elements if el.field == F.SUBSECOND).text)
        return time + timedelta(microseconds=10 ** (6 - digits) if digits <= 6 else 1)
    if resolution == F.WEEKDAY:
        resolution = F.DAY
    return ScratchCalendar(time, zone).add(resolution, 1).time


def _build_absolute(text: str, elements: tuple[ParsedElement, ...], zone: tzinfo) -> AbsoluteTime:
    by_field = {el.field: el for el in elements}
    year_el = by_field[F.YEAR]
    if not 1 <= year_el.value <= 9999:
        raise ParseError(f"Year out of range: {year_el.text}", year_el.start)
    month = by_field[F.MONTH].value if F.MONTH in by_field else 0
    day_el = by_field.get(F.DAY)
    day = day_el.value if day_el is not None else 1
    if day > month_len(year_el.value, month + 1):
        raise ParseError(f"{MONTH_NAMES[month]} {year_el.value} has no day {day}", day_el.start)
    sub = by_field.get(F.SUBSECOND)
    wall = datetime(
        year_el.value, month + 1, day,
        by_field[F.HOUR].value if F.HOUR in by_field else 0,
        by_field[F.MINUTE].value if F.MINUTE in by_field else 0,
        by_field[F.SECOND].value if F.SECOND in by_field else 0,
        _subsecond_nanos(sub) // 1000 if sub is not None else 0,
    )
    time = wall.replace(tzinfo=zone)
    return AbsoluteTime(text, elements, zone, time, _max_time(time, zone, elements))


# ==============================================================================
# SECTION: Partially-specified time
# ==============================================================================
_CARRY_PARENT = {
    F.SUBSECOND: F.SECOND,
    F.SECOND: F.MINUTE,
    F.MINUTE: F.HOUR,
    F.HOUR: F.DAY,
    F.DAY: F.MONTH,
    F.MONTH: F.YEAR,
}

# Next coarser unit shifted when the evaluated time violates the policy: (unit, step)
_POLICY_SHIFT = {
    F.YEAR: (F.YEAR, 100),
    F.MONTH: (F.YEAR, 1),
    F.DAY: (F.MONTH, 1),
    F.WEEKDAY: (F.DAY, 7),
    F.HOUR: (F.DAY, 1),
    F.MINUTE: (F.HOUR, 1),
    F.SECOND: (F.MINUTE, 1),
    F.SUBSECOND: (F.SECOND, 1),
}


def _relative_month_len(month_index: int, year: int | None) -> int:
    """Month length for a month index that may run past December; February is 28 without a year."""
    m = month_index % 12
    if m == 1:
        if year is None:
            return 28
        return 29 if calendar.isleap(2000 + year + month_index // 12) else 28
    return month_len(2001, m + 1)


def _carry_target(values: dict, field_type: F) -> F | None:
    if field_type == F.DAY:
        return F.MONTH if F.MONTH in values else None
    parent = _CARRY_PARENT.get(field_type)
    while parent is not None:
        if parent in values:
            return parent
        if parent == F.DAY and F.WEEKDAY in values:
            return F.WEEKDAY
        parent = _CARRY_PARENT.get(parent)
    return None


def _add_field(values: dict, field_type: F, amount: int, subsecond_digits: int) -> None:
    """Field arithmetic with rollover; carries go to the next coarser field present."""
    if not amount:
        return
    new = values[field_type] + amount
    carry = 0
    if field_type == F.YEAR:
        values[F.YEAR] = new % 100
        return
    if field_type == F.WEEKDAY:
        values[F.WEEKDAY] = new % 7
        return
    if field_type == F.DAY:
        if F.WEEKDAY in values:
            values[F.WEEKDAY] = (values[F.WEEKDAY] + amount) % 7
        if F.MONTH not in values:
            values[F.DAY] = (new - 1) % 31 + 1
            return
        month = values[F.MONTH]
        year = values.get(F.YEAR)
        months = 0
        while new > _relative_month_len(month + months, year):
            new -= _relative_month_len(month + months, year)
            months += 1
        while new < 1:
            months -= 1
            new += _relative_month_len(month + months, year)
        values[F.DAY] = new
        _add_field(values, F.MONTH, months, subsecond_digits)
        return
    if field_type == F.MONTH:
        carry, values[F.MONTH] = divmod(new, 12)
    elif field_type == F.HOUR:
        carry, values[F.HOUR] = divmod(new, 24)
    elif field_type in (F.MINUTE, F.SECOND):
        carry, values[field_type] = divmod(new, 60)
    elif field_type == F.SUBSECOND:
        carry, values[F.SUBSECOND] = divmod(new, 10 ** subsecond_digits)
    if carry:
        target = _carry_target(values, field_type)
        if target is not None:
            _add_field(values, target, carry, subsecond_digits)


@dataclass(frozen=True)
class RelativeTime(_TimeFields):
    """A time missing its year (or with a 2-digit one); resolved by ``evaluate``."""
    evaluation: Evaluation
    twenty_four_hour: bool

    def _hour_is_ambiguous(self) -> bool:
        hour = self.field(F.HOUR)
        return (
            hour is not None
            and not self.twenty_four_hour
            and self.field(F.AMPM) is None
            and hour.value <= 12
            and not hour.text.startswith("0")
        )

    def evaluate(self, reference: Reference = None) -> datetime:
        ref = _resolve_reference(reference).astimezone(self.zone)
        ref_wall = ref.replace(tzinfo=None)
        values = self._values()
        lowest = self.resolution
        ambiguous = self._hour_is_ambiguous()

        ref_parts = {
            F.YEAR: ref_wall.year, F.MONTH: ref_wall.month - 1, F.DAY: ref_wall.day,
            F.HOUR: ref_wall.hour, F.MINUTE: ref_wall.minute, F.SECOND: ref_wall.second,
            F.SUBSECOND: ref_wall.microsecond * 1000,
        }
        parts = {}
        for f in ref_parts:
            if f in values:
                parts[f] = values[f]
            elif f < lowest:
                parts[f] = ref_parts[f]
            else:
                parts[f] = 1 if f == F.DAY else 0
        if F.YEAR in values:
            year = ref_wall.year - ref_wall.year % 100 + values[F.YEAR] % 100
            if year - ref_wall.year > 50:
                year -= 100
            elif ref_wall.year - year > 50:
                year += 100
            parts[F.YEAR] = year
        if F.SUBSECOND in values:
            parts[F.SUBSECOND] = _subsecond_nanos(self.field(F.SUBSECOND))
        coarsest = self._coarsest()
        unit, step = _POLICY_SHIFT[coarsest]
        if ambiguous:
            am = values[F.HOUR] % 12
            if coarsest == F.HOUR:
                # candidates every 12 hours around the reference; the policy picks one
                parts[F.HOUR] = am
                unit, step = F.HOUR, 12
            else:
                parts[F.HOUR] = am + 12 if abs(am + 12 - ref_wall.hour) < abs(am - ref_wall.hour) else am
        weekday = values.get(F.WEEKDAY) if F.DAY not in values else None

        def candidate(shift: int) -> datetime:
            p = dict(parts)
            p[unit] += shift * step
            wall = lenient_datetime(p[F.YEAR], p[F.MONTH], p[F.DAY], p[F.HOUR], p[F.MINUTE],
                                    p[F.SECOND], p[F.SUBSECOND] // 1000)
            if weekday is not None:
                current = (wall.weekday() + 1) % 7
                wall += timedelta(days=(weekday - current + 3) % 7 - 3)
            return wall.replace(tzinfo=self.zone)

        if ambiguous and coarsest == F.HOUR:
            return self._nearest_half_day(ref, candidate)

        result = candidate(0)
        if self.evaluation is Evaluation.PAST:
            shift = 0
            while result > ref and shift > -3:
                shift -= 1
                result = candidate(shift)
        elif self.evaluation is Evaluation.FUTURE:
            shift = 0
            while result < ref and shift < 3:
                shift += 1
                result = candidate(shift)
        elif coarsest != F.YEAR:
            result = self._closest(result, ref, coarsest, candidate)
        return result

    def _nearest_half_day(self, ref: datetime, candidate) -> datetime:
        """Bare 12-hour clock time: the am/pm reading nearest ``ref`` allowed by the policy."""
        # shift 0 is am on the reference date, so shifts -2..+2 cover 24 hours either side
        options = [(candidate(shift), shift) for shift in range(-2, 3)]
        if self.evaluation is Evaluation.PAST:
            return max(t for t, _ in options if t <= ref)
        if self.evaluation is Evaluation.FUTURE:
            return min(t for t, _ in options if t >= ref)
        # a tie keeps the smaller shift
        return min(options, key=lambda o: (abs(o[0] - ref), abs(o[1])))[0]

    @staticmethod
    def _closest(result, ref, coarsest, candidate) -> datetime:
        # Midpoint behavior differs per field; see the boundary tests.
        diff = result - ref
        toward = -1 if diff > timedelta(0) else 1
        if coarsest == F.MONTH:
            return candidate(toward) if abs(diff) > timedelta(days=182.5) else result
        if coarsest == F.DAY:
            other = candidate(toward)
            return other if abs(other - ref) < abs(diff) else result
        if coarsest == F.WEEKDAY:
            return candidate(toward) if abs(diff) > timedelta(days=3.5) else result
        half = timedelta(hours=12)
        if coarsest > F.HOUR:
            half = timedelta(hours=0.5) if coarsest == F.MINUTE else timedelta(seconds=30)
        return candidate(toward) if abs(diff) > half else result

    def may_match(self, time: datetime) -> bool:
        cal = ScratchCalendar(ensure_aware(time), self.zone)
        has_day = self.field(F.DAY) is not None
        ambiguous = self._hour_is_ambiguous()
        for el in self.elements:
            f = el.field
            if f in (F.AMPM, F.TIMEZONE) or (f == F.WEEKDAY and has_day):
                continue
            actual = cal.get(f)
            if f == F.YEAR:
                ok = actual % 100 == el.value % 100
            elif f == F.SUBSECOND:
                ok = actual // 10 ** (9 - len(el.text)) == el.value
            elif f == F.HOUR and ambiguous:
                ok = actual % 12 == el.value % 12
            else:
                ok = actual == el.value
            if not ok:
                return False
        return True

    def is_comparable(self, other: ParsedTime) -> bool:
        match other:
            case AbsoluteTime():
                return True
            case RelativeTime():
                return self._coarsest() == other._coarsest()
        return False

    def _scaled(self, field_type: F) -> int | None:
        el = self.field(field_type)
        if el is None:
            return None
        return _subsecond_nanos(el) if field_type == F.SUBSECOND else el.value

    def compare_to(self, other: ParsedTime) -> int:
        match other:
            case AbsoluteTime():
                return -other.compare_to(self)
            case RelativeTime():
                if not self.is_comparable(other):
                    raise TimeFieldError(f"{self.text!r} and {other.text!r} are not comparable")
                for f in CALENDAR_FIELDS:
                    a, b = self._scaled(f), other._scaled(f)
                    if a is None and b is None:
                        continue
                    if a is None or b is None:
                        return 0
                    if a != b:
                        return -1 if a < b else 1
                return 0
        raise TypeError(f"Cannot compare a parsed time with {type(other).__name__}")

    def add(self, field_type: F, amount: int) -> "RelativeTime":
        if field_type == F.WEEKDAY and self.field(F.DAY) is not None:
            field_type = F.DAY
        self._adjustable(field_type)
        values = self._values()
        sub = self.field(F.SUBSECOND)
        _add_field(values, field_type, amount, len(sub.text) if sub is not None else 9)
        if F.AMPM in values:
            values[F.AMPM] = 1 if values[F.HOUR] >= 12 else 0
        text, elements = self._rendered(values)
        return replace(self, text=text, elements=elements)

    def with_field(self, field_type: F, value: int) -> "RelativeTime":
        el = self._adjustable(field_type)
        return self.add(field_type, value - el.value)


ParsedTime = Union[AbsoluteTime, RelativeTime]


# ==============================================================================
# SECTION: Parsing & rendering entry points
# ==============================================================================
def parse_time(
    text: str,
    options: TimeEvaluationOptions | None = None,
    whole_text: bool = True,
    strict: bool = True,
) -> ParsedTime | None:
    """
    Parse free-form date/time text.

    A 4-digit year yields an AbsoluteTime, anything else a RelativeTime that
    is resolved later with ``evaluate``. With ``strict=False`` a failure
    returns None instead of raising ParseError.
    """
    options = options or TimeEvaluationOptions()
    try:
        match = match_time(text, whole_text)
        elements = tuple(sorted(match.elements.values(), key=lambda el: el.start))
        zone_el = match.elements.get(F.TIMEZONE)
        zone = zone_el.zone if zone_el is not None else options.zone
        consumed = text[:match.length]
        year = match.elements.get(F.YEAR)
        if year is not None and len(year.text) >= 4:
            return _build_absolute(consumed, elements, zone)
        return RelativeTime(consumed, elements, zone, options.evaluation, options.twenty_four_hour)
    except ParseError as e:
        diag(f"parse_time({text!r}) failed: {e}", "parse")
        if strict:
            raise
        return None


_DAY_PATTERN_RE = re.compile(r"d+|D+|M+|L+|y+|Y+|E+|'[^']*'|.", re.S)


def format_day(local: datetime, pattern: str) -> str:
    """Render the date part of ``local`` with a day pattern such as ``yyyy-MM-dd`` or ``EEE d MMM yy``."""
    out: list[str] = []
    seen: set[str] = set()
    for tok in _DAY_PATTERN_RE.findall(pattern):
        ch = tok[0]
        if ch in "dD":
            out.append(pad(local.day, len(tok)))
            seen.add("d")
        elif ch in "ML":
            if len(tok) <= 2:
                out.append(pad(local.month, len(tok)))
            else:
                name = MONTH_NAMES[local.month - 1]
                out.append(name if len(tok) >= 4 else name[:3])
            seen.add("M")
        elif ch in "yY":
            out.append(pad(local.year % 100, 2) if len(tok) == 2 else pad(local.year, 4))
            seen.add("y")
        elif ch == "E":
            name = WEEKDAY_NAMES[(local.weekday() + 1) % 7]
            out.append(name if len(tok) >= 4 else name[:3])
        elif ch == "'":
            out.append(tok[1:-1])
        else:
            out.append(tok)
    if "y" in seen and not {"M", "d"} <= seen:
        raise ValueError(f"Day format {pattern!r} has a year but no month and day")
    if "M" in seen and "d" not in seen:
        raise ValueError(f"Day format {pattern!r} has a month but no day")
    return "".join(out)


def format_clock(local: datetime, resolution: F, twenty_four_hour: bool) -> str:
    h = local.hour
    text = pad(h, 2) if twenty_four_hour else str(h % 12 or 12)
    if resolution >= F.MINUTE or twenty_four_hour:
        text += ":" + pad(local.minute if resolution >= F.MINUTE else 0, 2)
    if resolution >= F.SECOND:
        text += ":" + pad(local.second, 2)
    if resolution >= F.SUBSECOND:
        text += "." + (pad(local.microsecond, 6).rstrip("0") or "0")
    if not twenty_four_hour:
        text += "pm" if h >= 12 else "am"
    return text


def as_flex_time(
    time: datetime,
    day_format: str = "yyyy-MM-dd",
    options: TimeEvaluationOptions | None = None,
) -> ParsedTime:
    """Render ``time`` at the resolution it carries and parse the result back."""
    options = options or TimeEvaluationOptions()
    local = ensure_aware(time).astimezone(options.zone)
    if local.microsecond:
        resolution = F.SUBSECOND
    elif local.second:
        resolution = F.SECOND
    elif local.hour or local.minute:
        resolution = F.MINUTE
    else:
        resolution = F.DAY
    resolution = min(resolution, options.max_resolution)
    text = format_day(local, day_format)
    if resolution > F.DAY:
        text += " " + format_clock(local, resolution, options.twenty_four_hour)
    return parse_time(text, options)
