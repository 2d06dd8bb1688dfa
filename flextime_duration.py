#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Free-form durations ("1h30m", "2 weeks 3d", "-1.5s").

A ParsedDuration keeps its typed components in the order written, together
with the separator text between them, so it re-renders the way it was typed.
"""
from __future__ import annotations
import math
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum

from flextime_core import (
    DateElementType,
    DurationComponentType as D,
    ParseError,
    ScratchCalendar,
    days_in_months,
    days_in_years,
    default_zone,
    diag,
)


MAX_COMPONENT_VALUE = 2**31 - 1

UNIT_ABBREVIATIONS = {
    D.YEAR: "y", D.MONTH: "mo", D.WEEK: "w", D.DAY: "d", D.HOUR: "h", D.MINUTE: "m",
    D.SECOND: "s", D.MILLISECOND: "ms", D.MICROSECOND: "us", D.NANOSECOND: "ns",
}
UNIT_NAMES = {
    D.YEAR: "year", D.MONTH: "month", D.WEEK: "week", D.DAY: "day", D.HOUR: "hour",
    D.MINUTE: "minute", D.SECOND: "second", D.MILLISECOND: "millisecond",
    D.MICROSECOND: "microsecond", D.NANOSECOND: "nanosecond",
}

_UNIT_ALIASES = {
    "y": D.YEAR, "yr": D.YEAR, "year": D.YEAR,
    "mo": D.MONTH, "month": D.MONTH,
    "w": D.WEEK, "wk": D.WEEK, "week": D.WEEK,
    "d": D.DAY, "dy": D.DAY, "day": D.DAY,
    "h": D.HOUR, "hr": D.HOUR, "hour": D.HOUR,
    "m": D.MINUTE, "min": D.MINUTE, "minute": D.MINUTE,
    "s": D.SECOND, "sec": D.SECOND, "second": D.SECOND,
    "ms": D.MILLISECOND, "milli": D.MILLISECOND, "millisecond": D.MILLISECOND,
    "us": D.MICROSECOND, "micro": D.MICROSECOND, "microsecond": D.MICROSECOND,
    "ns": D.NANOSECOND, "nano": D.NANOSECOND, "nanosecond": D.NANOSECOND,
}
# Fraction digits kept per unit accepting decimals (fraction becomes nanoseconds).
_FRACTION_SCALE = {D.SECOND: 9, D.MILLISECOND: 6}

# Where a fractional remainder goes when scaling: (finer unit, finer units per unit).
_FRACTION_SPILL = {
    D.YEAR: (D.MONTH, 12), D.MONTH: (D.DAY, 365.2425 / 12), D.WEEK: (D.DAY, 7),
    D.DAY: (D.HOUR, 24), D.HOUR: (D.MINUTE, 60), D.MINUTE: (D.SECOND, 60),
    D.SECOND: (D.MILLISECOND, 1000), D.MILLISECOND: (D.MICROSECOND, 1000),
    D.MICROSECOND: (D.NANOSECOND, 1000),
}
_SNAP = 1e-9


class AboveDayStrategy(Enum):
    """How spans longer than a day are broken down."""
    NONE = "none"
    WEEK = "week"
    MONTH_YEAR = "month_year"


@dataclass(frozen=True)
class DurationComponent:
    field: D
    value: int
    text: str
    fraction_digits: int = 0    # > 0 for a nanosecond part written as a decimal fraction

    def rendered(self, value: int) -> str:
        if value == self.value:
            return self.text
        if self.fraction_digits:
            suffix = re.match(r"\.\d*", self.text)
            digits = str(value).zfill(self.fraction_digits).rstrip("0") or "0"
            return "." + digits + self.text[suffix.end():]
        lead = re.match(r"\d*", self.text)
        return f"{value}{self.text[lead.end():]}"


def _new_component(field: D, value: int) -> DurationComponent:
    return DurationComponent(field, value, f"{value}{UNIT_ABBREVIATIONS[field]}")


def _carry_rule(field: D, values: dict) -> tuple[int, D] | None:
    """(modulus, parent) for carrying out of ``field``; None when unbounded."""
    if field == D.MONTH:
        return 12, D.YEAR
    if field == D.DAY:
        if D.WEEK in values:
            return 7, D.WEEK
        if D.MONTH in values:
            return 31, D.MONTH
        if D.YEAR in values:
            return 365, D.YEAR
        return None
    if field == D.HOUR:
        return 24, D.DAY
    if field in (D.MINUTE, D.SECOND):
        return 60, D(field - 1)
    if field == D.MILLISECOND:
        return 1000, D.SECOND
    if field == D.MICROSECOND:
        return (1000, D.MILLISECOND) if D.MILLISECOND in values else (10**6, D.SECOND)
    if field == D.NANOSECOND:
        if D.MICROSECOND in values:
            return 1000, D.MICROSECOND
        if D.MILLISECOND in values:
            return 10**6, D.MILLISECOND
        return 10**9, D.SECOND
    return None


def _normalize(values: dict, field: D) -> dict:
    """Carry (or borrow) out of ``field`` up the unit hierarchy until every value is in range."""
    values = dict(values)
    f = field
    while True:
        rule = _carry_rule(f, values)
        v = values[f]
        if rule is None:
            if v < 0:
                raise ValueError(f"Negative {UNIT_NAMES[f]} value with no larger unit to borrow from")
            return values
        limit, parent = rule
        if 0 <= v < limit:
            return values
        carry, values[f] = divmod(v, limit)
        values[parent] = values.get(parent, 0) + carry
        f = parent


# ==============================================================================
# SECTION: ParsedDuration
# ==============================================================================
@dataclass(frozen=True)
class ParsedDuration:
    negative: bool
    components: tuple[DurationComponent, ...]
    separators: tuple[str, ...]     # text before each component, then the trailing text

    def __str__(self):
        out = ["-" if self.negative else ""]
        for sep, comp in zip(self.separators, self.components):
            out.append(sep)
            out.append(comp.text)
        out.append(self.separators[-1])
        return "".join(out)

    def signum(self) -> int:
        if all(c.value == 0 for c in self.components):
            return 0
        return -1 if self.negative else 1

    def field(self, field: D) -> DurationComponent | None:
        for c in self.components:
            if c.field == field:
                return c
        return None

    def get(self, field: D) -> int:
        c = self.field(field)
        return 0 if c is None else c.value

    def _values(self) -> dict:
        return {c.field: c.value for c in self.components}

    def _with_values(self, values: dict, negative: bool | None = None) -> "ParsedDuration":
        comps = list(self.components)
        seps = list(self.separators)
        for i, c in enumerate(comps):
            v = values.get(c.field, c.value)
            if v != c.value:
                comps[i] = replace(c, value=v, text=c.rendered(v))
        present = {c.field for c in comps}
        for field in sorted(f for f in values if f not in present):
            k = 0
            while k < len(comps) and comps[k].field < field:
                k += 1
            comps.insert(k, _new_component(field, values[field]))
            seps.insert(1 if k == 0 else k, " ")
        return ParsedDuration(self.negative if negative is None else negative, tuple(comps), tuple(seps))

    def with_field(self, field: D, value: int) -> "ParsedDuration":
        """Set one component (adding it if absent), carrying overflow into coarser units."""
        return self._with_values(_normalize(self._values() | {field: value}, field))

    def adjust(self, field: D, fn) -> "ParsedDuration":
        return self.with_field(field, fn(self.get(field)))

    def plus(self, other: "ParsedDuration") -> "ParsedDuration":
        sign = -1 if self.negative else 1
        other_sign = -1 if other.negative else 1
        totals = {c.field: sign * c.value for c in self.components}
        for c in other.components:
            totals[c.field] = totals.get(c.field, 0) + other_sign * c.value
        negative = (self.as_duration() + other.as_duration()) < timedelta(0)
        if negative:
            totals = {f: -v for f, v in totals.items()}
        for f in sorted(totals, reverse=True):
            totals = _normalize(totals, f)
        result = self._with_values(totals, negative)
        return replace(result, negative=False) if result.signum() == 0 else result

    def times(self, multiplier: int | float) -> "ParsedDuration":
        """
        Scale every component. A fractional multiplier spills each remainder
        into the next finer unit: "1h" * 1.5 is "1h 30m".
        """
        factor = abs(multiplier)
        if isinstance(factor, float) and factor.is_integer():
            factor = int(factor)
        if isinstance(factor, int):
            values = {c.field: c.value * factor for c in self.components}
        else:
            values = self._scaled_fractional(factor)
        for f, v in values.items():
            if v > MAX_COMPONENT_VALUE:
                raise OverflowError(f"Overflow: {self.get(f)} * {multiplier} {UNIT_NAMES[f]}s")
        negative = self.negative != (multiplier < 0)
        result = self._with_values(values, negative)
        return replace(result, negative=False) if result.signum() == 0 else result

    def _scaled_fractional(self, factor: float) -> dict:
        present = {c.field for c in self.components}
        scaled = {c.field: c.value * factor for c in self.components}
        values = {}
        for f in D:
            if f not in scaled:
                continue
            v = scaled[f]
            nearest = round(v)
            whole = nearest if abs(v - nearest) < _SNAP or f == D.NANOSECOND else math.floor(v)
            if whole or f in present:
                values[f] = whole
            rest = v - whole
            if rest > _SNAP and f in _FRACTION_SPILL:
                finer, per = _FRACTION_SPILL[f]
                if D.NANOSECOND in present and f >= D.SECOND:
                    # keep "1.5s" style text: sub-second remainders join the fraction
                    finer, per = D.NANOSECOND, f.nanos
                scaled[finer] = scaled.get(finer, 0) + rest * per
        fraction = self.field(D.NANOSECOND)
        if fraction is not None and fraction.fraction_digits:
            values = _normalize(values, D.NANOSECOND)
        return values

    def negate(self) -> "ParsedDuration":
        if self.signum() == 0:
            return self
        return replace(self, negative=not self.negative)

    def as_duration(self) -> timedelta:
        """Fixed elapsed time; years and months use Gregorian average day counts."""
        v = self._values()
        days = (
            days_in_years(v.get(D.YEAR, 0))
            + days_in_months(v.get(D.MONTH, 0))
            + 7 * v.get(D.WEEK, 0)
            + v.get(D.DAY, 0)
        )
        total = timedelta(
            days=days,
            hours=v.get(D.HOUR, 0),
            minutes=v.get(D.MINUTE, 0),
            seconds=v.get(D.SECOND, 0),
            milliseconds=v.get(D.MILLISECOND, 0),
            microseconds=v.get(D.MICROSECOND, 0) + v.get(D.NANOSECOND, 0) // 1000,
        )
        return -total if self.negative else total

    def add_to(self, time: datetime, zone: tzinfo | None = None) -> datetime:
        """Calendar-exact addition: years to days on the wall clock in ``zone``, the rest as elapsed time."""
        sign = -1 if self.negative else 1
        v = self._values()
        cal = ScratchCalendar(time, zone or default_zone())
        cal.add(DateElementType.YEAR, sign * v.get(D.YEAR, 0))
        cal.add(DateElementType.MONTH, sign * v.get(D.MONTH, 0))
        cal.add(DateElementType.DAY, sign * (7 * v.get(D.WEEK, 0) + v.get(D.DAY, 0)))
        elapsed = timedelta(
            hours=v.get(D.HOUR, 0),
            minutes=v.get(D.MINUTE, 0),
            seconds=v.get(D.SECOND, 0),
            milliseconds=v.get(D.MILLISECOND, 0),
            microseconds=v.get(D.MICROSECOND, 0) + v.get(D.NANOSECOND, 0) // 1000,
        )
        if not elapsed:
            return cal.time
        return (cal.time.astimezone(timezone.utc) + sign * elapsed).astimezone(cal.zone)

    def compare_to(self, other: "ParsedDuration") -> int:
        a, b = self.as_duration(), other.as_duration()
        return (a > b) - (a < b)

    def _total_months(self) -> int:
        total = 12 * self.get(D.YEAR) + self.get(D.MONTH)
        return -total if self.negative else total

    def _total_nanos(self) -> int:
        v = self._values()
        days = days_in_years(v.get(D.YEAR, 0)) + days_in_months(v.get(D.MONTH, 0))
        total = days * D.DAY.nanos + sum(n * f.nanos for f, n in v.items() if f.nanos is not None)
        return -total if self.negative else total

    def ratio(self, other: "ParsedDuration") -> float:
        """
        How many ``other`` fit in this duration: "90m" / "1h" is 1.5.

        Two purely calendar durations compare month counts, so "1y" / "1mo" is
        exactly 12; otherwise both are measured in nanoseconds with average
        Gregorian years and months.
        """
        calendar_only = {D.YEAR, D.MONTH}
        if {c.field for c in self.components + other.components} <= calendar_only:
            num, den = self._total_months(), other._total_months()
        else:
            num, den = self._total_nanos(), other._total_nanos()
        if not den:
            raise ZeroDivisionError(f"Cannot divide by a zero duration: {other}")
        return num / den


# ==============================================================================
# SECTION: Parsing
# ==============================================================================
_NUMBER_RE = re.compile(r"(\d+)(?:\.(\d*))?")
_UNIT_RE = re.compile(r"[A-Za-z]+")


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _unit_for(word: str, offset: int) -> D:
    unit = word.lower()
    if len(unit) > 2 and unit.endswith("s"):
        unit = unit[:-1]
    try:
        return _UNIT_ALIASES[unit]
    except KeyError:
        raise ParseError(f"Unrecognized unit: {word}", offset) from None


def _parse(text: str, whole_text: bool) -> ParsedDuration:
    pos = _skip_ws(text, 0)
    negative = False
    if pos < len(text) and text[pos] == "-":
        negative = True
        pos = _skip_ws(text, pos + 1)
    components: list[DurationComponent] = []
    separators: list[str] = []
    seen: set = set()
    sep_start = pos
    while True:
        m = _NUMBER_RE.match(text, pos)
        if not m:
            break
        digits, fraction = m.group(1), m.group(2)
        if len(digits) > 10 or int(digits) > MAX_COMPONENT_VALUE:
            raise ParseError(f"Value too large: {digits}", m.start())
        unit_pos = _skip_ws(text, m.end())
        um = _UNIT_RE.match(text, unit_pos)
        if not um:
            raise ParseError("Unit expected after value", unit_pos)
        field = _unit_for(um.group(), unit_pos)
        if field in seen:
            raise ParseError(f"Duplicate {UNIT_NAMES[field]} component", m.start())
        seen.add(field)
        separators.append(text[sep_start:m.start()])
        if fraction is None:
            components.append(DurationComponent(field, int(digits), text[m.start():um.end()]))
        else:
            scale = _FRACTION_SCALE.get(field)
            if scale is None:
                raise ParseError("Decimal values are only permitted for unit 'second' and 'millisecond'",
                                 m.start())
            if len(fraction) > scale:
                raise ParseError(f"Too many fraction digits for {UNIT_NAMES[field]}", m.start(2))
            if D.NANOSECOND in seen:
                raise ParseError("Duplicate nanosecond component", m.start())
            seen.add(D.NANOSECOND)
            dot = m.start(2) - 1
            components.append(DurationComponent(field, int(digits), text[m.start():dot]))
            separators.append("")
            nanos = int(fraction.ljust(scale, "0")) if fraction else 0
            components.append(DurationComponent(D.NANOSECOND, nanos, text[dot:um.end()], scale))
        pos = sep_start = um.end()
        pos = _skip_ws(text, pos)
    if not components:
        raise ParseError("No content to parse", pos)
    if whole_text and pos < len(text):
        raise ParseError(f"Unrecognized duration text: {text[pos:]!r}", pos)
    separators.append(text[sep_start:pos] if whole_text else "")
    return ParsedDuration(negative, tuple(components), tuple(separators))


def parse_duration(text: str, whole_text: bool = True, strict: bool = True) -> ParsedDuration | None:
    """
    Parse ``[-]<int>[.<frac>]<unit>`` groups, e.g. "1h 30m", "-2wk", "1.25s".

    With ``whole_text=False`` parsing stops at the first group that is not a
    duration. With ``strict=False`` failures return None.
    """
    try:
        return _parse(text or "", whole_text)
    except ParseError as e:
        diag(f"parse_duration({text!r}) failed: {e}", "duration")
        if strict:
            raise
        return None


# ==============================================================================
# SECTION: Conversions
# ==============================================================================
def flex_duration(amount: int, unit: D) -> ParsedDuration:
    """Single-component duration; a negative amount gives a negative duration."""
    comp = _new_component(unit, abs(amount))
    return ParsedDuration(amount < 0, (comp,), ("", ""))


def of_months(months: int) -> ParsedDuration:
    return flex_duration(months, D.MONTH)


def divide(dividend: timedelta, divisor: timedelta) -> int:
    """Largest whole number of ``divisor`` spans within ``dividend``, truncated toward zero."""
    if not divisor:
        raise ZeroDivisionError("Cannot divide by a zero duration")
    n = abs(dividend) // abs(divisor)
    return -n if (dividend < timedelta(0)) != (divisor < timedelta(0)) else n


def multiply(duration, factor: int | float):
    """Scale a timedelta or a ParsedDuration, keeping its type."""
    if isinstance(duration, ParsedDuration):
        return duration.times(factor)
    return duration * factor


def to_seconds(duration) -> float:
    """Signed length in seconds; a ParsedDuration keeps its nanoseconds."""
    if isinstance(duration, ParsedDuration):
        return duration._total_nanos() / 10**9
    return duration.total_seconds()


def _fit(days: int, per: int, count) -> int:
    n = days // per
    while n > 0 and count(n) > days:
        n -= 1
    while count(n + 1) <= days:
        n += 1
    return n


def decompose(duration: timedelta, strategy: AboveDayStrategy = AboveDayStrategy.NONE) -> dict:
    """Break an elapsed time into component magnitudes (sign dropped)."""
    duration = abs(duration)
    days = duration.days
    values = {}
    if strategy is AboveDayStrategy.MONTH_YEAR:
        years = _fit(days, 365, days_in_years)
        days -= days_in_years(years)
        months = min(_fit(days, 30, days_in_months), 11)
        days -= days_in_months(months)
        values[D.YEAR] = years
        values[D.MONTH] = months
    elif strategy is AboveDayStrategy.WEEK:
        values[D.WEEK], days = divmod(days, 7)
    values[D.DAY] = days
    hours, rem = divmod(duration.seconds, 3600)
    values[D.HOUR], rem = hours, rem
    values[D.MINUTE], values[D.SECOND] = divmod(rem, 60)
    values[D.MILLISECOND], values[D.MICROSECOND] = divmod(duration.microseconds, 1000)
    return values


def as_parsed_duration(duration: timedelta, strategy: AboveDayStrategy = AboveDayStrategy.NONE) -> ParsedDuration:
    """Human components for an elapsed time, e.g. 93784s -> "1d 2h 3m 4s"."""
    values = decompose(duration, strategy)
    comps = tuple(_new_component(f, v) for f, v in sorted(values.items()) if v)
    if not comps:
        comps = (_new_component(D.SECOND, 0),)
    separators = ("",) + (" ",) * (len(comps) - 1) + ("",)
    return ParsedDuration(duration < timedelta(0), comps, separators)
