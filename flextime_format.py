#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Relative-time formatting: "3d ago", "2 hours 5 minutes", "just now".

RelativeTimeFormat is immutable; every ``with_*`` call returns a new format.
"""
from __future__ import annotations
from dataclasses import dataclass, field as dc_field, replace
from datetime import datetime, timedelta, tzinfo
from typing import Callable

from dateutil.relativedelta import relativedelta

from flextime_core import (
    RELATIVE_ABBREVIATED,
    RELATIVE_ABOVE_DAY,
    RELATIVE_AGO,
    RELATIVE_JUST_NOW,
    RELATIVE_MAX_ELEMENTS,
    RELATIVE_PLURALIZED,
    RELATIVE_PRECISION,
    DateElementType as F,
    DurationComponentType as D,
    default_zone,
    diag,
    ensure_aware,
    month_len,
    now_utc,
    pluralize,
)
from flextime_duration import (
    UNIT_ABBREVIATIONS,
    UNIT_NAMES,
    AboveDayStrategy,
    ParsedDuration,
    decompose,
)
from flextime_time import (
    Evaluation,
    ParsedTime,
    TimeEvaluationOptions,
    format_clock,
    format_day,
    parse_time,
)


def _configured_precision() -> D:
    key = RELATIVE_PRECISION.upper()
    if key in D.__members__:
        return D[key]
    diag(f"Unknown relative_precision {RELATIVE_PRECISION!r}; using minute", "config")
    return D.MINUTE


_FIXED_MODULUS = {
    D.MONTH: 12, D.HOUR: 24, D.MINUTE: 60, D.SECOND: 60,
    D.MILLISECOND: 1000, D.MICROSECOND: 1000, D.NANOSECOND: 1000,
}

# clock shown by ``relative`` per precision; None means date only
_CLOCK_RESOLUTION = {
    D.YEAR: None, D.MONTH: None, D.WEEK: None, D.DAY: None,
    D.HOUR: F.HOUR, D.MINUTE: F.MINUTE, D.SECOND: F.SECOND,
}


def _calendar_difference(start: datetime, end: datetime) -> tuple[dict, int]:
    """Wall-clock field difference end - start (start <= end); also the day modulus for rounding."""
    rd = relativedelta(end.replace(tzinfo=None), start.replace(tzinfo=None))
    v = {
        D.YEAR: rd.years,
        D.MONTH: rd.months,
        D.DAY: rd.days,
        D.HOUR: rd.hours,
        D.MINUTE: rd.minutes,
        D.SECOND: rd.seconds,
    }
    v[D.MILLISECOND], v[D.MICROSECOND] = divmod(rd.microseconds, 1000)
    prev_year, prev_month = (end.year, end.month - 1) if end.month > 1 else (end.year - 1, 12)
    return v, month_len(prev_year, prev_month)


@dataclass(frozen=True)
class RelativeTimeFormat:
    reference: Callable[[], datetime] = now_utc
    zone: tzinfo = dc_field(default_factory=default_zone)
    max_precision: D = dc_field(default_factory=_configured_precision)
    max_elements: int = RELATIVE_MAX_ELEMENTS
    abbreviated: bool = RELATIVE_ABBREVIATED
    pluralized: bool = RELATIVE_PLURALIZED
    above_day: AboveDayStrategy = AboveDayStrategy(RELATIVE_ABOVE_DAY)
    just_now: str | None = RELATIVE_JUST_NOW
    ago: str = RELATIVE_AGO

    # -- builders ----------------------------------------------------------
    def with_reference(self, reference: Callable[[], datetime]) -> "RelativeTimeFormat":
        return replace(self, reference=reference)

    def with_zone(self, zone: tzinfo) -> "RelativeTimeFormat":
        return replace(self, zone=zone)

    def with_max_precision(self, precision: D) -> "RelativeTimeFormat":
        return replace(self, max_precision=precision)

    def with_max_elements(self, max_elements: int) -> "RelativeTimeFormat":
        if max_elements < 1:
            raise ValueError("max_elements must be at least 1")
        return replace(self, max_elements=max_elements)

    def with_abbreviations(self) -> "RelativeTimeFormat":
        return replace(self, abbreviated=True)

    def with_full_names(self) -> "RelativeTimeFormat":
        return replace(self, abbreviated=False)

    def with_pluralization(self, pluralized: bool = True) -> "RelativeTimeFormat":
        return replace(self, pluralized=pluralized)

    def with_above_day(self, strategy: AboveDayStrategy) -> "RelativeTimeFormat":
        return replace(self, above_day=strategy)

    def with_just_now(self, text: str | None) -> "RelativeTimeFormat":
        return replace(self, just_now=text)

    def with_ago(self, text: str | None) -> "RelativeTimeFormat":
        return replace(self, ago=text or "")

    # -- printing ----------------------------------------------------------
    def unit_name(self, unit: D) -> str:
        return UNIT_ABBREVIATIONS[unit] if self.abbreviated else UNIT_NAMES[unit]

    def print_component(self, value: int, unit: D) -> str:
        name = self.unit_name(unit)
        if self.pluralized and not self.abbreviated and value != 1:
            name = pluralize(name)
        return f"{value}{name}" if self.abbreviated else f"{value} {name}"

    def print(self, value) -> str:
        """Render a datetime (against the reference), a timedelta or a ParsedDuration."""
        if isinstance(value, datetime):
            return self.print_as_duration(value)
        if isinstance(value, ParsedDuration):
            return self._print(value.as_duration())
        return self._print(value)

    def print_as_duration(self, time: datetime, reference: datetime | None = None) -> str:
        """Elapsed time from ``reference`` (default: the reference supplier) to ``time``."""
        ref = ensure_aware(reference if reference is not None else self.reference())
        time = ensure_aware(time)
        if self.above_day is AboveDayStrategy.MONTH_YEAR:
            start, end = sorted((ref.astimezone(self.zone), time.astimezone(self.zone)))
            values, day_modulus = _calendar_difference(start, end)
            return self._render(values, time < ref, day_modulus)
        return self._print(time - ref)

    def relative(self, time: datetime, reference: datetime | None = None,
                 day_format: str = "yyyy-MM-dd") -> ParsedTime:
        """
        ``time`` as a parsed time at this format's precision.

        Within a day of the reference only the clock is kept ("9:30am");
        further out the date is included, rendered with ``day_format``.
        """
        ref = ensure_aware(reference if reference is not None else self.reference())
        time = ensure_aware(time)
        if self.above_day is AboveDayStrategy.MONTH_YEAR:
            start, end = sorted((ref.astimezone(self.zone), time.astimezone(self.zone)))
            values, day_modulus = _calendar_difference(start, end)
        else:
            values, day_modulus = decompose(time - ref, self.above_day), None
        _, window = self._window(values, day_modulus)

        options = TimeEvaluationOptions(zone=self.zone, evaluation=Evaluation.CLOSEST)
        local = time.astimezone(self.zone)
        clock = _CLOCK_RESOLUTION.get(self.max_precision, F.SUBSECOND)
        parts = []
        if clock is None or window[0] <= D.DAY:
            parts.append(format_day(local, day_format))
        if clock is not None:
            parts.append(format_clock(local, clock, options.twenty_four_hour))
        return parse_time(" ".join(parts), options)

    def _print(self, elapsed: timedelta) -> str:
        values = decompose(elapsed, self.above_day)
        return self._render(values, elapsed < timedelta(0), None)

    def _units(self) -> list[D]:
        """Every unit this strategy can show, coarsest first."""
        units = [D.DAY, D.HOUR, D.MINUTE, D.SECOND, D.MILLISECOND, D.MICROSECOND]
        if self.above_day is AboveDayStrategy.WEEK:
            units.insert(0, D.WEEK)
        elif self.above_day is AboveDayStrategy.MONTH_YEAR:
            units[0:0] = [D.YEAR, D.MONTH]
        return units

    def _modulus(self, unit: D, day_modulus: int | None) -> int | None:
        if unit == D.DAY:
            if self.above_day is AboveDayStrategy.WEEK:
                return 7
            if self.above_day is AboveDayStrategy.MONTH_YEAR:
                return day_modulus or 30
            return None
        return _FIXED_MODULUS.get(unit)

    def _window(self, values: dict, day_modulus: int | None) -> tuple[dict, list[D]]:
        """Rounded unit values and the units shown, coarsest first."""
        all_units = self._units()
        units = [u for u in all_units if u <= self.max_precision] or all_units[:1]
        values = {u: values.get(u, 0) for u in all_units}

        # From the coarsest non-zero unit, widen until max_elements non-zero units are seen.
        start = next((i for i, u in enumerate(units) if values[u]), len(units) - 1)
        end, seen = start, 0
        while end < len(units) and seen < self.max_elements:
            if values[units[end]]:
                seen += 1
            end += 1
        window = units[start:end]

        # Round on the first omitted unit, carrying up through coarser units.
        nxt = all_units.index(window[-1]) + 1
        if nxt < len(all_units):
            omitted = all_units[nxt]
            modulus = self._modulus(omitted, day_modulus)
            if modulus and values[omitted] * 2 >= modulus:
                i = end - 1
                values[units[i]] += 1
                while i > 0:
                    modulus = self._modulus(units[i], day_modulus)
                    if not modulus or values[units[i]] < modulus:
                        break
                    values[units[i]] = 0
                    i -= 1
                    values[units[i]] += 1
                if i < start:
                    window = units[i:end]
        return values, window

    def _render(self, values: dict, negative: bool, day_modulus: int | None) -> str:
        values, window = self._window(values, day_modulus)
        parts = [self.print_component(values[u], u) for u in window if values[u]]
        if not parts:
            if self.just_now:
                return self.just_now
            return self.print_component(0, window[0])
        text = " ".join(parts)
        if negative:
            return f"{text} {self.ago}" if self.ago else "-" + text
        return text
