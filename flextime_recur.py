#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Recurring events: a fixed cadence ("2w", "1mo 3d") or a month anchor.

Anchored intervals are written as a months/years duration with a suffix and
take their anchor from a sample occurrence:

  "1mo#"   same Nth weekday every month (2nd Tuesday -> 2nd Tuesday)
  "3mo-"   same number of days before the end of the month, quarterly

Time of day always comes from the occurrence the search starts from.
"""
from __future__ import annotations
from dataclasses import dataclass, field as dc_field
from datetime import datetime, timedelta, tzinfo
from enum import Enum

from flextime_core import (
    MAX_RECURRENCE_STEPS,
    WEEKDAY_NAMES,
    DurationComponentType as D,
    ParseError,
    default_zone,
    diag,
    ensure_aware,
    month_len,
    ordinal,
)
from flextime_duration import ParsedDuration, divide, of_months, parse_duration


class RecurrenceKind(Enum):
    NORMAL = "normal"
    WEEKDAY_OF_MONTH = "#"
    END_OF_MONTH = "-"


_MONTH_CADENCE = {
    1: "monthly",
    2: "every other month",
    3: "quarterly",
    6: "biannually",
    12: "annually",
}


# ==============================================================================
# SECTION: RecurrenceInterval
# ==============================================================================
@dataclass(frozen=True)
class RecurrenceInterval:
    text: str = dc_field(compare=False)
    kind: RecurrenceKind
    duration: ParsedDuration
    months: int = 0
    days_before_end: int = -1
    week: int = -1
    weekday: int = -1               # Sunday = 0
    zone: tzinfo | None = dc_field(default=None, compare=False)

    @classmethod
    def normal(cls, text: str, duration: ParsedDuration, zone: tzinfo | None = None) -> "RecurrenceInterval":
        if duration.signum() <= 0:
            raise ValueError(f"Recurrence duration must be positive: {duration}")
        if not duration.as_duration():
            raise ValueError(f"Recurrence duration must be at least a microsecond: {duration}")
        return cls(text, RecurrenceKind.NORMAL, duration, zone=zone)

    @classmethod
    def on_last_of_month(cls, text: str, months: int, days_before_end: int,
                         zone: tzinfo | None = None) -> "RecurrenceInterval":
        if months <= 0:
            raise ValueError("Months must be >0")
        if not 0 <= days_before_end <= 30:
            raise ValueError(f"Days before end of month must be 0..30, not {days_before_end}")
        return cls(text, RecurrenceKind.END_OF_MONTH, of_months(months), months,
                   days_before_end=days_before_end, zone=zone)

    @classmethod
    def on_day_of_month_week(cls, text: str, months: int, week: int, weekday: int,
                             zone: tzinfo | None = None) -> "RecurrenceInterval":
        if months <= 0:
            raise ValueError("Months must be >0")
        if not 1 <= week <= 5:
            raise ValueError(f"Week of month must be 1..5, not {week}")
        if not 0 <= weekday <= 6:
            raise ValueError(f"Weekday must be 0 (Sunday)..6, not {weekday}")
        return cls(text, RecurrenceKind.WEEKDAY_OF_MONTH, of_months(months), months,
                   week=week, weekday=weekday, zone=zone)

    @property
    def anchored(self) -> bool:
        return self.kind is not RecurrenceKind.NORMAL

    def approximate_duration(self) -> timedelta:
        return self.duration.as_duration()

    def _zone(self) -> tzinfo:
        return self.zone or default_zone()

    # -- month anchors -----------------------------------------------------
    def _anchor_in_month(self, month_index: int, like: datetime) -> datetime:
        """Anchor day in the month ``month_index`` (year * 12 + month0), at ``like``'s time of day."""
        year, month0 = divmod(month_index, 12)
        days = month_len(year, month0 + 1)
        if self.kind is RecurrenceKind.WEEKDAY_OF_MONTH:
            first = datetime(year, month0 + 1, 1).weekday()
            target = (self.weekday + 6) % 7
            day = 1 + (target - first) % 7 + (self.week - 1) * 7
            if day > days:
                day -= 7
        else:
            day = max(1, days - self.days_before_end)
        return like.replace(year=year, month=month0 + 1, day=day)

    def _wall(self, t: datetime) -> datetime:
        return ensure_aware(t).astimezone(self._zone())

    # -- stepping ----------------------------------------------------------
    def adjacent_occurrence(self, t: datetime, forward: bool = True) -> datetime:
        """The occurrence one interval after (or before) ``t``."""
        if self.anchored:
            wall = self._wall(t)
            index = wall.year * 12 + wall.month - 1 + (self.months if forward else -self.months)
            return self._anchor_in_month(index, wall)
        step = self.duration if forward else self.duration.negate()
        return step.add_to(t, self._zone())

    def _estimate(self, reference: datetime, relative: datetime) -> datetime:
        if self.anchored:
            ref = self._wall(reference)
            rel = self._wall(relative)
            ref_index = ref.year * 12 + ref.month - 1
            rel_index = rel.year * 12 + rel.month - 1
            n = (rel_index - ref_index) // self.months
            return self._anchor_in_month(ref_index + n * self.months, ref)
        n = divide(relative - reference, self.approximate_duration())
        if n == 0:
            return reference
        return self.duration.times(n).add_to(reference, self._zone())

    def get_occurrence(self, reference: datetime, relative: datetime | None,
                       after: bool = True, strict: bool = False) -> datetime:
        """
        The occurrence nearest ``relative`` on the requested side of it.

        ``reference`` is any known occurrence. With ``strict`` False an
        occurrence exactly at ``relative`` qualifies.
        """
        if relative is None:
            return reference
        reference = ensure_aware(reference)
        relative = ensure_aware(relative)

        def ok(t: datetime) -> bool:
            if t == relative:
                return not strict
            return (t > relative) == after

        occur = self._estimate(reference, relative)
        steps = 0
        while not ok(occur):
            occur = self.adjacent_occurrence(occur, after)
            steps = self._count(steps)
        while True:
            closer = self.adjacent_occurrence(occur, not after)
            if not ok(closer):
                return occur
            occur = closer
            steps = self._count(steps)

    def _count(self, steps: int) -> int:
        steps += 1
        if steps > MAX_RECURRENCE_STEPS:
            diag(f"recurrence search gave up after {MAX_RECURRENCE_STEPS} steps for {self}", "recur")
            raise ValueError(f"Occurrence search exceeded {MAX_RECURRENCE_STEPS} steps")
        return steps

    def __str__(self):
        if not self.anchored:
            return str(self.duration)
        cadence = _MONTH_CADENCE.get(self.months)
        if cadence is None:
            if self.months % 12 == 0:
                cadence = f"every {self.months // 12} years"
            else:
                cadence = f"every {self.months} months"
        if self.kind is RecurrenceKind.WEEKDAY_OF_MONTH:
            anchor = f"{ordinal(self.week)} {WEEKDAY_NAMES[self.weekday][:3]}"
        elif self.days_before_end == 0:
            anchor = "last day of month"
        elif self.days_before_end == 1:
            anchor = "1 day before end of month"
        else:
            anchor = f"{self.days_before_end} days before end of month"
        return f"{cadence}, {anchor}"


# ==============================================================================
# SECTION: Parsing
# ==============================================================================
def _anchor_months(duration: ParsedDuration | None, suffix: str, offset: int) -> int:
    if duration is None:
        return 1
    months = 0
    for comp in duration.components:
        if comp.field == D.YEAR:
            months += comp.value * 12
        elif comp.field == D.MONTH:
            months += comp.value
        else:
            raise ParseError(f"Bad duration--{suffix} notation can only be used with months and years", offset)
    if duration.negative and months:
        raise ParseError("Recurrence interval must be positive", 0)
    return months or 1


def parse_recurrence_interval(text: str | None, occurrence: datetime | None,
                              zone: tzinfo | None = None) -> RecurrenceInterval | None:
    """
    Parse "2w", "1mo#" or "3mo-". Anchors are taken from ``occurrence`` as
    seen on the wall clock in ``zone`` (default: configured zone).
    """
    if not text or occurrence is None:
        return None
    suffix = text[-1]
    if suffix not in "#-":
        duration = parse_duration(text)
        if duration.signum() <= 0:
            raise ParseError("Recurrence interval must be positive", 0)
        if not duration.as_duration():
            raise ParseError("Recurrence interval must be at least a microsecond", 0)
        return RecurrenceInterval.normal(text, duration, zone)

    body = text[:-1]
    duration = parse_duration(body) if body.strip() else None
    months = _anchor_months(duration, suffix, len(text) - 1)
    wall = ensure_aware(occurrence).astimezone(zone or default_zone())
    if suffix == "#":
        week = (wall.day - 1) // 7 + 1
        weekday = (wall.weekday() + 1) % 7
        return RecurrenceInterval.on_day_of_month_week(text, months, week, weekday, zone)
    days_before_end = month_len(wall.year, wall.month) - wall.day
    return RecurrenceInterval.on_last_of_month(text, months, days_before_end, zone)
