#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
flextime Core Tests
 - Imports local flextime_core.py
 - Name matching, string helpers, zone lookup, Gregorian day counts,
   the scratch calendar and the TOML config reader

Run:
  python3 tools/flextime_core_tests.py
"""

import importlib
import sys, os
import tempfile
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(HERE))

core = importlib.import_module("flextime_core")

F = core.DateElementType
UTC = timezone.utc
NEW_YORK = ZoneInfo("America/New_York")

def expect(cond, msg):
    if not cond:
        raise AssertionError(msg)

# -------- Test cases ----------------------------------------------------------

def test_name_matching():
    expect(core.match_month("Sept") == 8, "Sept")
    expect(core.match_month("january") == 0, "full name")
    expect(core.match_month("Se") is None, "needs three letters")
    expect(core.match_month("Sepx") is None, "must be a prefix")
    expect(core.match_weekday("Thurs") == 4, "Thurs")
    expect(core.match_weekday("SUN") == 0, "Sunday is 0")

def test_string_helpers():
    expect(core.pluralize("day") == "days", "day")
    expect(core.pluralize("century") == "centuries", "century")
    expect(core.pluralize("box") == "boxes", "box")
    for n, want in ((1, "1st"), (2, "2nd"), (11, "11th"), (22, "22nd"), (101, "101st"), (113, "113th")):
        expect(core.ordinal(n) == want, f"ordinal({n}) -> {core.ordinal(n)}")
    expect(core.match_case("JAN", "february") == "FEBRUARY", "upper")
    expect(core.match_case("Jan", "FEBRUARY") == "February", "title")
    expect(core.match_case("jan", "February") == "february", "lower")
    expect(core.pad(7, 3) == "007", "pad")

def test_parse_error_text():
    e = core.ParseError("Bad thing", 3)
    expect(str(e) == "Bad thing (at offset 3)", str(e))
    expect(str(core.ParseError("Bad thing")) == "Bad thing", "no offset")
    expect(isinstance(core.TimeFieldError("x"), core.ParseError), "TimeFieldError is a ParseError")

def test_resolve_zone():
    expect(core.resolve_zone("america/new_york") == NEW_YORK, "case-insensitive ids")
    expect(core.resolve_zone("Z") is UTC, "Z")
    expect(core.resolve_zone("Nowhere/Else") is None, "unknown")
    expect(core.resolve_zone("") is None, "empty")

def test_gregorian_day_counts():
    expect([core.days_in_months(n) for n in (1, 2, 10, 12)] == [30, 61, 304, 365], "months")
    expect(core.days_in_years(400) == 146097, "400-year cycle")
    expect(core.days_in_months(-2) == -61, "negative months")
    expect(core.month_len(2024, 2) == 29 and core.month_len(2023, 2) == 28, "February")

def test_scratch_calendar_clamps_month_end():
    cal = core.ScratchCalendar(datetime(2024, 1, 31, 9, tzinfo=UTC), UTC)
    cal.add(F.MONTH, 1)
    expect(cal.time == datetime(2024, 2, 29, 9, tzinfo=UTC), f"{cal.time}")
    expect(cal.get(F.MONTH) == 1 and cal.get(F.DAY) == 29, "0-based month")

def test_scratch_calendar_weekday():
    cal = core.ScratchCalendar(datetime(2024, 1, 7, tzinfo=UTC), UTC)
    expect(cal.get(F.WEEKDAY) == 0, "Jan 7 2024 is a Sunday")
    cal.set_field(F.WEEKDAY, 3)
    expect(cal.get(F.DAY) == 10, "Wednesday of the same week")

def test_scratch_calendar_is_lenient():
    cal = core.ScratchCalendar(datetime(2024, 1, 15, tzinfo=UTC), UTC)
    cal.set_field(F.DAY, 32)
    expect(cal.wall == datetime(2024, 2, 1), f"day 32 -> {cal.wall}")
    cal.set_field(F.MONTH, 12)
    expect(cal.wall == datetime(2025, 1, 1), f"month 12 -> {cal.wall}")
    expect(cal.actual_max(F.DAY) == 31, "January")

def test_scratch_calendar_hours_are_elapsed():
    cal = core.ScratchCalendar(datetime(2024, 3, 10, 1, 30, tzinfo=NEW_YORK), NEW_YORK)
    cal.add(F.HOUR, 1)
    expect(cal.wall == datetime(2024, 3, 10, 3, 30), f"skips the missing hour: {cal.wall}")
    other = cal.copy().add(F.DAY, 1)
    expect(cal.get(F.DAY) == 10 and other.get(F.DAY) == 11, "copy is independent")

def test_scratch_calendar_large_subsecond_add_is_exact():
    start = datetime(2024, 1, 1, tzinfo=UTC)
    span = timedelta(days=10**6)
    nanos = 86400 * 10**9 * 10**6 + 1999
    cal = core.ScratchCalendar(start, UTC).add(F.SUBSECOND, nanos)
    expect(cal.time == start + span + timedelta(microseconds=1), f"{cal.time}")
    cal = core.ScratchCalendar(start + span, UTC).add(F.SUBSECOND, -nanos)
    expect(cal.time == start - timedelta(microseconds=1), f"{cal.time}")

def test_read_toml():
    with tempfile.TemporaryDirectory() as d:
        good = os.path.join(d, "flextime.toml")
        with open(good, "w", encoding="utf-8") as f:
            f.write('tz = "America/New_York"\nrelative_max_elements = 2\n')
        data = core._read_toml(good)
        expect(data == {"tz": "America/New_York", "relative_max_elements": 2}, f"{data}")
        bad = os.path.join(d, "broken.toml")
        with open(bad, "w", encoding="utf-8") as f:
            f.write("tz = [unclosed\n")
        expect(core._read_toml(bad) == {}, "broken files are skipped")
        expect(core._read_toml(os.path.join(d, "missing.toml")) == {}, "missing file")
    expect(core._normalize_keys({" TZ ": "UTC"}) == {"tz": "UTC"}, "keys are normalized")


TESTS = [
    test_name_matching,
    test_string_helpers,
    test_parse_error_text,
    test_resolve_zone,
    test_gregorian_day_counts,
    test_scratch_calendar_clamps_month_end,
    test_scratch_calendar_weekday,
    test_scratch_calendar_is_lenient,
    test_scratch_calendar_hours_are_elapsed,
    test_scratch_calendar_large_subsecond_add_is_exact,
    test_read_toml,
]


def main():
    import argparse
    ap = argparse.ArgumentParser()
    ap.add_argument("--only", help="substring filter for test names")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    selected = TESTS
    if args.only:
        selected = [fn for fn in TESTS if args.only.lower() in fn.__name__.lower()]

    fails = 0
    for fn in selected:
        try:
            fn()
            if args.verbose:
                print(f"✓ {fn.__name__}")
        except AssertionError as e:
            fails += 1
            print(f"✗ {fn.__name__}: {e}")
        except Exception as e:
            fails += 1
            print(f"✗ {fn.__name__}: unexpected error {e}")

    total = len(selected)
    print(f"\nDone: {total - fails}/{total} passing")
    sys.exit(1 if fails else 0)

if __name__ == "__main__":
    main()
