#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
flextime Relative Format Tests
 - Imports local flextime_format.py
 - Pins the reference time so output does not depend on the wall clock
 - Covers rounding on the first omitted unit, carry into coarser units,
   "ago"/"just now" text, the week and month/year breakdowns and
   rendering a time back as a parsed clock or date

Run:
  python3 tools/flextime_format_tests.py
"""

import importlib
import sys, os
from datetime import datetime, timedelta, timezone

HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(HERE))

core = importlib.import_module("flextime_core")
fd = importlib.import_module("flextime_duration")
ff = importlib.import_module("flextime_format")
ft = importlib.import_module("flextime_time")

D = core.DurationComponentType
S = fd.AboveDayStrategy
UTC = timezone.utc
REF = datetime(2024, 3, 31, 0, 0, tzinfo=UTC)

# -------- Helpers -------------------------------------------------------------

def base():
    # Explicit settings so a local flextime.toml cannot change the results.
    return ff.RelativeTimeFormat(
        reference=lambda: REF,
        zone=UTC,
        max_precision=D.MINUTE,
        max_elements=1,
        abbreviated=True,
        pluralized=False,
        above_day=S.NONE,
        just_now=None,
        ago="ago",
    )

def expect(cond, msg):
    if not cond:
        raise AssertionError(msg)

def expect_text(fmt, value, want):
    got = fmt.print(value)
    expect(got == want, f"{value!r}: {got!r} != {want!r}")

# -------- Test cases ----------------------------------------------------------

def test_rounds_on_first_omitted_unit():
    f = base()
    expect_text(f, timedelta(seconds=89), "1m")
    expect_text(f, timedelta(seconds=91), "2m")
    expect_text(f, timedelta(seconds=40), "1m")
    expect_text(f, timedelta(hours=2), "2h")

def test_past_gets_ago():
    expect_text(base(), timedelta(days=-3), "3d ago")
    expect_text(base().with_ago(""), timedelta(days=-3), "-3d")

def test_zero_and_just_now():
    expect_text(base(), timedelta(seconds=20), "0m")
    expect_text(base().with_just_now("just now"), timedelta(seconds=20), "just now")
    expect_text(base().with_just_now("just now"), timedelta(seconds=-20), "just now")

def test_round_up_carries_into_next_unit():
    expect_text(base(), timedelta(minutes=59, seconds=40), "1h")
    expect_text(base(), timedelta(hours=23, minutes=59, seconds=45), "1d")

def test_multiple_elements():
    f = base().with_max_elements(2)
    expect_text(f, timedelta(days=1, hours=2, minutes=40), "1d 3h")
    expect_text(f, timedelta(hours=2, seconds=10), "2h")

def test_full_names_pluralize():
    f = base().with_max_elements(2).with_full_names().with_pluralization()
    expect_text(f, timedelta(hours=2, minutes=5), "2 hours 5 minutes")
    expect_text(f, timedelta(hours=1, minutes=1), "1 hour 1 minute")
    expect_text(base().with_pluralization(), timedelta(days=3), "3d")

def test_week_breakdown():
    f = base().with_above_day(S.WEEK).with_max_elements(2)
    expect_text(f, timedelta(days=10), "1w 3d")
    expect_text(base().with_above_day(S.WEEK), timedelta(days=11), "2w")

def test_month_year_breakdown_uses_calendar():
    f = base().with_above_day(S.MONTH_YEAR)
    jan15 = datetime(2024, 1, 15, tzinfo=UTC)
    expect_text(f.with_max_elements(2), jan15, "2mo 16d ago")
    expect_text(f, jan15, "3mo ago")
    got = f.with_max_elements(2).print_as_duration(
        datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 1, 31, tzinfo=UTC))
    expect(got == "1mo 1d", f"Jan 31 -> Mar 1: {got!r}")

def test_precision_coarser_than_days():
    f = base().with_max_precision(D.MONTH)
    expect_text(f, timedelta(days=3, hours=13), "4d")

def test_precision_finer_than_minutes():
    f = base().with_max_precision(D.SECOND).with_max_elements(2)
    expect_text(f, timedelta(minutes=1, seconds=5, milliseconds=600), "1m 6s")

def test_parsed_duration_input():
    expect_text(base(), fd.parse_duration("1h 29m"), "1h")
    expect_text(base(), fd.parse_duration("-2d"), "2d ago")

def test_elements_count_only_nonzero_units():
    f = base().with_max_elements(2)
    expect_text(f, timedelta(days=1, minutes=5), "1d 5m")
    expect_text(f, timedelta(days=1, minutes=5, seconds=40), "1d 6m")
    expect_text(f, timedelta(days=-1, minutes=-5), "1d 5m ago")
    expect_text(f, timedelta(hours=23, minutes=59, seconds=45), "1d")

def clock(text_12, text_24):
    return text_24 if core.TWENTY_FOUR_HOUR else text_12

def test_relative_keeps_clock_within_a_day():
    t = datetime(2024, 3, 31, 9, 30, 20, tzinfo=UTC)
    p = base().relative(t)
    expect(isinstance(p, ft.RelativeTime), f"{p!s} should be relative")
    expect(str(p) == clock("9:30am", "09:30"), f"{p!s}")
    expect(p.evaluate(REF) == datetime(2024, 3, 31, 9, 30, tzinfo=UTC), f"{p.evaluate(REF)}")

def test_relative_adds_date_beyond_a_day():
    t = datetime(2024, 3, 28, 14, 5, tzinfo=UTC)
    p = base().relative(t)
    expect(isinstance(p, ft.AbsoluteTime), f"{p!s} should be absolute")
    expect(str(p) == "2024-03-28 " + clock("2:05pm", "14:05"), f"{p!s}")
    expect(p.evaluate() == t, f"{p.evaluate()}")
    named = base().relative(t, day_format="MMM d")
    expect(str(named) == "Mar 28 " + clock("2:05pm", "14:05"), f"{named!s}")
    expect(named.evaluate(REF) == t, f"{named.evaluate(REF)}")

def test_relative_day_precision_drops_clock():
    p = base().with_max_precision(D.DAY).relative(datetime(2024, 3, 31, 9, 30, tzinfo=UTC))
    expect(str(p) == "2024-03-31", f"{p!s}")

def test_builders_are_immutable():
    f = base()
    g = f.with_max_elements(3)
    expect(f.max_elements == 1 and g.max_elements == 3, "builders return copies")
    try:
        f.with_max_elements(0)
    except ValueError:
        pass
    else:
        raise AssertionError("max_elements below 1 must be rejected")


TESTS = [
    test_rounds_on_first_omitted_unit,
    test_past_gets_ago,
    test_zero_and_just_now,
    test_round_up_carries_into_next_unit,
    test_multiple_elements,
    test_full_names_pluralize,
    test_week_breakdown,
    test_month_year_breakdown_uses_calendar,
    test_precision_coarser_than_days,
    test_precision_finer_than_minutes,
    test_parsed_duration_input,
    test_elements_count_only_nonzero_units,
    test_relative_keeps_clock_within_a_day,
    test_relative_adds_date_beyond_a_day,
    test_relative_day_precision_drops_clock,
    test_builders_are_immutable,
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
