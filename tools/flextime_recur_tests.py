#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
flextime Recurrence Tests
 - Imports local flextime_recur.py
 - All intervals are pinned to UTC so the configured zone does not matter
 - Covers Nth-weekday and end-of-month anchors, cadence text, occurrence
   search on both sides of a time, and the strict boundary flag

Run:
  python3 tools/flextime_recur_tests.py
Optional:
  python3 tools/flextime_recur_tests.py --only anchor --verbose
"""

import importlib
import sys, os
from datetime import datetime, timezone

HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(HERE))

core = importlib.import_module("flextime_core")
fd = importlib.import_module("flextime_duration")
fr = importlib.import_module("flextime_recur")

UTC = timezone.utc

# -------- Helpers -------------------------------------------------------------

def at(*parts):
    return datetime(*parts, tzinfo=UTC)

def recur(text, occurrence):
    return fr.parse_recurrence_interval(text, occurrence, UTC)

def expect(cond, msg):
    if not cond:
        raise AssertionError(msg)

def expect_eq(got, want, label):
    expect(got == want, f"{label}: {got} != {want}")

# -------- Test cases ----------------------------------------------------------

def test_nth_weekday_anchor():
    start = at(2024, 1, 9, 10)              # 2nd Tuesday
    r = recur("1mo#", start)
    expect(r.kind is fr.RecurrenceKind.WEEKDAY_OF_MONTH, f"kind {r.kind}")
    expect((r.week, r.weekday, r.months) == (2, 2, 1), f"anchor {r.week}/{r.weekday}/{r.months}")
    expect_eq(str(r), "monthly, 2nd Tue", "description")
    expect_eq(r.adjacent_occurrence(start), at(2024, 2, 13, 10), "next")
    expect_eq(r.adjacent_occurrence(start, forward=False), at(2023, 12, 12, 10), "previous")

def test_nth_weekday_search():
    start = at(2024, 1, 9, 10)
    r = recur("1mo#", start)
    expect_eq(r.get_occurrence(start, at(2024, 6, 1)), at(2024, 6, 11, 10), "after June 1")
    expect_eq(r.get_occurrence(start, at(2024, 6, 1), after=False), at(2024, 5, 14, 10), "before June 1")
    expect_eq(r.get_occurrence(start, at(2023, 3, 1)), at(2023, 3, 14, 10), "search backwards in time")

def test_fifth_weekday_falls_back():
    start = at(2024, 1, 29, 9)              # 5th Monday
    r = recur("1mo#", start)
    expect(r.week == 5 and r.weekday == 1, f"anchor {r.week}/{r.weekday}")
    expect_eq(r.adjacent_occurrence(start), at(2024, 2, 26, 9), "February has four Mondays")
    expect_eq(r.adjacent_occurrence(at(2024, 2, 26, 9)), at(2024, 3, 25, 9), "anchor is not lost")

def test_end_of_month_anchor():
    start = at(2024, 1, 31, 18)
    r = recur("1mo-", start)
    expect(r.kind is fr.RecurrenceKind.END_OF_MONTH and r.days_before_end == 0, f"{r}")
    expect_eq(str(r), "monthly, last day of month", "description")
    feb = r.adjacent_occurrence(start)
    expect_eq(feb, at(2024, 2, 29, 18), "leap February")
    expect_eq(r.adjacent_occurrence(feb), at(2024, 3, 31, 18), "back to the 31st")

def test_days_before_end_anchor():
    start = at(2024, 1, 28, 8)
    r = recur("3mo-", start)
    expect_eq(str(r), "quarterly, 3 days before end of month", "description")
    expect_eq(r.adjacent_occurrence(start), at(2024, 4, 27, 8), "April")
    expect_eq(str(recur("1mo-", at(2024, 1, 30))), "monthly, 1 day before end of month", "singular")

def test_cadence_text():
    cases = {
        "2mo#": "every other month, 2nd Tue",
        "1y#": "annually, 2nd Tue",
        "6mo#": "biannually, 2nd Tue",
        "2y#": "every 2 years, 2nd Tue",
        "5mo#": "every 5 months, 2nd Tue",
        "#": "monthly, 2nd Tue",
    }
    for text, want in cases.items():
        expect_eq(str(recur(text, at(2024, 1, 9, 10))), want, text)

def test_anchor_needs_months():
    try:
        recur("1w#", at(2024, 1, 9))
    except core.ParseError as e:
        expect("months and years" in e.message, e.message)
        expect(e.offset == 2, f"offset {e.offset}")
    else:
        raise AssertionError("'1w#' should not parse")

def test_normal_interval_search():
    start = at(2024, 1, 1, 10)
    r = recur("1w", start)
    expect(not r.anchored and str(r) == "1w", f"{r}")
    expect_eq(r.get_occurrence(start, at(2024, 12, 25)), at(2024, 12, 30, 10), "after Christmas")
    expect_eq(r.get_occurrence(start, at(2024, 12, 25), after=False), at(2024, 12, 23, 10), "before Christmas")
    expect_eq(r.get_occurrence(start, at(2023, 6, 1)), at(2023, 6, 5, 10), "earlier than the reference")

def test_month_interval_keeps_day():
    start = at(2024, 1, 15, 12)
    r = recur("1mo", start)
    expect_eq(r.get_occurrence(start, at(2024, 7, 20)), at(2024, 8, 15, 12), "calendar months")

def test_strict_excludes_exact_match():
    start = at(2024, 1, 9, 10)
    r = recur("1mo#", start)
    feb = at(2024, 2, 13, 10)
    expect_eq(r.get_occurrence(start, feb), feb, "exact match qualifies")
    expect_eq(r.get_occurrence(start, feb, strict=True), at(2024, 3, 12, 10), "strict after")
    expect_eq(r.get_occurrence(start, feb, after=False, strict=True), start, "strict before")
    expect_eq(r.get_occurrence(start, None), start, "no relative time")

def test_invalid_intervals():
    try:
        fr.RecurrenceInterval.normal("0s", fd.parse_duration("0s"))
    except ValueError:
        pass
    else:
        raise AssertionError("zero interval must be rejected")
    try:
        recur("-1w", at(2024, 1, 1))
    except core.ParseError as e:
        expect("positive" in e.message, e.message)
    else:
        raise AssertionError("negative interval must be rejected")
    for bad in ((0, 2, 2), (1, 6, 2), (1, 2, 7)):
        try:
            fr.RecurrenceInterval.on_day_of_month_week("x", *bad)
        except ValueError:
            continue
        raise AssertionError(f"on_day_of_month_week{bad} should fail")

def test_sub_microsecond_interval_is_rejected():
    try:
        recur("500ns", at(2024, 1, 1))
    except core.ParseError as e:
        expect("microsecond" in e.message, e.message)
    else:
        raise AssertionError("a 500ns cadence cannot step a datetime")
    try:
        fr.RecurrenceInterval.normal("500ns", fd.parse_duration("500ns"))
    except ValueError:
        pass
    else:
        raise AssertionError("normal() must reject a cadence below a microsecond")
    r = recur("1500ns", at(2024, 1, 1))
    expect_eq(r.get_occurrence(at(2024, 1, 1), at(2024, 1, 1, 0, 0, 0, 5), strict=True),
              at(2024, 1, 1, 0, 0, 0, 6), "1500ns steps in whole microseconds")

def test_missing_inputs():
    expect(recur("", at(2024, 1, 1)) is None, "empty text")
    expect(recur("1w", None) is None, "no occurrence")

def test_equality_ignores_text():
    parsed = recur("1mo#", at(2024, 1, 9, 10))
    built = fr.RecurrenceInterval.on_day_of_month_week("monthly 2nd tuesday", 1, 2, 2)
    expect(parsed == built, f"{parsed!r} != {built!r}")
    expect(parsed != recur("1mo-", at(2024, 1, 9, 10)), "different kinds differ")


TESTS = [
    test_nth_weekday_anchor,
    test_nth_weekday_search,
    test_fifth_weekday_falls_back,
    test_end_of_month_anchor,
    test_days_before_end_anchor,
    test_cadence_text,
    test_anchor_needs_months,
    test_normal_interval_search,
    test_month_interval_keeps_day,
    test_strict_excludes_exact_match,
    test_invalid_intervals,
    test_sub_microsecond_interval_is_rejected,
    test_missing_inputs,
    test_equality_ignores_text,
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
