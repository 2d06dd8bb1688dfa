#!/usr/bin/env python3
"""
flextime navigator: inspect how free-form dates, durations and recurrences are read.

  flextime --parse "Jan 15 9am" --ref 2024-06-01T12:00 --eval past
  flextime --duration "1h 30m"
  flextime --relative 2024-05-28T09:00 --ref 2024-06-01T12:00
  flextime --recur "1mo#" --from 2024-01-09T10:00 --count 6
  flextime --interactive
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from typing import Optional

from dateutil import parser as date_parser

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.align import Align
from rich import box

from prompt_toolkit import prompt
from prompt_toolkit.completion import FuzzyCompleter, WordCompleter

import flextime_core as core
from flextime_core import DateElementType, ParseError, resolve_zone
from flextime_duration import AboveDayStrategy, as_parsed_duration, parse_duration
from flextime_format import RelativeTimeFormat
from flextime_recur import parse_recurrence_interval
from flextime_time import (
    AbsoluteTime,
    Evaluation,
    RelativeTime,
    TimeEvaluationOptions,
    as_flex_time,
    parse_time,
)


# ──────────────────────────────────────────────────────────────────────────────
# Constants / styling
# ──────────────────────────────────────────────────────────────────────────────
console = Console()

COLORS = {
    'primary': 'bright_cyan',
    'secondary': 'bright_blue',
    'success': 'green',
    'warning': 'bright_yellow',
    'error': 'bright_red',
    'muted': 'grey58',
    'accent': 'bright_magenta',
}

RECUR_PREVIEW_MAX = 24

SHELL_COMMANDS = ["parse", "duration", "relative", "recur", "ref", "tz", "eval", "help", "quit"]
SHELL_WORDS = SHELL_COMMANDS + [
    "now", "Mon","Tues", "Wed", "Thurs", "Fri", "Sat", "Sun",
    "Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
    "1mo#", "1mo-", "3mo-", "1w", "2w", "1h 30m", "past", "future", "closest",
]


def _emit_check(status: str, label: str, detail: str) -> None:
    color = {
        "OK": COLORS["success"],
        "WARN": COLORS["warning"],
        "FAIL": COLORS["error"],
    }.get(status, COLORS["muted"])
    console.print(f"[{color}]{status:>4}[/] {label}: {detail}")


def _error(msg: str) -> int:
    console.print(f"[{COLORS['error']}]{msg}[/]")
    return 1


def _zone_arg(name: str | None):
    if not name:
        return core.default_zone()
    zone = resolve_zone(name)
    if zone is None:
        raise ValueError(f"Unknown time zone: {name}")
    return zone


def _parse_when(text: str | None, zone) -> datetime:
    """Parse --ref / --from with dateutil; naive input is read in ``zone``."""
    if not text or text.strip().lower() == "now":
        return core.now_utc()
    dt = date_parser.parse(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)
    return dt


def _fmt(dt: datetime, zone) -> str:
    return dt.astimezone(zone).strftime("%Y-%m-%d %H:%M:%S %Z").rstrip()


# ──────────────────────────────────────────────────────────────────────────────
# Views
# ──────────────────────────────────────────────────────────────────────────────
def _show_parse(text: str, options: TimeEvaluationOptions, ref: datetime) -> int:
    try:
        parsed = parse_time(text, options)
    except ParseError as e:
        return _error(f"Invalid time: {e}")

    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_row("Input", text)
    table.add_row("Kind", "absolute" if isinstance(parsed, AbsoluteTime) else "relative")
    fields = ", ".join(
        f"{el.field.label}={el.text}" for el in parsed.elements
    )
    table.add_row("Fields", fields)
    table.add_row("Resolution", parsed.resolution.label)
    match parsed:
        case AbsoluteTime():
            table.add_row("Range", f"{_fmt(parsed.time, options.zone)}  →  {_fmt(parsed.max_time, options.zone)}")
            when = parsed.time
        case RelativeTime():
            when = parsed.evaluate(ref)
            table.add_row("Reference", _fmt(ref, options.zone))
            table.add_row("Evaluation", parsed.evaluation.value)
            table.add_row("Resolved", _fmt(when, options.zone))
    table.add_row("Flexible", str(as_flex_time(when, options=options)))
    table.add_row("Relative", RelativeTimeFormat(zone=options.zone).print_as_duration(when, ref))
    console.print(Panel(table, title="Parse", border_style=COLORS["primary"], expand=False))
    return 0


def _show_duration(text: str) -> int:
    try:
        duration = parse_duration(text)
    except ParseError as e:
        return _error(f"Invalid duration: {e}")

    elapsed = duration.as_duration()
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_row("Input", text)
    table.add_row("Sign", {1: "positive", 0: "zero", -1: "negative"}[duration.signum()])
    table.add_row("Components", ", ".join(f"{c.field.unit}={c.value}" for c in duration.components) or "—")
    table.add_row("Elapsed", str(elapsed))
    table.add_row("Normalized", str(as_parsed_duration(elapsed)))
    table.add_row("Approx.", RelativeTimeFormat(max_elements=3).with_full_names().with_pluralization().print(elapsed))
    console.print(Panel(table, title="Duration", border_style=COLORS["secondary"], expand=False))
    return 0


def _show_relative(when: str, ref: datetime, zone) -> int:
    try:
        target = _parse_when(when, zone)
    except (ValueError, OverflowError) as e:
        return _error(f"Invalid time: {e}")
    fmt = RelativeTimeFormat(zone=zone)
    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold", border_style="bright_black")
    table.add_column("Style")
    table.add_column("Text", style=COLORS["accent"])
    table.add_row("default", fmt.print_as_duration(target, ref))
    table.add_row("two units", fmt.with_max_elements(2).print_as_duration(target, ref))
    table.add_row("full names", fmt.with_max_elements(2).with_full_names().with_pluralization()
                  .print_as_duration(target, ref))
    table.add_row("calendar", fmt.with_above_day(AboveDayStrategy.MONTH_YEAR).with_max_elements(2)
                  .print_as_duration(target, ref))
    console.print(Panel(table, title=f"{_fmt(target, zone)} vs {_fmt(ref, zone)}",
                        border_style=COLORS["secondary"], expand=False))
    return 0


def _show_recur(expr: str, start: datetime, count: int, zone) -> int:
    try:
        interval = parse_recurrence_interval(expr, start, zone)
    except (ParseError, ValueError) as e:
        return _error(f"Invalid recurrence: {e}")
    if interval is None:
        return _error("Empty recurrence")

    count = max(1, min(count, RECUR_PREVIEW_MAX))
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_row("Expression", expr)
    table.add_row("Natural", str(interval))
    table.add_row("Approx.", str(as_parsed_duration(interval.approximate_duration())))
    occur = interval.get_occurrence(start, start, after=True, strict=False)
    lines = []
    for i in range(1, count + 1):
        lines.append(f"{i}. {_fmt(occur, zone)}")
        occur = interval.adjacent_occurrence(occur, True)
    table.add_row("Next", "\n".join(lines))
    console.print(Panel(table, title="Recurrence", border_style=COLORS["accent"], expand=False))
    return 0


def _self_check() -> int:
    console.print("[bold]flextime self-check[/bold]")
    ok = True

    cfg_existing = [p for p in core._config_paths() if os.path.exists(p)]
    if cfg_existing:
        data = core._read_toml(cfg_existing[0])
        _emit_check("OK" if data else "WARN", "config",
                    f"found {cfg_existing[0]}" + ("" if data else " (empty or parse error)"))
    else:
        _emit_check("WARN", "config", "no config file found; defaults in use")

    zone = resolve_zone(core.ZONE_NAME)
    if zone is None:
        ok = False
        _emit_check("FAIL", "tz", f"unknown zone {core.ZONE_NAME!r}")
    else:
        _emit_check("OK", "tz", core.ZONE_NAME)

    samples = [
        ("time", lambda: parse_time("2024-03-05T10:00:00Z")),
        ("relative time", lambda: parse_time("Jan 15 9am")),
        ("duration", lambda: parse_duration("1h 30m")),
        ("recurrence", lambda: parse_recurrence_interval("1mo#", core.now_utc())),
    ]
    for label, fn in samples:
        try:
            _emit_check("OK", label, str(fn()))
        except (ParseError, ValueError) as e:
            ok = False
            _emit_check("FAIL", label, str(e))

    if os.environ.get("FLEXTIME_DIAG") == "1":
        console.print(f"flextime_core={getattr(core, '__file__', 'unknown')}")
        console.print(f"core.evaluation={core.EVALUATION_NAME}")
        console.print(f"core.max_recurrence_steps={core.MAX_RECURRENCE_STEPS}")
    return 0 if ok else 1


# ──────────────────────────────────────────────────────────────────────────────
# Interactive shell
# ──────────────────────────────────────────────────────────────────────────────
class FlexShell:
    def __init__(self, options: TimeEvaluationOptions, ref_text: Optional[str]):
        self.options = options
        self.ref_text = ref_text

    @property
    def ref(self) -> datetime:
        return _parse_when(self.ref_text, self.options.zone)

    def help(self) -> None:
        table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
        table.add_row("parse TEXT", "read a date/time")
        table.add_row("duration TEXT", "read a duration")
        table.add_row("relative WHEN", "describe WHEN against the reference")
        table.add_row("recur EXPR [@ WHEN]", "preview a recurrence starting at WHEN")
        table.add_row("ref WHEN | now", "set the reference instant")
        table.add_row("tz ZONE", "set the time zone")
        table.add_row("eval past|future|closest", "set how partial times resolve")
        table.add_row("quit", "leave")
        console.print(Panel(table, title="Commands", border_style=COLORS["muted"], expand=False))

    def handle(self, line: str) -> bool:
        cmd, _, rest = line.partition(" ")
        cmd, rest = cmd.lower(), rest.strip()
        if cmd in ("quit", "exit", "q"):
            return False
        if cmd == "parse":
            _show_parse(rest, self.options, self.ref)
        elif cmd == "duration":
            _show_duration(rest)
        elif cmd == "relative":
            _show_relative(rest, self.ref, self.options.zone)
        elif cmd == "recur":
            expr, _, when = rest.partition("@")
            start = _parse_when(when.strip() or self.ref_text, self.options.zone)
            _show_recur(expr.strip(), start, 6, self.options.zone)
        elif cmd == "ref":
            self.ref_text = rest or None
            console.print(f"reference = {_fmt(self.ref, self.options.zone)}")
        elif cmd == "tz":
            self.options = self.options.with_zone(_zone_arg(rest))
            console.print(f"tz = {rest}")
        elif cmd == "eval":
            self.options = self.options.with_evaluation(Evaluation(rest.lower()))
            console.print(f"evaluation = {self.options.evaluation.value}")
        elif cmd == "help":
            self.help()
        else:
            # bare text is read as a time
            _show_parse(line, self.options, self.ref)
        return True

    def run(self) -> int:
        completer = FuzzyCompleter(WordCompleter(SHELL_WORDS, match_middle=True))
        console.print(Panel(Align.center("⏱️ flextime navigator"), style=COLORS["primary"], expand=False))
        self.help()
        while True:
            try:
                line = prompt("❯ ", completer=completer).strip()
            except (KeyboardInterrupt, EOFError):
                console.print(f"\n[{COLORS['warning']}]Bye[/]")
                return 0
            if not line:
                continue
            try:
                if not self.handle(line):
                    return 0
            except (ValueError, OverflowError) as e:
                _error(f"Error: {e}")


def main():
    parser = argparse.ArgumentParser(
        description="flextime navigator: free-form dates, durations and recurrences",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--parse", metavar="TEXT", help="Parse a date/time")
    parser.add_argument("--duration", metavar="TEXT", help="Parse a duration")
    parser.add_argument("--relative", metavar="WHEN", help="Describe WHEN relative to --ref")
    parser.add_argument("--recur", metavar="EXPR", help="Preview a recurrence (e.g. 2w, 1mo#, 3mo-)")
    parser.add_argument("--from", dest="start", metavar="WHEN", help="First occurrence for --recur (default: --ref)")
    parser.add_argument("-c", "--count", type=int, default=6, help="Occurrences to list for --recur")
    parser.add_argument("--ref", metavar="WHEN", help="Reference instant (default: now)")
    parser.add_argument("--tz", metavar="ZONE", help="Time zone (default: config tz)")
    parser.add_argument("--eval", choices=[e.value for e in Evaluation],
                        help="How partially-specified times resolve")
    parser.add_argument("--24h", dest="twenty_four_hour", action="store_true",
                        help="Read bare hours on a 24-hour clock")
    parser.add_argument("--self-check", action="store_true", help="Run self-check diagnostics")
    parser.add_argument("-i", "--interactive", action="store_true", help="Start the interactive shell")

    args = parser.parse_args()

    try:
        zone = _zone_arg(args.tz)
        options = TimeEvaluationOptions(zone=zone).with_max_resolution(DateElementType.SUBSECOND)
        if args.eval:
            options = options.with_evaluation(Evaluation(args.eval))
        if args.twenty_four_hour:
            options = options.with_24_hour(True)
        ref = _parse_when(args.ref, zone)
    except (ValueError, OverflowError) as e:
        console.print(f"[{COLORS['error']}]Error: {e}[/]")
        sys.exit(1)

    if args.interactive:
        sys.exit(FlexShell(options, args.ref).run())

    code = 0
    ran = False
    try:
        if args.self_check:
            ran = True
            code = max(code, _self_check())
        if args.parse:
            ran = True
            code = max(code, _show_parse(args.parse, options, ref))
        if args.duration:
            ran = True
            code = max(code, _show_duration(args.duration))
        if args.relative:
            ran = True
            code = max(code, _show_relative(args.relative, ref, zone))
        if args.recur:
            ran = True
            start = _parse_when(args.start, zone) if args.start else ref
            code = max(code, _show_recur(args.recur, start, args.count, zone))
    except KeyboardInterrupt:
        console.print(f"\n[{COLORS['warning']}]Operation cancelled[/]")
        sys.exit(0)
    except (ValueError, OverflowError) as e:
        console.print(f"[{COLORS['error']}]Error: {e}[/]")
        sys.exit(1)

    if not ran:
        parser.print_help()
    sys.exit(code)


if __name__ == '__main__':
    main()
