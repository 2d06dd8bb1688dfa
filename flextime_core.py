#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared core for flextime: config, diagnostics, errors, field types and the
scratch calendar used by the parser, duration and recurrence modules.

"""
from __future__ import annotations
import os, sys, json, time
import calendar
from datetime import datetime, timedelta, timezone, tzinfo
from enum import IntEnum
from functools import lru_cache
from zoneinfo import ZoneInfo, available_timezones

from dateutil import tz
from dateutil.relativedelta import relativedelta


# ==============================================================================
# TABLE OF CONTENTS (major sections)
# 1) Diagnostics (diag, diag_log)
# 2) Config & defaults
# 3) Errors
# 4) Field types
# 5) String helpers (pad, pluralize, names)
# 6) Zones & time helpers
# 7) Gregorian day counts
# 8) Scratch calendar
# ==============================================================================


# ==============================================================================
# SECTION: Diagnostics
# ==============================================================================
def _diag_log_path() -> str:
    p = os.environ.get("FLEXTIME_DIAG_LOG_PATH")
    if p:
        return os.path.abspath(os.path.expanduser(p))
    base = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "flextime", "diag.jsonl")


def diag_log(msg, component: str) -> None:
    """Append a JSONL diagnostic log entry (when FLEXTIME_DIAG_LOG=1)."""
    if os.environ.get("FLEXTIME_DIAG_LOG") != "1":
        return
    path = _diag_log_path()
    try:
        max_bytes = int(os.environ.get("FLEXTIME_DIAG_LOG_MAX_BYTES") or 262144)
    except ValueError:
        max_bytes = 262144
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        if max_bytes > 0 and os.path.exists(path) and os.stat(path).st_size > max_bytes:
            os.replace(path, path.replace(".jsonl", f".overflow.{int(time.time())}.jsonl"))
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "component": component,
            "pid": os.getpid(),
        }
        if isinstance(msg, dict):
            payload["msg"] = str(msg.get("msg") or "")
            payload["data"] = msg
        else:
            payload["msg"] = str(msg)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n")
    except OSError:
        # Diagnostics never break parsing.
        pass


def diag(msg, component: str = "flextime") -> None:
    """Write diagnostics to stderr when FLEXTIME_DIAG=1 and to the JSONL log when FLEXTIME_DIAG_LOG=1."""
    if os.environ.get("FLEXTIME_DIAG") == "1":
        try:
            sys.stderr.write(f"[flextime] {msg}\n")
        except OSError:
            pass
    diag_log(msg, component)


# ==============================================================================
# SECTION: Config & defaults
# ==============================================================================
try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python 3.10 (pip install tomli)


_DEFAULTS = {
    "tz": "UTC",                     # zone id, or "local"
    "evaluation": "closest",         # past | future | closest
    "twenty_four_hour": False,
    "relative_precision": "minute",
    "relative_max_elements": 1,
    "relative_abbreviated": True,
    "relative_pluralized": False,
    "relative_above_day": "none",    # none | week | month_year
    "relative_ago": "ago",
    "relative_just_now": "",
    "max_recurrence_steps": 4096,
}

_CONF_CACHE = None


def _read_toml(path: str) -> dict:
    if not path or not os.path.isfile(path):
        return {}
    env_path = os.environ.get("FLEXTIME_CONFIG") or ""
    is_env_path = bool(env_path) and path == os.path.abspath(os.path.expanduser(env_path))
    try:
        with open(path, "rb") as f:
            return tomllib.load(f) or {}
    except (OSError, tomllib.TOMLDecodeError) as e:
        if is_env_path:
            raise RuntimeError(f"FLEXTIME_CONFIG parse failed for {path}: {e}")
        diag(f"Failed to parse TOML: {path}: {e}", "config")
        return {}


def _config_paths() -> list[str]:
    env_path = os.environ.get("FLEXTIME_CONFIG")
    if env_path:
        ap = os.path.abspath(os.path.expanduser(env_path))
        if not os.path.isfile(ap):
            diag(f"FLEXTIME_CONFIG path missing; using defaults: {ap}", "config")
        return [ap]

    def _candidates_in_dir(d: str) -> list[str]:
        d = os.path.abspath(os.path.expanduser(d))
        return [
            os.path.join(d, "config-flextime.toml"),
            os.path.join(d, "flextime.toml"),
        ]

    paths: list[str] = []
    paths.extend(_candidates_in_dir(os.path.dirname(os.path.abspath(__file__))))
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        paths.extend(_candidates_in_dir(os.path.join(xdg, "flextime")))
    paths.extend(_candidates_in_dir("~/.config/flextime"))

    out: list[str] = []
    for p in paths:
        if p not in out:
            out.append(p)
    return out


def _normalize_keys(d: dict) -> dict:
    # allow users to write keys in any case
    return {str(k).strip().lower(): v for k, v in (d or {}).items()}


def _load_config() -> dict:
    cfg = dict(_DEFAULTS)
    chosen = None
    paths = _config_paths()
    for p in paths:
        data = _read_toml(p)
        if data:
            cfg.update(_normalize_keys(data))
            chosen = p
            break
    if chosen:
        diag(f"Using config: {chosen}", "config")
    else:
        diag("No config file found; using defaults. Search order: " + ", ".join(paths), "config")
    return cfg


def _get_config() -> dict:
    global _CONF_CACHE
    if _CONF_CACHE is None:
        _CONF_CACHE = _load_config()
    return _CONF_CACHE


_CONF = _get_config()


def _conf_raw(key: str):
    return _CONF.get(key)


def _conf_str(key: str, default: str) -> str:
    v = _conf_raw(key)
    if v is None:
        return str(default)
    s = str(v).strip()
    return s if s else str(default)


def _conf_int(
    key: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    v = _conf_raw(key)
    try:
        out = int(str(v).strip())
    except (TypeError, ValueError):
        out = int(default)
    if min_value is not None and out < min_value:
        out = int(min_value)
    if max_value is not None and out > max_value:
        out = int(max_value)
    return out


def _conf_bool(key: str, default: bool = False) -> bool:
    v = _conf_raw(key)
    if v is None:
        return bool(default)
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off", "none"):
        return False
    return bool(default)


def _conf_choice(key: str, choices: tuple[str, ...]) -> str:
    s = _conf_str(key, _DEFAULTS[key]).lower().replace("-", "_")
    if s not in choices:
        diag(f"Config {key}={s!r} not one of {choices}; using {_DEFAULTS[key]!r}", "config")
        return _DEFAULTS[key]
    return s


ZONE_NAME          = _conf_str("tz", _DEFAULTS["tz"])
EVALUATION_NAME    = _conf_choice("evaluation", ("past", "future", "closest"))
TWENTY_FOUR_HOUR   = _conf_bool("twenty_four_hour", False)
RELATIVE_PRECISION = _conf_str("relative_precision", _DEFAULTS["relative_precision"]).lower()
RELATIVE_MAX_ELEMENTS = _conf_int("relative_max_elements", 1, min_value=1, max_value=10)
RELATIVE_ABBREVIATED  = _conf_bool("relative_abbreviated", True)
RELATIVE_PLURALIZED   = _conf_bool("relative_pluralized", False)
RELATIVE_ABOVE_DAY    = _conf_choice("relative_above_day", ("none", "week", "month_year"))
RELATIVE_AGO       = str(_CONF.get("relative_ago", "ago"))
RELATIVE_JUST_NOW  = _conf_str("relative_just_now", "") or None
MAX_RECURRENCE_STEPS = _conf_int("max_recurrence_steps", 4096, min_value=16)


# ==============================================================================
# SECTION: Errors
# ==============================================================================
class ParseError(Exception):
    """Parse or validation failure; ``offset`` is the character position, or -1 when unknown."""

    def __init__(self, message: str, offset: int = -1):
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self):
        if self.offset >= 0:
            return f"{self.message} (at offset {self.offset})"
        return self.message


class TimeFieldError(ParseError):
    """Arithmetic or comparison on a field the value does not carry (or cannot adjust)."""


# ==============================================================================
# SECTION: Field types
# ==============================================================================
class DateElementType(IntEnum):
    YEAR = 0
    MONTH = 1        # 0 = January
    DAY = 2
    WEEKDAY = 3      # 0 = Sunday
    HOUR = 4
    MINUTE = 5
    SECOND = 6
    SUBSECOND = 7
    AMPM = 8
    TIMEZONE = 9

    @property
    def label(self) -> str:
        return "AM/PM" if self is DateElementType.AMPM else self.name.title()


# Fields that carry calendar value (AM/PM and the zone are derived markers).
CALENDAR_FIELDS = tuple(t for t in DateElementType if t < DateElementType.AMPM)


class DurationComponentType(IntEnum):
    YEAR = 0
    MONTH = 1
    WEEK = 2
    DAY = 3
    HOUR = 4
    MINUTE = 5
    SECOND = 6
    MILLISECOND = 7
    MICROSECOND = 8
    NANOSECOND = 9

    @property
    def unit(self) -> str:
        """Canonical calendar unit name (relativedelta / timedelta keyword)."""
        return self.name.lower() + "s"

    @property
    def nanos(self) -> int | None:
        """Fixed length in nanoseconds, or None for calendar-variable units."""
        return _COMPONENT_NANOS.get(self)


_COMPONENT_NANOS = {
    DurationComponentType.WEEK: 7 * 86400 * 10**9,
    DurationComponentType.DAY: 86400 * 10**9,
    DurationComponentType.HOUR: 3600 * 10**9,
    DurationComponentType.MINUTE: 60 * 10**9,
    DurationComponentType.SECOND: 10**9,
    DurationComponentType.MILLISECOND: 10**6,
    DurationComponentType.MICROSECOND: 10**3,
    DurationComponentType.NANOSECOND: 1,
}


# ==============================================================================
# SECTION: String helpers
# ==============================================================================
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
WEEKDAY_ABBREVS = ("Sun", "Mon", "Tues", "Wed", "Thurs", "Fri", "Sat")

_MONTH_BY_PREFIX = {n[:3].lower(): i for i, n in enumerate(MONTH_NAMES)}
_WEEKDAY_BY_PREFIX = {n[:3].lower(): i for i, n in enumerate(WEEKDAY_NAMES)}


def pad(value: int, digits: int) -> str:
    """Zero-pad an integer to at least ``digits`` digits."""
    if value < 0:
        return "-" + pad(-value, digits)
    return str(value).zfill(digits)


def pluralize(word: str) -> str:
    if not word:
        return word
    lw = word.lower()
    if lw.endswith("y") and len(lw) > 1 and lw[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lw.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def ordinal(n: int) -> str:
    n = int(n)
    if 10 <= n % 100 <= 20:
        suf = "th"
    else:
        suf = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suf}"


def _match_name(word: str, by_prefix: dict, names: tuple) -> int | None:
    w = word.lower()
    if len(w) < 3:
        return None
    idx = by_prefix.get(w[:3])
    if idx is None or not names[idx].lower().startswith(w):
        return None
    return idx


def match_month(word: str) -> int | None:
    """0-based month for a 3-letter prefix of a month name ("Sep", "Sept", "September")."""
    return _match_name(word, _MONTH_BY_PREFIX, MONTH_NAMES)


def match_weekday(word: str) -> int | None:
    """Weekday (0 = Sunday) for a 3-letter prefix of a weekday name ("Thu", "Thurs")."""
    return _match_name(word, _WEEKDAY_BY_PREFIX, WEEKDAY_NAMES)


def match_case(source: str, name: str) -> str:
    """Render ``name`` in the capitalization style of ``source``."""
    if len(source) > 1 and source.isupper():
        return name.upper()
    if source[:1].isupper():
        return name[:1].upper() + name[1:].lower()
    return name.lower()


# ==============================================================================
# SECTION: Zones & time helpers
# ==============================================================================
@lru_cache(maxsize=1)
def _zone_ids() -> dict[str, str]:
    ids = {z.lower(): z for z in available_timezones()}
    ids.setdefault("utc", "UTC")
    return ids


@lru_cache(maxsize=256)
def resolve_zone(name: str) -> tzinfo | None:
    """Case-insensitive zone lookup; ``Z`` is UTC and ``local`` the system zone. None when unknown."""
    key = (name or "").strip().lower()
    if not key:
        return None
    if key == "z":
        return timezone.utc
    if key == "local":
        return tz.tzlocal()
    zid = _zone_ids().get(key)
    return ZoneInfo(zid) if zid else None


def default_zone() -> tzinfo:
    zone = resolve_zone(ZONE_NAME)
    if zone is None:
        diag(f"Unknown tz {ZONE_NAME!r} in config; using UTC", "config")
        return timezone.utc
    return zone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime, zone: tzinfo | None = None) -> datetime:
    """Attach ``zone`` (UTC by default) to naive datetimes; aware ones pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=zone or timezone.utc)
    return dt


def lenient_datetime(year: int, month: int, day: int = 1, hour: int = 0, minute: int = 0,
                     second: int = 0, microsecond: int = 0) -> datetime:
    """Naive datetime where out-of-range fields roll over (month 0-based)."""
    y, m = divmod(month, 12)
    base = datetime(year + y, m + 1, 1)
    return base + timedelta(days=day - 1, hours=hour, minutes=minute, seconds=second,
                            microseconds=microsecond)


# ==============================================================================
# SECTION: Gregorian day counts
# ==============================================================================
def month_len(y: int, m: int) -> int:
    """Days in month (``m`` 1-based)."""
    return calendar.monthrange(y, m)[1]


def days_in_years(years: int) -> int:
    """Approximate days in ``years`` years with the 4/100/400 leap rules."""
    if years < 0:
        return -days_in_years(-years)
    return years * 365 + years // 4 - years // 100 + years // 400


def days_in_months(months: int) -> int:
    """Approximate days in ``months`` months: 30 per month plus the long-month parity correction."""
    if months < 0:
        return -days_in_months(-months)
    years, months = divmod(months, 12)
    days = days_in_years(years)
    days += months * 30
    if months >= 2:
        days += months // 2
    if months >= 10:
        days -= 1
    return days


# ==============================================================================
# SECTION: Scratch calendar
# ==============================================================================
class ScratchCalendar:
    """
    Mutable wall-clock calendar for one operation. Never share an instance.

    Months are 0-based and weekdays count from Sunday = 0, matching the
    parsed field model. Sub-second values are nanoseconds (microsecond precision).
    """

    __slots__ = ("zone", "_wall")

    def __init__(self, time: datetime | None = None, zone: tzinfo | None = None):
        self.zone = zone or timezone.utc
        self._wall = datetime(1970, 1, 1)
        if time is not None:
            self.set(time)

    def set(self, time: datetime) -> "ScratchCalendar":
        self._wall = ensure_aware(time).astimezone(self.zone).replace(tzinfo=None)
        return self

    @property
    def time(self) -> datetime:
        return self._wall.replace(tzinfo=self.zone)

    @property
    def wall(self) -> datetime:
        return self._wall

    def get(self, field: DateElementType) -> int:
        w = self._wall
        if field == DateElementType.YEAR:
            return w.year
        if field == DateElementType.MONTH:
            return w.month - 1
        if field == DateElementType.DAY:
            return w.day
        if field == DateElementType.WEEKDAY:
            return (w.weekday() + 1) % 7
        if field == DateElementType.HOUR:
            return w.hour
        if field == DateElementType.MINUTE:
            return w.minute
        if field == DateElementType.SECOND:
            return w.second
        if field == DateElementType.SUBSECOND:
            return w.microsecond * 1000
        if field == DateElementType.AMPM:
            return 1 if w.hour >= 12 else 0
        raise ValueError(f"{field.label} is not a calendar field")

    def set_field(self, field: DateElementType, value: int) -> "ScratchCalendar":
        """Set one field leniently; out-of-range values roll into the neighbouring fields."""
        w = self._wall
        parts = [w.year, w.month - 1, w.day, w.hour, w.minute, w.second, w.microsecond]
        if field == DateElementType.WEEKDAY:
            parts[2] += value - self.get(DateElementType.WEEKDAY)
        elif field == DateElementType.SUBSECOND:
            parts[6] = value // 1000
        else:
            idx = {
                DateElementType.YEAR: 0, DateElementType.MONTH: 1, DateElementType.DAY: 2,
                DateElementType.HOUR: 3, DateElementType.MINUTE: 4, DateElementType.SECOND: 5,
            }.get(field)
            if idx is None:
                raise ValueError(f"{field.label} cannot be set on a calendar")
            parts[idx] = value
        self._wall = lenient_datetime(*parts)
        return self

    def add(self, field: DateElementType, amount: int) -> "ScratchCalendar":
        """
        Calendar add. Year/month adds clamp the day of month, day adds move the
        wall clock, and time-of-day adds are elapsed time (sub-second in nanoseconds).
        """
        if not amount:
            return self
        if field == DateElementType.YEAR:
            self._wall += relativedelta(years=amount)
        elif field == DateElementType.MONTH:
            self._wall += relativedelta(months=amount)
        elif field in (DateElementType.DAY, DateElementType.WEEKDAY):
            self._wall += timedelta(days=amount)
        elif field in (DateElementType.HOUR, DateElementType.MINUTE,
                       DateElementType.SECOND, DateElementType.SUBSECOND):
            if field == DateElementType.SUBSECOND:
                micros = abs(amount) // 1000
                delta = timedelta(microseconds=micros if amount > 0 else -micros)
            else:
                delta = timedelta(**{field.name.lower() + "s": amount})
            self.set(self.time.astimezone(timezone.utc) + delta)
        else:
            raise ValueError(f"{field.label} cannot be added to")
        return self

    def actual_max(self, field: DateElementType) -> int:
        if field == DateElementType.DAY:
            return month_len(self._wall.year, self._wall.month)
        return {
            DateElementType.YEAR: 9999,
            DateElementType.MONTH: 11,
            DateElementType.WEEKDAY: 6,
            DateElementType.HOUR: 23,
            DateElementType.MINUTE: 59,
            DateElementType.SECOND: 59,
            DateElementType.SUBSECOND: 999_999_999,
            DateElementType.AMPM: 1,
        }[field]

    def copy(self) -> "ScratchCalendar":
        other = ScratchCalendar(zone=self.zone)
        other._wall = self._wall
        return other
