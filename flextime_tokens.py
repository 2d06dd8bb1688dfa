#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tokenizer and format catalog for free-form date/time text.

Text is scanned into elementary tokens (digit runs, month/weekday names,
am/pm markers, ordinal suffixes, zone ids, separators). The token stream is
matched against an ordered catalog of composite formats; the first format
whose required components all match wins. A second clause (typically a time
following a date) is matched on the remainder.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import tzinfo

from flextime_core import (
    DateElementType as F,
    ParseError,
    match_month,
    match_weekday,
    resolve_zone,
)


# ==============================================================================
# SECTION: Tokens
# ==============================================================================
@dataclass(frozen=True)
class Token:
    kind: str        # num | month | weekday | ampm | th | zone | sep | blank | junk
    start: int
    text: str
    value: int = 0
    zone: tzinfo | None = None

    @property
    def end(self) -> int:
        return self.start + len(self.text)


_TOKEN_RE = re.compile(
    r"(?P<num>\d+)"
    r"|(?P<ampm>[AaPp]\.?[Mm]\.?)(?![A-Za-z])"
    r"|(?P<alpha>[A-Za-z]+(?:[/_][A-Za-z][A-Za-z_]*)*)"
    r"|(?P<blank>[\s,]+)"
    r"|(?P<sep>[-/.:])"
)
_ORDINAL_SUFFIXES = frozenset({"st", "nd", "rd", "th"})


def _classify_alpha(text: str, word: str, start: int, prev: Token | None) -> Token:
    lw = word.lower()
    after_digits = prev is not None and prev.kind == "num" and prev.end == start
    if after_digits and lw in _ORDINAL_SUFFIXES:
        return Token("th", start, word)
    end = start + len(word)
    if after_digits and lw == "t" and end < len(text) and text[end].isdigit():
        return Token("sep", start, word)
    month = match_month(word)
    if month is not None:
        return Token("month", start, word, month)
    weekday = match_weekday(word)
    if weekday is not None:
        return Token("weekday", start, word, weekday)
    zone = resolve_zone(word)
    if zone is not None:
        return Token("zone", start, word, zone=zone)
    return Token("junk", start, word)


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    n = len(text)
    while pos < n:
        m = _TOKEN_RE.match(text, pos)
        if not m:
            tokens.append(Token("junk", pos, text[pos]))
            pos += 1
            continue
        kind = m.lastgroup
        word = m.group(kind)
        prev = tokens[-1] if tokens else None
        if kind == "num":
            tokens.append(Token("num", pos, word, int(word)))
        elif kind == "ampm":
            tokens.append(Token("ampm", pos, word, 1 if word[0] in "Pp" else 0))
        elif kind == "alpha":
            tokens.append(_classify_alpha(text, word, pos, prev))
        else:
            tokens.append(Token(kind, pos, word))
        pos = m.end()
    return tokens


# ==============================================================================
# SECTION: Parsed elements
# ==============================================================================
@dataclass(frozen=True)
class ParsedElement:
    """One field of a parsed time: its type, source span, value and rendered text."""
    field: F
    start: int
    value: int
    text: str
    style: str = "num"           # num | month | weekday | ampm | zone
    zone: tzinfo | None = None

    @property
    def end(self) -> int:
        return self.start + len(self.text)


# ==============================================================================
# SECTION: Format catalog
# ==============================================================================
@dataclass(frozen=True)
class _Component:
    name: str
    optional: bool

    def accepts(self, tok: Token) -> bool:
        kind, pred = _COMPONENT_KINDS[self.name]
        return tok.kind == kind and (pred is None or pred(tok))

    def elements(self, tok: Token) -> list[ParsedElement]:
        if self.name == "ymd8":
            return [
                ParsedElement(F.YEAR, tok.start, int(tok.text[:4]), tok.text[:4]),
                ParsedElement(F.MONTH, tok.start + 4, int(tok.text[4:6]) - 1, tok.text[4:6]),
                ParsedElement(F.DAY, tok.start + 6, int(tok.text[6:]), tok.text[6:]),
            ]
        if self.name == "hhmm":
            return [
                ParsedElement(F.HOUR, tok.start, int(tok.text[:2]), tok.text[:2]),
                ParsedElement(F.MINUTE, tok.start + 2, int(tok.text[2:]), tok.text[2:]),
            ]
        field = _COMPONENT_FIELDS.get(self.name)
        if field is None:
            return []
        if tok.kind == "num":
            value = tok.value - 1 if field == F.MONTH else tok.value
            return [ParsedElement(field, tok.start, value, tok.text)]
        style = {"month": "month", "weekday": "weekday", "ampm": "ampm", "zone": "zone"}[tok.kind]
        return [ParsedElement(field, tok.start, tok.value, tok.text, style, tok.zone)]


def _digits(lo: int, hi: int):
    return lambda t: lo <= len(t.text) <= hi


def _sep(chars: str):
    return lambda t: t.text in chars


_COMPONENT_KINDS = {
    "year4": ("num", _digits(4, 4)),
    "year2": ("num", _digits(2, 2)),
    "mnum": ("num", _digits(1, 2)),
    "day": ("num", _digits(1, 2)),
    "hour": ("num", _digits(1, 2)),
    "minute": ("num", _digits(2, 2)),
    "second": ("num", _digits(2, 2)),
    "subsec": ("num", _digits(1, 9)),
    "ymd8": ("num", _digits(8, 8)),
    "hhmm": ("num", _digits(4, 4)),
    "month": ("month", None),
    "wd": ("weekday", None),
    "ampm": ("ampm", None),
    "zone": ("zone", None),
    "th": ("th", None),
    "dsep": ("sep", _sep("-/.")),
    "slash": ("sep", _sep("-/")),
    "dash": ("sep", _sep("-")),
    "dot": ("sep", _sep(".")),
    "colon": ("sep", _sep(":")),
}

_COMPONENT_FIELDS = {
    "year4": F.YEAR, "year2": F.YEAR, "mnum": F.MONTH, "month": F.MONTH,
    "day": F.DAY, "wd": F.WEEKDAY, "hour": F.HOUR, "minute": F.MINUTE,
    "second": F.SECOND, "subsec": F.SUBSECOND, "ampm": F.AMPM, "zone": F.TIMEZONE,
}

# Priority order; "?" marks an optional component. Blanks (whitespace, commas)
# may precede any component.
_CATALOG_SOURCE = (
    ("YMD8", "ymd8 zone?"),
    ("Y4MDthZ", "year4 dsep mnum dsep day th? zone?"),
    ("Y4MchDZ", "year4 dash month dash day th? zone?"),
    ("Y4MZ", "year4 dsep mnum zone?"),
    ("MY4Z", "month year4 zone?"),
    ("DMY4Z", "wd? day th? slash? month slash? year4 zone?"),
    ("DMY2Z", "wd? day th? slash? month slash? year2 zone?"),
    ("MchDthY4Z", "wd? month slash? day th? year4 zone?"),
    ("MchDthY2Z", "wd? month slash? day th? year2 zone?"),
    ("MdDthY4Z", "wd? mnum slash day th? slash year4 zone?"),
    ("MdDthY2Z", "wd? mnum slash day th? slash year2 zone?"),
    ("DthMY4Z", "wd? day th? dot mnum dot year4 zone?"),
    ("DthMY2Z", "wd? day th? dot mnum dot year2 zone?"),
    ("DthMchZ", "wd? day th? slash? month zone?"),
    ("MchDthZ", "wd? month slash? day th? zone?"),
    ("MdDthZ", "wd? mnum slash day th? zone?"),
    ("DthMZ", "day th? dot mnum zone?"),
    ("MY4dotZ", "mnum dot year4 zone?"),
    ("DthZ", "day th zone?"),
    ("WdZ", "wd zone?"),
    ("HMSSaZ", "hour colon minute colon second dot subsec ampm? zone?"),
    ("HMSaZ", "hour colon minute colon second ampm? zone?"),
    ("HMaZ", "hour colon minute ampm? zone?"),
    ("HHMMaZ", "hhmm ampm? zone?"),
    ("HaZ", "hour ampm zone?"),
)


@dataclass(frozen=True)
class TimeFormat:
    name: str
    components: tuple[_Component, ...]


def _compile_catalog() -> tuple[TimeFormat, ...]:
    out = []
    for name, source in _CATALOG_SOURCE:
        comps = tuple(_Component(w.rstrip("?"), w.endswith("?")) for w in source.split())
        out.append(TimeFormat(name, comps))
    return tuple(out)


CATALOG = _compile_catalog()


# ==============================================================================
# SECTION: Matching
# ==============================================================================
@dataclass(frozen=True)
class TimeMatch:
    elements: dict          # DateElementType -> ParsedElement
    length: int             # characters consumed
    formats: tuple[str, ...]


_VALID_RANGES = {
    F.MONTH: (0, 11, "Unrecognized month"),
    F.DAY: (1, 31, "Unrecognized day"),
    F.WEEKDAY: (0, 6, "Unrecognized weekday"),
    F.HOUR: (0, 23, "Unrecognized hour"),
    F.MINUTE: (0, 59, "Unrecognized minute"),
    F.SECOND: (0, 59, "Unrecognized second"),
}


def _validate(elements: list[ParsedElement]) -> None:
    for el in elements:
        bounds = _VALID_RANGES.get(el.field)
        if bounds and not (bounds[0] <= el.value <= bounds[1]):
            raise ParseError(f"{bounds[2]}: {el.text}", el.start)


def _skip_blanks(tokens: list[Token], i: int) -> int:
    while i < len(tokens) and tokens[i].kind == "blank":
        i += 1
    return i


_YEAR_COMPONENTS = frozenset({"year4", "year2"})


def _time_follows(tokens: list[Token], i: int) -> bool:
    # "Jan 15 10am": the 10 is an hour, not a 2-digit year
    i = _skip_blanks(tokens, i)
    if i >= len(tokens):
        return False
    tok = tokens[i]
    return tok.kind == "ampm" or (tok.kind == "sep" and tok.text == ":")


def _match_format(fmt: TimeFormat, tokens: list[Token], i: int):
    elements: list[ParsedElement] = []
    end = i
    for comp in fmt.components:
        j = _skip_blanks(tokens, end)
        if (j < len(tokens) and comp.accepts(tokens[j])
                and not (comp.name in _YEAR_COMPONENTS and _time_follows(tokens, j + 1))):
            elements.extend(comp.elements(tokens[j]))
            end = j + 1
        elif not comp.optional:
            return None
    return elements, end


def _match_clause(tokens: list[Token], i: int):
    """First catalog entry matching at token ``i``: (format, elements, next token index)."""
    first_error = None
    for fmt in CATALOG:
        hit = _match_format(fmt, tokens, i)
        if hit is None:
            continue
        try:
            _validate(hit[0])
        except ParseError as e:
            first_error = first_error or e
            continue
        return fmt, hit[0], hit[1]
    if first_error is not None:
        raise first_error
    return None


def _unrecognized(tokens: list[Token], i: int, text: str) -> ParseError:
    for tok in tokens[i:]:
        if tok.kind == "junk":
            return ParseError(f"Unrecognized token: {tok.text!r}", tok.start)
    if i < len(tokens):
        return ParseError(f"Unrecognized date/time format: {text[tokens[i].start:]!r}", tokens[i].start)
    return ParseError("No date/time content to parse", len(text))


def _normalize_ampm(elements: dict) -> None:
    ampm = elements.get(F.AMPM)
    hour = elements.get(F.HOUR)
    if ampm is None or hour is None:
        return
    if not 1 <= hour.value <= 12:
        raise ParseError("Hour must be between 1 and 12 if AM/PM is specified", hour.start)
    value = hour.value % 12 + (12 if ampm.value else 0)
    elements[F.HOUR] = ParsedElement(F.HOUR, hour.start, value, hour.text)


def match_time(text: str, whole_text: bool = True) -> TimeMatch:
    """
    Match ``text`` against the catalog (one clause, optionally a second one).

    Raises ParseError with the offset of the first unrecognized token.
    """
    tokens = tokenize(text)
    start = _skip_blanks(tokens, 0)
    first = _match_clause(tokens, start)
    if first is None:
        raise _unrecognized(tokens, start, text)
    fmt, found, i = first
    elements = {el.field: el for el in found}
    formats = [fmt.name]
    length = tokens[i - 1].end

    j = i
    while j < len(tokens) and (tokens[j].kind == "blank" or (tokens[j].kind == "sep" and tokens[j].text in "Tt")):
        j += 1
    if j < len(tokens):
        second = _match_clause(tokens, j)
        if second is None:
            if whole_text:
                raise _unrecognized(tokens, j, text)
        else:
            fmt2, found2, k = second
            for el in found2:
                if el.field in elements:
                    raise ParseError(
                        f"Formats {fmt.name} and {fmt2.name} cannot be used together", length
                    )
            elements.update({el.field: el for el in found2})
            formats.append(fmt2.name)
            length = tokens[k - 1].end
            rest = _skip_blanks(tokens, k)
            if whole_text and rest < len(tokens):
                raise _unrecognized(tokens, rest, text)

    _normalize_ampm(elements)
    return TimeMatch(elements, length, tuple(formats))
