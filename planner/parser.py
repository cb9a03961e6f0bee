"""
Dagschema roster parser.

A Dagschema is the daily roster as typed by the planner, for example::

    Dagschema Maandag 15-01-2024

    Hoofdstraat 123 Amsterdam 08:00-16:00:
    - Jan de Vries
    - Piet Janssen [assist]

    09:00-12:00 [materials] Main St
    John, Jane (assist)

    Afwezig:
    Peter van der Laan - ziek

Parsing runs in two passes. ``classify_line`` turns every physical line into
one of ``Blank | TitleLine | LocationLine | AbsenceHeader | NameLine``; the
builder then walks those lines with a three-state machine (outside, inside a
location block, inside the absence block) and produces a ``ParsedSchedule``.
Any line that does not fit raises ``FormatError`` with its line number; a
partially parsed roster is never returned.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple, Union

from .constants import (
    ABSENCE_HEADERS,
    CATEGORY_KEYWORDS,
    CATEGORY_MARKERS,
    DEFAULT_CATEGORY,
    TITLE_KEYWORD,
    WEEKDAYS,
)
from .directory import normalize_name
from .errors import FormatError
from .logger import get_logger
from .models import AbsenceDraft, ParsedSchedule, ScheduleItemDraft, WorkerRef

logger = get_logger(__name__)

_TIME_RANGE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})\s*[-–]\s*(\d{1,2}):(\d{2})(?!\d)")
_MARKER = re.compile(r"\[([^\]]*)\]")
_ANNOTATION = re.compile(r"[\[(]([^\])]*)[\])]")
_BULLET = re.compile(r"^[-*•]\s*")
_TRAILING_ASSIST = re.compile(r"\s+(assist|assistent)\.?$", re.IGNORECASE)
_ABSENCE_HEADER = re.compile(
    r"^(?:%s)\b\s*:?\s*(.*)$" % "|".join(sorted(ABSENCE_HEADERS, key=len, reverse=True)),
    re.IGNORECASE,
)
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_DMY_DATE = re.compile(r"\b(\d{1,2})[-./](\d{1,2})[-./](\d{4})\b")
_DASH_REASON = re.compile(r"\s[-–]\s")


@dataclass(frozen=True)
class Blank:
    line_number: int


@dataclass(frozen=True)
class TitleLine:
    line_number: int
    text: str


@dataclass(frozen=True)
class LocationLine:
    line_number: int
    address: str
    category: str
    start_time: str
    end_time: str
    text: str = ""


@dataclass(frozen=True)
class AbsenceHeader:
    line_number: int
    inline: Optional[str] = None


@dataclass(frozen=True)
class NameLine:
    line_number: int
    text: str


RosterLine = Union[Blank, TitleLine, LocationLine, AbsenceHeader, NameLine]


def _parse_clock(hours_raw: str, minutes_raw: str, line_number: int, raw: str) -> Tuple[str, int]:
    hours = int(hours_raw)
    minutes = int(minutes_raw)
    if hours > 23 or minutes > 59:
        raise FormatError(f"Invalid time {hours_raw}:{minutes_raw}", line_number, raw)
    return f"{hours:02d}:{minutes:02d}", hours * 60 + minutes


def _detect_category(address: str) -> str:
    lowered = address.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def _parse_location_header(line_number: int, raw: str, match: "re.Match[str]") -> LocationLine:
    text = raw.strip()
    start_time, start_minutes = _parse_clock(match.group(1), match.group(2), line_number, raw)
    end_time, end_minutes = _parse_clock(match.group(3), match.group(4), line_number, raw)
    if start_minutes >= end_minutes:
        raise FormatError(
            f"Start time {start_time} must be before end time {end_time}", line_number, raw
        )

    rest = f"{text[:match.start()]} {text[match.end():]}"
    category: Optional[str] = None
    for marker in _MARKER.findall(rest):
        key = marker.strip().lower()
        if key not in CATEGORY_MARKERS:
            raise FormatError(f"Unknown category marker [{marker}]", line_number, raw)
        resolved = CATEGORY_MARKERS[key]
        if category is not None and category != resolved:
            raise FormatError("Conflicting category markers", line_number, raw)
        category = resolved
    rest = _MARKER.sub(" ", rest)

    address = " ".join(rest.split()).strip(" :,-")
    if not address:
        raise FormatError("Location header has no address", line_number, raw)
    return LocationLine(
        line_number=line_number,
        address=address,
        category=category or _detect_category(address),
        start_time=start_time,
        end_time=end_time,
        text=text,
    )


def classify_line(line_number: int, raw: str) -> RosterLine:
    text = raw.strip()
    if not text:
        return Blank(line_number)
    match = _TIME_RANGE.search(text)
    if match:
        return _parse_location_header(line_number, raw, match)
    if TITLE_KEYWORD in text.lower():
        return TitleLine(line_number, text)
    header = _ABSENCE_HEADER.match(text)
    if header:
        return AbsenceHeader(line_number, header.group(1).strip() or None)
    return NameLine(line_number, text)


def _split_names(text: str) -> List[str]:
    chunks: List[str] = []
    depth = 0
    current = ""
    for ch in text:
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth = max(0, depth - 1)
        if ch == "," and depth == 0:
            chunks.append(current)
            current = ""
            continue
        current += ch
    chunks.append(current)
    return chunks


def _parse_worker(chunk: str) -> Optional[WorkerRef]:
    text = _BULLET.sub("", chunk.strip())
    is_assistant = any("assist" in note.lower() for note in _ANNOTATION.findall(text))
    text = _ANNOTATION.sub(" ", text)
    trailing = _TRAILING_ASSIST.search(text)
    if trailing:
        is_assistant = True
        text = text[: trailing.start()]
    name = " ".join(text.split()).strip(" .;:")
    if not name:
        return None
    return WorkerRef(name=name, isAssistant=is_assistant)


def parse_worker_line(line: NameLine) -> List[WorkerRef]:
    workers = [
        worker
        for worker in (_parse_worker(chunk) for chunk in _split_names(_BULLET.sub("", line.text)))
        if worker is not None
    ]
    if not workers:
        raise FormatError("Expected one or more worker names", line.line_number, line.text)
    return workers


def parse_absence_entry(text: str, line_number: int) -> AbsenceDraft:
    entry = _BULLET.sub("", text.strip())
    reason: Optional[str] = None
    if entry.endswith(")") and "(" in entry:
        head, _, tail = entry.rpartition("(")
        entry, reason = head, tail[:-1]
    else:
        dash = _DASH_REASON.search(entry)
        if dash:
            entry, reason = entry[: dash.start()], entry[dash.end():]
        elif ":" in entry:
            entry, _, reason = entry.partition(":")
    name = " ".join(entry.split()).strip(" .;:-")
    if not name:
        raise FormatError("Absence entry has no worker name", line_number, text)
    reason = " ".join(reason.split()) if reason else None
    return AbsenceDraft(workerName=name, reason=reason or None)


def _next_weekday(today: date, weekday: int) -> date:
    # Days are counted within the week starting next Monday.
    next_monday = today + timedelta(days=7 - today.weekday())
    return next_monday + timedelta(days=weekday)


def _date_from_title(line: TitleLine, today: date) -> Optional[date]:
    iso = _ISO_DATE.search(line.text)
    dmy = _DMY_DATE.search(line.text)
    try:
        if iso:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        if dmy:
            return date(int(dmy.group(3)), int(dmy.group(2)), int(dmy.group(1)))
    except ValueError as exc:
        raise FormatError("Invalid date in title", line.line_number, line.text) from exc
    for token in re.findall(r"[a-z]+", line.text.lower()):
        if token in WEEKDAYS:
            return _next_weekday(today, WEEKDAYS[token])
    return None


class _ScheduleBuilder:
    def __init__(self) -> None:
        self.items: List[ScheduleItemDraft] = []
        self.absences: Dict[str, AbsenceDraft] = {}
        self.title_date: Optional[date] = None
        self.state = "outside"
        self.header: Optional[LocationLine] = None
        self.workers: Dict[str, WorkerRef] = {}
        self.item_lines: Dict[Tuple[str, str], int] = {}

    def close_block(self) -> None:
        if self.header is not None:
            self.items.append(
                ScheduleItemDraft(
                    address=self.header.address,
                    category=self.header.category,
                    startTime=self.header.start_time,
                    endTime=self.header.end_time,
                    workers=tuple(self.workers.values()),
                )
            )
        self.header = None
        self.workers = {}
        self.state = "outside"

    def add_absence(self, text: str, line_number: int) -> None:
        absence = parse_absence_entry(text, line_number)
        self.absences.setdefault(normalize_name(absence.workerName), absence)

    def feed(self, line: RosterLine, today: date) -> None:
        if isinstance(line, Blank):
            self.close_block()
        elif isinstance(line, TitleLine):
            self.close_block()
            if self.title_date is None:
                self.title_date = _date_from_title(line, today)
        elif isinstance(line, LocationLine):
            self.close_block()
            key = (normalize_name(line.address), line.category)
            if key in self.item_lines:
                first = self.item_lines[key]
                raise FormatError(
                    f"{line.address} [{line.category}] is already listed on line {first}",
                    line.line_number,
                    line.text,
                )
            self.item_lines[key] = line.line_number
            self.header = line
            self.state = "location"
        elif isinstance(line, AbsenceHeader):
            self.close_block()
            self.state = "absences"
            if line.inline:
                self.add_absence(line.inline, line.line_number)
        elif self.state == "location":
            for worker in parse_worker_line(line):
                self.workers.setdefault(normalize_name(worker.name), worker)
        elif self.state == "absences":
            self.add_absence(line.text, line.line_number)
        else:
            raise FormatError(
                "Expected a location header (HH:MM-HH:MM address) or absence header",
                line.line_number,
                line.text,
            )


def parse_roster(
    text: str,
    work_date: Optional[date] = None,
    today: Optional[date] = None,
) -> ParsedSchedule:
    """Parse Dagschema text into a ``ParsedSchedule``.

    The work date is ``work_date`` when given, else the date or weekday named
    on a ``Dagschema`` title line, else next Monday relative to ``today``.
    """
    today = today or date.today()
    builder = _ScheduleBuilder()
    for line_number, raw in enumerate((text or "").splitlines(), start=1):
        builder.feed(classify_line(line_number, raw), today)
    builder.close_block()

    if not builder.items and not builder.absences:
        raise FormatError("No schedule items or absences found")

    resolved_date = work_date or builder.title_date or _next_weekday(today, 0)
    parsed = ParsedSchedule(
        workDate=resolved_date,
        items=tuple(builder.items),
        absences=tuple(builder.absences.values()),
    )
    logger.info(
        "Parsed roster for %s: %d items, %d absences",
        parsed.workDate.isoformat(),
        len(parsed.items),
        len(parsed.absences),
    )
    return parsed
