"""
iCalendar codec
===============

Translation between the task/event records handled by the MCP tools and
the iCalendar text stored on the CalDAV server.

Encoding goes through the `icalendar` package, which takes care of
escaping, value typing and line folding.  Decoding deliberately does not
build a full component tree: the server's output is line-oriented, only a
handful of single-valued properties are of interest, and one malformed
resource must never spoil a whole listing.  Each embedded calendar is
therefore unfolded and scanned line by line against the property table
below; anything not listed there is ignored.
"""

from __future__ import annotations

import datetime as dt
import re
import uuid
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from icalendar import Calendar, Event, Todo, vDate, vDatetime
from icalendar.parser import Contentline, Parameters, unescape_backslash
from lxml import etree

PRODID = "-//Nextcloud MCP Server//EN"
CALDAV_NS = "urn:ietf:params:xml:ns:caldav"

TaskStatus = Literal["NEEDS-ACTION", "IN-PROCESS", "COMPLETED", "CANCELLED"]

DateValue = Union[dt.date, dt.datetime]


# ---------------------------------------------------------------------------
#  Records
# ---------------------------------------------------------------------------

def _normalize_date(value: DateValue) -> str:
    """Render a decoded value the way tool results present it."""
    if isinstance(value, dt.datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    return value.isoformat()


class _Record:
    # Attribute name -> JSON key in tool results.
    _json_keys: Dict[str, str] = {}

    def as_dict(self) -> Dict[str, Any]:
        """JSON-ready mapping with absent fields left out."""
        out: Dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, dt.date):
                value = _normalize_date(value)
            out[self._json_keys.get(f.name, f.name)] = value
        return out


@dataclass
class TaskRecord(_Record):
    """A VTODO as seen by the task tools."""

    uid: str
    summary: Optional[str] = None
    description: Optional[str] = None
    status: str = "NEEDS-ACTION"
    percent_complete: Optional[int] = None
    due: Optional[DateValue] = None
    priority: Optional[int] = None
    created: Optional[dt.datetime] = None
    last_modified: Optional[dt.datetime] = None

    _json_keys = {"percent_complete": "percentComplete", "last_modified": "lastModified"}


@dataclass
class EventRecord(_Record):
    """A VEVENT as seen by the calendar tools."""

    uid: str
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: Optional[DateValue] = None
    end: Optional[DateValue] = None
    created: Optional[dt.datetime] = None


Record = Union[TaskRecord, EventRecord]


# ---------------------------------------------------------------------------
#  Date helpers
# ---------------------------------------------------------------------------

_DATE_TOKEN = re.compile(r"^\d{8}(T\d{6}Z?)?$")


def _as_utc(value: dt.datetime) -> dt.datetime:
    """Naive values are taken to be UTC already; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def format_ical_datetime(value: dt.datetime) -> str:
    """``YYYYMMDDTHHMMSSZ``, always in UTC."""
    return _as_utc(value).strftime("%Y%m%dT%H%M%SZ")


def parse_ical_date(token: str) -> Optional[DateValue]:
    """
    Parse ``YYYYMMDD`` into a ``date`` and ``YYYYMMDDTHHMMSS[Z]`` into a
    ``datetime`` (UTC-aware when suffixed with ``Z``, naive otherwise).
    Returns None for anything else rather than raising.
    """
    token = token.strip()
    if not _DATE_TOKEN.match(token):
        return None
    try:
        if "T" in token:
            return vDatetime.from_ical(token)
        return vDate.from_ical(token)
    except ValueError:
        return None


def new_uid() -> str:
    """Globally unique identifier, also used as the resource file name."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
#  Encoding
# ---------------------------------------------------------------------------

def _ical_value(value: DateValue) -> DateValue:
    # datetime is a subclass of date, so test it first.
    if isinstance(value, dt.datetime):
        return _as_utc(value)
    return value


def _envelope(component: Any) -> str:
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add_component(component)
    return cal.to_ical().decode("utf-8")


def encode_task(record: TaskRecord, now: Optional[dt.datetime] = None) -> str:
    """
    Serialize ``record`` as a VCALENDAR holding a single VTODO.

    ``CREATED`` is stamped with ``now`` (the current time by default).
    Optional properties are written only when the record carries a value.
    """
    if record.priority is not None and not 1 <= record.priority <= 9:
        raise ValueError("Priority must be between 1 and 9")
    if record.percent_complete is not None and not 0 <= record.percent_complete <= 100:
        raise ValueError("Completion percentage must be between 0 and 100")
    created = _as_utc(now or dt.datetime.now(dt.timezone.utc))
    todo = Todo()
    todo.add("uid", record.uid)
    todo.add("summary", record.summary or "")
    todo.add("status", record.status or "NEEDS-ACTION")
    todo.add("created", created)
    if record.description:
        todo.add("description", record.description)
    if record.due is not None:
        todo.add("due", _ical_value(record.due))
    if record.priority is not None:
        todo.add("priority", int(record.priority))
    if record.percent_complete is not None:
        todo.add("percent-complete", int(record.percent_complete))
    return _envelope(todo)


def encode_event(record: EventRecord, now: Optional[dt.datetime] = None) -> str:
    """
    Serialize ``record`` as a VCALENDAR holding a single VEVENT.

    Start and end are mandatory and always written as UTC date-times, even
    when given as plain dates.
    """
    if record.start is None or record.end is None:
        raise ValueError("Event start and end are required")
    start = _as_datetime(record.start)
    end = _as_datetime(record.end)
    if end < start:
        raise ValueError("Event end must not be before its start")
    created = _as_utc(now or dt.datetime.now(dt.timezone.utc))
    event = Event()
    event.add("uid", record.uid)
    event.add("summary", record.summary or "")
    event.add("dtstart", start)
    event.add("dtend", end)
    event.add("created", created)
    if record.description:
        event.add("description", record.description)
    if record.location:
        event.add("location", record.location)
    return _envelope(event)


def _as_datetime(value: DateValue) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return _as_utc(value)
    return dt.datetime(value.year, value.month, value.day, tzinfo=dt.timezone.utc)


# ---------------------------------------------------------------------------
#  Decoding
# ---------------------------------------------------------------------------

# Recognized properties: iCalendar name -> (record attribute, value kind).
# Matching is on the property name only; parameters such as TZID or
# VALUE=DATE between the name and the colon are accepted and ignored.
PROPERTIES: Dict[str, Tuple[str, str]] = {
    "UID": ("uid", "text"),
    "SUMMARY": ("summary", "text"),
    "DESCRIPTION": ("description", "text"),
    "LOCATION": ("location", "text"),
    "STATUS": ("status", "text"),
    "PERCENT-COMPLETE": ("percent_complete", "integer"),
    "PRIORITY": ("priority", "integer"),
    "DUE": ("due", "date"),
    "DTSTART": ("start", "date"),
    "DTEND": ("end", "date"),
    "CREATED": ("created", "date"),
    "LAST-MODIFIED": ("last_modified", "date"),
}

_RECORD_TYPES = {"VTODO": TaskRecord, "VEVENT": EventRecord}

_FOLD = re.compile(r"\r?\n[ \t]")


def split_content_line(line: str) -> Optional[Tuple[str, Parameters, str]]:
    """
    Split a (possibly folded) ``NAME[;PARAM=...]:VALUE`` line into the
    upper-cased name, its parameters and the value exactly as written,
    backslash escapes included.  Returns None for anything that is not a
    valid content line.
    """
    try:
        name, params, value = Contentline.from_ical(line).raw_parts()
    except ValueError:
        return None
    return name.upper(), params, value


def _convert(kind: str, raw: str) -> Any:
    if kind == "text":
        return unescape_backslash(raw).strip()
    if kind == "integer":
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return parse_ical_date(raw)


def decode_component(text: str) -> Optional[Record]:
    """
    Decode the first VTODO or VEVENT of one calendar object.

    Properties inside nested components (alarms) or time zone definitions
    are not attributed to the record.  Returns None when no such component
    exists or it carries no UID.
    """
    stack: List[str] = []
    kind: Optional[str] = None
    values: Dict[str, Any] = {}

    for line in _FOLD.sub("", text).splitlines():
        parts = split_content_line(line)
        if parts is None:
            continue
        name, _, raw = parts
        if name == "BEGIN":
            component = raw.strip().upper()
            stack.append(component)
            if kind is None and component in _RECORD_TYPES:
                kind = component
            continue
        if name == "END":
            component = raw.strip().upper()
            if stack and stack[-1] == component:
                stack.pop()
                if component == kind:
                    break
            continue
        if kind is None or not stack or stack[-1] != kind:
            continue
        spec = PROPERTIES.get(name)
        if spec is None:
            continue
        attr, value_kind = spec
        if attr in values:
            continue
        value = _convert(value_kind, raw)
        if value is not None:
            values[attr] = value

    if kind is None or not values.get("uid"):
        return None
    record_type = _RECORD_TYPES[kind]
    accepted = {f.name for f in fields(record_type)}
    return record_type(**{k: v for k, v in values.items() if k in accepted})


def calendar_blocks(text: str) -> List[str]:
    """
    Split a server response into independent calendar objects.

    A CalDAV multi-status body yields the text of every ``calendar-data``
    element, whatever namespace prefix the server chose.  Anything that
    does not look like XML is taken to be a single raw iCalendar object.
    """
    stripped = text.strip()
    if not stripped:
        return []
    if not stripped.startswith("<"):
        return [stripped]
    parser = etree.XMLParser(recover=True, resolve_entities=False, huge_tree=True)
    try:
        root = etree.fromstring(stripped.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError:
        return []
    if root is None:
        return []
    return [node.text or "" for node in root.iter(f"{{{CALDAV_NS}}}calendar-data")]


def decode(text: str) -> List[Record]:
    """Decode every well-formed task or event found in ``text``."""
    records: List[Record] = []
    for block in calendar_blocks(text):
        record = decode_component(block)
        if record is not None:
            records.append(record)
    return records
