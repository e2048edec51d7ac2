"""
In-place editing of stored calendar objects.

Updates splice individual property lines in the text fetched from the
server instead of decoding and re-encoding it: the records only model a
subset of iCalendar, and a round trip would silently drop alarms,
recurrence rules, categories and whatever else clients stored there.
Lines that are not targeted are returned byte for byte.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Tuple

from icalendar import vText
from icalendar.parser import Contentline

from .ical import format_ical_datetime, split_content_line

_COMPONENTS = ("VTODO", "VEVENT")


def _logical_lines(text: str) -> List[str]:
    """Group physical lines so that folded continuations stay with their property."""
    out: List[str] = []
    for physical in text.splitlines(keepends=True):
        if out and physical[:1] in (" ", "\t"):
            out[-1] += physical
        else:
            out.append(physical)
    return out


def _newline(lines: List[str]) -> str:
    for line in lines:
        if line.endswith("\r\n"):
            return "\r\n"
        if line.endswith("\n"):
            return "\n"
    return "\r\n"


def _component_span(lines: List[str]) -> Tuple[str, int, int]:
    """Locate the first task/event: its name, BEGIN index and END index."""
    depth = 0
    name: Optional[str] = None
    begin = -1
    for idx, line in enumerate(lines):
        parts = split_content_line(line.rstrip("\r\n"))
        if parts is None or parts[0] not in ("BEGIN", "END"):
            continue
        keyword, component = parts[0], parts[2].strip().upper()
        if name is None:
            if keyword == "BEGIN" and component in _COMPONENTS:
                name, begin, depth = component, idx, 0
            continue
        if keyword == "BEGIN":
            depth += 1
        elif depth:
            depth -= 1
        elif component == name:
            return name, begin, idx
    raise ValueError("No VTODO or VEVENT component found")


def _find_property(lines: List[str], begin: int, end: int, prop: str) -> Optional[int]:
    """Index of the first ``prop`` line directly inside the component."""
    depth = 0
    for idx in range(begin + 1, end):
        parts = split_content_line(lines[idx].rstrip("\r\n"))
        if parts is None:
            continue
        if parts[0] == "BEGIN":
            depth += 1
        elif parts[0] == "END":
            depth = max(0, depth - 1)
        elif depth == 0 and parts[0] == prop:
            return idx
    return None


def _prefix(line: str) -> str:
    """Name and parameters of a logical line, as written."""
    unfolded = Contentline.from_ical(line.rstrip("\r\n"))
    return unfolded[:unfolded.value_separator_index()]


def _fold(line: str, nl: str) -> str:
    return Contentline(line).to_ical().decode("utf-8").replace("\r\n", nl)


def apply_update(
    text: str,
    summary: Optional[str] = None,
    status: Optional[str] = None,
    percent_complete: Optional[int] = None,
    now: Optional[dt.datetime] = None,
) -> str:
    """
    Apply a partial update to the first VTODO/VEVENT in ``text``.

    * ``summary`` and ``status`` replace the value of the existing line,
      keeping its parameters; if the line is missing the field is left
      alone.  Replaced lines are refolded at 75 octets.
    * ``percent_complete`` replaces the existing line or is inserted right
      before the component's END line.
    * ``LAST-MODIFIED`` is always set to ``now`` (current UTC time by
      default), replacing or inserting as needed.
    """
    if percent_complete is not None and not 0 <= percent_complete <= 100:
        raise ValueError("Completion percentage must be between 0 and 100")
    lines = _logical_lines(text)
    nl = _newline(lines)
    _, begin, end = _component_span(lines)
    stamp = format_ical_datetime(now or dt.datetime.now(dt.timezone.utc))

    def _replace(prop: str, value: str) -> bool:
        idx = _find_property(lines, begin, end, prop)
        if idx is None:
            return False
        original = lines[idx]
        ending = original[len(original.rstrip("\r\n")):] or nl
        lines[idx] = _fold(f"{_prefix(original)}:{value}", nl) + ending
        return True

    if summary is not None:
        _replace("SUMMARY", vText(summary).to_ical().decode("utf-8"))
    if status is not None:
        _replace("STATUS", status)

    inserts: List[str] = []
    if not _replace("LAST-MODIFIED", stamp):
        inserts.append(f"LAST-MODIFIED:{stamp}{nl}")
    if percent_complete is not None and not _replace("PERCENT-COMPLETE", str(int(percent_complete))):
        inserts.append(f"PERCENT-COMPLETE:{int(percent_complete)}{nl}")

    # LAST-MODIFIED goes first so PERCENT-COMPLETE ends up next to END.
    lines[end:end] = inserts
    return "".join(lines)
