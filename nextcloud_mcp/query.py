"""
CalDAV REPORT bodies
====================

``calendar-query`` requests asking for the ETag and full calendar data of
every matching component.  Task queries are never narrowed on the server:
task lists are small and status filtering happens client side.  Event
queries carry a ``time-range`` filter.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional, Tuple, Union

from caldav.elements import cdav, dav
from lxml import etree

DEFAULT_EVENT_WINDOW_DAYS = 30

Bound = Union[dt.date, dt.datetime]


def _serialize(root) -> str:
    return etree.tostring(
        root.xmlelement(), encoding="utf-8", xml_declaration=True, pretty_print=True
    ).decode("utf-8")


def _calendar_query(component_filter) -> str:
    query = cdav.CalendarQuery() + [
        dav.Prop() + [dav.GetEtag(), cdav.CalendarData()],
        cdav.Filter() + (cdav.CompFilter("VCALENDAR") + component_filter),
    ]
    return _serialize(query)


def _to_utc_datetime(value: Bound) -> dt.datetime:
    """Dates widen to midnight UTC; naive date-times are taken as UTC."""
    if not isinstance(value, dt.datetime):
        return dt.datetime(value.year, value.month, value.day, tzinfo=dt.timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def event_window(
    start: Optional[Bound] = None,
    end: Optional[Bound] = None,
    today: Optional[dt.date] = None,
) -> Tuple[dt.datetime, dt.datetime]:
    """
    Resolve the time range of an event query.  A missing start means
    today; a missing end means thirty days after the start.  An end
    before the start is passed through unchanged.
    """
    if start is None:
        start = today or dt.datetime.now(dt.timezone.utc).date()
    start_dt = _to_utc_datetime(start)
    if end is None:
        end_dt = start_dt + dt.timedelta(days=DEFAULT_EVENT_WINDOW_DAYS)
    else:
        end_dt = _to_utc_datetime(end)
    return start_dt, end_dt


def build_task_query() -> str:
    """Request every VTODO of a collection."""
    return _calendar_query(cdav.CompFilter("VTODO"))


def build_event_query(
    start: Optional[Bound] = None,
    end: Optional[Bound] = None,
    today: Optional[dt.date] = None,
) -> str:
    """Request the VEVENTs overlapping ``[start, end]``."""
    start_dt, end_dt = event_window(start, end, today=today)
    return _calendar_query(
        cdav.CompFilter("VEVENT") + cdav.TimeRange(start=start_dt, end=end_dt)
    )
