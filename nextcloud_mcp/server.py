"""
MCP Server for Nextcloud Tasks and Calendar
==========================================

This module implements a Model Context Protocol (MCP) server that exposes
a Nextcloud account's task list and calendar (both served over CalDAV) as
tools.  The server uses the `fastmcp` framework to handle the protocol
machinery.  Each function decorated with `@mcp.tool()` inside
:func:`create_server` becomes a callable tool and is automatically
registered with the MCP runtime.

**Prerequisites**

* `fastmcp` - simplifies building MCP servers and clients.
* `caldav` - CalDAV client used to talk to Nextcloud.
* `icalendar` - encodes the tasks and events that are written back.
* `python-dotenv` - loads environment variables from a `.env` file.

Generate an **app password** in Nextcloud (Settings > Security) and set
``NEXTCLOUD_URL``, ``NEXTCLOUD_USERNAME`` and ``NEXTCLOUD_PASSWORD``,
either in the environment or in a `.env` file in the project root (the
directory holding the ``nextcloud_mcp`` package).  Variables already set in
the environment take precedence over the file.

**Functionality**

* **Tasks:** list tasks filtered by status, create a task, update the
  summary, status or completion percentage of an existing task.
* **Calendar:** list events within a date range, create a new event.

All tools return their results as structured content (JSON objects)
under the ``structuredContent`` field of the MCP tool result.  The same
JSON is also serialized, pretty-printed, into a single text block in the
``content`` field.  Failures come back as error results whose text
carries the underlying message; they never stop the server.

Tool parameters use snake_case names (``task_id``, ``percent_complete``,
``start_date``, ``end_date``, ``start``, ``end``).  Other Nextcloud MCP
servers spell these ``taskId``, ``percentComplete``, ``startDate``,
``endDate``, ``startDateTime`` and ``endDateTime``; clients that hard-code
those names need updating.  Field names inside results stay camelCase
(``percentComplete``, ``lastModified``).
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Union

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent
from pydantic import Field
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from .config import ConfigError, NextcloudConfig, load_config
from .ical import EventRecord, TaskRecord, TaskStatus, decode, encode_event, encode_task, new_uid
from .mutator import apply_update
from .query import build_event_query, build_task_query
from .remote import NextcloudClient

LOG_FORMAT = "%(levelname)s %(message)s"

# Always load .env from the project root, regardless of the current
# working directory.
ENV_PATH = Path(__file__).resolve().parent.parent / ".env"

log = logging.getLogger("nextcloud-mcp")


# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def _tool_result(payload: Dict[str, Any]) -> ToolResult:
    """Create a ToolResult with one pretty-printed JSON block."""
    text = json.dumps(payload, indent=2, default=str)
    return ToolResult(content=[TextContent(type="text", text=text)], structured_content=payload)


@contextmanager
def _tool_errors(action: str) -> Iterator[None]:
    """
    Turn any failure raised while performing ``action`` into a ToolError so
    the runtime reports it as an error result instead of a crash.
    """
    try:
        yield
    except ToolError:
        raise
    except Exception as exc:
        log.error("Failed to %s: %s", action, exc)
        raise ToolError(f"Failed to {action}: {exc}") from exc


def _parse_iso(value: str) -> Union[dt.date, dt.datetime]:
    """
    Parse an ISO date (``YYYY-MM-DD``) into a date, or an ISO date/time
    (``YYYY-MM-DDTHH:MM:SS``, optionally with ``Z`` or an offset) into a
    datetime.
    """
    value = value.strip()
    if "T" not in value and " " not in value:
        return dt.date.fromisoformat(value)
    if value.endswith("Z"):
        return dt.datetime.fromisoformat(value[:-1]).replace(tzinfo=dt.timezone.utc)
    return dt.datetime.fromisoformat(value)


def _parse_iso_datetime(value: str) -> dt.datetime:
    parsed = _parse_iso(value)
    if isinstance(parsed, dt.datetime):
        return parsed
    return dt.datetime(parsed.year, parsed.month, parsed.day)


def _select_tasks(records: List[Any], status: str, limit: int) -> List[TaskRecord]:
    """Keep tasks matching ``status`` (all/open/completed), at most ``limit``."""
    tasks = [r for r in records if isinstance(r, TaskRecord)]
    if status == "completed":
        tasks = [t for t in tasks if t.status == "COMPLETED"]
    elif status == "open":
        tasks = [t for t in tasks if t.status != "COMPLETED"]
    return tasks[:max(limit, 0)]


# ---------------------------------------------------------------------------
#  MCP Server
# ---------------------------------------------------------------------------

def create_server(config: NextcloudConfig, remote: Optional[NextcloudClient] = None) -> FastMCP:
    """
    Build the FastMCP server for ``config``.  ``remote`` defaults to a
    :class:`NextcloudClient` for the same account; tests pass a fake.
    """
    remote = remote if remote is not None else NextcloudClient(config)

    mcp = FastMCP("nextcloud-mcp-server", instructions=(
        "This server exposes Nextcloud tasks and calendar events via the "
        "Model Context Protocol.  Dates are ISO 8601: YYYY-MM-DD for dates, "
        "YYYY-MM-DDTHH:MM:SS for date-times (UTC unless an offset is given)."
    ))

    @mcp.custom_route("/health", methods=["GET"])
    async def health(_: Request) -> PlainTextResponse:
        """Simple health check for infrastructure monitoring."""
        return PlainTextResponse("OK")

    # -----------------------------------------------------------------------
    #  Task Tools
    # -----------------------------------------------------------------------

    @mcp.tool()
    def get_tasks(
        status: Annotated[
            Literal["all", "open", "completed"],
            Field(description="Filter tasks by status"),
        ] = "all",
        limit: Annotated[int, Field(description="Maximum number of tasks to return")] = 50,
    ) -> ToolResult:
        """
        Retrieve tasks from Nextcloud.  Can filter by status (completed/open)
        and limit results.

        Each task carries ``uid``, ``summary``, ``status`` and, when set,
        ``description``, ``percentComplete``, ``due``, ``priority``,
        ``created`` and ``lastModified``.
        """
        with _tool_errors("fetch tasks"):
            body = remote.report(config.tasks_calendar, build_task_query())
            tasks = _select_tasks(decode(body), status, limit)
        return _tool_result({"tasks": [t.as_dict() for t in tasks]})

    @mcp.tool()
    def create_task(
        summary: Annotated[str, Field(description="Task title/summary")],
        description: Annotated[Optional[str], Field(description="Task description")] = None,
        due: Annotated[
            Optional[str],
            Field(description="Due date in ISO format (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)"),
        ] = None,
        priority: Annotated[
            Optional[int],
            Field(description="Priority (1-9, where 1 is highest)"),
        ] = None,
    ) -> ToolResult:
        """Create a new task in Nextcloud.  Returns the UID of the new task."""
        with _tool_errors("create task"):
            record = TaskRecord(
                uid=new_uid(),
                summary=summary,
                description=description,
                due=_parse_iso(due) if due else None,
                priority=priority,
            )
            remote.put_object(config.tasks_calendar, record.uid, encode_task(record))
        log.info("Created task %s", record.uid)
        return _tool_result({"uid": record.uid, "created": True})

    @mcp.tool()
    def update_task(
        task_id: Annotated[str, Field(description="Task ID/UID")],
        summary: Annotated[Optional[str], Field(description="New task title/summary")] = None,
        status: Annotated[Optional[TaskStatus], Field(description="New task status")] = None,
        percent_complete: Annotated[
            Optional[int],
            Field(description="Completion percentage 0-100"),
        ] = None,
    ) -> ToolResult:
        """
        Update an existing task (mark as complete, change summary, etc.).

        Only the fields provided are changed; every other property of the
        stored task is kept as it is.  The update is not guarded against a
        concurrent change of the same task.
        """
        with _tool_errors("update task"):
            current = remote.get_object(config.tasks_calendar, task_id)
            updated = apply_update(
                current, summary=summary, status=status, percent_complete=percent_complete
            )
            remote.put_object(config.tasks_calendar, task_id, updated)
        log.info("Updated task %s", task_id)
        return _tool_result({"uid": task_id, "updated": True})

    # -----------------------------------------------------------------------
    #  Calendar Tools
    # -----------------------------------------------------------------------

    @mcp.tool()
    def get_calendar_events(
        start_date: Annotated[
            Optional[str],
            Field(description="Start date in ISO format (YYYY-MM-DD). Defaults to today."),
        ] = None,
        end_date: Annotated[
            Optional[str],
            Field(description="End date in ISO format (YYYY-MM-DD). Defaults to 30 days from start."),
        ] = None,
        limit: Annotated[int, Field(description="Maximum number of events to return")] = 50,
    ) -> ToolResult:
        """
        Retrieve calendar events from Nextcloud within a date range.

        Each event carries ``uid``, ``summary``, ``start``, ``end`` and,
        when set, ``description``, ``location`` and ``created``.
        """
        with _tool_errors("fetch calendar events"):
            query = build_event_query(
                _parse_iso(start_date) if start_date else None,
                _parse_iso(end_date) if end_date else None,
            )
            body = remote.report(config.events_calendar, query)
            events = [r for r in decode(body) if isinstance(r, EventRecord)]
        return _tool_result({"events": [e.as_dict() for e in events[:max(limit, 0)]]})

    @mcp.tool()
    def create_calendar_event(
        summary: Annotated[str, Field(description="Event title/summary")],
        start: Annotated[str, Field(description="Start date/time in ISO format (YYYY-MM-DDTHH:MM:SS)")],
        end: Annotated[str, Field(description="End date/time in ISO format (YYYY-MM-DDTHH:MM:SS)")],
        description: Annotated[Optional[str], Field(description="Event description")] = None,
        location: Annotated[Optional[str], Field(description="Event location")] = None,
    ) -> ToolResult:
        """Create a new calendar event in Nextcloud.  Returns the UID of the new event."""
        with _tool_errors("create calendar event"):
            record = EventRecord(
                uid=new_uid(),
                summary=summary,
                description=description,
                location=location,
                start=_parse_iso_datetime(start),
                end=_parse_iso_datetime(end),
            )
            remote.put_object(config.events_calendar, record.uid, encode_event(record))
        log.info("Created calendar event %s", record.uid)
        return _tool_result({"uid": record.uid, "created": True})

    return mcp


# ---------------------------------------------------------------------------
#  Server entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Read configuration, then serve until the host closes the channel."""
    load_dotenv(dotenv_path=ENV_PATH, override=False)
    try:
        config = load_config()
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        log.error("%s", exc)
        sys.exit(1)

    # Logging goes to stderr; with the stdio transport stdout is the protocol channel.
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    mcp = create_server(config)
    if config.transport == "http":
        log.info(
            "Starting MCP HTTP server on %s:%d (Nextcloud=%s)",
            config.host, config.port, config.url,
        )
        mcp.run(transport="http", host=config.host, port=config.port, path="/mcp")
    else:
        log.info("Nextcloud MCP server running on stdio (Nextcloud=%s)", config.url)
        mcp.run(transport="stdio")


if __name__ == '__main__':
    main()
