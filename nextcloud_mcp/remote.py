"""
Remote calendar store
=====================

Thin wrapper around :class:`caldav.DAVClient` for the three requests the
tools need: a ``calendar-query`` REPORT over a collection, and GET/PUT of a
single ``<uid>.ics`` resource.  Request bodies are built by
:mod:`nextcloud_mcp.query` and responses are handed back as raw text for
:mod:`nextcloud_mcp.ical` to decode.

No state is kept between calls: there is no cache and no ETag tracking,
so two concurrent updates of the same task can overwrite each other.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

from caldav.davclient import DAVClient
from caldav.lib import error

from .config import NextcloudConfig

log = logging.getLogger("nextcloud-mcp.remote")


def _check(response: Any, url: str, expected: tuple, exc_type: type) -> Any:
    if response.status not in expected:
        reason = getattr(response, "reason", "") or ""
        raise exc_type(url=url, reason=f"HTTP {response.status} {reason}".strip())
    return response


class NextcloudClient:
    """CalDAV access to one Nextcloud account."""

    def __init__(self, config: NextcloudConfig, dav: Optional[Any] = None) -> None:
        self.config = config
        self._dav = dav if dav is not None else DAVClient(
            url=config.url, username=config.username, password=config.password
        )

    def calendar_url(self, collection: str) -> str:
        """Absolute URL of a calendar or task list collection."""
        return (
            f"{self.config.url}/remote.php/dav/calendars/"
            f"{quote(self.config.username)}/{quote(collection)}/"
        )

    def object_url(self, collection: str, uid: str) -> str:
        return f"{self.calendar_url(collection)}{quote(uid)}.ics"

    def report(self, collection: str, query: str) -> str:
        """Run a REPORT against ``collection`` and return the multi-status body."""
        url = self.calendar_url(collection)
        log.debug("REPORT %s", url)
        response = self._dav.report(url, query, depth=1)
        return _check(response, url, (207, 200), error.ReportError).raw

    def get_object(self, collection: str, uid: str) -> str:
        """Fetch the iCalendar text stored under ``uid``."""
        url = self.object_url(collection, uid)
        log.debug("GET %s", url)
        response = self._dav.request(url, "GET")
        if response.status == 404:
            raise error.NotFoundError(url=url, reason=f"No object with UID {uid}")
        return _check(response, url, (200,), error.DAVError).raw

    def put_object(self, collection: str, uid: str, ics: str) -> None:
        """Create or overwrite the resource for ``uid``."""
        url = self.object_url(collection, uid)
        log.debug("PUT %s", url)
        response = self._dav.put(url, ics, {"Content-Type": "text/calendar; charset=utf-8"})
        _check(response, url, (200, 201, 204), error.PutError)
