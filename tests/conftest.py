from typing import Callable
from xml.sax.saxutils import escape

import pytest

from nextcloud_mcp.config import NextcloudConfig


def _vcalendar(component: str, *props: str) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Sabre//Sabre VObject 4.5.4//EN",
        f"BEGIN:{component}",
        *props,
        f"END:{component}",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"


def _multistatus(*calendars: str, prefix: str = "cal") -> str:
    responses = []
    for idx, data in enumerate(calendars):
        responses.append(
            "<d:response>"
            f"<d:href>/remote.php/dav/calendars/alice/tasks/{idx}.ics</d:href>"
            "<d:propstat><d:prop>"
            f"<d:getetag>&quot;etag-{idx}&quot;</d:getetag>"
            f"<{prefix}:calendar-data>{escape(data)}</{prefix}:calendar-data>"
            "</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>"
            "</d:response>"
        )
    return (
        '<?xml version="1.0"?>\n'
        f'<d:multistatus xmlns:d="DAV:" xmlns:{prefix}="urn:ietf:params:xml:ns:caldav">'
        + "".join(responses)
        + "</d:multistatus>"
    )


@pytest.fixture()
def vcalendar() -> Callable[..., str]:
    return _vcalendar


@pytest.fixture()
def multistatus() -> Callable[..., str]:
    return _multistatus


@pytest.fixture()
def config() -> NextcloudConfig:
    return NextcloudConfig(
        url="https://cloud.example.com",
        username="alice",
        password="app-password",
    )
