"""Utility script to verify the configured Nextcloud account answers CalDAV queries."""

import sys

from dotenv import load_dotenv

from nextcloud_mcp.config import ConfigError, load_config
from nextcloud_mcp.ical import EventRecord, TaskRecord, decode
from nextcloud_mcp.query import build_event_query, build_task_query
from nextcloud_mcp.remote import NextcloudClient
from nextcloud_mcp.server import ENV_PATH


def main() -> int:
    load_dotenv(dotenv_path=ENV_PATH, override=False)
    try:
        config = load_config()
    except ConfigError as exc:
        print(f"CONFIG: {exc}")
        return 1

    client = NextcloudClient(config)
    checks = [
        ("tasks", config.tasks_calendar, build_task_query(), TaskRecord),
        ("events", config.events_calendar, build_event_query(), EventRecord),
    ]
    failed = False
    for label, collection, query, record_type in checks:
        url = client.calendar_url(collection)
        try:
            records = [r for r in decode(client.report(collection, query)) if isinstance(r, record_type)]
        except Exception as exc:  # pylint: disable=broad-except
            failed = True
            print(f"FAILED {label}: {url}: {exc}")
            continue
        print(f"PASSED {label}: {url} ({len(records)} found)")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
