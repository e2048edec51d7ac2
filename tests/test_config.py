import pytest

from nextcloud_mcp import server
from nextcloud_mcp.config import REQUIRED_ENV_VARS, ConfigError, NextcloudConfig, load_config

BASE_ENV = {
    "NEXTCLOUD_URL": "https://cloud.example.com/",
    "NEXTCLOUD_USERNAME": "alice",
    "NEXTCLOUD_PASSWORD": "app-password",
}


def test_load_config_applies_defaults() -> None:
    config = load_config(BASE_ENV)

    assert config == NextcloudConfig(
        url="https://cloud.example.com",
        username="alice",
        password="app-password",
    )
    assert config.tasks_calendar == "tasks"
    assert config.events_calendar == "personal"
    assert config.transport == "stdio"


def test_load_config_reads_overrides() -> None:
    config = load_config(
        {
            **BASE_ENV,
            "NEXTCLOUD_TASKS_CALENDAR": "todo",
            "NEXTCLOUD_EVENTS_CALENDAR": "work",
            "MCP_TRANSPORT": "HTTP",
            "HOST": "0.0.0.0",
            "PORT": "9001",
            "LOG_LEVEL": "debug",
        }
    )

    assert config.tasks_calendar == "todo"
    assert config.events_calendar == "work"
    assert config.transport == "http"
    assert config.host == "0.0.0.0"
    assert config.port == 9001
    assert config.log_level == "DEBUG"


def test_missing_variables_are_listed_together() -> None:
    env = {"NEXTCLOUD_URL": "https://cloud.example.com", "NEXTCLOUD_PASSWORD": "  "}
    with pytest.raises(ConfigError) as excinfo:
        load_config(env)

    message = str(excinfo.value)
    assert "NEXTCLOUD_USERNAME" in message
    assert "NEXTCLOUD_PASSWORD" in message
    assert "NEXTCLOUD_URL" not in message


@pytest.mark.parametrize(
    "override, needle",
    [
        ({"MCP_TRANSPORT": "sse"}, "MCP_TRANSPORT"),
        ({"PORT": "eighty"}, "PORT"),
        ({"LOG_LEVEL": "chatty"}, "LOG_LEVEL"),
    ],
)
def test_invalid_optional_values_are_rejected(override, needle) -> None:
    with pytest.raises(ConfigError, match=needle):
        load_config({**BASE_ENV, **override})


def test_load_config_defaults_to_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name, value in BASE_ENV.items():
        monkeypatch.setenv(name, value)
    for name in ("MCP_TRANSPORT", "PORT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    assert load_config().username == "alice"


def test_config_is_immutable() -> None:
    config = load_config(BASE_ENV)
    with pytest.raises(AttributeError):
        config.url = "https://elsewhere.example.com"  # type: ignore[misc]


class FakeServer:
    def __init__(self) -> None:
        self.runs = []

    def run(self, **kwargs) -> None:
        self.runs.append(kwargs)


def test_main_exits_when_credentials_are_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in REQUIRED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(server, "load_dotenv", lambda *args, **kwargs: False)
    built = []
    monkeypatch.setattr(server, "create_server", lambda *args, **kwargs: built.append(args))

    with pytest.raises(SystemExit) as excinfo:
        server.main()

    assert excinfo.value.code == 1
    assert not built


@pytest.mark.parametrize(
    "transport, expected",
    [
        ("stdio", {"transport": "stdio"}),
        ("http", {"transport": "http", "host": "127.0.0.1", "port": 8123, "path": "/mcp"}),
    ],
)
def test_main_serves_selected_transport(monkeypatch: pytest.MonkeyPatch, transport, expected) -> None:
    for name, value in {**BASE_ENV, "MCP_TRANSPORT": transport, "PORT": "8123"}.items():
        monkeypatch.setenv(name, value)
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setattr(server, "load_dotenv", lambda *args, **kwargs: False)
    fake = FakeServer()
    configs = []

    def _create_server(config):
        configs.append(config)
        return fake

    monkeypatch.setattr(server, "create_server", _create_server)

    server.main()

    assert [c.username for c in configs] == ["alice"]
    assert fake.runs == [expected]
