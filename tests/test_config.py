import logging

import pytest

from founder_flow.config import DEFAULT_ALLOWED_ORIGINS, Settings, get_settings, settings_from_env
from founder_flow.logging_config import JSONFormatter, ReadableFormatter, configure_logging
from founder_flow.store import MemoryStore, SqlStore, build_store


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure cached settings do not leak between tests."""

    get_settings.cache_clear()


def test_defaults_select_memory_store(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FOUNDERFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("FOUNDERFLOW_ALLOWED_ORIGINS", raising=False)

    settings = get_settings()

    assert settings.database_url is None
    assert not settings.uses_database
    assert settings.allowed_origins == DEFAULT_ALLOWED_ORIGINS
    assert isinstance(build_store(settings), MemoryStore)


def test_database_url_selects_sql_store(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FOUNDERFLOW_DATABASE_URL", "sqlite+pysqlite:///:memory:")

    settings = get_settings()
    store = build_store(settings)

    assert settings.uses_database
    assert isinstance(store, SqlStore)
    store.close()


def test_settings_are_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FOUNDERFLOW_LOG_LEVEL", "debug")
    first = get_settings()
    monkeypatch.setenv("FOUNDERFLOW_LOG_LEVEL", "error")

    assert get_settings() is first
    assert first.log_level == "DEBUG"


def test_origins_are_split_and_trimmed() -> None:
    settings = settings_from_env({"FOUNDERFLOW_ALLOWED_ORIGINS": " https://app.example.com , ,http://localhost:8080"})

    assert settings.allowed_origins == ["https://app.example.com", "http://localhost:8080"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("true", True), ("YES", True), ("on", True), ("0", False), ("nope", False)],
)
def test_sql_echo_flag(raw: str, expected: bool) -> None:
    assert settings_from_env({"FOUNDERFLOW_SQL_ECHO": raw}).sql_echo is expected


def test_unknown_log_format_falls_back_to_readable() -> None:
    assert settings_from_env({"FOUNDERFLOW_LOG_FORMAT": "xml"}).log_format == "readable"
    assert settings_from_env({"FOUNDERFLOW_LOG_FORMAT": "JSON"}).log_format == "json"


def test_configure_logging_replaces_its_own_handler() -> None:
    logger = configure_logging(Settings(log_format="json", log_level="WARNING"))
    configure_logging(Settings(log_format="json", log_level="WARNING"))

    ours = [handler for handler in logger.handlers if getattr(handler, "_founder_flow", False)]
    assert len(ours) == 1
    assert isinstance(ours[0].formatter, JSONFormatter)
    assert logger.level == logging.WARNING

    configure_logging(Settings())
    ours = [handler for handler in logger.handlers if getattr(handler, "_founder_flow", False)]
    assert isinstance(ours[0].formatter, ReadableFormatter)


def test_json_formatter_includes_context_fields() -> None:
    record = logging.LogRecord("founder_flow.test", logging.INFO, __file__, 1, "moved %s", ("m1",), None)
    record.roadmap_id = 7

    line = JSONFormatter().format(record)

    assert '"message": "moved m1"' in line
    assert '"roadmap_id": 7' in line
    assert "session_id" not in line
