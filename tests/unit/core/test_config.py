"""Unit tests for settings."""

from app.core.config import DatabaseSettings, LLMSettings, ProcessingSettings, TemporalSettings


class TestDatabaseSettings:
    def test_plain_postgres_url_gets_asyncpg_driver(self):
        settings = DatabaseSettings().model_copy(update={"url": "postgres://fleet:secret@db:5432/invoices"})
        assert settings.connection_url == "postgresql+asyncpg://fleet:secret@db:5432/invoices"

    def test_sslmode_becomes_ssl(self):
        settings = DatabaseSettings().model_copy(
            update={"url": "postgresql://fleet:secret@db/invoices?sslmode=require&schema=public"}
        )
        assert settings.connection_url == "postgresql+asyncpg://fleet:secret@db/invoices?ssl=require"

    def test_asyncpg_url_is_unchanged(self):
        url = "postgresql+asyncpg://fleet:secret@db/invoices"
        assert DatabaseSettings().model_copy(update={"url": url}).connection_url == url


class TestEnvironment:
    def test_values_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("INSIGHTS_BATCH_SIZE", "25")
        monkeypatch.setenv("PARSE_CONFIDENCE_THRESHOLD", "0.75")

        assert ProcessingSettings().batch_size == 25
        assert LLMSettings().confidence_threshold == 0.75

    def test_timeout_in_seconds(self):
        settings = LLMSettings().model_copy(update={"timeout_ms": 90_000})
        assert settings.timeout_seconds == 90.0

    def test_temporal_target(self):
        settings = TemporalSettings().model_copy(update={"host": "temporal", "port": 7233})
        assert settings.target_host == "temporal:7233"
