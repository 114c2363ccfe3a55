"""Tests for Application."""

import asyncio
import json

import pytest

from agent_sync.app import Application
from agent_sync.config import Settings, is_postgres_url, parse_signal, resolve_db_path
from agent_sync.models import AgentConfigRow, DeliveryState
from agent_sync.storage import PostgresStorage, Storage
from agent_sync.sync import NoopReloader, ProcessSignalReloader, ReconcilerState

from conftest import wait_for


class TestApplicationStart:
    """Tests for Application.start()."""

    async def test_start_initializes_components(self, settings):
        """Test that start wires every component."""
        app = Application(settings)
        await app.start()
        try:
            assert isinstance(app.storage, Storage)
            assert app.messages is not None
            assert app.delivery is not None
            assert app.jobs is not None
            assert app.config_sync.target_path == settings.output_path
            assert app.reconcilers == [app.config_reconciler]
        finally:
            await app.stop()

    async def test_start_publishes_initial_document(self, settings):
        """Test the startup rebuild writes the output file."""
        app = Application(settings)
        await app.start()
        try:
            await wait_for(lambda: settings.output_path.exists())
        finally:
            await app.stop()

    async def test_properties_before_start(self, settings):
        """Test accessing components before start raises."""
        app = Application(settings)
        with pytest.raises(RuntimeError, match="not started"):
            app.storage

    async def test_stop_shuts_down_reconcilers(self, settings):
        """Test stop leaves every reconciler in shutdown."""
        app = Application(settings)
        await app.start()
        await app.stop()
        assert app.config_reconciler.state == ReconcilerState.SHUTDOWN

    async def test_postgres_backend_selected(self):
        """Test a postgres DSN selects the asyncpg backend."""
        app = Application(Settings(database_url="postgresql://localhost/agents"))
        assert app.uses_postgres is True
        assert Application(Settings(database_url=":memory:")).uses_postgres is False

    async def test_reloader_from_settings(self, settings, tmp_path):
        """Test the pid file setting selects the signal reloader."""
        assert isinstance(Application(settings)._build_reloader(), NoopReloader)
        settings.reload_pid_file = tmp_path / "consumer.pid"
        assert isinstance(Application(settings)._build_reloader(), ProcessSignalReloader)


class TestApplicationFlows:
    """End-to-end flows through a running application."""

    async def test_config_change_published(self, settings):
        """Test an agent write is published by the running reconciler."""
        app = Application(settings)
        await app.start()
        try:
            await wait_for(lambda: app.config_reconciler.state == ReconcilerState.LISTENING)
            await app.storage.upsert_agent_config(AgentConfigRow("coder", "m1"))

            def published():
                if not settings.output_path.exists():
                    return False
                doc = json.loads(settings.output_path.read_text(encoding="utf-8"))
                return [e["id"] for e in doc["agents"]["list"]] == ["coder"]

            await wait_for(published)
        finally:
            await app.stop()

    async def test_registered_inbox_handles_messages(self, settings):
        """Test a registered inbox reacts to new messages."""
        app = Application(settings)
        await app.start()
        handled = []

        async def handler(message):
            handled.append(message.body)

        try:
            await app.register_inbox("bob", handler, create_jobs=True)
            assert len(app.reconcilers) == 2

            msg_id = await app.messages.submit_message("alice", "ping", ["bob"])
            await wait_for(lambda: handled == ["ping"])

            states = []

            async def record_state():
                record = await app.delivery.get(msg_id, "bob")
                states.append(record.state if record else None)

            # Handler returns before the record is updated
            for _ in range(100):
                await record_state()
                if states[-1] == DeliveryState.RESPONDED:
                    break
                await asyncio.sleep(0.01)
            assert states[-1] == DeliveryState.RESPONDED

            with pytest.raises(ValueError):
                await app.register_inbox("bob", handler)
        finally:
            await app.stop()


class TestConfigHelpers:
    """Tests for config helpers."""

    def test_resolve_db_path(self):
        """Test memory, DSN and relative paths."""
        assert resolve_db_path(":memory:") == ":memory:"
        assert resolve_db_path("postgres://h/db") == "postgres://h/db"
        assert resolve_db_path("data/x.db").is_absolute()

    def test_is_postgres_url(self):
        """Test scheme detection."""
        assert is_postgres_url("postgresql://h/db")
        assert not is_postgres_url("sqlite.db")
        assert not is_postgres_url(None)

    @pytest.mark.parametrize("name", ["SIGUSR1", "usr1", "10"])
    def test_parse_signal(self, name):
        """Test several spellings of SIGUSR1."""
        assert parse_signal(name).name == "SIGUSR1"

    def test_settings_from_environment(self, monkeypatch, tmp_path):
        """Test environment variables are read."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/agents")
        monkeypatch.setenv("AGENT_SYNC_OUTPUT_PATH", str(tmp_path / "a.json"))
        monkeypatch.setenv("AGENT_SYNC_KEEPALIVE_INTERVAL", "12")
        monkeypatch.setenv("API_PORT", "9001")
        monkeypatch.setenv("API_CORS_ORIGINS", "http://a.local, ,http://b.local")
        settings = Settings.from_environment()
        assert settings.database_url == "postgresql://db/agents"
        assert settings.output_path == tmp_path / "a.json"
        assert settings.keepalive_interval == 12.0
        assert settings.api_port == 9001
        assert settings.cors_origins == ["http://a.local", "http://b.local"]

    def test_cors_origins_default_empty(self, monkeypatch):
        """Test CORS is off unless origins are configured."""
        monkeypatch.delenv("API_CORS_ORIGINS", raising=False)
        assert Settings.from_environment().cors_origins == []

    async def test_postgres_storage_requires_init(self):
        """Test the asyncpg backend refuses work before init()."""
        st = PostgresStorage("postgresql://localhost/agents")
        with pytest.raises(RuntimeError, match="not initialized"):
            await st.get_message(1)
