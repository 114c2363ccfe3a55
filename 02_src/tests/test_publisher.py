"""Tests for AtomicPublisher and reloaders."""

import json
import os
import signal

import pytest

from agent_sync.sync import AtomicPublisher, NoopReloader, ProcessSignalReloader
from agent_sync.sync.builder import serialize_document

DOC = {"agents": {"defaults": {"models": {"m1": {}}}, "list": [{"id": "a", "model": "m1"}]}}


class TestAtomicPublisher:
    """Tests for AtomicPublisher.publish()."""

    def test_creates_parent_and_writes(self, tmp_path):
        """Test first publish writes the serialized document."""
        target = tmp_path / "nested" / "agents.json"
        assert AtomicPublisher().publish(DOC, target) is True
        assert target.read_text(encoding="utf-8") == serialize_document(DOC)

    def test_unchanged_content_not_rewritten(self, tmp_path):
        """Test identical content returns False and leaves the file alone."""
        target = tmp_path / "agents.json"
        publisher = AtomicPublisher()
        publisher.publish(DOC, target)
        mtime = os.stat(target).st_mtime_ns

        assert publisher.publish(DOC, target) is False
        assert os.stat(target).st_mtime_ns == mtime

    def test_changed_content_replaces(self, tmp_path):
        """Test a different document replaces the file."""
        target = tmp_path / "agents.json"
        publisher = AtomicPublisher()
        publisher.publish(DOC, target)
        changed = {"agents": {"defaults": {"models": {}}, "list": []}}
        assert publisher.publish(changed, target) is True
        assert json.loads(target.read_text(encoding="utf-8")) == changed

    def test_no_temp_files_left(self, tmp_path):
        """Test only the target remains after publishing."""
        target = tmp_path / "agents.json"
        AtomicPublisher().publish(DOC, target)
        assert [p.name for p in tmp_path.iterdir()] == ["agents.json"]

    def test_failed_replace_keeps_target(self, tmp_path, monkeypatch):
        """Test a failure mid-publish leaves the previous document intact."""
        target = tmp_path / "agents.json"
        publisher = AtomicPublisher()
        publisher.publish(DOC, target)
        before = target.read_bytes()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("agent_sync.sync.publisher.os.replace", broken_replace)
        with pytest.raises(OSError, match="disk full"):
            publisher.publish({"agents": {"defaults": {"models": {}}, "list": []}}, target)

        assert target.read_bytes() == before
        assert [p.name for p in tmp_path.iterdir()] == ["agents.json"]


class TestReloaders:
    """Tests for reload signalling."""

    def test_noop(self):
        """Test the no-op reloader reports no signal sent."""
        assert NoopReloader().signal_reload() is False

    def test_missing_pid_file(self, tmp_path):
        """Test a missing pid file is logged, not raised."""
        reloader = ProcessSignalReloader(tmp_path / "missing.pid")
        assert reloader.signal_reload() is False

    def test_garbage_pid_file(self, tmp_path):
        """Test a non-numeric pid file is ignored."""
        pid_file = tmp_path / "app.pid"
        pid_file.write_text("not-a-pid")
        assert ProcessSignalReloader(pid_file).signal_reload() is False

    def test_sends_signal(self, tmp_path, monkeypatch):
        """Test the configured signal goes to the pid from the file."""
        pid_file = tmp_path / "app.pid"
        pid_file.write_text("4242\n")
        sent = []
        monkeypatch.setattr(
            "agent_sync.sync.reload.os.kill", lambda pid, sig: sent.append((pid, sig))
        )
        assert ProcessSignalReloader(pid_file, signal.SIGHUP).signal_reload() is True
        assert sent == [(4242, signal.SIGHUP)]

    def test_dead_process(self, tmp_path, monkeypatch):
        """Test a failed kill is reported as False."""
        pid_file = tmp_path / "app.pid"
        pid_file.write_text("4242")

        def fail(pid, sig):
            raise ProcessLookupError("no such process")

        monkeypatch.setattr("agent_sync.sync.reload.os.kill", fail)
        assert ProcessSignalReloader(pid_file).signal_reload() is False
