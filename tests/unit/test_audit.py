"""Unit tests for the audit log."""

import json

from nsf.core.audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    AuditResult,
    configure_audit_logger,
    get_audit_logger,
)


class TestAuditEvent:
    """Tests for AuditEvent serialization."""

    def test_to_dict(self):
        """Should nest actor and target."""
        event = AuditEvent(
            event_type=AuditEventType.CHAINS_RECONCILE,
            result=AuditResult.SUCCESS,
            namespace="/proc/1/ns/net",
            container_id="abc",
            parameters={"chains": ["X"]},
        )
        data = event.to_dict()
        assert data["event_type"] == "chains.reconcile"
        assert data["result"] == "success"
        assert data["target"] == {"namespace": "/proc/1/ns/net", "container_id": "abc"}
        assert "uid" in data["actor"]


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_appends_json_lines(self, tmp_path):
        """Each operation is one JSON line with the session id."""
        log_path = tmp_path / "logs" / "audit.log"
        logger = AuditLogger(log_path=log_path)

        logger.log_operation(AuditEventType.CHAINS_BOOTSTRAP, AuditResult.SUCCESS, namespace="/a")
        logger.log_operation(
            AuditEventType.CHAINS_RECONCILE,
            AuditResult.FAILURE,
            namespace="/a",
            error="Failed to flush chain X",
        )

        lines = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert [line["event_type"] for line in lines] == ["chains.bootstrap", "chains.reconcile"]
        assert lines[1]["error"] == "Failed to flush chain X"
        assert lines[0]["session_id"] == lines[1]["session_id"] == logger.session_id

    def test_disabled(self, tmp_path):
        """Disabled logger writes nothing."""
        log_path = tmp_path / "audit.log"
        AuditLogger(log_path=log_path, enabled=False).log_operation(
            AuditEventType.CHAINS_BOOTSTRAP, AuditResult.SUCCESS,
        )
        assert not log_path.exists()

    def test_rotation(self, tmp_path):
        """Log is rotated once it passes the size limit."""
        log_path = tmp_path / "audit.log"
        logger = AuditLogger(log_path=log_path, max_size_mb=0, backup_count=2)

        for _ in range(3):
            logger.log_operation(AuditEventType.CHAINS_BOOTSTRAP, AuditResult.SUCCESS)

        assert (tmp_path / "audit.log.1").exists()
        assert (tmp_path / "audit.log.2").exists()
        assert not (tmp_path / "audit.log.3").exists()

    def test_unwritable_path_is_ignored(self, tmp_path):
        """Audit failures never raise."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        AuditLogger(log_path=blocker / "audit.log").log_operation(
            AuditEventType.CHAINS_BOOTSTRAP, AuditResult.SUCCESS,
        )


class TestGlobalLogger:
    """Tests for the global audit logger."""

    def test_configure_replaces_global(self, tmp_path):
        """configure_audit_logger sets what get_audit_logger returns."""
        logger = configure_audit_logger(log_path=tmp_path / "audit.log", enabled=False)
        assert get_audit_logger() is logger
        assert logger.enabled is False
