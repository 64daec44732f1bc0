"""Tests for the change audit log."""
import pytest

from vnf_framework.utils.audit_log import (
    ChangeRecord,
    ChangeTracker,
    audit_logger,
    get_recent_changes,
    setup_audit_logging,
)


@pytest.fixture
def audit_file(tmp_path):
    path = setup_audit_logging(str(tmp_path))
    yield str(path)
    for handler in list(audit_logger.handlers):
        handler.close()
        audit_logger.removeHandler(handler)
    audit_logger.propagate = True


class TestChangeTracker:
    """Tests for ChangeTracker and get_recent_changes."""

    def test_records_are_written_as_json_lines(self, audit_file):
        tracker = ChangeTracker("vnf-1", "net-1")
        tracker.log_change("Firewall", "create", "fw-1", True, external_id="100")
        tracker.log_change("Firewall", "delete", "9", False, trigger="reconcile", error="HTTP 404")

        records = get_recent_changes(audit_file)

        assert len(records) == 2
        newest = records[0]
        assert newest.operation == "delete"
        assert newest.trigger == "reconcile"
        assert newest.success is False
        assert newest.error == "HTTP 404"
        assert records[1].external_id == "100"
        assert records[1].network_id == "net-1"

    def test_filters_and_limit(self, audit_file):
        ChangeTracker("vnf-1").log_change("Firewall", "create", "a", True)
        ChangeTracker("vnf-2").log_change("NAT", "create", "b", True)
        ChangeTracker("vnf-1").log_change("NAT", "create", "c", True)

        assert [r.rule_ref for r in get_recent_changes(audit_file, appliance_id="vnf-1")] == ["c", "a"]
        assert [r.rule_ref for r in get_recent_changes(audit_file, service="NAT")] == ["c", "b"]
        assert [r.rule_ref for r in get_recent_changes(audit_file, limit=1)] == ["c"]

    def test_long_errors_truncated(self, audit_file):
        record = ChangeTracker("vnf-1").log_change("Firewall", "create", "a", False, error="e" * 5000)
        assert len(record.error) == 1000

    def test_malformed_lines_skipped(self, audit_file):
        ChangeTracker("vnf-1").log_change("Firewall", "create", "a", True)
        with open(audit_file, "a") as f:
            f.write("not json\n\n")

        assert len(get_recent_changes(audit_file)) == 1

    def test_missing_file(self, tmp_path):
        assert get_recent_changes(str(tmp_path / "absent.log")) == []

    def test_record_round_trip(self):
        record = ChangeRecord(
            timestamp="2026-01-01T00:00:00+00:00",
            appliance_id="vnf-1",
            network_id="net-1",
            service="Firewall",
            operation="create",
            rule_ref="fw-1",
            trigger="platform",
            dry_run=False,
            success=True,
        )
        assert ChangeRecord.from_json(record.to_json()) == record
