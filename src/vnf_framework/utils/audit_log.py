"""Audit logging for changes pushed to appliances.

Every corrective or platform-initiated create/delete is recorded as one
JSON line so operators can trace what the engine changed on a device.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

audit_logger = logging.getLogger("vnf_framework.audit")

DEFAULT_AUDIT_DIR = os.path.expanduser("~/.vnf-framework")


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to a rotating file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.vnf-framework/

    Returns:
        Path of the audit log file
    """
    log_dir = log_dir or DEFAULT_AUDIT_DIR
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to the package logger
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """Record of a change sent to an appliance."""
    timestamp: str
    appliance_id: str
    network_id: str
    service: str
    operation: str  # create, delete
    rule_ref: str
    trigger: str  # platform, reconcile
    dry_run: bool
    success: bool
    external_id: Optional[str] = None
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        """Parse from JSON string."""
        return cls(**json.loads(json_str))


class ChangeTracker:
    """Record changes for one appliance."""

    def __init__(self, appliance_id: str, network_id: str = ""):
        self.appliance_id = appliance_id
        self.network_id = network_id

    def log_change(
        self,
        service: str,
        operation: str,
        rule_ref: str,
        success: bool,
        trigger: str = "platform",
        external_id: Optional[str] = None,
        error: Optional[str] = None,
        dry_run: bool = False,
    ) -> ChangeRecord:
        """Log a change.

        Args:
            service: Service name, e.g. "Firewall"
            operation: Operation performed, e.g. "create"
            rule_ref: Platform rule id or device external id
            success: Whether the appliance accepted the change
            trigger: Who asked for it ("platform" or "reconcile")
            external_id: External id assigned or removed
            error: Error message if failed
            dry_run: Whether this was only a preview

        Returns:
            The ChangeRecord that was logged
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            appliance_id=self.appliance_id,
            network_id=self.network_id,
            service=service,
            operation=operation,
            rule_ref=rule_ref,
            trigger=trigger,
            dry_run=dry_run,
            success=success,
            external_id=external_id,
            error=error[:1000] if error else None,  # Truncate long errors
        )

        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    appliance_id: Optional[str] = None,
    service: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from the audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.vnf-framework/audit.log
        appliance_id: Filter by appliance
        service: Filter by service name
        limit: Maximum number of records to return

    Returns:
        List of ChangeRecords, most recent first
    """
    if log_file is None:
        log_file = os.path.join(DEFAULT_AUDIT_DIR, "audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if appliance_id and record.appliance_id != appliance_id:
                continue
            if service and record.service != service:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
