"""Utility modules for logging, retries and auditing."""
from .logging_config import setup_logging, timed_section, perf_logger
from .retry import backoff_retrying, is_retriable
from .audit_log import (
    ChangeRecord,
    ChangeTracker,
    get_recent_changes,
    setup_audit_logging,
)

__all__ = [
    "setup_logging",
    "timed_section",
    "perf_logger",
    "backoff_retrying",
    "is_retriable",
    "ChangeRecord",
    "ChangeTracker",
    "get_recent_changes",
    "setup_audit_logging",
]
