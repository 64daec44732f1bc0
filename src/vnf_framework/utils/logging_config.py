"""Logging configuration for the VNF framework.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing helpers for broker round-trips

Environment Variables:
    VNF_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    VNF_LOG_FILE: Path to log file (default: ~/.vnf-framework/vnf.log)
    VNF_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    VNF_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from vnf_framework.utils.logging_config import setup_logging, timed_section

    setup_logging()  # Call once at startup

    async with timed_section("send", appliance_id="vnf-1", operation="Firewall.create"):
        ...
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("vnf_framework.perf")

_MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-32s | %(levelname)-7s | %(message)s"
_PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("VNF_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".vnf-framework" / "vnf.log"
    return Path(os.environ.get("VNF_LOG_FILE", str(default_path)))


def setup_logging(log_to_file: bool = True) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (respects VNF_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance log file for timing metrics
    """
    log_level = get_log_level()
    main_format = logging.Formatter(_MAIN_FORMAT, datefmt=_DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    root_logger = logging.getLogger("vnf_framework")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    perf_logger.setLevel(logging.DEBUG)
    perf_logger.handlers.clear()
    # Perf records reach the console through the package logger
    perf_logger.propagate = True

    if not log_to_file:
        root_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}")
        return

    log_file = get_log_file()
    max_size_mb = int(os.environ.get("VNF_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("VNF_LOG_BACKUPS", "5"))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)
    root_logger.addHandler(file_handler)

    perf_log_file = log_file.parent / "vnf-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(logging.Formatter(_PERF_FORMAT, datefmt=_DATE_FORMAT))
    perf_logger.addHandler(perf_handler)

    root_logger.info(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )


def _format_perf(operation: str, subject: Optional[str], elapsed: float, outcome: str, extra: dict) -> str:
    msg = f"{operation:24s} | {subject or 'N/A':15s} | {elapsed:8.2f}ms | {outcome}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    return msg


@asynccontextmanager
async def timed_section(operation: str, appliance_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("send", appliance_id="vnf-1", attempt=2):
            await transport.send(...)
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_format_perf(operation, appliance_id, elapsed, f"FAIL: {e}", extra))
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(_format_perf(operation, appliance_id, elapsed, "OK", extra))
