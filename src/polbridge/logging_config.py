"""
polbridge - Structured Logging Configuration

JSON log lines (python-json-logger) for diagnostics, kept apart from the
human-facing console output of the CLI:
- stderr handler so stdout stays readable
- optional size-rotated file handler for long withdrawal polls

Usage:
    from polbridge.logging_config import setup_logging

    logger = setup_logging(level="INFO", log_file="polbridge.json")
    logger.info("Burn confirmed", extra={"tx_hash": "0x..."})
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

from pythonjsonlogger import jsonlogger


class BridgeJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, environment, service and source location.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        environment: Optional[str] = None,
        service_name: str = "polbridge",
    ):
        super().__init__(fmt=fmt)
        self.environment = environment or "testnet"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "polbridge",
    log_file: Optional[str] = None,
    level: str = "WARNING",
    environment: str = "testnet",
    enable_console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure JSON logging for the ``name`` logger hierarchy.

    Args:
        name: Root logger name for the package
        log_file: Path to JSON log file (optional)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment identifier written into every record
        enable_console: Whether to log to stderr
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    numeric_level = getattr(logging, level.upper())
    logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = BridgeJsonFormatter(environment=environment, service_name=name.split(".")[0])

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning("Could not create file handler for %s: %s", log_file, e)

    logger.propagate = False
    return logger


__all__ = ["BridgeJsonFormatter", "setup_logging"]
