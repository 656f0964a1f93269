"""
StableGas - Structured Logging Configuration

Configures structured JSON logging:
- JSON records carrying the ``extra={"event": ...}`` fields every module logs
- Console output plus an optional rotating file
- Level and file taken from STABLEGAS_LOG_LEVEL / STABLEGAS_LOG_FILE when not given

Usage:
    from stablegas.core.logging_config import setup_logging

    logger = setup_logging(name="stablegas", level="INFO")
    logger.info("Sponsor charged fee", extra={"event": "sponsor.fee_charged", "amount": 2_200_000})
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from .config import get_log_file, get_log_level, get_network


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with network and service context.

    Adds timestamp, network, and source location to all log records.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp: bool = True,
        network: Optional[str] = None,
        service_name: str = "stablegas",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.network = network or "testnet"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        log_record["network"] = self.network
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "stablegas",
    log_file: Optional[str] = None,
    level: Optional[str] = None,
    network: Optional[str] = None,
    enable_console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Setup structured JSON logging.

    Args:
        name: Logger name; "stablegas" covers every package module
        log_file: Path to JSON log file, defaults to STABLEGAS_LOG_FILE
        level: Logging level, defaults to STABLEGAS_LOG_LEVEL or the network default
        network: Network label added to every record
        enable_console: Whether to log to stdout
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger instance
    """
    network = network or get_network().value
    level = (level or get_log_level()).upper()
    log_file = log_file or get_log_file()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = CustomJsonFormatter(
        network=network,
        service_name=name.split(".")[0],
    )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
        except OSError as e:
            logger.warning(
                "Could not create file handler for %s: %s",
                log_file,
                e,
                extra={"event": "logging.file_handler_failed"}
            )
        else:
            file_handler.setLevel(getattr(logging, level))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def get_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Get or create a logger with standard configuration.

    Only configures the logger the first time it is requested.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logging(name=name, log_file=log_file, level=level)
    return logger
