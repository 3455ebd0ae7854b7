"""Logging setup and the provisioning run shared by the CLI commands."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

import click

from .config import Configuration
from .dependency import DependencyError
from .provider import CloudProvider
from .reconciler import Reconciler
from .report import summary_lines

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 3

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColorFormatter(logging.Formatter):
    """Leveled, colored console lines: ``[INFO] message``."""

    LEVEL_STYLES: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("DEBUG", "blue"),
        logging.INFO: ("INFO", "green"),
        logging.WARNING: ("WARN", "yellow"),
        logging.ERROR: ("ERROR", "red"),
        logging.CRITICAL: ("ERROR", "red"),
    }

    def __init__(self, color: bool = True) -> None:
        super().__init__()
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        label, color = self.LEVEL_STYLES.get(record.levelno, (record.levelname, "white"))
        tag = f"[{label}]"
        if self._color:
            tag = click.style(tag, fg=color, bold=record.levelno >= logging.WARNING)
        line = f"{tag} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_format: str = "color",
    verbose: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Configure root logging for console or JSON output.

    Args:
        log_format: "color" for leveled console lines, "json" for structured logs.
        verbose: Include debug messages (e.g. every CLI command run).
        stream: Output stream (default: stdout).
    """
    stream = stream or sys.stdout
    handler = logging.StreamHandler(stream)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ColorFormatter(color=stream.isatty()))

    root_logger = logging.getLogger()
    # Replace a handler from an earlier call, leave foreign handlers alone
    for existing in list(root_logger.handlers):
        if getattr(existing, "_provisioner_handler", False):
            root_logger.removeHandler(existing)
    handler._provisioner_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def provision(config: Configuration, provider: CloudProvider) -> int:
    """Run one reconciliation and log its summary.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = logging.getLogger(__name__)
    reconciler = Reconciler(config, provider)

    try:
        report = reconciler.run()
    except DependencyError as e:
        logger.error("Invalid provisioning plan: %s", e, extra={"error": str(e)})
        return EXIT_FAILURE

    for line in summary_lines(report, reconciler.config):
        if report.success:
            logger.info(line)
        else:
            logger.error(line)

    return EXIT_SUCCESS if report.success else EXIT_FAILURE
