"""
Logging utilities for simple_kafka_consumer.

Provides:
- get_logger / log_with_context / log_exception helpers
- KafkaLogContext for attaching topic/partition/offset to every log line
- JSON and console formatters
- setup_logging() for console + rotating file output
"""

import contextvars
import io
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
]

_kafka_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "kafka_log_context", default={}
)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def get_kafka_context() -> Dict[str, Any]:
    """Return the Kafka fields bound to the current task/context."""
    return dict(_kafka_context.get())


class KafkaLogContext:
    """
    Context manager binding Kafka record fields to all logs in its scope.

    Values are kept in a contextvar, so concurrent asyncio tasks each see
    their own record.

    Example:
        with KafkaLogContext(topic="t1", partition=0, offset=42):
            logger.info("Processing")  # carries topic/partition/offset
    """

    def __init__(self, **fields: Any):
        self._fields = {k: v for k, v in fields.items() if v is not None}
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "KafkaLogContext":
        merged = dict(_kafka_context.get())
        merged.update(self._fields)
        self._token = _kafka_context.set(merged)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._token is not None:
            _kafka_context.reset(self._token)
            self._token = None


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (topics, group_id, duration_ms, etc.)

    Example:
        log_with_context(
            logger, logging.INFO, "Subscribed",
            topics=["t1", "t2"],
            group_id="test-group",
        )
    """
    logger.log(level, msg, extra=kwargs)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from ConsumerError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        error_category = cat.value if hasattr(cat, "value") else str(cat)
        kwargs["error_category"] = error_category

    # Sanitize error message
    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with Kafka context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "topic",
        "partition",
        "offset",
        "topics",
        "group_id",
        "client_id",
        "brokers",
        "state",
        "event",
        "partitions",
        "duration_ms",
        "error_category",
        "error_message",
        "error_type",
    ]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        log_entry.update(get_kafka_context())

        # Source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Prefixes the message with topic[partition]@offset when a record is in scope.
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.name,
        ]
        prefix = " - ".join(parts)

        ctx = get_kafka_context()
        message = record.getMessage()
        if "topic" in ctx:
            location = f"{ctx['topic']}[{ctx.get('partition', '?')}]@{ctx.get('offset', '?')}"
            message = f"[{location}] {message}"

        line = f"{prefix} - {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    name: str = "simple_kafka_consumer",
    log_dir: Optional[Path] = None,
    log_to_file: bool = True,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
) -> logging.Logger:
    """
    Configure logging with console and (optionally) rotating file handlers.

    Log files are written to {log_dir}/{name}_{YYYYMMDD}_p{pid}.log so that
    several consumer processes on one host don't fight over a file.

    Args:
        name: Logger name and log file prefix
        log_dir: Directory for log files (default: ./logs)
        log_to_file: Add a rotating file handler (default: True)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
        suppress_noisy: Quiet down the aiokafka loggers

    Returns:
        Configured logger instance
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter

    # Remove existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()

    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(
            sys.stdout.buffer, encoding="utf-8", errors="replace"
        )
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    log_file = None
    if log_to_file:
        log_dir = log_dir or DEFAULT_LOG_DIR
        date_str = datetime.now().strftime("%Y%m%d")
        log_file = log_dir / f"{name}_{date_str}_p{os.getpid()}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter: logging.Formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(f"Logging initialized: file={log_file}, json={json_format}")

    return logger
