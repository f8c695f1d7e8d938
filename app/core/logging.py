"""
app/core/logging.py

Purpose: Logging configuration

- Standardizes log format: [timestamp] [LEVEL] [instanceId] message
- Writes to stdout and to one log file per UTC day
- Controls log levels
- Structured JSON logging on request
- Instance context on every record (instance_id)
"""

import logging
import sys
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from app.core.config import settings, Settings


def _utc_timestamp(created: float) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.123Z"""
    dt = datetime.fromtimestamp(created, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class LineFormatter(logging.Formatter):
    """
    Plain line formatter shared by console and file output.

    [2024-05-01T10:00:00.123Z] [INFO] [sales-bot] Client is ready!
    """

    def format(self, record: logging.LogRecord) -> str:
        instance_id = getattr(record, "instance_id", None)
        prefix = f"[{_utc_timestamp(record.created)}] [{record.levelname}] "
        if instance_id:
            prefix += f"[{instance_id}] "

        message = prefix + record.getMessage()

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter for structured JSON logging.
    Makes logs easily parseable by monitoring tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add extra context if available
        if hasattr(record, "instance_id"):
            log_data["instance_id"] = record.instance_id
        if hasattr(record, "group_id"):
            log_data["group_id"] = record.group_id

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class DailyFileHandler(logging.Handler):
    """
    Appends records to LOG_DIR/YYYY-MM-DD.log, named by the record's UTC date.

    The file is reopened whenever the date changes. Files are never rotated
    or truncated within a day.
    """

    def __init__(self, log_dir: str, encoding: str = "utf-8"):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.encoding = encoding
        self._current_date: Optional[str] = None
        self._stream: Optional[TextIO] = None

    def filename_for(self, created: float) -> Path:
        day = datetime.fromtimestamp(created, tz=timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / f"{day}.log"

    def _stream_for(self, created: float) -> TextIO:
        path = self.filename_for(created)
        if self._stream is None or path.stem != self._current_date:
            if self._stream is not None:
                self._stream.close()
            self._stream = open(path, "a", encoding=self.encoding)
            self._current_date = path.stem
        return self._stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            self.acquire()
            try:
                stream = self._stream_for(record.created)
                stream.write(msg + "\n")
                stream.flush()
            finally:
                self.release()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
                self._current_date = None
        finally:
            self.release()
        super().close()


def setup_logging(config: Optional[Settings] = None):
    """
    Configures application-wide logging.
    Console uses the line format (or JSON when LOG_FORMAT=json);
    the daily log file always uses the line format.
    """
    config = config or settings
    log_level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    if config.LOG_FORMAT == "json":
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(LineFormatter())

    file_handler = DailyFileHandler(config.LOG_DIR)
    file_handler.setFormatter(LineFormatter())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger = logging.getLogger("gateway")
    logger.info(
        f"Logging configured (level={config.LOG_LEVEL}, format={config.LOG_FORMAT}, dir={config.LOG_DIR})"
    )

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(f"gateway.{name}")


class InstanceLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with an instance id.

    Usage:
        log = InstanceLogger(logger, "sales-bot")
        log.info("Client is ready!")
    """

    def __init__(self, logger: logging.Logger, instance_id: str):
        super().__init__(logger, {"instance_id": instance_id})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("instance_id", self.extra["instance_id"])
        kwargs["extra"] = extra
        return msg, kwargs
