from __future__ import annotations
import logging
import sys
import json
from typing import Any, Callable, Dict, Optional
from datetime import datetime, timezone
from pathlib import Path

SERVICE_NAME = "corpusforge"

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord('', 0, '', 0, '', (), None).__dict__
) | {'message', 'asctime', 'taskName'}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        context = {
            key[len("ctx_"):]: value
            for key, value in record.__dict__.items()
            if key.startswith("ctx_")
        }
        if context:
            log_entry["context"] = context

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES and not key.startswith("ctx_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        context = " ".join(
            f"{key[len('ctx_'):]}={value}"
            for key, value in record.__dict__.items()
            if key.startswith("ctx_")
        )
        message = f"{timestamp} | {record.levelname:8} | {record.name} | {record.getMessage()}"
        if context:
            message += f" | {context}"

        if self.use_colors and record.levelname in self.COLORS:
            message = f"{self.COLORS[record.levelname]}{message}{self.RESET}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(
    level: str = "INFO",
    service_name: str = SERVICE_NAME,
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Name of the service for structured logging
        log_file: Optional file path for file logging, always JSON
        use_json: Whether to use JSON formatting on the console
        use_colors: Whether to use colored output for console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    if use_json:
        console_handler.setFormatter(JSONFormatter(service_name))
    else:
        console_handler.setFormatter(ColoredFormatter(use_colors and sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    # Third party clients are noisy at INFO
    for name in ("uvicorn.access", "aiohttp.access", "trafilatura", "charset_normalizer"):
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_settings(settings, log_file: Optional[str] = None) -> None:
    setup_logging(level=settings.log_level, log_file=log_file, use_json=settings.log_json)


class StructuredLogger:
    """Wrapper for structured logging with additional context."""

    def __init__(self, name: str, **default_context):
        self.logger = logging.getLogger(name)
        self.default_context = default_context

    def bind(self, **context) -> 'StructuredLogger':
        """A logger carrying this logger's context plus ``context``."""
        bound = StructuredLogger(self.logger.name, **self.default_context)
        bound.default_context.update(context)
        return bound

    def _log(self, level: int, msg: str, exc_info: bool = False, **context) -> None:
        full_context = {**self.default_context, **context}
        extra = {f"ctx_{k}": v for k, v in full_context.items()}
        self.logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **context) -> None:
        self._log(logging.DEBUG, msg, **context)

    def info(self, msg: str, **context) -> None:
        self._log(logging.INFO, msg, **context)

    def warning(self, msg: str, **context) -> None:
        self._log(logging.WARNING, msg, **context)

    def error(self, msg: str, **context) -> None:
        self._log(logging.ERROR, msg, **context)

    def exception(self, msg: str, **context) -> None:
        self._log(logging.ERROR, msg, exc_info=True, **context)


def get_structured_logger(name: str, **default_context) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, **default_context)


def state_logger(project_id: str) -> Callable[[Any], None]:
    """Observer logging the training state transitions of a project.

    Progress updates are logged at DEBUG, other transitions at INFO.
    """
    sync_logger = get_structured_logger("corpusforge.sync", project_id=project_id)
    last_status = {"value": None}

    def observe(state) -> None:
        data = state.to_dict()
        if data["state"] == last_status["value"] and data["state"] == "loading":
            sync_logger.debug("Training progress", **data)
        else:
            sync_logger.info(f"Training state: {data['state']}", **data)
        last_status["value"] = data["state"]

    return observe
