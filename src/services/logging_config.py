"""
Logging Configuration for the filing wizard.

Provides structured logging with:
- JSON formatting for production
- Human-readable formatting for development
- Filing / person correlation through context variables
- Wizard event logging for phase changes, autosaves and submissions
"""

import inspect
import logging
import json
import sys
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
from functools import wraps
from pathlib import Path
from contextvars import ContextVar

# Context variables for filing correlation
filing_id_var: ContextVar[Optional[str]] = ContextVar('filing_id', default=None)
personal_filing_id_var: ContextVar[Optional[str]] = ContextVar('personal_filing_id', default=None)


def _context_fields() -> Dict[str, str]:
    fields = {}
    filing_id = filing_id_var.get()
    if filing_id:
        fields["filing_id"] = filing_id
    personal_filing_id = personal_filing_id_var.get()
    if personal_filing_id:
        fields["personal_filing_id"] = personal_filing_id
    return fields


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        log_data.update(_context_fields())

        # Add extra fields from the record
        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter for development.
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human readability."""
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        level = f"{color}{record.levelname:8s}{reset}"

        message = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        # Add extra fields
        if hasattr(record, 'extra_data') and record.extra_data:
            extras = ' | '.join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" | {extras}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that includes context in all log messages.
    """

    def process(self, msg: str, kwargs: Dict) -> tuple:
        """Add context to log message."""
        extra = kwargs.get('extra', {})

        # Merge with any existing extra data
        if 'extra_data' not in extra:
            extra['extra_data'] = {}
        extra['extra_data'].update(_context_fields())
        extra['extra_data'].update(
            {k: v for k, v in self.extra.items() if v is not None}
        )

        kwargs['extra'] = extra
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON formatted logs
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Create formatter
    if json_output:
        formatter = JsonFormatter()
    else:
        formatter = ReadableFormatter()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JsonFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    # Set levels for noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def configure_from_settings(settings) -> None:
    """Configure logging from WizardSettings."""
    configure_logging(level=settings.log_level, json_output=settings.log_json)


def get_logger(name: str, **extra) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        **extra: Additional context to include in all logs

    Returns:
        ContextLogger instance
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, extra)


class WizardEventLogger:
    """
    Specialized logger for wizard session events.

    Records phase transitions, autosaves, validation failures and
    submissions with the filing id attached for correlation.
    """

    def __init__(self, filing_id: Optional[str] = None):
        self.logger = get_logger("wizard.session", filing_id=filing_id)
        self.filing_id = filing_id

    def log_transition(self, action: str, from_phase: str, to_phase: str, **data) -> None:
        """Log a reducer action that changed the phase."""
        if from_phase == to_phase:
            return
        self.logger.info(
            f"Wizard phase {from_phase} -> {to_phase}",
            extra={'extra_data': {
                'action': action,
                'from_phase': from_phase,
                'to_phase': to_phase,
                **data
            }}
        )

    def log_autosave(self, record_id: str, field_count: int, duration_ms: int) -> None:
        self.logger.debug(
            "Autosave flushed",
            extra={'extra_data': {
                'record_id': record_id,
                'field_count': field_count,
                'duration_ms': duration_ms,
            }}
        )

    def log_fields_cleared(self, changed_field: str, cleared: list) -> None:
        if not cleared:
            return
        self.logger.info(
            f"Cleared {len(cleared)} hidden field(s) after {changed_field} changed",
            extra={'extra_data': {
                'changed_field': changed_field,
                'cleared_fields': cleared,
            }}
        )

    def log_validation_failed(self, section_id: str, error_count: int) -> None:
        self.logger.info(
            f"Section {section_id} has {error_count} validation error(s)",
            extra={'extra_data': {
                'section_id': section_id,
                'error_count': error_count,
            }}
        )

    def log_submission(self, reference_number: Optional[str], total: Any, currency: str) -> None:
        self.logger.info(
            "Filing submitted for review",
            extra={'extra_data': {
                'reference_number': reference_number,
                'total': total,
                'currency': currency,
            }}
        )

    def log_error(self, message: str, **data) -> None:
        """Log session error."""
        self.logger.error(
            message,
            extra={'extra_data': data}
        )


def log_performance(name: Optional[str] = None) -> Callable:
    """
    Decorator to log function performance.

    Args:
        name: Optional name override for the log entry

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        func_name = name or func.__name__

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = get_logger("performance")
            start = time.time()
            try:
                result = await func(*args, **kwargs)
                duration_ms = int((time.time() - start) * 1000)
                logger.info(
                    f"{func_name} completed",
                    extra={'extra_data': {'duration_ms': duration_ms}}
                )
                return result
            except Exception as e:
                duration_ms = int((time.time() - start) * 1000)
                logger.error(
                    f"{func_name} failed",
                    extra={'extra_data': {
                        'duration_ms': duration_ms,
                        'error': str(e),
                    }}
                )
                raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = get_logger("performance")
            start = time.time()
            try:
                result = func(*args, **kwargs)
                duration_ms = int((time.time() - start) * 1000)
                logger.info(
                    f"{func_name} completed",
                    extra={'extra_data': {'duration_ms': duration_ms}}
                )
                return result
            except Exception as e:
                duration_ms = int((time.time() - start) * 1000)
                logger.error(
                    f"{func_name} failed",
                    extra={'extra_data': {
                        'duration_ms': duration_ms,
                        'error': str(e),
                    }}
                )
                raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
