"""
Logging module for the repository migration orchestrator
"""

import json
import logging
import os
import uuid
from typing import Any, Dict, Optional

LOGGER_NAME = "repo_migrator"

# Module-level flag to track if API debug logging is enabled
_DEBUG_API_ENABLED = False

# Correlation id stamped on every record of the current run
_RUN_ID = "-"

_SENSITIVE_KEYS = ("token", "auth", "password", "secret", "key")


class JsonFormatter(logging.Formatter):
    def format(self, record):
        data = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }
        # Include any additional attributes from the record
        for key, value in record.__dict__.items():
            if key not in (
                "args",
                "asctime",
                "created",
                "exc_info",
                "exc_text",
                "filename",
                "funcName",
                "id",
                "levelname",
                "levelno",
                "lineno",
                "module",
                "msecs",
                "message",
                "msg",
                "name",
                "pathname",
                "process",
                "processName",
                "relativeCreated",
                "stack_info",
                "taskName",
                "thread",
                "threadName",
            ):
                data[key] = value
        return json.dumps(data, default=str)


class RunIdFilter(logging.Filter):
    """Attach the current run correlation id to every record."""

    def filter(self, record):
        if not getattr(record, "run_id", None):
            record.run_id = _RUN_ID
        return True


class EnhancedFormatter(logging.Formatter):
    """
    Custom formatter that supports both verbose mode (with additional context information)
    and API debug mode (with request/response data)
    """

    def __init__(
        self,
        fmt=None,
        datefmt=None,
        style="%",
        verbose=False,
        include_api_details=False,
    ):
        # Use more detailed format for verbose mode
        if verbose:
            fmt = "%(asctime)s - %(levelname)s - [%(run_id)s] [%(module)s:%(lineno)d] - %(message)s"
        elif not fmt:
            fmt = "%(asctime)s - %(levelname)s - [%(run_id)s] - %(message)s"

        super().__init__(fmt, datefmt, style)
        self.include_api_details = include_api_details

    def format(self, record):
        if not hasattr(record, "run_id"):
            record.run_id = _RUN_ID
        result = super().format(record)

        # Only include API details if explicitly enabled
        if self.include_api_details:
            if getattr(record, "api_data", None):
                result += f"\nAPI Data: {record.api_data}"
            if getattr(record, "response", None):
                result += f"\nResponse: {record.response}"

        return result


def new_run_id() -> str:
    """Generate a fresh correlation id and make it current."""
    run_id = uuid.uuid4().hex[:12]
    set_run_id(run_id)
    return run_id


def set_run_id(run_id: str) -> None:
    global _RUN_ID
    _RUN_ID = run_id


def get_run_id() -> str:
    return _RUN_ID


def setup_main_log_file(
    output_dir: str, debug_api: bool = False, json_logs: bool = False
) -> logging.FileHandler:
    """
    Set up a file handler for the main log file of a run.

    Args:
        output_dir: The output directory path
        debug_api: If True, include API request/response details
        json_logs: If True, also write a JSON-lines copy of the log

    Returns:
        The file handler for the main log file
    """
    os.makedirs(output_dir, exist_ok=True)

    log_file = os.path.join(output_dir, "migration.log")

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setLevel(logging.DEBUG)  # Always use DEBUG level for file handlers
    file_handler.setFormatter(EnhancedFormatter(include_api_details=debug_api))
    file_handler.addFilter(RunIdFilter())

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(file_handler)

    if json_logs:
        json_handler = logging.FileHandler(
            os.path.join(output_dir, "migration.jsonl"), mode="a"
        )
        json_handler.setLevel(logging.DEBUG)
        json_handler.setFormatter(JsonFormatter())
        json_handler.addFilter(RunIdFilter())
        logger.addHandler(json_handler)

    logger.info(f"Main log file created at: {log_file}")
    return file_handler


def setup_logger(
    verbose: bool = False,
    debug_api: bool = False,
    output_dir: Optional[str] = None,
    json_logs: bool = False,
) -> logging.Logger:
    """
    Set up and return the logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        debug_api: If True, enable detailed API request/response logging
        output_dir: Optional output directory for the main log file
        json_logs: If True, write a JSON-lines log next to the main log file

    Returns:
        Configured logger instance
    """
    global _DEBUG_API_ENABLED
    _DEBUG_API_ENABLED = debug_api

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)  # Always set logger to DEBUG to capture all logs

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        EnhancedFormatter(verbose=verbose, include_api_details=debug_api)
    )
    console_handler.addFilter(RunIdFilter())
    logger.addHandler(console_handler)

    if output_dir:
        setup_main_log_file(output_dir, debug_api, json_logs)

    if debug_api:
        logger.info("API debug logging enabled")

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context to include in the log record
    """
    # Filter out None values from kwargs
    filtered_kwargs = {k: v for k, v in kwargs.items() if v is not None}

    # exc_info/stack_info are logger arguments, not record attributes
    log_kwargs = {}
    for reserved in ("exc_info", "stack_info"):
        if reserved in filtered_kwargs:
            log_kwargs[reserved] = filtered_kwargs.pop(reserved)

    default_extras = {"api_data": "", "response": ""}
    if "api_data" in filtered_kwargs or "response" in filtered_kwargs:
        extras = {**default_extras, **filtered_kwargs}
    else:
        extras = filtered_kwargs

    logger = logging.getLogger(LOGGER_NAME)
    logger.log(level, message, extra=extras, **log_kwargs)


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` with secret-looking values replaced."""
    return {
        key: (
            "[REDACTED]"
            if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS)
            else value
        )
        for key, value in data.items()
    }


def log_api_request(
    method: str, url: str, data: Optional[Dict] = None, **kwargs: Any
) -> None:
    """
    Log an API request with appropriate detail level based on debug mode.

    Args:
        method: HTTP method (GET, POST, etc.)
        url: The API endpoint URL
        data: Optional request data/payload
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    log_context = kwargs.copy()
    if data and isinstance(data, dict):
        log_context["api_data"] = json.dumps(redact(data), indent=2, default=str)

    log_with_context(logging.DEBUG, f"API Request: {method} {url}", **log_context)


def log_api_response(
    status_code: int, url: str, response_data: Any = None, **kwargs: Any
) -> None:
    """
    Log an API response with appropriate detail level based on debug mode.

    Args:
        status_code: HTTP status code
        url: The API endpoint URL
        response_data: Optional response data
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    log_context = kwargs.copy()

    if response_data:
        try:
            if isinstance(response_data, (dict, list)):
                response_str = json.dumps(response_data, indent=2)
                if len(response_str) > 2000:
                    response_str = response_str[:2000] + "... [truncated]"
            else:
                response_str = str(response_data)
                if len(response_str) > 1000:
                    response_str = response_str[:1000] + "... [truncated]"
            log_context["response"] = response_str
        except (TypeError, ValueError) as e:
            log_context["response"] = f"Error formatting response: {e}"

    log_with_context(
        logging.DEBUG, f"API Response: {status_code} from {url}", **log_context
    )


def is_debug_api_enabled() -> bool:
    """Check if API debug logging is enabled."""
    return _DEBUG_API_ENABLED


def get_logger():
    """Get the repo_migrator logger, creating it with defaults if needed."""
    migrator_logger = logging.getLogger(LOGGER_NAME)
    if not migrator_logger.handlers:
        migrator_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(EnhancedFormatter())
        handler.addFilter(RunIdFilter())
        migrator_logger.addHandler(handler)
    return migrator_logger


# Module logger - will be properly initialized when setup_logger is called
logger = get_logger()
