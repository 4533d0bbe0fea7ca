"""
Structured logging for the Symptom Service.

Every line carries the request ID, so one /analyze call can be followed
from validation through the Ollama round trip to the outcome that was
returned (parsed, fallback, rejected), and one /chat call from the
upstream request to the state its relay ended in.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

SERVICE_NAME = "symptom-service"

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Outcomes recorded on request.state by the route handlers
OUTCOME_PARSED = "parsed"
OUTCOME_FALLBACK = "fallback"
OUTCOME_INPUT_REJECTED = "input_rejected"
OUTCOME_MODEL_REJECTED = "model_rejected"
OUTCOME_INVALID_REQUEST = "invalid_request"
OUTCOME_ENGINE_UNAVAILABLE = "engine_unavailable"
OUTCOME_FAILED = "failed"
OUTCOME_STREAMING = "streaming"


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set a request ID in context, generating one if needed. Returns the ID."""
    if not request_id:
        request_id = uuid.uuid4().hex[:8]
    request_id_var.set(request_id)
    return request_id


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data["data"] = extra_data

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs (LOG_JSON=false).

    Keeps the request ID and the keyword extras that the JSON format
    would put under ``data``.
    """

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        request_id = request_id_var.get()
        if request_id:
            line = f"[{request_id}] {line}"
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            line += " " + " ".join(f"{key}={value}" for key, value in extra_data.items())
        return line


class StructuredLogger:
    """Wrapper around logging.Logger that takes keyword extras."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        extra = {"extra_data": kwargs} if kwargs else {}
        self.logger.log(level, message, extra=extra)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        self.logger.exception(message, extra={"extra_data": kwargs})


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Logging level name (e.g. "INFO", "DEBUG")
        use_json: Emit JSON lines instead of TextFormatter lines
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else TextFormatter())
    root_logger.addHandler(handler)

    # one line per Ollama call is already logged by the client
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    outcome: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> None:
    """Log a finished HTTP request with the outcome its handler recorded."""
    logger = StructuredLogger("http")

    data = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if outcome:
        data["outcome"] = outcome
    if client_ip:
        data["client_ip"] = _mask_ip(client_ip)

    message = f"{method} {path} {status_code}" + (f" ({outcome})" if outcome else "")
    if status_code >= 500:
        logger.error(message, **data)
    elif outcome == OUTCOME_FALLBACK:
        logger.warning(message, **data)
    else:
        logger.info(message, **data)


def log_relay_finished(state: str, fragments: int, bytes_sent: int, duration_ms: float) -> None:
    """Log the terminal state of a chat relay once its upstream is released."""
    logger = StructuredLogger("relay")
    data = {
        "state": state,
        "fragments": fragments,
        "bytes_sent": bytes_sent,
        "duration_ms": round(duration_ms, 2),
    }
    if state == "errored":
        logger.error(f"chat relay {state}", **data)
    else:
        logger.info(f"chat relay {state}", **data)


def _mask_ip(ip: str) -> str:
    """Mask the host half of an IPv4 address."""
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.xxx.xxx"
    return "xxx"
