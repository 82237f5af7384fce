"""
Structured logging for the parity harness.

Every line is one JSON object holding timestamp, level and message, plus
optional operation, context, duration_ms and error fields, so a round's
progress can be grepped or loaded into a log store afterwards.
"""

import json
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

MAX_SNIPPET_LENGTH = 200


def truncate_snippet(text: Optional[str], limit: int = MAX_SNIPPET_LENGTH) -> str:
    """
    Flatten an error body or message to one line of at most limit characters.

    Example:
        >>> truncate_snippet("bad gateway\\n")
        "bad gateway"
        >>> truncate_snippet("x" * 300, limit=5)
        "xxxxx...(+295 chars)"
    """
    if not text:
        return ""

    flattened = " ".join(text.split())
    if len(flattened) <= limit:
        return flattened
    return f"{flattened[:limit]}...(+{len(flattened) - limit} chars)"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class StructuredLogger:
    """
    JSON-lines front end for a stdlib logger.

    The first instance for a name installs a stderr handler at INFO and
    stops propagation, so each line is written once.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.INFO)
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def _format_log(
        self,
        level: str,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> str:
        """Render one log entry; empty optional fields are left out."""
        entry: Dict[str, Any] = {"timestamp": _utc_timestamp(), "level": level, "message": message}
        optional = {"operation": operation, "context": context, "error": error}
        entry.update((key, value) for key, value in optional.items() if value)
        if duration_ms is not None:
            entry["duration_ms"] = round(duration_ms, 2)
        # context may carry paths or enums; stringify whatever json cannot encode
        return json.dumps(entry, ensure_ascii=False, default=str)

    def _log(self, level: int, message: str, **fields: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._format_log(logging.getLevelName(level), message, **fields))

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)


def log_operation(operation_name: str):
    """
    Log start, completion and failure of the wrapped call with its duration.

    When the first argument carries a run_number (a round's executor or
    runner), the number is added to the log context.

    Usage:
        @log_operation("dispatch_round")
        def execute(self):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = StructuredLogger(func.__module__)

            context: Dict[str, Any] = {"function": func.__name__}
            run_number = getattr(args[0], "run_number", None) if args else None
            if run_number is not None:
                context["run"] = run_number
            fields = {"operation": operation_name, "context": context}

            logger.debug(f"Starting {operation_name}", **fields)
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}",
                    error=str(e),
                    duration_ms=_elapsed_ms(started),
                    **fields,
                )
                raise

            logger.info(f"Completed {operation_name}", duration_ms=_elapsed_ms(started), **fields)
            return result

        return wrapper

    return decorator


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
