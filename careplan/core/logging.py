"""
PHI-safe logging module.
CRITICAL: Never log transcripts, plan content, rejection reasons or reviewer identities.
Only log identifiers of records, risk levels, statuses and error codes.
"""
import logging
import sys
from typing import Any, Optional

from careplan.core.config import get_settings


def setup_logging() -> None:
    """Configure application logging with PHI-safe format."""
    settings = get_settings()

    log_level = logging.DEBUG if settings.service_env == "dev" else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )


class SafeLogger:
    """
    PHI-safe logger wrapper.
    Context keys outside SAFE_FIELDS are silently dropped.
    """

    SAFE_FIELDS = frozenset({
        "request_id",
        "latency_ms",
        "status",
        "status_code",
        "error_code",
        "method",
        "path",
        "credential_mode",
        "exception_class",
        # Workflow identifiers
        "session_id",
        "suggestion_id",
        "plan_id",
        "version",
        "change_type",
        "risk_level",
        "flag_count",
        "goal_change_count",
        "attempt",
        "backend",
        "inference_ms",
        "modified",
    })

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _format_safe_context(self, context: dict[str, Any]) -> str:
        """Format only safe fields from context."""
        safe_items = []
        for key, value in context.items():
            if key in self.SAFE_FIELDS:
                safe_items.append(f"{key}={value}")
        return " | ".join(safe_items) if safe_items else ""

    def _emit(self, level: int, message: str, context: dict[str, Any]) -> None:
        ctx = self._format_safe_context(context)
        self._logger.log(level, f"{message} | {ctx}" if ctx else message)

    def info(self, message: str, **context: Any) -> None:
        self._emit(logging.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._emit(logging.WARNING, message, context)

    def error(
        self,
        message: str,
        error_code: Optional[str] = None,
        **context: Any
    ) -> None:
        """
        Log error with safe context only.
        NEVER log exception details that might contain PHI.
        """
        if error_code:
            context["error_code"] = error_code
        self._emit(logging.ERROR, message, context)

    def debug(self, message: str, **context: Any) -> None:
        self._emit(logging.DEBUG, message, context)


def get_safe_logger(name: str) -> SafeLogger:
    """Get a PHI-safe logger instance."""
    return SafeLogger(name)
