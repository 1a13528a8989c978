"""
Error taxonomy and unified error capture with optional Sentry integration.

Tracking errors carry the HTTP status they surface as; the handlers in
``app.main`` turn them into ``{"error": ...}`` responses. Unexpected errors
go through ``capture_exception`` so they are logged with request context and
forwarded to Sentry when a DSN is configured.

Usage:
    raise NotFound("Pageview not found")

    with ErrorHandler("build_heatmap", context={"site_id": site.id}, reraise=True):
        build_page_heatmap(...)
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone
import structlog

from app.core.context import get_request_id, get_user_id, get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "TrackingError",
    "InvalidSite",
    "NotFound",
    "MalformedPayload",
    "TransientDeliveryFailure",
    "init_sentry",
    "capture_exception",
    "ErrorHandler",
    "is_sentry_enabled",
]


# ============== TAXONOMY ==============


class TrackingError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_detail: str = "server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidSite(TrackingError):
    """Unknown or deactivated site key. Terminal for the request."""

    status_code = 403
    default_detail = "invalid site key"


class NotFound(TrackingError):
    """Referenced pageview/site/funnel is missing or not owned by the caller."""

    status_code = 404
    default_detail = "not found"


class MalformedPayload(TrackingError):
    """Missing or wrong-typed required field."""

    status_code = 400
    default_detail = "missing fields"


class TransientDeliveryFailure(TrackingError):
    """
    Network failure between the tracker and the server.

    Only raised inside the tracker transport, where it is always swallowed.
    """

    status_code = 503
    default_detail = "delivery failed"


# ============== SENTRY ==============

_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
            ],
            before_send=_before_send,
        )

        _sentry_initialized = True
        logger.info("Sentry initialized", environment=environment)
        return True

    except ImportError:
        logger.warning("Sentry SDK not installed, error tracking disabled")
        return False
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop ingestion noise and tag events with the request id."""
    if "request" in event:
        url = event["request"].get("url", "")
        if "/health" in url:
            return None

    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id

    user_id = get_user_id()
    if user_id:
        event.setdefault("user", {})["id"] = str(user_id)

    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
) -> Optional[str]:
    """
    Capture an exception with structured logging and Sentry (when enabled).

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    # structlog takes the message as ``event``; keep a caller's key under another name
    log_context = dict(enriched_context)
    if "event" in log_context:
        log_context["context_event"] = log_context.pop("event")

    logger.error("Exception captured", exc_info=exc, **log_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None


class ErrorHandler:
    """
    Context manager for handling errors with automatic capture.

    Tracking errors are expected outcomes (bad key, missing pageview) and are
    never captured; anything else is logged/sent before being re-raised or
    suppressed.

    Usage:
        # Capture and re-raise (query endpoints)
        with ErrorHandler("session_timeline", reraise=True):
            ...

        # Capture and suppress (best-effort work)
        with ErrorHandler("flush_clicks"):
            ...
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.event_id: Optional[str] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False

        if isinstance(exc_val, TrackingError):
            return not self.reraise

        if self.capture:
            self.event_id = capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
            )

        return not self.reraise
