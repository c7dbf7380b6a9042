"""
Analytics and client error reporting routes for Harecame.
"""
import logging

from flask import Blueprint, jsonify
from flask_login import current_user

from ..auth import admin_required, event_access_required
from ..schemas import (
    ErrorReportRequest,
    InteractionRequest,
    PerformanceMetricRequest,
    error_response,
    validate_body,
)
from ..security import rate_limit
from ..services import analytics, events
from .api import _load_event, is_valid_uuid

analytics_bp = Blueprint("analytics", __name__)

CRITICAL_ERROR_KEYWORDS = (
    "ChunkLoadError",
    "NetworkError",
    "SecurityError",
    "LiveKit",
    "Camera",
    "Microphone",
)

_client_error_logger = None


def _get_client_error_logger():
    """Get or create the client error logger"""
    global _client_error_logger
    if _client_error_logger is None:
        _client_error_logger = logging.getLogger("harecame.client_errors")
        _client_error_logger.setLevel(logging.INFO)
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter("[ClientError] %(levelname)s %(message)s"))
        _client_error_logger.addHandler(console_handler)
    return _client_error_logger


def is_critical_report(message: str, stack: str = None) -> bool:
    return any(k in message or (stack and k in stack) for k in CRITICAL_ERROR_KEYWORDS)


# =============================================================================
# VIEWER ANALYTICS
# =============================================================================

@analytics_bp.route("/analytics/interactions", methods=["POST"])
@rate_limit("analytics")
def record_interaction():
    """Store a viewer interaction"""
    body, error = validate_body(InteractionRequest)
    if error:
        return error

    if not is_valid_uuid(body.event_id):
        return error_response("Invalid event ID format", 400)
    if events.get_event(body.event_id) is None:
        return error_response("Event not found", 404)

    metadata = dict(body.metadata or {})
    # Viewer tokens identify the viewer when the client sends no id
    viewer = current_user if current_user.is_authenticated else None
    if viewer is not None and viewer.token_type == "viewer" and viewer.can_access_event(body.event_id):
        metadata.setdefault("viewerId", viewer.id)
    if body.timestamp is not None:
        metadata.setdefault("clientTimestamp", body.timestamp)

    if analytics.record_interaction(body.event_id, body.action, metadata) is None:
        return error_response("Failed to record interaction", 500)

    return jsonify({"success": True, "message": "Interaction recorded successfully"})


@analytics_bp.route("/analytics/events/<event_id>", methods=["GET"])
@rate_limit("analytics")
@event_access_required("organizer")
def event_analytics(event_id):
    """Viewer analytics of one event"""
    event, error = _load_event(event_id)
    if error:
        return error

    return jsonify({"success": True, "data": analytics.event_analytics(event.id)})


# =============================================================================
# PERFORMANCE
# =============================================================================

@analytics_bp.route("/analytics/performance", methods=["POST"])
@rate_limit("analytics")
def record_performance():
    """Store a web-vital sample from a client"""
    body, error = validate_body(PerformanceMetricRequest)
    if error:
        return error

    if analytics.performance_stats.record(body.name, body.value):
        threshold = analytics.PERFORMANCE_THRESHOLDS[body.name]
        print(f"[Analytics] Performance issue detected - {body.name}: {body.value} (threshold: {threshold}) on {body.url}")

    return jsonify({"success": True})


@analytics_bp.route("/analytics/performance", methods=["GET"])
@rate_limit("analytics")
@admin_required
def performance_summary():
    """Running averages of received web-vital samples"""
    return jsonify({"success": True, "data": analytics.performance_stats.snapshot()})


# =============================================================================
# CLIENT ERRORS
# =============================================================================

@analytics_bp.route("/errors", methods=["POST"])
@rate_limit("error_reporting")
def report_error():
    """Receive a client-side error report"""
    body, error = validate_body(ErrorReportRequest)
    if error:
        return error

    logger = _get_client_error_logger()
    summary = f"{body.error_id} | {body.url or '-'} | {body.message}"
    critical = is_critical_report(body.message, body.stack)
    if critical:
        logger.warning(f"CRITICAL {summary} | {body.user_agent or '-'}")
    else:
        logger.info(summary)

    return jsonify(
        {
            "success": True,
            "message": "Error report received",
            "errorId": body.error_id,
            "critical": critical,
        }
    )
