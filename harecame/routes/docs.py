"""
Self-describing API documentation for Harecame.
Endpoints, auth and rate limits are read from the running app, so the
description always matches the registered routes and configuration.
"""
import re
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from ..schemas import error_response
from ..security import rate_limit

docs_bp = Blueprint("docs", __name__)

API_TITLE = "Harecame API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Live streaming service API for multi-camera events"

RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": "Request limit per window",
    "X-RateLimit-Remaining": "Remaining requests in current window",
    "X-RateLimit-Reset": "Window reset time (Unix timestamp)",
    "Retry-After": "Seconds to wait before retrying (when rate limited)",
}

_PATH_PARAM = re.compile(r"<(?:[^:<>]+:)?([^<>]+)>")


def _doc_path(rule: str) -> str:
    """/api/events/<event_id> -> /api/events/{event_id}"""
    return _PATH_PARAM.sub(r"{\1}", rule)


def describe_endpoints(app) -> list:
    """One entry per method and path of the API, sorted by path"""
    endpoints = []
    for rule in app.url_map.iter_rules():
        if not rule.rule.startswith("/api/"):
            continue
        view = app.view_functions[rule.endpoint]
        summary = (view.__doc__ or "").strip().splitlines()
        auth = list(getattr(view, "required_tokens", ()))
        for method in sorted(rule.methods - {"HEAD", "OPTIONS"}):
            endpoints.append(
                {
                    "method": method,
                    "path": _doc_path(rule.rule),
                    "summary": summary[0] if summary else "",
                    "auth": auth,
                }
            )
    return sorted(endpoints, key=lambda e: (e["path"], e["method"]))


def rate_limit_docs(config) -> dict:
    return {
        "description": "API endpoints are rate limited per client IP in fixed windows",
        "enabled": bool(config.get("RATE_LIMIT_ENABLED", True)),
        "limits": {
            name: {"windowSeconds": window, "maxRequests": max_requests}
            for name, (window, max_requests) in config["RATE_LIMITS"].items()
        },
        "headers": RATE_LIMIT_HEADERS,
    }


def auth_docs(config, endpoints) -> dict:
    return {
        "description": "Protected endpoints take a JWT bearer token; the admin session cookie is accepted too",
        "tokenTypes": {
            token_type: {"lifetimeSeconds": int(lifetime.total_seconds())}
            for token_type, lifetime in config["TOKEN_LIFETIMES"].items()
        },
        "protectedEndpoints": [f"{e['method']} {e['path']}" for e in endpoints if e["auth"]],
        "usage": {
            "header": "Authorization: Bearer <token>",
            "cookie": config["AUTH_COOKIE_NAME"],
        },
        "notes": [
            "POST /api/auth/admin exchanges the admin key for an admin token",
            "POST /api/events returns an organizer token for the new event",
            "Joining an event returns a camera token and a media room token",
        ],
    }


def examples(base_url: str) -> dict:
    api = f"{base_url.rstrip('/')}/api"
    return {
        "curl": {
            "listEvents": f"curl {api}/events?limit=10",
            "createEvent": (
                f"curl -X POST {api}/events -H 'Content-Type: application/json' "
                "-d '{\"title\": \"Sports Day\"}'"
            ),
            "joinByCode": (
                f"curl -X POST {api}/events/join -H 'Content-Type: application/json' "
                "-d '{\"participationCode\": \"ABC123\", \"participantName\": \"Stage Left\"}'"
            ),
            "reportCameraStatus": (
                f"curl -X PUT {api}/events/<eventId>/cameras/<cameraConnectionId>/status "
                "-H 'Authorization: Bearer <authToken>' -H 'Content-Type: application/json' "
                "-d '{\"status\": \"active\"}'"
            ),
            "followStream": f"curl -N {api}/events/<eventId>/stream",
        },
    }


@docs_bp.route("/docs", methods=["GET"])
@rate_limit()
def api_docs():
    """API documentation, whole or one section"""
    config = current_app.config
    section = request.args.get("section")
    endpoints = describe_endpoints(current_app)

    if section == "examples":
        return jsonify({"success": True, "data": examples(config["PUBLIC_BASE_URL"])})
    if section == "rate-limits":
        return jsonify({"success": True, "data": rate_limit_docs(config)})
    if section == "authentication":
        return jsonify({"success": True, "data": auth_docs(config, endpoints)})
    if section:
        return error_response("Unknown documentation section", 400,
                              sections=["examples", "rate-limits", "authentication"])

    return jsonify(
        {
            "success": True,
            "data": {
                "title": API_TITLE,
                "version": API_VERSION,
                "description": API_DESCRIPTION,
                "basePath": "/api",
                "endpoints": endpoints,
                "authentication": auth_docs(config, endpoints),
                "rateLimits": rate_limit_docs(config),
            },
            "meta": {
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "version": API_VERSION,
                "endpoints": len(endpoints),
            },
        }
    )
