"""
Admin session routes for Harecame.
"""
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from ..auth import authenticate_admin_key, generate_admin_token, is_rate_limited, verify_token
from ..schemas import AdminLoginRequest, error_response, validate_body
from ..security import audit_log, get_request_ip

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/auth/admin", methods=["POST"])
def admin_login():
    """Exchange the admin key for an admin token and session cookie"""
    ip = get_request_ip()
    limited, remaining = is_rate_limited(ip)
    if limited:
        audit_log("LOGIN_RATE_LIMITED", ip, "admin", f"Locked out for {remaining}s")
        response, status = error_response(
            "Too many failed attempts. Try again later.", 429, retryAfter=remaining
        )
        response.headers["Retry-After"] = str(remaining)
        return response, status

    body, error = validate_body(AdminLoginRequest)
    if error:
        return error

    if not authenticate_admin_key(body.admin_key):
        return error_response("Invalid admin key", 401)

    token = generate_admin_token("admin", body.event_id)
    expires_at = datetime.fromtimestamp(verify_token(token)["exp"], timezone.utc)
    config = current_app.config

    response = jsonify(
        {
            "success": True,
            "data": {
                "token": token,
                "user": {"id": "admin", "type": "admin", "eventId": body.event_id},
                "expiresAt": expires_at.isoformat(),
            },
        }
    )
    response.set_cookie(
        config["AUTH_COOKIE_NAME"],
        token,
        max_age=config["AUTH_COOKIE_MAX_AGE"],
        httponly=True,
        secure=config.get("HTTPS_ENABLED", False),
        samesite="Strict",
        path="/",
    )
    return response


@auth_bp.route("/auth/admin", methods=["DELETE"])
def admin_logout():
    """Clear the admin session cookie"""
    response = jsonify({"success": True, "message": "Logged out"})
    response.delete_cookie(current_app.config["AUTH_COOKIE_NAME"], path="/")
    audit_log("LOGOUT", get_request_ip(), "admin", "Admin session cleared")
    return response
