"""
Authentication module for Harecame.
"""
from .handlers import (
    login_manager,
    init_auth,
    TokenUser,
    generate_admin_token,
    generate_organizer_token,
    generate_camera_token,
    generate_viewer_token,
    verify_token,
    extract_token,
    event_access_required,
    admin_required,
    authenticate_admin_key,
    is_rate_limited,
    reset_failed_attempts,
)
