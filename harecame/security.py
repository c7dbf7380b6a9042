"""
Security middleware and utilities for Harecame.
Implements security headers, request rate limiting, and audit logging.
"""
import math
import re
import secrets
import logging
import threading
import time
from functools import wraps
from pathlib import Path

from flask import request, jsonify, current_app


# ============================================================================
# AUDIT LOGGING
# ============================================================================

_audit_logger = None


def _get_audit_logger():
    """Get or create the audit logger"""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = logging.getLogger('harecame.audit')
        _audit_logger.setLevel(logging.INFO)

        log_dir = current_app.config.get('AUDIT_LOG_DIR') if current_app else None
        if log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            # Format: timestamp | event_type | ip | user | details
            audit_file = log_dir / 'audit.log'
            file_handler = logging.FileHandler(audit_file)
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            _audit_logger.addHandler(file_handler)
            print(f"[Security] Audit logging enabled: {audit_file}")

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter('[Audit] %(message)s'))
        _audit_logger.addHandler(console_handler)

    return _audit_logger


def audit_log(event_type: str, ip: str, user: str = '-', details: str = ''):
    """Log a security-relevant event"""
    logger = _get_audit_logger()
    logger.info(f"{event_type} | {ip} | {user} | {details}")


# ============================================================================
# SECURITY HEADERS
# ============================================================================

CSP_DIRECTIVES = {
    'default-src': ["'self'"],
    'script-src': ["'self'", "'unsafe-inline'", 'https://www.youtube.com', 'https://www.google.com'],
    'style-src': ["'self'", "'unsafe-inline'", 'https://fonts.googleapis.com'],
    'font-src': ["'self'", 'https://fonts.gstatic.com'],
    'img-src': ["'self'", 'data:', 'https:', 'blob:'],
    'media-src': ["'self'", 'https:', 'blob:'],
    'connect-src': ["'self'", 'https:', 'wss:', 'ws:'],
    'frame-src': ["'self'", 'https://www.youtube.com', 'https://www.youtube-nocookie.com'],
    'worker-src': ["'self'", 'blob:'],
    'object-src': ["'none'"],
    'base-uri': ["'self'"],
    'form-action': ["'self'"],
    'frame-ancestors': ["'none'"],
}


def generate_csp_header() -> str:
    return '; '.join(f"{directive} {' '.join(sources)}" for directive, sources in CSP_DIRECTIVES.items())


def add_security_headers(response):
    """Add security headers to response"""
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-XSS-Protection'] = '1; mode=block'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    # Camera operators publish from the browser, so camera/mic stay allowed for our origin
    response.headers['Permissions-Policy'] = 'camera=(self), microphone=(self), geolocation=(), payment=()'
    response.headers['Content-Security-Policy'] = generate_csp_header()

    if current_app.config.get('HTTPS_ENABLED'):
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains; preload'

    # API data is live state; never cache it
    if request.path.startswith('/api/') and 'Cache-Control' not in response.headers:
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
        response.headers['Pragma'] = 'no-cache'

    return response


# ============================================================================
# RATE LIMITING
# ============================================================================

# Fixed windows: {key: [count, reset_at]}
_rate_windows = {}
_rate_lock = threading.Lock()


def reset_rate_limits():
    """Forget all rate limit windows"""
    with _rate_lock:
        _rate_windows.clear()


def _clean_expired_windows(now: float):
    for key in [k for k, (_, reset_at) in _rate_windows.items() if now > reset_at]:
        del _rate_windows[key]


def check_rate_limit(key: str, window: int, max_requests: int):
    """
    Count a request against a fixed window.
    Returns (allowed, seconds_until_reset, reset_at)
    """
    now = time.time()
    with _rate_lock:
        _clean_expired_windows(now)
        entry = _rate_windows.get(key)

        if entry is None:
            _rate_windows[key] = [1, now + window]
            return True, window, now + window

        count, reset_at = entry
        if count >= max_requests:
            return False, max(1, math.ceil(reset_at - now)), reset_at

        entry[0] += 1
        return True, math.ceil(reset_at - now), reset_at


def rate_limit(limit_name: str = 'default'):
    """Decorator applying one of the configured rate limits per client IP"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_app.config.get('RATE_LIMIT_ENABLED', True):
                return f(*args, **kwargs)

            window, max_requests = current_app.config['RATE_LIMITS'][limit_name]
            ip = get_request_ip()
            allowed, retry_after, reset_at = check_rate_limit(f"{limit_name}:{ip}", window, max_requests)

            if not allowed:
                audit_log('RATE_LIMITED', ip, details=f'{limit_name} on {request.path}')
                response = jsonify({
                    'success': False,
                    'error': 'Rate limit exceeded',
                    'retryAfter': retry_after,
                })
                response.status_code = 429
                response.headers['Retry-After'] = str(retry_after)
                response.headers['X-RateLimit-Limit'] = str(max_requests)
                response.headers['X-RateLimit-Remaining'] = '0'
                response.headers['X-RateLimit-Reset'] = str(int(reset_at))
                return response

            return f(*args, **kwargs)
        return decorated_function
    return decorator


# ============================================================================
# SECRET KEY GENERATION
# ============================================================================

def generate_secret_key():
    """Generate a cryptographically secure secret key"""
    secret_file = Path(__file__).parent.parent / '.secret_key'

    if secret_file.exists():
        return secret_file.read_text().strip()

    secret_key = secrets.token_hex(32)

    try:
        secret_file.write_text(secret_key)
        secret_file.chmod(0o600)  # Owner read/write only
        print(f"[Security] Generated new secret key (saved to {secret_file})")
    except (IOError, OSError):
        print("[Security] Generated ephemeral secret key (could not persist)")

    return secret_key


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def get_request_ip() -> str:
    """Get client IP from request, handling proxies"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    return request.remote_addr or '127.0.0.1'


def sanitize_string(value: str) -> str:
    """Strip markup and script-ish fragments from free text"""
    value = re.sub(r'[<>]', '', value)
    value = re.sub(r'javascript:', '', value, flags=re.IGNORECASE)
    value = re.sub(r'on\w+=', '', value, flags=re.IGNORECASE)
    return value.strip()


# ============================================================================
# SESSION SECURITY
# ============================================================================

def configure_session_security(app):
    """Configure secure session settings"""
    https_enabled = app.config.get('HTTPS_ENABLED', False)
    app.config['SESSION_COOKIE_SECURE'] = https_enabled
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Strict'

    if https_enabled:
        print("[Security] HTTPS mode: Secure cookies enabled")
    else:
        print("[Security] HTTP mode: Cookies not marked secure")
