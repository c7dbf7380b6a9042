"""
Authentication handlers for Harecame.
Stateless JWT bearer tokens loaded through Flask-Login's request loader.
Includes lockout of repeated admin key failures.
Includes audit logging for security events.
"""
import hmac
import time
from collections import defaultdict
from datetime import datetime, timezone
from functools import wraps

import jwt
from flask import current_app, g, request
from flask_login import LoginManager, UserMixin, current_user

from ..schemas import error_response
from ..security import audit_log, get_request_ip

TOKEN_TYPES = ('admin', 'organizer', 'camera', 'viewer')
JWT_ALGORITHM = 'HS256'

# Initialize Flask-Login
login_manager = LoginManager()

# Track failed admin key attempts: {ip: [timestamps]}
_failed_attempts = defaultdict(list)


class TokenUser(UserMixin):
    """Principal built from a verified token"""

    def __init__(self, payload: dict):
        self.payload = payload
        self.id = payload['sub']
        self.token_type = payload['type']
        self.event_id = payload.get('eventId')
        self.participant_name = payload.get('participantName')

    @property
    def is_admin(self) -> bool:
        return self.token_type == 'admin'

    def can_access_event(self, event_id: str) -> bool:
        return self.is_admin or self.event_id == event_id

    def __repr__(self):
        return f'<TokenUser {self.token_type}:{self.id}>'


def init_auth(app):
    """Initialize authentication for the Flask app"""
    login_manager.init_app(app)

    if not app.config.get('ADMIN_KEY'):
        print("[Auth] ADMIN_KEY not set - admin login disabled")
    if app.config.get('JWT_SECRET') == 'your-secret-key-change-in-production' and not app.config.get('TESTING'):
        print("\n" + "=" * 70)
        print("WARNING: DEFAULT JWT SECRET IN USE!")
        print("=" * 70)
        print("Anyone can forge tokens. Set JWT_SECRET in the environment.")
        print("=" * 70 + "\n")

    lifetimes = ', '.join(f"{t} {int(d.total_seconds() // 3600)}h" for t, d in app.config['TOKEN_LIFETIMES'].items())
    print(f"[Auth] JWT authentication enabled ({lifetimes})")


# =============================================================================
# TOKENS
# =============================================================================

def _issue_token(subject: str, token_type: str, event_id: str = None, participant_name: str = None) -> str:
    config = current_app.config
    now = datetime.now(timezone.utc)
    payload = {
        'sub': subject,
        'type': token_type,
        'iat': now,
        'exp': now + config['TOKEN_LIFETIMES'][token_type],
        'iss': config['JWT_ISSUER'],
        'aud': config['JWT_AUDIENCE'],
    }
    if event_id is not None:
        payload['eventId'] = event_id
    if participant_name is not None:
        payload['participantName'] = participant_name
    return jwt.encode(payload, config['JWT_SECRET'], algorithm=JWT_ALGORITHM)


def generate_admin_token(user_id: str, event_id: str = None) -> str:
    return _issue_token(user_id, 'admin', event_id)


def generate_organizer_token(user_id: str, event_id: str) -> str:
    return _issue_token(user_id, 'organizer', event_id)


def generate_camera_token(participant_id: str, event_id: str, participant_name: str = None) -> str:
    return _issue_token(participant_id, 'camera', event_id, participant_name)


def generate_viewer_token(viewer_id: str, event_id: str) -> str:
    return _issue_token(viewer_id, 'viewer', event_id)


def verify_token(token: str):
    """Decoded payload of a valid token, or None"""
    config = current_app.config
    try:
        payload = jwt.decode(
            token,
            config['JWT_SECRET'],
            algorithms=[JWT_ALGORITHM],
            audience=config['JWT_AUDIENCE'],
            issuer=config['JWT_ISSUER'],
        )
    except jwt.InvalidTokenError as e:
        print(f"[Auth] Token rejected: {e}")
        return None

    if payload.get('type') not in TOKEN_TYPES or not payload.get('sub'):
        return None
    return payload


def extract_token(req):
    """Bearer token from the Authorization header, falling back to the session cookie"""
    header = req.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        token = header[len('Bearer '):].strip()
        if token:
            return token
    return req.cookies.get(current_app.config['AUTH_COOKIE_NAME']) or None


@login_manager.request_loader
def load_user_from_request(req):
    """Build the current user from the request's token"""
    g.auth_token_rejected = False
    token = extract_token(req)
    if not token:
        return None

    payload = verify_token(token)
    if payload is None:
        g.auth_token_rejected = True
        audit_log('TOKEN_REJECTED', get_request_ip(), details=req.path)
        return None
    return TokenUser(payload)


@login_manager.unauthorized_handler
def unauthorized():
    if g.get('auth_token_rejected'):
        return error_response('Invalid or expired token', 401)
    return error_response('Authentication required', 401)


# =============================================================================
# DECORATORS
# =============================================================================

def event_access_required(*token_types):
    """
    Require a token for the route's event_id.
    Admin tokens always pass; other tokens must name the event and be one of token_types.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()

            if not current_user.is_admin:
                event_id = kwargs.get('event_id')
                if event_id is not None and not current_user.can_access_event(event_id):
                    audit_log('ACCESS_DENIED', get_request_ip(), current_user.id, f'{current_user.token_type} token for another event: {request.path}')
                    return error_response('Access denied for this event', 403)
                if token_types and current_user.token_type not in token_types:
                    return error_response('Insufficient permissions for this operation', 403)

            return f(*args, **kwargs)

        # Read by the API docs
        decorated_function.required_tokens = ('admin',) + tuple(t for t in (token_types or TOKEN_TYPES) if t != 'admin')
        return decorated_function
    return decorator


def admin_required(f):
    """Decorator to require an admin token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not current_user.is_admin:
            audit_log('ACCESS_DENIED', get_request_ip(), current_user.id, f'Admin route: {request.path}')
            return error_response('Admin access required', 403)
        return f(*args, **kwargs)
    decorated_function.required_tokens = ('admin',)
    return decorated_function


# =============================================================================
# ADMIN KEY LOGIN
# =============================================================================

def _clean_old_attempts(ip: str):
    """Remove attempts older than the tracking window"""
    current_time = time.time()
    window = current_app.config['ATTEMPT_WINDOW']
    _failed_attempts[ip] = [t for t in _failed_attempts[ip] if current_time - t < window]


def _record_failed_attempt(ip: str):
    """Record a failed login attempt"""
    _failed_attempts[ip].append(time.time())
    _clean_old_attempts(ip)
    print(f"[Auth] Failed admin login from {ip} ({len(_failed_attempts[ip])}/{current_app.config['MAX_FAILED_ATTEMPTS']})")


def _clear_failed_attempts(ip: str):
    """Clear failed attempts after successful login"""
    if ip in _failed_attempts:
        del _failed_attempts[ip]


def reset_failed_attempts():
    _failed_attempts.clear()


def is_rate_limited(ip: str) -> tuple[bool, int]:
    """
    Check if an IP is locked out.
    Returns (is_limited, seconds_remaining)
    """
    _clean_old_attempts(ip)
    attempts = _failed_attempts.get(ip, [])
    config = current_app.config

    if len(attempts) >= config['MAX_FAILED_ATTEMPTS']:
        time_since_lockout = time.time() - max(attempts)

        if time_since_lockout < config['LOCKOUT_DURATION']:
            return True, max(1, int(config['LOCKOUT_DURATION'] - time_since_lockout))
        _clear_failed_attempts(ip)

    return False, 0


def authenticate_admin_key(key: str) -> bool:
    """Check an admin key (with lockout)"""
    ip = get_request_ip()

    limited, remaining = is_rate_limited(ip)
    if limited:
        audit_log('LOGIN_RATE_LIMITED', ip, 'admin', f'Locked out for {remaining}s')
        return False

    expected = current_app.config.get('ADMIN_KEY') or ''
    if expected and key and hmac.compare_digest(key.encode('utf-8'), expected.encode('utf-8')):
        _clear_failed_attempts(ip)
        audit_log('LOGIN_SUCCESS', ip, 'admin', 'Admin key accepted')
        return True

    _record_failed_attempt(ip)
    attempts = len(_failed_attempts.get(ip, []))
    audit_log('LOGIN_FAILURE', ip, 'admin', f'Invalid admin key (attempt {attempts}/{current_app.config["MAX_FAILED_ATTEMPTS"]})')
    return False
