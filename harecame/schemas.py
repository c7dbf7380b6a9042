"""
Request validation for the Harecame API.
Request bodies use camelCase keys; models expose snake_case attributes.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from flask import jsonify, request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .models import CAMERA_STATUSES, EVENT_STATUSES, STREAM_HEALTH_VALUES
from .services.analytics import INTERACTION_ACTIONS

EventStatus = Literal[EVENT_STATUSES]
CameraStatus = Literal[CAMERA_STATUSES]
StreamHealth = Literal[STREAM_HEALTH_VALUES]
InteractionAction = Literal[INTERACTION_ACTIONS]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _http_url(value):
    if value is not None and not value.startswith(('http://', 'https://')):
        raise ValueError('Invalid URL')
    return value


def _naive_utc(value):
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _normalize_code(value):
    return value.strip().upper() if isinstance(value, str) else value


# =============================================================================
# EVENTS
# =============================================================================

class CreateEventRequest(ApiModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    scheduled_at: Optional[datetime] = None

    normalize_scheduled_at = field_validator('scheduled_at')(_naive_utc)


class UpdateEventRequest(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    scheduled_at: Optional[datetime] = None
    status: Optional[EventStatus] = None
    youtube_stream_url: Optional[str] = None
    youtube_stream_key: Optional[str] = None
    youtube_video_id: Optional[str] = Field(default=None, max_length=50)

    normalize_scheduled_at = field_validator('scheduled_at')(_naive_utc)
    check_stream_url = field_validator('youtube_stream_url')(_http_url)


class ListEventsQuery(ApiModel):
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    status: Optional[EventStatus] = None


class ListLogsQuery(ApiModel):
    limit: int = Field(default=100, ge=1, le=500)
    log_type: Optional[str] = None


class ParticipationCodeRequest(ApiModel):
    participation_code: str = Field(pattern=r'^[A-Z0-9]{6}$')

    normalize_code = field_validator('participation_code', mode='before')(_normalize_code)


# =============================================================================
# CAMERAS
# =============================================================================

class DeviceInfo(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    connection_type: Optional[str] = None
    platform: Optional[str] = None
    browser: Optional[str] = None


class JoinEventRequest(ApiModel):
    participant_id: str = Field(min_length=1, max_length=100)
    participant_name: Optional[str] = Field(default=None, max_length=100)
    device_info: Optional[DeviceInfo] = None


class JoinByCodeRequest(ApiModel):
    participation_code: str = Field(pattern=r'^[A-Z0-9]{6}$')
    participant_name: Optional[str] = Field(default=None, max_length=100)
    device_info: Optional[DeviceInfo] = None

    normalize_code = field_validator('participation_code', mode='before')(_normalize_code)


class StreamQuality(ApiModel):
    resolution: Optional[str] = None
    frame_rate: Optional[float] = Field(default=None, ge=1, le=120)
    bitrate: Optional[float] = Field(default=None, ge=1, le=50000)
    codec: Optional[str] = None


class CameraStatusRequest(ApiModel):
    status: CameraStatus
    stream_quality: Optional[StreamQuality] = None


class StreamStatusRequest(ApiModel):
    is_live: Optional[bool] = None
    active_camera_count: Optional[int] = Field(default=None, ge=0, le=10)
    current_active_camera: Optional[str] = None
    youtube_viewer_count: Optional[int] = Field(default=None, ge=0)
    stream_health: Optional[StreamHealth] = None

    @field_validator('current_active_camera')
    @classmethod
    def require_camera_id(cls, value):
        # Standby follows from the camera set; it cannot be forced while cameras stream
        if value is None:
            raise ValueError('currentActiveCamera cannot be cleared; switch to an active camera instead')
        return value


# =============================================================================
# AUTH
# =============================================================================

class AdminLoginRequest(ApiModel):
    admin_key: str = Field(min_length=1)
    event_id: Optional[str] = None


# =============================================================================
# ANALYTICS / ERROR REPORTING
# =============================================================================

class InteractionRequest(ApiModel):
    event_id: str = Field(min_length=1)
    action: InteractionAction
    timestamp: Optional[Union[float, str]] = None
    metadata: Optional[Dict[str, Any]] = None


class PerformanceMetricRequest(ApiModel):
    name: str = Field(min_length=1)
    value: float = Field(ge=0)
    id: str = Field(min_length=1)
    timestamp: float = Field(ge=0)
    url: str
    user_agent: str = Field(min_length=1)
    details: Optional[Dict[str, Any]] = None

    check_url = field_validator('url')(_http_url)


class ErrorReportRequest(ApiModel):
    message: str = Field(min_length=1)
    error_id: str = Field(min_length=1)
    stack: Optional[str] = None
    component_stack: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[Union[float, str]] = None


# =============================================================================
# HELPERS
# =============================================================================

def error_response(message: str, status: int, **extra):
    """JSON error envelope"""
    body = {'success': False, 'error': message}
    body.update(extra)
    return jsonify(body), status


def format_validation_errors(error: ValidationError) -> dict:
    """Flatten pydantic errors to {field: [messages]}"""
    details = {}
    for item in error.errors():
        field = '.'.join(str(part) for part in item['loc']) or 'body'
        details.setdefault(field, []).append(item['msg'])
    return details


def validate_data(model, payload):
    """
    Validate already-decoded data against a model.
    Returns (instance, None) or (None, error_response).
    """
    try:
        return model.model_validate(payload), None
    except ValidationError as e:
        return None, error_response('Invalid request data', 400, details=format_validation_errors(e))


def validate_body(model):
    """Validate the JSON request body. Returns (instance, None) or (None, error_response)"""
    raw = request.get_data(cache=True)
    if not raw or not raw.strip():
        payload = {}
    else:
        try:
            payload = json.loads(raw)
        except ValueError:
            return None, error_response('Invalid JSON in request body', 400)
    return validate_data(model, payload)


def validate_query(model):
    return validate_data(model, request.args.to_dict())
