"""
Database models for Harecame.
"""
from .database import (
    db,
    init_db,
    utcnow,
    Event,
    CameraConnection,
    StreamStatus,
    EventLog,
    EVENT_STATUSES,
    CAMERA_STATUSES,
    STREAM_HEALTH_VALUES,
)
