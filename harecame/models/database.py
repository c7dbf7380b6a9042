"""
SQLAlchemy database models for Harecame.
"""
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

EVENT_STATUSES = ('scheduled', 'live', 'ended')
CAMERA_STATUSES = ('connecting', 'active', 'inactive', 'error')
STREAM_HEALTH_VALUES = ('excellent', 'good', 'poor', 'critical', 'unknown')


def utcnow():
    """Naive UTC timestamp, matching what SQLite hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class Event(db.Model):
    """A live event organised around one media room"""
    __tablename__ = 'events'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    scheduled_at = db.Column(db.DateTime)
    status = db.Column(db.String(20), default='scheduled', nullable=False, index=True)
    participation_code = db.Column(db.String(10), unique=True, nullable=False, index=True)
    youtube_stream_url = db.Column(db.Text)
    youtube_stream_key = db.Column(db.Text)
    youtube_video_id = db.Column(db.String(50))
    livekit_room_name = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    cameras = db.relationship('CameraConnection', backref='event', lazy='dynamic',
                              cascade='all, delete-orphan')
    stream_status = db.relationship('StreamStatus', backref='event', uselist=False,
                                    cascade='all, delete-orphan')
    logs = db.relationship('EventLog', backref='event', lazy='dynamic',
                           cascade='all, delete-orphan')

    def to_dict(self, include_stream_key=True):
        """Convert to dictionary for API responses"""
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'scheduledAt': _iso(self.scheduled_at),
            'status': self.status,
            'participationCode': self.participation_code,
            'youtubeStreamUrl': self.youtube_stream_url,
            'youtubeVideoId': self.youtube_video_id,
            'livekitRoomName': self.livekit_room_name,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if include_stream_key:
            data['youtubeStreamKey'] = self.youtube_stream_key
        return data

    def to_public_dict(self):
        """Event info that is safe to show a camera operator"""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'scheduledAt': _iso(self.scheduled_at),
            'status': self.status,
            'participationCode': self.participation_code,
        }

    def __repr__(self):
        return f'<Event {self.participation_code} {self.title!r}>'


class CameraConnection(db.Model):
    """One phone's media session within an event"""
    __tablename__ = 'camera_connections'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    event_id = db.Column(db.String(36), db.ForeignKey('events.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    participant_id = db.Column(db.String(255), nullable=False, index=True)
    participant_name = db.Column(db.String(255))
    device_info = db.Column(db.JSON, default=dict)
    stream_quality = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default='connecting', nullable=False, index=True)
    joined_at = db.Column(db.DateTime, default=utcnow)
    last_active_at = db.Column(db.DateTime, default=utcnow)
    disconnected_at = db.Column(db.DateTime)

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'eventId': self.event_id,
            'participantId': self.participant_id,
            'participantName': self.participant_name,
            'deviceInfo': self.device_info or {},
            'streamQuality': self.stream_quality or {},
            'status': self.status,
            'joinedAt': _iso(self.joined_at),
            'lastActiveAt': _iso(self.last_active_at),
            'disconnectedAt': _iso(self.disconnected_at),
        }

    def __repr__(self):
        return f'<CameraConnection {self.participant_id} {self.status}>'


class StreamStatus(db.Model):
    """Current broadcast state of an event"""
    __tablename__ = 'stream_status'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    event_id = db.Column(db.String(36), db.ForeignKey('events.id', ondelete='CASCADE'),
                         unique=True, nullable=False)
    is_live = db.Column(db.Boolean, default=False, nullable=False)
    active_camera_count = db.Column(db.Integer, default=0, nullable=False)
    # Camera connection id of the broadcast source, None while in standby
    current_active_camera = db.Column(db.String(36))
    youtube_viewer_count = db.Column(db.Integer, default=0, nullable=False)
    stream_health = db.Column(db.String(20), default='unknown', nullable=False)
    last_switch_at = db.Column(db.DateTime)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'eventId': self.event_id,
            'isLive': self.is_live,
            'activeCameraCount': self.active_camera_count,
            'currentActiveCamera': self.current_active_camera,
            'youtubeViewerCount': self.youtube_viewer_count,
            'streamHealth': self.stream_health,
            'lastSwitchAt': _iso(self.last_switch_at),
            'updatedAt': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<StreamStatus {self.event_id} live={self.is_live}>'


class EventLog(db.Model):
    """Per-event activity trail"""
    __tablename__ = 'event_logs'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    event_id = db.Column(db.String(36), db.ForeignKey('events.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    camera_connection_id = db.Column(db.String(36),
                                     db.ForeignKey('camera_connections.id', ondelete='SET NULL'))
    log_type = db.Column(db.String(50), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    # "metadata" is reserved on declarative models
    details = db.Column('metadata', db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'eventId': self.event_id,
            'cameraConnectionId': self.camera_connection_id,
            'logType': self.log_type,
            'message': self.message,
            'metadata': self.details or {},
            'createdAt': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<EventLog {self.log_type} {self.created_at}>'


def init_db(app):
    """Initialize database and create tables"""
    db.init_app(app)

    with app.app_context():
        db.create_all()
        print(f"[Database] Initialized successfully ({Event.query.count()} events)")
