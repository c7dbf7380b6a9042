"""
Event lifecycle and per-event activity log for Harecame.
"""
import secrets
import string
import time

from sqlalchemy.exc import IntegrityError

from ..models.database import db, Event, EventLog, StreamStatus

PARTICIPATION_CODE_LENGTH = 6
PARTICIPATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10


def generate_participation_code() -> str:
    """Random 6-character code from A-Z0-9"""
    return ''.join(secrets.choice(PARTICIPATION_CODE_ALPHABET) for _ in range(PARTICIPATION_CODE_LENGTH))


def is_valid_participation_code(code: str) -> bool:
    return (
        isinstance(code, str)
        and len(code) == PARTICIPATION_CODE_LENGTH
        and all(c in PARTICIPATION_CODE_ALPHABET for c in code)
    )


def create_event(title: str, description: str = None, scheduled_at=None) -> Event:
    """Create an event with a unique participation code and an empty stream status"""
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = generate_participation_code()
        event = Event(
            title=title,
            description=description,
            scheduled_at=scheduled_at,
            participation_code=code,
            livekit_room_name=f"event_{int(time.time() * 1000)}_{code}",
        )
        event.stream_status = StreamStatus()
        db.session.add(event)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            print(f"[Events] Participation code collision on attempt {attempt}, regenerating")
            continue

        print(f"[Events] Created event {event.id} ({code})")
        return event

    raise RuntimeError('Could not allocate a unique participation code')


def get_event(event_id: str):
    return db.session.get(Event, event_id)


def get_event_by_code(code: str):
    """Look up an event by participation code (case-insensitive)"""
    if not code:
        return None
    code = code.strip().upper()
    if not is_valid_participation_code(code):
        return None
    return Event.query.filter_by(participation_code=code).first()


def list_events(limit: int = 20, offset: int = 0, status: str = None):
    """List events newest first. Returns (events, total)"""
    query = Event.query
    if status:
        query = query.filter_by(status=status)
    total = query.count()
    events = query.order_by(Event.created_at.desc()).offset(offset).limit(limit).all()
    return events, total


def update_event(event: Event, **changes) -> Event:
    """Apply column changes to an event"""
    for field, value in changes.items():
        if not hasattr(Event, field):
            raise AttributeError(f'Unknown event field: {field}')
        setattr(event, field, value)
    db.session.commit()
    return event


def delete_event(event: Event):
    event_id = event.id
    db.session.delete(event)
    db.session.commit()
    print(f"[Events] Deleted event {event_id}")


def get_stream_status(event: Event) -> StreamStatus:
    """Stream status row of an event, created on first access"""
    if event.stream_status is None:
        event.stream_status = StreamStatus()
        db.session.commit()
    return event.stream_status


# =============================================================================
# EVENT LOGS
# =============================================================================

def record_log(event_id: str, log_type: str, message: str, metadata: dict = None,
               camera_connection_id: str = None):
    """
    Append an entry to the event's activity log.
    Logging failures never break the caller.
    """
    try:
        entry = EventLog(
            event_id=event_id,
            camera_connection_id=camera_connection_id,
            log_type=log_type,
            message=message,
            details=metadata or {},
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception as e:
        db.session.rollback()
        print(f"[EventLog] Failed to record {log_type} for {event_id}: {e}")
        return None


def list_logs(event_id: str, limit: int = 100, log_type: str = None):
    query = EventLog.query.filter_by(event_id=event_id)
    if log_type:
        query = query.filter_by(log_type=log_type)
    return query.order_by(EventLog.created_at.desc()).limit(limit).all()
