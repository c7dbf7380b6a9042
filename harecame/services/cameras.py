"""
Camera connection records for Harecame.
"""
import secrets
import string
import time

from ..models.database import db, CameraConnection, utcnow

DISCONNECTED_STATUSES = ('inactive', 'error')
_PARTICIPANT_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_participant_id() -> str:
    """Server-assigned id for a camera joining by code: camera_<ms>_<rand6>"""
    suffix = ''.join(secrets.choice(_PARTICIPANT_SUFFIX_ALPHABET) for _ in range(6))
    return f"camera_{int(time.time() * 1000)}_{suffix}"


def create_connection(event, participant_id: str, participant_name: str = None,
                      device_info: dict = None) -> CameraConnection:
    """Register a phone joining the event's media room"""
    camera = CameraConnection(
        event_id=event.id,
        participant_id=participant_id,
        participant_name=participant_name,
        device_info=device_info or {},
        stream_quality={},
    )
    db.session.add(camera)
    db.session.commit()
    print(f"[Cameras] {participant_id} joined event {event.id} as {camera.id}")
    return camera


def get_connection(camera_id: str):
    return db.session.get(CameraConnection, camera_id)


def list_connections(event_id: str):
    """All connections of an event, most recently joined first"""
    return (
        CameraConnection.query.filter_by(event_id=event_id)
        .order_by(CameraConnection.joined_at.desc())
        .all()
    )


def active_connections(event_id: str):
    return (
        CameraConnection.query.filter_by(event_id=event_id, status='active')
        .order_by(CameraConnection.joined_at.desc())
        .all()
    )


def find_live_connection(event_id: str, participant_id: str):
    """The participant's connection that has not been marked inactive"""
    return (
        CameraConnection.query.filter_by(event_id=event_id, participant_id=participant_id)
        .filter(CameraConnection.status != 'inactive')
        .first()
    )


def update_status(camera: CameraConnection, status: str, stream_quality: dict = None) -> CameraConnection:
    """Record a status report from the camera"""
    now = utcnow()
    camera.status = status
    camera.last_active_at = now

    if stream_quality:
        camera.stream_quality = dict(stream_quality)

    if status in DISCONNECTED_STATUSES:
        camera.disconnected_at = now
    else:
        camera.disconnected_at = None

    db.session.commit()
    return camera


def delete_connection(camera: CameraConnection):
    db.session.delete(camera)
    db.session.commit()


def connection_duration(camera: CameraConnection) -> int:
    """Seconds since the camera joined"""
    if not camera.joined_at:
        return 0
    return max(0, int((utcnow() - camera.joined_at).total_seconds()))
