"""
Stream switchover for Harecame.

Decides which camera of an event is the visible broadcast source:

* last-in priority: a camera that starts streaming becomes the source
* failover: when the source disconnects, the most recently joined camera
  that is still active takes over
* standby: with no active camera left the event has no source

Every decision is persisted in the event's StreamStatus, written to the
event log and published to viewers.
"""
import threading
from collections import defaultdict

from ..models.database import db, utcnow
from . import broadcast, cameras, events

REASON_NEW_CAMERA = 'new-camera'
REASON_CAMERA_DISCONNECTED = 'camera-disconnected'
REASON_MANUAL_SWITCH = 'manual-switch'

# Status a camera keeps after leaving the source role, by disconnect reason
_DISCONNECT_STATUSES = {
    'error': 'error',
    'reconnecting': 'connecting',
}

# Per-event arbitration locks
_event_locks = defaultdict(threading.RLock)
_event_locks_guard = threading.Lock()


def event_lock(event_id: str):
    """Reentrant lock serializing arbitration and joins of one event"""
    with _event_locks_guard:
        return _event_locks[event_id]


def forget_event(event_id: str):
    """Drop the arbitration lock of a deleted event"""
    with _event_locks_guard:
        _event_locks.pop(event_id, None)


class SwitchError(ValueError):
    """A requested broadcast source cannot be used"""


def classify_transition(previous_status: str, new_status: str):
    """
    Map a camera status change to the arbitration it triggers.
    Returns ('started', None), ('disconnected', reason) or (None, None).
    Any move away from active is a disconnect: a camera that is not streaming
    cannot stay the broadcast source.
    """
    if new_status == 'active' and previous_status != 'active':
        return 'started', None
    if previous_status == 'active' and new_status == 'connecting':
        return 'disconnected', 'reconnecting'
    if previous_status == 'active' and new_status == 'inactive':
        return 'disconnected', 'manual_disconnect'
    if previous_status == 'active' and new_status == 'error':
        return 'disconnected', 'error'
    return None, None


def pick_source(candidates, exclude_id: str = None):
    """The most recently joined camera among candidates"""
    pool = [c for c in candidates if c.id != exclude_id]
    if not pool:
        return None
    return max(pool, key=lambda c: (c.joined_at, c.id))


# =============================================================================
# STREAM STATUS
# =============================================================================

def upsert_status(event, **fields):
    """Merge fields into the event's stream status, leaving the rest untouched"""
    status = events.get_stream_status(event)
    for field, value in fields.items():
        setattr(status, field, value)
    status.updated_at = utcnow()
    db.session.commit()
    return status


def recount(event):
    """Refresh the active camera count and live flag"""
    count = len(cameras.active_connections(event.id))
    return upsert_status(event, active_camera_count=count, is_live=count > 0)


def _switch(event, camera, reason: str, from_camera: str = None):
    status = events.get_stream_status(event)
    from_camera = from_camera if from_camera is not None else status.current_active_camera

    if status.current_active_camera == camera.id:
        return status

    status = upsert_status(event, current_active_camera=camera.id, last_switch_at=utcnow())

    details = {'fromCamera': from_camera, 'toCamera': camera.id, 'reason': reason}
    if reason == REASON_CAMERA_DISCONNECTED:
        message = f"Stream switched to camera {camera.participant_id} due to disconnection"
    else:
        message = f"Stream switched to camera {camera.participant_id}"
    events.record_log(event.id, 'stream_switched', message, details, camera_connection_id=camera.id)

    print(f"[Switchover] {event.id}: {from_camera} -> {camera.id} ({reason})")
    broadcast.publish(broadcast.make_message('stream-switched', event.id, details))
    return status


def _enter_standby(event, reason: str):
    status = events.get_stream_status(event)
    previous = status.current_active_camera
    status = upsert_status(event, current_active_camera=None)

    events.record_log(event.id, 'stream_standby', 'No active cameras - showing standby screen',
                      {'reason': reason})

    print(f"[Switchover] {event.id}: standby ({reason})")
    broadcast.publish(broadcast.make_message('stream-standby', event.id,
                                             {'fromCamera': previous, 'reason': reason}))
    return status


# =============================================================================
# CAMERA LIFECYCLE
# =============================================================================

def handle_camera_joined(camera):
    """A camera entered the room; it only becomes the source once it streams"""
    event = camera.event
    with event_lock(event.id):
        events.record_log(
            event.id, 'camera_joined', f"Camera {camera.participant_id} joined the event",
            {'participantName': camera.participant_name, 'deviceInfo': camera.device_info or {}},
            camera_connection_id=camera.id,
        )
        recount(event)
        broadcast.publish(broadcast.make_message(
            'camera-joined', event.id,
            {'participantName': camera.participant_name, 'deviceInfo': camera.device_info or {}},
            participant_id=camera.participant_id, camera_connection_id=camera.id,
        ))


def handle_camera_started_streaming(camera, stream_quality: dict = None):
    """Last-in priority: the camera that just went live becomes the source"""
    event = camera.event
    quality = {
        'resolution': 'unknown',
        'frameRate': 0,
        'bitrate': 0,
        'codec': 'unknown',
    }
    quality.update({k: v for k, v in (stream_quality or {}).items() if v is not None})

    with event_lock(event.id):
        if camera.status != 'active':
            cameras.update_status(camera, 'active', stream_quality)

        events.record_log(
            event.id, 'camera_streaming_started', f"Camera {camera.participant_id} started streaming",
            {'streamQuality': quality}, camera_connection_id=camera.id,
        )

        _switch(event, camera, REASON_NEW_CAMERA)
        status = recount(event)
        broadcast.publish(broadcast.make_message(
            'camera-started-streaming', event.id, {'streamQuality': quality},
            participant_id=camera.participant_id, camera_connection_id=camera.id,
        ))
        return status


def handle_camera_disconnected(camera, reason: str = 'manual_disconnect', duration: int = None):
    """Mark the camera gone and fail over if it was the source"""
    event = camera.event
    if duration is None:
        duration = cameras.connection_duration(camera)

    with event_lock(event.id):
        final_status = _DISCONNECT_STATUSES.get(reason, 'inactive')
        if camera.status != final_status:
            cameras.update_status(camera, final_status)

        events.record_log(
            event.id, 'camera_disconnected', f"Camera {camera.participant_id} disconnected",
            {'reason': reason, 'duration': duration}, camera_connection_id=camera.id,
        )

        status = events.get_stream_status(event)
        if status.current_active_camera == camera.id:
            successor = pick_source(cameras.active_connections(event.id), exclude_id=camera.id)
            if successor is not None:
                _switch(event, successor, REASON_CAMERA_DISCONNECTED, from_camera=camera.id)
            else:
                _enter_standby(event, 'all_cameras_disconnected')

        status = recount(event)
        broadcast.publish(broadcast.make_message(
            'camera-disconnected', event.id, {'reason': reason, 'duration': duration},
            participant_id=camera.participant_id, camera_connection_id=camera.id,
        ))
        return status


def apply_status_change(camera, previous_status: str, stream_quality: dict = None):
    """Run whatever arbitration a reported status change calls for"""
    kind, reason = classify_transition(previous_status, camera.status)
    if kind == 'started':
        return handle_camera_started_streaming(camera, stream_quality)
    if kind == 'disconnected':
        return handle_camera_disconnected(camera, reason)
    return recount(camera.event)


# =============================================================================
# ORGANIZER CONTROLS
# =============================================================================

def switch_to(event, camera_id: str, reason: str = REASON_MANUAL_SWITCH):
    """Make a specific active camera the broadcast source"""
    with event_lock(event.id):
        camera = cameras.get_connection(camera_id)
        if camera is None or camera.event_id != event.id:
            raise SwitchError('Camera does not belong to this event')
        if camera.status != 'active':
            raise SwitchError('Camera is not streaming')
        return _switch(event, camera, reason)


def reconcile(event):
    """
    Bring the stored stream status in line with the live camera set: fix the
    count and live flag, and repair a missing or stale broadcast source.
    """
    with event_lock(event.id):
        active = cameras.active_connections(event.id)
        status = events.get_stream_status(event)
        active_ids = {c.id for c in active}

        if active and status.current_active_camera not in active_ids:
            reason = REASON_NEW_CAMERA if status.current_active_camera is None else REASON_CAMERA_DISCONNECTED
            _switch(event, pick_source(active), reason)
        elif not active and status.current_active_camera is not None:
            _enter_standby(event, 'all_cameras_disconnected')

        status = events.get_stream_status(event)
        if status.active_camera_count != len(active) or status.is_live != bool(active):
            status = upsert_status(event, active_camera_count=len(active), is_live=bool(active))
        return status


def end_event(event):
    """Disconnect every remaining camera of an event that has ended"""
    with event_lock(event.id):
        remaining = [c for c in cameras.list_connections(event.id) if c.status != 'inactive']
        # Disconnect the source last so failover never lands on a camera about to leave
        status = events.get_stream_status(event)
        remaining.sort(key=lambda c: c.id == status.current_active_camera)

        for camera in remaining:
            if camera.status == 'active':
                handle_camera_disconnected(camera, 'event_ended')
            else:
                cameras.update_status(camera, 'inactive')

        if events.get_stream_status(event).current_active_camera is not None:
            _enter_standby(event, 'event_ended')
        return recount(event)


def apply_manual_update(event, camera_id: str = None, **fields):
    """Organizer override of the stream status; a new source goes through switch_to"""
    with event_lock(event.id):
        if camera_id is not None:
            switch_to(event, camera_id)
        if fields:
            return upsert_status(event, **fields)
        return events.get_stream_status(event)
