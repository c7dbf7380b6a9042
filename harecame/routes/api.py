"""
API routes for Harecame.
Handles events, camera connections, stream status and the live event stream.
"""
import io
import time
import uuid
from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, jsonify, request, send_file, stream_with_context
from flask_login import current_user

from ..auth import event_access_required, generate_camera_token, generate_organizer_token
from ..models.database import db
from ..schemas import (
    CameraStatusRequest,
    CreateEventRequest,
    JoinByCodeRequest,
    JoinEventRequest,
    ListEventsQuery,
    ListLogsQuery,
    ParticipationCodeRequest,
    StreamStatusRequest,
    UpdateEventRequest,
    error_response,
    validate_body,
    validate_query,
)
from ..security import audit_log, get_request_ip, rate_limit, sanitize_string
from ..services import broadcast, cameras, events, switchover, youtube
from ..services.media import MediaTokenError, generate_room_token
from ..services.qrcode import render_join_qr

api_bp = Blueprint("api", __name__)


def is_valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except ValueError:
        return False


def _load_event(event_id):
    """Returns (event, None) or (None, error_response)"""
    if not is_valid_uuid(event_id):
        return None, error_response("Invalid event ID format", 400)
    event = events.get_event(event_id)
    if event is None:
        return None, error_response("Event not found", 404)
    return event, None


def _can_manage(event) -> bool:
    """Admin, or the organizer of this event"""
    if not current_user.is_authenticated:
        return False
    return current_user.is_admin or (
        current_user.token_type == "organizer" and current_user.can_access_event(event.id)
    )


def _clean_text(value):
    return sanitize_string(value) if isinstance(value, str) else value


# =============================================================================
# HEALTH
# =============================================================================

@api_bp.route("/health", methods=["GET", "HEAD"])
def health_check():
    """Health check endpoint for load balancers"""
    started_at = current_app.config.get("STARTED_AT") or time.time()
    return jsonify(
        {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - started_at, 3),
        }
    )


# =============================================================================
# EVENTS
# =============================================================================

@api_bp.route("/events", methods=["GET"])
@rate_limit()
def list_events():
    """List events, newest first"""
    query, error = validate_query(ListEventsQuery)
    if error:
        return error

    items, total = events.list_events(query.limit, query.offset, query.status)
    return jsonify(
        {
            "success": True,
            "data": [e.to_dict(include_stream_key=_can_manage(e)) for e in items],
            "pagination": {"limit": query.limit, "offset": query.offset, "total": total},
        }
    )


@api_bp.route("/events", methods=["POST"])
@rate_limit("create_event")
def create_event():
    """Create an event and hand back an organizer token for it"""
    body, error = validate_body(CreateEventRequest)
    if error:
        return error

    event = events.create_event(
        _clean_text(body.title),
        description=_clean_text(body.description),
        scheduled_at=body.scheduled_at,
    )
    organizer_token = generate_organizer_token(f"organizer_{uuid.uuid4().hex}", event.id)
    audit_log("EVENT_CREATED", get_request_ip(), details=f"{event.id} ({event.participation_code})")

    return (
        jsonify(
            {
                "success": True,
                "data": event.to_dict(),
                "organizerToken": organizer_token,
                "message": "Event created successfully",
            }
        ),
        201,
    )


@api_bp.route("/events/<event_id>", methods=["GET"])
@rate_limit()
def get_event(event_id):
    """Get one event, optionally with its cameras and stream status"""
    event, error = _load_event(event_id)
    if error:
        return error

    data = event.to_dict(include_stream_key=_can_manage(event))
    if request.args.get("include_cameras", "").lower() == "true":
        data["cameras"] = [c.to_dict() for c in cameras.list_connections(event.id)]
    if request.args.get("include_status", "").lower() == "true":
        data["streamStatus"] = events.get_stream_status(event).to_dict()

    return jsonify({"success": True, "data": data})


@api_bp.route("/events/<event_id>", methods=["PUT"])
@rate_limit()
@event_access_required("organizer")
def update_event(event_id):
    """Update event details; ending an event disconnects its cameras"""
    event, error = _load_event(event_id)
    if error:
        return error

    body, error = validate_body(UpdateEventRequest)
    if error:
        return error

    changes = body.model_dump(exclude_unset=True)
    # Required columns cannot be cleared
    for field in ("title", "status"):
        if changes.get(field, "") is None:
            del changes[field]
    for field in ("title", "description"):
        if field in changes:
            changes[field] = _clean_text(changes[field])

    if changes.get("youtube_stream_url") and not changes.get("youtube_video_id"):
        video_id = youtube.extract_video_id(changes["youtube_stream_url"])
        if video_id:
            changes["youtube_video_id"] = video_id

    was_ended = event.status == "ended"
    events.update_event(event, **changes)

    if event.status == "ended" and not was_ended:
        switchover.end_event(event)
        print(f"[API] Event {event.id} ended")

    return jsonify({"success": True, "data": event.to_dict(), "message": "Event updated successfully"})


@api_bp.route("/events/<event_id>", methods=["DELETE"])
@rate_limit()
@event_access_required("organizer")
def delete_event(event_id):
    """Delete an event that is not live"""
    event, error = _load_event(event_id)
    if error:
        return error

    if event.status == "live":
        return error_response("Cannot delete a live event", 400)

    events.delete_event(event)
    switchover.forget_event(event_id)
    audit_log("EVENT_DELETED", get_request_ip(), current_user.id, event_id)

    return jsonify({"success": True, "message": "Event deleted successfully"})


@api_bp.route("/events/validate-code", methods=["POST"])
@rate_limit("join_event")
def validate_code():
    """Look up the event behind a participation code"""
    body, error = validate_body(ParticipationCodeRequest)
    if error:
        return error

    event = events.get_event_by_code(body.participation_code)
    if event is None:
        return error_response("Invalid participation code", 404)

    return jsonify({"success": True, "data": event.to_public_dict()})


# =============================================================================
# CAMERA JOIN
# =============================================================================

def _join(event, participant_id, participant_name=None, device_info=None):
    """Shared join flow for both join endpoints"""
    if event.status == "ended":
        return error_response("Event has ended", 400)

    participant_name = _clean_text(participant_name)

    # Checks and insert must not interleave with another join or status report
    with switchover.event_lock(event.id):
        if cameras.find_live_connection(event.id, participant_id) is not None:
            return error_response("Participant is already connected to this event", 409)

        if len(cameras.active_connections(event.id)) >= current_app.config["MAX_ACTIVE_CAMERAS"]:
            return error_response("Maximum number of active cameras reached", 429)

        events.record_log(
            event.id,
            "camera_join_request",
            f"Camera {participant_id} requested to join",
            {"participantName": participant_name, "deviceInfo": device_info or {}},
        )

        camera = cameras.create_connection(event, participant_id, participant_name, device_info)

        try:
            room_token = generate_room_token(
                event.livekit_room_name,
                participant_id,
                name=participant_name,
                metadata={"eventId": event.id, "cameraConnectionId": camera.id, "role": "camera"},
            )
        except MediaTokenError as e:
            print(f"[API] Media token failed for {participant_id}: {e}")
            cameras.delete_connection(camera)
            return error_response("Failed to generate media room token", 500)

        switchover.handle_camera_joined(camera)

    auth_token = generate_camera_token(participant_id, event.id, participant_name)

    return (
        jsonify(
            {
                "success": True,
                "data": {
                    "eventId": event.id,
                    "participantId": participant_id,
                    "cameraConnectionId": camera.id,
                    "roomName": event.livekit_room_name,
                    "roomToken": room_token,
                    "livekitUrl": current_app.config["LIVEKIT_URL"],
                    "authToken": auth_token,
                    "event": event.to_public_dict(),
                },
                "message": "Joined event successfully",
            }
        ),
        201,
    )


@api_bp.route("/events/join", methods=["POST"])
@rate_limit("join_event")
def join_by_code():
    """Join an event with its participation code; the server assigns the participant id"""
    body, error = validate_body(JoinByCodeRequest)
    if error:
        return error

    event = events.get_event_by_code(body.participation_code)
    if event is None:
        return error_response("Invalid participation code", 404)

    device_info = body.device_info.model_dump(by_alias=True, exclude_none=True) if body.device_info else {}
    return _join(event, cameras.generate_participant_id(), body.participant_name, device_info)


@api_bp.route("/events/<event_id>/join", methods=["POST"])
@rate_limit("join_event")
def join_event(event_id):
    """Join an event as a camera with a client-chosen participant id"""
    event, error = _load_event(event_id)
    if error:
        return error

    body, error = validate_body(JoinEventRequest)
    if error:
        return error

    device_info = body.device_info.model_dump(by_alias=True, exclude_none=True) if body.device_info else {}
    return _join(event, body.participant_id, body.participant_name, device_info)


# =============================================================================
# CAMERAS
# =============================================================================

@api_bp.route("/events/<event_id>/cameras", methods=["GET"])
@rate_limit()
def list_cameras(event_id):
    """All camera connections of an event, newest joined first"""
    event, error = _load_event(event_id)
    if error:
        return error

    connections = cameras.list_connections(event.id)
    return jsonify({"success": True, "data": [c.to_dict() for c in connections]})


@api_bp.route("/events/<event_id>/cameras/<camera_id>/status", methods=["PUT"])
@rate_limit("status_update")
@event_access_required("camera", "organizer")
def update_camera_status(event_id, camera_id):
    """Status report from a camera; drives the stream switchover"""
    if not is_valid_uuid(event_id) or not is_valid_uuid(camera_id):
        return error_response("Invalid ID format", 400)

    event, error = _load_event(event_id)
    if error:
        return error

    camera = cameras.get_connection(camera_id)
    if camera is None or camera.event_id != event.id:
        return error_response("Camera not found", 404)

    if current_user.token_type == "camera" and current_user.id != camera.participant_id:
        return error_response("Access denied for this camera", 403)

    body, error = validate_body(CameraStatusRequest)
    if error:
        return error

    quality = body.stream_quality.model_dump(by_alias=True, exclude_none=True) if body.stream_quality else None
    with switchover.event_lock(event.id):
        db.session.refresh(camera)
        previous_status = camera.status

        cameras.update_status(camera, body.status, quality)
        events.record_log(
            event.id,
            "camera_status_update",
            f"Camera {camera.participant_id} status: {previous_status} -> {body.status}",
            {"previousStatus": previous_status, "status": body.status, "streamQuality": quality or {}},
            camera_connection_id=camera.id,
        )

        stream_status = switchover.apply_status_change(camera, previous_status, quality)

    return jsonify(
        {
            "success": True,
            "data": camera.to_dict(),
            "streamStatus": stream_status.to_dict(),
            "message": "Camera status updated successfully",
        }
    )


# =============================================================================
# STREAM STATUS
# =============================================================================

def _refresh_viewer_count(event):
    """Pull the live viewer count from YouTube when the event has a video"""
    if not event.youtube_video_id or not youtube.is_configured():
        return
    try:
        stats = youtube.get_stream_stats(event.youtube_video_id)
    except youtube.VideoPlatformError as e:
        print(f"[API] Viewer count refresh failed for {event.id}: {e}")
        return
    switchover.upsert_status(event, youtube_viewer_count=stats["viewerCount"])


@api_bp.route("/events/<event_id>/status", methods=["GET"])
@rate_limit()
def get_stream_status(event_id):
    """Current stream status with the active cameras"""
    event, error = _load_event(event_id)
    if error:
        return error

    switchover.reconcile(event)
    _refresh_viewer_count(event)

    status = events.get_stream_status(event)
    data = status.to_dict()
    data["totalCameraCount"] = len(cameras.list_connections(event.id))
    data["lastUpdated"] = data["updatedAt"]

    return jsonify(
        {
            "success": True,
            "data": data,
            "cameras": [c.to_dict() for c in cameras.active_connections(event.id)],
        }
    )


@api_bp.route("/events/<event_id>/status", methods=["PUT"])
@rate_limit("status_update")
@event_access_required("organizer")
def update_stream_status(event_id):
    """Organizer override of the stream status, including manual camera switches"""
    event, error = _load_event(event_id)
    if error:
        return error

    body, error = validate_body(StreamStatusRequest)
    if error:
        return error

    fields = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    camera_id = fields.pop("current_active_camera", None)

    try:
        status = switchover.apply_manual_update(event, camera_id, **fields)
    except switchover.SwitchError as e:
        return error_response(str(e), 400)

    return jsonify({"success": True, "data": status.to_dict(), "message": "Stream status updated successfully"})


@api_bp.route("/events/<event_id>/stream", methods=["GET"])
def event_stream(event_id):
    """Server-Sent Events feed of stream changes"""
    event, error = _load_event(event_id)
    if error:
        return error

    config = current_app.config
    generator = broadcast.sse_stream(
        event.id,
        heartbeat_seconds=config["SSE_HEARTBEAT_SECONDS"],
        maxsize=config["SSE_QUEUE_SIZE"],
    )
    response = Response(stream_with_context(generator), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    print(f"[API] SSE client connected to {event.id}")
    return response


# =============================================================================
# ORGANIZER TOOLS
# =============================================================================

@api_bp.route("/events/<event_id>/qr.png", methods=["GET"])
@rate_limit()
@event_access_required("organizer")
def participation_qr(event_id):
    """QR code of the event's camera join link"""
    event, error = _load_event(event_id)
    if error:
        return error

    scale = min(max(request.args.get("scale", 8, type=int), 1), 20)
    png = render_join_qr(event.participation_code, current_app.config["PUBLIC_BASE_URL"], scale=scale)
    return send_file(
        io.BytesIO(png),
        mimetype="image/png",
        download_name=f"harecame_{event.participation_code}.png",
    )


@api_bp.route("/events/<event_id>/logs", methods=["GET"])
@rate_limit()
@event_access_required("organizer")
def event_logs(event_id):
    """Activity log of an event, newest first"""
    event, error = _load_event(event_id)
    if error:
        return error

    query, error = validate_query(ListLogsQuery)
    if error:
        return error

    entries = events.list_logs(event.id, limit=query.limit, log_type=query.log_type)
    return jsonify({"success": True, "data": [e.to_dict() for e in entries]})
