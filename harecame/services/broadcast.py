"""
Real-time fan-out of stream events to viewers.
Subscribers are Server-Sent Events connections inside this process; when an
MQTT broker is configured every message is mirrored there as well.
"""
import json
import queue
import threading
import time
from collections import defaultdict

from . import mqtt

DEFAULT_QUEUE_SIZE = 100

# Subscriber queues per event: {event_id: [Queue]}
_subscribers = defaultdict(list)
_subscribers_lock = threading.Lock()


def now_ms() -> int:
    return int(time.time() * 1000)


def make_message(message_type: str, event_id: str, data: dict = None,
                 participant_id: str = None, camera_connection_id: str = None) -> dict:
    """Build a stream event message"""
    message = {
        'type': message_type,
        'eventId': event_id,
        'timestamp': now_ms(),
        'data': data or {},
    }
    if participant_id is not None:
        message['participantId'] = participant_id
    if camera_connection_id is not None:
        message['cameraConnectionId'] = camera_connection_id
    return message


def subscribe(event_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> queue.Queue:
    q = queue.Queue(maxsize=maxsize)
    with _subscribers_lock:
        _subscribers[event_id].append(q)
    return q


def unsubscribe(event_id: str, q: queue.Queue):
    with _subscribers_lock:
        queues = _subscribers.get(event_id)
        if not queues:
            return
        if q in queues:
            queues.remove(q)
        if not queues:
            del _subscribers[event_id]


def subscriber_count(event_id: str) -> int:
    with _subscribers_lock:
        return len(_subscribers.get(event_id, ()))


def _deliver(q: queue.Queue, message: dict):
    """Put without blocking; a slow subscriber loses its oldest message"""
    while True:
        try:
            q.put_nowait(message)
            return
        except queue.Full:
            try:
                q.get_nowait()
            except queue.Empty:
                pass


def publish(message: dict) -> int:
    """Deliver a message to every subscriber of its event. Returns the local delivery count"""
    event_id = message['eventId']
    with _subscribers_lock:
        queues = list(_subscribers.get(event_id, ()))

    for q in queues:
        _deliver(q, message)

    print(f"[Broadcast] {message['type']} for {event_id} -> {len(queues)} subscriber(s)")
    mqtt.publish_event(message)
    return len(queues)


def format_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


def sse_stream(event_id: str, heartbeat_seconds: float = 30, maxsize: int = DEFAULT_QUEUE_SIZE,
               max_messages: int = None):
    """
    Generator of SSE frames for one client: a connected frame, then every
    published message, with heartbeats during quiet periods.
    """
    q = subscribe(event_id, maxsize=maxsize)
    sent = 0
    try:
        yield format_sse({'type': 'connected', 'eventId': event_id, 'timestamp': now_ms()})
        while max_messages is None or sent < max_messages:
            try:
                message = q.get(timeout=heartbeat_seconds)
            except queue.Empty:
                message = {'type': 'heartbeat', 'timestamp': now_ms()}
            yield format_sse(message)
            sent += 1
    finally:
        unsubscribe(event_id, q)
