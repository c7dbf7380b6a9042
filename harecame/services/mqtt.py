"""
MQTT client for Harecame.
Mirrors stream events to an MQTT broker so viewer front-ends outside this
process can follow camera switches.
"""

import ssl
import json
import threading

import paho.mqtt.client as mqtt

_client = None
_client_lock = threading.Lock()
_topic_prefix = 'harecame'
_connected = False


def _on_connect(client, userdata, flags, reason_code, properties):
    """Called when connected to MQTT broker"""
    global _connected
    _connected = not reason_code.is_failure
    print(f"[MQTT] Connected with result code {reason_code}")


def _on_disconnect(client, userdata, flags, reason_code, properties):
    """Called when disconnected from MQTT broker"""
    global _connected
    _connected = False
    print(f"[MQTT] Disconnected with result code {reason_code}")


def _build_client(config):
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=config['MQTT_CLIENT_ID'])
    if config.get('MQTT_USERNAME'):
        client.username_pw_set(config['MQTT_USERNAME'], config.get('MQTT_PASSWORD') or None)

    if config.get('MQTT_USE_TLS'):
        # Brokers on the event LAN usually run with self-signed certs
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        client.tls_set_context(ssl_context)
        print("[MQTT] TLS encryption enabled")

    client.on_connect = _on_connect
    client.on_disconnect = _on_disconnect
    return client


def is_enabled() -> bool:
    return _client is not None


def start(config):
    """Start MQTT client in background thread with auto-reconnect"""
    global _client, _topic_prefix

    if not config.get('MQTT_BROKER'):
        print("[MQTT] No broker configured, stream events stay in-process")
        return False

    with _client_lock:
        if _client is not None:
            return True

        _topic_prefix = config.get('MQTT_TOPIC_PREFIX') or 'harecame'
        _client = _build_client(config)
        _client.reconnect_delay_set(min_delay=1, max_delay=30)
        try:
            _client.connect(config['MQTT_BROKER'], config['MQTT_PORT'], 60)
            print("[MQTT] Client started")
        except OSError as e:
            print(f"[MQTT] Initial connection failed: {e}")
            print("[MQTT] Will retry in background...")
        _client.loop_start()
    return True


def stop():
    """Stop MQTT client"""
    global _client
    with _client_lock:
        if _client is None:
            return
        _client.loop_stop()
        _client.disconnect()
        _client = None
    print("[MQTT] Client stopped")


def stream_topic(event_id: str) -> str:
    return f"{_topic_prefix}/events/{event_id}/stream"


def publish_event(message: dict) -> bool:
    """Publish a stream event for its event's topic"""
    client = _client
    if client is None:
        return False

    topic = stream_topic(message['eventId'])
    try:
        result = client.publish(topic, json.dumps(message), qos=1)
    except (ValueError, OSError) as e:
        print(f"[MQTT] Failed to publish {message.get('type')} to {topic}: {e}")
        return False

    if result.rc == mqtt.MQTT_ERR_SUCCESS:
        return True

    print(f"[MQTT] Failed to publish {message.get('type')} to {topic} (rc={result.rc})")
    return False
