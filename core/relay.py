import logging
import socket
import threading
import time
import uuid

import paho.mqtt.client as mqtt
import requests

from core import config

logger = logging.getLogger(__name__)

MQTT_DEFAULT_PORT = 1883
MQTT_WEBSOCKET_PORT = 9001
KEEPALIVE = 60

'''Ports that are swapped before the broker attempt; the replacement speaks MQTT over WebSockets'''
PORT_SUBSTITUTIONS = {MQTT_DEFAULT_PORT: MQTT_WEBSOCKET_PORT}
WEBSOCKET_PORTS = {MQTT_WEBSOCKET_PORT}

MAX_TOPIC_BYTES = 65535     # two-byte length prefix in the PUBLISH header
MAX_PAYLOAD_BYTES = 65536   # relay is meant for short device commands


class FrameError(ValueError):
    '''The topic or payload cannot be published as given.'''


class RelayError(Exception):
    '''Base class for failures while relaying a message.'''


class ConnectTimeout(RelayError):
    pass


class ConnectRefused(RelayError):
    pass


class ProtocolError(RelayError):
    '''The broker did not accept the session (no CONNACK, refused CONNACK, failed WebSocket upgrade).'''


class TransportError(RelayError):
    pass


def candidate_port(port: int) -> int:
    return PORT_SUBSTITUTIONS.get(port, port)


def transport_for(port: int) -> str:
    '''WebSockets for substituted ports and the well known WebSocket listener, plain TCP otherwise.'''
    if port in PORT_SUBSTITUTIONS or candidate_port(port) in WEBSOCKET_PORTS:
        return "websockets"
    return "tcp"


def normalize_host(host: str) -> str:
    '''Drop a leading scheme such as ws:// or mqtt:// and any trailing slash.'''
    host = (host or "").strip()
    if "://" in host:
        host = host.split("://", 1)[1]
    return host.rstrip("/")


def check_frame(topic: str, message) -> bytes:

    '''
        Reject what cannot go out as one PUBLISH: empty or wildcard topics,
        topics over 65535 bytes and payloads over MAX_PAYLOAD_BYTES. Nothing is truncated.
    '''

    if not topic:
        raise FrameError("Topic must not be empty")
    if "+" in topic or "#" in topic:
        raise FrameError(f"Wildcards are not allowed in a publish topic: {topic}")
    encoded_topic = topic.encode("utf-8")
    if len(encoded_topic) > MAX_TOPIC_BYTES:
        raise FrameError(f"Topic is {len(encoded_topic)} bytes, maximum is {MAX_TOPIC_BYTES}")

    payload = message.encode("utf-8") if isinstance(message, str) else message
    if len(payload) > MAX_PAYLOAD_BYTES:
        raise FrameError(f"Payload is {len(payload)} bytes, maximum is {MAX_PAYLOAD_BYTES}")
    return payload


def broker_endpoint(host: str, port: int, transport: str) -> str:
    if transport == "websockets":
        return f"ws://{host}:{port}{config.RELAY_WS_PATH}"
    return f"mqtt://{host}:{port}"


# ===============================
# PRIMARY: MQTT BROKER
# ===============================

def publish_to_broker(host: str, port: int, transport: str, topic: str, payload: bytes, timeout: float, linger: float):

    '''
        Deliver one message with a short-lived paho session:
        connect, wait for CONNACK, publish (QoS 0), linger, disconnect.
        Once PUBLISH is written the message counts as delivered; QoS 0 has no receipt.
    '''

    endpoint = broker_endpoint(host, port, transport)
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=f"agri-{uuid.uuid4().hex[:12]}",
        transport=transport,
        reconnect_on_failure=False,
    )
    client.connect_timeout = timeout
    if transport == "websockets":
        client.ws_set_options(path=config.RELAY_WS_PATH)

    connack = threading.Event()
    outcome = {}

    def on_connect(client, userdata, flags, reason_code, properties):
        outcome["reason_code"] = reason_code
        connack.set()

    client.on_connect = on_connect

    try:
        client.connect(host, port, keepalive=KEEPALIVE)
    except socket.timeout as e:
        raise ConnectTimeout(f"Timed out after {timeout}s connecting to {endpoint}") from e
    except ConnectionRefusedError as e:
        raise ConnectRefused(f"Connection refused by {endpoint}") from e
    except mqtt.WebsocketConnectionError as e:
        raise ProtocolError(f"WebSocket upgrade rejected by {endpoint}: {e}") from e
    except (OSError, ValueError) as e:
        raise TransportError(f"Cannot connect to {endpoint}: {e}") from e

    client.loop_start()
    try:
        if not connack.wait(timeout):
            raise ProtocolError(f"No CONNACK from {endpoint} within {timeout}s")
        reason_code = outcome["reason_code"]
        if reason_code.is_failure:
            raise ProtocolError(f"Connection refused by broker at {endpoint}: {reason_code}")

        info = client.publish(topic, payload, qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Publish to {endpoint} failed: {mqtt.error_string(info.rc)}")
        try:
            info.wait_for_publish(timeout)
        except (RuntimeError, ValueError) as e:
            raise TransportError(f"Publish to {endpoint} failed: {e}") from e
        if not info.is_published():
            raise TransportError(f"Timed out after {timeout}s sending PUBLISH to {endpoint}")

        logger.info("Published %d bytes to %s on %s", len(payload), topic, endpoint)
        time.sleep(linger)
    finally:
        client.disconnect()
        client.loop_stop()


# ===============================
# FALLBACK: HTTP
# ===============================

def publish_over_http(url: str, topic: str, message: str, timeout: float):

    '''POST {topic, message} to a REST bridge. Any status below 400 counts as delivered.'''

    try:
        r = requests.post(url, json={"topic": topic, "message": message}, timeout=timeout)
    except requests.Timeout as e:
        raise ConnectTimeout(f"Timed out after {timeout}s posting to {url}") from e
    except requests.ConnectionError as e:
        raise ConnectRefused(f"Cannot reach {url}: {e}") from e
    except requests.RequestException as e:
        raise TransportError(f"HTTP error posting to {url}: {e}") from e

    if r.status_code >= 400:
        raise TransportError(f"{url} answered HTTP {r.status_code}")


# ===============================
# RELAY
# ===============================

def relay_message(host: str, port: int, topic: str, message: str, timeout: float = None, linger: float = None,
                  fallback_port: int = None, fallback_path: str = None) -> dict:

    '''
        Try the broker first and a REST bridge second. Never raises for transport problems;
        the returned dict says whether delivery happened and lists every attempt.
        FrameError (oversized or malformed topic/payload) is raised before any attempt.
        Each attempt is bounded by timeout, so a failure takes at most about 3 x timeout + linger.
    '''

    timeout = config.RELAY_CONNECT_TIMEOUT if timeout is None else timeout
    linger = config.RELAY_LINGER if linger is None else linger
    fallback_port = config.RELAY_FALLBACK_PORT if fallback_port is None else fallback_port
    fallback_path = config.RELAY_FALLBACK_PATH if fallback_path is None else fallback_path

    host = normalize_host(host)
    topic = topic or config.RELAY_DEFAULT_TOPIC
    payload = check_frame(topic, message)

    attempts = []

    broker_port = candidate_port(port)
    transport = transport_for(port)
    endpoint = broker_endpoint(host, broker_port, transport)
    try:
        publish_to_broker(host, broker_port, transport, topic, payload, timeout, linger)
        attempts.append({"endpoint": endpoint, "ok": True})
        return {"delivered": True, "via": endpoint, "topic": topic, "attempts": attempts}
    except RelayError as e:
        logger.warning("Broker attempt %s failed: %s", endpoint, e)
        attempts.append({"endpoint": endpoint, "ok": False, "error": f"{type(e).__name__}: {e}"})

    fallback_url = f"http://{host}:{fallback_port}{fallback_path}"
    try:
        publish_over_http(fallback_url, topic, message, timeout)
        attempts.append({"endpoint": fallback_url, "ok": True})
        logger.info("Delivered through HTTP fallback %s", fallback_url)
        return {"delivered": True, "via": fallback_url, "topic": topic, "attempts": attempts}
    except RelayError as e:
        logger.error("HTTP fallback %s failed: %s", fallback_url, e)
        attempts.append({"endpoint": fallback_url, "ok": False, "error": f"{type(e).__name__}: {e}"})

    return {"delivered": False, "via": None, "topic": topic, "attempts": attempts}
