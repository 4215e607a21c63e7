"""
myrmidon/channels/mqtt_channel.py -- MQTT broadcast bus.

Carries the swarm's topics over an MQTT broker so rovers on different
hosts share the ``poses`` channel.

Optional config:
    broker_host:     MQTT broker hostname (default: localhost)
    broker_port:     Broker port (default: 1883)
    topic_prefix:    Namespace for every topic (default: none)
    username:        MQTT username  (or env MQTT_USERNAME)
    password:        MQTT password  (or env MQTT_PASSWORD)
    client_id:       MQTT client ID (default: myrmidon-<pid>)
    keepalive:       Keepalive in seconds (default: 60)
    qos:             QoS level 0/1/2 (default: 0)
    tls:             Enable TLS (default: false)

Config example::

    channels:
      type: mqtt
      broker_host: mqtt.example.com
      topic_prefix: swarm-a
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import Optional

from myrmidon.channels.base import BaseBus

logger = logging.getLogger("Myrmidon.Channel.MQTT")

try:
    import paho.mqtt.client as _mqtt_client

    HAS_PAHO = True
except ImportError:
    HAS_PAHO = False


def _reason_value(reason_code) -> int:
    """paho v2 passes a ReasonCode; tests and v1 shims pass a plain int."""
    return int(getattr(reason_code, "value", reason_code))


class MQTTBus(BaseBus):
    """MQTT bus powered by paho-mqtt.

    paho runs its network loop in a daemon thread; inbound messages are
    dispatched from that thread to the subscribers.
    """

    name = "mqtt"

    def __init__(self, config: Optional[dict] = None):
        super().__init__(config)
        cfg = self.config
        self._broker_host = cfg.get("broker_host", os.getenv("MQTT_BROKER_HOST", "localhost"))
        self._broker_port = int(cfg.get("broker_port", os.getenv("MQTT_BROKER_PORT", "1883")))
        self._username = cfg.get("username", os.getenv("MQTT_USERNAME", ""))
        self._password = cfg.get("password", os.getenv("MQTT_PASSWORD", ""))
        self._keepalive = int(cfg.get("keepalive", 60))
        self._qos = int(cfg.get("qos", 0))
        self._tls = bool(cfg.get("tls", False))
        self._client_id = cfg.get("client_id", f"myrmidon-{os.getpid()}")
        self._connect_timeout = float(cfg.get("connect_timeout_s", 10.0))
        self._client = None
        self._connected = threading.Event()
        self._running = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self):
        """Connect to the broker and subscribe to every registered topic."""
        if not HAS_PAHO:
            raise ImportError("paho-mqtt is not installed. Install with: pip install paho-mqtt")

        self._running = True
        self._client = _mqtt_client.Client(
            callback_api_version=_mqtt_client.CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
        )
        if self._username:
            self._client.username_pw_set(self._username, self._password)
        if self._tls:
            self._client.tls_set()

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        self._client.connect(self._broker_host, self._broker_port, self._keepalive)
        self._client.loop_start()

        await asyncio.to_thread(self._connected.wait, self._connect_timeout)
        if not self._connected.is_set():
            raise ConnectionError(
                f"MQTT: Could not connect to {self._broker_host}:{self._broker_port} "
                f"within {self._connect_timeout:.0f} s"
            )

        logger.info(
            "MQTT bus connected to %s:%d (prefix=%r)",
            self._broker_host,
            self._broker_port,
            self._prefix,
        )

    async def stop(self):
        """Disconnect from the broker."""
        self._running = False
        if self._client:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None
        self._connected.clear()
        logger.info("MQTT bus disconnected")

    def publish(self, topic: str, text: str) -> None:
        """Publish *text*; dropped (DEBUG-logged) while disconnected."""
        if self._client and self._connected.is_set():
            self._client.publish(self.full_topic(topic), text.encode(), qos=self._qos)
        else:
            logger.debug("MQTT not connected, dropping message on %r", topic)

    def _on_first_subscriber(self, topic: str) -> None:
        if self._client and self._connected.is_set():
            self._client.subscribe(self.full_topic(topic), qos=self._qos)

    # ── MQTT callbacks (execute in paho's internal thread) ────────────────────

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        rc = _reason_value(reason_code)
        if rc == 0:
            for topic in self.topics():
                client.subscribe(self.full_topic(topic), qos=self._qos)
            self._connected.set()
            logger.debug("MQTT connected (rc=%d), subscribed to %d topic(s)", rc, len(self.topics()))
        else:
            logger.error("MQTT connect failed: rc=%d", rc)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        rc = _reason_value(reason_code)
        if rc != 0:
            logger.warning("MQTT unexpected disconnect (rc=%d), will auto-reconnect", rc)
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        """Dispatch an inbound MQTT message to local subscribers."""
        if not self._running:
            return

        topic = self.relative_topic(msg.topic)
        if topic is None:
            return
        payload = msg.payload.decode("utf-8", errors="replace").strip()
        logger.debug("MQTT message on %r: %.80s", topic, payload)
        self._dispatch(topic, payload)
