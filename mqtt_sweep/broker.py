"""
BrokerLink: the paho-mqtt client used by both actors.

paho runs its network loop in its own thread (``loop_start``); the callbacks
below only flip events and push inbound messages into a MessageStream, so the
owning actor sees a plain blocking iterator.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import CallbackAPIVersion

from .exceptions import BrokerError

log = logging.getLogger("mqtt_sweep.broker")


# --------------------------------------------------------------------------- #
# Value types
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class Message:
    topic:   str
    payload: bytes
    qos:     int

    def payload_str(self) -> str:
        if isinstance(self.payload, str):
            return self.payload
        return self.payload.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Will:
    """Last-will message the broker delivers if we vanish uncleanly."""
    topic:   str
    payload: str = "Consumer lost connection"
    qos:     int = 0
    retain:  bool = False


@dataclass(frozen=True)
class ConnectOptions:
    """Connection options. keep_alive and timeout are in seconds."""
    username:      str
    password:      str
    keep_alive:    float = 60.0
    timeout:       float = 10.0
    clean_session: bool = True
    will:          Optional[Will] = None

    @classmethod
    def from_config(cls, config, will: Optional[Will] = None) -> "ConnectOptions":
        return cls(
            username=config.creds.username,
            password=config.creds.password,
            keep_alive=config.client.keep_alive / 1000.0,
            timeout=config.client.timeout / 1000.0,
            clean_session=config.client.clean_session,
            will=will,
        )


# --------------------------------------------------------------------------- #
# Inbound stream
# --------------------------------------------------------------------------- #
_STOP = object()


class MessageStream:
    """
    Blocking, cancelable iterator over inbound messages.

    Yields a Message per delivery and None as a liveness signal: after a
    connection-lost callback, and whenever ``heartbeat`` seconds pass
    without traffic. Iteration ends after ``stop()``.
    """

    def __init__(self, heartbeat: float = 1.0):
        self.heartbeat = heartbeat
        self._queue: queue.Queue = queue.Queue()

    def put(self, item: Optional[Message]):
        self._queue.put(item)

    def stop(self):
        self._queue.put(_STOP)

    def __iter__(self) -> Iterator[Optional[Message]]:
        while True:
            try:
                item = self._queue.get(timeout=self.heartbeat)
            except queue.Empty:
                yield None
                continue
            if item is _STOP:
                return
            yield item


# --------------------------------------------------------------------------- #
# Client wrapper
# --------------------------------------------------------------------------- #
class BrokerLink:
    """Wraps a paho MQTT client with blocking connect / publish / subscribe."""

    def __init__(self, client_id: str, host: str, port: int, logger=None):
        self.client_id = client_id
        self.host = host
        self.port = port
        self.log = logger or log
        self.client: Optional[mqtt.Client] = None
        self._options: Optional[ConnectOptions] = None
        self._stream: Optional[MessageStream] = None

        self._connected = threading.Event()
        self._subscribed = threading.Event()
        self._connect_rc = None
        self._sub_codes: list = []
        # topic -> qos, restored when paho reconnects on its own without a session
        self._subscriptions: dict[str, int] = {}
        self._manual_reconnect = False

    @property
    def uri(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    @property
    def _timeout(self) -> Optional[float]:
        if self._options is None or self._options.timeout <= 0:
            return None
        return self._options.timeout

    # -- callbacks ---
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._connect_rc = reason_code
        if (not reason_code.is_failure and not self._manual_reconnect
                and self._subscriptions and not flags.session_present):
            self._restore_subscriptions(client)
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        if reason_code.is_failure:
            self.log.warning("Connection to %s lost: %s", self.uri, reason_code)
        if self._stream is not None:
            self._stream.put(None)

    def _on_message(self, client, userdata, msg):
        if self._stream is not None:
            self._stream.put(Message(msg.topic, msg.payload, msg.qos))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        self._sub_codes = list(reason_code_list)
        self._subscribed.set()

    # -- helpers ---
    def _build_client(self, options: ConnectOptions) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=options.clean_session,
            protocol=mqtt.MQTTv311,
        )
        if options.username:
            client.username_pw_set(options.username, options.password)
        if options.will is not None:
            w = options.will
            client.will_set(w.topic, w.payload, qos=w.qos, retain=w.retain)

        client.on_connect    = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message    = self._on_message
        client.on_subscribe  = self._on_subscribe
        return client

    def _require_client(self) -> mqtt.Client:
        if self.client is None:
            raise BrokerError(f"{self.client_id} is not connected")
        return self.client

    def _wait_connected(self):
        timeout = self._timeout
        if not self._connected.wait(timeout):
            raise BrokerError(f"connect to {self.uri} timed out after {timeout}s")
        rc = self._connect_rc
        if rc is not None and rc.is_failure:
            raise BrokerError(f"connection to {self.uri} refused: {rc}")

    # -- operations ---
    def connect(self, options: ConnectOptions):
        """Connect and wait for CONNACK. Raises BrokerError on any failure."""
        self._options = options
        self.client = self._build_client(options)
        self.log.debug("Initialised client %s for %s", self.client_id, self.uri)
        self._connected.clear()
        self._connect_rc = None
        self._subscriptions.clear()
        try:
            self.client.connect(self.host, self.port,
                                keepalive=max(1, int(options.keep_alive)))
        except (OSError, ValueError) as e:
            raise BrokerError(f"Unable to connect to {self.uri}: {e}") from e
        self.client.loop_start()
        try:
            self._wait_connected()
        except BrokerError:
            self.client.loop_stop()
            raise
        self.log.info("Connected to broker %s as %s", self.uri, self.client_id)

    def _restore_subscriptions(self, client):
        topics = list(self._subscriptions.items())
        rc, _mid = client.subscribe(topics)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            self.log.error("Could not restore subscriptions %s: %s", topics, mqtt.error_string(rc))
        else:
            self.log.warning("Session lost on reconnect, restored subscriptions %s", topics)

    def reconnect(self):
        """
        Reconnect from the calling thread.

        The network loop is stopped first so paho does not reconnect the same
        socket concurrently; if it already has, nothing is torn down.
        """
        client = self._require_client()
        self._manual_reconnect = True
        client.loop_stop()
        try:
            if not client.is_connected():
                self._connected.clear()
                try:
                    client.reconnect()
                except (OSError, ValueError) as e:
                    raise BrokerError(f"Reconnect to {self.uri} failed: {e}") from e
        finally:
            client.loop_start()
        try:
            self._wait_connected()
        finally:
            self._manual_reconnect = False

    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected()

    def disconnect(self):
        if self.client is None:
            return
        if self.client.is_connected():
            self.client.disconnect()
            self.log.info("Disconnected from the broker")
        else:
            self.log.info("Already disconnected from broker, ignoring disconnect call")
        self.client.loop_stop()
        self.stop_consuming()

    def publish(self, topic: str, payload, qos: int = 0, retain: bool = False):
        client = self._require_client()
        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        if qos > 0:
            try:
                info.wait_for_publish(timeout=self._timeout)
            except (RuntimeError, ValueError) as e:
                raise BrokerError(f"publish to {topic} failed: {e}") from e
            if not info.is_published():
                raise BrokerError(f"publish to {topic} not acknowledged")

    def subscribe_many(self, topics, qos):
        topics, qos = list(topics), list(qos)
        if len(topics) != len(qos):
            raise ValueError(f"{len(topics)} topics but {len(qos)} QoS levels")
        client = self._require_client()
        self._subscribed.clear()
        rc, _mid = client.subscribe(list(zip(topics, qos)))
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerError(f"Could not subscribe to topics {topics}: {mqtt.error_string(rc)}")
        if not self._subscribed.wait(self._timeout):
            raise BrokerError(f"Subscribe to {topics} timed out")
        refused = [t for t, code in zip(topics, self._sub_codes) if code.is_failure]
        if refused:
            raise BrokerError(f"Broker refused subscription to {refused}")
        self._subscriptions.update(zip(topics, qos))
        self.log.info("Subscribed to topics %s for QoS %s", topics, qos)

    def unsubscribe_many(self, topics):
        topics = list(topics)
        if not topics:
            return
        client = self._require_client()
        rc, _mid = client.unsubscribe(topics)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerError(f"Could not unsubscribe from {topics}: {mqtt.error_string(rc)}")
        for t in topics:
            self._subscriptions.pop(t, None)
        self.log.debug("Unsubscribed from %s", topics)

    def start_consuming(self, heartbeat: float = 1.0) -> MessageStream:
        self._stream = MessageStream(heartbeat)
        return self._stream

    def stop_consuming(self):
        if self._stream is not None:
            self._stream.stop()
            self._stream = None


LinkFactory = Callable[..., BrokerLink]


def link_factory(config) -> LinkFactory:
    """Build BrokerLinks for ``config.broker`` keyed by client id."""
    def make(client_id: str, logger=None) -> BrokerLink:
        return BrokerLink(client_id, config.broker.host, config.broker.port, logger)
    return make
