"""
Shared fixtures: an in-memory stand-in for BrokerLink and config builders.

FakeBroker is used as the ``link_factory`` of both actors. Every link it
creates pops the next inbound script queued for that client id; scripts are
lists of Message, None (a liveness heartbeat) or LOST (the connection drops,
then a heartbeat is delivered).
"""

import threading
from collections import defaultdict, deque

import pytest

from mqtt_sweep.broker import Message
from mqtt_sweep.config import config_from_properties
from mqtt_sweep.exceptions import BrokerError

LOST = object()

BASE_PROPERTIES = {
    "broker.host":                          "localhost",
    "broker.port":                          "1883",
    "creds.username":                       "user",
    "creds.password":                       "secret",
    "client.keep_alive":                    "20000",
    "client.timeout":                       "5000",
    "client.clean_session":                 "true",
    "subscriber_connection.id":             "probe-1",
    "subscriber_connection.retries":        "3",
    "subscriber_connection.retry_duration": "10",
    "subscriber_connection.topics":         "response/{qos}/{delay}",
    "publisher_connection.id":              "driver-1",
    "publisher_connection.topics":          "response/{qos}/{delay}",
    "publisher_connection.message_quantity": "3",
    "sweep.settle":                         "0",
    "sweep.dwell":                          "0",
    "sweep.heartbeat":                      "0.01",
}


def msg(topic, payload, qos=0) -> Message:
    if isinstance(payload, str):
        payload = payload.encode()
    return Message(topic, payload, qos)


def burst(topic, count, qos=0):
    return [msg(topic, f"{i} qos={qos}", qos) for i in range(count)]


class FakeStream:
    """Re-iterable like MessageStream: each ``iter()`` resumes where the last stopped."""

    def __init__(self, link, script, idle=3):
        self.link = link
        self._items = deque(script)
        self._idle = idle
        self._stopped = threading.Event()

    def stop(self):
        self._stopped.set()

    def __iter__(self):
        idle = self._idle
        while not self._stopped.is_set():
            if self._items:
                item = self._items.popleft()
                if item is LOST:
                    self.link.connected = False
                    yield None
                else:
                    yield item
            elif idle > 0:
                idle -= 1
                self._stopped.wait(0.001)
                yield None
            else:
                return


class FakeLink:
    def __init__(self, client_id, script=(), fail_connect=False, publish_failures=(),
                 subscribe_failures=0, reconnect_results=(), idle=3):
        self.client_id = client_id
        self.script = list(script)
        self.fail_connect = fail_connect
        self.publish_failures = set(publish_failures)
        self.subscribe_failures = subscribe_failures
        self.reconnect_results = deque(reconnect_results)
        self.idle = idle

        self.connected = False
        self.options = None
        self.stream = None
        self.published = []
        self.publish_calls = 0
        self.subscriptions = []
        self.unsubscribed = []
        self.reconnect_calls = 0
        self.disconnects = 0

    def connect(self, options):
        if self.fail_connect:
            raise BrokerError("Unable to connect: connection refused")
        self.options = options
        self.connected = True

    def disconnect(self):
        self.connected = False
        self.disconnects += 1
        self.stop_consuming()

    def reconnect(self):
        self.reconnect_calls += 1
        result = self.reconnect_results.popleft() if self.reconnect_results else False
        if isinstance(result, Exception):
            raise result
        self.connected = bool(result)

    def is_connected(self):
        return self.connected

    def publish(self, topic, payload, qos=0, retain=False):
        self.publish_calls += 1
        if self.publish_calls in self.publish_failures:
            raise BrokerError(f"publish to {topic} refused")
        self.published.append((topic, payload, qos))

    def subscribe_many(self, topics, qos):
        if self.subscribe_failures:
            self.subscribe_failures -= 1
            raise BrokerError(f"Could not subscribe to topics {list(topics)}")
        self.subscriptions.append((list(topics), list(qos)))

    def unsubscribe_many(self, topics):
        self.unsubscribed.append(list(topics))

    def start_consuming(self, heartbeat=1.0):
        self.stream = FakeStream(self, self.script, self.idle)
        return self.stream

    def stop_consuming(self):
        if self.stream is not None:
            self.stream.stop()


class FakeBroker:
    """Link factory handing out FakeLinks."""

    def __init__(self):
        self.links = []
        self._scripts = defaultdict(deque)
        self.link_options = defaultdict(dict)

    def script(self, client_id, items):
        self._scripts[client_id].append(list(items))

    def __call__(self, client_id, logger=None):
        scripts = self._scripts[client_id]
        script = scripts.popleft() if scripts else []
        link = FakeLink(client_id, script, **self.link_options[client_id])
        self.links.append(link)
        return link

    def links_for(self, client_id):
        return [link for link in self.links if link.client_id == client_id]

    def last(self, client_id):
        return self.links_for(client_id)[-1]


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)
        return False


@pytest.fixture
def properties():
    return dict(BASE_PROPERTIES)


@pytest.fixture
def make_config(properties):
    def _make(overrides=None):
        props = dict(properties)
        props.update(overrides or {})
        return config_from_properties(props)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def fake_broker():
    return FakeBroker()


@pytest.fixture
def sleeper():
    return SleepRecorder()
