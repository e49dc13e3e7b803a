"""
Configuration loading.

Properties are read from a Java-style ``.properties`` file (dotted keys, no
sections) and validated into an immutable ``SweepConfig``. The config is built
once at startup and shared read-only by both actors.
"""

import configparser
import logging
import re
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError, ConfigFileError, InvalidPropertyError, MissingPropertyError

log = logging.getLogger("mqtt_sweep.config")

_SECTION = "properties"
_LIST_SPLIT = re.compile(r",\s*")

REQUIRED_KEYS = (
    "broker.host",
    "broker.port",
    "creds.username",
    "creds.password",
    "client.keep_alive",
    "client.timeout",
    "client.clean_session",
    "subscriber_connection.id",
    "subscriber_connection.retries",
    "subscriber_connection.retry_duration",
    "subscriber_connection.topics",
    "publisher_connection.id",
    "publisher_connection.topics",
    "publisher_connection.message_quantity",
)

OPTIONAL_KEYS = (
    "subscriber_connection.strategy",
    "subscriber_connection.will_topic",
    "sweep.qos_levels",
    "sweep.delays",
    "sweep.max_delay",
    "sweep.qos_topic",
    "sweep.delay_topic",
    "sweep.settle",
    "sweep.dwell",
    "sweep.heartbeat",
)


def _split_list(value):
    if isinstance(value, str):
        return [v for v in _LIST_SPLIT.split(value.strip()) if v]
    return value


# --------------------------------------------------------------------------- #
# Models
# --------------------------------------------------------------------------- #
class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BrokerAddress(_Frozen):
    host: str
    port: int = Field(ge=1, le=65535)


class Credentials(_Frozen):
    """Credentials used to connect to the broker."""
    username: str
    password: str


class ClientOptions(_Frozen):
    """
    Options shared by every paho client.

    keep_alive and timeout are in milliseconds.
    """
    keep_alive:    int = Field(ge=0)
    timeout:       int = Field(ge=0)
    clean_session: bool


class SubscriberConnection(_Frozen):
    """
    Probe settings.

    retries / retry_duration drive the reconnect policy (retry_duration in ms).
    strategy chooses between one long-lived connection and a fresh
    connection per sweep step.
    """
    id:             str
    retries:        int = Field(ge=0)
    retry_duration: int = Field(ge=0)
    topics:         tuple[str, ...] = Field(min_length=1)
    strategy:       Literal["long_lived", "per_step"] = "long_lived"
    will_topic:     str = "probe/status"

    split_topics = field_validator("topics", mode="before")(_split_list)


class PublisherConnection(_Frozen):
    """Driver settings. message_quantity is the burst size per grid point."""
    id:               str
    topics:           tuple[str, ...] = Field(min_length=1)
    message_quantity: int = Field(ge=1)

    split_topics = field_validator("topics", mode="before")(_split_list)


class SweepSettings(_Frozen):
    """Grid and pacing. settle, dwell and heartbeat are in seconds."""
    qos_levels:  tuple[Annotated[int, Field(ge=0, le=2)], ...] = (0, 1, 2)
    delays:      tuple[Annotated[int, Field(ge=0)], ...] = (0, 10, 20, 50, 100, 500)
    max_delay:   int   = Field(default=500, ge=0)
    qos_topic:   str   = "request/qos"
    delay_topic: str   = "request/delay"
    settle:      float = Field(default=2.0, ge=0.0)
    dwell:       float = Field(default=60.0, ge=0.0)
    heartbeat:   float = Field(default=1.0, gt=0.0)

    split_grid = field_validator("qos_levels", "delays", mode="before")(_split_list)


class SweepConfig(_Frozen):
    broker:                BrokerAddress
    creds:                 Credentials
    client:                ClientOptions
    subscriber_connection: SubscriberConnection
    publisher_connection:  PublisherConnection
    sweep:                 SweepSettings = SweepSettings()

    @property
    def broker_uri(self) -> str:
        return f"tcp://{self.broker.host}:{self.broker.port}"


# --------------------------------------------------------------------------- #
# Loading
# --------------------------------------------------------------------------- #
def read_properties(filename) -> dict[str, str]:
    """Read a ``.properties`` file into a flat key -> value dict."""
    path = Path(filename)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(str(filename)) from e

    parser = configparser.ConfigParser(
        delimiters=("=", ":"),
        comment_prefixes=("#", "!"),
        interpolation=None,
        strict=False,
    )
    parser.optionxform = str  # keys are case sensitive
    try:
        parser.read_string(f"[{_SECTION}]\n{text}", source=str(filename))
    except configparser.Error as e:
        raise ConfigError(f"could not parse properties in {filename}: {e}") from e
    return dict(parser[_SECTION])


def get_property(properties: dict[str, str], key: str, logger=None) -> str:
    logger = logger or log
    if not key:
        raise InvalidPropertyError(key, "empty key")
    value = properties.get(key)
    if value is None:
        logger.error("Could not find property: %s", key)
        raise MissingPropertyError(key)
    return value


def config_from_properties(properties: dict[str, str], logger=None) -> SweepConfig:
    """
    Validate flat properties into a SweepConfig.

    Raises MissingPropertyError / InvalidPropertyError naming the key.
    """
    logger = logger or log
    tree: dict[str, dict[str, str]] = {}
    for key in REQUIRED_KEYS:
        group, name = key.split(".", 1)
        tree.setdefault(group, {})[name] = get_property(properties, key, logger)
    for key in OPTIONAL_KEYS:
        if key in properties:
            group, name = key.split(".", 1)
            tree.setdefault(group, {})[name] = properties[key]

    try:
        return SweepConfig.model_validate(tree)
    except ValidationError as e:
        err = e.errors()[0]
        key = ".".join(str(p) for p in err["loc"][:2])
        logger.error("Could not parse value for config: %s (%s)", key, err["msg"])
        raise InvalidPropertyError(key, err["msg"]) from e


def load_config(filename, logger=None) -> SweepConfig:
    """Read and validate a ``.properties`` file."""
    logger = logger or log
    config = config_from_properties(read_properties(filename), logger)
    logger.debug("Loaded configuration from %s (broker %s)", filename, config.broker_uri)
    return config
