"""Tests for .properties loading and validation."""

import pytest
from pydantic import ValidationError

from mqtt_sweep.config import (REQUIRED_KEYS, config_from_properties, get_property, load_config,
                               read_properties)
from mqtt_sweep.exceptions import (ConfigError, ConfigFileError, InvalidPropertyError,
                                   MissingPropertyError)

PROPERTIES_FILE = """\
# Broker
broker.host=broker.local
broker.port=1884
! credentials use the colon form
creds.username: sweeper
creds.password: s3cret

client.keep_alive=20000
client.timeout=5000
client.clean_session=false

subscriber_connection.id=probe
subscriber_connection.retries=5
subscriber_connection.retry_duration=2000
subscriber_connection.topics=request/#, response/#

publisher_connection.id=driver
publisher_connection.topics=response/{qos}/{delay}
publisher_connection.message_quantity=10

sweep.qos_levels=0,2
sweep.delays=0, 10, 100
"""


class TestReadProperties:

    def test_reads_flat_keys(self, tmp_path):
        path = tmp_path / "sweep.properties"
        path.write_text(PROPERTIES_FILE)
        props = read_properties(path)
        assert props["broker.host"] == "broker.local"
        assert props["creds.username"] == "sweeper"
        assert props["subscriber_connection.topics"] == "request/#, response/#"
        assert props["publisher_connection.topics"] == "response/{qos}/{delay}"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileError, match="could not read file"):
            read_properties(tmp_path / "nope.properties")

    def test_load_config(self, tmp_path):
        path = tmp_path / "sweep.properties"
        path.write_text(PROPERTIES_FILE)
        config = load_config(path)
        assert config.broker_uri == "tcp://broker.local:1884"
        assert config.client.clean_session is False
        assert config.subscriber_connection.topics == ("request/#", "response/#")
        assert config.subscriber_connection.retries == 5
        assert config.publisher_connection.message_quantity == 10
        assert config.sweep.qos_levels == (0, 2)
        assert config.sweep.delays == (0, 10, 100)


class TestConfigFromProperties:

    def test_defaults(self, config):
        assert config.subscriber_connection.strategy == "long_lived"
        assert config.subscriber_connection.will_topic == "probe/status"
        assert config.sweep.max_delay == 500
        assert config.sweep.qos_topic == "request/qos"
        assert config.sweep.delay_topic == "request/delay"

    def test_sweep_group_is_optional(self, properties):
        for key in [k for k in properties if k.startswith("sweep.")]:
            del properties[key]
        config = config_from_properties(properties)
        assert config.sweep.delays == (0, 10, 20, 50, 100, 500)
        assert config.sweep.dwell == 60.0

    @pytest.mark.parametrize("key", REQUIRED_KEYS)
    def test_missing_key_is_named(self, properties, key):
        del properties[key]
        with pytest.raises(MissingPropertyError) as exc:
            config_from_properties(properties)
        assert exc.value.key == key
        assert str(exc.value) == f"property does not exist in configuration: {key}"

    @pytest.mark.parametrize("key, value", [
        ("broker.port", "not-a-port"),
        ("broker.port", "70000"),
        ("client.timeout", "-1"),
        ("publisher_connection.message_quantity", "0"),
        ("subscriber_connection.strategy", "sometimes"),
        ("sweep.max_delay", "soon"),
    ])
    def test_invalid_value_is_named(self, make_config, key, value):
        with pytest.raises(InvalidPropertyError) as exc:
            make_config({key: value})
        assert exc.value.key == key

    def test_qos_level_out_of_range(self, make_config):
        with pytest.raises(InvalidPropertyError) as exc:
            make_config({"sweep.qos_levels": "0, 3"})
        assert exc.value.key == "sweep.qos_levels"

    def test_config_errors_share_a_base(self, properties):
        del properties["broker.host"]
        with pytest.raises(ConfigError):
            config_from_properties(properties)

    def test_config_is_immutable(self, config):
        with pytest.raises(ValidationError):
            config.broker.port = 1

    def test_per_step_strategy(self, make_config):
        config = make_config({"subscriber_connection.strategy": "per_step"})
        assert config.subscriber_connection.strategy == "per_step"


class TestGetProperty:

    def test_present(self):
        assert get_property({"a.b": "1"}, "a.b") == "1"

    def test_absent(self, caplog):
        with pytest.raises(MissingPropertyError):
            get_property({}, "a.b")
        assert "Could not find property: a.b" in caplog.text

    def test_empty_key(self):
        with pytest.raises(InvalidPropertyError):
            get_property({"": "x"}, "")
