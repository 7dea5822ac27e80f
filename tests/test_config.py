"""
Tests for configuration loading
"""

import logging

import pytest

from arsnova_client.core import ClientConfiguration, ConfigurationError, ConfigurationManager, setup_logging


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(ConfigurationManager.ENV_MAPPINGS) + ['ARSNOVA_ENVIRONMENT']:
        monkeypatch.delenv(name, raising=False)


def write_config(base, name, text):
    config_dir = base / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / name).write_text(text, encoding='utf-8')


class TestClientConfiguration:
    """Validation and derived values"""

    def test_defaults(self):
        config = ClientConfiguration()

        assert config.api_url == "https://ars.particify.de/api"
        assert config.heartbeat_interval == 15.0
        assert config.max_reconnect_attempts == 3

    def test_websocket_url(self):
        assert ClientConfiguration(api_url="https://host/api/").websocket_url == "wss://host/api/ws/websocket"
        assert ClientConfiguration(api_url="http://localhost:8080").websocket_url == "ws://localhost:8080/ws/websocket"

    def test_backoff_delay_doubles_up_to_max(self):
        config = ClientConfiguration(reconnect_backoff_base=1.0, reconnect_backoff_max=5.0)

        assert [config.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    @pytest.mark.parametrize("overrides", [
        {'api_url': "ftp://host"},
        {'log_level': "LOUD"},
        {'channel_capacity': 0},
        {'heartbeat_interval': 0},
        {'reconnect_backoff_base': 10.0, 'reconnect_backoff_max': 1.0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ClientConfiguration(**overrides)


class TestConfigurationManager:
    """Layered configuration sources"""

    def test_missing_files_give_defaults(self, tmp_path):
        config = ConfigurationManager(tmp_path).load_configuration()
        assert config == ClientConfiguration()

    def test_environment_file_overrides_default(self, tmp_path, monkeypatch):
        monkeypatch.setenv('ARSNOVA_ENVIRONMENT', 'testing')
        write_config(tmp_path, "default.yaml", "heartbeat_interval: 10\nchannel_capacity: 4\n")
        write_config(tmp_path, "testing.yaml", "heartbeat_interval: 0.5\n")

        config = ConfigurationManager(tmp_path).load_configuration()

        assert config.heartbeat_interval == 0.5
        assert config.channel_capacity == 4

    def test_environment_variables_override_files(self, tmp_path, monkeypatch):
        write_config(tmp_path, "default.yaml", "channel_capacity: 4\n")
        monkeypatch.setenv('ARSNOVA_CHANNEL_CAPACITY', '7')

        config = ConfigurationManager(tmp_path).load_configuration()
        assert config.channel_capacity == 7

    def test_explicit_overrides_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv('ARSNOVA_CHANNEL_CAPACITY', '7')

        config = ConfigurationManager(tmp_path).load_configuration(channel_capacity=2)
        assert config.channel_capacity == 2

    def test_invalid_value_raises_configuration_error(self, tmp_path):
        write_config(tmp_path, "default.yaml", "max_reconnect_attempts: 0\n")

        with pytest.raises(ConfigurationError):
            ConfigurationManager(tmp_path).load_configuration()

    @pytest.mark.parametrize("text", ["api_url: [unclosed\n", "- just\n- a list\n"])
    def test_unreadable_yaml_raises_configuration_error(self, tmp_path, text):
        write_config(tmp_path, "default.yaml", text)

        with pytest.raises(ConfigurationError):
            ConfigurationManager(tmp_path).load_configuration()

    def test_configuration_is_cached_until_reload(self, tmp_path):
        manager = ConfigurationManager(tmp_path)
        first = manager.get_configuration()

        assert manager.get_configuration() is first
        assert manager.reload_configuration() is not first


class TestSetupLogging:
    """Handler installation on the package logger"""

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        config = ClientConfiguration(log_level="debug", log_file_path=str(tmp_path / "client.log"))

        setup_logging(config)
        root = setup_logging(config)
        installed = [h for h in root.handlers if getattr(h, '_arsnova_handler', False)]

        try:
            assert root.level == logging.DEBUG
            assert len(installed) == 2
        finally:
            for handler in installed:
                root.removeHandler(handler)
                handler.close()
