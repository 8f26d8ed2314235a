"""Tests for configuration loading."""

from stepflow.config import load_config
from stepflow.transports import get_transport
from stepflow.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  topic: jobs
  redis:
    host: testhost
    port: 1234
engine:
  propagate_output_as_context: true
  step_timeout: 30
provider:
  default_temperature: 0.2
"""
    )
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("UNBOUND_API_KEY", raising=False)
    monkeypatch.delenv("STEPFLOW_TRANSPORT", raising=False)

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.topic == "jobs"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.engine.propagate_output_as_context is True
    assert config.engine.step_timeout == 30
    assert config.engine.default_initial_delay_ms == 1000
    assert config.provider.default_temperature == 0.2
    assert config.provider.unbound_api_key is None


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    for name in ("STEPFLOW_DATABASE_URL", "DATABASE_URL", "STEPFLOW_TRANSPORT", "UNBOUND_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    config = load_config()
    assert config.database_url is None
    assert config.transport.backend == "inmemory"
    assert config.engine.propagate_output_as_context is False
    assert config.provider.default_max_tokens == 2048


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("STEPFLOW_DATABASE_URL", "sqlite://runs.db")
    monkeypatch.setenv("STEPFLOW_TRANSPORT", "REDIS")
    monkeypatch.setenv("UNBOUND_API_KEY", "from-env")

    config = load_config()
    assert config.database_url == "sqlite://runs.db"
    assert config.transport.backend == "redis"
    assert config.provider.unbound_api_key == "from-env"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("STEPFLOW_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380
