import pytest

from cep_deployer.core.config import Settings, get_app_env, validate_runtime_settings
from cep_deployer.core.logging_config import resolve_level


def test_defaults_validate(monkeypatch):
    monkeypatch.delenv("CEP_ENV", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)
    validate_runtime_settings(Settings(broker_transport="amqp", dispatch_mode="direct"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"broker_transport": "kafka"},
        {"dispatch_mode": "eventually"},
        {"broker_timeout_sec": 0},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(RuntimeError):
        validate_runtime_settings(Settings(**overrides))


def test_log_transport_not_allowed_in_prod(monkeypatch):
    monkeypatch.setenv("CEP_ENV", "prod")
    with pytest.raises(RuntimeError):
        validate_runtime_settings(Settings(broker_transport="log"))


def test_unknown_env_falls_back_to_dev(monkeypatch):
    monkeypatch.setenv("CEP_ENV", "staging")
    assert get_app_env() == "dev"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("BROKER_TRANSPORT", "mqtt")
    monkeypatch.setenv("MQTT_TOPIC_PREFIX", "cep/")
    cfg = Settings()
    assert cfg.broker_transport == "mqtt"
    assert cfg.mqtt_topic_prefix == "cep/"


@pytest.mark.parametrize("raw, expected", [("debug", 10), ("WARNING", 30), ("nonsense", 20), (None, 20)])
def test_resolve_level(raw, expected):
    assert resolve_level(raw, 20) == expected
