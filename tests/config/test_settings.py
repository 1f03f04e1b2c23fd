from __future__ import annotations

import pytest

from assured.auth.config import BrokerAuthType, HttpAuthType
from assured.config import settings as settings_module
from assured.config.settings import (
    clear_settings_cache,
    find_settings_file,
    get_settings,
    load_settings,
    settings_from_dict,
    substitute_env,
)
from assured.errors import ConfigurationError

SETTINGS_YAML = """
http:
  base_url: http://localhost:8080
  timeout: 10
  default_headers:
    Accept: application/json
  authentication:
    type: bearer
    bearer:
      token: ${ENV:API_TOKEN}
broker:
  bootstrap_servers: localhost:9092
  group_id: orders-tests
  authentication:
    type: sasl_scram_512
    sasl_scram:
      username: svc
      password: ${ENV:BROKER_PASSWORD}
    ssl:
      ca_location: /etc/ca.pem
export:
  json_path: reports/results.jsonl
environments:
  staging:
    http:
      base_url: https://staging.example.com
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "ASSURED_SETTINGS_PATH",
        "ASSURED_ENV",
        "ASSURED_BASE_URL",
        "ASSURED_HTTP_TIMEOUT_SECONDS",
        "ASSURED_HTTP_VERIFY_TLS",
        "ASSURED_BOOTSTRAP_SERVERS",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    path = tmp_path / "assured.yaml"
    path.write_text(SETTINGS_YAML, encoding="utf-8")
    monkeypatch.setenv("API_TOKEN", "tok-123")
    monkeypatch.setenv("BROKER_PASSWORD", "s3cret")
    return path


def test_load_from_explicit_path(settings_file) -> None:
    s = load_settings(str(settings_file))

    assert s.source == str(settings_file)
    assert s.http.base_url == "http://localhost:8080"
    assert s.http.timeout == 10.0
    assert s.http.default_headers == {"Accept": "application/json"}
    assert s.http.auth.type is HttpAuthType.BEARER
    assert s.http.auth.bearer.token == "tok-123"

    assert s.broker.group_id == "orders-tests"
    assert s.broker.auth.type is BrokerAuthType.SASL_SCRAM_512
    assert s.broker.auth.sasl_scram.password == "s3cret"
    assert s.broker.auth.ssl.ca_location == "/etc/ca.pem"
    assert s.export.json_path == "reports/results.jsonl"


def test_environment_overlay(settings_file, monkeypatch) -> None:
    assert load_settings(str(settings_file), environment="staging").http.base_url == "https://staging.example.com"

    monkeypatch.setenv("ASSURED_ENV", "staging")
    s = load_settings(str(settings_file))
    assert s.environment == "staging"
    assert s.http.timeout == 10.0  # untouched keys survive the merge


def test_unknown_environment(settings_file) -> None:
    with pytest.raises(ConfigurationError, match="not defined"):
        load_settings(str(settings_file), environment="prod")


def test_env_overrides_win(settings_file, monkeypatch) -> None:
    monkeypatch.setenv("ASSURED_BASE_URL", "http://override")
    monkeypatch.setenv("ASSURED_HTTP_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("ASSURED_HTTP_VERIFY_TLS", "false")
    monkeypatch.setenv("ASSURED_BOOTSTRAP_SERVERS", "kafka:29092")

    s = load_settings(str(settings_file))
    assert s.http.base_url == "http://override"
    assert s.http.timeout == 2.5
    assert s.http.verify_tls is False
    assert s.broker.bootstrap_servers == "kafka:29092"


def test_bad_timeout_override(settings_file, monkeypatch) -> None:
    monkeypatch.setenv("ASSURED_HTTP_TIMEOUT_SECONDS", "soon")
    with pytest.raises(ConfigurationError):
        load_settings(str(settings_file))


def test_settings_path_from_env(settings_file, monkeypatch) -> None:
    monkeypatch.setenv("ASSURED_SETTINGS_PATH", str(settings_file))
    assert load_settings().http.base_url == "http://localhost:8080"


def test_missing_explicit_file(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_settings(str(tmp_path / "nope.yaml"))


def test_search_walks_up_from_cwd(settings_file, tmp_path, monkeypatch) -> None:
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_settings_file(nested) == settings_file.resolve()

    monkeypatch.chdir(nested)
    assert load_settings().source == str(settings_file.resolve())


def test_defaults_without_file(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(settings_module, "find_settings_file", lambda start=None: None)
    s = load_settings()
    assert s.source is None
    assert s.http.base_url == ""
    assert s.broker.bootstrap_servers == "localhost:9092"
    assert s.http.auth is None


def test_malformed_yaml(tmp_path) -> None:
    path = tmp_path / "assured.yaml"
    path.write_text("http: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Cannot parse"):
        load_settings(str(path))


def test_invalid_sections() -> None:
    with pytest.raises(ConfigurationError):
        settings_from_dict({"http": "nope"})
    with pytest.raises(ConfigurationError):
        settings_from_dict({"http": {"authentication": {"type": "kerberos"}}})
    with pytest.raises(ConfigurationError):
        settings_from_dict({"broker": {"authentication": {"type": "sasl_plain", "sasl_plain": {"user": "x"}}}})


def test_substitute_env(monkeypatch) -> None:
    monkeypatch.setenv("HOST", "db")
    monkeypatch.delenv("UNSET_VAR", raising=False)
    assert substitute_env("${ENV:HOST}:${ENV:UNSET_VAR}") == "db:"


def test_get_settings_is_cached(settings_file, monkeypatch) -> None:
    monkeypatch.setenv("ASSURED_SETTINGS_PATH", str(settings_file))
    first = get_settings()
    assert get_settings() is first
    clear_settings_cache()
    assert get_settings() is not first
