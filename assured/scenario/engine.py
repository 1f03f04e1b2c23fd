from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import httpx

from assured.auth.config import (
    ApiKeyLocation,
    BrokerAuthConfig,
    BrokerAuthType,
    CustomHeaderAuth,
    HttpAuthConfig,
    HttpAuthType,
    OAuth2Auth,
    OAuth2GrantType,
    SslAuth,
)
from assured.auth.resolver import resolve_broker_auth, resolve_http_auth
from assured.auth.token_cache import MemoryTokenCache
from assured.config.settings import Settings, get_settings
from assured.errors import ConfigurationError, IncompatibleStepError, ScenarioStateError
from assured.scenario.context import ScenarioContext
from assured.scenario.validation import ValidationBuilder, validation_for
from assured.steps.executor import StepExecutor
from assured.steps.results import StepResult
from assured.steps.specs import (
    ALL_STEPS,
    BROKER_STEPS,
    CONSUME_STEPS,
    HTTP_STEPS,
    PRODUCE_STEPS,
    BatchConsumeStep,
    BatchProduceStep,
    ConsumeStep,
    HttpStep,
    ProducerTuning,
    ProduceStep,
)
from assured.transport.pool import TransportPool, default_pool

logger = logging.getLogger(__name__)

TOPIC_KEY = "topic"

JSON_OPTION_KEYS = ("sort_keys", "indent", "separators", "ensure_ascii", "allow_nan", "default")

SASL_TYPES = (BrokerAuthType.SASL_PLAIN, BrokerAuthType.SASL_SCRAM_256, BrokerAuthType.SASL_SCRAM_512)

Seconds = Union[int, float, timedelta]


class ScenarioState(str, Enum):
    BUILDING = "building"
    EXECUTING = "executing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ExecutedStep:
    step: Any
    result: StepResult


def _seconds(value: Seconds) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class ScenarioEngine:
    """
    Given/When/Then driver for one scenario.

    Holds the current step while it is BUILDING, runs it once on execute()
    (EXECUTING) and keeps its result once COMPLETED. and_() archives the
    completed step and starts BUILDING the next one on the same context.

    Re-executing a step object kept from earlier in a chain is not supported;
    the engine only ever runs its current step.
    """

    def __init__(
        self,
        context: Optional[ScenarioContext] = None,
        pool: Optional[TransportPool] = None,
        settings: Optional[Settings] = None,
        token_cache: Optional[MemoryTokenCache] = None,
        token_client: Optional[httpx.Client] = None,
    ) -> None:
        self.context = context if context is not None else ScenarioContext()
        self.settings = settings if settings is not None else get_settings()
        self.pool = pool if pool is not None else default_pool()
        self.token_cache = token_cache
        self.token_client = token_client
        self.executor = StepExecutor(self.pool, self.settings, token_cache, token_client)

        self._state = ScenarioState.BUILDING
        self._current = None
        self._result: Optional[StepResult] = None
        self._history: List[ExecutedStep] = []

    # state

    @property
    def state(self) -> ScenarioState:
        return self._state

    @property
    def current_step(self):
        return self._current

    @property
    def result(self) -> Optional[StepResult]:
        return self._result

    @property
    def history(self) -> Tuple[ExecutedStep, ...]:
        return tuple(self._history)

    def given(self) -> "ScenarioEngine":
        return self

    def when(self) -> "ScenarioEngine":
        return self

    def then(self) -> "ScenarioEngine":
        return self

    def _ensure_building(self, operation: str) -> None:
        if self._state is ScenarioState.COMPLETED:
            raise ScenarioStateError(
                f"{operation}() cannot change a completed step; call and_() to start a new step"
            )
        if self._state is ScenarioState.EXECUTING:
            raise ScenarioStateError(f"{operation}() called while a step is executing")

    def _set_step(self, operation: str, step) -> "ScenarioEngine":
        self._ensure_building(operation)
        self._current = step
        return self

    def _require(self, operation: str, accepted: tuple):
        self._ensure_building(operation)
        step = self._current
        if step is None:
            raise ConfigurationError(
                f"{operation}() needs a step; start with api_resource() or topic() and an operation"
            )
        if not isinstance(step, accepted):
            raise IncompatibleStepError(operation, type(step).__name__, tuple(c.__name__ for c in accepted))
        return step

    def _evolve(self, operation: str, accepted: tuple, **changes: Any) -> "ScenarioEngine":
        step = self._require(operation, accepted)
        self._current = step.evolve(**changes)
        return self

    # entry points

    def api_resource(self, path: str) -> "ScenarioEngine":
        self._ensure_building("api_resource")
        if not path:
            raise ConfigurationError("api_resource() requires a path or URL")
        if urlparse(path).scheme:
            url = path
        else:
            base = self.settings.http.base_url
            if not base:
                raise ConfigurationError(
                    f"api_resource('{path}') is relative but no http.base_url is configured"
                )
            url = urljoin(base.rstrip("/") + "/", path.lstrip("/"))
        return self._set_step("api_resource", HttpStep(url=url, timeout=self.settings.http.timeout))

    def topic(self, name: str) -> "ScenarioEngine":
        self._ensure_building("topic")
        if not name or not str(name).strip():
            raise ConfigurationError("topic() requires a topic name")
        self.context.set(TOPIC_KEY, name)
        return self

    def _pending_topic(self, operation: str) -> str:
        topic = self.context.get(TOPIC_KEY, str)
        if topic is None:
            raise ConfigurationError(f"{operation}() requires a topic; call topic(name) first")
        return topic

    def produce(self, *args: Any) -> "ScenarioEngine":
        """produce(value) or produce(key, value) on the pending topic."""
        if len(args) == 1:
            key, value = None, args[0]
        elif len(args) == 2:
            key, value = args
        else:
            raise TypeError(f"produce() takes a value or a key and a value, got {len(args)} arguments")
        self._ensure_building("produce")
        step = ProduceStep(topic=self._pending_topic("produce"), key=key, value=value)
        return self._set_step("produce", step)

    def consume(self) -> "ScenarioEngine":
        self._ensure_building("consume")
        step = ConsumeStep(topic=self._pending_topic("consume"), group_id=self.settings.broker.group_id)
        return self._set_step("consume", step)

    def produce_batch(self, messages: Union[Mapping[Any, Any], Iterable[Tuple[Any, Any]]]) -> "ScenarioEngine":
        """Messages are (key, value) pairs or a {key: value} mapping; keys may be None."""
        self._ensure_building("produce_batch")
        pairs = list(messages.items()) if isinstance(messages, Mapping) else list(messages)
        for pair in pairs:
            if not isinstance(pair, tuple) or len(pair) != 2:
                raise ConfigurationError(f"produce_batch() expects (key, value) pairs, got {pair!r}")
        step = BatchProduceStep(topic=self._pending_topic("produce_batch"), messages=tuple(pairs))
        return self._set_step("produce_batch", step)

    def consume_batch(self, message_count: int) -> "ScenarioEngine":
        self._ensure_building("consume_batch")
        step = BatchConsumeStep(
            topic=self._pending_topic("consume_batch"),
            message_count=message_count,
            group_id=self.settings.broker.group_id,
        )
        return self._set_step("consume_batch", step)

    # HTTP methods

    def _method(self, method: str, body: Any = None) -> "ScenarioEngine":
        return self._evolve(method.lower(), HTTP_STEPS, method=method, body=body)

    def get(self) -> "ScenarioEngine":
        return self._method("GET")

    def post(self, body: Any = None) -> "ScenarioEngine":
        return self._method("POST", body)

    def put(self, body: Any = None) -> "ScenarioEngine":
        return self._method("PUT", body)

    def patch(self, body: Any = None) -> "ScenarioEngine":
        return self._method("PATCH", body)

    def delete(self) -> "ScenarioEngine":
        return self._method("DELETE")

    def head(self) -> "ScenarioEngine":
        return self._method("HEAD")

    def options(self) -> "ScenarioEngine":
        return self._method("OPTIONS")

    # common

    def with_timeout(self, timeout: Seconds) -> "ScenarioEngine":
        return self._evolve("with_timeout", ALL_STEPS, timeout=_seconds(timeout))

    def with_header(self, name: str, value: Any) -> "ScenarioEngine":
        step = self._require("with_header", HTTP_STEPS + PRODUCE_STEPS)
        if isinstance(step, HttpStep):
            return self._evolve("with_header", HTTP_STEPS, headers={**step.headers, name: str(value)})
        return self._evolve("with_header", PRODUCE_STEPS, headers=step.headers + ((name, value),))

    def with_headers(self, headers: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]) -> "ScenarioEngine":
        """HTTP: merged into the existing headers. Messages: replace all headers."""
        step = self._require("with_headers", HTTP_STEPS + PRODUCE_STEPS)
        pairs = list(headers.items()) if isinstance(headers, Mapping) else list(headers)
        if isinstance(step, HttpStep):
            merged = dict(step.headers)
            merged.update((k, str(v)) for k, v in pairs)
            return self._evolve("with_headers", HTTP_STEPS, headers=merged)
        return self._evolve("with_headers", PRODUCE_STEPS, headers=tuple(pairs))

    # HTTP only

    def with_query_param(self, name: str, value: Any) -> "ScenarioEngine":
        step = self._require("with_query_param", HTTP_STEPS)
        return self._evolve("with_query_param", HTTP_STEPS, query_params={**step.query_params, name: str(value)})

    def _with_http_auth(self, operation: str, config: HttpAuthConfig) -> "ScenarioEngine":
        self._require(operation, HTTP_STEPS)
        resolve_http_auth(config, self.token_cache, self.token_client)
        return self._evolve(operation, HTTP_STEPS, auth=config)

    def with_basic_auth(self, username: str, password: str) -> "ScenarioEngine":
        return self._with_http_auth("with_basic_auth", HttpAuthConfig.basic_auth(username, password))

    def with_bearer_token(self, token: str, prefix: str = "Bearer") -> "ScenarioEngine":
        return self._with_http_auth("with_bearer_token", HttpAuthConfig.bearer_token(token, prefix))

    def with_api_key(
        self, value: str, name: str = "X-API-Key", location: Union[str, ApiKeyLocation] = ApiKeyLocation.HEADER
    ) -> "ScenarioEngine":
        return self._with_http_auth("with_api_key", HttpAuthConfig.api_key_auth(value, name, ApiKeyLocation(location)))

    def with_custom_header(self, name: str, value: str) -> "ScenarioEngine":
        """Adds to the custom-header auth already on the step, if any."""
        step = self._require("with_custom_header", HTTP_STEPS)
        existing: Tuple[Tuple[str, str], ...] = ()
        if step.auth is not None and step.auth.type is HttpAuthType.CUSTOM_HEADER and step.auth.custom_header:
            existing = tuple((k, v) for k, v in step.auth.custom_header.headers if k.lower() != name.lower())
        config = HttpAuthConfig(
            type=HttpAuthType.CUSTOM_HEADER,
            custom_header=CustomHeaderAuth(existing + ((name, str(value)),)),
        )
        return self._with_http_auth("with_custom_header", config)

    def with_custom_headers(self, headers: Mapping[str, str]) -> "ScenarioEngine":
        return self._with_http_auth("with_custom_headers", HttpAuthConfig.custom_headers(headers))

    def with_oauth2(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: Iterable[str] = (),
        grant_type: Union[str, OAuth2GrantType] = OAuth2GrantType.CLIENT_CREDENTIALS,
        **grant_fields: Any,
    ) -> "ScenarioEngine":
        """grant_fields: username/password, refresh_token, authorization_code, redirect_uri, additional_parameters."""
        extra = dict(grant_fields)
        params = extra.pop("additional_parameters", None) or {}
        try:
            oauth2 = OAuth2Auth(
                token_url=token_url,
                client_id=client_id,
                client_secret=client_secret,
                grant_type=OAuth2GrantType(grant_type),
                scopes=tuple(scopes),
                additional_parameters=tuple(dict(params).items()),
                **extra,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid OAuth2 configuration: {exc}") from exc
        return self.with_oauth2_config(oauth2)

    def with_oauth2_config(self, oauth2: OAuth2Auth) -> "ScenarioEngine":
        return self._with_http_auth("with_oauth2", HttpAuthConfig.oauth2_auth(oauth2))

    def with_certificate(
        self, cert_path: str, key_path: Optional[str] = None, password: Optional[str] = None
    ) -> "ScenarioEngine":
        return self._with_http_auth(
            "with_certificate", HttpAuthConfig.client_certificate(cert_path, key_path, password)
        )

    def with_no_auth(self) -> "ScenarioEngine":
        return self._with_http_auth("with_no_auth", HttpAuthConfig.none())

    def with_auth(self, config: HttpAuthConfig) -> "ScenarioEngine":
        return self._with_http_auth("with_auth", config)

    # broker

    def with_bootstrap_servers(self, servers: str) -> "ScenarioEngine":
        if not servers:
            raise ConfigurationError("with_bootstrap_servers() requires a value")
        return self._evolve("with_bootstrap_servers", BROKER_STEPS, bootstrap_servers=servers)

    def _with_broker_auth(self, operation: str, config: BrokerAuthConfig) -> "ScenarioEngine":
        self._require(operation, BROKER_STEPS)
        resolve_broker_auth(config)
        return self._evolve(operation, BROKER_STEPS, auth=config)

    def _current_ssl(self, operation: str) -> Optional[SslAuth]:
        step = self._require(operation, BROKER_STEPS)
        return step.auth.ssl if step.auth is not None else None

    def with_sasl_plain(self, username: str, password: str, use_ssl: bool = True) -> "ScenarioEngine":
        ssl = self._current_ssl("with_sasl_plain")
        return self._with_broker_auth("with_sasl_plain", BrokerAuthConfig.plain(username, password, use_ssl, ssl))

    def with_sasl_scram_256(self, username: str, password: str, use_ssl: bool = True) -> "ScenarioEngine":
        ssl = self._current_ssl("with_sasl_scram_256")
        return self._with_broker_auth(
            "with_sasl_scram_256", BrokerAuthConfig.scram_256(username, password, use_ssl, ssl)
        )

    def with_sasl_scram_512(self, username: str, password: str, use_ssl: bool = True) -> "ScenarioEngine":
        ssl = self._current_ssl("with_sasl_scram_512")
        return self._with_broker_auth(
            "with_sasl_scram_512", BrokerAuthConfig.scram_512(username, password, use_ssl, ssl)
        )

    def with_ssl(
        self,
        ca_location: Optional[str] = None,
        certificate_location: Optional[str] = None,
        key_location: Optional[str] = None,
        key_password: Optional[str] = None,
        enable_verification: bool = True,
    ) -> "ScenarioEngine":
        """On a SASL-authenticated step this adds TLS settings; otherwise it selects SSL auth."""
        step = self._require("with_ssl", BROKER_STEPS)
        ssl = SslAuth(ca_location, certificate_location, key_location, key_password, enable_verification)
        auth = step.auth
        if auth is not None and auth.type in SASL_TYPES:
            config = BrokerAuthConfig(type=auth.type, sasl_plain=auth.sasl_plain, sasl_scram=auth.sasl_scram, ssl=ssl)
        else:
            config = BrokerAuthConfig.ssl_only(ssl)
        return self._with_broker_auth("with_ssl", config)

    def with_mutual_tls(
        self,
        certificate_location: str,
        key_location: str,
        ca_location: Optional[str] = None,
        key_password: Optional[str] = None,
    ) -> "ScenarioEngine":
        ssl = SslAuth(ca_location, certificate_location, key_location, key_password)
        return self._with_broker_auth("with_mutual_tls", BrokerAuthConfig.mutual_tls(ssl))

    def with_no_broker_auth(self) -> "ScenarioEngine":
        return self._with_broker_auth("with_no_broker_auth", BrokerAuthConfig.none())

    def with_broker_auth(self, config: BrokerAuthConfig) -> "ScenarioEngine":
        return self._with_broker_auth("with_broker_auth", config)

    # produce

    def with_key(self, key: Any) -> "ScenarioEngine":
        return self._evolve("with_key", (ProduceStep,), key=key)

    def with_partition(self, partition: int) -> "ScenarioEngine":
        return self._evolve("with_partition", (ProduceStep,), partition=partition)

    def with_timestamp(self, timestamp: Union[datetime, int]) -> "ScenarioEngine":
        """A datetime, or epoch milliseconds."""
        if isinstance(timestamp, int):
            timestamp = datetime.fromtimestamp(timestamp / 1000.0, tz=timezone.utc)
        return self._evolve("with_timestamp", (ProduceStep,), timestamp=timestamp)

    def _tune(self, operation: str, **changes: Any) -> "ScenarioEngine":
        step = self._require(operation, PRODUCE_STEPS)
        return self._evolve(operation, PRODUCE_STEPS, tuning=dataclasses.replace(step.tuning, **changes))

    def with_compression(self, compression: str) -> "ScenarioEngine":
        return self._tune("with_compression", compression=compression)

    def with_acks(self, acks: Union[str, int]) -> "ScenarioEngine":
        return self._tune("with_acks", acks=str(acks))

    def with_batch_size(self, batch_size: int) -> "ScenarioEngine":
        return self._tune("with_batch_size", batch_size=batch_size)

    def with_linger(self, linger: Union[int, timedelta]) -> "ScenarioEngine":
        """Milliseconds, or a timedelta."""
        if isinstance(linger, timedelta):
            linger = int(linger.total_seconds() * 1000)
        return self._tune("with_linger", linger_ms=linger)

    def with_retries(self, retries: int) -> "ScenarioEngine":
        return self._tune("with_retries", retries=retries)

    def with_idempotence(self, enabled: bool = True) -> "ScenarioEngine":
        return self._tune("with_idempotence", enable_idempotence=enabled)

    def with_producer_tuning(self, tuning: ProducerTuning) -> "ScenarioEngine":
        return self._evolve("with_producer_tuning", PRODUCE_STEPS, tuning=tuning)

    def with_json_options(self, **options: Any) -> "ScenarioEngine":
        unknown = sorted(set(options) - set(JSON_OPTION_KEYS))
        if unknown:
            raise ConfigurationError(f"Unsupported JSON options {unknown}; use {list(JSON_OPTION_KEYS)}")
        return self._evolve("with_json_options", PRODUCE_STEPS, json_options=options)

    # consume

    def with_group_id(self, group_id: str) -> "ScenarioEngine":
        if not group_id:
            raise ConfigurationError("with_group_id() requires a value")
        return self._evolve("with_group_id", CONSUME_STEPS, group_id=group_id)

    def with_expected_type(self, expected_type: type) -> "ScenarioEngine":
        return self._evolve("with_expected_type", CONSUME_STEPS, expected_type=expected_type)

    def with_auto_offset_reset(self, reset: str) -> "ScenarioEngine":
        return self._evolve("with_auto_offset_reset", CONSUME_STEPS, auto_offset_reset=reset)

    # execution

    def execute(self) -> ValidationBuilder:
        if self._state is ScenarioState.COMPLETED:
            return validation_for(self._result, self)
        if self._state is ScenarioState.EXECUTING:
            raise ScenarioStateError("execute() called while a step is executing")
        step = self._current
        if step is None:
            raise ConfigurationError("execute() needs a step; start with api_resource() or topic()")

        self._state = ScenarioState.EXECUTING
        try:
            result = self.executor.execute(step)
        except BaseException:
            self._state = ScenarioState.BUILDING
            raise

        self._result = result
        self._history.append(ExecutedStep(step, result))
        self._state = ScenarioState.COMPLETED
        return validation_for(result, self)

    def and_(self) -> "ScenarioEngine":
        if self._current is not None and self._state is ScenarioState.BUILDING:
            self.execute()
        self._current = None
        self._result = None
        self._state = ScenarioState.BUILDING
        return self

    def save_step(self, name: str) -> "ScenarioEngine":
        """Execute the current step if needed and keep it in the context under `name`."""
        if self._current is None:
            raise ConfigurationError("save_step() needs a step to save")
        self.execute()
        self.context.steps.save(name, self._current, self._result)
        return self

    def results(self) -> Dict[str, StepResult]:
        return {name: self.context.steps[name].result for name in self.context.steps.names()}


def given(
    context: Optional[ScenarioContext] = None,
    pool: Optional[TransportPool] = None,
    settings: Optional[Settings] = None,
    **kwargs: Any,
) -> ScenarioEngine:
    return ScenarioEngine(context=context, pool=pool, settings=settings, **kwargs)
