from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from assured.auth.config import BrokerAuthType, HttpAuthConfig, HttpAuthType, SslAuth
from assured.config.settings import Settings
from assured.errors import ConfigurationError, IncompatibleStepError, ScenarioStateError
from assured.scenario.engine import ScenarioEngine, ScenarioState, given
from assured.steps.specs import ConsumeStep, HttpStep, ProduceStep


def test_starts_building_and_completes_on_execute(make_engine) -> None:
    engine = make_engine()
    assert engine.state is ScenarioState.BUILDING
    assert engine.current_step is None

    engine.api_resource("/a").get()
    assert isinstance(engine.current_step, HttpStep)
    engine.execute()

    assert engine.state is ScenarioState.COMPLETED
    assert engine.result.success
    assert len(engine.history) == 1


def test_builder_methods_rejected_after_completion(make_engine) -> None:
    engine = make_engine().api_resource("/a").get()
    engine.execute()
    with pytest.raises(ScenarioStateError):
        engine.with_header("X", "1")
    with pytest.raises(ScenarioStateError):
        engine.api_resource("/b")


def test_execute_twice_returns_the_same_result(make_engine) -> None:
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(204)

    engine = make_engine(handler).api_resource("/a").delete()
    first = engine.execute()
    second = engine.execute()
    assert first.get_result() is second.get_result()
    assert len(calls) == 1


def test_and_starts_a_new_step_and_keeps_history(make_engine) -> None:
    engine = make_engine().api_resource("/a").get()
    engine.execute()
    engine.and_()
    assert engine.state is ScenarioState.BUILDING
    assert engine.current_step is None
    assert engine.result is None

    engine.api_resource("/b").post({"x": 1}).execute()
    assert [h.step.url for h in engine.history] == ["http://api.test/a", "http://api.test/b"]


def test_and_executes_a_pending_step(make_engine) -> None:
    engine = make_engine().api_resource("/a").get()
    engine.and_()
    assert len(engine.history) == 1


def test_validation_and_returns_to_engine(make_engine) -> None:
    engine = make_engine()
    back = engine.api_resource("/a").get().execute().assert_success().and_()
    assert back is engine
    assert engine.state is ScenarioState.BUILDING


def test_execute_without_step_is_a_configuration_error(make_engine) -> None:
    with pytest.raises(ConfigurationError):
        make_engine().execute()


def test_modifier_without_step_is_a_configuration_error(make_engine) -> None:
    with pytest.raises(ConfigurationError):
        make_engine().with_timeout(5)


def test_incompatible_modifiers(make_engine) -> None:
    engine = make_engine().api_resource("/a").get()
    with pytest.raises(IncompatibleStepError) as info:
        engine.with_partition(1)
    assert info.value.operation == "with_partition"
    assert info.value.actual == "HttpStep"

    engine = make_engine().topic("t").consume()
    with pytest.raises(IncompatibleStepError):
        engine.with_key("k")
    with pytest.raises(IncompatibleStepError):
        engine.with_query_param("a", "b")
    with pytest.raises(IncompatibleStepError):
        engine.with_compression("gzip")

    engine = make_engine().topic("t").produce("v")
    with pytest.raises(IncompatibleStepError):
        engine.with_group_id("g")
    with pytest.raises(IncompatibleStepError):
        engine.with_bearer_token("abc")


def test_broker_operations_need_a_topic(make_engine) -> None:
    engine = make_engine()
    for operation in (lambda: engine.produce("v"), engine.consume, lambda: engine.consume_batch(2)):
        with pytest.raises(ConfigurationError):
            operation()


def test_topic_is_kept_in_the_context(make_engine) -> None:
    engine = make_engine().topic("orders")
    assert engine.context.get("topic") == "orders"
    engine.produce("v").execute()
    # still set for the next step
    assert isinstance(engine.and_().consume().current_step, ConsumeStep)


def test_modifiers_evolve_the_step(make_engine) -> None:
    engine = make_engine().topic("orders").produce("order-1", {"id": 1})
    first = engine.current_step
    engine.with_partition(2).with_timeout(timedelta(seconds=5))
    assert first.partition is None
    assert engine.current_step.partition == 2
    assert engine.current_step.timeout == 5.0
    assert isinstance(engine.current_step, ProduceStep)


def test_repeated_modifier_keeps_every_version_intact(make_engine) -> None:
    engine = make_engine().topic("orders").produce("order-1", {"id": 1})
    original = engine.current_step
    engine.with_partition(2)
    intermediate = engine.current_step
    engine.with_partition(5)

    assert engine.current_step.partition == 5
    assert intermediate.partition == 2
    assert original.partition is None
    assert engine.current_step.key == intermediate.key == original.key == "order-1"


def test_relative_resource_without_base_url() -> None:
    engine = ScenarioEngine(settings=Settings(), pool=object())
    with pytest.raises(ConfigurationError):
        engine.api_resource("/products")
    assert engine.api_resource("http://x.test/p").current_step.url == "http://x.test/p"


def test_base_url_join_handles_slashes(make_engine, settings) -> None:
    settings.http.base_url = "http://api.test/v1/"
    assert make_engine().api_resource("/products").current_step.url == "http://api.test/v1/products"
    settings.http.base_url = "http://api.test/v1"
    assert make_engine().api_resource("products").current_step.url == "http://api.test/v1/products"


def test_http_timeout_defaults_from_settings(make_engine, settings) -> None:
    settings.http.timeout = 7
    assert make_engine().api_resource("/a").current_step.timeout == 7.0


def test_consume_group_from_settings(make_engine) -> None:
    engine = make_engine().topic("t").consume()
    assert engine.current_step.group_id == "tests"
    assert engine.with_group_id("other").current_step.group_id == "other"


def test_custom_header_auth_accumulates(make_engine) -> None:
    engine = make_engine().api_resource("/a").get()
    engine.with_custom_header("X-A", "1").with_custom_header("X-B", "2").with_custom_header("x-a", "3")
    assert engine.current_step.auth.custom_header.headers == (("X-B", "2"), ("x-a", "3"))


def test_ssl_after_sasl_keeps_sasl(make_engine) -> None:
    engine = make_engine().topic("t").produce("v").with_sasl_plain("u", "p").with_ssl(ca_location="/ca.pem")
    auth = engine.current_step.auth
    assert auth.type is BrokerAuthType.SASL_PLAIN
    assert auth.ssl == SslAuth(ca_location="/ca.pem")

    # and the other way round
    engine = make_engine().topic("t").produce("v").with_ssl(ca_location="/ca.pem").with_sasl_scram_256("u", "p")
    auth = engine.current_step.auth
    assert auth.type is BrokerAuthType.SASL_SCRAM_256
    assert auth.ssl == SslAuth(ca_location="/ca.pem")


def test_ssl_alone_selects_ssl(make_engine) -> None:
    engine = make_engine().topic("t").consume().with_ssl(ca_location="/ca.pem")
    assert engine.current_step.auth.type is BrokerAuthType.SSL


def test_invalid_auth_is_rejected_eagerly(make_engine) -> None:
    engine = make_engine().topic("t").produce("v")
    with pytest.raises(ConfigurationError):
        engine.with_mutual_tls("/c.pem", "")
    with pytest.raises(ConfigurationError):
        make_engine().api_resource("/a").with_oauth2("http://auth.test/token", "c", "s", grant_type="password")
    with pytest.raises(ConfigurationError):
        make_engine().api_resource("/a").with_oauth2("http://auth.test/token", "c", "s", grant_type="implicit")


def test_unknown_json_options_are_rejected(make_engine) -> None:
    with pytest.raises(ConfigurationError):
        make_engine().topic("t").produce("v").with_json_options(pretty=True)


def test_produce_argument_count(make_engine) -> None:
    with pytest.raises(TypeError):
        make_engine().topic("t").produce()


def test_failed_execution_leaves_engine_building(make_engine, settings) -> None:
    settings.http.auth = HttpAuthConfig(type=HttpAuthType.BASIC)
    engine = make_engine().api_resource("/a").get()
    with pytest.raises(ConfigurationError):
        engine.execute()
    assert engine.state is ScenarioState.BUILDING
    assert engine.history == ()


def test_save_step_and_results(make_engine) -> None:
    engine = make_engine()
    engine.api_resource("/a").get().save_step("first")
    engine.and_().api_resource("/b").get().execute()
    engine.save_step("Second")

    assert "FIRST" in engine.context.steps
    assert engine.context.steps["second"].step.url == "http://api.test/b"
    assert set(engine.results()) == {"first", "Second"}


def test_given_module_function(make_pool, settings) -> None:
    engine = given(pool=make_pool(), settings=settings)
    assert isinstance(engine, ScenarioEngine)
    assert engine.given() is engine and engine.when() is engine and engine.then() is engine
