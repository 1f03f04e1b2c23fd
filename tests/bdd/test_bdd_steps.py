from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from behave.model import Table

from assured.bdd import hooks
from assured.bdd import steps
from assured.transport.broker import InMemoryBroker


@pytest.fixture
def ctx(make_engine):
    return SimpleNamespace(engine=make_engine(), validation=None, text=None, table=None)


@pytest.mark.parametrize(
    "raw,expected",
    [("true", True), ("Off", False), ("null", None), ("42", 42), ("-1.5", -1.5), ("order-1", "order-1")],
)
def test_coerce_scalar(raw, expected) -> None:
    assert steps._coerce_scalar(raw) == expected


def test_http_steps(ctx) -> None:
    steps.step_api_resource(ctx, "/products")
    steps.step_request_header(ctx, "X-Trace", "abc-1")
    steps.step_query_param(ctx, "page", "2")
    steps.step_bearer(ctx, "tok")
    steps.step_send(ctx, "GET")

    steps.step_status(ctx, 200)
    steps.step_response_header(ctx, "X-Request-Id", "req-1")
    steps.step_succeeds(ctx)
    steps.step_json_equals(ctx, "$.headers.x-trace", "abc-1")
    steps.step_json_equals(ctx, "$.headers.authorization", "Bearer tok")
    steps.step_json_exists(ctx, "$.query.page")
    with pytest.raises(AssertionError):
        steps.step_status(ctx, 404)


def test_send_with_body(ctx) -> None:
    steps.step_api_resource(ctx, "/products")
    ctx.text = '{"name": "Laptop", "price": 999.99}'
    steps.step_send_with_body(ctx, "POST")
    steps.step_json_equals(ctx, "$.body.price", "999.99")
    steps.step_json_equals(ctx, "$.method", "POST")


def test_body_not_allowed_for_get(ctx) -> None:
    steps.step_api_resource(ctx, "/products")
    ctx.text = "{}"
    with pytest.raises(AssertionError):
        steps.step_send_with_body(ctx, "GET")


def test_then_before_any_execution(ctx) -> None:
    with pytest.raises(AssertionError, match="No step has been executed"):
        steps.step_succeeds(ctx)


def test_message_steps(ctx) -> None:
    steps.step_topic(ctx, "orders")
    ctx.text = '{"id": "order-1", "amount": 3}'
    steps.step_produce_keyed(ctx, "order-1")
    steps.step_persisted(ctx)
    steps.step_message_key(ctx, "order-1")

    # the next Given starts a new step on the same scenario
    steps.step_topic(ctx, "orders")
    steps.step_consume_within(ctx, 2)
    steps.step_succeeds(ctx)
    steps.step_message_key(ctx, "order-1")
    steps.step_json_equals(ctx, "$.amount", "3")
    steps.step_save(ctx, "consumed order")
    assert "consumed order" in ctx.engine.context.steps


def test_batch_steps(ctx) -> None:
    steps.step_topic(ctx, "events")
    ctx.table = Table(["key", "value"], rows=[["a", "1"], ["", "2"]])
    steps.step_produce_batch(ctx)
    steps.step_batch_count(ctx, 2)
    steps.step_succeeds(ctx)

    steps.step_topic(ctx, "events")
    steps.step_consume_batch(ctx, 2)
    steps.step_batch_count(ctx, 2)


def test_consume_timeout_fails_the_step(ctx) -> None:
    steps.step_topic(ctx, "empty")
    ctx.engine.consume().with_timeout(0.2)
    ctx.validation = ctx.engine.execute()
    steps.step_fails(ctx)


def test_hooks_run_a_scenario_and_export(tmp_path, monkeypatch) -> None:
    report = tmp_path / "reports" / "results.jsonl"
    settings_file = tmp_path / "assured.yaml"
    settings_file.write_text(
        "broker:\n  group_id: bdd\nexport:\n  json_path: %s\n" % report.as_posix(), encoding="utf-8"
    )
    for name in ("ASSURED_ENV", "ASSURED_SETTINGS_PATH", "ASSURED_BASE_URL", "ASSURED_BOOTSTRAP_SERVERS"):
        monkeypatch.delenv(name, raising=False)

    context = SimpleNamespace(config=SimpleNamespace(userdata={"settings": str(settings_file)}), text=None, table=None)
    broker = InMemoryBroker()
    hooks.before_all(context, broker_factory=broker)
    scenario = SimpleNamespace(name="Order is published")
    hooks.before_scenario(context, scenario)

    steps.step_topic(context, "orders")
    context.text = "hello"
    steps.step_produce(context)
    steps.step_persisted(context)

    engine = context.engine
    hooks.after_scenario(context, scenario)
    hooks.after_all(context)

    assert context.engine is None
    assert len(engine.context.steps) == 0
    assert context.pool.closed
    assert broker.producer_configs[0]["client.id"].startswith("assured-producer-")

    lines = report.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    exported = json.loads(lines[0])
    assert exported["scenario"] == "Order is published"
    assert exported["ok"] is True
    assert exported["steps"][0]["step"] == "ProduceStep"
    assert exported["steps"][0]["target"] == "orders"
