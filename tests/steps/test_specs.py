from __future__ import annotations

import dataclasses

import pytest

from assured.auth.config import HttpAuthConfig
from assured.errors import ConfigurationError
from assured.steps.specs import (
    BatchConsumeStep,
    BatchProduceStep,
    ConsumeStep,
    HttpStep,
    ProducerTuning,
    ProduceStep,
)


def test_evolve_returns_new_value_and_leaves_original() -> None:
    original = ProduceStep(topic="orders", key="order-1", value={"id": 1})
    changed = original.evolve(partition=2)

    assert original.partition is None
    assert changed.partition == 2
    assert changed is not original
    # every other field carried over
    for f in dataclasses.fields(original):
        if f.name != "partition":
            assert getattr(changed, f.name) == getattr(original, f.name)


def test_evolve_rejects_unknown_fields() -> None:
    with pytest.raises(TypeError):
        HttpStep(url="http://api.test").evolve(partition=1)


def test_steps_are_frozen() -> None:
    step = HttpStep(url="http://api.test")
    with pytest.raises(dataclasses.FrozenInstanceError):
        step.method = "POST"
    with pytest.raises(TypeError):
        step.headers["X-Test"] = "1"


def test_collections_are_not_shared_between_versions() -> None:
    headers = {"Accept": "application/json"}
    step = HttpStep(url="http://api.test", headers=headers)
    headers["Accept"] = "text/plain"
    assert step.headers["Accept"] == "application/json"

    changed = step.evolve(headers={**step.headers, "X-Trace": "1"})
    assert "X-Trace" not in step.headers
    assert changed.headers is not step.headers


def test_http_method_is_normalized() -> None:
    assert HttpStep(url="http://api.test", method="post").method == "POST"


def test_message_headers_become_bytes_and_keep_duplicates() -> None:
    step = ProduceStep(topic="t", value="v", headers=[("trace", "a"), ("trace", b"b")])
    assert step.headers == (("trace", b"a"), ("trace", b"b"))


@pytest.mark.parametrize(
    "build",
    [
        lambda: HttpStep(url=""),
        lambda: ProduceStep(topic="", value=1),
        lambda: ProduceStep(topic="t", value=1, partition=-1),
        lambda: ConsumeStep(topic="t", timeout=0),
        lambda: ConsumeStep(topic="t", auto_offset_reset="middle"),
        lambda: BatchProduceStep(topic="t", messages=()),
        lambda: BatchConsumeStep(topic="t", message_count=0),
    ],
)
def test_invalid_steps_are_rejected(build) -> None:
    with pytest.raises(ConfigurationError):
        build()


def test_producer_tuning_config_keys() -> None:
    tuning = ProducerTuning(compression="gzip", acks="all", batch_size=16384, linger_ms=5, retries=3, enable_idempotence=True)
    assert tuning.to_config() == {
        "compression.type": "gzip",
        "acks": "all",
        "batch.size": 16384,
        "linger.ms": 5,
        "retries": 3,
        "enable.idempotence": True,
    }
    assert ProducerTuning().is_default
    assert not tuning.is_default


def test_producer_tuning_validation() -> None:
    with pytest.raises(ConfigurationError):
        ProducerTuning(compression="brotli")
    with pytest.raises(ConfigurationError):
        ProducerTuning(acks="2")
    with pytest.raises(ConfigurationError):
        ProducerTuning(retries=-1)


def test_auth_config_is_carried_by_evolve() -> None:
    auth = HttpAuthConfig.bearer_token("abc")
    step = HttpStep(url="http://api.test", auth=auth).evolve(method="DELETE")
    assert step.auth is auth
    assert step.method == "DELETE"
