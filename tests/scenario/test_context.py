import pytest

from assured.errors import ConfigurationError
from assured.scenario.context import ScenarioContext, StepStorage
from assured.steps.results import StepKind, StepResult


def test_typed_get_and_require() -> None:
    ctx = ScenarioContext()
    ctx.set("topic", "orders")
    ctx.set("count", 3)

    assert ctx.get("topic", str) == "orders"
    assert ctx.get("topic", int) is None
    assert ctx.get("missing") is None
    assert ctx.require("count", int) == 3

    with pytest.raises(ConfigurationError, match="not set"):
        ctx.require("missing")
    with pytest.raises(ConfigurationError, match="expected int"):
        ctx.require("topic", int)


def test_remove_and_clear() -> None:
    ctx = ScenarioContext()
    ctx.set("a", None)
    assert "a" in ctx
    assert ctx.remove("a") is True
    assert ctx.remove("a") is False

    ctx.set("b", 1)
    ctx.steps.save("s", object(), StepResult(kind=StepKind.HTTP, success=True))
    ctx.clear()
    assert ctx.keys() == []
    assert len(ctx.steps) == 0


def test_step_storage_is_case_insensitive() -> None:
    storage = StepStorage()
    result = StepResult(kind=StepKind.HTTP, success=True)
    storage.save("Create Order", "step", result)

    assert "create order" in storage
    assert storage["CREATE ORDER"].result is result
    assert storage.names() == ["Create Order"]
    assert storage.get("other") is None
    with pytest.raises(KeyError):
        storage["other"]
    with pytest.raises(ConfigurationError):
        storage.save("  ", "step", result)
