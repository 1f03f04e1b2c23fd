from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, TypeVar

from assured.errors import ConfigurationError
from assured.steps.results import StepResult

T = TypeVar("T")


@dataclass(frozen=True)
class SavedStep:
    name: str
    step: Any
    result: StepResult


class StepStorage:
    """Executed steps stored by name; names match case-insensitively."""

    def __init__(self) -> None:
        self._steps: Dict[str, SavedStep] = {}

    def save(self, name: str, step: Any, result: StepResult) -> SavedStep:
        if not name or not name.strip():
            raise ConfigurationError("A saved step needs a non-empty name")
        saved = SavedStep(name, step, result)
        self._steps[name.lower()] = saved
        return saved

    def get(self, name: str) -> Optional[SavedStep]:
        return self._steps.get(name.lower())

    def __getitem__(self, name: str) -> SavedStep:
        saved = self.get(name)
        if saved is None:
            raise KeyError(f"No step saved as '{name}'; saved steps: {self.names()}")
        return saved

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def names(self) -> List[str]:
        return [s.name for s in self._steps.values()]

    def clear(self) -> None:
        self._steps.clear()


class ScenarioContext:
    """Property bag shared by the steps of one scenario."""

    def __init__(self) -> None:
        self._properties: Dict[str, Any] = {}
        self.steps = StepStorage()

    def set(self, key: str, value: Any) -> None:
        self._properties[key] = value

    def get(self, key: str, expected_type: Type[T] = object) -> Optional[T]:
        """The value if present and of `expected_type`, else None."""
        value = self._properties.get(key)
        if value is None or not isinstance(value, expected_type):
            return None
        return value

    def require(self, key: str, expected_type: Type[T] = object) -> T:
        value = self.get(key, expected_type)
        if value is None:
            if key in self._properties:
                actual = type(self._properties[key]).__name__
                raise ConfigurationError(
                    f"Context property '{key}' is {actual}, expected {expected_type.__name__}"
                )
            raise ConfigurationError(f"Context property '{key}' is not set")
        return value

    def remove(self, key: str) -> bool:
        if key not in self._properties:
            return False
        del self._properties[key]
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._properties

    def keys(self) -> List[str]:
        return list(self._properties)

    def clear(self) -> None:
        self._properties.clear()
        self.steps.clear()
