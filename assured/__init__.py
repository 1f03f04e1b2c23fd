"""Given/When/Then integration testing for HTTP APIs and message brokers."""

from assured.auth.config import BrokerAuthConfig, HttpAuthConfig, SslAuth
from assured.config.settings import Settings, load_settings
from assured.errors import (
    AssertionFailureError,
    AssuredError,
    ConfigurationError,
    DeliveryFailureError,
    IncompatibleStepError,
    PathNotFoundError,
    StepTimeoutError,
    TypeMismatchError,
)
from assured.jsonpath.evaluator import evaluate, evaluate_typed
from assured.jsonpath.expression import compile_path
from assured.scenario.engine import ScenarioEngine, given
from assured.transport.broker import DeliveryStatus, InMemoryBroker
from assured.transport.pool import TransportPool

__all__ = [
    "AssertionFailureError",
    "AssuredError",
    "BrokerAuthConfig",
    "ConfigurationError",
    "DeliveryFailureError",
    "DeliveryStatus",
    "HttpAuthConfig",
    "InMemoryBroker",
    "IncompatibleStepError",
    "PathNotFoundError",
    "ScenarioEngine",
    "Settings",
    "SslAuth",
    "StepTimeoutError",
    "TransportPool",
    "TypeMismatchError",
    "compile_path",
    "evaluate",
    "evaluate_typed",
    "given",
    "load_settings",
]
