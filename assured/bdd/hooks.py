import logging

from assured.config.settings import load_settings
from assured.export.result_sink import ResultSink
from assured.logging_setup import configure_logging
from assured.scenario.engine import ScenarioEngine
from assured.transport.pool import TransportPool

logger = logging.getLogger(__name__)


def before_all(context, broker_factory=None):
    # -D settings=path/to/assured.yaml -D env=staging -D log_level=DEBUG
    userdata = context.config.userdata
    configure_logging(userdata.get("log_level", "INFO"))

    context.settings = load_settings(path=userdata.get("settings"), environment=userdata.get("env"))
    context.pool = TransportPool(
        broker_factory=broker_factory,
        verify_tls=context.settings.http.verify_tls,
    )
    context.result_sink = ResultSink()


def before_scenario(context, scenario):
    # Fresh engine and context per scenario; the pool is shared
    context.engine = ScenarioEngine(pool=context.pool, settings=context.settings)
    context.validation = None


def after_scenario(context, scenario):
    """
    Export what the scenario executed, then drop its per-scenario state.
    """
    engine = getattr(context, "engine", None)
    if engine is None:
        return
    if engine.history:
        context.result_sink.write(scenario.name, engine.history, context.settings.export)
    engine.context.clear()
    context.engine = None


def after_all(context):
    pool = getattr(context, "pool", None)
    if pool is not None:
        pool.close()
        logger.info("Transport pool closed")
