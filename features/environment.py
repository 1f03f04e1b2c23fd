from assured.bdd import hooks
from assured.transport.broker import InMemoryBroker


def before_all(context):
    # swap InMemoryBroker for a factory backed by a real broker client
    hooks.before_all(context, broker_factory=InMemoryBroker())


def before_scenario(context, scenario):
    if "http" in scenario.effective_tags and not context.settings.http.base_url:
        scenario.skip("No http.base_url configured (set ASSURED_BASE_URL)")
        return
    hooks.before_scenario(context, scenario)


def after_scenario(context, scenario):
    hooks.after_scenario(context, scenario)


def after_all(context):
    hooks.after_all(context)
