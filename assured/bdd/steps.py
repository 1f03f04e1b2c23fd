"""
Gherkin steps over ScenarioEngine.

Each behave scenario gets its own engine in `context.engine` (see
assured.bdd.hooks); steps that execute leave their ValidationBuilder in
`context.validation` for the Then steps.
"""
import json
import re

from behave import given, then, when

from assured.scenario.engine import ScenarioEngine, ScenarioState

_BOOL_TRUE = {"true", "yes", "on"}
_BOOL_FALSE = {"false", "no", "off"}


def _coerce_scalar(v: str):
    s = str(v).strip()
    low = s.lower()

    if low in _BOOL_TRUE:
        return True
    if low in _BOOL_FALSE:
        return False
    if low == "null":
        return None

    if re.fullmatch(r"[+-]?\d+", s):
        return int(s)

    if re.fullmatch(r"[+-]?\d+\.\d+", s):
        return float(s)

    return s


def _docstring_body(context):
    text = getattr(context, "text", None)
    if not text:
        raise AssertionError("This step needs a docstring body")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _table_rows(context) -> list:
    if context.table is None:
        raise AssertionError("This step needs a table")
    return [[cell.strip() for cell in row] for row in context.table]


def _engine(context) -> ScenarioEngine:
    engine = context.engine
    if engine.state is ScenarioState.COMPLETED:
        engine.and_()
    return engine


def _validation(context):
    validation = getattr(context, "validation", None)
    if validation is None:
        raise AssertionError("No step has been executed in this scenario yet")
    return validation


# HTTP

@given('the API resource "{path}"')
def step_api_resource(context, path):
    _engine(context).api_resource(path)


@given('the request header "{name}" is "{value}"')
def step_request_header(context, name, value):
    context.engine.with_header(name, value)


@given('the query parameter "{name}" is "{value}"')
def step_query_param(context, name, value):
    context.engine.with_query_param(name, value)


@given('I am authenticated with bearer token "{token}"')
def step_bearer(context, token):
    context.engine.with_bearer_token(token)


@given('I am authenticated as "{username}" with password "{password}"')
def step_basic(context, username, password):
    context.engine.with_basic_auth(username, password)


@given('I am authenticated with API key "{value}"')
def step_api_key(context, value):
    context.engine.with_api_key(value)


@when("I send a {method} request")
def step_send(context, method):
    engine = context.engine
    getattr(engine, method.lower())()
    context.validation = engine.when().execute()


@when("I send a {method} request with body:")
def step_send_with_body(context, method):
    engine = context.engine
    verb = method.lower()
    if verb not in ("post", "put", "patch"):
        raise AssertionError(f"{method} requests do not take a body")
    getattr(engine, verb)(_docstring_body(context))
    context.validation = engine.when().execute()


@then("the response status should be {code:d}")
def step_status(context, code):
    _validation(context).assert_status(code)


@then('the response header "{name}" should be "{value}"')
def step_response_header(context, name, value):
    _validation(context).assert_header(name, value)


# broker

@given('the topic "{topic}"')
def step_topic(context, topic):
    _engine(context).topic(topic)


@when("I produce the message:")
def step_produce(context):
    context.validation = _engine(context).produce(_docstring_body(context)).when().execute()


@when('I produce the message with key "{key}":')
def step_produce_keyed(context, key):
    context.validation = _engine(context).produce(key, _docstring_body(context)).when().execute()


@when("I produce the messages:")
def step_produce_batch(context):
    # table columns: key | value
    pairs = [(row[0] or None, _coerce_scalar(row[1])) for row in _table_rows(context)]
    context.validation = _engine(context).produce_batch(pairs).when().execute()


@when("I consume a message")
def step_consume(context):
    context.validation = _engine(context).consume().when().execute()


@when("I consume a message within {seconds:d} seconds")
def step_consume_within(context, seconds):
    context.validation = _engine(context).consume().with_timeout(seconds).when().execute()


@when("I consume {count:d} messages")
def step_consume_batch(context, count):
    context.validation = _engine(context).consume_batch(count).when().execute()


@then("the message should be persisted")
def step_persisted(context):
    _validation(context).assert_persisted()


@then('the message key should be "{key}"')
def step_message_key(context, key):
    _validation(context).assert_key(key)


@then("the batch should contain {count:d} messages")
def step_batch_count(context, count):
    _validation(context).assert_batch_count(count)


# common

@then("the step should succeed")
def step_succeeds(context):
    _validation(context).assert_success()


@then("the step should fail")
def step_fails(context):
    _validation(context).assert_failure()


@then('the JSON path "{path}" should equal "{value}"')
def step_json_equals(context, path, value):
    _validation(context).assert_json_path(path, equals=_coerce_scalar(value))


@then('the JSON path "{path}" should exist')
def step_json_exists(context, path):
    _validation(context).assert_json_path(path)


@then('I save the step as "{name}"')
def step_save(context, name):
    context.engine.save_step(name)
