import asyncio
import logging
import threading
import time
from unittest.mock import Mock

import pytest

from blest import BlestError, Router, RouterSettings
from blest.dispatch import (
    INTERNAL_ERROR,
    BatchDispatcher,
    CallRequest,
    Err,
    ErrorKind,
    Ok,
    route_not_found,
)
from blest.routing import Route, bind_handler


@pytest.mark.asyncio
async def test_echo_round_trip(router):
    results, error = await router.handle([["id1", "echo", {"v": 5}]])

    assert error is None
    assert results == [["id1", "echo", {"value": 5}, None]]


@pytest.mark.asyncio
async def test_empty_batch_returns_empty_results(router):
    assert await router.handle([]) == ([], None)


@pytest.mark.asyncio
async def test_unknown_route_is_isolated_404(router):
    results, error = await router.handle([["id1", "ghost"], ["id2", "echo", {"v": 1}]])

    assert error is None
    assert results[0] == ["id1", "ghost", None, {"message": "Not Found", "status": 404}]
    assert results[1] == ["id2", "echo", {"value": 1}, None]


@pytest.mark.asyncio
async def test_duplicate_ids_reject_batch_without_invoking_handlers(settings):
    handler = Mock(return_value={"ok": True})
    router = Router(settings=settings)
    router.register("spy", handler)

    results, error = await router.handle([["id1", "spy"], ["id1", "spy"]])

    assert results is None
    assert error == {"status": 400, "message": "Request items should have unique IDs"}
    handler.assert_not_called()


@pytest.mark.asyncio
async def test_malformed_batch_is_rejected(router):
    results, error = await router.handle([["id6"], {}, [True, 1.25]])

    assert results is None
    assert error["status"] == 400
    assert error["message"]


@pytest.mark.asyncio
async def test_non_array_batch_is_rejected(router):
    assert await router.handle({"id": "a1"}) == (
        None,
        {"status": 400, "message": "Request should be an array"},
    )


@pytest.mark.asyncio
async def test_timeout_only_affects_slow_item(settings):
    router = Router(settings=settings)

    @router.route("slow")
    async def slow(body, context):
        await asyncio.sleep(0.5)
        return {"slow": True}

    router.register("fast", lambda body, context: {"fast": True})
    router.describe("slow", {"timeout": 50})

    results, error = await router.handle([["a1", "slow"], ["a2", "fast"]])

    assert error is None
    assert results == [
        ["a1", "slow", None, INTERNAL_ERROR],
        ["a2", "fast", {"fast": True}, None],
    ]


@pytest.mark.asyncio
async def test_timeout_abandons_blocking_sync_handler(settings):
    router = Router(settings=settings)
    router.register("blocking", lambda body, context: time.sleep(0.3) or {"done": True})
    router.describe("blocking", {"timeout": 20})

    started = time.monotonic()
    results, _ = await router.handle([["a1", "blocking"]])

    assert results == [["a1", "blocking", None, INTERNAL_ERROR]]
    assert time.monotonic() - started < 0.25


@pytest.mark.asyncio
async def test_timed_out_chain_does_not_run_remaining_handlers(settings):
    calls = []
    router = Router(settings=settings)

    async def slow(body, context):
        await asyncio.sleep(0.2)
        return {"late": True}

    router.after(lambda body, context: calls.append("after"))
    router.register("slow", slow)
    router.describe("slow", {"timeout": 20})

    results, _ = await router.handle([["a1", "slow"]])
    await asyncio.sleep(0.3)

    assert results[0][3] == INTERNAL_ERROR
    assert calls == []


@pytest.mark.asyncio
async def test_output_order_matches_input_order(settings):
    router = Router(settings=settings)

    @router.route("sleep")
    async def sleep(body, context):
        await asyncio.sleep(body["ms"] / 1000)
        return {"ms": body["ms"]}

    batch = [[f"id{ms}", "sleep", {"ms": ms}] for ms in (60, 5, 30, 0)]

    results, _ = await router.handle(batch)

    assert [result[0] for result in results] == ["id60", "id5", "id30", "id0"]
    assert [result[2]["ms"] for result in results] == [60, 5, 30, 0]


@pytest.mark.asyncio
async def test_items_run_concurrently(settings):
    router = Router(settings=settings)

    @router.route("sleep")
    async def sleep(body, context):
        await asyncio.sleep(0.1)
        return {}

    started = time.monotonic()
    await router.handle([[f"id{i}", "sleep"] for i in range(10)])

    assert time.monotonic() - started < 0.5


@pytest.mark.asyncio
async def test_handler_errors_carry_status_code_and_data(settings):
    router = Router(settings=settings)

    @router.route("fail")
    def fail(body, context):
        raise BlestError(str(body["testValue"]), status=422, code="ERROR_5", data={"field": "x"})

    results, _ = await router.handle([["a1", "fail", {"testValue": 0.5}], ["a2", "echo"]])

    error = results[0][3]
    assert results[0][2] is None
    assert error["message"] == "0.5"
    assert error["status"] == 422
    assert error["code"] == "ERROR_5"
    assert error["data"] == {"field": "x"}
    assert isinstance(error["stack"], list)
    assert results[1][0] == "a2"


@pytest.mark.asyncio
async def test_plain_exceptions_default_to_500(settings, caplog):
    router = Router(settings=settings)
    router.register("fail", lambda body, context: 1 / 0)

    with caplog.at_level(logging.ERROR):
        results, _ = await router.handle([["a1", "fail"]])

    assert results[0][3]["status"] == 500
    assert results[0][3]["message"] == "division by zero"
    assert "The route 'fail' raised an error" in caplog.text


@pytest.mark.asyncio
async def test_stack_is_hidden_in_production():
    router = Router(settings=RouterSettings(environment="production"))
    router.register("fail", lambda body, context: 1 / 0)

    results, _ = await router.handle([["a1", "fail"]])

    assert results[0][3] == {"message": "division by zero", "status": 500}


@pytest.mark.asyncio
async def test_non_object_results_are_internal_errors(settings, caplog):
    router = Router(settings=settings)
    router.register("list", lambda body, context: [1, 2])
    router.register("nothing", lambda body, context: None)

    with caplog.at_level(logging.WARNING):
        results, _ = await router.handle([["a1", "list"], ["a2", "nothing"]])

    assert results[0][3] == INTERNAL_ERROR
    assert results[1][3] == INTERNAL_ERROR
    assert "did not return a result object" in caplog.text


@pytest.mark.asyncio
async def test_multiple_results_in_chain_conflict(settings, caplog):
    router = Router(settings=settings)
    router.before(lambda body, context: {"from": "before"})
    router.register("hello", lambda body, context: {"from": "handler"})

    with caplog.at_level(logging.WARNING):
        results, _ = await router.handle([["a1", "hello"]])

    assert results[0] == ["a1", "hello", None, INTERNAL_ERROR]
    assert "Multiple handlers on the route 'hello' returned results" in caplog.text


@pytest.mark.asyncio
async def test_middleware_result_is_used_when_handler_returns_none(settings):
    router = Router(settings=settings)
    router.before(lambda body, context: {"cached": True})
    router.register("cached", lambda body, context: None)

    results, _ = await router.handle([["a1", "cached"]])

    assert results[0][2] == {"cached": True}


@pytest.mark.asyncio
async def test_failing_before_handler_stops_the_chain(settings):
    handler = Mock(return_value={"ok": True})
    router = Router(settings=settings)

    @router.before
    def deny(body, context):
        raise BlestError("Unauthorized", status=401)

    router.register("secret", handler)

    results, _ = await router.handle([["a1", "secret"]])

    assert results[0][3]["status"] == 401
    handler.assert_not_called()


@pytest.mark.asyncio
async def test_context_is_enriched_per_call(settings):
    router = Router(settings=settings)
    router.register("ctx", lambda body, context: {"context": context})

    results, _ = await router.handle(
        [["a1", "ctx", {}, {"authorization": "token"}], ["a2", "ctx"]], {"user": "ada"}
    )

    first = results[0][2]["context"]
    second = results[1][2]["context"]
    assert first["user"] == "ada"
    assert first["request_id"] == "a1"
    assert first["route"] == "ctx"
    assert first["headers"] == {"authorization": "token"}
    assert second["headers"] is None
    assert first["batch_id"] == second["batch_id"]


@pytest.mark.asyncio
async def test_each_call_gets_an_isolated_context(settings):
    router = Router(settings=settings)

    @router.before
    def stamp(body, context):
        context["seen"].append(context["request_id"])

    router.register("ctx", lambda body, context: {"seen": list(context["seen"])})
    base = {"seen": []}

    results, _ = await router.handle([["a1", "ctx"], ["a2", "ctx"], ["a3", "ctx"]], base)

    assert [result[2]["seen"] for result in results] == [["a1"], ["a2"], ["a3"]]
    assert base == {"seen": []}


@pytest.mark.asyncio
async def test_after_handlers_observe_context_changes(settings):
    observed = {}
    router = Router(settings=settings)

    @router.before
    def start(body, context):
        context["started"] = True

    @router.after
    def finish(body, context):
        observed.update(context)

    router.register("work", lambda body, context: {"ok": True})

    await router.handle([["a1", "work"]])

    assert observed["started"] is True
    assert observed["request_id"] == "a1"


@pytest.mark.asyncio
async def test_selector_slot_projects_results(settings):
    router = Router(settings=settings)
    router.register(
        "user",
        lambda body, context: {"id": 1, "name": "Ada", "posts": [{"id": 1, "title": "x"}]},
    )

    results, _ = await router.handle(
        [
            ["a1", "user", None, ["name"]],
            ["a2", "user", None, {"_s": [["posts", ["title"]]]}],
            ["a3", "user"],
        ]
    )

    assert results[0][2] == {"name": "Ada"}
    assert results[1][2] == {"posts": [{"title": "x"}]}
    assert results[2][2]["id"] == 1


@pytest.mark.asyncio
async def test_missing_body_defaults_to_empty_object(router):
    results, _ = await router.handle([["a1", "echo"], ["a2", "echo", None]])

    assert results[0][2] == {"value": None}
    assert results[1][2] == {"value": None}


@pytest.mark.asyncio
async def test_dispatcher_uses_given_route_table():
    routes = {"ping": Route(handlers=(bind_handler(lambda: {"pong": True}),))}
    dispatcher = BatchDispatcher(routes, include_stack=False)

    results, error = await dispatcher.dispatch([["a1", "ping"]])

    assert error is None
    assert results == [["a1", "ping", {"pong": True}, None]]


def test_call_request_reads_selector_from_either_slot():
    from_list = CallRequest.from_item(["a1", "user", {"v": 1}, ["name"]])
    from_headers = CallRequest.from_item(["a2", "user", None, {"_s": ["name"], "x": "1"}])

    assert from_list.selector == ["name"]
    assert from_list.headers is None
    assert from_headers.selector == ["name"]
    assert from_headers.headers == {"_s": ["name"], "x": "1"}
    assert from_headers.body == {}


@pytest.mark.asyncio
async def test_abandoned_sync_handlers_do_not_starve_later_calls():
    release = threading.Event()
    router = Router(settings=RouterSettings(timeout=50, max_workers=4))
    router.before(lambda body, context: None)
    router.register("slow", lambda body, context: release.wait(5) and None)
    router.register("fast", lambda body, context: {"ok": True})

    try:
        results, _ = await router.handle([[f"s{i}", "slow"] for i in range(12)])
        assert all(result[3] == INTERNAL_ERROR for result in results)

        results, _ = await router.handle([["f1", "fast"]])
        assert results == [["f1", "fast", {"ok": True}, None]]
    finally:
        release.set()
        router.close()


def raise_value_error(body, context):
    raise ValueError("boom")


async def never_finishes(body, context):
    await asyncio.sleep(5)


@pytest.mark.parametrize(
    "handlers, timeout, kind",
    [
        ((route_not_found,), 0, ErrorKind.NOT_FOUND),
        ((raise_value_error,), 0, ErrorKind.HANDLER),
        ((lambda body, context: [1, 2],), 0, ErrorKind.INVALID_RESULT),
        ((lambda: {"a": 1}, lambda: {"b": 2}), 0, ErrorKind.CONFLICT),
        ((never_finishes,), 20, ErrorKind.TIMEOUT),
    ],
)
@pytest.mark.asyncio
async def test_failed_calls_are_tagged_with_their_kind(handlers, timeout, kind):
    route = Route(handlers=tuple(bind_handler(handler) for handler in handlers), timeout=timeout)
    dispatcher = BatchDispatcher({"target": route}, include_stack=False)

    outcome = await dispatcher.run_call(CallRequest.from_item(["a1", "target"]), {})

    assert isinstance(outcome, Err)
    assert outcome.kind is kind
    assert outcome.error["status"] == (404 if kind is ErrorKind.NOT_FOUND else 500)


@pytest.mark.asyncio
async def test_successful_call_is_ok():
    route = Route(handlers=(bind_handler(lambda: {"a": 1}),))
    dispatcher = BatchDispatcher({"target": route})

    outcome = await dispatcher.run_call(CallRequest.from_item(["a1", "target"]), {})

    assert outcome == Ok({"a": 1})
