"""Client and router wired together through an in-memory transport."""

import asyncio

import pytest

from blest import BlestError, Client, InMemoryTransport, Router, TransportError


@pytest.fixture
def app() -> Router:
    """A router with a few routes plus a namespaced sub-router."""
    app = Router(timeout=1000)

    @app.before
    def authenticate(body, context):
        context["user"] = (context.get("headers") or {}).get("user", "anonymous")

    @app.route("hello")
    def hello(body, context):
        return {"hello": "world", "user": context["user"]}

    @app.route("greet")
    async def greet(body, context):
        return {"greeting": f"Hi, {body['name']}!"}

    @app.route("fail")
    def fail(body, context):
        raise BlestError("Intentional failure", status=418, code="TEAPOT", data={"retry": False})

    @app.route("slow")
    async def slow(body, context):
        await asyncio.sleep(0.5)
        return {}

    app.describe("slow", {"timeout": 30})

    users = Router()
    users.register(
        "get",
        lambda body: {"id": body["id"], "name": "Ada", "posts": [{"id": 1, "title": "Notes"}]},
    )
    app.namespace("users", users)
    return app


@pytest.fixture
def transport(app: Router) -> InMemoryTransport:
    return InMemoryTransport(app, context={"service": "e2e"})


@pytest.mark.asyncio
async def test_concurrent_calls_travel_in_one_batch(transport):
    async with Client(buffer_delay=5, transport=transport) as client:
        hello, greet = await asyncio.gather(
            client.request("hello", headers={"user": "ada"}),
            client.request("greet", {"name": "Grace"}),
        )

    assert hello == {"hello": "world", "user": "ada"}
    assert greet == {"greeting": "Hi, Grace!"}
    assert len(transport.batches) == 1


@pytest.mark.asyncio
async def test_namespaced_route_with_selector(transport):
    async with Client(buffer_delay=0, transport=transport) as client:
        user = await client.request("users/get", {"id": 7}, selector=["name", ["posts", ["title"]]])

    assert user == {"name": "Ada", "posts": [{"title": "Notes"}]}


@pytest.mark.asyncio
async def test_failures_are_isolated_per_call(transport):
    async with Client(buffer_delay=5, transport=transport) as client:
        outcomes = await asyncio.gather(
            client.request("fail"),
            client.request("ghost"),
            client.request("slow"),
            client.request("hello"),
            return_exceptions=True,
        )

    failed, missing, timed_out, hello = outcomes
    assert isinstance(failed, BlestError)
    assert (failed.message, failed.status, failed.code) == ("Intentional failure", 418, "TEAPOT")
    assert failed.data == {"retry": False}
    assert isinstance(missing, BlestError)
    assert (missing.message, missing.status) == ("Not Found", 404)
    assert isinstance(timed_out, BlestError)
    assert (timed_out.message, timed_out.status) == ("Internal Server Error", 500)
    assert hello == {"hello": "world", "user": "anonymous"}
    assert len(transport.batches) == 1


@pytest.mark.asyncio
async def test_large_fan_out_is_chunked(transport):
    async with Client(max_batch_size=4, buffer_delay=5, transport=transport) as client:
        greetings = await asyncio.gather(
            *(client.request("greet", {"name": str(n)}) for n in range(10))
        )

    assert [greeting["greeting"] for greeting in greetings] == [f"Hi, {n}!" for n in range(10)]
    assert [len(batch) for batch in transport.batches] == [4, 4, 2]


@pytest.mark.asyncio
async def test_merged_router_serves_through_client():
    main = Router()
    main.register("ping", lambda: {"pong": True})
    extra = Router()
    extra.register("status", lambda body, context: {"service": context["service"]})
    main.merge(extra)

    transport = InMemoryTransport(main, context={"service": "billing"})
    async with Client(buffer_delay=0, transport=transport) as client:
        ping, status = await asyncio.gather(client.request("ping"), client.request("status"))

    assert ping == {"pong": True}
    assert status == {"service": "billing"}


@pytest.mark.asyncio
async def test_rejected_batch_fails_every_call():
    class BrokenRouter(Router):
        async def handle(self, batch, context=None):
            return None, {"status": 400, "message": "Request should be an array"}

    transport = InMemoryTransport(BrokenRouter())
    async with Client(buffer_delay=0, transport=transport) as client:
        outcomes = await asyncio.gather(
            client.request("hello"), client.request("greet"), return_exceptions=True
        )

    assert all(isinstance(outcome, TransportError) for outcome in outcomes)
    assert all(outcome.status == 400 for outcome in outcomes)
