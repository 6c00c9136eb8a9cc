import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config import BackendConfig
from conftest import entry_row, habit_row
from database.backend import BackendConnectionError, BackendResponseError
from database.supabase import SupabaseBackend

class PostgrestStub:
    """Minimal PostgREST endpoint recording what it receives"""

    def __init__(self):
        self.requests = []
        self.fail_status = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/rest/v1/{table}", self.handle)
        app.router.add_get("/rest/v1/", self.root)
        return app

    async def root(self, request):
        return web.json_response({"swagger": "2.0"})

    async def handle(self, request):
        body = await request.json() if request.can_read_body else None
        self.requests.append({
            "method": request.method,
            "table": request.match_info["table"],
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body
        })
        if self.fail_status:
            return web.json_response({"message": "permission denied for table"}, status=self.fail_status)

        table = request.match_info["table"]
        if request.method == "GET":
            rows = [habit_row("h1")] if table == "habits" else [entry_row("e1")]
            return web.json_response(rows)
        if request.method == "POST":
            return web.json_response([dict(body, id="new-1")], status=201)
        if request.method == "PATCH":
            row = habit_row("h1") if table == "habits" else entry_row("e1")
            row.update(body)
            return web.json_response([row])
        return web.json_response([], status=405)

def make_backend(server, **overrides) -> SupabaseBackend:
    settings = BackendConfig(url=f"http://{server.host}:{server.port}", anon_key="anon",
                             access_token="user-jwt", request_timeout=5)
    for key, value in overrides.items():
        setattr(settings, key, value)
    return SupabaseBackend(settings)

def test_requires_url_and_key():
    with pytest.raises(ValueError):
        SupabaseBackend(BackendConfig(url=None, anon_key="anon"))

@pytest.mark.asyncio
async def test_fetch_habits_filters_and_orders():
    stub = PostgrestStub()
    async with TestServer(stub.app()) as server:
        backend = make_backend(server)
        try:
            rows = await backend.fetch_habits("user-1")
        finally:
            await backend.close()

    assert rows[0]["id"] == "h1"
    request = stub.requests[0]
    assert request["method"] == "GET"
    assert request["query"] == {
        "select": "*",
        "user_id": "eq.user-1",
        "is_active": "eq.true",
        "order": "created_at.desc"
    }
    assert request["headers"]["apikey"] == "anon"
    assert request["headers"]["Authorization"] == "Bearer user-jwt"

@pytest.mark.asyncio
async def test_fetch_entries_ordered_by_date():
    stub = PostgrestStub()
    async with TestServer(stub.app()) as server:
        backend = make_backend(server)
        try:
            await backend.fetch_entries("user-1")
        finally:
            await backend.close()

    assert stub.requests[0]["table"] == "habit_entries"
    assert stub.requests[0]["query"]["order"] == "date.desc"

@pytest.mark.asyncio
async def test_writes_return_representation():
    stub = PostgrestStub()
    async with TestServer(stub.app()) as server:
        backend = make_backend(server)
        try:
            inserted = await backend.insert_entry({"habit_id": "h1", "date": "2025-07-10", "completed": True})
            updated = await backend.update_habit("h1", "user-1", {"is_active": False})
        finally:
            await backend.close()

    assert inserted["id"] == "new-1"
    assert updated["is_active"] is False

    post, patch = stub.requests
    assert post["method"] == "POST"
    assert post["headers"]["Prefer"] == "return=representation"
    assert patch["method"] == "PATCH"
    assert patch["query"]["id"] == "eq.h1"
    assert patch["query"]["user_id"] == "eq.user-1"
    assert patch["body"] == {"is_active": False}

@pytest.mark.asyncio
async def test_error_status_is_mapped():
    stub = PostgrestStub()
    stub.fail_status = 403
    async with TestServer(stub.app()) as server:
        backend = make_backend(server)
        try:
            with pytest.raises(BackendResponseError) as excinfo:
                await backend.update_entry("e1", "user-1", {"completed": False})
        finally:
            await backend.close()

    assert excinfo.value.status == 403
    assert "permission denied" in excinfo.value.message

@pytest.mark.asyncio
async def test_unreachable_server():
    stub = PostgrestStub()
    async with TestServer(stub.app()) as server:
        backend = make_backend(server)
        try:
            assert await backend.ping() is True
        finally:
            await backend.close()
        port = server.port

    backend = SupabaseBackend(BackendConfig(url=f"http://127.0.0.1:{port}", anon_key="anon", request_timeout=2))
    try:
        assert await backend.ping() is False
        with pytest.raises(BackendConnectionError):
            await backend.fetch_habits("user-1")
    finally:
        await backend.close()
