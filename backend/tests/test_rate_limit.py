"""
Portable Backend — Rate Limiter Tests
=======================================

What:  Which budget a request is charged to, and the 429 response.
How:   A throwaway FastAPI app with one route that accepts a single bearer
       token, wrapped in RateLimitMiddleware. The budget is patched to 2.

What we test:
    ✅ Rotating made-up tokens shares one budget per client address
    ✅ An accepted token is counted on its own budget
    ✅ Other client addresses are unaffected
    ✅ 429 body shape and Retry-After
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient

from portable.config import settings
from portable.middleware.rate_limit import RateLimitMiddleware, ip_key, token_key

GOOD_TOKEN = "pk_accepted_token"


def _app() -> FastAPI:
    app = FastAPI()

    @app.get("/api/ping")
    async def ping(request: Request):
        if request.headers.get("Authorization") != f"Bearer {GOOD_TOKEN}":
            return JSONResponse(status_code=401, content={"error": "unauthorized"})
        return {"ok": True}

    app.add_middleware(RateLimitMiddleware)
    return app


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def budget_of_two():
    with patch.object(settings, "rate_limit_requests", 2):
        yield


@pytest.fixture
def app():
    return _app()


def _client(app, host="127.0.0.1") -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app, client=(host, 5000)), base_url="http://test")


class TestClientKeys:

    def test_token_key_hashes_the_token(self):
        request = Request({"type": "http", "headers": [(b"authorization", b"Bearer pk_secret")]})
        key = token_key(request)
        assert key.startswith("key:")
        assert "pk_secret" not in key
        assert len(key) == len("key:") + 16

    @pytest.mark.parametrize("header", [b"", b"Bearer ", b"Basic abc"])
    def test_no_token_key_without_bearer_token(self, header):
        request = Request({"type": "http", "headers": [(b"authorization", header)]})
        assert token_key(request) is None

    def test_ip_key(self):
        request = Request({"type": "http", "headers": [], "client": ("10.1.2.3", 80)})
        assert ip_key(request) == "ip:10.1.2.3"


@pytest.mark.usefixtures("budget_of_two")
class TestRateLimitMiddleware:

    @pytest.mark.asyncio
    async def test_rotating_invalid_tokens_share_the_address_budget(self, app):
        async with _client(app) as client:
            responses = [
                await client.get("/api/ping", headers=_auth(f"pk_made_up_{n}")) for n in range(3)
            ]

        assert [r.status_code for r in responses] == [401, 401, 429]

    @pytest.mark.asyncio
    async def test_anonymous_requests_share_the_address_budget(self, app):
        async with _client(app) as client:
            await client.get("/api/ping", headers=_auth("pk_made_up"))
            await client.get("/api/ping")
            response = await client.get("/api/ping")

        assert response.status_code == 429

    @pytest.mark.asyncio
    async def test_accepted_token_has_its_own_budget(self, app):
        async with _client(app) as client:
            first = await client.get("/api/ping", headers=_auth(GOOD_TOKEN))
            invalid = [await client.get("/api/ping", headers=_auth(f"pk_bad_{n}")) for n in range(3)]
            second = await client.get("/api/ping", headers=_auth(GOOD_TOKEN))
            third = await client.get("/api/ping", headers=_auth(GOOD_TOKEN))

        assert first.status_code == 200
        assert [r.status_code for r in invalid] == [401, 401, 429]
        assert second.status_code == 200
        assert third.status_code == 429

    @pytest.mark.asyncio
    async def test_other_addresses_are_unaffected(self, app):
        async with _client(app, host="10.0.0.1") as client:
            for n in range(3):
                await client.get("/api/ping", headers=_auth(f"pk_made_up_{n}"))
        async with _client(app, host="10.0.0.2") as client:
            response = await client.get("/api/ping")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_429_body_and_retry_after(self, app):
        async with _client(app) as client:
            for _ in range(2):
                await client.get("/api/ping")
            response = await client.get("/api/ping")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert "request_id" in response.json()
        assert int(response.headers["Retry-After"]) > 0

    @pytest.mark.asyncio
    async def test_version_endpoint_is_never_limited(self, app):
        @app.get("/api/extension/version")
        async def version():
            return {"version": "1.0.0"}

        async with _client(app) as client:
            responses = [await client.get("/api/extension/version") for _ in range(4)]

        assert {r.status_code for r in responses} == {200}
