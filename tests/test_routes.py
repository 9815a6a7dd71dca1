"""Tests for the HTTP surface (OpenAI routes, status, health, CORS)."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from qwen_proxy.config import CORS_HEADERS, NO_ACCOUNTS_MESSAGE
from qwen_proxy.main import app
from qwen_proxy.services.auth import (
    AccountRouter,
    RoutingStrategy,
    set_account_router,
    set_credential_store,
)

from conftest import HOUR_MS, make_credentials, mock_client_factory

CLIENT_FACTORY = "qwen_proxy.services.qwen_client.create_http_client"


@pytest.fixture
def client(store):
    """TestClient wired to a temporary store (lifespan is not run)."""
    set_credential_store(store)
    set_account_router(AccountRouter(store, RoutingStrategy.DEFAULT))
    return TestClient(app)


def _add_account(store, **kwargs):
    return asyncio.run(store.add_account(make_credentials(**kwargs), "main"))


def _assert_cors(response):
    for key, value in CORS_HEADERS.items():
        assert response.headers[key] == value


class TestModels:
    """Tests for /v1/models endpoints."""

    def test_list_models(self, client):
        response = client.get("/v1/models")

        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "list"
        ids = [m["id"] for m in data["data"]]
        assert ids == [
            "qwen3-coder-plus",
            "qwen3-coder-flash",
            "coder-model",
            "vision-model",
        ]
        model = data["data"][0]
        assert model["object"] == "model"
        assert model["owned_by"] == "qwen"
        assert model["root"] == model["id"]

    def test_get_model(self, client):
        response = client.get("/v1/models/coder-model")
        assert response.status_code == 200
        assert response.json()["id"] == "coder-model"

    def test_get_unknown_model(self, client):
        response = client.get("/v1/models/gpt-4")
        assert response.status_code == 404
        assert response.json() == {"error": "Model not found"}


class TestChatCompletions:
    """Tests for /v1/chat/completions."""

    def test_invalid_json(self, client):
        response = client.post(
            "/v1/chat/completions",
            content=b"{oops",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    def test_non_object_body(self, client):
        response = client.post("/v1/chat/completions", json=[1, 2, 3])
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    def test_no_accounts(self, client):
        response = client.post(
            "/v1/chat/completions", json={"model": "qwen3-coder-plus", "messages": []}
        )
        assert response.status_code == 401
        assert response.json() == {"error": NO_ACCOUNTS_MESSAGE}

    def test_buffered_completion(self, client, store):
        _add_account(store)
        completion = {"id": "chatcmpl-1", "choices": []}

        with patch(
            CLIENT_FACTORY,
            mock_client_factory(lambda r: httpx.Response(200, json=completion)),
        ):
            response = client.post(
                "/v1/chat/completions",
                json={"model": "qwen3-coder-plus", "messages": []},
            )

        assert response.status_code == 200
        assert response.json() == completion
        _assert_cors(response)

    def test_streaming_completion(self, client, store):
        _add_account(store)
        sse = b'data: {"choices":[]}\n\ndata: [DONE]\n\n'

        with patch(
            CLIENT_FACTORY,
            mock_client_factory(
                lambda r: httpx.Response(
                    200, content=sse, headers={"Content-Type": "text/event-stream"}
                )
            ),
        ):
            response = client.post(
                "/v1/chat/completions",
                json={"model": "qwen3-coder-plus", "messages": [], "stream": True},
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.content == sse
        _assert_cors(response)

    def test_upstream_error_status_kept(self, client, store):
        _add_account(store)

        with patch(
            CLIENT_FACTORY,
            mock_client_factory(
                lambda r: httpx.Response(400, json={"error": {"message": "bad model"}})
            ),
        ):
            response = client.post(
                "/v1/chat/completions", json={"model": "nope", "messages": []}
            )

        assert response.status_code == 400
        assert response.json() == {"error": {"message": "bad model"}}

    def test_unhandled_error_returns_500(self, store):
        set_credential_store(store)
        client = TestClient(app, raise_server_exceptions=False)

        with patch(
            "qwen_proxy.routes.openai.proxy_chat_completion",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            response = client.post("/v1/chat/completions", json={})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        _assert_cors(response)


class TestStatus:
    """Tests for /status and /accounts."""

    def test_status_counts(self, client, store):
        account = _add_account(store)
        asyncio.run(
            store.add_account(make_credentials(expires_in_ms=-HOUR_MS), "stale")
        )

        response = client.get("/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["routingStrategy"] == "default"
        assert data["totalAccounts"] == 2
        assert data["activeAccounts"] == 1
        assert data["defaultAccountId"] == account.id
        assert "accessToken" not in json.dumps(data)
        main = next(a for a in data["accounts"] if a["name"] == "main")
        assert main["isValid"] is True
        assert main["isDefault"] is True

    def test_accounts_returns_raw_store(self, client, store):
        account = _add_account(store)

        response = client.get("/accounts")

        assert response.status_code == 200
        data = response.json()
        assert data["defaultAccountId"] == account.id
        assert data["accounts"][account.id]["credentials"]["accessToken"]


class TestHealthAndCors:
    """Tests for /health, unknown routes and CORS handling."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        _assert_cors(response)

    def test_unknown_route(self, client):
        response = client.get("/does-not-exist")
        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}
        _assert_cors(response)

    def test_preflight(self, client):
        response = client.options(
            "/v1/chat/completions",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.status_code == 204
        _assert_cors(response)
