"""
Main FastAPI application for qwen-proxy.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import (
    APP_NAME,
    APP_VERSION,
    CORS_HEADERS,
    DEBUG,
    create_error_response,
    load_proxy_config,
)
from .routes import openai_router, status_router
from .schemas import HealthResponse
from .services.auth import (
    AccountRouter,
    get_credential_store,
    set_account_router,
)

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _initialize_accounts() -> None:
    """Import qwen-code credentials when no account exists yet."""
    store = get_credential_store()
    data = await store.load()
    if not data.accounts:
        imported = await store.import_qwen_code_credentials()
        if imported:
            logger.info(f"Imported qwen-code credentials as account {imported.name}")
        data = await store.load()

    if data.accounts:
        logger.info(
            f"Loaded {len(data.accounts)} account(s), "
            f"{len(data.enabled_accounts())} enabled"
        )
    else:
        logger.warning('No accounts configured. Run "qwen-proxy account login".')


API_DESCRIPTION = """
**qwen-proxy** exposes an OpenAI-compatible API backed by Qwen OAuth accounts.

## Features

- **OpenAI-compatible** `/v1/chat/completions` endpoint, streaming and buffered
- Multiple accounts with `default` or `round-robin` routing
- Automatic token refresh

Accounts are managed with the `qwen-proxy account` command.
"""

OPENAPI_TAGS = [
    {
        "name": "OpenAI Compatible",
        "description": "OpenAI-compatible endpoints for chat completions and models.",
    },
    {
        "name": "Health",
        "description": "Health check and status endpoints.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Qwen proxy server...")
    strategy = getattr(app.state, "routing_strategy", None)
    if not strategy:
        strategy = load_proxy_config().routing_strategy
    router = AccountRouter(strategy=strategy)
    set_account_router(router)
    logger.info(f"Routing strategy: {router.strategy.value}")

    await _initialize_accounts()
    yield
    logger.info("Shutting down...")


class CORSHeadersMiddleware:
    """
    Adds the CORS headers to every HTTP response and answers preflight
    (OPTIONS) requests for any path with 204.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(status_code=204, headers=CORS_HEADERS)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for key, value in CORS_HEADERS.items():
                    headers.setdefault(key, value)
            await send(message)

        await self.app(scope, receive, send_with_cors)


app = FastAPI(
    title=APP_NAME,
    version=APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    redoc_url=None,
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(CORSHeadersMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = "Not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # runs outside the middleware stack, so CORS headers are set here
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=create_error_response("Internal server error"),
        headers=CORS_HEADERS,
    )


@app.get("/", include_in_schema=False)
async def root() -> RedirectResponse:
    """Redirect root to API documentation."""
    return RedirectResponse(url="/docs")


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(openai_router)
app.include_router(status_router)


def run(host: str, port: int, routing_strategy: Optional[str] = None) -> None:
    """
    Run the proxy with uvicorn in the foreground.

    Args:
        host: Interface to bind
        port: Port to listen on
        routing_strategy: Overrides the configured strategy when given
    """
    app.state.routing_strategy = routing_strategy
    logger.info(f"Listening on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="debug" if DEBUG else "info")
