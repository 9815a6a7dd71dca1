"""
Qwen API Client - Forwards OpenAI-compatible chat completions to the Qwen
upstream selected for each account.
Supports multiple accounts through the account router.
"""

import json
import logging
from typing import Any, AsyncGenerator, Dict, Optional, Tuple

import httpx
from fastapi import Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ..config import (
    NO_ACCOUNTS_MESSAGE,
    REQUEST_TIMEOUT,
    STREAMING_RESPONSE_HEADERS,
    STREAMING_TIMEOUT,
    create_error_response,
)
from ..exceptions import (
    AccountError,
    AuthError,
    NetworkError,
    UpstreamError,
)
from ..utils import create_http_client
from .auth import (
    AccountRouter,
    CredentialStore,
    get_account_router,
    get_credential_store,
)
from .endpoints import build_headers, resolve_base_url

logger = logging.getLogger(__name__)


def _json_error(status_code: int, message: str) -> Response:
    """Create a JSON error response."""
    return Response(
        content=json.dumps(create_error_response(message)),
        status_code=status_code,
        media_type="application/json",
    )


async def _forward(
    url: str, payload: Dict[str, Any], headers: Dict[str, str]
) -> Response:
    """
    Make a buffered POST request and reproduce the upstream response.

    Raises:
        NetworkError: If the upstream cannot be reached
        UpstreamError: If the upstream answers with a non-2xx status
    """
    try:
        async with create_http_client(REQUEST_TIMEOUT) as client:
            resp = await client.post(url, json=payload, headers=headers)
    except httpx.RequestError as e:
        logger.error(f"Request to {url} failed: {e!r}")
        raise NetworkError(str(e) or type(e).__name__) from e

    content_type = resp.headers.get("Content-Type")
    if not resp.is_success:
        raise UpstreamError(resp.status_code, resp.content, content_type)

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        media_type=content_type,
    )


async def _close_upstream(response: httpx.Response, client: httpx.AsyncClient) -> None:
    await response.aclose()
    await client.aclose()


async def _relay_stream(
    response: httpx.Response, client: httpx.AsyncClient
) -> AsyncGenerator[bytes, None]:
    """
    Relay upstream bytes unchanged as they arrive.

    Closing happens in finally, so a client disconnect that cancels the
    generator also releases the upstream connection.
    """
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as e:
        # status already sent; the stream can only be cut short
        logger.error(f"Upstream stream interrupted: {e!r}")
    finally:
        await _close_upstream(response, client)


async def _open_upstream_stream(
    url: str, payload: Dict[str, Any], headers: Dict[str, str]
) -> Tuple[httpx.AsyncClient, httpx.Response]:
    """
    Send a streaming request and check its status before any byte is relayed.

    Raises:
        NetworkError: If the upstream cannot be reached
        UpstreamError: If the upstream answers with a non-2xx status
    """
    client = create_http_client(STREAMING_TIMEOUT)
    try:
        request = client.build_request("POST", url, json=payload, headers=headers)
        response = await client.send(request, stream=True)
    except httpx.RequestError as e:
        await client.aclose()
        logger.error(f"Streaming request to {url} failed: {e!r}")
        raise NetworkError(str(e) or type(e).__name__) from e

    if not response.is_success:
        try:
            body = await response.aread()
        except httpx.RequestError as e:
            raise NetworkError(str(e) or type(e).__name__) from e
        finally:
            await _close_upstream(response, client)
        raise UpstreamError(
            response.status_code, body, response.headers.get("Content-Type")
        )

    return client, response


async def _stream(
    url: str, payload: Dict[str, Any], headers: Dict[str, str]
) -> StreamingResponse:
    client, response = await _open_upstream_stream(url, payload, headers)
    return StreamingResponse(
        _relay_stream(response, client),
        status_code=response.status_code,
        media_type="text/event-stream",
        headers=STREAMING_RESPONSE_HEADERS,
        background=BackgroundTask(_close_upstream, response, client),
    )


async def proxy_chat_completion(
    payload: Dict[str, Any],
    store: Optional[CredentialStore] = None,
    router: Optional[AccountRouter] = None,
) -> Response:
    """
    Forward a chat completion request using the routed account.

    No retries: one account and one upstream attempt per request.

    Args:
        payload: Parsed OpenAI-style request body (forwarded unchanged)
        store: Credential store (defaults to the process-wide store)
        router: Account router (defaults to the process-wide router)

    Returns:
        Buffered Response or StreamingResponse
    """
    store = store or get_credential_store()
    router = router or get_account_router()

    account = await router.select_account()
    if account is None:
        return _json_error(401, NO_ACCOUNTS_MESSAGE)

    try:
        credentials = await store.get_valid_credentials(account.id)
    except (AccountError, AuthError) as e:
        logger.warning(f"No usable credentials for account {account.name}: {e}")
        return _json_error(401, str(e))

    url = f"{resolve_base_url(credentials.resource_url)}/chat/completions"
    headers = build_headers(credentials)
    is_streaming = bool(payload.get("stream"))
    logger.info(
        f"Forwarding {'streaming ' if is_streaming else ''}request for model "
        f"{payload.get('model')} via account {account.name}"
    )

    try:
        if is_streaming:
            response = await _stream(url, payload, headers)
        else:
            response = await _forward(url, payload, headers)
    except UpstreamError as e:
        logger.error(
            f"Upstream error {e.status_code} for account {account.name}: "
            f"{e.body[:500]!r}"
        )
        return Response(
            content=e.body,
            status_code=e.status_code,
            media_type=e.content_type,
        )
    except NetworkError as e:
        return _json_error(502, f"Proxy error: {e}")

    await store.record_usage(account.id)
    return response
