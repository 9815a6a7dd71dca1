"""
OpenAI API Routes - Handles OpenAI-compatible endpoints.
"""

import json
import logging
from typing import Any, Dict, Union

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from ..config import create_error_response
from ..models import get_model, list_models
from ..schemas import ErrorResponse, ModelInfo, ModelList
from ..services.qwen_client import proxy_chat_completion

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/v1/chat/completions",
    response_model=None,
    tags=["OpenAI Compatible"],
    summary="Create chat completion",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    description="""
Forward a chat completion to Qwen using one of the stored accounts.

The request body is passed through unchanged. Set `stream: true` for
Server-Sent Events; upstream chunks are relayed as they arrive.
""",
)
async def openai_chat_completions(
    request: Request,
) -> Union[Response, StreamingResponse]:
    """OpenAI-compatible chat completions endpoint."""
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400, content=create_error_response("Invalid JSON body")
        )

    return await proxy_chat_completion(payload)


@router.get(
    "/v1/models",
    response_model=ModelList,
    tags=["OpenAI Compatible"],
    summary="List available models",
)
async def openai_list_models() -> Dict[str, Any]:
    """OpenAI-compatible models endpoint."""
    logger.debug("Models list requested")
    return {"object": "list", "data": list_models()}


@router.get(
    "/v1/models/{model_id}",
    response_model=ModelInfo,
    tags=["OpenAI Compatible"],
    summary="Get a model",
    responses={404: {"model": ErrorResponse}},
)
async def openai_get_model(model_id: str) -> Union[Dict[str, Any], Response]:
    model = get_model(model_id)
    if model is None:
        return JSONResponse(
            status_code=404, content=create_error_response("Model not found")
        )
    return model
