"""
Pydantic schemas for the OpenAI-compatible endpoints.

Chat completion bodies are forwarded verbatim, so only the model registry
and error shapes are modelled here.
"""

from typing import List

from pydantic import BaseModel, Field


class ModelInfo(BaseModel):
    """A model entry in OpenAI list format."""

    id: str = Field(..., description="Model identifier", examples=["qwen3-coder-plus"])
    object: str = Field(default="model", description="Object type, always 'model'")
    created: int = Field(..., description="Unix timestamp")
    owned_by: str = Field(default="qwen", description="Owning organization")
    permission: List[dict] = Field(default_factory=list)
    root: str = Field(..., description="Root model identifier")


class ModelList(BaseModel):
    """Response from the models endpoint."""

    object: str = Field(default="list", description="Object type, always 'list'")
    data: List[ModelInfo] = Field(..., description="Available models")


class ErrorResponse(BaseModel):
    """Error body returned by every failing endpoint."""

    error: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Model not found"],
    )
