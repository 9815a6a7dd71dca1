"""Pydantic schemas for API responses."""

from .openai import ErrorResponse, ModelInfo, ModelList
from .status import AccountStatus, HealthResponse, StatusResponse

__all__ = [
    "AccountStatus",
    "ErrorResponse",
    "HealthResponse",
    "ModelInfo",
    "ModelList",
    "StatusResponse",
]
