"""Qwen model definitions and helpers."""

from .qwen import SUPPORTED_MODELS
from .helpers import get_model, list_models

__all__ = [
    "SUPPORTED_MODELS",
    "get_model",
    "list_models",
]
