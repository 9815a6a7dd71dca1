"""
Helper functions for looking up Qwen models.
"""

from typing import Any, Dict, List, Optional

from .qwen import SUPPORTED_MODELS


def list_models() -> List[Dict[str, Any]]:
    """
    Get the model registry in OpenAI list order.

    Returns:
        Copies of the supported model entries
    """
    return [dict(model) for model in SUPPORTED_MODELS]


def get_model(model_id: str) -> Optional[Dict[str, Any]]:
    """
    Look up a model by id.

    Args:
        model_id: Model identifier, e.g. "qwen3-coder-plus"

    Returns:
        A copy of the model entry, or None if the id is unknown
    """
    for model in SUPPORTED_MODELS:
        if model["id"] == model_id:
            return dict(model)
    return None
