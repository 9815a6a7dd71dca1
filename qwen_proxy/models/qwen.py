"""
Qwen model definitions exposed through /v1/models.
"""

from typing import Any, Dict, List

from ..config import MODEL_CREATED_TIMESTAMP


def _model(model_id: str) -> Dict[str, Any]:
    return {
        "id": model_id,
        "object": "model",
        "created": MODEL_CREATED_TIMESTAMP,
        "owned_by": "qwen",
        "permission": [],
        "root": model_id,
    }


SUPPORTED_MODELS: List[Dict[str, Any]] = [
    _model("qwen3-coder-plus"),
    _model("qwen3-coder-flash"),
    _model("coder-model"),
    _model("vision-model"),
]
