"""OpenAI-compatible proxy for Qwen OAuth accounts."""

from .config import APP_VERSION

__version__ = APP_VERSION
