"""
Configuration constants for the qwen-proxy server.
Centralizes all configuration to avoid duplication across modules.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables before any setting below reads them
load_dotenv(find_dotenv(usecwd=True))

# App Info
APP_VERSION = "1.2.0"
APP_NAME = "Qwen Proxy"

# OAuth Configuration (fixed for the public qwen-code client)
OAUTH_BASE_URL = "https://chat.qwen.ai"
DEVICE_CODE_ENDPOINT = "https://chat.qwen.ai/api/v1/oauth2/device/code"
TOKEN_ENDPOINT = "https://chat.qwen.ai/api/v1/oauth2/token"
CLIENT_ID = "f0304373b74a44d2b584a3fb70ca9e56"
SCOPE = "openid profile email model.completion"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# API Endpoints
DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DASHSCOPE_INTL_BASE_URL = "https://dashscope-intl.aliyuncs.com/compatible-mode/v1"
PORTAL_BASE_URL = "https://portal.qwen.ai/v1"

# DashScope attributes OAuth traffic by these headers
DASHSCOPE_USER_AGENT = "qwen-proxy/1.1.0"
DASHSCOPE_AUTH_TYPE = "qwen-oauth"

# Timestamps
MODEL_CREATED_TIMESTAMP = 1754006400  # Registry models have no upstream creation date

# Timeouts and Intervals (seconds unless noted)
TOKEN_REFRESH_BUFFER_MS = 30 * 1000  # refresh 30s before hard expiry
DEVICE_POLL_INTERVAL = 2.0
DEVICE_POLL_MAX_INTERVAL = 10.0
DEVICE_FLOW_TIMEOUT = 300.0  # 5 minutes for the user to authorize
SLOW_DOWN_MULTIPLIER = 1.5
OAUTH_TIMEOUT = 30.0
CONNECT_TIMEOUT = 10.0
REQUEST_TIMEOUT = 300  # 5 minutes for buffered completions
STREAMING_TIMEOUT = 600  # 10 minutes for streaming completions

# Server defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_ROUTING_STRATEGY = "default"

# File Paths
PROXY_DIR = os.path.expanduser(
    os.getenv("QWEN_PROXY_DIR", os.path.join("~", ".qwen-proxy"))
)
ACCOUNTS_FILE = os.path.join(PROXY_DIR, "accounts.json")
CONFIG_FILE = os.path.join(PROXY_DIR, "config.json")
QWEN_CODE_CREDENTIAL_FILE = os.path.join(
    os.path.expanduser("~"), ".qwen", "oauth_creds.json"
)

DEBUG = os.getenv("DEBUG", "") in ("1", "true", "yes")

# CORS headers carried by every response
CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

# Streaming Response Headers
STREAMING_RESPONSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

NO_ACCOUNTS_MESSAGE = (
    'No accounts configured. Use "qwen-proxy account login" to add an account.'
)


@dataclass
class ProxyConfig:
    """Server settings persisted in config.json."""

    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    routing_strategy: str = DEFAULT_ROUTING_STRATEGY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyConfig":
        return cls(
            port=int(data.get("port", DEFAULT_PORT)),
            host=str(data.get("host", DEFAULT_HOST)),
            routing_strategy=str(
                data.get("routingStrategy", DEFAULT_ROUTING_STRATEGY)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["routingStrategy"] = data.pop("routing_strategy")
        return data


def load_proxy_config(
    path: Optional[str] = None, apply_env: bool = True
) -> ProxyConfig:
    """
    Load server settings from config.json, then apply environment overrides.

    Args:
        path: Config file location (defaults to CONFIG_FILE)
        apply_env: Whether PORT, HOST and ROUTING_STRATEGY override the file

    Returns:
        ProxyConfig with defaults for anything missing or unreadable
    """
    path = path or CONFIG_FILE
    config = ProxyConfig()

    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = ProxyConfig.from_dict(json.load(f))
        except (IOError, ValueError, TypeError) as e:
            logger.warning(f"Could not read config file {path}: {e}")

    if apply_env:
        if os.getenv("PORT"):
            try:
                config.port = int(os.environ["PORT"])
            except ValueError:
                logger.warning(f"Ignoring invalid PORT value: {os.environ['PORT']}")
        if os.getenv("HOST"):
            config.host = os.environ["HOST"]
        if os.getenv("ROUTING_STRATEGY"):
            config.routing_strategy = os.environ["ROUTING_STRATEGY"]

    return config


def save_proxy_config(config: ProxyConfig, path: Optional[str] = None) -> None:
    """Write server settings to config.json."""
    path = path or CONFIG_FILE
    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)


def create_error_response(message: str) -> Dict[str, str]:
    """
    Create a standardized error response dictionary.

    Args:
        message: Error message to display

    Returns:
        Error body of the form {"error": message}
    """
    return {"error": message}
