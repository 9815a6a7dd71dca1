"""Small helpers shared by the service modules."""

import time
import uuid

import httpx

from .config import CONNECT_TIMEOUT


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def generate_account_id() -> str:
    return str(uuid.uuid4())


def create_http_client(
    timeout: float, connect: float = CONNECT_TIMEOUT
) -> httpx.AsyncClient:
    """
    Create an AsyncClient with a bounded timeout.

    Args:
        timeout: Overall read/write/pool timeout in seconds
        connect: Connection timeout in seconds

    Returns:
        A new httpx.AsyncClient; the caller owns closing it
    """
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=connect))
