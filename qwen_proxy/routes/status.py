"""
Status Routes - Account overview for operators.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter

from ..schemas import StatusResponse
from ..services.auth import get_account_router, get_credential_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/status",
    response_model=StatusResponse,
    tags=["Health"],
    summary="Account and routing status",
)
async def proxy_status() -> Dict[str, Any]:
    """Summarize accounts without exposing tokens."""
    store = get_credential_store()
    data = await store.load()
    summaries = [store.summarize(account, data) for account in data.accounts.values()]

    return {
        "status": "ok",
        "routingStrategy": get_account_router().strategy.value,
        "totalAccounts": len(summaries),
        "activeAccounts": sum(1 for s in summaries if s.enabled and s.is_valid),
        "accounts": [s.to_dict() for s in summaries],
        "defaultAccountId": data.default_account_id,
    }


@router.get(
    "/accounts",
    tags=["Health"],
    summary="Raw account store",
    description="Read-only view of the persisted account document.",
)
async def list_raw_accounts() -> Dict[str, Any]:
    data = await get_credential_store().load()
    return data.to_dict()
