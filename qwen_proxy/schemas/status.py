"""
Pydantic schemas for the status and health endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class AccountStatus(BaseModel):
    """Account summary without tokens."""

    id: str
    name: str
    enabled: bool
    isValid: bool = Field(..., description="Token is valid beyond the refresh buffer")
    resourceUrl: Optional[str] = None
    expiryDate: Optional[int] = Field(default=None, description="Epoch milliseconds")
    requestCount: int = 0
    lastUsed: Optional[int] = None
    isDefault: bool = False


class StatusResponse(BaseModel):
    status: str = "ok"
    routingStrategy: str
    totalAccounts: int
    activeAccounts: int = Field(..., description="Enabled accounts with valid tokens")
    accounts: List[AccountStatus]
    defaultAccountId: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "healthy"
