"""
Pydantic schemas for API requests and responses
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


# ========== Client Schemas ==========

class ClientCreate(BaseModel):
    """Schema for creating a new client"""
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    upstream_username: str = Field(..., min_length=1, max_length=50, description="Monty username")
    upstream_password: str = Field(..., min_length=1, max_length=255, description="Monty password")
    active: bool = True


class ClientUpdate(BaseModel):
    """Schema for updating client"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    upstream_username: Optional[str] = Field(None, min_length=1, max_length=50)
    upstream_password: Optional[str] = Field(None, min_length=1, max_length=255)
    active: Optional[bool] = None


class ClientResponse(BaseModel):
    """Schema for client response, never carries the encrypted password"""
    id: str
    name: str
    api_key: str
    active: bool
    upstream_username: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClientDetailResponse(ClientResponse):
    """Client with its upstream session status (admin only)"""
    token_status: str = "none"
    token_expires_at: Optional[datetime] = None
    agent_id: Optional[str] = None
    reseller_id: Optional[str] = None


class ClientListResponse(BaseModel):
    clients: List[ClientDetailResponse]
    total: int
    timestamp: datetime


class ClientStatusResponse(BaseModel):
    id: str
    name: str
    active: bool
    message: str


class ClientDeleteResponse(BaseModel):
    message: str
    deleted_client: dict


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    client_id: str
    agent_id: Optional[str] = None
    reseller_id: Optional[str] = None
    expires_at: Optional[datetime] = None


# ========== Token Schemas ==========

@dataclass(frozen=True)
class TokenSet:
    """Upstream session as returned by login or refresh, expiry normalized"""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    agent_id: Optional[str] = None
    reseller_id: Optional[str] = None


class UpstreamLoginRequest(BaseModel):
    """Schema for the upstream login request body"""
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=255)


class LoginTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime


class UpstreamLoginResponse(BaseModel):
    success: bool
    message: str
    tokens: LoginTokens


class SessionResponse(BaseModel):
    """Schema for the tenant session endpoint"""
    client_id: str
    name: str
    active: bool
    upstream_username: str
    has_upstream_token: bool
    expires_at: Optional[datetime] = None
    time_to_expiry: int = 0


class TokenStats(BaseModel):
    total: int
    valid: int
    expired: int


class StatsResponse(BaseModel):
    clients: int
    active_clients: int
    tokens: TokenStats
    cleanup: dict
    timestamp: datetime


# ========== General Schemas ==========

class HealthCheckResponse(BaseModel):
    """Schema for health check response"""
    status: str = "healthy"
    service: str = "simwego-gateway"
    version: str = "1.0.0"
    timestamp: datetime
    database: str = "connected"
    upstream: str = "reachable"


class ErrorResponse(BaseModel):
    """Schema for error response"""
    error: str
    message: str
    code: str
