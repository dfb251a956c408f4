"""Wire schemas for the OAuth endpoints."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenRequest(BaseModel):
    """Body of ``POST /token``, accepted as form or JSON."""

    model_config = ConfigDict(extra="ignore")

    grant_type: str = Field("", description="authorization_code or refresh_token.")
    code: Optional[str] = None
    code_verifier: Optional[str] = None
    refresh_token: Optional[str] = None
    redirect_uri: Optional[str] = None
    client_id: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    scope: str = ""


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str
    registration_endpoint: str
    response_types_supported: List[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: List[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    code_challenge_methods_supported: List[str] = Field(default_factory=lambda: ["S256"])
    token_endpoint_auth_methods_supported: List[str] = Field(
        default_factory=lambda: ["none"]
    )
    scopes_supported: List[str] = Field(default_factory=list)


class ProtectedResourceMetadata(BaseModel):
    authorization_servers: List[str]
    resource: str


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration request. Fields are echoed, not enforced."""

    model_config = ConfigDict(extra="ignore")

    redirect_uris: Optional[List[str]] = None
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None
    client_name: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_id_issued_at: int
    client_secret_expires_at: int = 0
    token_endpoint_auth_method: str = "none"
    redirect_uris: List[str]
    grant_types: List[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    client_name: Optional[str] = None
    registration_client_uri: str
    registration_access_token: str


__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "OAuthErrorResponse",
    "ProtectedResourceMetadata",
    "TokenRequest",
    "TokenResponse",
]
