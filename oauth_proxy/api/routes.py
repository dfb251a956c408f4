"""
FastAPI routes for the Spotify OAuth proxy.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from oauth_proxy.core.config import AppSettings
from oauth_proxy.core.errors import InvalidRequestError, ProviderError
from oauth_proxy.dependencies import (
    get_app_settings,
    get_oauth_flow_service,
    get_public_base_url,
)
from oauth_proxy.schemas import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    OAuthErrorResponse,
    ProtectedResourceMetadata,
    TokenRequest,
)
from oauth_proxy.services import OAuthFlowService

router = APIRouter()
logger = logging.getLogger(__name__)

_NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


async def _read_body(request: Request) -> Dict[str, Any]:
    """Accept both form-encoded and JSON bodies."""
    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError as exc:
            raise InvalidRequestError("malformed JSON body") from exc
        if not isinstance(data, dict):
            raise InvalidRequestError("request body must be an object")
        return data
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get(
    "/.well-known/oauth-authorization-server",
    response_model=AuthorizationServerMetadata,
)
async def authorization_server_metadata(
    base_url: Annotated[str, Depends(get_public_base_url)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> AuthorizationServerMetadata:
    return AuthorizationServerMetadata(
        issuer=base_url,
        authorization_endpoint=f"{base_url}/authorize",
        token_endpoint=f"{base_url}/token",
        revocation_endpoint=f"{base_url}/revoke",
        registration_endpoint=f"{base_url}/register",
        scopes_supported=settings.oauth.scope_list,
    )


@router.get(
    "/.well-known/oauth-protected-resource",
    response_model=ProtectedResourceMetadata,
)
async def protected_resource_metadata(
    base_url: Annotated[str, Depends(get_public_base_url)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    sid: Optional[str] = Query(default=None, description="Agent session identifier."),
) -> ProtectedResourceMetadata:
    resource = settings.resource_uri or f"{base_url}/mcp"
    if sid:
        separator = "&" if "?" in resource else "?"
        resource = f"{resource}{separator}{urlencode({'sid': sid})}"
    return ProtectedResourceMetadata(
        authorization_servers=[settings.discovery_url or base_url],
        resource=resource,
    )


@router.get("/authorize")
async def authorize(
    base_url: Annotated[str, Depends(get_public_base_url)],
    flow: Annotated[OAuthFlowService, Depends(get_oauth_flow_service)],
    redirect_uri: Optional[str] = Query(default=None),
    code_challenge: Optional[str] = Query(default=None),
    code_challenge_method: Optional[str] = Query(default=None),
    scope: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    sid: Optional[str] = Query(default=None),
) -> Response:
    """Start an authorization transaction and bounce the user agent onward."""
    location = await flow.authorize(
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        base_url=base_url,
        scope=scope,
        state=state,
        sid=sid,
    )
    return RedirectResponse(url=location, status_code=HTTPStatus.FOUND)


@router.get("/spotify/callback")
async def spotify_callback(
    base_url: Annotated[str, Depends(get_public_base_url)],
    flow: Annotated[OAuthFlowService, Depends(get_oauth_flow_service)],
    code: Optional[str] = Query(default=None, description="Provider authorization code."),
    state: Optional[str] = Query(default=None, description="Composite state envelope."),
    error: Optional[str] = Query(default=None),
) -> Response:
    """Complete the provider leg and redirect to the client with our own code."""
    if error:
        logger.warning("Provider returned error on callback: %s", error)
        raise ProviderError(
            f"provider denied authorization: {error}",
            status_code=HTTPStatus.BAD_REQUEST,
            body=error,
        )
    location = await flow.handle_callback(
        provider_code=code, composite_state=state, base_url=base_url
    )
    return RedirectResponse(url=location, status_code=HTTPStatus.FOUND)


@router.post(
    "/token",
    responses={HTTPStatus.BAD_REQUEST.value: {"model": OAuthErrorResponse}},
)
async def token(
    request: Request,
    flow: Annotated[OAuthFlowService, Depends(get_oauth_flow_service)],
) -> Response:
    """Exchange an authorization code or rotate an RS access token."""
    body = await _read_body(request)
    try:
        token_request = TokenRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError("malformed token request") from exc
    result = await flow.exchange_token(token_request)
    return JSONResponse(content=result.model_dump(), headers=_NO_STORE_HEADERS)


@router.post("/revoke", status_code=HTTPStatus.OK)
async def revoke(
    request: Request,
    flow: Annotated[OAuthFlowService, Depends(get_oauth_flow_service)],
) -> dict:
    """Forward revocation upstream when configured; always answers ok."""
    body = await _read_body(request)
    await flow.revoke({key: str(value) for key, value in body.items()})
    return {"status": "ok"}


@router.post(
    "/register",
    status_code=HTTPStatus.CREATED,
    response_model=ClientRegistrationResponse,
)
async def register(
    base_url: Annotated[str, Depends(get_public_base_url)],
    flow: Annotated[OAuthFlowService, Depends(get_oauth_flow_service)],
    payload: Optional[ClientRegistrationRequest] = None,
) -> ClientRegistrationResponse:
    return flow.register_client(payload or ClientRegistrationRequest(), base_url=base_url)


__all__ = ["router"]
