from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query

from karmada_dashboard.dependencies import get_keycloak_client
from karmada_dashboard.exceptions import AppException, BadRequestError, UnauthorizedError
from karmada_dashboard.schemas.auth import KeycloakUserInfo, KeycloakValidateRequest
from karmada_dashboard.services.keycloak import KeycloakClient, KeycloakError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/keycloak", tags=["keycloak"])


def _require_enabled(keycloak: KeycloakClient) -> None:
    if not keycloak.enabled:
        raise AppException("Keycloak authentication not configured", status_code=500)


@router.get("/config")
async def keycloak_config(keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)]) -> dict[str, Any]:
    return keycloak.frontend_config()


@router.get("/callback")
async def keycloak_callback(
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
    code: str = Query(default=""),
) -> dict[str, str]:
    """The SPA exchanges the code itself; this only echoes it back."""
    _require_enabled(keycloak)
    if not code:
        raise BadRequestError("Missing authorization code", status_code=400)
    return {"code": code}


@router.post("/validate", response_model=KeycloakUserInfo, response_model_by_alias=True)
async def keycloak_validate(
    body: KeycloakValidateRequest,
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> KeycloakUserInfo:
    _require_enabled(keycloak)
    if not body.token:
        raise BadRequestError("Invalid request: token is required", status_code=400)
    try:
        claims = await keycloak.validate_token(body.token)
    except KeycloakError as exc:
        logger.error("keycloak.validate_failed", error=str(exc))
        raise UnauthorizedError("Invalid or expired token") from exc
    return KeycloakUserInfo(username=claims.username, email=claims.email, roles=claims.roles, is_admin=claims.is_admin)
