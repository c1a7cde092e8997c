from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import Depends, Request, WebSocket
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.core.request_context import username_var
from karmada_dashboard.core.security import TokenError, is_keycloak_token, validate_token
from karmada_dashboard.dependencies import get_client_manager, get_cluster_service, get_fga_client, get_keycloak_client
from karmada_dashboard.exceptions import AppException, ForbiddenError, UnauthorizedError, api_exception_message
from karmada_dashboard.services.clusters import ClusterService
from karmada_dashboard.services.fga import FGAClient, FGAError
from karmada_dashboard.services.keycloak import KeycloakClient, KeycloakError, has_admin_role
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

ADMIN_REQUIRED = "Administrator permissions required for management cluster access"


class CurrentUser:
    def __init__(self, username: str, role: str = "", roles: list[str] | None = None, source: str = "jwt", token: str = "") -> None:
        self.username = username
        self.role = role
        self.roles = roles if roles is not None else ([role] if role else [])
        self.source = source
        self.token = token

    @property
    def is_keycloak(self) -> bool:
        return self.source == "keycloak"


def bearer_token(header: str | None) -> str:
    if not header or not header.lower().startswith("bearer "):
        return ""
    return header.split(" ", 1)[1].strip()


async def authenticate_token(token: str, keycloak: KeycloakClient, settings: Settings) -> CurrentUser:
    """Resolve a bearer token: Keycloak first when enabled, then the dashboard JWT.

    An RS-signed token that Keycloak rejects is not retried as a dashboard JWT.
    """
    if keycloak.enabled and is_keycloak_token(token):
        try:
            claims = await keycloak.validate_token(token)
        except KeycloakError as exc:
            logger.info("auth.keycloak_token_rejected", error=str(exc))
            raise UnauthorizedError("Invalid or expired token") from exc
        role = "admin" if claims.is_admin else "basic_user"
        return CurrentUser(claims.username, role=role, roles=claims.roles, source="keycloak", token=token)
    try:
        claims = validate_token(token, settings)
    except TokenError as exc:
        raise UnauthorizedError("Invalid or expired token") from exc
    return CurrentUser(claims.username, role=claims.role, token=token)


async def get_current_user(
    request: Request,
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CurrentUser:
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        raise UnauthorizedError("Missing Authorization header")
    user = await authenticate_token(token, keycloak, settings)
    request.state.user = user
    username_var.set(user.username)
    return user


async def get_optional_user(
    request: Request,
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CurrentUser | None:
    """Like ``get_current_user`` but anonymous callers get None instead of a 401."""
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        return None
    try:
        user = await authenticate_token(token, keycloak, settings)
    except UnauthorizedError:
        return None
    username_var.set(user.username)
    return user


async def get_current_user_ws(websocket: WebSocket, keycloak: KeycloakClient, settings: Settings) -> CurrentUser:
    """Authenticate WebSocket connections using either `token` query param
    or `Authorization: Bearer <token>` header.
    """
    token = (websocket.query_params.get("token") or "").strip()
    if not token:
        token = bearer_token(websocket.headers.get("Authorization"))
    if not token:
        raise UnauthorizedError("Missing token")
    return await authenticate_token(token, keycloak, settings)


async def require_admin(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    fga: Annotated[FGAClient, Depends(get_fga_client)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> CurrentUser:
    """Dashboard administrators only: Keycloak roles when Keycloak is on, else OpenFGA."""
    if keycloak.enabled:
        if has_admin_role(user.roles):
            return user
        raise ForbiddenError(ADMIN_REQUIRED)
    if not fga.enabled:
        raise AppException("Authorization service unavailable")
    try:
        allowed = await fga.is_dashboard_admin(user.username)
    except FGAError as exc:
        logger.error("auth.admin_check_failed", username=user.username, error=str(exc))
        raise AppException("Failed to verify administrator permissions") from exc
    if not allowed:
        raise ForbiddenError(ADMIN_REQUIRED)
    return user


async def member_client(
    clustername: str,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    clusters: Annotated[ClusterService, Depends(get_cluster_service)],
    fga: Annotated[FGAClient, Depends(get_fga_client)],
    clients: Annotated[ClientManager, Depends(get_client_manager)],
) -> ApiClient:
    """Client for ``/member/{clustername}`` routes once the cluster exists and the caller may use it."""
    try:
        await clusters.get_object(clustername)
    except ApiException as exc:
        logger.error("auth.member_cluster_lookup_failed", cluster=clustername, error=str(exc))
        raise AppException(api_exception_message(exc)) from exc
    if fga.enabled:
        try:
            allowed = await fga.has_cluster_access(user.username, clustername)
        except FGAError as exc:
            logger.error("auth.cluster_access_check_failed", cluster=clustername, username=user.username, error=str(exc))
            raise AppException("failed to check permissions") from exc
        if not allowed:
            raise ForbiddenError(f"forbidden: no access to cluster {clustername}")
    return await clients.member(clustername)


async def mgmt_client(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    clients: Annotated[ClientManager, Depends(get_client_manager)],
) -> ApiClient:
    return await clients.management()
