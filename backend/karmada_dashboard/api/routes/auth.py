from __future__ import annotations

from typing import Annotated

import structlog
import urllib3
from fastapi import APIRouter, Depends
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.core.auth import CurrentUser, get_optional_user
from karmada_dashboard.core.security import create_access_token
from karmada_dashboard.dependencies import get_client_manager, get_token_store, get_user_store
from karmada_dashboard.exceptions import AppException, BadRequestError, UnauthorizedError
from karmada_dashboard.schemas.auth import InitTokenRequest, InitTokenResponse, LoginRequest, LoginResponse, MeResponse
from karmada_dashboard.services.etcd import EtcdError
from karmada_dashboard.services.kube_client import ClientManager
from karmada_dashboard.services.users import TokenStore, UserStore

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])

KARMADA_ERRORS = (ApiException, AppException, urllib3.exceptions.HTTPError)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    users: Annotated[UserStore, Depends(get_user_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> LoginResponse:
    if not body.username or not body.password:
        raise BadRequestError("No valid authentication method provided", status_code=400)
    if not users.etcd.available and not await users.etcd.connect():
        logger.error("auth.login_etcd_unavailable", username=body.username)
        raise UnauthorizedError("Invalid username or password: password authentication is disabled")
    try:
        ok = await users.verify_password(body.username, body.password)
        user = await users.get(body.username) if ok else None
    except (AppException, EtcdError) as exc:
        logger.info("auth.login_failed", username=body.username, error=str(exc))
        ok, user = False, None
    if not ok or user is None:
        raise UnauthorizedError("Invalid username or password")
    logger.info("auth.login", username=user.username)
    return LoginResponse(token=create_access_token(user.username, user.role or "basic_user", settings))


async def _init_token_valid(tokens: TokenStore, clients: ClientManager) -> bool:
    try:
        token = await tokens.get()
    except EtcdError as exc:
        logger.warning("auth.stored_token_unreadable", error=str(exc))
        return False
    if not token:
        return False
    try:
        await clients.karmada_version(token)
    except KARMADA_ERRORS as exc:
        logger.info("auth.stored_token_invalid", error=str(exc))
        return False
    return True


@router.get("/me", response_model=MeResponse, response_model_by_alias=True)
async def me(
    user: Annotated[CurrentUser | None, Depends(get_optional_user)],
    tokens: Annotated[TokenStore, Depends(get_token_store)],
    clients: Annotated[ClientManager, Depends(get_client_manager)],
) -> MeResponse:
    init_token = await _init_token_valid(tokens, clients)
    if user is None:
        return MeResponse(authenticated=False, init_token=init_token)
    return MeResponse(name=user.username, authenticated=True, role=user.role, init_token=init_token)


@router.post("/init-token", response_model=InitTokenResponse)
async def init_token(
    body: InitTokenRequest,
    tokens: Annotated[TokenStore, Depends(get_token_store)],
    clients: Annotated[ClientManager, Depends(get_client_manager)],
) -> InitTokenResponse:
    if not body.token:
        raise BadRequestError("Invalid token: token is required", status_code=400, details={"success": False, "message": "Invalid token: token is required"})
    try:
        await clients.karmada_version(body.token)
    except KARMADA_ERRORS as exc:
        message = f"Invalid token: {exc}"
        logger.error("auth.init_token_invalid", error=str(exc))
        raise BadRequestError(message, status_code=400, details={"success": False, "message": message}) from exc
    try:
        await tokens.save(body.token)
    except EtcdError as exc:
        message = f"Failed to save token: {exc}"
        logger.error("auth.init_token_save_failed", error=str(exc))
        raise AppException(message, status_code=500, details={"success": False, "message": message}) from exc
    await clients.reset_karmada()
    logger.info("auth.init_token_stored")
    return InitTokenResponse(success=True, message="Token successfully initialized and stored")
