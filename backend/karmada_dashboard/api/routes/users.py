"""Keycloak user administration, proxied with a service-account token when one is configured."""
from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from karmada_dashboard.core.auth import CurrentUser, get_current_user
from karmada_dashboard.dependencies import get_keycloak_client
from karmada_dashboard.exceptions import AppException
from karmada_dashboard.schemas.users import KeycloakUserCreate, KeycloakUserUpdate, PasswordReset
from karmada_dashboard.services.keycloak import KeycloakClient

router = APIRouter(tags=["users"])


async def admin_token(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> str:
    if not keycloak.enabled:
        raise AppException("Keycloak not configured", status_code=500)
    return await keycloak.admin_token(user.token)


@router.get("/users")
async def list_users(
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> list[dict[str, Any]]:
    return await keycloak.list_users(token)


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> dict[str, Any]:
    return await keycloak.get_user(token, user_id)


@router.post("/users")
async def create_user(
    body: KeycloakUserCreate,
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> dict[str, str]:
    user_id = await keycloak.create_user(token, body.model_dump(by_alias=True))
    return {"id": user_id}


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    body: KeycloakUserUpdate,
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> dict[str, str]:
    await keycloak.update_user(token, user_id, body.model_dump(by_alias=True))
    return {"message": "User updated successfully"}


@router.put("/users/{user_id}/password")
async def update_password(
    user_id: str,
    body: PasswordReset,
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> dict[str, str]:
    await keycloak.reset_password(token, user_id, body.password)
    return {"message": "Password updated successfully"}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> dict[str, str]:
    await keycloak.delete_user(token, user_id)
    return {"message": "User deleted successfully"}


@router.get("/roles")
async def list_roles(
    token: Annotated[str, Depends(admin_token)],
    keycloak: Annotated[KeycloakClient, Depends(get_keycloak_client)],
) -> list[str]:
    return [r["name"] for r in await keycloak.realm_roles(token) if r.get("name")]
