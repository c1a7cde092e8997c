from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query

from karmada_dashboard.core.auth import CurrentUser, get_current_user
from karmada_dashboard.dependencies import get_monitoring_service, get_setting_store, get_user_store
from karmada_dashboard.exceptions import AppException, ForbiddenError
from karmada_dashboard.schemas.monitoring import GrafanaCreate
from karmada_dashboard.schemas.settings import UserSetting, UserSettingRequest
from karmada_dashboard.services.etcd import EtcdError
from karmada_dashboard.services.monitoring import MonitoringService
from karmada_dashboard.services.users import UserSettingStore, UserStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/setting", tags=["settings"])


async def _role(user: CurrentUser, users: UserStore) -> str:
    """Role from the token, falling back to the etcd record."""
    if user.role:
        return user.role
    try:
        return (await users.get(user.username)).role
    except (AppException, EtcdError) as exc:
        logger.debug("settings.role_lookup_failed", username=user.username, error=str(exc))
        return ""


@router.get("/user", response_model=UserSetting, response_model_by_alias=True, response_model_exclude_none=True)
async def get_user_setting(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    store: Annotated[UserSettingStore, Depends(get_setting_store)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> UserSetting:
    setting = await store.get(user.username)
    role = await _role(user, users)
    if role:
        setting.preferences.setdefault("role", role)
    return setting


@router.post("/user", response_model=UserSetting, response_model_by_alias=True, response_model_exclude_none=True)
async def create_user_setting(
    body: UserSettingRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    store: Annotated[UserSettingStore, Depends(get_setting_store)],
) -> UserSetting:
    body.username = user.username
    await store.create(body)
    return body.stored()


@router.put("/user", response_model=UserSetting, response_model_by_alias=True, response_model_exclude_none=True)
async def update_user_setting(
    body: UserSettingRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    store: Annotated[UserSettingStore, Depends(get_setting_store)],
) -> UserSetting:
    body.username = user.username
    await store.update(body)
    return body.stored()


@router.delete("/user")
async def delete_user_setting(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    store: Annotated[UserSettingStore, Depends(get_setting_store)],
) -> str:
    await store.delete(user.username)
    return "User settings deleted successfully"


@router.get("/users", response_model=list[UserSetting], response_model_by_alias=True, response_model_exclude_none=True)
async def list_user_settings(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    store: Annotated[UserSettingStore, Depends(get_setting_store)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> list[UserSetting]:
    if await _role(user, users) != "admin":
        raise ForbiddenError("insufficient privileges: admin role required")
    return await store.list_all()


# ---------------------------
# monitoring sources
# ---------------------------
@router.post("/monitoring/grafana")
async def add_grafana(
    body: GrafanaCreate,
    service: Annotated[MonitoringService, Depends(get_monitoring_service)],
) -> str:
    await service.add_grafana(body.name, body.endpoint, body.token)
    return "Grafana configuration added successfully"


@router.get("/monitoring")
async def list_monitoring(service: Annotated[MonitoringService, Depends(get_monitoring_service)]) -> dict[str, Any]:
    return await service.list_sources()


@router.get("/monitoring/{name}/dashboards")
async def grafana_dashboards(name: str, service: Annotated[MonitoringService, Depends(get_monitoring_service)]) -> dict[str, Any]:
    return await service.dashboards(name)


@router.delete("/monitoring/source/{name}")
async def delete_monitoring(
    name: str,
    service: Annotated[MonitoringService, Depends(get_monitoring_service)],
    endpoint: str = Query(default=""),
) -> str:
    await service.delete_source(name, endpoint)
    return "Monitoring configuration deleted successfully"
