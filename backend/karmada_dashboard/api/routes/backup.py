"""Backup registries, backups and recoveries. Registry and recovery routes are
registered ahead of ``/backup/{id}`` so their prefixes are not taken for ids."""
from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from karmada_dashboard.core.auth import require_admin
from karmada_dashboard.dependencies import get_backup_service, get_recovery_service, get_registry_service
from karmada_dashboard.schemas.backup import BackupCreate, BackupUpdate, RecoveryCreate, RegistryCreate, RegistryUpdate
from karmada_dashboard.services.backup import BackupService, RecoveryService, RegistryService

router = APIRouter(prefix="/backup", tags=["backup"], dependencies=[Depends(require_admin)])

Registries = Annotated[RegistryService, Depends(get_registry_service)]
Backups = Annotated[BackupService, Depends(get_backup_service)]
Recoveries = Annotated[RecoveryService, Depends(get_recovery_service)]

registry = APIRouter(prefix="/registry")


@registry.get("")
async def list_registries(service: Registries) -> dict[str, Any]:
    return await service.list()


@registry.post("")
async def create_registry(body: RegistryCreate, service: Registries) -> dict[str, Any]:
    return await service.create(body.name, body.registry, body.username, body.password, body.description)


@registry.get("/{registry_id}")
async def get_registry(registry_id: str, service: Registries) -> dict[str, Any]:
    return await service.get(registry_id)


@registry.put("/{registry_id}")
async def update_registry(registry_id: str, body: RegistryUpdate, service: Registries) -> dict[str, Any]:
    return await service.update(registry_id, **body.model_dump())


@registry.delete("/{registry_id}")
async def delete_registry(registry_id: str, service: Registries) -> dict[str, str]:
    await service.delete(registry_id)
    return {"message": "Registry deleted successfully"}


recovery = APIRouter(prefix="/recovery")


@recovery.get("")
async def list_recoveries(service: Recoveries) -> dict[str, Any]:
    return await service.list()


@recovery.post("")
async def create_recovery(body: RecoveryCreate, service: Recoveries) -> dict[str, Any]:
    return await service.create(
        body.name, body.backup_id, body.target_cluster, body.recovery_type, body.target_name, body.target_namespace
    )


@recovery.get("/checkpoint-restore-events")
async def checkpoint_restore_events(service: Recoveries) -> dict[str, Any]:
    return await service.checkpoint_events()


@recovery.get("/{recovery_id}")
async def get_recovery(recovery_id: str, service: Recoveries) -> dict[str, Any]:
    return await service.get(recovery_id)


@recovery.post("/{recovery_id}/execute")
async def execute_recovery(recovery_id: str, service: Recoveries) -> dict[str, Any]:
    return await service.execute(recovery_id)


@recovery.post("/{recovery_id}/cancel")
async def cancel_recovery(recovery_id: str, service: Recoveries) -> dict[str, Any]:
    return await service.cancel(recovery_id)


@recovery.delete("/{recovery_id}")
async def delete_recovery(recovery_id: str, service: Recoveries) -> dict[str, str]:
    await service.delete(recovery_id)
    return {"message": "Recovery deleted successfully"}


router.include_router(registry)
router.include_router(recovery)


@router.get("")
async def list_backups(service: Backups) -> dict[str, Any]:
    return await service.list()


@router.post("")
async def create_backup(body: BackupCreate, service: Backups) -> dict[str, Any]:
    return await service.create(
        body.name,
        body.cluster,
        body.resource_type,
        body.resource_name,
        body.namespace,
        body.registry_id,
        body.repository,
        body.schedule.type,
        body.schedule.value,
    )


@router.get("/clusters/{cluster}/resources")
async def cluster_resources(cluster: str, service: Backups, type: str = "", namespace: str | None = None) -> dict[str, Any]:
    return await service.cluster_resources(cluster, type, namespace)


@router.get("/{backup_id}")
async def get_backup(backup_id: str, service: Backups) -> dict[str, Any]:
    return await service.get(backup_id)


@router.put("/{backup_id}")
async def update_backup(backup_id: str, body: BackupUpdate, service: Backups) -> dict[str, Any]:
    schedule = body.schedule
    return await service.update(
        backup_id,
        resource_type=body.resource_type,
        resource_name=body.resource_name,
        namespace=body.namespace,
        registry_id=body.registry_id,
        repository=body.repository,
        schedule_type=schedule.type if schedule else "",
        schedule_value=schedule.value if schedule else "",
    )


@router.delete("/{backup_id}")
async def delete_backup(backup_id: str, service: Backups) -> dict[str, str]:
    await service.delete(backup_id)
    return {"message": "Backup deleted successfully"}


@router.post("/{backup_id}/execute")
async def execute_backup(backup_id: str, service: Backups) -> dict[str, str]:
    await service.execute(backup_id)
    return {"message": "Backup execution triggered successfully"}


@router.get("/{backup_id}/history")
async def backup_history(backup_id: str, service: Backups) -> dict[str, Any]:
    return await service.history(backup_id)
