from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from karmada_dashboard.core.auth import require_admin
from karmada_dashboard.dependencies import get_cloud_credential_service
from karmada_dashboard.schemas.backup import CloudCredentialCreate, CloudCredentialUpdate
from karmada_dashboard.services.cloudcredentials import CloudCredentialService

router = APIRouter(prefix="/cloudcredentials", tags=["cloudcredentials"], dependencies=[Depends(require_admin)])

Service = Annotated[CloudCredentialService, Depends(get_cloud_credential_service)]


@router.get("")
async def list_credentials(service: Service) -> dict[str, Any]:
    return await service.list()


@router.post("")
async def create_credential(body: CloudCredentialCreate, service: Service) -> dict[str, Any]:
    return await service.create(body.name, body.provider, body.credentials, body.description)


@router.get("/{name}")
async def get_credential(name: str, service: Service) -> dict[str, Any]:
    return await service.get(name)


@router.get("/{name}/content")
async def get_credential_content(name: str, service: Service) -> dict[str, Any]:
    return await service.content(name)


@router.put("/{name}")
async def update_credential(name: str, body: CloudCredentialUpdate, service: Service) -> dict[str, Any]:
    return await service.update(name, body.credentials, body.description)


@router.delete("/{name}")
async def delete_credential(name: str, service: Service) -> dict[str, str]:
    await service.delete(name)
    return {"message": "Cloud credential deleted successfully"}
