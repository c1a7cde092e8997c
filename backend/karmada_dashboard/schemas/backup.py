from __future__ import annotations

from pydantic import Field

from karmada_dashboard.schemas.common import CamelModel


class CloudCredentialCreate(CamelModel):
    name: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    credentials: str = Field(min_length=1)
    description: str = ""


class CloudCredentialUpdate(CamelModel):
    credentials: str = ""
    description: str = ""


class RegistryCreate(CamelModel):
    name: str = Field(min_length=1)
    registry: str = Field(min_length=1)
    username: str = ""
    password: str = ""
    description: str = ""


class RegistryUpdate(CamelModel):
    name: str = ""
    registry: str = ""
    username: str = ""
    password: str = ""
    description: str = ""


class ScheduleConfig(CamelModel):
    type: str = "selection"
    value: str = ""
    enabled: bool = True


class BackupCreate(CamelModel):
    name: str = Field(min_length=1)
    cluster: str = Field(min_length=1)
    resource_type: str = Field(pattern="^(pod|statefulset)$")
    resource_name: str = Field(min_length=1)
    namespace: str = Field(min_length=1)
    registry_id: str = Field(min_length=1)
    repository: str = Field(min_length=1)
    schedule: ScheduleConfig


class BackupUpdate(CamelModel):
    name: str = ""
    resource_type: str = ""
    resource_name: str = ""
    namespace: str = ""
    registry_id: str = ""
    repository: str = ""
    schedule: ScheduleConfig | None = None


class RecoveryCreate(CamelModel):
    name: str = Field(min_length=1)
    backup_id: str = Field(min_length=1)
    target_cluster: str = Field(min_length=1)
    recovery_type: str = Field(pattern="^(restore|migrate)$")
    target_name: str = ""
    target_namespace: str = ""
