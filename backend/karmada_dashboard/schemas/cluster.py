from __future__ import annotations

from pydantic import Field

from karmada_dashboard.schemas.common import CamelModel


class ClusterCreate(CamelModel):
    member_cluster_name: str = ""
    member_cluster_kube_config: str = ""
    sync_mode: str = "Push"


class LabelItem(CamelModel):
    key: str
    value: str = ""


class TaintItem(CamelModel):
    key: str
    value: str = ""
    effect: str


class ClusterUpdate(CamelModel):
    labels: list[LabelItem] | None = None
    taints: list[TaintItem] | None = None


class ClusterUserUpdate(CamelModel):
    username: str
    roles: list[str] = Field(default_factory=list)


class ClusterUsersUpdate(CamelModel):
    users: list[ClusterUserUpdate] = Field(default_factory=list)
