"""OpenFGA relationship checks over its HTTP API.

Model::

    type user
    type dashboard  relations admin, basic_user   (object dashboard:dashboard)
    type cluster    relations owner, member       (object cluster:<name>)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from karmada_dashboard.config import Settings, get_settings

logger = structlog.get_logger(__name__)

DASHBOARD_OBJECT = ("dashboard", "dashboard")
CLUSTER_RELATIONS = ("owner", "member")


def _direct(*relations: str) -> dict[str, Any]:
    return {
        "relations": {r: {"this": {}} for r in relations},
        "metadata": {"relations": {r: {"directly_related_user_types": [{"type": "user"}]} for r in relations}},
    }


AUTHORIZATION_MODEL: dict[str, Any] = {
    "schema_version": "1.1",
    "type_definitions": [
        {"type": "user"},
        {"type": "dashboard", **_direct("admin", "basic_user")},
        {"type": "cluster", **_direct(*CLUSTER_RELATIONS)},
    ],
}


class FGAError(Exception):
    pass


@dataclass(frozen=True)
class RelationTuple:
    user: str
    relation: str
    object_type: str
    object_id: str

    @classmethod
    def from_key(cls, key: dict[str, str]) -> "RelationTuple":
        user = key.get("user", "")
        obj_type, _, obj_id = key.get("object", "").partition(":")
        return cls(user=user.split(":", 1)[-1], relation=key.get("relation", ""), object_type=obj_type, object_id=obj_id)


def _key(user: str | None, relation: str | None, object_type: str, object_id: str) -> dict[str, str]:
    key = {"object": f"{object_type}:{object_id}"}
    if user:
        key["user"] = f"user:{user}"
    if relation:
        key["relation"] = relation
    return key


class FGAClient:
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self.store_id: str | None = None
        self.model_id: str | None = None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.openfga_api_url)

    @property
    def api_url(self) -> str:
        url = (self.settings.openfga_api_url or "").rstrip("/")
        if url and "://" not in url:
            url = f"http://{url}"
        return url

    async def _call(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        async with httpx.AsyncClient(base_url=self.api_url, timeout=10, transport=self._transport) as http:
            try:
                resp = await http.request(method, path, json=payload)
            except httpx.HTTPError as exc:
                raise FGAError(f"OpenFGA request {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise FGAError(f"OpenFGA {path} returned HTTP {resp.status_code}: {resp.text}")
        return resp.json() if resp.content else {}

    async def initialize(self) -> None:
        """Find or create the store, then write the authorization model."""
        async with self._lock:
            if self.store_id:
                return
            name = self.settings.openfga_store_name
            data = await self._call("GET", "/stores")
            store_id = next((s["id"] for s in data.get("stores") or [] if s.get("name") == name), None)
            if not store_id:
                store_id = (await self._call("POST", "/stores", {"name": name}))["id"]
                logger.info("openfga.store_created", store_id=store_id)
            model = await self._call("POST", f"/stores/{store_id}/authorization-models", AUTHORIZATION_MODEL)
            self.store_id = store_id
            self.model_id = model.get("authorization_model_id")
            logger.info("openfga.initialized", store_id=store_id, model_id=self.model_id)

    async def _store_path(self, suffix: str) -> str:
        if not self.store_id:
            await self.initialize()
        return f"/stores/{self.store_id}/{suffix}"

    async def check(self, user: str, relation: str, object_type: str, object_id: str) -> bool:
        payload: dict[str, Any] = {"tuple_key": _key(user, relation, object_type, object_id)}
        if self.model_id:
            payload["authorization_model_id"] = self.model_id
        data = await self._call("POST", await self._store_path("check"), payload)
        return bool(data.get("allowed"))

    async def write_tuple(self, user: str, relation: str, object_type: str, object_id: str) -> None:
        payload: dict[str, Any] = {"writes": {"tuple_keys": [_key(user, relation, object_type, object_id)]}}
        if self.model_id:
            payload["authorization_model_id"] = self.model_id
        await self._call("POST", await self._store_path("write"), payload)

    async def delete_tuple(self, user: str, relation: str, object_type: str, object_id: str) -> None:
        payload: dict[str, Any] = {"deletes": {"tuple_keys": [_key(user, relation, object_type, object_id)]}}
        if self.model_id:
            payload["authorization_model_id"] = self.model_id
        await self._call("POST", await self._store_path("write"), payload)

    async def read_tuples(self, object_type: str, object_id: str, relation: str | None = None, user: str | None = None) -> list[RelationTuple]:
        tuples: list[RelationTuple] = []
        token: str | None = None
        while True:
            payload: dict[str, Any] = {"tuple_key": _key(user, relation, object_type, object_id)}
            if token:
                payload["continuation_token"] = token
            data = await self._call("POST", await self._store_path("read"), payload)
            tuples += [RelationTuple.from_key(t.get("key") or {}) for t in data.get("tuples") or []]
            token = data.get("continuation_token")
            if not token:
                return tuples

    async def is_dashboard_admin(self, user: str) -> bool:
        return await self.check(user, "admin", *DASHBOARD_OBJECT)

    async def has_cluster_access(self, user: str, cluster: str) -> bool:
        """Dashboard admins see every cluster; others need owner or member on it."""
        if await self.is_dashboard_admin(user):
            return True
        for relation in CLUSTER_RELATIONS:
            if await self.check(user, relation, "cluster", cluster):
                return True
        return False
