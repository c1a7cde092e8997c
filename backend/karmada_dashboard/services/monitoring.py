"""Grafana monitoring sources stored in a ConfigMap, with their API tokens in labelled Secrets.

The ConfigMap key ``monitoring`` holds YAML::

    monitorings:
      - name: grafana-prod
        type: grafana
        endpoint: https://grafana.example.com
        token: grafana-token-ab12cd34ef56gh78   # Secret name

Each Secret stores the base64 encoded token under ``token``.
"""
from __future__ import annotations

import base64
import binascii
import re
import secrets
import string
from typing import Any

import httpx
import structlog
import yaml
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.exceptions import AppException, BadRequestError, NotFoundError
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

CONFIG_KEY = "monitoring"
SECRET_PREFIX = "grafana-token-"
APP_LABEL = "app.kubernetes.io/name"
NAME_LABEL = "grafana.karmada.io/name"


def random_suffix(length: int = 16) -> str:
    """Lower-case alphanumeric string that starts with a letter."""
    first = secrets.choice(string.ascii_lowercase)
    rest = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(length - 1))
    return first + rest


def label_value(value: str) -> str:
    """Make a display name usable as a label value."""
    formatted = re.sub(r"[ /\\]", "-", value)
    if formatted and not formatted[0].isalnum():
        formatted = "x" + formatted
    if formatted and not formatted[-1].isalnum():
        formatted = formatted + "x"
    return formatted


def _decode_token(secret: client.V1Secret) -> str | None:
    raw = (secret.data or {}).get("token")
    if not raw:
        return None
    try:
        return base64.b64decode(base64.b64decode(raw)).decode()
    except (binascii.Error, UnicodeDecodeError):
        return None


class MonitoringService:
    def __init__(self, clients: ClientManager, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.clients = clients
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def namespace(self) -> str:
        return self.settings.settings_namespace

    async def _core(self) -> client.CoreV1Api:
        return client.CoreV1Api(await self.clients.management())

    async def _config_map(self, create: bool = False) -> client.V1ConfigMap | None:
        core = await self._core()
        try:
            return await self.clients.run(core.read_namespaced_config_map, self.settings.monitoring_configmap, self.namespace)
        except ApiException as exc:
            if exc.status != 404:
                raise
        if not create:
            return None
        body = client.V1ConfigMap(metadata=client.V1ObjectMeta(name=self.settings.monitoring_configmap, namespace=self.namespace), data={})
        return await self.clients.run(core.create_namespaced_config_map, self.namespace, body)

    @staticmethod
    def _entries(cm: client.V1ConfigMap | None) -> list[dict[str, Any]]:
        text = ((cm.data or {}).get(CONFIG_KEY) if cm else None) or ""
        try:
            doc = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise AppException(f"invalid monitoring configuration: {exc}") from exc
        return list(doc.get("monitorings") or [])

    async def _save(self, cm: client.V1ConfigMap, entries: list[dict[str, Any]]) -> None:
        cm.data = dict(cm.data or {})
        cm.data[CONFIG_KEY] = yaml.safe_dump({"monitorings": entries}, sort_keys=False)
        core = await self._core()
        await self.clients.run(core.replace_namespaced_config_map, self.settings.monitoring_configmap, self.namespace, cm)

    async def add_grafana(self, name: str, endpoint: str, token: str) -> None:
        if not name.strip():
            raise BadRequestError("name cannot be empty")
        if not token.strip():
            raise BadRequestError("token cannot be empty")
        endpoint = endpoint.rstrip("/")

        cm = await self._config_map(create=True)
        if cm is None:
            raise AppException(f"monitoring ConfigMap {self.settings.monitoring_configmap} could not be created")
        entries = self._entries(cm)
        for entry in entries:
            if entry.get("name") == name:
                raise BadRequestError(f"grafana configuration with name '{name}' already exists")
            if (entry.get("endpoint") or "").rstrip("/") == endpoint:
                raise BadRequestError(f"grafana configuration with endpoint '{endpoint}' already exists")

        secret_name = SECRET_PREFIX + random_suffix()
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=secret_name,
                namespace=self.namespace,
                labels={APP_LABEL: "grafana", NAME_LABEL: label_value(name)},
            ),
            type="Opaque",
            string_data={"token": base64.b64encode(token.encode()).decode()},
        )
        core = await self._core()
        await self.clients.run(core.create_namespaced_secret, self.namespace, secret)
        entries.append({"name": name, "type": "grafana", "endpoint": endpoint, "token": secret_name})
        await self._save(cm, entries)
        logger.info("monitoring.grafana_added", name=name, endpoint=endpoint)

    async def _token(self, secret_name: str) -> str | None:
        core = await self._core()
        try:
            secret = await self.clients.run(core.read_namespaced_secret, secret_name, self.namespace)
        except ApiException as exc:
            logger.warning("monitoring.token_secret_unreadable", secret=secret_name, error=str(exc))
            return None
        return _decode_token(secret)

    async def list_sources(self) -> dict[str, Any]:
        out = []
        for entry in self._entries(await self._config_map()):
            item = {"name": entry.get("name", ""), "type": entry.get("type", ""), "endpoint": entry.get("endpoint", "")}
            token = await self._token(entry.get("token", "")) if entry.get("token") else None
            if token:
                item["token"] = token
            out.append(item)
        return {"monitorings": out}

    async def dashboards(self, name: str) -> dict[str, Any]:
        cm = await self._config_map()
        entries = self._entries(cm)
        if not entries:
            raise NotFoundError("no monitoring configuration found")
        entry = next((e for e in entries if e.get("name") == name), None)
        if entry is None:
            raise NotFoundError(f"monitoring '{name}' not found")
        if entry.get("type") != "grafana":
            raise BadRequestError(f"monitoring type '{entry.get('type')}' does not support dashboards")
        token = await self._token(entry.get("token", ""))
        if not token:
            raise AppException("token not found in secret")

        url = f"{(entry.get('endpoint') or '').rstrip('/')}/api/search"
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as http:
            try:
                resp = await http.get(url, params={"query": "", "type": "dash-db"}, headers={"Authorization": f"Bearer {token}"})
            except httpx.HTTPError as exc:
                raise AppException(f"grafana request failed: {exc}") from exc
        if resp.status_code != 200:
            raise AppException(f"grafana API returned error: {resp.status_code} {resp.reason_phrase}")
        boards = [
            {
                "id": b.get("id", 0),
                "uid": b.get("uid", ""),
                "title": b.get("title", ""),
                "url": b.get("url", ""),
                "folderId": b.get("folderId", 0),
                "folderTitle": b.get("folderTitle", ""),
                "type": b.get("type", ""),
            }
            for b in resp.json() or []
        ]
        return {"dashboards": boards}

    async def delete_source(self, name: str, endpoint: str) -> None:
        if not name or not endpoint:
            raise BadRequestError("name and endpoint parameters are required")
        cm = await self._config_map()
        if cm is None:
            raise NotFoundError(f"monitoring configuration with name '{name}' and endpoint '{endpoint}' not found")
        entries = self._entries(cm)
        kept = [e for e in entries if not (e.get("name") == name and (e.get("endpoint") or "").rstrip("/") == endpoint.rstrip("/"))]
        if len(kept) == len(entries):
            raise NotFoundError(f"monitoring configuration with name '{name}' and endpoint '{endpoint}' not found")
        await self._save(cm, kept)

        core = await self._core()
        selector = f"{APP_LABEL}=grafana,{NAME_LABEL}={label_value(name)}"
        found = await self.clients.run(core.list_namespaced_secret, self.namespace, label_selector=selector)
        for secret in found.items or []:
            await self.clients.run(core.delete_namespaced_secret, secret.metadata.name, self.namespace)
        logger.info("monitoring.source_deleted", name=name, secrets=len(found.items or []))
