"""Cloud provider credentials stored as labelled Secrets on the management cluster."""
from __future__ import annotations

import base64
from typing import Any

import structlog
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import Settings
from karmada_dashboard.exceptions import BadRequestError, NotFoundError
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

CREDENTIAL_TYPE_LABEL = "ml-platform.io/credential-type"
CREDENTIAL_TYPE = "cloud-credential"
PROVIDER_LABEL = "ml-platform.io/cloud-provider"
DESCRIPTION_ANNOTATION = "description"
CREDENTIALS_KEY = "credentials"

VALID_PROVIDERS = ("aws", "gcp", "azure", "openstack", "vsphere")


def validate_provider(provider: str) -> str:
    lowered = provider.lower()
    if lowered not in VALID_PROVIDERS:
        raise BadRequestError(f"Invalid provider: {provider}. Valid providers: {list(VALID_PROVIDERS)}")
    return lowered


def _encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def _is_credential(secret: client.V1Secret) -> bool:
    labels = secret.metadata.labels or {}
    return labels.get(CREDENTIAL_TYPE_LABEL) == CREDENTIAL_TYPE


def to_credential(secret: client.V1Secret) -> dict[str, Any]:
    md = secret.metadata
    labels = md.labels or {}
    created = md.creation_timestamp.strftime("%Y-%m-%d %H:%M:%S") if md.creation_timestamp else ""
    return {
        "name": md.name,
        "provider": labels.get(PROVIDER_LABEL, ""),
        "description": (md.annotations or {}).get(DESCRIPTION_ANNOTATION, ""),
        "createdAt": created,
        "labels": labels,
    }


class CloudCredentialService:
    def __init__(self, clients: ClientManager, settings: Settings) -> None:
        self.clients = clients
        self.namespace = settings.cloud_credentials_namespace

    async def _core(self) -> client.CoreV1Api:
        return client.CoreV1Api(await self.clients.management())

    async def _read(self, core: client.CoreV1Api, name: str) -> client.V1Secret:
        try:
            secret = await self.clients.run(core.read_namespaced_secret, name, self.namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError("Cloud credential not found") from exc
            raise
        if not _is_credential(secret):
            raise NotFoundError("Cloud credential not found")
        return secret

    async def list(self) -> dict[str, Any]:
        core = await self._core()
        secrets = await self.clients.run(
            core.list_namespaced_secret, self.namespace, label_selector=f"{CREDENTIAL_TYPE_LABEL}={CREDENTIAL_TYPE}"
        )
        items = [to_credential(s) for s in secrets.items]
        return {"credentials": items, "totalItems": len(items)}

    async def get(self, name: str) -> dict[str, Any]:
        return to_credential(await self._read(await self._core(), name))

    async def content(self, name: str) -> dict[str, Any]:
        secret = await self._read(await self._core(), name)
        cred = to_credential(secret)
        return {
            "name": cred["name"],
            "provider": cred["provider"],
            "credentials": (secret.data or {}).get(CREDENTIALS_KEY, ""),
            "description": cred["description"],
        }

    async def create(self, name: str, provider: str, credentials: str, description: str = "") -> dict[str, Any]:
        provider = validate_provider(provider)
        core = await self._core()
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=self.namespace,
                labels={CREDENTIAL_TYPE_LABEL: CREDENTIAL_TYPE, PROVIDER_LABEL: provider},
                annotations={DESCRIPTION_ANNOTATION: description},
            ),
            type="Opaque",
            data={CREDENTIALS_KEY: _encode(credentials)},
        )
        try:
            created = await self.clients.run(core.create_namespaced_secret, self.namespace, body)
        except ApiException as exc:
            if exc.status == 409:
                raise BadRequestError(f"Cloud credential with name '{name}' already exists") from exc
            raise
        logger.info("cloudcredentials.created", name=name, provider=provider)
        return to_credential(created)

    async def update(self, name: str, credentials: str = "", description: str = "") -> dict[str, Any]:
        core = await self._core()
        secret = await self._read(core, name)
        if credentials:
            secret.data = {**(secret.data or {}), CREDENTIALS_KEY: _encode(credentials)}
        if description:
            secret.metadata.annotations = {**(secret.metadata.annotations or {}), DESCRIPTION_ANNOTATION: description}
        updated = await self.clients.run(core.replace_namespaced_secret, name, self.namespace, secret)
        logger.info("cloudcredentials.updated", name=name)
        return to_credential(updated)

    async def delete(self, name: str) -> None:
        core = await self._core()
        await self._read(core, name)
        await self.clients.run(core.delete_namespaced_secret, name, self.namespace)
        logger.info("cloudcredentials.deleted", name=name)
