import base64
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.exceptions import BadRequestError, NotFoundError
from karmada_dashboard.services.cloudcredentials import CloudCredentialService, validate_provider


def _service(settings):
    clients = Mock()
    clients.management = AsyncMock(return_value=Mock())
    clients.run = AsyncMock(side_effect=lambda fn, *args, **kwargs: fn(*args, **kwargs))
    return CloudCredentialService(clients, settings)


def _secret(name="aws-prod", labels=None, data=None):
    if labels is None:
        labels = {"ml-platform.io/credential-type": "cloud-credential", "ml-platform.io/cloud-provider": "aws"}
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace="ml-platform-system",
            labels=labels,
            annotations={"description": "prod account"},
            creation_timestamp=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        ),
        data=data or {"credentials": base64.b64encode(b"key=secret").decode()},
    )


def test_provider_is_case_insensitive():
    assert validate_provider("AWS") == "aws"
    with pytest.raises(BadRequestError) as excinfo:
        validate_provider("digitalocean")
    assert excinfo.value.message.startswith("Invalid provider: digitalocean. Valid providers:")


async def test_list_selects_credential_secrets(settings):
    listed = Mock(return_value=client.V1SecretList(items=[_secret()]))
    with patch.object(client.CoreV1Api, "list_namespaced_secret", listed):
        result = await _service(settings).list()

    listed.assert_called_once_with("ml-platform-system", label_selector="ml-platform.io/credential-type=cloud-credential")
    assert result["totalItems"] == 1
    assert result["credentials"][0] == {
        "name": "aws-prod",
        "provider": "aws",
        "description": "prod account",
        "createdAt": "2024-05-01 12:30:00",
        "labels": _secret().metadata.labels,
    }


async def test_content_returns_stored_base64(settings):
    with patch.object(client.CoreV1Api, "read_namespaced_secret", Mock(return_value=_secret())):
        content = await _service(settings).content("aws-prod")
    assert base64.b64decode(content["credentials"]) == b"key=secret"
    assert content["provider"] == "aws"


async def test_unlabelled_secret_is_not_a_credential(settings):
    with patch.object(client.CoreV1Api, "read_namespaced_secret", Mock(return_value=_secret(labels={"app": "other"}))):
        with pytest.raises(NotFoundError) as excinfo:
            await _service(settings).get("aws-prod")
    assert excinfo.value.message == "Cloud credential not found"


async def test_missing_secret_is_not_found(settings):
    with patch.object(client.CoreV1Api, "read_namespaced_secret", Mock(side_effect=ApiException(status=404))):
        with pytest.raises(NotFoundError):
            await _service(settings).delete("gone")


async def test_create_labels_and_encodes(settings):
    created = Mock(side_effect=lambda namespace, body: body)
    with patch.object(client.CoreV1Api, "create_namespaced_secret", created):
        result = await _service(settings).create("gcp-dev", "GCP", "{}", "dev project")

    body = created.call_args.args[1]
    assert body.metadata.labels == {"ml-platform.io/credential-type": "cloud-credential", "ml-platform.io/cloud-provider": "gcp"}
    assert body.data == {"credentials": base64.b64encode(b"{}").decode()}
    assert result["provider"] == "gcp"
    assert result["createdAt"] == ""


async def test_create_duplicate_name(settings):
    with patch.object(client.CoreV1Api, "create_namespaced_secret", Mock(side_effect=ApiException(status=409))):
        with pytest.raises(BadRequestError) as excinfo:
            await _service(settings).create("aws-prod", "aws", "x")
    assert excinfo.value.message == "Cloud credential with name 'aws-prod' already exists"


async def test_update_keeps_fields_left_empty(settings):
    replaced = Mock(side_effect=lambda name, namespace, body: body)
    with (
        patch.object(client.CoreV1Api, "read_namespaced_secret", Mock(return_value=_secret())),
        patch.object(client.CoreV1Api, "replace_namespaced_secret", replaced),
    ):
        result = await _service(settings).update("aws-prod", description="rotated")

    body = replaced.call_args.args[2]
    assert base64.b64decode(body.data["credentials"]) == b"key=secret"
    assert result["description"] == "rotated"
