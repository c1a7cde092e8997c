import time

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from karmada_dashboard.core.auth import authenticate_token
from karmada_dashboard.core.security import create_access_token, is_keycloak_token
from karmada_dashboard.exceptions import UnauthorizedError
from karmada_dashboard.services.keycloak import KeycloakClaims, KeycloakClient, KeycloakError, extract_roles, has_admin_role


@pytest.fixture(scope="module")
def rsa_pem():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private = key.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption())
    public = key.public_key().public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
    return private.decode(), public.decode()


@pytest.fixture
def keycloak_settings(settings):
    return settings.model_copy(update={"keycloak_enabled": True, "keycloak_url": "http://keycloak.test", "keycloak_realm_override": "demo"})


def _transport(public_pem: str, issuer: str, calls: list[str] | None = None) -> httpx.MockTransport:
    key = jwk.construct(public_pem, "RS256").to_dict()
    key["kid"] = "test"

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path.rsplit("/", 1)[-1])
        if request.url.path.endswith("/.well-known/openid-configuration"):
            return httpx.Response(200, json={"issuer": issuer, "jwks_uri": f"{issuer}/protocol/openid-connect/certs"})
        if request.url.path.endswith("/certs"):
            return httpx.Response(200, json={"keys": [key]})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def _sign(private_pem: str, issuer: str, kid: str = "test", **claims) -> str:
    now = int(time.time())
    payload = {"iss": issuer, "sub": "1234", "iat": now, "exp": now + 300, **claims}
    return jwt.encode(payload, private_pem, algorithm="RS256", headers={"kid": kid})


def test_extract_roles_merges_realm_and_client_roles():
    claims = {
        "realm_access": {"roles": ["offline_access", "admin"]},
        "resource_access": {"ml-platform-admin": {"roles": ["admin", "viewer"]}, "account": {"roles": ["manage-account"]}},
    }
    assert extract_roles(claims) == ["offline_access", "admin", "viewer", "manage-account"]


def test_admin_roles_are_case_insensitive():
    assert has_admin_role(["user", "Dashboard-Admin"])
    assert not has_admin_role(["user"])


def test_username_falls_back_to_email():
    assert KeycloakClaims(email="x@example.com").username == "x@example.com"
    assert KeycloakClaims(preferred_username="x", email="x@example.com").username == "x"


def test_frontend_config(settings, keycloak_settings):
    assert KeycloakClient(settings).frontend_config() == {"enabled": False}
    config = KeycloakClient(keycloak_settings).frontend_config()
    assert config["realm"] == "demo"
    assert config["redirectUri"].endswith("/callback")


async def test_validate_token(keycloak_settings, rsa_pem):
    private, public = rsa_pem
    issuer = "http://keycloak.test/realms/demo"
    client = KeycloakClient(keycloak_settings, transport=_transport(public, issuer))
    token = _sign(private, issuer, preferred_username="alice", realm_access={"roles": ["admin"]})

    assert is_keycloak_token(token)
    claims = await client.validate_token(token)
    assert claims.username == "alice"
    assert claims.is_admin


async def test_validate_token_rejects_other_issuer(keycloak_settings, rsa_pem):
    private, public = rsa_pem
    client = KeycloakClient(keycloak_settings, transport=_transport(public, "http://keycloak.test/realms/demo"))
    token = _sign(private, "http://elsewhere/realms/demo", preferred_username="alice")
    with pytest.raises(KeycloakError):
        await client.validate_token(token)


async def test_validate_token_when_disabled(settings):
    with pytest.raises(KeycloakError):
        await KeycloakClient(settings).validate_token("anything")


async def test_admin_token_falls_back_to_user_token(keycloak_settings):
    client = KeycloakClient(keycloak_settings.model_copy(update={"keycloak_client_secret": None}))
    assert await client.admin_token("user-token") == "user-token"


async def test_jwks_is_fetched_once_for_known_keys(keycloak_settings, rsa_pem):
    private, public = rsa_pem
    issuer = "http://keycloak.test/realms/demo"
    calls: list[str] = []
    client = KeycloakClient(keycloak_settings, transport=_transport(public, issuer, calls))
    token = _sign(private, issuer, preferred_username="alice")

    for _ in range(3):
        await client.validate_token(token)
    assert calls.count("certs") == 1


async def test_unknown_key_id_refreshes_jwks_once(keycloak_settings, rsa_pem):
    private, public = rsa_pem
    issuer = "http://keycloak.test/realms/demo"
    calls: list[str] = []
    client = KeycloakClient(keycloak_settings, transport=_transport(public, issuer, calls))

    await client.validate_token(_sign(private, issuer, preferred_username="alice"))
    await client.validate_token(_sign(private, issuer, kid="rotated", preferred_username="alice"))
    assert calls.count("certs") == 2


async def test_dashboard_tokens_skip_keycloak(keycloak_settings, rsa_pem):
    _, public = rsa_pem
    calls: list[str] = []
    client = KeycloakClient(keycloak_settings, transport=_transport(public, "http://keycloak.test/realms/demo", calls))
    token = create_access_token("bob", "basic_user", keycloak_settings)

    for _ in range(3):
        user = await authenticate_token(token, client, keycloak_settings)
    assert user.username == "bob"
    assert not user.is_keycloak
    assert calls == []


async def test_rejected_keycloak_token_is_not_retried_as_dashboard_token(keycloak_settings, rsa_pem):
    _, public = rsa_pem
    issuer = "http://keycloak.test/realms/demo"
    client = KeycloakClient(keycloak_settings, transport=_transport(public, issuer))
    other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    foreign = other.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption())
    token = _sign(foreign.decode(), issuer, preferred_username="mallory")

    with pytest.raises(UnauthorizedError):
        await authenticate_token(token, client, keycloak_settings)
