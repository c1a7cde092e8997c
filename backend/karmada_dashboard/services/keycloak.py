"""Keycloak token validation (OIDC discovery + JWKS) and the admin REST calls behind ``/users``."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from cachetools import TTLCache
from jose import JWTError, jwt

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.core.security import KEYCLOAK_ALGORITHMS
from karmada_dashboard.exceptions import AppException, NotFoundError

logger = structlog.get_logger(__name__)

ADMIN_ROLES = ("admin", "dashboard-admin")


class KeycloakError(Exception):
    pass


@dataclass
class KeycloakClaims:
    subject: str = ""
    preferred_username: str = ""
    email: str = ""
    name: str = ""
    roles: list[str] = field(default_factory=list)

    @property
    def username(self) -> str:
        return self.preferred_username or self.email

    @property
    def is_admin(self) -> bool:
        return has_admin_role(self.roles)


def has_admin_role(roles: list[str]) -> bool:
    return any(r.lower() in ADMIN_ROLES for r in roles)


def key_ids(jwks: dict[str, Any]) -> set[str]:
    return {key.get("kid") for key in jwks.get("keys") or [] if key.get("kid")}


def extract_roles(claims: dict[str, Any]) -> list[str]:
    """Realm roles followed by every client's roles, without duplicates."""
    roles: list[str] = []
    for role in (claims.get("realm_access") or {}).get("roles") or []:
        if role not in roles:
            roles.append(role)
    for access in (claims.get("resource_access") or {}).values():
        for role in (access or {}).get("roles") or []:
            if role not in roles:
                roles.append(role)
    return roles


class KeycloakClient:
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._lock = asyncio.Lock()
        self._metadata: TTLCache = TTLCache(maxsize=4, ttl=3600)

    @property
    def enabled(self) -> bool:
        return self.settings.keycloak_enabled

    @property
    def realm_url(self) -> str:
        return f"{self.settings.keycloak_url.rstrip('/')}/realms/{self.settings.keycloak_realm}"

    @property
    def admin_url(self) -> str:
        return f"{self.settings.keycloak_url.rstrip('/')}/admin/realms/{self.settings.keycloak_realm}"

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=10, transport=self._transport)

    def frontend_config(self) -> dict[str, Any]:
        if not self.enabled:
            return {"enabled": False}
        base = self.settings.frontend_base_url
        return {
            "enabled": True,
            "url": self.settings.keycloak_url,
            "realm": self.settings.keycloak_realm,
            "clientId": self.settings.keycloak_client_id,
            "redirectUri": f"{base}/callback",
            "logoutRedirectUri": f"{base}/sign-out",
        }

    # ---------------------------
    # token validation
    # ---------------------------
    async def _get_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        async with self._http() as http:
            try:
                resp = await http.get(url, headers=headers)
            except httpx.HTTPError as exc:
                raise KeycloakError(f"request to {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise KeycloakError(f"{url} returned HTTP {resp.status_code}")
        return resp.json()

    async def _discovery(self) -> dict[str, Any]:
        async with self._lock:
            if "discovery" in self._metadata:
                return self._metadata["discovery"]
        data = await self._get_json(f"{self.realm_url}/.well-known/openid-configuration")
        async with self._lock:
            self._metadata["discovery"] = data
        return data

    async def _jwks(self, refresh: bool = False) -> dict[str, Any]:
        async with self._lock:
            if not refresh and "jwks" in self._metadata:
                return self._metadata["jwks"]
        discovery = await self._discovery()
        data = await self._get_json(discovery.get("jwks_uri") or f"{self.realm_url}/protocol/openid-connect/certs")
        async with self._lock:
            self._metadata["jwks"] = data
        return data

    def _decode(self, token: str, jwks: dict[str, Any], issuer: str) -> dict[str, Any]:
        return jwt.decode(
            token,
            jwks,
            algorithms=list(KEYCLOAK_ALGORITHMS),
            issuer=issuer,
            options={"verify_aud": False, "verify_at_hash": False},
        )

    async def validate_token(self, token: str) -> KeycloakClaims:
        """Verify signature, expiry and issuer; an unknown `kid` refreshes the JWKS once."""
        if not self.enabled:
            raise KeycloakError("Keycloak authentication not configured")
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except JWTError as exc:
            raise KeycloakError(f"invalid token: {exc}") from exc
        discovery = await self._discovery()
        issuer = discovery.get("issuer") or self.realm_url
        jwks = await self._jwks()
        if kid and kid not in key_ids(jwks):
            jwks = await self._jwks(refresh=True)
        try:
            claims = self._decode(token, jwks, issuer)
        except JWTError as exc:
            raise KeycloakError(f"invalid token: {exc}") from exc
        return KeycloakClaims(
            subject=claims.get("sub", ""),
            preferred_username=claims.get("preferred_username", ""),
            email=claims.get("email", ""),
            name=claims.get("name", ""),
            roles=extract_roles(claims),
        )

    # ---------------------------
    # admin REST
    # ---------------------------
    async def service_account_token(self) -> str | None:
        """Client-credentials token, or None when no client secret is configured."""
        if not self.settings.keycloak_client_secret:
            return None
        async with self._http() as http:
            resp = await http.post(
                f"{self.realm_url}/protocol/openid-connect/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.settings.keycloak_client_id,
                    "client_secret": self.settings.keycloak_client_secret,
                },
            )
        if resp.status_code >= 400:
            raise KeycloakError(f"client credentials grant failed with HTTP {resp.status_code}")
        return resp.json().get("access_token")

    async def admin_token(self, user_token: str) -> str:
        try:
            token = await self.service_account_token()
        except (KeycloakError, httpx.HTTPError) as exc:
            logger.info("keycloak.service_account_token_failed", error=str(exc))
            token = None
        if not token:
            logger.info("keycloak.admin_with_user_token")
            return user_token
        return token

    async def _admin(self, token: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with self._http() as http:
            try:
                resp = await http.request(method, f"{self.admin_url}{path}", headers={"Authorization": f"Bearer {token}"}, **kwargs)
            except httpx.HTTPError as exc:
                raise AppException(f"Keycloak request failed: {exc}") from exc
        if resp.status_code == 404:
            raise NotFoundError(f"User not found: {path}")
        if resp.status_code >= 400:
            raise AppException(f"Keycloak {method} {path} failed with HTTP {resp.status_code}: {resp.text}")
        return resp

    @staticmethod
    def _user_dto(raw: dict[str, Any], roles: list[str]) -> dict[str, Any]:
        return {
            "id": raw.get("id", ""),
            "username": raw.get("username", ""),
            "email": raw.get("email", ""),
            "firstName": raw.get("firstName", ""),
            "lastName": raw.get("lastName", ""),
            "enabled": bool(raw.get("enabled", False)),
            "emailVerified": bool(raw.get("emailVerified", False)),
            "roles": roles,
            "createdTimestamp": raw.get("createdTimestamp", 0),
        }

    async def user_realm_roles(self, token: str, user_id: str) -> list[dict[str, Any]]:
        return (await self._admin(token, "GET", f"/users/{user_id}/role-mappings/realm")).json()

    async def list_users(self, token: str) -> list[dict[str, Any]]:
        users = (await self._admin(token, "GET", "/users")).json()
        out = []
        for u in users:
            try:
                roles = [r["name"] for r in await self.user_realm_roles(token, u["id"])]
            except AppException:
                roles = []
            out.append(self._user_dto(u, roles))
        return out

    async def get_user(self, token: str, user_id: str) -> dict[str, Any]:
        raw = (await self._admin(token, "GET", f"/users/{user_id}")).json()
        roles = [r["name"] for r in await self.user_realm_roles(token, user_id)]
        return self._user_dto(raw, roles)

    async def realm_roles(self, token: str) -> list[dict[str, Any]]:
        return (await self._admin(token, "GET", "/roles")).json()

    async def _assign_roles(self, token: str, user_id: str, names: list[str]) -> None:
        available = await self.realm_roles(token)
        wanted = [r for r in available if r.get("name") in names]
        if wanted:
            await self._admin(token, "POST", f"/users/{user_id}/role-mappings/realm", json=wanted)

    async def create_user(self, token: str, body: dict[str, Any]) -> str:
        rep = {
            "username": body["username"],
            "email": body.get("email", ""),
            "firstName": body.get("firstName", ""),
            "lastName": body.get("lastName", ""),
            "enabled": bool(body.get("enabled", False)),
            "emailVerified": bool(body.get("emailVerified", False)),
        }
        resp = await self._admin(token, "POST", "/users", json=rep)
        # Keycloak returns the new user's URL in Location
        user_id = resp.headers.get("Location", "").rstrip("/").rsplit("/", 1)[-1]
        if body.get("password"):
            try:
                await self.reset_password(token, user_id, body["password"])
            except AppException as exc:
                logger.error("keycloak.set_password_failed", user_id=user_id, error=exc.message)
        if body.get("roles"):
            try:
                await self._assign_roles(token, user_id, body["roles"])
            except AppException as exc:
                logger.error("keycloak.assign_roles_failed", user_id=user_id, error=exc.message)
        return user_id

    async def update_user(self, token: str, user_id: str, body: dict[str, Any]) -> None:
        existing = (await self._admin(token, "GET", f"/users/{user_id}")).json()
        for key in ("email", "firstName", "lastName"):
            if body.get(key):
                existing[key] = body[key]
        for key in ("enabled", "emailVerified"):
            if body.get(key) is not None:
                existing[key] = body[key]
        await self._admin(token, "PUT", f"/users/{user_id}", json=existing)

        if body.get("roles") is not None:
            try:
                current = await self.user_realm_roles(token, user_id)
                if current:
                    await self._admin(token, "DELETE", f"/users/{user_id}/role-mappings/realm", json=current)
                if body["roles"]:
                    await self._assign_roles(token, user_id, body["roles"])
            except AppException as exc:
                logger.error("keycloak.update_roles_failed", user_id=user_id, error=exc.message)

    async def reset_password(self, token: str, user_id: str, password: str) -> None:
        await self._admin(
            token,
            "PUT",
            f"/users/{user_id}/reset-password",
            json={"type": "password", "value": password, "temporary": False},
        )

    async def delete_user(self, token: str, user_id: str) -> None:
        await self._admin(token, "GET", f"/users/{user_id}")
        await self._admin(token, "DELETE", f"/users/{user_id}")
