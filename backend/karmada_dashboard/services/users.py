"""etcd-backed dashboard users, per-user settings and the stored Karmada service-account token."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.core.crypto import decrypt_if_encrypted, encrypt_if_configured
from karmada_dashboard.core.security import get_password_hash, verify_password
from karmada_dashboard.exceptions import AppException, BadRequestError, NotFoundError
from karmada_dashboard.schemas.settings import UserSetting, UserSettingRequest
from karmada_dashboard.services.etcd import EtcdClient, EtcdError
from karmada_dashboard.services.fga import CLUSTER_RELATIONS, DASHBOARD_OBJECT, FGAClient, FGAError

logger = structlog.get_logger(__name__)

USER_KEY_PREFIX = "/karmada/dashboard/users/"
SETTINGS_KEY_PREFIX = "/karmada/dashboard/settings/"
SA_TOKEN_KEY = "karmada-dashboard/service-account-token"
ROLES = ("admin", "basic_user")


class User(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str
    password_hash: str = ""
    email: str = ""
    role: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class UserStore:
    def __init__(self, etcd: EtcdClient) -> None:
        self.etcd = etcd

    @staticmethod
    def _key(username: str) -> str:
        return USER_KEY_PREFIX + username

    async def exists(self, username: str) -> bool:
        return await self.etcd.get(self._key(username)) is not None

    async def get(self, username: str) -> User:
        raw = await self.etcd.get(self._key(username))
        if raw is None:
            raise NotFoundError(f"user {username} not found")
        try:
            return User.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("users.decode_failed", key=self._key(username), error=str(exc))
            raise AppException(f"failed to decode user {username}") from exc

    async def create(self, username: str, password: str, email: str = "", role: str = "basic_user") -> User:
        if await self.exists(username):
            raise BadRequestError(f"user {username} already exists")
        user = User(username=username, password_hash=get_password_hash(password), email=email, role=role)
        await self.etcd.put(self._key(username), user.to_json())
        logger.info("users.created", username=username, role=role)
        return user

    async def update(self, user: User) -> User:
        if not await self.exists(user.username):
            raise NotFoundError(f"user {user.username} not found")
        user.updated_at = datetime.now(tz=timezone.utc)
        await self.etcd.put(self._key(user.username), user.to_json())
        return user

    async def update_password(self, username: str, password: str) -> None:
        user = await self.get(username)
        user.password_hash = get_password_hash(password)
        user.updated_at = datetime.now(tz=timezone.utc)
        await self.etcd.put(self._key(username), user.to_json())

    async def delete(self, username: str) -> None:
        await self.etcd.delete(self._key(username))

    async def list_all(self) -> list[User]:
        users: list[User] = []
        for key, raw in await self.etcd.get_prefix(USER_KEY_PREFIX):
            try:
                users.append(User.model_validate_json(raw))
            except ValidationError as exc:
                logger.error("users.decode_failed", key=key, error=str(exc))
        return users

    async def verify_password(self, username: str, password: str) -> bool:
        user = await self.get(username)
        if not user.password_hash:
            raise AppException(f"user {username} has no password set")
        try:
            return verify_password(password, user.password_hash)
        except ValueError:
            return False

    async def ensure_admin(self, password: str, email: str) -> bool:
        """Create ``admin`` when missing. Returns True when it was created."""
        if await self.exists("admin"):
            logger.info("users.admin_exists")
            return False
        await self.create("admin", password, email, "admin")
        return True


class UserSettingStore:
    """Settings per user, plus the user record changes a settings write implies."""

    def __init__(self, etcd: EtcdClient, users: UserStore, fga: FGAClient | None = None) -> None:
        self.etcd = etcd
        self.users = users
        self.fga = fga

    @staticmethod
    def _key(username: str) -> str:
        return SETTINGS_KEY_PREFIX + username

    async def get(self, username: str) -> UserSetting:
        raw = await self.etcd.get(self._key(username))
        if raw is None:
            return UserSetting.defaults(username)
        return UserSetting.model_validate_json(raw)

    async def _put(self, setting: UserSetting) -> None:
        await self.etcd.put(self._key(setting.username), setting.model_dump_json(by_alias=True, exclude_none=True))

    @staticmethod
    def _password(req: UserSettingRequest) -> str:
        return req.password or req.preferences.get("password", "")

    async def create(self, req: UserSettingRequest) -> None:
        if not req.username:
            raise BadRequestError("username is required")
        password = self._password(req)
        if not password:
            raise BadRequestError("password is required")
        role = req.preferences.get("role") or "basic_user"
        if role not in ROLES:
            raise BadRequestError(f"invalid role: {role}")
        email = req.preferences.get("email", "")

        if not await self.users.exists(req.username):
            await self.users.create(req.username, password, email, role)
        else:
            user = await self.users.get(req.username)
            user.role = role
            if email:
                user.email = email
            user.password_hash = get_password_hash(password)
            await self.users.update(user)

        await self._grant(req)
        await self._put(req.stored())
        logger.info("settings.created", username=req.username)

    async def update(self, req: UserSettingRequest) -> None:
        user = await self.users.get(req.username)
        password = self._password(req)
        role = req.preferences.get("role")
        email = req.preferences.get("email")
        changed = False
        if role and role != user.role:
            if role not in ROLES:
                raise BadRequestError(f"invalid role: {role}")
            user.role = role
            changed = True
        if email is not None and email != user.email:
            user.email = email
            changed = True
        if password:
            user.password_hash = get_password_hash(password)
            changed = True
        if changed:
            await self.users.update(user)

        await self._grant(req)
        if await self.etcd.get(self._key(req.username)) is None:
            raise NotFoundError(f"user setting not found for {req.username}")
        await self._put(req.stored())

    async def delete(self, username: str) -> None:
        deleted = await self.etcd.delete(self._key(username))
        if not deleted:
            logger.info("settings.not_found_deleting_user", username=username)
        await self.users.delete(username)

    async def list_all(self) -> list[UserSetting]:
        out: list[UserSetting] = []
        for user in await self.users.list_all():
            try:
                setting = await self.get(user.username)
            except ValidationError as exc:
                logger.error("settings.decode_failed", username=user.username, error=str(exc))
                continue
            setting.preferences["role"] = user.role
            if user.email:
                setting.preferences["email"] = user.email
                if not setting.display_name:
                    setting.display_name = user.email
            out.append(setting)
        return out

    async def _grant(self, req: UserSettingRequest) -> None:
        """Write owner/member tuples for the requested cluster permissions; failures are logged only."""
        if not req.cluster_permissions:
            return
        if not self.fga or not self.fga.enabled:
            logger.info("settings.fga_disabled_skip_permissions", username=req.username)
            return
        for perm in req.cluster_permissions:
            for relation in perm.roles:
                if relation not in CLUSTER_RELATIONS:
                    continue
                try:
                    await self.fga.write_tuple(req.username, relation, "cluster", perm.cluster)
                except FGAError as exc:
                    logger.error("settings.grant_failed", username=req.username, cluster=perm.cluster, error=str(exc))


class TokenStore:
    """The Karmada service-account token saved by ``/init-token``."""

    def __init__(self, etcd: EtcdClient, settings: Settings | None = None) -> None:
        self.etcd = etcd
        self.settings = settings or get_settings()

    async def get(self) -> str | None:
        if not self.etcd.available and not await self.etcd.connect():
            return None
        raw = await self.etcd.get(SA_TOKEN_KEY)
        if raw is None:
            return None
        return decrypt_if_encrypted(raw.decode(), self.settings.fernet_key) or None

    async def save(self, token: str) -> None:
        await self.etcd.put(SA_TOKEN_KEY, encrypt_if_configured(token, self.settings.fernet_key))


async def bootstrap_admin(users: UserStore, fga: FGAClient | None, settings: Settings) -> dict[str, Any]:
    """Create the admin user and its OpenFGA dashboard tuple. Never raises; returns what happened."""
    result: dict[str, Any] = {"etcd": False, "fga": False}
    if await users.etcd.connect():
        try:
            result["created"] = await users.ensure_admin(settings.admin_password, settings.admin_email)
            result["etcd"] = True
        except (AppException, EtcdError) as exc:
            logger.error("users.bootstrap_failed", error=str(exc))
    else:
        logger.error("users.etcd_unavailable_password_auth_disabled")

    if fga and fga.enabled:
        try:
            await fga.initialize()
            await fga.write_tuple("admin", "admin", *DASHBOARD_OBJECT)
            result["fga"] = True
        except FGAError as exc:
            # an existing tuple is reported as an error by OpenFGA
            logger.warning("openfga.bootstrap_failed", error=str(exc))
    return result
