from __future__ import annotations

from pydantic import Field

from karmada_dashboard.schemas.common import CamelModel


class KeycloakUserCreate(CamelModel):
    username: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    password: str | None = None
    enabled: bool = True
    email_verified: bool = False
    roles: list[str] = Field(default_factory=list)


class KeycloakUserUpdate(CamelModel):
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool | None = None
    email_verified: bool | None = None
    roles: list[str] | None = None


class PasswordReset(CamelModel):
    password: str
