from __future__ import annotations

from pydantic import BaseModel, Field

from karmada_dashboard.schemas.common import CamelModel


class LoginRequest(BaseModel):
    # empty defaults so a missing field gets the login error message instead of a validation error
    username: str = ""
    password: str = ""


class LoginResponse(BaseModel):
    token: str


class MeResponse(CamelModel):
    name: str = ""
    authenticated: bool = False
    role: str = ""
    init_token: bool = False


class InitTokenRequest(BaseModel):
    token: str = ""


class InitTokenResponse(BaseModel):
    success: bool
    message: str


class KeycloakValidateRequest(BaseModel):
    token: str = ""


class KeycloakUserInfo(CamelModel):
    username: str
    email: str = ""
    roles: list[str] = Field(default_factory=list)
    is_admin: bool = False
