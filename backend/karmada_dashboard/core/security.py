"""
Security utilities for the Karmada dashboard API.
集中管理安全相关功能：bcrypt 密码哈希、仪表盘 JWT 的签发与校验
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from karmada_dashboard.config import Settings, get_settings


# bcrypt cost 10, compatible with hashes written by the previous Go backend
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

KEYCLOAK_ALGORITHMS = ("RS256", "RS384", "RS512")


class TokenError(Exception):
    """JWT 无效或已过期"""


@dataclass
class TokenClaims:
    username: str
    role: str
    issued_at: datetime | None = None
    expires_at: datetime | None = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """验证密码

    Args:
        plain_password: 明文密码
        hashed_password: bcrypt 哈希

    Returns:
        bool: 密码是否匹配
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """生成 bcrypt 密码哈希"""
    return pwd_context.hash(password)


def create_access_token(username: str, role: str, settings: Optional[Settings] = None) -> str:
    """签发仪表盘 JWT（HS256，默认 24 小时有效）

    Args:
        username: 用户名，同时写入 sub
        role: 用户角色（admin / basic_user）

    Returns:
        str: JWT 令牌
    """
    settings = settings or get_settings()
    now = datetime.now(tz=timezone.utc)
    claims: dict[str, Any] = {
        "username": username,
        "role": role,
        "iss": settings.jwt_issuer,
        "sub": username,
        "iat": now,
        "nbf": now,
        "exp": now + timedelta(hours=settings.jwt_expire_hours),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def validate_token(token: str, settings: Optional[Settings] = None) -> TokenClaims:
    """校验仪表盘 JWT，失败时抛出 TokenError"""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise TokenError(f"invalid token: {exc}") from exc

    username = payload.get("username") or payload.get("sub")
    if not username:
        raise TokenError("invalid token: missing username")
    iat = payload.get("iat")
    exp = payload.get("exp")
    return TokenClaims(
        username=str(username),
        role=str(payload.get("role") or ""),
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if iat else None,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


def token_algorithm(token: str) -> str | None:
    """读取 JWT 头部的 alg（不校验签名），无法解析时返回 None"""
    try:
        return jwt.get_unverified_header(token).get("alg")
    except JWTError:
        return None


def is_keycloak_token(token: str) -> bool:
    """RS 系列签名的令牌视为 Keycloak 令牌"""
    return token_algorithm(token) in KEYCLOAK_ALGORITHMS
