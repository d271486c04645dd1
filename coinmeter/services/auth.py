"""
调用方认证模块：凭证解析（API Key / 会话令牌）、会话 JWT 验证、FastAPI 依赖项。

会话令牌由外部身份提供方签发，本服务只负责验证，不签发令牌。
"""

import logging
import os
from dataclasses import dataclass
from typing import Union

from fastapi import Request
from jose import jwt, JWTError

from coinmeter.database import get_db
from coinmeter.services.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

JWT_SECRET = os.environ.get("AUTH_JWT_SECRET", "change-me-to-the-identity-provider-secret")
JWT_ALGORITHM = os.environ.get("AUTH_JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.environ.get("AUTH_JWT_AUDIENCE") or None

API_KEY_HEADER = "x-api-key"


@dataclass(frozen=True)
class ApiKeyCredential:
    """账户静态 API Key。"""
    key: str


@dataclass(frozen=True)
class SessionTokenCredential:
    """身份提供方签发的 Bearer 会话令牌。"""
    token: str


Credential = Union[ApiKeyCredential, SessionTokenCredential]


def extract_credential(request: Request) -> Credential:
    """
    从请求头解析凭证。x-api-key 优先于 Authorization: Bearer。

    Raises:
        Unauthorized: 两种凭证都未提供。
    """
    api_key = request.headers.get(API_KEY_HEADER, "")
    if api_key:
        return ApiKeyCredential(api_key)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and auth_header[7:].strip():
        return SessionTokenCredential(auth_header[7:].strip())

    raise Unauthorized("Unauthorized - No valid authentication")


def verify_session_token(token: str) -> dict:
    """
    解码并验证会话 JWT。

    Returns:
        解码后的 payload 字典（sub 为用户 ID）。

    Raises:
        ValueError: 令牌无效、已过期或缺少用户信息。
    """
    options = {} if JWT_AUDIENCE else {"verify_aud": False}
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            options=options,
        )
    except JWTError as e:
        raise ValueError(f"令牌无效: {e}")
    if not payload.get("sub"):
        raise ValueError("令牌缺少用户信息")
    return payload


def get_user_by_api_key(api_key: str) -> str | None:
    """API Key 反查用户 ID，不存在返回 None。"""
    db = get_db()
    try:
        row = db.execute(
            "SELECT id FROM profiles WHERE api_key = ?", (api_key,)
        ).fetchone()
        return row["id"] if row else None
    finally:
        db.close()


def resolve_user_id(credential: Credential) -> str:
    """
    将凭证解析为用户 ID。

    提供了 API Key 但无效时直接拒绝，不回退到会话令牌认证。

    Raises:
        Unauthorized: 凭证无效。
    """
    if isinstance(credential, ApiKeyCredential):
        user_id = get_user_by_api_key(credential.key)
        if not user_id:
            logger.warning("API Key 认证失败")
            raise Unauthorized("Invalid API key")
        logger.info("API Key 认证成功: user_id=%s", user_id)
        return user_id

    try:
        claims = verify_session_token(credential.token)
    except ValueError as e:
        logger.warning("会话令牌验证失败: %s", e)
        raise Unauthorized("Unauthorized - Invalid token")
    return claims["sub"]


def has_role(user_id: str, role: str) -> bool:
    db = get_db()
    try:
        row = db.execute(
            "SELECT 1 FROM user_roles WHERE user_id = ? AND role = ?",
            (user_id, role),
        ).fetchone()
        return row is not None
    finally:
        db.close()


def grant_role(user_id: str, role: str) -> None:
    """授予用户角色（幂等）。"""
    db = get_db()
    try:
        db.execute(
            "INSERT OR IGNORE INTO user_roles (user_id, role) VALUES (?, ?)",
            (user_id, role),
        )
        db.commit()
    finally:
        db.close()


# ── FastAPI 依赖项 ────────────────────────────────────────


def get_current_user(request: Request) -> dict:
    """
    FastAPI 依赖项：仅接受 Bearer 会话令牌，返回令牌 payload（含 sub、email）。

    Raises:
        Unauthorized: 令牌缺失或无效。
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise Unauthorized("Unauthorized - No token provided")

    try:
        return verify_session_token(auth_header[7:].strip())
    except ValueError:
        raise Unauthorized("Unauthorized - Invalid token")


def get_current_admin(request: Request) -> dict:
    """
    FastAPI 依赖项：会话令牌有效且用户拥有 admin 角色。

    Raises:
        Unauthorized: 令牌缺失或无效。
        Forbidden: 非管理员。
    """
    claims = get_current_user(request)
    if not has_role(claims["sub"], "admin"):
        raise Forbidden("Admin role required")
    return claims
