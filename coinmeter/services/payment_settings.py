"""
支付配置服务：管理 payment_settings 表的读写（Midtrans 密钥与模式）。

服务端密钥使用 Fernet 对称加密存储，密钥由 SETTINGS_SECRET 通过 PBKDF2 派生。
"""

import base64
import logging
import os
from datetime import datetime

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from coinmeter.database import get_db

logger = logging.getLogger(__name__)

SERVER_KEY = "midtrans_server_key"
CLIENT_KEY = "midtrans_client_key"
MODE_KEY = "midtrans_mode"

VALID_MODES = ("sandbox", "production")

# 加密存储的配置项
_ENCRYPTED_KEYS = {SERVER_KEY}

SNAP_API_URLS = {
    "sandbox": "https://app.sandbox.midtrans.com/snap/v1/transactions",
    "production": "https://app.midtrans.com/snap/v1/transactions",
}
SNAP_JS_URLS = {
    "sandbox": "https://app.sandbox.midtrans.com/snap/snap.js",
    "production": "https://app.midtrans.com/snap/snap.js",
}


class PaymentSettingsError(Exception):
    """支付配置操作异常。"""
    pass


def _get_fernet() -> Fernet:
    """从 SETTINGS_SECRET 环境变量派生 Fernet 加密密钥。"""
    secret = os.getenv("SETTINGS_SECRET", "default-settings-secret")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"coinmeter-salt",
        iterations=100_000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
    return Fernet(key)


def _encrypt(plaintext: str) -> str:
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def _decrypt(ciphertext: str) -> str:
    return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")


# ── 通用配置读写 ──────────────────────────────────────────


def get_setting(key: str) -> str | None:
    """读取配置，加密项自动解密；解密失败视为未配置。"""
    db = get_db()
    try:
        row = db.execute(
            "SELECT setting_value FROM payment_settings WHERE setting_key = ?",
            (key,),
        ).fetchone()
    finally:
        db.close()

    if not row or not row["setting_value"]:
        return None
    value = row["setting_value"]
    if key in _ENCRYPTED_KEYS:
        try:
            return _decrypt(value)
        except InvalidToken:
            logger.error("支付配置解密失败，请重新配置: key=%s", key)
            return None
    return value


def set_setting(key: str, value: str) -> None:
    """写入配置，存在则更新，不存在则插入。"""
    stored = _encrypt(value) if key in _ENCRYPTED_KEYS else value
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db = get_db()
    try:
        db.execute(
            """INSERT INTO payment_settings (setting_key, setting_value, created_at, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(setting_key)
               DO UPDATE SET setting_value = excluded.setting_value,
                             updated_at = excluded.updated_at""",
            (key, stored, now, now),
        )
        db.commit()
    finally:
        db.close()


# ── Midtrans 配置 ────────────────────────────────────────


def get_mode() -> str:
    mode = get_setting(MODE_KEY)
    return mode if mode in VALID_MODES else "sandbox"


def get_server_key() -> str | None:
    return get_setting(SERVER_KEY)


def save_midtrans_settings(
    server_key: str | None = None,
    client_key: str | None = None,
    mode: str | None = None,
) -> dict:
    """
    保存 Midtrans 配置，只更新传入的字段。

    Raises:
        PaymentSettingsError: mode 不合法。
    """
    if mode is not None and mode not in VALID_MODES:
        raise PaymentSettingsError(f"mode 必须是 {' / '.join(VALID_MODES)}")

    if server_key:
        set_setting(SERVER_KEY, server_key)
    if client_key is not None:
        set_setting(CLIENT_KEY, client_key)
    if mode is not None:
        set_setting(MODE_KEY, mode)

    logger.info("支付配置已更新: mode=%s", get_mode())
    return get_settings_status()


def get_settings_status() -> dict:
    """管理员查看的配置状态，服务端密钥只显示是否已配置和末 4 位。"""
    server_key = get_server_key()
    return {
        "server_key_configured": bool(server_key),
        "server_key_hint": f"****{server_key[-4:]}" if server_key else "",
        "client_key": get_setting(CLIENT_KEY) or "",
        "mode": get_mode(),
    }


def get_public_config() -> dict:
    """前端加载 Snap 所需的公开配置。"""
    mode = get_mode()
    return {
        "client_key": get_setting(CLIENT_KEY) or "",
        "mode": mode,
        "snap_js_url": SNAP_JS_URLS[mode],
    }
