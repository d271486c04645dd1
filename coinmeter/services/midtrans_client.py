"""
Midtrans 客户端：调用 Snap 接口创建支付交易，并校验异步通知签名。

签名算法：SHA512(order_id + status_code + gross_amount + server_key) 的十六进制。
"""

import base64
import hashlib
import hmac
import logging

import httpx

from coinmeter.services.payment_settings import SNAP_API_URLS

logger = logging.getLogger(__name__)


class MidtransClientError(Exception):
    """Midtrans 客户端异常。details 为网关返回的错误详情。"""

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.details = details


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """计算通知签名（小写十六进制 SHA-512）。"""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(notification: dict, server_key: str) -> bool:
    """
    重新计算通知签名并与 signature_key 比较（常量时间）。

    在签名通过之前不得信任通知中的任何字段。
    """
    signature = notification.get("signature_key")
    if not isinstance(signature, str):
        return False
    expected = compute_signature(
        str(notification.get("order_id", "")),
        str(notification.get("status_code", "")),
        str(notification.get("gross_amount", "")),
        server_key,
    )
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


class MidtransClient:
    """Midtrans Snap API 客户端，使用 HTTP Basic（server_key:）认证。"""

    def __init__(self, server_key: str, mode: str = "sandbox", timeout: float = 10.0):
        self.server_key = server_key
        self.mode = mode
        self.api_url = SNAP_API_URLS.get(mode, SNAP_API_URLS["sandbox"])
        self.timeout = timeout

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self.server_key}:".encode("utf-8")).decode("utf-8")
        return f"Basic {token}"

    def create_transaction(self, payload: dict) -> dict:
        """
        创建 Snap 交易。

        Returns:
            dict: {"token": ..., "redirect_url": ...}

        Raises:
            MidtransClientError: 请求失败、响应非 2xx 或缺少 token。
        """
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    self.api_url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                        "Authorization": self._auth_header(),
                    },
                )
        except httpx.HTTPError as e:
            raise MidtransClientError(f"请求 Midtrans 接口失败: {e}")

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        if not isinstance(data, dict):
            data = {"raw": data}

        if resp.status_code >= 300 or not data.get("token"):
            logger.error("Midtrans 创建交易失败: status=%d, body=%s", resp.status_code, data)
            raise MidtransClientError(
                "Midtrans 创建交易失败",
                details=data.get("error_messages") or data,
            )

        return {"token": data["token"], "redirect_url": data.get("redirect_url")}
