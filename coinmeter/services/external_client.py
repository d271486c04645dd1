"""
外部接口客户端：对动作配置的外部 HTTP 接口发起单次 JSON 请求。

不重试；超时由 EXTERNAL_API_TIMEOUT（秒）控制。
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from coinmeter.services.errors import ExternalError

logger = logging.getLogger(__name__)

EXTERNAL_API_TIMEOUT = float(os.getenv("EXTERNAL_API_TIMEOUT", "30"))

# 这些方法不带请求体，payload 以查询参数发送
_QUERY_METHODS = {"GET", "DELETE"}


@dataclass
class ExternalResponse:
    status_code: int
    body: Any  # 解析后的 JSON；非 JSON 响应为 None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def error_message(self, default: str = "External API request failed") -> str:
        """从响应体中取错误信息（message / msg / error），取不到用默认值。"""
        if isinstance(self.body, dict):
            for key in ("message", "msg", "error"):
                value = self.body.get(key)
                if value:
                    return str(value)
        return default


def _to_query_params(payload: dict) -> dict:
    return {
        k: v if isinstance(v, (str, int, float)) else json.dumps(v)
        for k, v in payload.items()
        if v is not None
    }


class ExternalApiClient:
    """外部接口调用。"""

    def __init__(self, timeout: float | None = None):
        self.timeout = EXTERNAL_API_TIMEOUT if timeout is None else timeout

    def call(self, url: str, method: str, payload: dict) -> ExternalResponse:
        """
        发起请求并解析 JSON 响应。

        Raises:
            ExternalError: 网络异常、超时等传输层失败（映射为 500）。
        """
        method = (method or "POST").upper()
        headers = {"Content-Type": "application/json"}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                if method in _QUERY_METHODS:
                    resp = client.request(
                        method, url, params=_to_query_params(payload), headers=headers,
                    )
                else:
                    resp = client.request(method, url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("外部接口请求异常 (url=%s): %s", url, e)
            raise ExternalError("External API request failed")

        try:
            body = resp.json()
        except ValueError:
            body = None
            logger.warning(
                "外部接口响应不是 JSON (url=%s, status=%d)", url, resp.status_code,
            )

        logger.info("外部接口响应: url=%s, status=%d", url, resp.status_code)
        return ExternalResponse(status_code=resp.status_code, body=body, text=resp.text)
