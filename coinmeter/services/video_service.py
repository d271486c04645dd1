"""
视频去水印（旧版单动作接口）：固定外部接口、固定 2 金币单价。

与通用分发共用认证、权限守卫和账本，动作配置为常量；
另外会写入成功/失败历史记录。
"""

import logging
from urllib.parse import urlparse

from coinmeter.models.schemas import Action
from coinmeter.services.auth import Credential, resolve_user_id
from coinmeter.services.entitlement import EntitlementGuard
from coinmeter.services.errors import BadRequest, ExternalError, InsufficientCoins, PaymentRequired
from coinmeter.services.external_client import ExternalApiClient
from coinmeter.services.ledger import LedgerService
from coinmeter.services.transformer import build_outbound_payload

logger = logging.getLogger(__name__)

VIDEO_ACTION = Action(
    id=0,
    key="generate-video",
    name="Video Watermark Removal",
    cost=2,
    endpoint="https://online.fliflik.com/get-video-link",
    method="POST",
    request_field_mapping={"url": "shareLink"},
)


def _is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class VideoService:
    """视频链接处理。"""

    def __init__(
        self,
        guard: EntitlementGuard | None = None,
        ledger: LedgerService | None = None,
        client: ExternalApiClient | None = None,
    ):
        self.ledger = ledger or LedgerService()
        self.guard = guard or EntitlementGuard(self.ledger)
        self.client = client or ExternalApiClient()

    def generate(self, credential: Credential, body) -> dict:
        """
        处理一个分享链接，返回无水印视频链接。

        Returns:
            {"status": "success", "video_link", "coins_remaining", "history_id"}

        Raises:
            GatewayError: 认证、参数、余额、限流或外部接口失败。
        """
        user_id = resolve_user_id(credential)

        share_link = body.get("shareLink") if isinstance(body, dict) else None
        if not share_link or not isinstance(share_link, str):
            raise BadRequest("Invalid or missing shareLink")
        if not _is_http_url(share_link):
            raise BadRequest("Invalid URL format. Please enter a valid Sora video link.")

        try:
            profile = self.guard.authorize(user_id, VIDEO_ACTION)
        except InsufficientCoins as e:
            # 旧接口的 402 只有提示信息，不带金币明细
            raise PaymentRequired(
                f"Insufficient coins. You need at least {e.required} coins."
            ) from e

        logger.info("调用视频处理接口: user_id=%s", user_id)
        payload = build_outbound_payload({"shareLink": share_link}, VIDEO_ACTION.request_field_mapping)
        resp = self.client.call(VIDEO_ACTION.endpoint, VIDEO_ACTION.method, payload)

        body_data = resp.body if isinstance(resp.body, dict) else {}
        video_link = body_data.get("data") or body_data.get("video_link")

        if not resp.ok or body_data.get("code") != 200 or not video_link:
            message = str(body_data.get("msg") or body_data.get("message") or "Failed to process video")
            lowered = message.lower()
            is_client_error = (
                "invalid" in lowered
                or "not found" in lowered
                or body_data.get("code") == 400
            )
            self.ledger.record_history(user_id, share_link, "error")
            logger.warning("视频处理失败: user_id=%s, message=%s", user_id, message)
            # 按错误信息判断责任方：调用方问题 400，其余 500
            raise ExternalError(message, upstream_status=400 if is_client_error else 500)

        self.ledger.settle_dispatch(user_id, VIDEO_ACTION.cost)
        history_id = self.ledger.record_history(
            user_id, share_link, "success", processed_url=video_link,
        )
        logger.info("视频处理成功: user_id=%s, history_id=%s", user_id, history_id)

        return {
            "status": "success",
            "video_link": video_link,
            "coins_remaining": profile.coins - VIDEO_ACTION.cost,
            "history_id": history_id,
        }
