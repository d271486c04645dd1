"""
动作分发器：通用动作网关的核心流程。

认证 → 解析动作 → 权限检查 → 转换请求 → 调用外部接口 → 解析响应 → 结算 → 返回

任一环节失败立即抛出对应的 GatewayError，此前不会产生任何账本写入。
结算只在外部调用成功且结果可解析之后发生。
"""

import logging

from coinmeter.services.action_registry import ActionRegistry
from coinmeter.services.auth import Credential, resolve_user_id
from coinmeter.services.entitlement import EntitlementGuard
from coinmeter.services.errors import BadRequest, ExternalError, Misconfigured, UnparsableResult
from coinmeter.services.external_client import ExternalApiClient
from coinmeter.services.ledger import LedgerService
from coinmeter.services.transformer import build_outbound_payload, extract_result

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """通用动作分发。各依赖可注入，便于测试替换。"""

    def __init__(
        self,
        registry: ActionRegistry | None = None,
        guard: EntitlementGuard | None = None,
        ledger: LedgerService | None = None,
        client: ExternalApiClient | None = None,
    ):
        self.registry = registry or ActionRegistry()
        self.ledger = ledger or LedgerService()
        self.guard = guard or EntitlementGuard(self.ledger)
        self.client = client or ExternalApiClient()

    @staticmethod
    def _parse_body(body) -> tuple[str, dict]:
        """校验请求体 {action, data}，data 缺省为空对象。"""
        if not isinstance(body, dict):
            raise BadRequest("Request body must be a JSON object.")

        action_key = body.get("action")
        if not action_key or not isinstance(action_key, str):
            raise BadRequest(
                'Missing or invalid "action" parameter. '
                "Please specify which action to perform."
            )

        data = body.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise BadRequest('"data" must be a JSON object.')
        return action_key, data

    def dispatch(self, credential: Credential, body) -> dict:
        """
        执行一次动作分发。

        Args:
            credential: 已从请求头解析出的凭证。
            body: 请求体 {"action": "<action_key>", "data": {...}}。

        Returns:
            {"status": "success", "action", "coins_used", "result"}

        Raises:
            GatewayError: 各类失败，携带对外状态码和错误信息。
        """
        # 1. 认证
        user_id = resolve_user_id(credential)

        # 2. 解析动作
        action_key, data = self._parse_body(body)
        action = self.registry.lookup(action_key)
        if not action.endpoint:
            raise Misconfigured(f'Action "{action_key}" is missing endpoint configuration.')
        logger.info("处理动作: action_key=%s, cost=%d, user_id=%s", action.key, action.cost, user_id)

        # 3. 权限检查（只读）
        self.guard.authorize(user_id, action)

        # 4. 调用外部接口
        payload = build_outbound_payload(data, action.request_field_mapping)
        logger.info("调用外部接口: action_key=%s, url=%s", action.key, action.endpoint)
        resp = self.client.call(action.endpoint, action.method, payload)

        if not resp.ok:
            message = resp.error_message()
            logger.error(
                "外部接口返回错误: action_key=%s, status=%d, message=%s",
                action.key, resp.status_code, message,
            )
            raise ExternalError(message, upstream_status=resp.status_code, action=action.key)

        # 5. 解析结果
        result = extract_result(resp.body, action.response_path, action.array_join)
        if result is None:
            logger.error("无法从外部接口响应中解析结果: action_key=%s", action.key)
            raise UnparsableResult(action=action.key)

        # 6. 结算（fail-open）
        self.ledger.settle_dispatch(user_id, action.cost)
        logger.info("动作处理成功: action_key=%s, user_id=%s", action.key, user_id)

        return {
            "status": "success",
            "action": action.key,
            "coins_used": action.cost,
            "result": result,
        }
