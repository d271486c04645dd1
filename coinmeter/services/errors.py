"""
网关错误分类：每类失败对应固定的 HTTP 状态码和可读的错误信息。

路由层统一转换为 {"status": "error", "message": ..., **extra}。
"""


class GatewayError(Exception):
    """网关错误基类。"""

    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_content(self) -> dict:
        return {"status": "error", "message": self.message, **self.extra}


class BadRequest(GatewayError):
    status_code = 400


class Unauthorized(GatewayError):
    status_code = 401


class Forbidden(GatewayError):
    status_code = 403


class NotFound(GatewayError):
    status_code = 404


class ActionNotFound(GatewayError):
    """动作不存在或已停用，两者对外不区分。"""
    status_code = 400

    def __init__(self, action_key: str):
        super().__init__(
            f'Action "{action_key}" not found or is currently disabled.'
        )
        self.action_key = action_key


class Misconfigured(GatewayError):
    """运营配置错误（如缺少外部接口地址），不是调用方的问题。"""
    status_code = 500


class ProfileNotFound(GatewayError):
    status_code = 404

    def __init__(self, message: str = "User profile not found"):
        super().__init__(message)


class PaymentRequired(GatewayError):
    status_code = 402


class InsufficientCoins(PaymentRequired):
    """余额不足，附带所需和现有金币数。"""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient coins. You need at least {required} coins for this action.",
            coins_required=required,
            coins_available=available,
        )
        self.required = required
        self.available = available


class RateLimited(GatewayError):
    status_code = 429

    def __init__(self, limit: int):
        super().__init__(f"Daily rate limit exceeded ({limit} requests)")


class ExternalError(GatewayError):
    """外部接口返回非 2xx：外部 4xx 映射为 400，其余为 500。"""

    def __init__(self, message: str, upstream_status: int | None = None, **extra):
        super().__init__(message, **extra)
        self.upstream_status = upstream_status
        if upstream_status is not None and 400 <= upstream_status < 500:
            self.status_code = 400
        else:
            self.status_code = 500


class UnparsableResult(GatewayError):
    status_code = 500

    def __init__(self, **extra):
        super().__init__(
            "Failed to parse result from external API response.", **extra
        )
