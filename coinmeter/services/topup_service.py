"""
金币充值服务：创建 Midtrans 支付交易、处理支付结果异步通知。

核心功能：
- create_topup: 按套餐创建 pending 交易（记录下单时的金币数），调用 Snap 获取支付 token
- handle_notification: 验签 → 映射交易状态 → 首次进入 success 时为用户加币
- 通知可能重复投递：加币以 "status != 'success'" 的条件更新为准，保证每笔交易只加一次
"""

import logging
import os
import random
import string
import time
from datetime import datetime, timedelta

from coinmeter.database import get_db
from coinmeter.models.schemas import CoinTransaction
from coinmeter.services.entitlement import load_profile
from coinmeter.services.errors import (
    BadRequest,
    Forbidden,
    GatewayError,
    Misconfigured,
    NotFound,
    ProfileNotFound,
)
from coinmeter.services.ledger import LedgerService
from coinmeter.services.midtrans_client import MidtransClient, MidtransClientError, verify_signature
from coinmeter.services.package_service import PackageService
from coinmeter.services.payment_settings import get_mode, get_server_key

logger = logging.getLogger(__name__)

# 网关状态 -> 本地状态
_FAILED_STATUSES = {"deny", "cancel", "expire", "failure"}
_PAID_STATUSES = {"capture", "settlement"}

# 超过该时长仍未支付的交易视为失败（Snap 默认支付有效期 24 小时）
PENDING_TTL_HOURS = int(os.getenv("TOPUP_PENDING_TTL_HOURS", "24"))


def map_transaction_status(transaction_status: str | None, fraud_status: str | None) -> str:
    """
    将 Midtrans 通知中的 transaction_status / fraud_status 映射为本地状态。

    capture/settlement 且风控通过（或无风控结果）为 success，风控拒绝为 fraud；
    deny/cancel/expire/failure 为 failed；其余（含 pending）为 pending。
    """
    if transaction_status in _PAID_STATUSES:
        if fraud_status in (None, "", "accept"):
            return "success"
        return "fraud"
    if transaction_status in _FAILED_STATUSES:
        return "failed"
    return "pending"


def _row_to_transaction(row) -> CoinTransaction:
    return CoinTransaction(
        id=row["id"],
        order_id=row["order_id"],
        user_id=row["user_id"],
        package_id=row["package_id"],
        amount=row["amount"],
        coin_amount=row["coin_amount"],
        status=row["status"],
        midtrans_transaction_id=row["midtrans_transaction_id"],
        payment_type=row["payment_type"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def transaction_to_dict(tx: CoinTransaction) -> dict:
    return {
        "order_id": tx.order_id,
        "user_id": tx.user_id,
        "package_id": tx.package_id,
        "amount": tx.amount,
        "coin_amount": tx.coin_amount,
        "status": tx.status,
        "midtrans_transaction_id": tx.midtrans_transaction_id,
        "payment_type": tx.payment_type,
        "created_at": tx.created_at,
        "updated_at": tx.updated_at,
    }


class TopupService:
    """充值交易服务。"""

    def __init__(self, ledger: LedgerService | None = None):
        self.ledger = ledger or LedgerService()
        self.packages = PackageService()

    def generate_order_id(self) -> str:
        """
        生成唯一订单号：COIN-<毫秒时间戳>-<6 位大写字母数字>。
        """
        db = get_db()
        try:
            for _ in range(10):
                suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
                order_id = f"COIN-{int(time.time() * 1000)}-{suffix}"
                row = db.execute(
                    "SELECT 1 FROM coin_transactions WHERE order_id = ?", (order_id,)
                ).fetchone()
                if not row:
                    return order_id
            raise GatewayError("Failed to create transaction")
        finally:
            db.close()

    def get_transaction(self, order_id: str) -> CoinTransaction | None:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM coin_transactions WHERE order_id = ?", (order_id,)
            ).fetchone()
            return _row_to_transaction(row) if row else None
        finally:
            db.close()

    def list_transactions(
        self, user_id: str | None = None, status: str | None = None, limit: int = 50
    ) -> list[CoinTransaction]:
        """按创建时间倒序返回交易列表，可按用户和状态筛选。"""
        conditions = []
        params = []
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if status:
            conditions.append("status = ?")
            params.append(status)
        where_clause = " AND ".join(conditions) if conditions else "1=1"

        db = get_db()
        try:
            rows = db.execute(
                f"""SELECT * FROM coin_transactions
                    WHERE {where_clause}
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?""",
                params + [limit],
            ).fetchall()
            return [_row_to_transaction(r) for r in rows]
        finally:
            db.close()

    def expire_pending(self, max_age_hours: int = PENDING_TTL_HOURS) -> int:
        """
        将超过 max_age_hours 仍未支付的 pending 交易标记为 failed。

        之后若仍收到成功通知，照常加币（failed 不是终态）。

        Returns:
            被标记的交易数量。
        """
        cutoff = (datetime.now() - timedelta(hours=max_age_hours)).strftime("%Y-%m-%d %H:%M:%S")
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE coin_transactions SET status = 'failed', updated_at = ?
                   WHERE status = 'pending' AND created_at < ?""",
                (now, cutoff),
            )
            db.commit()
            count = cursor.rowcount
        finally:
            db.close()
        if count:
            logger.info("已过期 %d 笔未支付充值交易", count)
        return count

    def _mark_failed(self, order_id: str) -> None:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """UPDATE coin_transactions SET status = 'failed', updated_at = ?
                   WHERE order_id = ? AND status = 'pending'""",
                (now, order_id),
            )
            db.commit()
        finally:
            db.close()

    def create_topup(self, user_id: str, email: str | None, package_id, origin: str = "") -> dict:
        """
        创建充值交易：
        1. 校验套餐和 Midtrans 配置
        2. 以 pending 状态持久化交易，金额和金币数取自当前套餐
        3. 调用 Snap 创建支付，失败时将交易标记为 failed

        Returns:
            {"token", "redirect_url", "order_id"}

        Raises:
            GatewayError: 参数缺失(400)、套餐/账户不存在(404)、配置缺失或网关失败(500)。
        """
        if not package_id:
            raise BadRequest("package_id is required")

        package = self.packages.get_active_package(package_id)
        if package is None:
            raise NotFound("Package not found or inactive")

        server_key = get_server_key()
        if not server_key:
            raise Misconfigured("Midtrans server key not configured")

        if load_profile(user_id) is None:
            raise ProfileNotFound()

        order_id = self.generate_order_id()
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """INSERT INTO coin_transactions
                   (order_id, user_id, package_id, amount, coin_amount, status,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, 'pending', ?, ?)""",
                (order_id, user_id, package.id, package.price, package.coin_amount, now, now),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("创建充值交易记录失败: user_id=%s, error=%s", user_id, e)
            raise GatewayError("Failed to create transaction")
        finally:
            db.close()

        payload = {
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": package.price,
            },
            "customer_details": {"email": email or ""},
            "item_details": [
                {
                    "id": str(package.id),
                    "price": package.price,
                    "quantity": 1,
                    "name": package.name,
                },
            ],
            "callbacks": {
                "finish": f"{origin}/buy-coins?status=finish",
                "error": f"{origin}/buy-coins?status=error",
                "pending": f"{origin}/buy-coins?status=pending",
            },
        }

        client = MidtransClient(server_key, mode=get_mode())
        try:
            result = client.create_transaction(payload)
        except MidtransClientError as e:
            self._mark_failed(order_id)
            raise GatewayError("Failed to create payment", details=e.details)

        logger.info(
            "充值交易已创建: order_id=%s, user_id=%s, coins=%d, amount=%d",
            order_id, user_id, package.coin_amount, package.price,
        )
        return {
            "token": result["token"],
            "redirect_url": result["redirect_url"],
            "order_id": order_id,
        }

    def handle_notification(self, notification: dict) -> dict:
        """
        处理 Midtrans 支付结果通知。

        - 先验签，验签通过前不使用通知中的任何字段
        - success 为终态：已成功的交易再收到通知只确认，不做变更
        - 仅在状态由非 success 变为 success 的那一次更新中加币，
          加币数量为下单时记录的 coin_amount

        Returns:
            {"status": "ok"}

        Raises:
            GatewayError: 未配置密钥(500)、验签失败(403)、订单不存在(404)。
        """
        server_key = get_server_key()
        if not server_key:
            raise Misconfigured("Server key not configured")

        if not isinstance(notification, dict) or not verify_signature(notification, server_key):
            logger.warning("支付通知验签失败")
            raise Forbidden("Invalid signature")

        order_id = notification.get("order_id")
        tx = self.get_transaction(order_id)
        if tx is None:
            logger.warning("支付通知订单不存在: order_id=%s", order_id)
            raise NotFound("Transaction not found")

        new_status = map_transaction_status(
            notification.get("transaction_status"), notification.get("fraud_status"),
        )
        logger.info(
            "收到支付通知: order_id=%s, transaction_status=%s, 当前=%s, 目标=%s",
            order_id, notification.get("transaction_status"), tx.status, new_status,
        )

        if tx.status == "success":
            logger.info("交易已成功，忽略后续通知: order_id=%s", order_id)
            return {"status": "ok"}

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE coin_transactions
                   SET status = ?, midtrans_transaction_id = ?, payment_type = ?,
                       updated_at = ?
                   WHERE order_id = ? AND status != 'success'""",
                (
                    new_status,
                    notification.get("transaction_id"),
                    notification.get("payment_type"),
                    now,
                    order_id,
                ),
            )
            # 条件更新命中才加币，与状态更新在同一事务内提交
            if new_status == "success" and cursor.rowcount == 1:
                balance = self.ledger.credit_coins(tx.user_id, tx.coin_amount, db=db)
                if balance is None:
                    logger.error(
                        "充值加币失败，用户不存在: order_id=%s, user_id=%s",
                        order_id, tx.user_id,
                    )
                else:
                    logger.info(
                        "充值到账: order_id=%s, user_id=%s, +%d, 余额=%d",
                        order_id, tx.user_id, tx.coin_amount, balance,
                    )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        return {"status": "ok"}
