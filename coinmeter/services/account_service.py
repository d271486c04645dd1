"""用户账户服务模块。"""

import logging
import os
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone

from coinmeter.database import get_db
from coinmeter.models.schemas import HistoryRecord, Profile, UsageCounter
from coinmeter.services.entitlement import DAILY_REQUEST_LIMIT, load_profile
from coinmeter.services.ledger import LedgerService, utc_today

logger = logging.getLogger(__name__)

STARTER_COINS = int(os.getenv("STARTER_COINS", "10"))


class AccountService:
    """用户账户：注册、重置 API Key、统计与历史查询。"""

    @staticmethod
    def _generate_api_key() -> str:
        return str(uuid.uuid4())

    def create_profile(self, user_id: str, email: str, username: str | None = None) -> Profile:
        """
        为身份提供方的新用户创建账户，赠送 STARTER_COINS 金币并分配 API Key。
        账户已存在时直接返回现有账户。
        """
        existing = load_profile(user_id)
        if existing is not None:
            return existing

        username = username or (email.split("@")[0] if email else user_id)
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """INSERT OR IGNORE INTO profiles
                   (id, email, username, coins, total_processed, api_key, created_at, updated_at)
                   VALUES (?, ?, ?, ?, 0, ?, ?, ?)""",
                (user_id, email or "", username, STARTER_COINS,
                 self._generate_api_key(), now, now),
            )
            db.commit()
        finally:
            db.close()

        logger.info("创建账户: user_id=%s, starter_coins=%d", user_id, STARTER_COINS)
        return load_profile(user_id)

    def regenerate_api_key(self, user_id: str) -> str:
        """
        重置 API Key，旧 Key 立即失效。

        Raises:
            ValueError: 账户不存在。
        """
        new_key = self._generate_api_key()
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                "UPDATE profiles SET api_key = ?, updated_at = ? WHERE id = ?",
                (new_key, now, user_id),
            )
            db.commit()
            if cursor.rowcount == 0:
                raise ValueError(f"账户 {user_id} 不存在")
        finally:
            db.close()
        logger.info("API Key 已重置: user_id=%s", user_id)
        return new_key

    def get_profile_info(self, user_id: str) -> dict:
        """
        账户信息及仪表盘统计：历史记录总数/成功数/失败数、今日请求数。

        Raises:
            ValueError: 账户不存在。
        """
        profile = load_profile(user_id)
        if profile is None:
            raise ValueError(f"账户 {user_id} 不存在")

        db = get_db()
        try:
            row = db.execute(
                """SELECT
                       COUNT(*)                                              AS total,
                       COALESCE(SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END), 0) AS success,
                       COALESCE(SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END), 0)   AS error
                   FROM video_history WHERE user_id = ?""",
                (user_id,),
            ).fetchone()
        finally:
            db.close()

        today_count = LedgerService().get_request_count(user_id)

        return {
            "id": profile.id,
            "email": profile.email,
            "username": profile.username,
            "coins": profile.coins,
            "total_processed": profile.total_processed,
            "api_key": profile.api_key,
            "created_at": profile.created_at,
            "stats": {
                "history_total": row["total"],
                "history_success": row["success"],
                "history_error": row["error"],
                "requests_today": today_count,
                "daily_limit": DAILY_REQUEST_LIMIT,
            },
        }

    def list_history(self, user_id: str, limit: int = 20) -> list[HistoryRecord]:
        """按时间倒序返回历史记录。"""
        db = get_db()
        try:
            rows = db.execute(
                """SELECT * FROM video_history
                   WHERE user_id = ?
                   ORDER BY created_at DESC, id DESC
                   LIMIT ?""",
                (user_id, limit),
            ).fetchall()
        finally:
            db.close()
        return [
            HistoryRecord(
                id=r["id"],
                user_id=r["user_id"],
                original_url=r["original_url"],
                processed_url=r["processed_url"],
                status=r["status"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def list_usage(self, user_id: str, days: int = 7) -> list[UsageCounter]:
        """最近 days 天（含今日，UTC）的每日请求数，按日期升序。"""
        start = (datetime.now(timezone.utc) - timedelta(days=days - 1)).strftime("%Y-%m-%d")
        db = get_db()
        try:
            rows = db.execute(
                """SELECT user_id, date, request_count FROM api_usage
                   WHERE user_id = ? AND date >= ? AND date <= ?
                   ORDER BY date ASC""",
                (user_id, start, utc_today()),
            ).fetchall()
        finally:
            db.close()
        return [
            UsageCounter(user_id=r["user_id"], date=r["date"], request_count=r["request_count"])
            for r in rows
        ]

    def adjust_coins(self, user_id: str, delta: int) -> int:
        """
        管理员手动调整金币。

        Returns:
            调整后的余额。

        Raises:
            ValueError: 账户不存在或调整后余额为负。
        """
        try:
            balance = LedgerService().credit_coins(user_id, delta)
        except sqlite3.IntegrityError:
            raise ValueError("调整后余额不能为负")
        if balance is None:
            raise ValueError(f"账户 {user_id} 不存在")
        logger.info("管理员调整金币: user_id=%s, delta=%d, balance=%d", user_id, delta, balance)
        return balance
