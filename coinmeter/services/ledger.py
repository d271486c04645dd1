"""
账本结算服务：金币扣减/充值、处理计数、每日用量计数、历史记录。

分发成功后的结算为 fail-open：外部调用已经完成，任何一笔记账写入失败
只记录日志，不回滚、不影响已返回给调用方的成功结果。
"""

import logging
import sqlite3
from datetime import datetime, timezone

from coinmeter.database import get_db

logger = logging.getLogger(__name__)


def utc_today() -> str:
    """当前 UTC 日期（YYYY-MM-DD），用量计数按此分桶。"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class LedgerService:
    """账本读写。"""

    def get_request_count(self, user_id: str, day: str | None = None) -> int:
        """读取用户某日（默认今日 UTC）的请求次数，无记录返回 0。"""
        day = day or utc_today()
        db = get_db()
        try:
            row = db.execute(
                "SELECT request_count FROM api_usage WHERE user_id = ? AND date = ?",
                (user_id, day),
            ).fetchone()
            return row["request_count"] if row else 0
        finally:
            db.close()

    def debit_coins(self, user_id: str, amount: int) -> bool:
        """
        条件扣减金币：仅当余额足够时扣减，保证余额永不为负。

        Returns:
            True 扣减成功；False 余额不足（并发请求抢先扣减）或用户不存在。
        """
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE profiles
                   SET coins = coins - ?, updated_at = ?
                   WHERE id = ? AND coins >= ?""",
                (amount, now, user_id, amount),
            )
            db.commit()
            return cursor.rowcount == 1
        finally:
            db.close()

    def increment_processed(self, user_id: str) -> None:
        db = get_db()
        try:
            db.execute(
                "UPDATE profiles SET total_processed = total_processed + 1 WHERE id = ?",
                (user_id,),
            )
            db.commit()
        finally:
            db.close()

    def increment_usage(self, user_id: str, day: str | None = None) -> None:
        """今日用量 +1，不存在则以 1 创建。单条 upsert，保证 (user, date) 唯一。"""
        day = day or utc_today()
        db = get_db()
        try:
            db.execute(
                """INSERT INTO api_usage (user_id, date, request_count)
                   VALUES (?, ?, 1)
                   ON CONFLICT(user_id, date)
                   DO UPDATE SET request_count = request_count + 1""",
                (user_id, day),
            )
            db.commit()
        finally:
            db.close()

    def settle_dispatch(self, user_id: str, cost: int) -> None:
        """
        分发成功后的结算：扣减金币、处理计数 +1、今日用量 +1。

        三笔写入相互独立，任何一笔失败只记录日志，不抛出异常。
        """
        try:
            if not self.debit_coins(user_id, cost):
                logger.error(
                    "结算扣费未生效（余额已被并发请求扣减）: user_id=%s, cost=%d",
                    user_id, cost,
                )
        except sqlite3.Error as e:
            logger.error("结算扣费失败: user_id=%s, cost=%d, error=%s", user_id, cost, e)

        try:
            self.increment_processed(user_id)
        except sqlite3.Error as e:
            logger.error("更新处理计数失败: user_id=%s, error=%s", user_id, e)

        try:
            self.increment_usage(user_id)
        except sqlite3.Error as e:
            logger.error("更新每日用量失败: user_id=%s, error=%s", user_id, e)

    def credit_coins(
        self, user_id: str, amount: int, db: sqlite3.Connection | None = None
    ) -> int | None:
        """
        充值金币（amount 为负数时为扣减，余额不足会触发 CHECK 约束异常）。

        传入 db 时在调用方的事务内执行，由调用方负责提交；
        否则自行打开连接并提交。

        Returns:
            变更后的余额；用户不存在返回 None。
        """
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        own_conn = db is None
        conn = get_db() if own_conn else db
        try:
            cursor = conn.execute(
                "UPDATE profiles SET coins = coins + ?, updated_at = ? WHERE id = ?",
                (amount, now, user_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT coins FROM profiles WHERE id = ?", (user_id,)
            ).fetchone()
            if own_conn:
                conn.commit()
            return row["coins"]
        finally:
            if own_conn:
                conn.close()

    def record_history(
        self,
        user_id: str,
        original_url: str,
        status: str,
        processed_url: str | None = None,
    ) -> int | None:
        """
        追加一条历史记录。写入失败只记录日志。

        Returns:
            新记录 ID，失败返回 None。
        """
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO video_history
                   (user_id, original_url, processed_url, status, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, original_url, processed_url, status, now),
            )
            db.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            logger.error("写入历史记录失败: user_id=%s, error=%s", user_id, e)
            return None
        finally:
            db.close()
