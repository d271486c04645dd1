"""
权限守卫：分发前检查账户、金币余额和每日请求上限。只读，不做任何写入。
"""

import logging
import os

from coinmeter.database import get_db
from coinmeter.models.schemas import Action, Profile
from coinmeter.services.errors import InsufficientCoins, ProfileNotFound, RateLimited
from coinmeter.services.ledger import LedgerService

logger = logging.getLogger(__name__)

DAILY_REQUEST_LIMIT = int(os.getenv("DAILY_REQUEST_LIMIT", "100"))


def load_profile(user_id: str) -> Profile | None:
    db = get_db()
    try:
        row = db.execute(
            "SELECT * FROM profiles WHERE id = ?", (user_id,)
        ).fetchone()
    finally:
        db.close()

    if not row:
        return None
    return Profile(
        id=row["id"],
        email=row["email"],
        username=row["username"],
        api_key=row["api_key"],
        coins=row["coins"],
        total_processed=row["total_processed"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class EntitlementGuard:
    """按顺序检查：账户存在 → 余额足够 → 今日未超限，任一失败即拒绝。"""

    def __init__(self, ledger: LedgerService | None = None):
        self.ledger = ledger or LedgerService()

    def authorize(self, user_id: str, action: Action) -> Profile:
        """
        Returns:
            账户快照。

        Raises:
            ProfileNotFound: 账户不存在。
            InsufficientCoins: 余额小于动作单价。
            RateLimited: 今日请求数已达上限。
        """
        profile = load_profile(user_id)
        if profile is None:
            logger.warning("账户不存在: user_id=%s", user_id)
            raise ProfileNotFound()

        cost = action.cost
        if profile.coins < cost:
            logger.info(
                "余额不足: user_id=%s, coins=%d, cost=%d",
                user_id, profile.coins, cost,
            )
            raise InsufficientCoins(cost, profile.coins)

        count = self.ledger.get_request_count(user_id)
        if count >= DAILY_REQUEST_LIMIT:
            logger.info("超出每日请求上限: user_id=%s, count=%d", user_id, count)
            raise RateLimited(DAILY_REQUEST_LIMIT)

        return profile
