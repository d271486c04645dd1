"""金币套餐服务模块。"""

from datetime import datetime

from coinmeter.database import get_db
from coinmeter.models.schemas import CoinPackage


def _row_to_package(row) -> CoinPackage:
    return CoinPackage(
        id=row["id"],
        name=row["name"],
        coin_amount=row["coin_amount"],
        price=row["price"],
        description=row["description"],
        is_active=bool(row["is_active"]),
        sort_order=row["sort_order"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def package_to_dict(pkg: CoinPackage) -> dict:
    return {
        "id": pkg.id,
        "name": pkg.name,
        "description": pkg.description,
        "coin_amount": pkg.coin_amount,
        "price": pkg.price,
        "is_active": pkg.is_active,
        "sort_order": pkg.sort_order,
    }


def _validate_positive(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} 必须是正整数")
    return value


class PackageService:
    """金币套餐：查询、创建、修改、删除。"""

    def list_packages(self, include_inactive: bool = False) -> list[CoinPackage]:
        """按 sort_order 排序返回套餐列表。"""
        sql = "SELECT * FROM coin_packages"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY sort_order ASC, id ASC"
        db = get_db()
        try:
            return [_row_to_package(r) for r in db.execute(sql).fetchall()]
        finally:
            db.close()

    def get_active_package(self, package_id) -> CoinPackage | None:
        """查询启用中的套餐，不存在或已停用返回 None。"""
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM coin_packages WHERE id = ? AND is_active = 1",
                (package_id,),
            ).fetchone()
            return _row_to_package(row) if row else None
        finally:
            db.close()

    def create_package(
        self,
        name: str,
        coin_amount: int,
        price: int,
        description: str | None = None,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> CoinPackage:
        """
        创建套餐。

        Raises:
            ValueError: 名称为空或数量/价格不是正整数。
        """
        if not name:
            raise ValueError("套餐名称不能为空")
        _validate_positive("coin_amount", coin_amount)
        _validate_positive("price", price)
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO coin_packages
                   (name, description, coin_amount, price, is_active, sort_order,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (name, description, coin_amount, price,
                 1 if is_active else 0, sort_order, now, now),
            )
            db.commit()
            row = db.execute(
                "SELECT * FROM coin_packages WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return _row_to_package(row)
        finally:
            db.close()

    def update_package(self, package_id: int, **fields) -> CoinPackage:
        """
        修改套餐。已创建的待支付交易使用下单时记录的金币数，不受影响。

        Raises:
            ValueError: 套餐不存在或字段不合法。
        """
        columns = {}
        if "name" in fields:
            if not fields["name"]:
                raise ValueError("套餐名称不能为空")
            columns["name"] = fields["name"]
        if "description" in fields:
            columns["description"] = fields["description"]
        if "coin_amount" in fields:
            columns["coin_amount"] = _validate_positive("coin_amount", fields["coin_amount"])
        if "price" in fields:
            columns["price"] = _validate_positive("price", fields["price"])
        if "is_active" in fields:
            columns["is_active"] = 1 if fields["is_active"] else 0
        if "sort_order" in fields:
            columns["sort_order"] = int(fields["sort_order"])

        db = get_db()
        try:
            if columns:
                columns["updated_at"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                assignments = ", ".join(f"{c} = ?" for c in columns)
                db.execute(
                    f"UPDATE coin_packages SET {assignments} WHERE id = ?",
                    (*columns.values(), package_id),
                )
                db.commit()
            row = db.execute(
                "SELECT * FROM coin_packages WHERE id = ?", (package_id,)
            ).fetchone()
            if not row:
                raise ValueError(f"套餐 id={package_id} 不存在")
            return _row_to_package(row)
        finally:
            db.close()

    def delete_package(self, package_id: int) -> None:
        """删除套餐。关联交易的 package_id 置空，交易记录保留。"""
        db = get_db()
        try:
            cursor = db.execute(
                "DELETE FROM coin_packages WHERE id = ?", (package_id,)
            )
            db.commit()
            if cursor.rowcount == 0:
                raise ValueError(f"套餐 id={package_id} 不存在")
        finally:
            db.close()
