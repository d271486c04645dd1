"""coinmeter/database.py 的单元测试。"""

import os
import sqlite3
import tempfile

import pytest

# 在导入 database 之前设置临时 DB_PATH
_tmp = tempfile.mkdtemp()
_test_db = os.path.join(_tmp, "test.db")
os.environ["DB_PATH"] = _test_db

import coinmeter.database as _db_mod
from coinmeter.database import get_db, init_db


class TestInitDB:
    """数据库初始化测试。"""

    def setup_method(self):
        # 确保 DB_PATH 指向测试数据库（其他测试文件的 fixture 可能修改了它）
        os.environ["DB_PATH"] = _test_db
        _db_mod.DB_PATH = _test_db
        # 每个测试用新数据库
        for suffix in ("", "-wal", "-shm"):
            if os.path.exists(_test_db + suffix):
                os.remove(_test_db + suffix)

    def test_creates_all_tables(self):
        init_db()
        conn = get_db()
        tables = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        conn.close()
        expected = {
            "profiles", "user_roles", "api_actions", "api_usage",
            "video_history", "coin_packages", "coin_transactions", "payment_settings",
        }
        assert expected.issubset(tables)

    def test_creates_indexes(self):
        init_db()
        conn = get_db()
        indexes = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND name LIKE 'idx_%'"
            ).fetchall()
        }
        conn.close()
        expected = {
            "idx_profiles_api_key",
            "idx_api_actions_key",
            "idx_api_usage_user_date",
            "idx_coin_transactions_order_id",
            "idx_coin_packages_active_sort",
        }
        assert expected.issubset(indexes)

    def test_admin_roles_seeded_from_env(self):
        old = os.environ.get("ADMIN_USER_IDS")
        try:
            os.environ["ADMIN_USER_IDS"] = "user-a, user-b,"
            init_db()
            init_db()
            conn = get_db()
            rows = conn.execute(
                "SELECT user_id FROM user_roles WHERE role = 'admin' ORDER BY user_id"
            ).fetchall()
            conn.close()
            assert [r["user_id"] for r in rows] == ["user-a", "user-b"]
        finally:
            if old is not None:
                os.environ["ADMIN_USER_IDS"] = old
            else:
                os.environ.pop("ADMIN_USER_IDS", None)

    def test_coins_cannot_go_negative(self):
        """profiles.coins 有 CHECK 约束，任何写入都不能使余额为负。"""
        init_db()
        conn = get_db()
        try:
            conn.execute(
                "INSERT INTO profiles (id, email, username, coins, api_key) VALUES ('u1', 'a@b.c', 'a', 1, 'k1')"
            )
            conn.commit()
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute("UPDATE profiles SET coins = coins - 2 WHERE id = 'u1'")
        finally:
            conn.close()

    def test_usage_unique_per_user_and_date(self):
        init_db()
        conn = get_db()
        try:
            conn.execute(
                "INSERT INTO profiles (id, email, username, coins, api_key) VALUES ('u1', 'a@b.c', 'a', 1, 'k1')"
            )
            conn.execute(
                "INSERT INTO api_usage (user_id, date, request_count) VALUES ('u1', '2025-01-01', 1)"
            )
            conn.commit()
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO api_usage (user_id, date, request_count) VALUES ('u1', '2025-01-01', 1)"
                )
        finally:
            conn.close()

    def test_get_db_returns_row_factory(self):
        init_db()
        conn = get_db()
        row = conn.execute("SELECT 1 AS val").fetchone()
        conn.close()
        assert row["val"] == 1

    def test_foreign_keys_enabled(self):
        init_db()
        conn = get_db()
        fk = conn.execute("PRAGMA foreign_keys").fetchone()
        conn.close()
        assert fk[0] == 1

    def test_migrate_adds_category_column(self):
        """旧库的 api_actions 缺少 category 列时自动补齐。"""
        conn = sqlite3.connect(_test_db)
        conn.executescript("""
            CREATE TABLE api_actions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action_key VARCHAR(64) NOT NULL UNIQUE,
                name VARCHAR(128) NOT NULL,
                description TEXT,
                coin_cost INTEGER NOT NULL DEFAULT 1,
                is_active INTEGER NOT NULL DEFAULT 1,
                endpoint_config TEXT,
                input_schema TEXT,
                created_at DATETIME,
                updated_at DATETIME
            );
        """)
        conn.close()

        init_db()
        conn = get_db()
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(api_actions)").fetchall()}
        conn.close()
        assert "category" in columns

    def test_idempotent_init(self):
        """init_db 可以安全地多次调用。"""
        init_db()
        init_db()
        init_db()
        conn = get_db()
        tables = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        conn.close()
        assert "profiles" in tables
