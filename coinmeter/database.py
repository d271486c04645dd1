"""
SQLite 数据库连接管理和初始化。
使用同步 sqlite3，提供 get_db() 获取连接。
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/coinmeter.db")


def get_db() -> sqlite3.Connection:
    """获取 SQLite 数据库连接，启用 WAL 模式和外键约束。"""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ── 建表 SQL ──────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS profiles (
    id              TEXT         PRIMARY KEY,
    email           VARCHAR(256) NOT NULL,
    username        VARCHAR(128) NOT NULL,
    coins           INTEGER      NOT NULL DEFAULT 0 CHECK (coins >= 0),
    total_processed INTEGER      NOT NULL DEFAULT 0,
    api_key         VARCHAR(64)  NOT NULL UNIQUE,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS user_roles (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT         NOT NULL,
    role            VARCHAR(16)  NOT NULL DEFAULT 'user',
    UNIQUE (user_id, role)
);

CREATE TABLE IF NOT EXISTS api_actions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    action_key      VARCHAR(64)  NOT NULL UNIQUE,
    name            VARCHAR(128) NOT NULL,
    description     TEXT,
    category        VARCHAR(64),
    coin_cost       INTEGER      NOT NULL DEFAULT 1 CHECK (coin_cost >= 0),
    is_active       INTEGER      NOT NULL DEFAULT 1,
    endpoint_config TEXT,
    input_schema    TEXT,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS api_usage (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT         NOT NULL REFERENCES profiles(id),
    date            DATE         NOT NULL,
    request_count   INTEGER      NOT NULL DEFAULT 0,
    UNIQUE (user_id, date)
);

CREATE TABLE IF NOT EXISTS video_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT         NOT NULL REFERENCES profiles(id),
    original_url    TEXT         NOT NULL,
    processed_url   TEXT,
    status          VARCHAR(16)  NOT NULL DEFAULT 'pending',
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS coin_packages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            VARCHAR(128) NOT NULL,
    description     TEXT,
    coin_amount     INTEGER      NOT NULL CHECK (coin_amount > 0),
    price           INTEGER      NOT NULL CHECK (price > 0),
    is_active       INTEGER      NOT NULL DEFAULT 1,
    sort_order      INTEGER      NOT NULL DEFAULT 0,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS coin_transactions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        VARCHAR(64)  NOT NULL UNIQUE,
    user_id         TEXT         NOT NULL REFERENCES profiles(id),
    package_id      INTEGER      REFERENCES coin_packages(id) ON DELETE SET NULL,
    amount          INTEGER      NOT NULL,
    coin_amount     INTEGER      NOT NULL,
    status          VARCHAR(16)  NOT NULL DEFAULT 'pending',
    midtrans_transaction_id VARCHAR(64),
    payment_type    VARCHAR(32),
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS payment_settings (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    setting_key     VARCHAR(64)  NOT NULL UNIQUE,
    setting_value   TEXT         NOT NULL,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);
"""

# ── 索引 SQL ──────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_profiles_api_key
    ON profiles(api_key);
CREATE INDEX IF NOT EXISTS idx_user_roles_user
    ON user_roles(user_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_api_actions_key
    ON api_actions(action_key);
CREATE INDEX IF NOT EXISTS idx_api_actions_active
    ON api_actions(is_active);
CREATE UNIQUE INDEX IF NOT EXISTS idx_api_usage_user_date
    ON api_usage(user_id, date);
CREATE INDEX IF NOT EXISTS idx_video_history_user_created
    ON video_history(user_id, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_coin_transactions_order_id
    ON coin_transactions(order_id);
CREATE INDEX IF NOT EXISTS idx_coin_transactions_user
    ON coin_transactions(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_coin_packages_active_sort
    ON coin_packages(is_active, sort_order);
"""


# ── 初始化 ────────────────────────────────────────────────

def init_db() -> None:
    """创建数据库目录、表和索引。"""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)
        _migrate_schema(conn)

        # 首次启动：通过环境变量授予管理员角色
        _seed_admin_roles(conn)

        conn.commit()
    finally:
        conn.close()


def _migrate_schema(conn: sqlite3.Connection) -> None:
    """为已有数据库添加新列（幂等操作）。"""
    # api_actions 表添加 category 列
    try:
        conn.execute("SELECT category FROM api_actions LIMIT 1")
    except sqlite3.OperationalError:
        conn.execute("ALTER TABLE api_actions ADD COLUMN category VARCHAR(64)")


def _seed_admin_roles(conn: sqlite3.Connection) -> None:
    """根据环境变量 ADMIN_USER_IDS（逗号分隔的身份提供方用户 ID）授予管理员角色。"""
    raw = os.getenv("ADMIN_USER_IDS", "")
    for user_id in (u.strip() for u in raw.split(",")):
        if user_id:
            conn.execute(
                "INSERT OR IGNORE INTO user_roles (user_id, role) VALUES (?, 'admin')",
                (user_id,),
            )
