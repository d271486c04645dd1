"""用户账户路由测试：注册、API Key、历史、用量、动作目录、充值记录。"""

import os
import sqlite3
import tempfile

import pytest
from fastapi.testclient import TestClient
from jose import jwt

# 在导入 coinmeter 模块之前设置测试数据库路径
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="account_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import coinmeter.database as _db_mod
from coinmeter.database import get_db, init_db
from coinmeter.main import app
from coinmeter.services.account_service import STARTER_COINS, AccountService
from coinmeter.services.action_registry import ActionRegistry
from coinmeter.services.auth import JWT_ALGORITHM, JWT_SECRET, get_user_by_api_key
from coinmeter.services.ledger import LedgerService


@pytest.fixture(autouse=True)
def _setup_db():
    """每个测试前重建数据库。"""
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    conn = sqlite3.connect(_tmp.name)
    conn.executescript("""
        DROP TABLE IF EXISTS api_actions;
        DROP TABLE IF EXISTS api_usage;
        DROP TABLE IF EXISTS video_history;
        DROP TABLE IF EXISTS coin_transactions;
        DROP TABLE IF EXISTS coin_packages;
        DROP TABLE IF EXISTS payment_settings;
        DROP TABLE IF EXISTS user_roles;
        DROP TABLE IF EXISTS profiles;
    """)
    conn.close()
    init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


def _auth_headers(user_id="u1", email="alice@example.com"):
    token = jwt.encode({"sub": user_id, "email": email}, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


class TestProfile:

    def test_create_profile(self, client):
        resp = client.post("/v1/profile", headers=_auth_headers())
        assert resp.status_code == 200
        profile = resp.json()["profile"]
        assert profile["id"] == "u1"
        assert profile["email"] == "alice@example.com"
        assert profile["username"] == "alice"
        assert profile["coins"] == STARTER_COINS
        assert len(profile["api_key"]) == 36
        assert get_user_by_api_key(profile["api_key"]) == "u1"

    def test_create_profile_is_idempotent(self, client):
        first = client.post("/v1/profile", headers=_auth_headers()).json()["profile"]
        LedgerService().debit_coins("u1", 3)
        second = client.post("/v1/profile", headers=_auth_headers()).json()["profile"]
        assert second["api_key"] == first["api_key"]
        assert second["coins"] == STARTER_COINS - 3

    def test_get_profile_with_stats(self, client):
        AccountService().create_profile("u1", "alice@example.com")
        ledger = LedgerService()
        ledger.record_history("u1", "https://a/1", "success", processed_url="https://cdn/1")
        ledger.record_history("u1", "https://a/2", "error")
        ledger.increment_usage("u1")

        resp = client.get("/v1/profile", headers=_auth_headers())
        assert resp.status_code == 200
        stats = resp.json()["profile"]["stats"]
        assert stats["history_total"] == 2
        assert stats["history_success"] == 1
        assert stats["history_error"] == 1
        assert stats["requests_today"] == 1
        assert stats["daily_limit"] > 0

    def test_get_profile_missing(self, client):
        resp = client.get("/v1/profile", headers=_auth_headers())
        assert resp.status_code == 404
        assert resp.json()["message"] == "User profile not found"

    def test_requires_session_token(self, client):
        resp = client.get("/v1/profile")
        assert resp.status_code == 401


class TestApiKey:

    def test_regenerate_invalidates_old_key(self, client):
        old_key = AccountService().create_profile("u1", "alice@example.com").api_key

        resp = client.post("/v1/profile/api-key", headers=_auth_headers())
        assert resp.status_code == 200
        new_key = resp.json()["api_key"]
        assert new_key != old_key
        assert get_user_by_api_key(new_key) == "u1"
        assert get_user_by_api_key(old_key) is None

        resp = client.post("/process", json={"action": "x"}, headers={"x-api-key": old_key})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid API key"

    def test_regenerate_without_profile(self, client):
        resp = client.post("/v1/profile/api-key", headers=_auth_headers())
        assert resp.status_code == 404


class TestHistoryAndUsage:

    def test_history_newest_first(self, client):
        AccountService().create_profile("u1", "alice@example.com")
        ledger = LedgerService()
        ledger.record_history("u1", "https://a/1", "success")
        ledger.record_history("u1", "https://a/2", "error")

        resp = client.get("/v1/history", headers=_auth_headers())
        assert resp.status_code == 200
        urls = [h["original_url"] for h in resp.json()["history"]]
        assert urls == ["https://a/2", "https://a/1"]

    def test_history_limit(self, client):
        AccountService().create_profile("u1", "alice@example.com")
        for i in range(5):
            LedgerService().record_history("u1", f"https://a/{i}", "success")
        resp = client.get("/v1/history?limit=2", headers=_auth_headers())
        assert len(resp.json()["history"]) == 2

    def test_history_limit_out_of_range(self, client):
        AccountService().create_profile("u1", "alice@example.com")
        resp = client.get("/v1/history?limit=0", headers=_auth_headers())
        assert resp.status_code == 400
        assert resp.json() == {"status": "error", "message": "Invalid request parameters: limit"}

    def test_history_scoped_to_caller(self, client):
        svc = AccountService()
        svc.create_profile("u1", "alice@example.com")
        svc.create_profile("u2", "bob@example.com")
        LedgerService().record_history("u2", "https://b/1", "success")
        resp = client.get("/v1/history", headers=_auth_headers())
        assert resp.json()["history"] == []

    def test_usage_oldest_first_within_window(self, client):
        AccountService().create_profile("u1", "alice@example.com")
        ledger = LedgerService()
        ledger.increment_usage("u1")
        ledger.increment_usage("u1")
        ledger.increment_usage("u1", day="2000-01-01")

        resp = client.get("/v1/usage?days=7", headers=_auth_headers())
        assert resp.status_code == 200
        usage = resp.json()["usage"]
        assert len(usage) == 1
        assert usage[0]["request_count"] == 2


class TestCatalog:

    def test_actions_lists_active_only(self, client):
        registry = ActionRegistry()
        registry.create_action(
            "summarize", "Summarize", coin_cost=2, category="text",
            endpoint_config={"external_api": "https://secret.internal/api"},
            input_schema=[{"name": "text", "label": "Text", "type": "textarea", "required": True}],
        )
        registry.create_action("off", "Off", is_active=False)

        resp = client.get("/v1/actions")
        assert resp.status_code == 200
        actions = resp.json()["actions"]
        assert [a["action_key"] for a in actions] == ["summarize"]
        assert actions[0]["coin_cost"] == 2
        assert actions[0]["input_schema"][0]["name"] == "text"
        assert "endpoint_config" not in actions[0]

    def test_transactions_scoped_to_caller(self, client):
        svc = AccountService()
        svc.create_profile("u1", "alice@example.com")
        svc.create_profile("u2", "bob@example.com")
        db = get_db()
        try:
            db.execute(
                "INSERT INTO coin_transactions (order_id, user_id, amount, coin_amount) VALUES ('COIN-1-A', 'u1', 1000, 10)"
            )
            db.execute(
                "INSERT INTO coin_transactions (order_id, user_id, amount, coin_amount) VALUES ('COIN-2-B', 'u2', 1000, 10)"
            )
            db.commit()
        finally:
            db.close()

        resp = client.get("/v1/transactions", headers=_auth_headers())
        assert resp.status_code == 200
        assert [t["order_id"] for t in resp.json()["transactions"]] == ["COIN-1-A"]
