"""支付配置服务单元测试。"""

import os
import sqlite3
import tempfile

import pytest

# 在导入 coinmeter 模块之前设置测试数据库路径
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="payment_settings_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import coinmeter.database as _db_mod
from coinmeter.database import get_db, init_db
from coinmeter.services.payment_settings import (
    PaymentSettingsError,
    SERVER_KEY,
    get_mode,
    get_public_config,
    get_server_key,
    get_setting,
    get_settings_status,
    save_midtrans_settings,
    set_setting,
)


@pytest.fixture(autouse=True)
def _setup_db():
    """每个测试前重建数据库。"""
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    conn = sqlite3.connect(_tmp.name)
    conn.executescript("""
        DROP TABLE IF EXISTS payment_settings;
    """)
    conn.close()
    init_db()
    yield


class TestSettings:

    def test_unset_returns_none(self):
        assert get_setting("midtrans_client_key") is None
        assert get_server_key() is None

    def test_set_and_overwrite(self):
        set_setting("midtrans_client_key", "client-1")
        set_setting("midtrans_client_key", "client-2")
        assert get_setting("midtrans_client_key") == "client-2"

    def test_server_key_encrypted_at_rest(self):
        save_midtrans_settings(server_key="SB-Mid-server-SECRET")
        db = get_db()
        try:
            stored = db.execute(
                "SELECT setting_value FROM payment_settings WHERE setting_key = ?", (SERVER_KEY,)
            ).fetchone()["setting_value"]
        finally:
            db.close()
        assert "SECRET" not in stored
        assert get_server_key() == "SB-Mid-server-SECRET"

    def test_undecryptable_value_treated_as_unset(self):
        db = get_db()
        try:
            db.execute(
                "INSERT INTO payment_settings (setting_key, setting_value) VALUES (?, ?)",
                (SERVER_KEY, "gAAAAA-not-a-real-token"),
            )
            db.commit()
        finally:
            db.close()
        assert get_server_key() is None

    def test_mode_defaults_to_sandbox(self):
        assert get_mode() == "sandbox"
        set_setting("midtrans_mode", "weird")
        assert get_mode() == "sandbox"

    def test_invalid_mode_rejected(self):
        with pytest.raises(PaymentSettingsError):
            save_midtrans_settings(mode="live")

    def test_empty_server_key_keeps_existing(self):
        save_midtrans_settings(server_key="key-1234")
        save_midtrans_settings(server_key="", client_key="client")
        assert get_server_key() == "key-1234"

    def test_status_masks_server_key(self):
        status = save_midtrans_settings(server_key="SB-Mid-server-abcd", client_key="client", mode="production")
        assert status == {
            "server_key_configured": True,
            "server_key_hint": "****abcd",
            "client_key": "client",
            "mode": "production",
        }
        assert get_settings_status() == status

    def test_public_config(self):
        save_midtrans_settings(client_key="SB-Mid-client-x", mode="sandbox")
        config = get_public_config()
        assert config["client_key"] == "SB-Mid-client-x"
        assert config["mode"] == "sandbox"
        assert config["snap_js_url"].startswith("https://app.sandbox.midtrans.com")
        assert "server_key" not in config
