"""外部接口客户端单元测试。"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from coinmeter.services.errors import ExternalError
from coinmeter.services.external_client import ExternalApiClient, ExternalResponse


def _mock_client(mock_client_cls, status_code=200, body=None, json_error=False, side_effect=None):
    mock_response = MagicMock()
    mock_response.status_code = status_code
    if json_error:
        mock_response.json.side_effect = json.JSONDecodeError("err", "", 0)
        mock_response.text = "<html>oops</html>"
    else:
        mock_response.json.return_value = body
        mock_response.text = json.dumps(body)

    mock_client = MagicMock()
    if side_effect is not None:
        mock_client.request.side_effect = side_effect
    else:
        mock_client.request.return_value = mock_response
    mock_client.__enter__ = MagicMock(return_value=mock_client)
    mock_client.__exit__ = MagicMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


class TestCall:
    """call 方法测试。"""

    @patch("coinmeter.services.external_client.httpx.Client")
    def test_post_sends_json_body(self, mock_client_cls):
        mock_client = _mock_client(mock_client_cls, body={"ok": True})
        resp = ExternalApiClient(timeout=5).call("https://api.example.com/x", "POST", {"q": "hi"})

        assert resp.ok
        assert resp.body == {"ok": True}
        mock_client_cls.assert_called_once_with(timeout=5)
        args, kwargs = mock_client.request.call_args
        assert args == ("POST", "https://api.example.com/x")
        assert kwargs["json"] == {"q": "hi"}
        assert kwargs["headers"]["Content-Type"] == "application/json"

    @patch("coinmeter.services.external_client.httpx.Client")
    def test_get_sends_query_params(self, mock_client_cls):
        mock_client = _mock_client(mock_client_cls, body={"ok": True})
        ExternalApiClient().call("https://api.example.com/x", "get", {"q": "hi", "n": 2, "skip": None, "tags": ["a"]})

        args, kwargs = mock_client.request.call_args
        assert args[0] == "GET"
        assert "json" not in kwargs
        assert kwargs["params"] == {"q": "hi", "n": 2, "tags": '["a"]'}

    @patch("coinmeter.services.external_client.httpx.Client")
    def test_non_json_response_body_is_none(self, mock_client_cls):
        _mock_client(mock_client_cls, status_code=200, json_error=True)
        resp = ExternalApiClient().call("https://api.example.com/x", "POST", {})
        assert resp.ok
        assert resp.body is None
        assert resp.text == "<html>oops</html>"

    @patch("coinmeter.services.external_client.httpx.Client")
    def test_transport_error_raises_500(self, mock_client_cls):
        _mock_client(mock_client_cls, side_effect=httpx.ConnectError("Connection refused"))
        with pytest.raises(ExternalError) as exc_info:
            ExternalApiClient().call("https://api.example.com/x", "POST", {})
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "External API request failed"

    @patch("coinmeter.services.external_client.httpx.Client")
    def test_timeout_raises_500(self, mock_client_cls):
        _mock_client(mock_client_cls, side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(ExternalError) as exc_info:
            ExternalApiClient().call("https://api.example.com/x", "POST", {})
        assert exc_info.value.status_code == 500


class TestExternalResponse:
    """响应对象测试。"""

    def test_ok_range(self):
        assert ExternalResponse(200, {}).ok
        assert ExternalResponse(204, None).ok
        assert not ExternalResponse(302, None).ok
        assert not ExternalResponse(404, {}).ok

    @pytest.mark.parametrize("body,expected", [
        ({"message": "bad input"}, "bad input"),
        ({"msg": "quota"}, "quota"),
        ({"error": "boom"}, "boom"),
        ({"message": "", "error": "fallback"}, "fallback"),
        ({}, "External API request failed"),
        (None, "External API request failed"),
        (["not", "a", "dict"], "External API request failed"),
    ])
    def test_error_message(self, body, expected):
        assert ExternalResponse(500, body).error_message() == expected
