"""请求/响应转换单元测试。"""

from coinmeter.models.schemas import ArrayJoin
from coinmeter.services.transformer import (
    build_outbound_payload,
    extract_result,
    get_nested_value,
)


class TestBuildOutboundPayload:
    """外部请求体构建测试。"""

    def test_no_mapping_passes_through(self):
        data = {"text": "hello", "lang": "en"}
        assert build_outbound_payload(data, None) == data

    def test_empty_mapping_sends_nothing(self):
        """配置了空映射时调用方字段一个也不转发。"""
        assert build_outbound_payload({"secret": "s", "url": "u"}, {}) == {}

    def test_mapping_renames_fields(self):
        result = build_outbound_payload({"text": "hi"}, {"q": "text"})
        assert result == {"q": "hi"}

    def test_mapping_drops_unmapped_caller_fields(self):
        result = build_outbound_payload({"text": "hi", "extra": 1}, {"q": "text"})
        assert result == {"q": "hi"}

    def test_missing_caller_field_is_omitted(self):
        """调用方未提供的字段直接省略，不输出 null。"""
        result = build_outbound_payload({"a": 1}, {"x": "a", "y": "b"})
        assert result == {"x": 1}
        assert "y" not in result

    def test_explicit_null_is_forwarded(self):
        result = build_outbound_payload({"a": None}, {"x": "a"})
        assert result == {"x": None}

    def test_one_caller_field_to_many_external_fields(self):
        result = build_outbound_payload({"url": "https://a.b"}, {"src": "url", "link": "url"})
        assert result == {"src": "https://a.b", "link": "https://a.b"}


class TestGetNestedValue:
    """点号路径取值测试。"""

    def test_empty_path_returns_object(self):
        body = {"a": 1}
        assert get_nested_value(body, None) is body
        assert get_nested_value(body, "") is body

    def test_nested_dict(self):
        assert get_nested_value({"data": {"result": {"text": "ok"}}}, "data.result.text") == "ok"

    def test_list_index(self):
        body = {"choices": [{"text": "first"}, {"text": "second"}]}
        assert get_nested_value(body, "choices.1.text") == "second"

    def test_non_ascii_digit_segment_returns_none(self):
        assert get_nested_value({"items": ["a", "b"]}, "items.\u00b2") is None

    def test_list_index_out_of_range(self):
        assert get_nested_value({"items": [1]}, "items.5") is None

    def test_missing_intermediate_returns_none(self):
        assert get_nested_value({"data": {}}, "data.result.text") is None

    def test_scalar_intermediate_returns_none(self):
        assert get_nested_value({"data": "text"}, "data.result") is None

    def test_falsy_leaf_values_kept(self):
        assert get_nested_value({"n": 0}, "n") == 0
        assert get_nested_value({"s": ""}, "s") == ""
        assert get_nested_value({"b": False}, "b") is False


class TestExtractResult:
    """响应结果提取测试。"""

    def test_whole_body_without_path(self):
        body = {"answer": 42}
        assert extract_result(body) == body

    def test_path_extraction(self):
        assert extract_result({"data": {"url": "u"}}, "data.url") == "u"

    def test_unresolvable_path_returns_none(self):
        assert extract_result({"data": {}}, "data.url") is None

    def test_array_join_default_separator(self):
        body = {"segments": [{"text": "Hello"}, {"text": "world"}]}
        assert extract_result(body, "segments", ArrayJoin()) == "Hello world"

    def test_array_join_custom_key_and_separator(self):
        body = {"lines": [{"line": "a"}, {"line": "b"}, {"line": "c"}]}
        assert extract_result(body, "lines", ArrayJoin(mapping_key="line", separator="\n")) == "a\nb\nc"

    def test_array_join_missing_values_become_empty(self):
        body = {"segments": [{"text": "a"}, {}, {"text": None}, {"text": 3}]}
        assert extract_result(body, "segments", ArrayJoin(separator="|")) == "a|||3"

    def test_array_join_renders_bool_and_integral_float(self):
        body = {"items": [{"t": True}, {"t": False}, {"t": 1.0}, {"t": 2.5}]}
        assert extract_result(body, "items", ArrayJoin("t", ",")) == "true,false,1,2.5"

    def test_array_join_ignored_for_non_list(self):
        body = {"segments": "plain"}
        assert extract_result(body, "segments", ArrayJoin()) == "plain"

    def test_array_join_empty_list(self):
        assert extract_result({"segments": []}, "segments", ArrayJoin()) == ""
