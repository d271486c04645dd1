"""
请求/响应转换：按动作配置把调用方数据映射为外部接口请求体，
并从外部接口响应中提取结果。纯函数，无状态。
"""

from typing import Any, Optional

from coinmeter.models.schemas import ArrayJoin


def build_outbound_payload(caller_data: dict, mapping: Optional[dict]) -> dict:
    """
    构建外部接口请求体。

    - 未配置映射（None）：原样透传调用方数据
    - 配置了映射 {外部字段: 调用方字段}：仅输出映射中出现且调用方提供了的字段，
      调用方未提供的字段直接省略（不会置为 null）。空映射 {} 输出空请求体
    """
    if mapping is None:
        return caller_data

    result = {}
    for external_field, caller_field in mapping.items():
        if caller_field in caller_data:
            result[external_field] = caller_data[caller_field]
    return result


def get_nested_value(obj: Any, path: Optional[str]) -> Any:
    """
    按点号路径逐级取值，任一中间层缺失返回 None。

    路径段为纯数字且当前层为列表时按下标取值。
    """
    if not path:
        return obj

    current = obj
    for step in path.split("."):
        if isinstance(current, dict):
            current = current.get(step)
        elif isinstance(current, list) and step.isdecimal():
            index = int(step)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _join_text(value: Any) -> str:
    """拼接用的文本形式：null 为空串，布尔值小写，整数值的浮点数不带小数。"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_result(
    body: Any,
    response_path: Optional[str] = None,
    array_join: Optional[ArrayJoin] = None,
) -> Any:
    """
    从外部接口响应中提取结果。

    未配置 response_path 时整个响应体即为结果。
    配置了 array_join 且结果为列表时，取每个元素的 mapping_key 字段
    （缺失或为 null 时用空字符串）并以 separator 拼接。
    返回 None 表示无法解析，由调用方决定如何处理。
    """
    extracted = get_nested_value(body, response_path)

    if array_join is not None and isinstance(extracted, list):
        parts = []
        for item in extracted:
            value = item.get(array_join.mapping_key) if isinstance(item, dict) else None
            parts.append(_join_text(value))
        return array_join.separator.join(parts)

    return extracted
