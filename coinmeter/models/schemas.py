"""
数据模型 / 类型定义，供各模块引用。
使用 dataclass 保持轻量，不引入 ORM。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class InputField:
    """调用方表单字段描述，仅供前端渲染参考，服务端不做校验。"""
    name: str
    label: str
    type: str = "text"
    placeholder: Optional[str] = None
    required: bool = False


@dataclass
class ArrayJoin:
    """结果为数组时的拼接规则。"""
    mapping_key: str = "text"
    separator: str = " "


@dataclass
class Action:
    id: int
    key: str
    name: str
    cost: int
    active: bool = True
    endpoint: Optional[str] = None
    method: str = "POST"
    request_field_mapping: Optional[dict] = None  # 外部字段名 -> 调用方字段名
    response_path: Optional[str] = None
    array_join: Optional[ArrayJoin] = None
    input_schema: list[InputField] = field(default_factory=list)
    description: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Profile:
    id: str
    email: str
    username: str
    api_key: str
    coins: int = 0
    total_processed: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UsageCounter:
    user_id: str
    date: str  # UTC 日期 YYYY-MM-DD
    request_count: int = 0


@dataclass
class HistoryRecord:
    id: int
    user_id: str
    original_url: str
    processed_url: Optional[str] = None
    status: str = "pending"  # success / pending / error
    created_at: Optional[datetime] = None


@dataclass
class CoinPackage:
    id: int
    name: str
    coin_amount: int
    price: int
    description: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CoinTransaction:
    id: int
    order_id: str
    user_id: str
    amount: int
    coin_amount: int
    package_id: Optional[int] = None
    status: str = "pending"  # pending / success / failed / fraud
    midtrans_transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
