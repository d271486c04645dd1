"""
动作注册表：管理 api_actions 表中由管理员配置的动作。

分发请求时只读，lookup() 只返回启用中的动作；
停用与不存在对外表现一致（均为 ActionNotFound），不泄露动作是否存在。
"""

import json
import logging
from datetime import datetime

from coinmeter.database import get_db
from coinmeter.models.schemas import Action, ArrayJoin, InputField
from coinmeter.services.errors import ActionNotFound

logger = logging.getLogger(__name__)

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
ALLOWED_FIELD_TYPES = {"text", "url", "textarea", "number", "email"}


class ActionConfigError(Exception):
    """动作配置不合法。"""
    pass


# ── 行 <-> 对象转换 ────────────────────────────────────────


def _load_json(raw: str | None, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("动作配置 JSON 解析失败，按空配置处理: %r", raw[:100])
        return default


def _row_to_action(row) -> Action:
    """将 api_actions 行解析为 Action，endpoint_config 展开为各字段。"""
    config = _load_json(row["endpoint_config"], {})
    if not isinstance(config, dict):
        config = {}

    # 空映射 {} 也是有效配置：不向外部接口发送任何调用方字段
    mapping = config.get("request_body_mapping")
    if not isinstance(mapping, dict):
        mapping = None

    array_join = None
    if config.get("is_array_mapping"):
        separator = config.get("join_separator")
        array_join = ArrayJoin(
            mapping_key=config.get("mapping_key") or "text",
            # 显式配置的空字符串有效，只有未配置时才用默认空格
            separator=" " if separator is None else separator,
        )

    schema = _load_json(row["input_schema"], [])
    input_schema = [
        InputField(
            name=f["name"],
            label=f.get("label") or f["name"],
            type=f.get("type", "text"),
            placeholder=f.get("placeholder"),
            required=bool(f.get("required", False)),
        )
        for f in schema
        if isinstance(f, dict) and f.get("name")
    ] if isinstance(schema, list) else []

    return Action(
        id=row["id"],
        key=row["action_key"],
        name=row["name"],
        cost=row["coin_cost"],
        active=bool(row["is_active"]),
        endpoint=config.get("external_api") or None,
        method=(config.get("method") or "POST").upper(),
        request_field_mapping=mapping,
        response_path=config.get("response_path") or None,
        array_join=array_join,
        input_schema=input_schema,
        description=row["description"],
        category=row["category"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def action_to_dict(action: Action, include_config: bool = False) -> dict:
    """序列化为接口返回格式。include_config 为 True 时附带外部接口配置（仅管理员可见）。"""
    data = {
        "action_key": action.key,
        "name": action.name,
        "description": action.description,
        "category": action.category,
        "coin_cost": action.cost,
        "is_active": action.active,
        "input_schema": [
            {
                "name": f.name,
                "label": f.label,
                "type": f.type,
                "placeholder": f.placeholder,
                "required": f.required,
            }
            for f in action.input_schema
        ],
    }
    if include_config:
        config = {
            "external_api": action.endpoint,
            "method": action.method,
            "request_body_mapping": action.request_field_mapping,
            "response_path": action.response_path,
            "is_array_mapping": action.array_join is not None,
        }
        if action.array_join is not None:
            config["mapping_key"] = action.array_join.mapping_key
            config["join_separator"] = action.array_join.separator
        data["id"] = action.id
        data["endpoint_config"] = config
        data["created_at"] = action.created_at
        data["updated_at"] = action.updated_at
    return data


# ── 配置校验 ──────────────────────────────────────────────


def _validate_endpoint_config(config) -> dict:
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ActionConfigError("endpoint_config 必须是对象")

    method = config.get("method")
    if method is not None and str(method).upper() not in ALLOWED_METHODS:
        raise ActionConfigError(f"不支持的 HTTP 方法: {method}")

    mapping = config.get("request_body_mapping")
    if mapping is not None:
        if not isinstance(mapping, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()
        ):
            raise ActionConfigError("request_body_mapping 必须是字符串到字符串的映射")

    for key in ("external_api", "response_path", "mapping_key", "join_separator"):
        value = config.get(key)
        if value is not None and not isinstance(value, str):
            raise ActionConfigError(f"{key} 必须是字符串")

    return config


def _validate_input_schema(schema) -> list:
    if schema is None:
        return []
    if not isinstance(schema, list):
        raise ActionConfigError("input_schema 必须是数组")
    for f in schema:
        if not isinstance(f, dict) or not f.get("name") or not f.get("label"):
            raise ActionConfigError("input_schema 中每个字段必须包含 name 和 label")
        if f.get("type", "text") not in ALLOWED_FIELD_TYPES:
            raise ActionConfigError(f"不支持的字段类型: {f.get('type')}")
    return schema


def _validate_cost(cost) -> int:
    if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
        raise ActionConfigError("coin_cost 必须是非负整数")
    return cost


class ActionRegistry:
    """动作注册表：分发时查找、管理员增删改查。"""

    def lookup(self, key: str) -> Action:
        """
        查找启用中的动作。

        Raises:
            ActionNotFound: 动作不存在或已停用。
        """
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM api_actions WHERE action_key = ? AND is_active = 1",
                (key,),
            ).fetchone()
        finally:
            db.close()

        if not row:
            raise ActionNotFound(key)
        return _row_to_action(row)

    def list_actions(self, include_inactive: bool = False) -> list[Action]:
        """按分类、名称排序返回动作列表。"""
        sql = "SELECT * FROM api_actions"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY category ASC, name ASC"

        db = get_db()
        try:
            rows = db.execute(sql).fetchall()
            return [_row_to_action(r) for r in rows]
        finally:
            db.close()

    def get_action(self, key: str) -> Action:
        """管理员查询，包含已停用的动作。"""
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM api_actions WHERE action_key = ?", (key,)
            ).fetchone()
        finally:
            db.close()

        if not row:
            raise ActionConfigError(f'动作 "{key}" 不存在')
        return _row_to_action(row)

    def create_action(
        self,
        action_key: str,
        name: str,
        coin_cost: int = 1,
        endpoint_config: dict | None = None,
        input_schema: list | None = None,
        description: str | None = None,
        category: str | None = None,
        is_active: bool = True,
    ) -> Action:
        """
        创建动作。action_key 创建后不可修改。

        Raises:
            ActionConfigError: 参数不合法或 action_key 已存在。
        """
        if not action_key or not name:
            raise ActionConfigError("action_key 和 name 不能为空")
        cost = _validate_cost(coin_cost)
        config = _validate_endpoint_config(endpoint_config)
        schema = _validate_input_schema(input_schema)
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            db.execute(
                """INSERT INTO api_actions
                   (action_key, name, description, category, coin_cost, is_active,
                    endpoint_config, input_schema, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    action_key, name, description, category, cost,
                    1 if is_active else 0,
                    json.dumps(config), json.dumps(schema), now, now,
                ),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise ActionConfigError(f'动作 "{action_key}" 已存在') from e
            raise
        finally:
            db.close()

        logger.info("创建动作: action_key=%s, cost=%d", action_key, cost)
        return self.get_action(action_key)

    def update_action(self, key: str, **fields) -> Action:
        """
        更新动作的可变字段（name, description, category, coin_cost, is_active,
        endpoint_config, input_schema）。

        Raises:
            ActionConfigError: 动作不存在、字段不合法或试图修改 action_key。
        """
        if "action_key" in fields and fields["action_key"] != key:
            raise ActionConfigError("action_key 创建后不可修改")

        columns = {}
        if "name" in fields:
            if not fields["name"]:
                raise ActionConfigError("name 不能为空")
            columns["name"] = fields["name"]
        if "description" in fields:
            columns["description"] = fields["description"]
        if "category" in fields:
            columns["category"] = fields["category"]
        if "coin_cost" in fields:
            columns["coin_cost"] = _validate_cost(fields["coin_cost"])
        if "is_active" in fields:
            columns["is_active"] = 1 if fields["is_active"] else 0
        if "endpoint_config" in fields:
            columns["endpoint_config"] = json.dumps(
                _validate_endpoint_config(fields["endpoint_config"])
            )
        if "input_schema" in fields:
            columns["input_schema"] = json.dumps(
                _validate_input_schema(fields["input_schema"])
            )

        if columns:
            columns["updated_at"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            assignments = ", ".join(f"{c} = ?" for c in columns)
            db = get_db()
            try:
                cursor = db.execute(
                    f"UPDATE api_actions SET {assignments} WHERE action_key = ?",
                    (*columns.values(), key),
                )
                db.commit()
                if cursor.rowcount == 0:
                    raise ActionConfigError(f'动作 "{key}" 不存在')
            finally:
                db.close()
            logger.info("更新动作: action_key=%s, fields=%s", key, sorted(columns))

        return self.get_action(key)

    def delete_action(self, key: str) -> None:
        """删除动作。历史记录不受影响。"""
        db = get_db()
        try:
            cursor = db.execute(
                "DELETE FROM api_actions WHERE action_key = ?", (key,)
            )
            db.commit()
            if cursor.rowcount == 0:
                raise ActionConfigError(f'动作 "{key}" 不存在')
        finally:
            db.close()
        logger.info("删除动作: action_key=%s", key)
