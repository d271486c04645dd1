"""
管理后台路由：动作管理、金币套餐管理、支付配置、充值交易、手动调整金币。

所有接口需要会话令牌且用户拥有 admin 角色。
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from coinmeter.services.account_service import AccountService
from coinmeter.services.action_registry import ActionConfigError, ActionRegistry, action_to_dict
from coinmeter.services.auth import get_current_admin
from coinmeter.services.package_service import PackageService, package_to_dict
from coinmeter.services.payment_settings import (
    PaymentSettingsError,
    get_settings_status,
    save_midtrans_settings,
)
from coinmeter.services.topup_service import TopupService, transaction_to_dict

router = APIRouter(prefix="/v1/admin")


def _error(msg: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": msg})


# ── 动作管理 ────────────────────────────────────────────────


class CreateActionRequest(BaseModel):
    action_key: str
    name: str
    coin_cost: int = 1
    endpoint_config: Optional[dict[str, Any]] = None
    input_schema: Optional[list[dict[str, Any]]] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True


class UpdateActionRequest(BaseModel):
    action_key: Optional[str] = None
    name: Optional[str] = None
    coin_cost: Optional[int] = None
    endpoint_config: Optional[dict[str, Any]] = None
    input_schema: Optional[list[dict[str, Any]]] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("/actions")
async def admin_list_actions(admin: dict = Depends(get_current_admin)):
    """全部动作（含已停用），附带外部接口配置。"""
    actions = ActionRegistry().list_actions(include_inactive=True)
    return JSONResponse(content={
        "status": "success",
        "actions": [action_to_dict(a, include_config=True) for a in actions],
    })


@router.get("/actions/{action_key}")
async def admin_get_action(action_key: str, admin: dict = Depends(get_current_admin)):
    try:
        action = ActionRegistry().get_action(action_key)
    except ActionConfigError as e:
        return _error(str(e), 404)
    return JSONResponse(content={"status": "success", "action": action_to_dict(action, include_config=True)})


@router.post("/actions")
async def admin_create_action(body: CreateActionRequest, admin: dict = Depends(get_current_admin)):
    try:
        action = ActionRegistry().create_action(**body.model_dump())
    except ActionConfigError as e:
        return _error(str(e))
    return JSONResponse(content={"status": "success", "action": action_to_dict(action, include_config=True)})


@router.put("/actions/{action_key}")
async def admin_update_action(
    action_key: str, body: UpdateActionRequest, admin: dict = Depends(get_current_admin)
):
    """只更新请求中出现的字段。"""
    try:
        action = ActionRegistry().update_action(action_key, **body.model_dump(exclude_unset=True))
    except ActionConfigError as e:
        return _error(str(e))
    return JSONResponse(content={"status": "success", "action": action_to_dict(action, include_config=True)})


@router.delete("/actions/{action_key}")
async def admin_delete_action(action_key: str, admin: dict = Depends(get_current_admin)):
    try:
        ActionRegistry().delete_action(action_key)
    except ActionConfigError as e:
        return _error(str(e), 404)
    return JSONResponse(content={"status": "success", "message": "动作已删除"})


# ── 金币套餐 ────────────────────────────────────────────────


class CreatePackageRequest(BaseModel):
    name: str
    coin_amount: int
    price: int
    description: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class UpdatePackageRequest(BaseModel):
    name: Optional[str] = None
    coin_amount: Optional[int] = None
    price: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


@router.get("/packages")
async def admin_list_packages(admin: dict = Depends(get_current_admin)):
    packages = PackageService().list_packages(include_inactive=True)
    return JSONResponse(content={
        "status": "success",
        "packages": [package_to_dict(p) for p in packages],
    })


@router.post("/packages")
async def admin_create_package(body: CreatePackageRequest, admin: dict = Depends(get_current_admin)):
    try:
        pkg = PackageService().create_package(**body.model_dump())
    except ValueError as e:
        return _error(str(e))
    return JSONResponse(content={"status": "success", "package": package_to_dict(pkg)})


@router.put("/packages/{package_id}")
async def admin_update_package(
    package_id: int, body: UpdatePackageRequest, admin: dict = Depends(get_current_admin)
):
    try:
        pkg = PackageService().update_package(package_id, **body.model_dump(exclude_unset=True))
    except ValueError as e:
        return _error(str(e))
    return JSONResponse(content={"status": "success", "package": package_to_dict(pkg)})


@router.delete("/packages/{package_id}")
async def admin_delete_package(package_id: int, admin: dict = Depends(get_current_admin)):
    try:
        PackageService().delete_package(package_id)
    except ValueError as e:
        return _error(str(e), 404)
    return JSONResponse(content={"status": "success", "message": "套餐已删除"})


# ── 支付配置 ────────────────────────────────────────────────


class PaymentSettingsRequest(BaseModel):
    server_key: Optional[str] = None
    client_key: Optional[str] = None
    mode: Optional[str] = None


@router.get("/payment-settings")
async def admin_get_payment_settings(admin: dict = Depends(get_current_admin)):
    return JSONResponse(content={"status": "success", "settings": get_settings_status()})


@router.put("/payment-settings")
async def admin_save_payment_settings(
    body: PaymentSettingsRequest, admin: dict = Depends(get_current_admin)
):
    """保存 Midtrans 配置。server_key 留空表示不修改。"""
    try:
        status = save_midtrans_settings(body.server_key, body.client_key, body.mode)
    except PaymentSettingsError as e:
        return _error(str(e))
    return JSONResponse(content={"status": "success", "settings": status})


# ── 充值交易 / 金币调整 ─────────────────────────────────────


@router.get("/transactions")
async def admin_list_transactions(
    admin: dict = Depends(get_current_admin),
    user_id: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    txs = TopupService().list_transactions(user_id=user_id, status=status, limit=limit)
    return JSONResponse(content={
        "status": "success",
        "transactions": [transaction_to_dict(t) for t in txs],
    })


class AdjustCoinsRequest(BaseModel):
    delta: int


@router.post("/profiles/{user_id}/coins")
async def admin_adjust_coins(
    user_id: str, body: AdjustCoinsRequest, admin: dict = Depends(get_current_admin)
):
    """手动增减金币（delta 为负数时扣减），余额不能为负。"""
    try:
        balance = AccountService().adjust_coins(user_id, body.delta)
    except ValueError as e:
        return _error(str(e))
    return JSONResponse(content={"status": "success", "user_id": user_id, "coins": balance})
