"""
用户账户路由（会话令牌认证）：账户信息、API Key、历史记录、用量、动作目录、充值记录。
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from coinmeter.services.account_service import AccountService
from coinmeter.services.action_registry import ActionRegistry, action_to_dict
from coinmeter.services.auth import get_current_user
from coinmeter.services.errors import ProfileNotFound
from coinmeter.services.topup_service import TopupService, transaction_to_dict

router = APIRouter(prefix="/v1")


@router.post("/profile")
async def create_profile(user: dict = Depends(get_current_user)):
    """注册回调：为当前用户创建账户（已存在则直接返回）。"""
    svc = AccountService()
    svc.create_profile(user["sub"], user.get("email", ""), user.get("username"))
    return JSONResponse(content={"status": "success", "profile": svc.get_profile_info(user["sub"])})


@router.get("/profile")
async def get_profile(user: dict = Depends(get_current_user)):
    try:
        info = AccountService().get_profile_info(user["sub"])
    except ValueError:
        e = ProfileNotFound()
        return JSONResponse(status_code=e.status_code, content=e.to_content())
    return JSONResponse(content={"status": "success", "profile": info})


@router.post("/profile/api-key")
async def regenerate_api_key(user: dict = Depends(get_current_user)):
    """重置 API Key，旧 Key 立即失效。"""
    try:
        new_key = AccountService().regenerate_api_key(user["sub"])
    except ValueError:
        e = ProfileNotFound()
        return JSONResponse(status_code=e.status_code, content=e.to_content())
    return JSONResponse(content={"status": "success", "api_key": new_key})


@router.get("/history")
async def list_history(
    user: dict = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=100),
):
    records = AccountService().list_history(user["sub"], limit=limit)
    return JSONResponse(content={
        "status": "success",
        "history": [
            {
                "id": r.id,
                "original_url": r.original_url,
                "processed_url": r.processed_url,
                "status": r.status,
                "created_at": r.created_at,
            }
            for r in records
        ],
    })


@router.get("/usage")
async def list_usage(
    user: dict = Depends(get_current_user),
    days: int = Query(7, ge=1, le=90),
):
    counters = AccountService().list_usage(user["sub"], days=days)
    return JSONResponse(content={
        "status": "success",
        "usage": [{"date": c.date, "request_count": c.request_count} for c in counters],
    })


@router.get("/actions")
async def list_actions():
    """启用中的动作目录，供前端渲染输入表单。"""
    actions = ActionRegistry().list_actions()
    return JSONResponse(content={
        "status": "success",
        "actions": [action_to_dict(a) for a in actions],
    })


@router.get("/transactions")
async def list_transactions(
    user: dict = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
):
    txs = TopupService().list_transactions(user_id=user["sub"], limit=limit)
    return JSONResponse(content={
        "status": "success",
        "transactions": [transaction_to_dict(t) for t in txs],
    })
