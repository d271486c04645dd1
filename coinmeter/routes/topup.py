"""
金币充值路由：

- POST /create-midtrans-transaction  创建充值支付（需会话令牌）
- POST /midtrans-webhook             Midtrans 支付结果通知（签名校验）
- GET  /v1/packages                  在售金币套餐
- GET  /v1/payment/config            前端 Snap 公开配置
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from coinmeter.services.auth import get_current_user
from coinmeter.services.errors import GatewayError
from coinmeter.services.package_service import PackageService, package_to_dict
from coinmeter.services.payment_settings import get_public_config
from coinmeter.services.topup_service import TopupService

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateTopupRequest(BaseModel):
    package_id: Optional[int] = None


@router.post("/create-midtrans-transaction")
async def create_topup(
    body: CreateTopupRequest,
    request: Request,
    user: dict = Depends(get_current_user),
):
    """创建充值交易，返回 {token, redirect_url, order_id}。"""
    origin = request.headers.get("origin", "")
    try:
        result = await run_in_threadpool(
            TopupService().create_topup,
            user["sub"], user.get("email"), body.package_id, origin,
        )
        return JSONResponse(content=result)
    except GatewayError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_content())
    except Exception:
        logger.exception("创建充值交易异常")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )


@router.post("/midtrans-webhook")
async def midtrans_webhook(request: Request):
    """Midtrans 支付结果通知。处理成功返回 {"status": "ok"}。"""
    try:
        notification = await request.json()
    except ValueError:
        notification = None

    try:
        result = TopupService().handle_notification(notification)
        return JSONResponse(content=result)
    except GatewayError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_content())
    except Exception:
        logger.exception("处理支付通知异常")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )


@router.get("/v1/packages")
async def list_packages():
    """在售金币套餐，按 sort_order 排序。"""
    packages = PackageService().list_packages()
    return JSONResponse(content={
        "status": "success",
        "packages": [package_to_dict(p) for p in packages],
    })


@router.get("/v1/payment/config")
async def payment_config():
    return JSONResponse(content={"status": "success", **get_public_config()})
