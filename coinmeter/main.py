"""
Coinmeter 应用入口：FastAPI 应用实例、路由注册、生命周期。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

load_dotenv()

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── 后台任务 ──────────────────────────────────────────────

async def _topup_expiry_task() -> None:
    """定期将超时未支付的充值交易标记为失败（每 10 分钟）。"""
    from coinmeter.services.topup_service import TopupService

    svc = TopupService()
    while True:
        try:
            svc.expire_pending()
            logger.debug("充值交易过期检查完成")
        except Exception as e:
            logger.error("充值交易过期检查异常: %s", e)
        await asyncio.sleep(600)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：启动时初始化数据库并启动后台任务。"""
    from coinmeter.database import init_db

    init_db()
    logger.info("数据库初始化完成")

    tasks = []
    if os.environ.get("TESTING") != "1":
        tasks.append(asyncio.create_task(_topup_expiry_task()))
        logger.info("后台任务已启动：充值交易过期检查")

    yield

    for t in tasks:
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Coinmeter", description="按金币计费的动作网关", lifespan=lifespan)


# ── 错误处理 ──────────────────────────────────────────────

from coinmeter.services.errors import GatewayError


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """依赖项（认证等）抛出的网关错误统一转换为 JSON 响应。"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """请求参数校验失败统一返回 400，格式与其他错误一致。"""
    fields = ", ".join(str(e["loc"][-1]) for e in exc.errors() if e.get("loc"))
    message = f"Invalid request parameters: {fields}" if fields else "Invalid request parameters"
    logger.info("请求参数校验失败: path=%s, fields=%s", request.url.path, fields)
    return JSONResponse(status_code=400, content={"status": "error", "message": message})


# ── CORS 中间件 ───────────────────────────────────────────

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# ── 路由注册 ──────────────────────────────────────────────

from coinmeter.routes.process import router as process_router
from coinmeter.routes.topup import router as topup_router
from coinmeter.routes.account import router as account_router
from coinmeter.routes.admin import router as admin_router

app.include_router(process_router)
app.include_router(topup_router)
app.include_router(account_router)
app.include_router(admin_router)


# ── 健康检查 ──────────────────────────────────────────────

@app.get("/health")
async def health_check():
    return {"status": "ok"}
