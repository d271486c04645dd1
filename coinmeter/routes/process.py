"""
动作分发路由：

- POST /process         通用动作网关
- POST /generate-video  旧版视频去水印接口（固定动作）

两个接口都接受 x-api-key 或 Authorization: Bearer 认证，x-api-key 优先。
外部接口调用是阻塞的，放到线程池执行，避免占用事件循环。
"""

import logging

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from coinmeter.services.auth import extract_credential
from coinmeter.services.dispatcher import ActionDispatcher
from coinmeter.services.errors import GatewayError
from coinmeter.services.video_service import VideoService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_json(request: Request):
    """读取 JSON 请求体，解析失败返回 None，由服务层按参数错误处理。"""
    try:
        return await request.json()
    except ValueError:
        return None


def _error_response(e: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=e.status_code, content=e.to_content())


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"},
    )


@router.post("/process")
async def process_action(request: Request):
    """
    通用动作分发接口。

    请求体：{"action": "<action_key>", "data": {...}}
    成功：{"status": "success", "action", "coins_used", "result"}
    """
    try:
        credential = extract_credential(request)
        body = await _read_json(request)
        result = await run_in_threadpool(ActionDispatcher().dispatch, credential, body)
        return JSONResponse(content=result)
    except GatewayError as e:
        return _error_response(e)
    except Exception:
        logger.exception("动作分发异常")
        return _internal_error()


@router.post("/generate-video")
async def generate_video(request: Request):
    """
    旧版视频去水印接口。

    请求体：{"shareLink": "<url>"}
    成功：{"status": "success", "video_link", "coins_remaining", "history_id"}
    """
    try:
        credential = extract_credential(request)
        body = await _read_json(request)
        result = await run_in_threadpool(VideoService().generate, credential, body)
        return JSONResponse(content=result)
    except GatewayError as e:
        return _error_response(e)
    except Exception:
        logger.exception("视频处理异常")
        return _internal_error()
