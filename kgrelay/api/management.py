"""Management endpoints under ``/api``.

Every endpoint answers HTTP 200.  Success is ``{"status": 1, ...}``; a
rejected call is ``{"status": 0, "msg": ...}``.  Domain exceptions raised by
the store and the registry are translated here and never escape as HTTP
errors.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from kgrelay.api.services import Services, get_services
from kgrelay.core.exceptions import InvalidInputError, JobNotFoundError, UserNotLoggedInError
from kgrelay.routing.dispatcher import read_payload

__all__ = ["router"]

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["management"])

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


_M = TypeVar("_M", bound=BaseModel)


class _UserPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(default="", validation_alias=AliasChoices("userId", "userid", "user_id"))


class SaveLoginPayload(_UserPayload):
    token: str = ""


class StartCronPayload(_UserPayload):
    time: str = ""


class ClearCachePayload(BaseModel):
    target: str = ""


def _coerce(payload: dict[str, Any]) -> dict[str, Any]:
    """Turn scalar values into strings so numeric user IDs validate."""
    return {
        k: str(v) if isinstance(v, (int, float)) else v
        for k, v in payload.items()
        if v is not None
    }


async def _parse(request: Request, model: type[_M]) -> _M:
    """Validate the request body into *model*; a malformed body yields the defaults."""
    data = _coerce(await read_payload(request))
    try:
        return model.model_validate(data)
    except ValidationError:
        logger.debug("Malformed %s payload: %r", model.__name__, data)
        return model()


def _ok(msg: str | None = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"status": 1}
    if msg is not None:
        body["msg"] = msg
    body.update(extra)
    return body


def _fail(msg: str) -> dict[str, Any]:
    return {"status": 0, "msg": msg}


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


# ---------------------------------------------------------------------------
# Credential endpoints
# ---------------------------------------------------------------------------


@router.post("/saveLogin")
async def save_login(request: Request, services: Services = Depends(get_services)):
    start = time.perf_counter()
    payload = await _parse(request, SaveLoginPayload)
    try:
        services.store.save(payload.user_id, payload.token)
    except InvalidInputError as exc:
        return JSONResponse(_fail(str(exc)), headers={"X-Elapsed-Ms": f"{_elapsed_ms(start):.3f}"})

    elapsed = _elapsed_ms(start)
    return JSONResponse(
        _ok("登录信息已保存到服务器内存", elapsedMs=elapsed, pid=os.getpid()),
        headers={"X-Elapsed-Ms": f"{elapsed:.3f}", "X-PID": str(os.getpid())},
    )


@router.get("/getLogins")
async def get_logins(services: Services = Depends(get_services)):
    start = time.perf_counter()
    logins = services.store.list()
    elapsed = _elapsed_ms(start)
    logger.info("Returning %d stored login(s).", len(logins))
    return JSONResponse(
        _ok(data=logins, elapsedMs=elapsed, pid=os.getpid()),
        headers={"X-Elapsed-Ms": f"{elapsed:.3f}", "X-PID": str(os.getpid())},
    )


@router.post("/deleteLogin")
async def delete_login(request: Request, services: Services = Depends(get_services)):
    payload = await _parse(request, _UserPayload)
    if not payload.user_id:
        return _fail("缺少userid")
    services.store.delete(payload.user_id)
    return _ok("登录信息已删除")


@router.post("/clearLogins")
async def clear_logins(services: Services = Depends(get_services)):
    services.store.clear_all()
    return _ok("所有登录信息已清空")


# ---------------------------------------------------------------------------
# Cache endpoint
# ---------------------------------------------------------------------------


@router.post("/clearCache")
async def clear_cache(request: Request, services: Services = Depends(get_services)):
    payload = await _parse(request, ClearCachePayload)
    try:
        result = services.coordinator.invalidate(payload.target or None)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Manual cache clear failed.")
        return _fail(str(exc))

    if result == "all":
        logger.info("All cached responses cleared (manual).")
        return _ok("已清空所有缓存", cleared="all")
    logger.info("Cleared %d cached response(s) matching %r.", len(result), payload.target)
    return _ok(f"已清除 {len(result)} 条缓存", keys=result)


# ---------------------------------------------------------------------------
# Scheduled job endpoints
# ---------------------------------------------------------------------------


@router.get("/getCronStatus")
async def get_cron_status(services: Services = Depends(get_services)):
    return _ok(data=services.jobs.status())


@router.post("/startAutoCron")
async def start_auto_cron(request: Request, services: Services = Depends(get_services)):
    payload = await _parse(request, StartCronPayload)
    schedule = payload.time.strip() or services.settings.default_cron
    if not payload.user_id:
        return _fail("用户不存在或未登录")
    try:
        services.jobs.start(payload.user_id, schedule)
    except UserNotLoggedInError:
        return _fail("用户不存在或未登录")
    except InvalidInputError as exc:
        return _fail(str(exc))
    return _ok(f"定时任务已创建，执行时间: {schedule}")


@router.post("/stopAutoCron")
async def stop_auto_cron(request: Request, services: Services = Depends(get_services)):
    payload = await _parse(request, _UserPayload)
    try:
        services.jobs.stop(payload.user_id)
    except JobNotFoundError:
        return _fail("未找到该用户的定时任务")
    return _ok("定时任务已停止")
