"""HTTP エッジレイヤー（FastAPI）

評価 API は常に公開、フラグの一覧・作成・更新・削除は常に認可が必要。
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .auth import Authorizer, Credentials
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .metrics import auth_rejections_total
from .models import (
    EvaluationContext,
    EvaluationStrategy,
    Flag,
    format_timestamp,
    strategy_from_dict,
    utc_now,
)
from .service import FlagService

logger = structlog.get_logger(__name__)

_RESERVED_PARAMS = {"user_id", "session_id"}

_ERROR_STATUS: dict[str, int] = {
    FeatureFlagErrorCodes.FLAG_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FeatureFlagErrorCodes.FLAG_KEY_EXISTS: status.HTTP_409_CONFLICT,
    FeatureFlagErrorCodes.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    FeatureFlagErrorCodes.INVALID_STRATEGY: status.HTTP_400_BAD_REQUEST,
    FeatureFlagErrorCodes.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
}


class FlagCreateRequest(BaseModel):
    key: str
    name: str | None = None
    description: str | None = None
    enabled: bool = False
    strategy: dict[str, Any] | None = None


class FlagUpdateRequest(BaseModel):
    key: str | None = None
    name: str
    description: str | None = None
    enabled: bool
    strategy: dict[str, Any] | None = None


def _parse_strategy(raw: dict[str, Any] | None) -> EvaluationStrategy | None:
    return None if raw is None else strategy_from_dict(raw)


def context_from_request(request: Request) -> EvaluationContext:
    """クエリパラメータ（なければヘッダー）から評価コンテキストを組み立てる。

    空文字列の user_id も指定ありとして扱う。
    user_id / session_id 以外のクエリパラメータは attributes になる。
    """
    params = request.query_params
    user_id = params.get("user_id")
    if user_id is None:
        user_id = request.headers.get("x-user-id")
    session_id = params.get("session_id")
    if session_id is None:
        session_id = request.headers.get("x-session-id")
    attributes = {k: v for k, v in params.items() if k not in _RESERVED_PARAMS}
    return EvaluationContext(user_id=user_id, session_id=session_id, attributes=attributes)


def _error_response(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def create_app(
    service: FlagService,
    authorizer: Authorizer,
    *,
    seed_flags: Sequence[Flag] = (),
    service_name: str = "cloth",
    version: str = "0.1.0",
) -> FastAPI:
    """FlagService と Authorizer を注入した FastAPI アプリケーションを生成する。

    seed_flags は起動時（lifespan）にレジストリへ登録される。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if seed_flags:
            await service.load(seed_flags)
        yield

    app = FastAPI(title=service_name, version=version, lifespan=lifespan)

    def get_service() -> FlagService:
        return service

    async def require_authorization(
        x_api_key: str | None = Header(default=None, alias="X-API-Key"),
        authorization: str | None = Header(default=None),
    ) -> None:
        credentials = Credentials.from_headers(x_api_key, authorization)
        if not authorizer.authorize(credentials):
            auth_rejections_total.add(1)
            raise FeatureFlagError(
                FeatureFlagErrorCodes.UNAUTHORIZED,
                "Authentication required",
            )

    @app.exception_handler(FeatureFlagError)
    async def feature_flag_error_handler(request: Request, exc: FeatureFlagError) -> JSONResponse:
        status_code = _ERROR_STATUS.get(exc.code)
        if status_code is None:
            logger.error("request_failed", path=request.url.path, error=str(exc))
            return _error_response(
                "INTERNAL_ERROR",
                "An internal error occurred",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        logger.info("request_rejected", path=request.url.path, code=exc.code)
        return _error_response(exc.code, exc.args[0], status_code)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "ok",
            "service": service_name,
            "version": version,
            "timestamp": format_timestamp(utc_now()),
        }

    public = APIRouter(prefix="/api/flags")

    @public.get("/{key}/evaluate")
    async def evaluate_flag(
        key: str,
        request: Request,
        svc: FlagService = Depends(get_service),
    ) -> dict[str, Any]:
        result = await svc.evaluate(key, context_from_request(request))
        return result.to_dict()

    protected = APIRouter(prefix="/api/flags", dependencies=[Depends(require_authorization)])

    @protected.get("")
    async def list_flags(svc: FlagService = Depends(get_service)) -> dict[str, Any]:
        flags = await svc.list_flags()
        return {"flags": [f.to_dict() for f in flags]}

    @protected.post("", status_code=status.HTTP_201_CREATED)
    async def create_flag(
        body: FlagCreateRequest,
        svc: FlagService = Depends(get_service),
    ) -> dict[str, Any]:
        flag = await svc.create_flag(
            body.key,
            body.name,
            description=body.description,
            enabled=body.enabled,
            strategy=_parse_strategy(body.strategy),
        )
        return flag.to_dict()

    @protected.get("/{key}")
    async def get_flag(key: str, svc: FlagService = Depends(get_service)) -> dict[str, Any]:
        flag = await svc.get_flag(key)
        return flag.to_dict()

    @protected.put("/{key}")
    async def update_flag(
        key: str,
        body: FlagUpdateRequest,
        svc: FlagService = Depends(get_service),
    ) -> dict[str, Any]:
        if body.key is not None and body.key != key:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                "key は変更できません",
            )
        flag = await svc.update_flag(
            key,
            name=body.name,
            enabled=body.enabled,
            description=body.description,
            strategy=_parse_strategy(body.strategy),
        )
        return flag.to_dict()

    @protected.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_flag(key: str, svc: FlagService = Depends(get_service)) -> Response:
        await svc.delete_flag(key)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(public)
    app.include_router(protected)
    return app
