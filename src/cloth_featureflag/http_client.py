"""FeatureFlag HTTP クライアント実装"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import EvaluationContext, EvaluationResult, EvaluationStrategy, Flag

_STATUS_CODES: dict[int, str] = {
    400: FeatureFlagErrorCodes.VALIDATION_ERROR,
    401: FeatureFlagErrorCodes.UNAUTHORIZED,
    404: FeatureFlagErrorCodes.FLAG_NOT_FOUND,
    409: FeatureFlagErrorCodes.FLAG_KEY_EXISTS,
}


@dataclass
class FeatureFlagClientConfig:
    """FeatureFlag クライアント設定。"""

    base_url: str
    api_key: str = ""
    bearer_token: str = ""
    timeout_seconds: float = 10.0


def _flag_path(flag_key: str, suffix: str = "") -> str:
    return f"/api/flags/{quote(flag_key, safe='')}{suffix}"


def _context_params(context: EvaluationContext) -> dict[str, str]:
    params: dict[str, str] = dict(context.attributes)
    if context.user_id is not None:
        params["user_id"] = context.user_id
    if context.session_id is not None:
        params["session_id"] = context.session_id
    return params


class HttpFeatureFlagClient:
    """httpx を使った FeatureFlag HTTP クライアント。

    評価 API は認証なしで呼び出せる。管理 API には api_key または bearer_token が必要。
    """

    def __init__(self, config: FeatureFlagClientConfig) -> None:
        self._config = config
        headers: dict[str, str] = {"Accept": "application/json"}
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        if config.bearer_token:
            headers["Authorization"] = f"Bearer {config.bearer_token}"
        self._headers = headers

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            headers=self._headers,
            timeout=self._config.timeout_seconds,
        )

    def _handle_error(self, resp: httpx.Response, context: str) -> None:
        if resp.status_code < 400:
            return
        code = _STATUS_CODES.get(resp.status_code, FeatureFlagErrorCodes.HTTP_ERROR)
        raise FeatureFlagError(
            code=code,
            message=f"{context}: HTTP {resp.status_code}: {resp.text}",
        )

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            async with self._make_client() as client:
                resp = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.HTTP_ERROR,
                message=f"{context}: {e}",
                cause=e,
            ) from e
        self._handle_error(resp, context)
        return resp

    async def evaluate(
        self, flag_key: str, context: EvaluationContext
    ) -> EvaluationResult:
        resp = await self._request(
            "GET",
            _flag_path(flag_key, "/evaluate"),
            f"evaluate({flag_key})",
            params=_context_params(context),
        )
        return EvaluationResult.from_dict(resp.json())

    async def is_enabled(self, flag_key: str, context: EvaluationContext) -> bool:
        result = await self.evaluate(flag_key, context)
        return result.enabled

    async def get_flag(self, flag_key: str) -> Flag:
        resp = await self._request("GET", _flag_path(flag_key), f"get_flag({flag_key})")
        return Flag.from_dict(resp.json())

    async def list_flags(self) -> list[Flag]:
        resp = await self._request("GET", "/api/flags", "list_flags")
        data: dict[str, Any] = resp.json()
        return [Flag.from_dict(f) for f in data.get("flags", [])]

    async def create_flag(
        self,
        key: str,
        name: str | None = None,
        *,
        description: str | None = None,
        enabled: bool = False,
        strategy: EvaluationStrategy | None = None,
    ) -> Flag:
        body: dict[str, Any] = {"key": key, "enabled": enabled}
        if name is not None:
            body["name"] = name
        if description is not None:
            body["description"] = description
        if strategy is not None:
            body["strategy"] = strategy.to_dict()
        resp = await self._request("POST", "/api/flags", f"create_flag({key})", json=body)
        return Flag.from_dict(resp.json())

    async def update_flag(
        self,
        flag_key: str,
        *,
        name: str,
        enabled: bool,
        description: str | None = None,
        strategy: EvaluationStrategy | None = None,
    ) -> Flag:
        body: dict[str, Any] = {"name": name, "enabled": enabled, "description": description}
        if strategy is not None:
            body["strategy"] = strategy.to_dict()
        resp = await self._request(
            "PUT", _flag_path(flag_key), f"update_flag({flag_key})", json=body
        )
        return Flag.from_dict(resp.json())

    async def delete_flag(self, flag_key: str) -> None:
        await self._request("DELETE", _flag_path(flag_key), f"delete_flag({flag_key})")
