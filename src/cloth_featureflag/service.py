"""フラグサービス（コントロールプレーン CRUD とデータプレーン評価）"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

import structlog

from .evaluator import decide
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .metrics import flag_evaluations_total, flag_mutations_total
from .models import (
    DEFAULT_AUTHOR,
    EvaluationContext,
    EvaluationResult,
    EvaluationStrategy,
    Flag,
    FlagMetadata,
    SimpleStrategy,
    format_timestamp,
    utc_now,
)
from .registry import FlagRegistry

logger = structlog.get_logger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip()


class FlagService:
    """レジストリ上のフラグを管理・評価するサービス。

    Args:
        registry: フラグの保存先
        clock: 現在時刻を返す関数（テスト用に差し替え可能）
    """

    def __init__(
        self,
        registry: FlagRegistry,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._clock = clock or utc_now

    async def list_flags(self) -> list[Flag]:
        """全フラグを作成日時の新しい順に返す。"""
        flags = await self._registry.list()
        return sorted(flags, key=lambda f: f.metadata.created_at, reverse=True)

    async def get_flag(self, flag_key: str) -> Flag:
        flag = await self._registry.get(flag_key)
        if flag is None:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.FLAG_NOT_FOUND,
                f"フラグが見つかりません: {flag_key}",
            )
        return flag

    async def create_flag(
        self,
        key: str,
        name: str | None = None,
        *,
        description: str | None = None,
        enabled: bool = False,
        strategy: EvaluationStrategy | None = None,
        created_by: str = DEFAULT_AUTHOR,
    ) -> Flag:
        """フラグを新規作成する。

        Raises:
            FeatureFlagError: key が空（VALIDATION_ERROR）、key 重複（FLAG_KEY_EXISTS）
        """
        clean_key = _clean(key)
        if not clean_key:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                "key は必須です",
            )
        if await self._registry.get(clean_key) is not None:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.FLAG_KEY_EXISTS,
                f"フラグ key は既に存在します: {clean_key}",
            )
        flag = Flag(
            key=clean_key,
            enabled=enabled,
            name=_clean(name) or clean_key,
            description=_clean(description),
            strategy=strategy or SimpleStrategy(),
            metadata=FlagMetadata.now(created_by, at=self._clock()),
        )
        await self._registry.put(flag)
        flag_mutations_total.add(1, {"operation": "create"})
        logger.info("flag_created", flag_key=flag.key, strategy=flag.strategy.to_dict()["type"])
        return flag

    async def update_flag(
        self,
        flag_key: str,
        *,
        name: str,
        enabled: bool,
        description: str | None = None,
        strategy: EvaluationStrategy | None = None,
    ) -> Flag:
        """フラグを丸ごと置き換える（部分マージはしない）。

        key・created_at・created_by は既存の値を引き継ぎ、updated_at を更新する。
        楽観的排他制御は行わないため、並行更新は後勝ちになる。
        """
        existing = await self.get_flag(flag_key)
        clean_name = _clean(name)
        if not clean_name:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                "name は空にできません",
            )
        updated = replace(
            existing,
            enabled=enabled,
            name=clean_name,
            description=_clean(description),
            strategy=strategy or SimpleStrategy(),
            metadata=existing.metadata.touched(self._clock()),
        )
        await self._registry.put(updated)
        flag_mutations_total.add(1, {"operation": "update"})
        logger.info("flag_updated", flag_key=flag_key, enabled=enabled)
        return updated

    async def delete_flag(self, flag_key: str) -> None:
        if not await self._registry.delete(flag_key):
            raise FeatureFlagError(
                FeatureFlagErrorCodes.FLAG_NOT_FOUND,
                f"フラグが見つかりません: {flag_key}",
            )
        flag_mutations_total.add(1, {"operation": "delete"})
        logger.info("flag_deleted", flag_key=flag_key)

    async def load(self, flags: Iterable[Flag]) -> int:
        """設定ファイル等からフラグを一括登録する。同一 key は上書き。"""
        count = 0
        for flag in flags:
            await self._registry.put(flag)
            count += 1
        logger.info("flags_loaded", count=count)
        return count

    async def evaluate(
        self, flag_key: str, context: EvaluationContext
    ) -> EvaluationResult:
        flag = await self.get_flag(flag_key)
        enabled = decide(flag, context)
        flag_evaluations_total.add(1, {"flag_key": flag_key, "result": str(enabled).lower()})
        logger.debug("flag_evaluated", flag_key=flag_key, enabled=enabled)
        return EvaluationResult(
            key=flag_key,
            enabled=enabled,
            evaluated_at=format_timestamp(self._clock()),
        )

    async def is_enabled(self, flag_key: str, context: EvaluationContext) -> bool:
        result = await self.evaluate(flag_key, context)
        return result.enabled
