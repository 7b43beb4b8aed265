"""featureflag データモデル"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes

DEFAULT_TIMESTAMP = "2024-01-01T00:00:00Z"
DEFAULT_AUTHOR = "system"


def format_timestamp(value: datetime) -> str:
    """datetime を RFC3339 文字列（UTC, Z 表記）に変換する。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StrategyType(StrEnum):
    """評価戦略の種別タグ。"""

    SIMPLE = "simple"
    USER_SEGMENT = "user_segment"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class SimpleStrategy:
    """有効なら常に true を返す戦略。"""

    def to_dict(self) -> dict[str, Any]:
        return {"type": StrategyType.SIMPLE.value}


@dataclass(frozen=True)
class UserSegmentStrategy:
    """ユーザー ID の許可リスト／除外リストによる戦略。

    除外リストは許可リストより優先される。許可リストが空なら誰も通過しない。
    """

    included: frozenset[str] = frozenset()
    excluded: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "included", _to_user_set("included_users", self.included))
        object.__setattr__(self, "excluded", _to_user_set("excluded_users", self.excluded))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": StrategyType.USER_SEGMENT.value,
            "included_users": sorted(self.included),
            "excluded_users": sorted(self.excluded),
        }


@dataclass(frozen=True)
class PercentageStrategy:
    """ユーザー ID のハッシュバケットによる段階的ロールアウト戦略。"""

    percentage: float

    def __post_init__(self) -> None:
        value = self.percentage
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                f"percentage は数値である必要があります: {value!r}",
            )
        if math.isnan(value) or not 0 <= value <= 100:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                f"percentage は 0〜100 の範囲である必要があります: {value!r}",
            )
        object.__setattr__(self, "percentage", float(value))

    def to_dict(self) -> dict[str, Any]:
        return {"type": StrategyType.PERCENTAGE.value, "percentage": self.percentage}


EvaluationStrategy = SimpleStrategy | UserSegmentStrategy | PercentageStrategy


def _to_user_set(name: str, values: Any) -> frozenset[str]:
    if isinstance(values, (str, bytes)):
        raise FeatureFlagError(
            FeatureFlagErrorCodes.VALIDATION_ERROR,
            f"{name} は文字列のリストである必要があります",
        )
    try:
        users = frozenset(values)
    except TypeError as e:
        raise FeatureFlagError(
            FeatureFlagErrorCodes.VALIDATION_ERROR,
            f"{name} は文字列のリストである必要があります",
            cause=e,
        ) from e
    if not all(isinstance(u, str) for u in users):
        raise FeatureFlagError(
            FeatureFlagErrorCodes.VALIDATION_ERROR,
            f"{name} に文字列以外の要素が含まれています",
        )
    return users


def strategy_from_dict(data: Any) -> EvaluationStrategy:
    """タグ付き辞書から評価戦略を生成する。

    Raises:
        FeatureFlagError: type タグが欠落・未知の場合（INVALID_STRATEGY）、
            パラメータが不正な場合（VALIDATION_ERROR）
    """
    if not isinstance(data, dict):
        raise FeatureFlagError(
            FeatureFlagErrorCodes.INVALID_STRATEGY,
            "strategy はオブジェクトである必要があります",
        )
    tag = data.get("type")
    if tag is None:
        raise FeatureFlagError(
            FeatureFlagErrorCodes.INVALID_STRATEGY,
            "strategy に type がありません",
        )
    if tag == StrategyType.SIMPLE:
        return SimpleStrategy()
    if tag == StrategyType.USER_SEGMENT:
        included = data.get("included_users", [])
        excluded = data.get("excluded_users", [])
        if not isinstance(included, list) or not isinstance(excluded, list):
            raise FeatureFlagError(
                FeatureFlagErrorCodes.INVALID_STRATEGY,
                "included_users / excluded_users はリストである必要があります",
            )
        return UserSegmentStrategy(
            included=_to_user_set("included_users", included),
            excluded=_to_user_set("excluded_users", excluded),
        )
    if tag == StrategyType.PERCENTAGE:
        if "percentage" not in data:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.INVALID_STRATEGY,
                "percentage 戦略に percentage がありません",
            )
        return PercentageStrategy(percentage=data["percentage"])
    raise FeatureFlagError(
        FeatureFlagErrorCodes.INVALID_STRATEGY,
        f"未知の strategy type です: {tag!r}",
    )


@dataclass(frozen=True)
class FlagMetadata:
    """フラグのメタデータ。タイムスタンプは RFC3339 文字列。"""

    created_at: str = DEFAULT_TIMESTAMP
    updated_at: str = DEFAULT_TIMESTAMP
    created_by: str = DEFAULT_AUTHOR

    @classmethod
    def default(cls) -> FlagMetadata:
        """プレースホルダー値のメタデータを返す。"""
        return cls()

    @classmethod
    def now(cls, created_by: str = DEFAULT_AUTHOR, at: datetime | None = None) -> FlagMetadata:
        """作成・更新日時を現在時刻（または at）で埋めたメタデータを返す。"""
        stamp = format_timestamp(at or utc_now())
        return cls(created_at=stamp, updated_at=stamp, created_by=created_by)

    def touched(self, at: datetime) -> FlagMetadata:
        """updated_at だけを更新したコピーを返す。"""
        return replace(self, updated_at=format_timestamp(at))

    def to_dict(self) -> dict[str, str]:
        return {
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlagMetadata:
        data = dict(data)
        for name in ("created_at", "updated_at", "created_by"):
            value = data.get(name)
            # YAML はクォートなしの日時を datetime として読み込む
            if isinstance(value, datetime) and name != "created_by":
                data[name] = format_timestamp(value)
            elif value is not None and not isinstance(value, str):
                raise FeatureFlagError(
                    FeatureFlagErrorCodes.VALIDATION_ERROR,
                    f"metadata.{name} は文字列である必要があります",
                )
        return cls(
            created_at=data.get("created_at") or DEFAULT_TIMESTAMP,
            updated_at=data.get("updated_at") or DEFAULT_TIMESTAMP,
            created_by=data.get("created_by") or DEFAULT_AUTHOR,
        )


@dataclass(frozen=True)
class Flag:
    """フィーチャーフラグ。

    key は一意かつ作成後に変更しない。enabled が False の場合、戦略に関係なく無効。
    name が空の場合は key を名前として使う。
    """

    key: str
    enabled: bool = False
    name: str = ""
    description: str | None = None
    strategy: EvaluationStrategy = field(default_factory=SimpleStrategy)
    metadata: FlagMetadata = field(default_factory=FlagMetadata.default)

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key.strip():
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                "key は空にできません",
            )
        if not self.name:
            object.__setattr__(self, "name", self.key)

    @classmethod
    def with_strategy(cls, key: str, strategy: EvaluationStrategy, *, enabled: bool = True) -> Flag:
        """指定戦略の有効フラグを生成する。"""
        return cls(key=key, enabled=enabled, strategy=strategy)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "enabled": self.enabled,
            "name": self.name,
            "description": self.description,
            "strategy": self.strategy.to_dict(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Flag:
        """API レスポンス／設定ファイルの辞書から Flag を生成する。

        strategy が省略された場合は simple とみなす。
        """
        if not isinstance(data, dict) or "key" not in data:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                "フラグ定義に key がありません",
            )
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                f"enabled は真偽値である必要があります: {enabled!r}",
            )
        for name in ("name", "description"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise FeatureFlagError(
                    FeatureFlagErrorCodes.VALIDATION_ERROR,
                    f"{name} は文字列である必要があります",
                )
        raw_strategy = data.get("strategy")
        strategy = SimpleStrategy() if raw_strategy is None else strategy_from_dict(raw_strategy)
        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise FeatureFlagError(
                FeatureFlagErrorCodes.VALIDATION_ERROR,
                f"metadata はオブジェクトである必要があります: {metadata!r}",
            )
        return cls(
            key=data["key"],
            enabled=enabled,
            name=data.get("name") or "",
            description=data.get("description"),
            strategy=strategy,
            metadata=FlagMetadata.from_dict(metadata) if metadata else FlagMetadata.default(),
        )


@dataclass
class EvaluationContext:
    """フラグ評価コンテキスト。リクエストごとに生成し、永続化しない。"""

    user_id: str | None = None
    session_id: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> EvaluationContext:
        return cls()

    def with_user_id(self, user_id: str) -> EvaluationContext:
        return replace(self, user_id=user_id, attributes=dict(self.attributes))

    def with_session_id(self, session_id: str) -> EvaluationContext:
        return replace(self, session_id=session_id, attributes=dict(self.attributes))

    def with_attribute(self, name: str, value: str) -> EvaluationContext:
        return replace(self, attributes={**self.attributes, name: value})

    def with_attributes(self, attributes: dict[str, str]) -> EvaluationContext:
        return replace(self, attributes={**self.attributes, **attributes})


@dataclass
class EvaluationResult:
    """フラグ評価結果。"""

    key: str
    enabled: bool
    evaluated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "enabled": self.enabled, "evaluated_at": self.evaluated_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvaluationResult:
        return cls(
            key=data["key"],
            enabled=bool(data.get("enabled", False)),
            evaluated_at=data.get("evaluated_at", ""),
        )
