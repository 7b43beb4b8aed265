"""フラグレジストリ（key → Flag のストレージ）"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Flag


class FlagRegistry(ABC):
    """フラグレジストリ抽象基底クラス。

    バージョン管理や楽観的排他制御は行わない。同一 key への並行更新は後勝ち。
    """

    @abstractmethod
    async def get(self, key: str) -> Flag | None:
        """key に対応するフラグを返す。存在しなければ None。"""
        ...

    @abstractmethod
    async def list(self) -> list[Flag]:
        """全フラグを返す。"""
        ...

    @abstractmethod
    async def put(self, flag: Flag) -> None:
        """フラグを保存する（同一 key は丸ごと置き換え）。"""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """フラグを削除する。削除した場合 True。"""
        ...


class InMemoryFlagRegistry(FlagRegistry):
    """インメモリフラグレジストリ。"""

    def __init__(self, flags: list[Flag] | None = None) -> None:
        self._flags: dict[str, Flag] = {}
        for flag in flags or []:
            self._flags[flag.key] = flag

    async def get(self, key: str) -> Flag | None:
        return self._flags.get(key)

    async def list(self) -> list[Flag]:
        return list(self._flags.values())

    async def put(self, flag: Flag) -> None:
        self._flags[flag.key] = flag

    async def delete(self, key: str) -> bool:
        return self._flags.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._flags)
