"""FeatureFlagClient プロトコル"""

from __future__ import annotations

from typing import Protocol

from .models import EvaluationContext, EvaluationResult, Flag


class FeatureFlagClientProtocol(Protocol):
    """フィーチャーフラグクライアントプロトコル。

    FlagService（プロセス内評価）と HttpFeatureFlagClient（リモート評価）が満たす。
    """

    async def evaluate(
        self, flag_key: str, context: EvaluationContext
    ) -> EvaluationResult: ...

    async def get_flag(self, flag_key: str) -> Flag: ...

    async def is_enabled(self, flag_key: str, context: EvaluationContext) -> bool: ...
