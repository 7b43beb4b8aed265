"""フラグ評価ロジック"""

from __future__ import annotations

from .hashing import bucket
from .models import (
    EvaluationContext,
    Flag,
    PercentageStrategy,
    SimpleStrategy,
    UserSegmentStrategy,
)


def decide(flag: Flag, context: EvaluationContext) -> bool:
    """フラグとコンテキストから有効・無効を判定する。

    例外は送出しない。user_id を必要とする戦略で user_id がなければ False。
    I/O・時刻参照・乱数を使わないため、同じ入力には常に同じ結果を返す。

    Args:
        flag: 評価対象フラグ
        context: 評価コンテキスト

    Returns:
        フィーチャーが有効なら True
    """
    if not flag.enabled:
        return False

    strategy = flag.strategy
    if isinstance(strategy, SimpleStrategy):
        return True

    if isinstance(strategy, UserSegmentStrategy):
        user_id = context.user_id
        if user_id is None:
            return False
        # 除外が優先
        if user_id in strategy.excluded:
            return False
        return user_id in strategy.included

    if isinstance(strategy, PercentageStrategy):
        user_id = context.user_id
        if user_id is None:
            return False
        return bucket(user_id) < strategy.percentage

    return False
