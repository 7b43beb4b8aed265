"""スティッキーバケッティング用ハッシュ関数

乗数 31・法 2^32・UTF-8 バイト順は全実装で共通。変更するとバケット割り当てが変わる。
暗号学的ハッシュではない。
"""

from __future__ import annotations

_MULTIPLIER = 31
_MASK = 0xFFFFFFFF
BUCKET_COUNT = 100


def hash_string(value: str) -> int:
    """文字列を符号なし 32 ビット整数にハッシュする。

    Args:
        value: ハッシュ対象の文字列

    Returns:
        0 以上 2^32 未満の整数
    """
    acc = 0
    for byte in value.encode("utf-8"):
        acc = (acc * _MULTIPLIER + byte) & _MASK
    return acc


def bucket(value: str) -> int:
    """文字列を 0〜99 のバケットに割り当てる。

    2^32 は 100 で割り切れないため下位バケットがわずかに多い（既知の偏り）。
    """
    return hash_string(value) % BUCKET_COUNT
