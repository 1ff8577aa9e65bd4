"""タグ正規化（生タグ → NormalizedTag）.

提案されたタグやブックマーク上のタグを、レジストリで比較可能なキーに変換します。

設計方針:
    - 正規化は純粋関数で、どんな文字列でも失敗しない（全域関数）
    - 正規化は冪等: normalize_tag(normalize_tag(x)) == normalize_tag(x)
    - 空文字列の結果は「使えないタグ」を意味する。除外は呼び出し側の責務
"""

from __future__ import annotations

import re

MAX_TAG_LENGTH = 50

_DISALLOWED = re.compile(r"[^a-z0-9\s&-]")
_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_tag(raw_tag: str) -> str:
    """生タグをレジストリのキーに変換する.

    Args:
        raw_tag: 外部から来たタグ文字列（例: "Machine Learning", "JavaScript!!"）

    Returns:
        正規化済みタグ（例: "machine-learning", "javascript"）。使えない入力は ""。

    Examples:
        >>> normalize_tag("Machine Learning")
        'machine-learning'
        >>> normalize_tag("  R&D  ")
        'r&d'
        >>> normalize_tag("!!!")
        ''
    """
    s = raw_tag.lower()
    s = _DISALLOWED.sub("", s)
    s = _WHITESPACE_RUN.sub("-", s)
    s = s.strip("-")
    # 切り詰めで末尾に "-" が露出する場合があるので、冪等性のため再度 strip する
    return s[:MAX_TAG_LENGTH].rstrip("-")


def normalize_tags(raw_tags: list[str]) -> list[str]:
    """複数タグを正規化し、空になったものを除外する（順序は維持、重複は除去しない）."""
    normalized = (normalize_tag(tag) for tag in raw_tags)
    return [tag for tag in normalized if tag]
