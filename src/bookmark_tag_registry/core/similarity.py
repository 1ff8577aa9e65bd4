"""正規化済みタグ同士の類似度（編集距離ベース）."""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_SIMILARITY_THRESHOLD = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    """挿入・削除・置換を各コスト1とする編集距離.

    DP表を1行ずつ持つため、メモリは O(min(len(a), len(b)))。
    """
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,  # 削除
                    current[j - 1] + 1,  # 挿入
                    previous[j - 1] + (ca != cb),  # 置換
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - 編集距離 / 長い方の長さ.

    Raises:
        ValueError: 両方が空文字列の場合（類似度が定義できない）
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        raise ValueError("similarity() is undefined for two empty tags")
    return 1 - levenshtein_distance(a, b) / max_len


def find_similar_tags(
    candidate: str,
    registry_keys: Iterable[str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[tuple[str, float]]:
    """candidate に近い既存タグを類似度の降順で返す.

    全キーの線形走査。candidate 自身は除外する。同じ類似度の場合は
    registry_keys の並び（＝レジストリへの登録順）を保つ（安定ソート）。

    Args:
        candidate: 正規化済みの候補タグ（空でないこと）
        registry_keys: 既存の正規タグ（登録順）
        threshold: この値以上の類似度を一致とみなす

    Returns:
        (tag, similarity) のリスト。先頭がベストマッチ。

    Examples:
        >>> find_similar_tags("javascrip", ["python", "javascript"])
        [('javascript', 0.9)]
    """
    matches: list[tuple[str, float]] = []
    for key in registry_keys:
        if key == candidate:
            continue
        score = similarity(candidate, key)
        if score >= threshold:
            matches.append((key, score))

    matches.sort(key=lambda m: m[1], reverse=True)
    return matches
