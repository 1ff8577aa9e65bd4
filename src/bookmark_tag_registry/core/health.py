"""タグ語彙の健全性メトリクスと、統合パス実行可否の判定（ヘルスゲート）.

前回のレジストリスナップショットと現在のタグコーパスを比較し、
成長率・新規タグ率・単発タグ率・エントロピーを計算する。

判定ルール（いずれかを満たせば実行）:
    - growth_rate >= 0.10
    - new_tag_ratio >= 0.15
    - single_use_ratio >= 0.30
    - entropy <= 3.0
前回スナップショットが無い初回実行は、メトリクスに関わらず常に実行する。
評価結果は実行/スキップに関わらず、判定を返す前に必ず履歴（tag-metrics.json）へ追記する。
"""

from __future__ import annotations

import json
import os
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

import polars as pl
from loguru import logger

from .exceptions import MetricsHistoryCorruptError
from .registry import TagRegistry


@dataclass(frozen=True)
class HealthThresholds:
    growth_rate: float = 0.10
    new_tag_ratio: float = 0.15
    single_use_ratio: float = 0.30
    entropy: float = 3.0


# MetricsSnapshot のフィールド名 → tag-metrics.json のキー名
_SNAPSHOT_KEYS = {
    "timestamp": "timestamp",
    "previous_unique_tag_count": "previousUniqueTagCount",
    "unique_tag_count": "uniqueTagCount",
    "total_tag_usage": "totalTagUsage",
    "new_tag_count": "newTagCount",
    "growth_rate": "growthRate",
    "new_tag_ratio": "newTagRatio",
    "single_use_ratio": "singleUseRatio",
    "entropy": "entropy",
}


@dataclass(frozen=True)
class MetricsSnapshot:
    """1回のゲート評価で計算したメトリクス（追記後は不変）."""

    timestamp: str
    previous_unique_tag_count: int
    unique_tag_count: int
    total_tag_usage: int
    new_tag_count: int
    growth_rate: float
    new_tag_ratio: float
    single_use_ratio: float
    entropy: float

    def to_dict(self) -> dict[str, object]:
        return {_SNAPSHOT_KEYS[name]: value for name, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> MetricsSnapshot:
        if not isinstance(data, dict):
            raise ValueError(f"metrics entry must be an object, got {type(data).__name__}")
        missing = [key for key in _SNAPSHOT_KEYS.values() if key not in data]
        if missing:
            raise ValueError(f"metrics entry is missing keys: {', '.join(missing)}")
        return cls(
            timestamp=str(data["timestamp"]),
            previous_unique_tag_count=int(data["previousUniqueTagCount"]),
            unique_tag_count=int(data["uniqueTagCount"]),
            total_tag_usage=int(data["totalTagUsage"]),
            new_tag_count=int(data["newTagCount"]),
            growth_rate=float(data["growthRate"]),
            new_tag_ratio=float(data["newTagRatio"]),
            single_use_ratio=float(data["singleUseRatio"]),
            entropy=float(data["entropy"]),
        )


class MetricsHistory:
    """tag-metrics.json（追記専用の MetricsSnapshot 配列）.

    既存エントリは書き換えない。壊れたファイルを空配列で上書きすると履歴が失われるため、
    読み込めない場合は MetricsHistoryCorruptError を送出する。
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read_entries(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            for entry in data:
                MetricsSnapshot.from_dict(entry)
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError, TypeError) as e:
            raise MetricsHistoryCorruptError(self.path, str(e)) from e
        return data

    def load(self) -> list[MetricsSnapshot]:
        return [MetricsSnapshot.from_dict(entry) for entry in self._read_entries()]

    def append(self, snapshot: MetricsSnapshot) -> int:
        """1件追記して、追記後の件数を返す（既存エントリはそのまま書き戻す）."""
        entries = self._read_entries()
        entries.append(snapshot.to_dict())

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.tmp-{os.getpid()}")
        tmp.write_text(json.dumps(entries, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)
        return len(entries)

    def to_frame(self) -> pl.DataFrame:
        """履歴を DataFrame（列名は JSON のキー名）として返す."""
        schema = {
            "timestamp": pl.String,
            "previousUniqueTagCount": pl.Int64,
            "uniqueTagCount": pl.Int64,
            "totalTagUsage": pl.Int64,
            "newTagCount": pl.Int64,
            "growthRate": pl.Float64,
            "newTagRatio": pl.Float64,
            "singleUseRatio": pl.Float64,
            "entropy": pl.Float64,
        }
        rows = [entry.to_dict() for entry in self.load()]
        return pl.DataFrame(rows, schema=schema)


def collect_tag_usage(tag_lists: Iterable[Sequence[str]]) -> tuple[list[str], dict[str, int]]:
    """アイテムのタグ一覧からユニークタグ（初出順）と利用回数を集計する.

    Args:
        tag_lists: アイテムごとのタグ列

    Returns:
        (unique_tags, usage)
    """
    all_tags = [tag for tags in tag_lists for tag in tags]
    df = pl.DataFrame({"tag": all_tags}, schema={"tag": pl.String})
    usage_df = df.group_by("tag", maintain_order=True).agg(pl.len().alias("count"))

    tags = usage_df["tag"].to_list()
    counts = usage_df["count"].to_list()
    return tags, dict(zip(tags, counts, strict=True))


def compute_metrics(
    current_unique_tags: Collection[str],
    current_usage: Mapping[str, int],
    previous_registry: TagRegistry | None,
) -> MetricsSnapshot:
    """現在のタグコーパスと前回レジストリからメトリクスを計算する.

    「新規タグ」は前回レジストリの正規タグにもエイリアスにも無いタグ。
    前回レジストリが無い場合は全タグが新規扱いになる。
    """
    unique_tags = set(current_unique_tags)
    unique_count = len(unique_tags)

    if previous_registry is None:
        previous_unique_count = 0
        known: set[str] = set()
    else:
        previous_unique_count = len(previous_registry)
        known = previous_registry.known_tags()

    new_tag_count = sum(1 for tag in unique_tags if tag not in known)

    if previous_unique_count > 0:
        growth_rate = (unique_count - previous_unique_count) / previous_unique_count
    else:
        growth_rate = 1.0 if unique_count > 0 else 0.0

    counts = pl.Series("count", list(current_usage.values()), dtype=pl.Int64)
    total_usage = int(counts.sum()) if len(counts) > 0 else 0
    single_use_count = int((counts == 1).sum()) if len(counts) > 0 else 0

    new_tag_ratio = new_tag_count / unique_count if unique_count > 0 else 0.0
    single_use_ratio = single_use_count / unique_count if unique_count > 0 else 0.0

    entropy = 0.0
    if total_usage > 0:
        p = counts.filter(counts > 0) / total_usage
        entropy = max(0.0, float(-(p * p.log(2)).sum()))

    return MetricsSnapshot(
        timestamp=datetime.now(timezone.utc).isoformat(),
        previous_unique_tag_count=previous_unique_count,
        unique_tag_count=unique_count,
        total_tag_usage=total_usage,
        new_tag_count=new_tag_count,
        growth_rate=growth_rate,
        new_tag_ratio=new_tag_ratio,
        single_use_ratio=single_use_ratio,
        entropy=entropy,
    )


def triggered_criteria(snapshot: MetricsSnapshot, thresholds: HealthThresholds) -> list[str]:
    """閾値を満たした判定基準の名前を返す（空なら統合不要）."""
    triggered: list[str] = []
    if snapshot.growth_rate >= thresholds.growth_rate:
        triggered.append("growth_rate")
    if snapshot.new_tag_ratio >= thresholds.new_tag_ratio:
        triggered.append("new_tag_ratio")
    if snapshot.single_use_ratio >= thresholds.single_use_ratio:
        triggered.append("single_use_ratio")
    if snapshot.entropy <= thresholds.entropy:
        triggered.append("entropy")
    return triggered


def _log_metrics(snapshot: MetricsSnapshot, thresholds: HealthThresholds) -> None:
    logger.info("Tag health metrics:")
    logger.info(f"   Previous unique tags: {snapshot.previous_unique_tag_count}")
    logger.info(f"   Current unique tags: {snapshot.unique_tag_count}")
    logger.info(f"   Total tag usage: {snapshot.total_tag_usage}")
    logger.info(
        f"   Growth rate: {snapshot.growth_rate:.2%} (threshold {thresholds.growth_rate:.0%})"
    )
    logger.info(
        f"   New-tag ratio: {snapshot.new_tag_ratio:.2%} (threshold {thresholds.new_tag_ratio:.0%})"
    )
    logger.info(
        f"   Single-use ratio: {snapshot.single_use_ratio:.2%} (threshold {thresholds.single_use_ratio:.0%})"
    )
    logger.info(f"   Entropy: {snapshot.entropy:.2f} (threshold {thresholds.entropy:.2f})")


def should_consolidate(
    current_unique_tags: Collection[str],
    current_usage: Mapping[str, int],
    previous_registry: TagRegistry | None,
    history: MetricsHistory | None = None,
    thresholds: HealthThresholds | None = None,
) -> bool:
    """統合パスを実行すべきか判定する.

    Args:
        current_unique_tags: 現在のユニークタグ
        current_usage: タグ → 利用回数
        previous_registry: 前回のレジストリスナップショット（初回実行なら None）
        history: メトリクス履歴（判定前に必ず1件追記される）
        thresholds: 判定閾値（省略時は既定値）

    Returns:
        実行すべきなら True
    """
    thresholds = thresholds or HealthThresholds()
    snapshot = compute_metrics(current_unique_tags, current_usage, previous_registry)
    _log_metrics(snapshot, thresholds)

    if history is not None:
        count = history.append(snapshot)
        logger.debug(f"Metrics history now has {count} entries ({history.path})")

    if previous_registry is None:
        logger.info("No existing tag registry found. Defaulting to consolidation.")
        return True

    triggered = triggered_criteria(snapshot, thresholds)
    if triggered:
        logger.info(f"Consolidation criteria met ({', '.join(triggered)}), proceeding.")
        return True

    logger.info("Consolidation thresholds not met, skipping.")
    return False
