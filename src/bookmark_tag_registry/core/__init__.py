"""タグレジストリ/統合エンジンのコア処理群.

- 正規化（生タグ → NormalizedTag）
- 類似度（編集距離）による取り込み時の統合
- レジストリ（正規タグ・エイリアス・利用統計）
- ヘルスゲート（統合パスを実行するかの判定）
- バッチ統合（グルーピング提案 → マッピング）
"""

from .consolidation import (
    ConsolidationGroup,
    GroupingResult,
    ItemUpdate,
    apply_groups_to_registry,
    apply_mapping,
    build_mapping,
    find_mapping_collisions,
)
from .health import HealthThresholds, MetricsHistory, MetricsSnapshot, collect_tag_usage, should_consolidate
from .normalize import normalize_tag
from .registry import TagRecord, TagRegistry
from .similarity import find_similar_tags, similarity

__all__ = [
    "normalize_tag",
    "similarity",
    "find_similar_tags",
    "TagRecord",
    "TagRegistry",
    "HealthThresholds",
    "MetricsHistory",
    "MetricsSnapshot",
    "collect_tag_usage",
    "should_consolidate",
    "ConsolidationGroup",
    "GroupingResult",
    "ItemUpdate",
    "build_mapping",
    "find_mapping_collisions",
    "apply_mapping",
    "apply_groups_to_registry",
]
