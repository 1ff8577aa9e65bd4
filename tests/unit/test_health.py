"""Unit tests for the tag health gate."""

import json
import math
from pathlib import Path

import pytest

from bookmark_tag_registry.core.exceptions import MetricsHistoryCorruptError
from bookmark_tag_registry.core.health import (
    HealthThresholds,
    MetricsHistory,
    collect_tag_usage,
    compute_metrics,
    should_consolidate,
    triggered_criteria,
)
from bookmark_tag_registry.core.registry import TagRecord, TagRegistry


def _registry_with(tags: list[str]) -> TagRegistry:
    return TagRegistry(tags={tag: TagRecord("Others", 2) for tag in tags})


class TestCollectTagUsage:
    """collect_tag_usage関数のテスト."""

    def test_first_occurrence_order_and_counts(self) -> None:
        unique, usage = collect_tag_usage([["react", "js"], ["js"], [], ["python", "react", "js"]])
        assert unique == ["react", "js", "python"]
        assert usage == {"react": 2, "js": 3, "python": 1}

    def test_empty_corpus(self) -> None:
        assert collect_tag_usage([]) == ([], {})


class TestComputeMetrics:
    """compute_metrics関数のテスト."""

    def test_first_run(self) -> None:
        """前回スナップショットなし: 全タグが新規."""
        snapshot = compute_metrics(["a", "b"], {"a": 1, "b": 3}, None)
        assert snapshot.previous_unique_tag_count == 0
        assert snapshot.unique_tag_count == 2
        assert snapshot.total_tag_usage == 4
        assert snapshot.new_tag_count == 2
        assert snapshot.growth_rate == 1.0
        assert snapshot.new_tag_ratio == 1.0
        assert snapshot.single_use_ratio == 0.5

    def test_growth_and_novelty(self) -> None:
        """100タグ → 115タグ（うち20が新規）."""
        previous = _registry_with([f"t{i}" for i in range(100)])
        current = [f"t{i}" for i in range(95)] + [f"n{i}" for i in range(20)]
        usage = {tag: 2 for tag in current}

        snapshot = compute_metrics(current, usage, previous)

        assert snapshot.previous_unique_tag_count == 100
        assert snapshot.unique_tag_count == 115
        assert snapshot.new_tag_count == 20
        assert snapshot.growth_rate == pytest.approx(0.15)
        assert snapshot.new_tag_ratio == pytest.approx(20 / 115)
        assert snapshot.single_use_ratio == 0.0
        assert triggered_criteria(snapshot, HealthThresholds()) == ["growth_rate", "new_tag_ratio"]

    def test_growth_and_novelty_opens_gate(self, tmp_path: Path) -> None:
        """100タグ → 115タグ（うち20が新規）ならゲートを通過し、履歴に記録される."""
        previous = _registry_with([f"t{i}" for i in range(100)])
        current = [f"t{i}" for i in range(95)] + [f"n{i}" for i in range(20)]
        usage = {tag: 2 for tag in current}
        history = MetricsHistory(tmp_path / "tag-metrics.json")

        assert should_consolidate(current, usage, previous, history=history) is True

        entries = history.load()
        assert len(entries) == 1
        assert entries[0].unique_tag_count == 115
        assert entries[0].new_tag_count == 20

    def test_aliases_are_not_new(self) -> None:
        """前回レジストリのエイリアスも既知の語彙として扱う."""
        previous = TagRegistry(tags={"javascript": TagRecord("Others", 3)}, aliases={"js": "javascript"})
        snapshot = compute_metrics(["js", "javascript"], {"js": 1, "javascript": 1}, previous)
        assert snapshot.new_tag_count == 0

    def test_entropy(self) -> None:
        """均等な2タグで1ビット、1タグのみで0."""
        assert compute_metrics(["a", "b"], {"a": 1, "b": 1}, None).entropy == pytest.approx(1.0)
        assert compute_metrics(["a"], {"a": 4}, None).entropy == 0.0

        usage = {f"t{i}": 2 for i in range(10)}
        assert compute_metrics(list(usage), usage, None).entropy == pytest.approx(math.log2(10))

    def test_empty_corpus(self) -> None:
        snapshot = compute_metrics([], {}, _registry_with(["a"]))
        assert snapshot.unique_tag_count == 0
        assert snapshot.new_tag_ratio == 0.0
        assert snapshot.single_use_ratio == 0.0
        assert snapshot.entropy == 0.0


class TestShouldConsolidate:
    """should_consolidate関数のテスト."""

    def test_first_run_always_consolidates(self, tmp_path: Path) -> None:
        """初回実行は常に統合し、履歴にも追記する."""
        history = MetricsHistory(tmp_path / "tag-metrics.json")
        assert should_consolidate(["a"], {"a": 1}, None, history=history) is True
        assert len(history.load()) == 1

    def test_stable_vocabulary_skips(self, tmp_path: Path) -> None:
        """語彙が安定していればスキップ（履歴には追記される）."""
        tags = [f"t{i}" for i in range(10)]
        usage = {tag: 2 for tag in tags}
        history = MetricsHistory(tmp_path / "tag-metrics.json")

        assert should_consolidate(tags, usage, _registry_with(tags), history=history) is False

        entries = json.loads((tmp_path / "tag-metrics.json").read_text(encoding="utf-8"))
        assert len(entries) == 1
        assert entries[0]["growthRate"] == 0.0
        assert entries[0]["uniqueTagCount"] == 10

    def test_low_entropy_triggers(self) -> None:
        """エントロピーが閾値以下なら統合する."""
        tags = ["a", "b"]
        assert should_consolidate(tags, {"a": 5, "b": 5}, _registry_with(tags)) is True

    def test_custom_thresholds(self) -> None:
        tags = [f"t{i}" for i in range(10)]
        usage = {tag: 2 for tag in tags}
        thresholds = HealthThresholds(entropy=4.0)
        assert should_consolidate(tags, usage, _registry_with(tags), thresholds=thresholds) is True


class TestMetricsHistory:
    """MetricsHistory のテスト."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        history = MetricsHistory(tmp_path / "tag-metrics.json")
        assert history.load() == []
        assert len(history.to_frame()) == 0

    def test_append_preserves_existing_entries(self, tmp_path: Path) -> None:
        """既存エントリは書き換えずに追記する."""
        path = tmp_path / "tag-metrics.json"
        legacy = {
            "timestamp": "2025-01-01T00:00:00.000Z",
            "previousUniqueTagCount": 0,
            "uniqueTagCount": 3,
            "totalTagUsage": 5,
            "newTagCount": 3,
            "growthRate": 1,
            "newTagRatio": 1,
            "singleUseRatio": 0.6666666666666666,
            "entropy": 1.5,
        }
        path.write_text(json.dumps([legacy]), encoding="utf-8")
        history = MetricsHistory(path)

        assert history.append(compute_metrics(["a"], {"a": 1}, None)) == 2

        entries = json.loads(path.read_text(encoding="utf-8"))
        assert entries[0] == legacy
        df = history.to_frame()
        assert df["uniqueTagCount"].to_list() == [3, 1]
        assert df["growthRate"].to_list() == [1.0, 1.0]

    @pytest.mark.parametrize("content", ["{not json", '{"entries": []}', '[{"timestamp": "x"}]'])
    def test_corrupt_history_is_fatal(self, tmp_path: Path, content: str) -> None:
        """壊れた履歴は例外にし、上書きしない."""
        path = tmp_path / "tag-metrics.json"
        path.write_text(content, encoding="utf-8")
        history = MetricsHistory(path)

        with pytest.raises(MetricsHistoryCorruptError):
            should_consolidate(["a"], {"a": 1}, None, history=history)

        assert path.read_text(encoding="utf-8") == content
