"""Integration tests for the batch consolidation (cleanup) workflow.

JSONItemStore とスタブのサジェスターで、以下を通しで確認する:
- ヘルスゲート（初回は必ず実行 / 語彙が安定していればスキップ）
- グルーピング提案 → マッピング → アイテムの書き戻し
- レジストリへのエイリアス登録と、その後の分類での利用
- dry-run とレポート出力、バッチ単位・アイテム単位の失敗
"""

import json
from collections.abc import Sequence
from pathlib import Path

import polars as pl
import pytest

from bookmark_tag_registry.adapters.base_adapter import BaseTagSuggester, Item
from bookmark_tag_registry.adapters.json_adapter import JSONItemStore
from bookmark_tag_registry.cleanup import run_cleanup
from bookmark_tag_registry.config import Settings
from bookmark_tag_registry.core.consolidation import ConsolidationGroup, GroupingResult
from bookmark_tag_registry.core.content_type import ContentType
from bookmark_tag_registry.core.exceptions import CollaboratorError
from bookmark_tag_registry.core.registry import TagContext, TagRecord, TagRegistry

GROUPS = [
    ConsolidationGroup("javascript", ("js", "javascript"), "JavaScript language"),
    ConsolidationGroup("react", ("react", "reactjs"), "React library"),
    ConsolidationGroup("machine-learning", ("ml", "machine-learning"), "Machine learning"),
]


class StubGroupingSuggester(BaseTagSuggester):
    """バッチに含まれるタグを持つグループだけを返すサジェスター."""

    def __init__(self, groups: Sequence[ConsolidationGroup], failing_tag: str | None = None) -> None:
        self.groups = list(groups)
        self.failing_tag = failing_tag
        self.batches: list[list[str]] = []

    def classify(self, item: Item, categories: Sequence[str], content_type: ContentType) -> str:
        return "AI & Technology"

    def suggest_tags(self, item: Item, category: str, content_type: ContentType, context: TagContext) -> list[str]:
        return ["js"]

    def group_tags(self, tags: Sequence[str]) -> GroupingResult:
        self.batches.append(list(tags))
        if self.failing_tag in tags:
            raise CollaboratorError("stub", "group_tags", "simulated outage")
        groups = [g for g in self.groups if set(g.variants) & set(tags)]
        return GroupingResult(groups=groups, standalone=[])


class FlakyStore(JSONItemStore):
    def __init__(self, file_path: Path, failing_id: str) -> None:
        super().__init__(file_path)
        self.failing_id = failing_id

    def set_tags(self, item_id: str, tags: Sequence[str]) -> None:
        if item_id == self.failing_id:
            raise CollaboratorError("stub", "set_tags", "simulated outage")
        super().set_tags(item_id, tags)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        registry_path=tmp_path / "tag-registry.json",
        metrics_path=tmp_path / "tag-metrics.json",
        collections={"AI & Technology": 100, "Others": 200},
    )


@pytest.fixture
def items_path(tmp_path: Path) -> Path:
    path = tmp_path / "bookmarks.json"
    records = [
        {"_id": 1, "title": "A", "tags": ["js", "react"], "collection": {"$id": 100}},
        {"_id": 2, "title": "B", "tags": ["javascript", "reactjs"], "collection": {"$id": 100}},
        {"_id": 3, "title": "C", "tags": ["ml", "machine-learning"], "collection": {"$id": 200}},
        {"_id": 4, "title": "D", "tags": ["cooking"], "collection": {"$id": 200}},
        {"_id": 5, "title": "Unsorted", "tags": ["js"], "collection": {"$id": -1}},
    ]
    path.write_text(json.dumps(records), encoding="utf-8")
    return path


def _tags_by_id(path: Path) -> dict[str, list[str]]:
    return {str(r["_id"]): r["tags"] for r in json.loads(path.read_text(encoding="utf-8"))}


@pytest.mark.integration
class TestCleanupWorkflow:
    """バッチ統合ワークフロー統合テスト."""

    def test_first_run_consolidates(self, items_path: Path, settings: Settings) -> None:
        """初回実行: ゲートを通過し、アイテムとレジストリを更新する."""
        suggester = StubGroupingSuggester(GROUPS)

        summary = run_cleanup(JSONItemStore(items_path), suggester, settings)

        # 1. ゲートとグルーピング
        assert summary.consolidated is True
        assert summary.fetched == 4
        assert summary.unique_tags == 7
        assert summary.groups == 3
        assert suggester.batches == [["js", "react", "javascript", "reactjs", "ml", "machine-learning", "cooking"]]

        # 2. アイテムの書き戻し（設定されたコレクションのみが対象）
        assert summary.mapping_size == 3
        assert summary.updated == 3
        assert _tags_by_id(items_path) == {
            "1": ["javascript", "react"],
            "2": ["javascript", "react"],
            "3": ["machine-learning"],
            "4": ["cooking"],
            "5": ["js"],
        }

        # 3. レジストリ
        registry = TagRegistry.load(settings.registry_path)
        assert summary.aliases_added == 3
        assert registry.aliases == {"js": "javascript", "reactjs": "react", "ml": "machine-learning"}
        assert registry.lookup("javascript").usage_count == 2
        assert registry.lookup("react").usage_count == 2
        assert registry.lookup("machine-learning").usage_count == 2

        # 4. メトリクス履歴
        history = json.loads(settings.metrics_path.read_text(encoding="utf-8"))
        assert len(history) == 1
        assert history[0]["previousUniqueTagCount"] == 0
        assert history[0]["uniqueTagCount"] == 7

    def test_aliases_apply_to_later_classification(self, items_path: Path, settings: Settings) -> None:
        """統合後は、提案された旧表記が正規タグとして記録される."""
        run_cleanup(JSONItemStore(items_path), StubGroupingSuggester(GROUPS), settings)

        registry = TagRegistry.load(settings.registry_path)
        assert registry.process_suggested_tags(["JS", "ReactJS"], "AI & Technology") == ["javascript", "react"]
        assert registry.lookup("javascript").usage_count == 3

    def test_stable_vocabulary_skips(self, tmp_path: Path, settings: Settings) -> None:
        """語彙が安定していればグルーピングを呼ばずに終了する（履歴は追記）."""
        tags = [f"topic-{i}" for i in range(10)]
        records = [
            {"_id": i, "tags": [tags[i], tags[(i + 1) % 10]], "collection": {"$id": 100}} for i in range(10)
        ]
        items_path = tmp_path / "stable.json"
        items_path.write_text(json.dumps(records), encoding="utf-8")

        TagRegistry(tags={tag: TagRecord("AI & Technology", 2) for tag in tags}, path=settings.registry_path).persist()
        registry_before = settings.registry_path.read_bytes()
        items_before = items_path.read_bytes()

        suggester = StubGroupingSuggester(GROUPS)
        summary = run_cleanup(JSONItemStore(items_path), suggester, settings)

        assert summary.consolidated is False
        assert suggester.batches == []
        assert settings.registry_path.read_bytes() == registry_before
        assert items_path.read_bytes() == items_before
        assert len(json.loads(settings.metrics_path.read_text(encoding="utf-8"))) == 1

    def test_dry_run_writes_reports_only(self, tmp_path: Path, items_path: Path, settings: Settings) -> None:
        """dry-run: アイテムとレジストリは変更せず、レポートだけ出力する."""
        items_before = items_path.read_bytes()
        report_dir = tmp_path / "reports"

        summary = run_cleanup(
            JSONItemStore(items_path), StubGroupingSuggester(GROUPS), settings, dry_run=True, report_dir=report_dir
        )

        assert summary.updated == 0
        assert items_path.read_bytes() == items_before
        assert not settings.registry_path.exists()

        mapping_df = pl.read_csv(summary.reports["tag_mapping"])
        assert dict(zip(mapping_df["variant"], mapping_df["canonical"])) == {
            "js": "javascript",
            "reactjs": "react",
            "ml": "machine-learning",
        }
        assert len(pl.read_csv(summary.reports["item_updates"])) == 3
        assert summary.reports["mapping_collisions"] is None

    def test_failed_batch_is_skipped(self, items_path: Path, settings: Settings) -> None:
        """失敗したバッチはスキップし、他のバッチは処理する."""
        settings = Settings(
            registry_path=settings.registry_path,
            metrics_path=settings.metrics_path,
            collections=settings.collections,
            batch_size=2,
        )
        suggester = StubGroupingSuggester(GROUPS, failing_tag="ml")

        summary = run_cleanup(JSONItemStore(items_path), suggester, settings)

        assert len(suggester.batches) == 4
        assert summary.failed_batches == 1
        assert summary.groups == 4
        tags = _tags_by_id(items_path)
        assert tags["1"] == ["javascript", "react"]
        assert tags["3"] == ["ml", "machine-learning"]

    def test_failed_item_update_is_isolated(self, items_path: Path, settings: Settings) -> None:
        """1アイテムの書き戻し失敗で残りを止めない."""
        summary = run_cleanup(FlakyStore(items_path, failing_id="2"), StubGroupingSuggester(GROUPS), settings)

        assert summary.failed == ["2"]
        assert summary.updated == 2
        tags = _tags_by_id(items_path)
        assert tags["2"] == ["javascript", "reactjs"]
        assert tags["3"] == ["machine-learning"]
