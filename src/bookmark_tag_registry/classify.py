"""未整理ブックマークの分類（カテゴリ判定 + タグ付け）.

処理の流れ（アイテムごと）:
    1. コンテンツ種別を推定（detect_content_type）
    2. サジェスターでカテゴリを判定
    3. レジストリの人気タグからコンテキストを作り、サジェスターでタグを提案
    4. TagRegistry.process_suggested_tags で既存語彙へ寄せて記録
    5. レジストリを永続化（チェックポイント）
    6. カテゴリに対応するコレクションへ移動し、正規タグを設定

カテゴリに対応するコレクションが無い場合はエラーログを出してスキップします。
外部コラボレータの失敗はアイテム単位で記録し、残りのアイテムの処理を続けます。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .adapters.base_adapter import UNSORTED_COLLECTION_ID, BaseItemStore, BaseTagSuggester, Item
from .adapters.json_adapter import JSONItemStore
from .adapters.openai_adapter import OpenAITagSuggester
from .adapters.raindrop_adapter import RaindropItemStore
from .config import Settings, configure_logging, load_settings
from .core.content_type import detect_content_type
from .core.exceptions import CollaboratorError
from .core.registry import TagRegistry


@dataclass
class ClassificationSummary:
    """分類実行の結果."""

    fetched: int = 0
    moved: int = 0
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    tags_before: int = 0
    tags_after: int = 0


def fetch_unsorted_items(store: BaseItemStore) -> list[Item]:
    """未整理コレクションのアイテムを取得する.

    API が他コレクションのアイテムを返すことがあるため、collection_id で絞り込む。
    """
    items = store.fetch_items(UNSORTED_COLLECTION_ID)
    unsorted = [item for item in items if item.collection_id == UNSORTED_COLLECTION_ID]
    if len(unsorted) != len(items):
        logger.debug(f"Ignored {len(items) - len(unsorted)} items outside the unsorted collection")
    return unsorted


def classify_item(
    item: Item,
    store: BaseItemStore,
    suggester: BaseTagSuggester,
    registry: TagRegistry,
    settings: Settings,
) -> str | None:
    """1アイテムを分類して移動する.

    Returns:
        移動先のカテゴリ（コレクション未定義でスキップした場合は None）

    Raises:
        CollaboratorError: ストア / サジェスターの呼び出しに失敗した場合
    """
    content_type = detect_content_type(item.title, item.link, item.excerpt)
    category = suggester.classify(item, list(settings.collections), content_type)

    context = registry.combined_tag_context(category)
    raw_tags = suggester.suggest_tags(item, category, content_type, context)
    tags = registry.process_suggested_tags(raw_tags, category)
    registry.persist()

    collection_id = settings.collections.get(category)
    if collection_id is None:
        logger.error(f'No collection mapped for category "{category}", skipping "{item.title}"')
        return None

    # 同じタグが複数回記録されることはあるが、アイテムに付けるのは1回だけ
    item_tags = list(dict.fromkeys(tags))
    store.move_item(item.id, collection_id, item_tags)
    logger.info(f'Updated "{item.title}" -> {category} [{", ".join(item_tags)}] ({content_type.value})')
    return category


def run_classification(
    store: BaseItemStore,
    suggester: BaseTagSuggester,
    registry: TagRegistry,
    settings: Settings,
) -> ClassificationSummary:
    """未整理アイテムをすべて分類する.

    Args:
        store: アイテムストア
        suggester: タグサジェスター
        registry: タグレジストリ（アイテムごとに persist される）
        settings: 実行設定

    Returns:
        ClassificationSummary
    """
    summary = ClassificationSummary(tags_before=len(registry))

    logger.info("Fetching unsorted bookmarks...")
    items = fetch_unsorted_items(store)
    summary.fetched = len(items)

    if not items:
        logger.info("No unsorted bookmarks left")
        summary.tags_after = len(registry)
        return summary

    logger.info(f"Classifying {len(items)} bookmarks (registry has {len(registry)} tags)")
    for item in items:
        try:
            category = classify_item(item, store, suggester, registry, settings)
        except CollaboratorError as e:
            logger.error(f'Failed to classify "{item.title}" ({item.id}): {e}')
            summary.failed.append(item.id)
            continue

        if category is None:
            summary.skipped.append(item.id)
        else:
            summary.moved += 1

    summary.tags_after = len(registry)
    logger.info(
        f"Classification complete: {summary.moved} moved, {len(summary.skipped)} skipped, "
        f"{len(summary.failed)} failed; registry {summary.tags_before} -> {summary.tags_after} tags"
    )
    return summary


def main() -> None:
    """CLI エントリポイント."""
    parser = argparse.ArgumentParser(description="Classify and tag unsorted bookmarks")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML settings file (environment variables override it)",
    )
    parser.add_argument(
        "--items-json",
        type=Path,
        default=None,
        help="Use a local JSON export instead of the Raindrop API",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    configure_logging(verbose=args.verbose, log_file=args.log_file)

    settings = load_settings(args.config)
    registry = TagRegistry.load(settings.registry_path, similarity_threshold=settings.similarity_threshold)
    suggester = OpenAITagSuggester(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.request_timeout,
    )

    if args.items_json is not None:
        summary = run_classification(JSONItemStore(args.items_json), suggester, registry, settings)
    else:
        with RaindropItemStore(settings.raindrop_token or "", timeout=settings.request_timeout) as store:
            summary = run_classification(store, suggester, registry, settings)

    if summary.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
