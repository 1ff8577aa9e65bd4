"""既存タグの一括統合（バッチ統合パス）.

処理の流れ:
    1. 全コレクションのアイテムを取得し、タグの利用状況を集計
    2. 前回のレジストリスナップショットと比較してヘルスゲートを評価（履歴へ追記）
    3. ゲートが「スキップ」ならここで終了
    4. ユニークタグをバッチに分けてサジェスターにグルーピングを依頼
    5. 統合計画をログに出し、確認待ち（--confirm-delay 秒。Ctrl+C で中断）
    6. 旧タグ → 正規タグのマッピングをアイテムへ適用し、変化したものだけ書き戻す
    7. グループをレジストリへエイリアスとして畳み込み、永続化
    8. 統合レポート（CSV）を出力

--dry-run の場合、アイテムとレジストリへの書き込みは行わず、計画とレポートだけを作ります。
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .adapters.base_adapter import BaseItemStore, BaseTagSuggester, Item
from .adapters.json_adapter import JSONItemStore
from .adapters.openai_adapter import OpenAITagSuggester
from .adapters.raindrop_adapter import RaindropItemStore
from .config import Settings, configure_logging, load_settings
from .core.consolidation import (
    ConsolidationGroup,
    apply_groups_to_registry,
    apply_mapping,
    build_mapping,
    find_mapping_collisions,
)
from .core.exceptions import CollaboratorError
from .core.health import MetricsHistory, collect_tag_usage, should_consolidate
from .core.registry import TagRegistry
from .core.reports import export_consolidation_reports


@dataclass
class CleanupSummary:
    """統合実行の結果."""

    fetched: int = 0
    unique_tags: int = 0
    consolidated: bool = False
    groups: int = 0
    failed_batches: int = 0
    mapping_size: int = 0
    updated: int = 0
    failed: list[str] = field(default_factory=list)
    aliases_added: int = 0
    reports: dict[str, Path | None] = field(default_factory=dict)


def fetch_all_items(store: BaseItemStore, collections: dict[str, int]) -> list[Item]:
    items: list[Item] = []
    for category, collection_id in collections.items():
        logger.info(f"Fetching bookmarks from {category}...")
        items.extend(store.fetch_items(collection_id))
    return items


def request_groupings(
    suggester: BaseTagSuggester,
    tags: list[str],
    batch_size: int,
) -> tuple[list[ConsolidationGroup], int]:
    """タグをバッチに分けてグルーピングを依頼する.

    失敗したバッチはエラーログを出してスキップする（そのバッチのタグは統合されない）。

    Returns:
        (全バッチのグループ, 失敗したバッチ数)
    """
    groups: list[ConsolidationGroup] = []
    failed_batches = 0
    total_batches = (len(tags) + batch_size - 1) // batch_size

    logger.info(f"Analyzing {len(tags)} tags for consolidation ({total_batches} batches)...")
    for batch_no, start in enumerate(range(0, len(tags), batch_size), start=1):
        batch = tags[start : start + batch_size]
        try:
            result = suggester.group_tags(batch)
        except CollaboratorError as e:
            logger.error(f"Grouping batch {batch_no}/{total_batches} failed, skipping: {e}")
            failed_batches += 1
            continue
        groups.extend(result.groups)
        logger.info(f"Processed batch {batch_no}/{total_batches} ({len(result.groups)} groups)")
    return groups, failed_batches


def _log_plan(groups: list[ConsolidationGroup]) -> None:
    logger.info("Consolidation plan:")
    for group in groups:
        others = [v for v in group.variants if v != group.canonical]
        if others:
            logger.info(f'   "{group.canonical}" <- [{", ".join(others)}]')
            if group.reason:
                logger.info(f"      Reason: {group.reason}")


def run_cleanup(
    store: BaseItemStore,
    suggester: BaseTagSuggester,
    settings: Settings,
    dry_run: bool = False,
    confirm_delay: float = 0.0,
    report_dir: Path | None = None,
) -> CleanupSummary:
    """バッチ統合パスを1回実行する.

    Args:
        store: アイテムストア
        suggester: タグサジェスター（group_tags のみ使用）
        settings: 実行設定
        dry_run: True の場合、アイテムとレジストリを書き換えない
        confirm_delay: アイテム更新前の待ち時間（秒）
        report_dir: レポート出力先（None なら settings.report_dir、どちらも無ければ出力しない）

    Returns:
        CleanupSummary

    Raises:
        RegistryCorruptError: レジストリスナップショットが壊れている場合
        MetricsHistoryCorruptError: メトリクス履歴が壊れている場合
    """
    summary = CleanupSummary()

    logger.info("Fetching all bookmarks with tags...")
    items = fetch_all_items(store, settings.collections)
    unique_tags, tag_usage = collect_tag_usage(item.tags for item in items)
    summary.fetched = len(items)
    summary.unique_tags = len(unique_tags)
    logger.info(f"Found {len(items)} bookmarks with {len(unique_tags)} unique tags")

    previous = TagRegistry.load_snapshot(settings.registry_path, similarity_threshold=settings.similarity_threshold)
    history = MetricsHistory(settings.metrics_path)
    if not should_consolidate(unique_tags, tag_usage, previous, history=history, thresholds=settings.thresholds):
        logger.info("Skipping consolidation this run")
        return summary
    summary.consolidated = True

    top = sorted(tag_usage.items(), key=lambda kv: kv[1], reverse=True)[:10]
    logger.info(f"Top 10 most used tags: {', '.join(f'{tag}({count})' for tag, count in top)}")

    groups, summary.failed_batches = request_groupings(suggester, unique_tags, settings.batch_size)
    summary.groups = len(groups)
    _log_plan(groups)

    mapping = build_mapping(groups)
    collisions = find_mapping_collisions(groups)
    updates = apply_mapping(items, mapping)
    changed = [update for update in updates if update.changed]
    summary.mapping_size = len(mapping)

    if dry_run:
        logger.info(f"Dry run: {len(changed)} bookmarks would be updated, {len(mapping)} tags remapped")
    else:
        if confirm_delay > 0 and changed:
            logger.warning(
                f"This will update {len(changed)} bookmarks. "
                f"Press Ctrl+C to cancel, or wait {confirm_delay:g} seconds to proceed..."
            )
            time.sleep(confirm_delay)

        for update in changed:
            try:
                store.set_tags(update.item_id, update.new_tags)
            except CollaboratorError as e:
                logger.error(f"Failed to update bookmark {update.item_id}: {e}")
                summary.failed.append(update.item_id)
                continue
            summary.updated += 1
            logger.debug(f"Updated {update.item_id}: [{', '.join(update.old_tags)}] -> [{', '.join(update.new_tags)}]")

    registry = previous
    if registry is None:
        registry = TagRegistry(path=settings.registry_path, similarity_threshold=settings.similarity_threshold)
    summary.aliases_added = apply_groups_to_registry(registry, groups, tag_usage)
    if not dry_run:
        registry.persist(settings.registry_path)

    report_dir = report_dir or settings.report_dir
    if report_dir is not None:
        summary.reports = export_consolidation_reports(mapping, collisions, report_dir, updates)
        logger.info(f"Consolidation reports written to {report_dir}")

    logger.info(
        f"Cleanup complete: {summary.updated} bookmarks updated, {len(summary.failed)} failed, "
        f"{summary.mapping_size} tags remapped, {summary.aliases_added} aliases added; "
        f"registry has {len(registry)} canonical tags"
    )
    return summary


def main() -> None:
    """CLI エントリポイント."""
    parser = argparse.ArgumentParser(description="Consolidate duplicate bookmark tags")
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
        "--dry-run",
        action="store_true",
        help="Plan and report only; do not update bookmarks or the registry",
    )
    parser.add_argument(
        "--confirm-delay",
        type=float,
        default=10.0,
        help="Seconds to wait before updating bookmarks (default: 10)",
    )
    parser.add_argument(
        "--report-dir",
        type=Path,
        default=None,
        help="Write consolidation reports (CSV) to this directory",
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
    suggester = OpenAITagSuggester(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.request_timeout,
    )

    run_kwargs = {"dry_run": args.dry_run, "confirm_delay": args.confirm_delay, "report_dir": args.report_dir}
    if args.items_json is not None:
        summary = run_cleanup(JSONItemStore(args.items_json), suggester, settings, **run_kwargs)
    else:
        with RaindropItemStore(settings.raindrop_token or "", timeout=settings.request_timeout) as store:
            summary = run_cleanup(store, suggester, settings, **run_kwargs)

    if summary.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
