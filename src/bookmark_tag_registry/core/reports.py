"""統合結果の出力（レポート）.

バッチ統合で作ったマッピング、後勝ちになった variant、アイテムの更新内容をCSVとして出力します。
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import polars as pl

from .consolidation import ItemUpdate, MappingCollision


def export_consolidation_reports(
    mapping: Mapping[str, str],
    collisions: Sequence[MappingCollision],
    output_dir: Path | str,
    updates: Sequence[ItemUpdate] = (),
) -> dict[str, Path | None]:
    """統合レポートをCSVファイルとして出力する.

    Args:
        mapping: build_mapping() の戻り値
        collisions: find_mapping_collisions() の戻り値
        output_dir: 出力ディレクトリ
        updates: apply_mapping() の戻り値（changed のものだけ出力）

    Returns:
        出力したCSVのパス（該当が無ければ None）
        - "tag_mapping": tag_mapping.csv
        - "mapping_collisions": mapping_collisions.csv
        - "item_updates": item_updates.csv
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    frames = {
        "tag_mapping": pl.DataFrame(
            {"variant": list(mapping.keys()), "canonical": list(mapping.values())},
            schema={"variant": pl.String, "canonical": pl.String},
        ),
        "mapping_collisions": pl.DataFrame(
            {
                "variant": [c.variant for c in collisions],
                "previous_canonical": [c.previous_canonical for c in collisions],
                "canonical": [c.canonical for c in collisions],
            },
            schema={"variant": pl.String, "previous_canonical": pl.String, "canonical": pl.String},
        ),
        "item_updates": pl.DataFrame(
            {
                "item_id": [u.item_id for u in updates if u.changed],
                "old_tags": [", ".join(u.old_tags) for u in updates if u.changed],
                "new_tags": [", ".join(u.new_tags) for u in updates if u.changed],
            },
            schema={"item_id": pl.String, "old_tags": pl.String, "new_tags": pl.String},
        ),
    }

    result_paths: dict[str, Path | None] = {}
    for name, df in frames.items():
        if len(df) > 0:
            path = output_dir / f"{name}.csv"
            df.write_csv(path)
            result_paths[name] = path
        else:
            result_paths[name] = None
    return result_paths
