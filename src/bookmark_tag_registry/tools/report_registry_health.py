"""タグレジストリ（tag-registry.json）の健全性チェックを行い、TSVレポートを出力する。"""

from __future__ import annotations

import argparse
import csv
import json
from collections.abc import Iterable, Sequence
from pathlib import Path

from bookmark_tag_registry.core.exceptions import RegistryCorruptError
from bookmark_tag_registry.core.health import MetricsHistory
from bookmark_tag_registry.core.normalize import normalize_tag
from bookmark_tag_registry.core.similarity import DEFAULT_SIMILARITY_THRESHOLD, find_similar_tags


def _write_tsv(path: Path, header: Sequence[str], rows: Iterable[Sequence[object]]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, delimiter="\t")
        writer.writerow(list(header))
        count = 0
        for r in rows:
            writer.writerow(["" if v is None else v for v in r])
            count += 1
    return count


def _usage_count(record: object) -> object:
    return record.get("usageCount") if isinstance(record, dict) else None


def run_health_checks(
    registry_path: Path,
    out_dir: Path,
    metrics_path: Path | None = None,
    top_n: int = 50,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> Path:
    registry_path = Path(registry_path)
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    # TagRegistry.from_dict はエイリアスを修復してしまうため、生の JSON を検査する
    try:
        data = json.loads(registry_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RegistryCorruptError(registry_path, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise RegistryCorruptError(registry_path, f"expected a JSON object, got {type(data).__name__}")
    tags = data.get("tags") or {}
    aliases = data.get("aliases") or {}
    if not isinstance(tags, dict) or not isinstance(aliases, dict):
        raise RegistryCorruptError(registry_path, "'tags' and 'aliases' must be JSON objects")

    # Alias namespace (aliases and canonical keys must be disjoint, one hop only)
    alias_issues = []
    for alias, target in sorted(aliases.items()):
        if alias in tags:
            alias_issues.append(("alias_is_canonical", alias, target))
        if target in aliases:
            alias_issues.append(("alias_chain", alias, target))
        elif target not in tags:
            alias_issues.append(("missing_target", alias, target))
    alias_issues_count = _write_tsv(out_dir / "alias_issues.tsv", ["kind", "alias", "target"], alias_issues)

    # Keys that would not survive normalization
    unnormalized = [("tag", k, normalize_tag(k)) for k in tags if normalize_tag(k) != k]
    unnormalized += [("alias", k, normalize_tag(k)) for k in aliases if normalize_tag(k) != k]
    unnormalized_count = _write_tsv(
        out_dir / "unnormalized_keys.tsv", ["kind", "key", "normalized"], unnormalized
    )

    # Usage count sanity
    bad_counts = [
        (tag, _usage_count(record))
        for tag, record in tags.items()
        if not isinstance(_usage_count(record), int)
        or isinstance(_usage_count(record), bool)
        or _usage_count(record) < 0
    ]
    bad_counts_count = _write_tsv(out_dir / "bad_usage_counts.tsv", ["tag", "usageCount"], bad_counts)

    # Canonical tags that ingest-time matching would have folded together
    near_dupes = []
    keys = list(tags)
    for i, tag in enumerate(keys):
        if not tag:
            continue
        for other, score in find_similar_tags(tag, keys[i + 1 :], similarity_threshold):
            near_dupes.append((tag, other, f"{score:.3f}"))
    near_dupes_count = _write_tsv(
        out_dir / "near_duplicate_tags.tsv", ["tag", "similar_tag", "similarity"], near_dupes
    )

    valid_counts = {tag: c for tag, record in tags.items() if isinstance(c := _usage_count(record), int)}
    ranked = sorted(valid_counts.items(), key=lambda kv: kv[1], reverse=True)[:top_n]
    _write_tsv(
        out_dir / "top_tags.tsv",
        ["tag", "usageCount", "category", "variants"],
        [
            (tag, count, tags[tag].get("category"), ", ".join(tags[tag].get("variants") or []))
            for tag, count in ranked
        ],
    )

    summary_rows: list[tuple[str, object]] = [
        ("registry_path", str(registry_path)),
        ("last_updated", data.get("lastUpdated")),
        ("total_tags", len(tags)),
        ("total_aliases", len(aliases)),
        ("total_usage", sum(valid_counts.values())),
        ("alias_issues", alias_issues_count),
        ("unnormalized_keys", unnormalized_count),
        ("bad_usage_counts", bad_counts_count),
        ("near_duplicate_pairs", near_dupes_count),
    ]

    if metrics_path is not None:
        history = MetricsHistory(metrics_path)
        df = history.to_frame()
        df.write_csv(out_dir / "metrics_history.tsv", separator="\t")
        summary_rows.append(("metrics_entries", len(df)))
        if len(df) > 0:
            latest = df.row(-1, named=True)
            summary_rows += [(f"latest_{key}", value) for key, value in latest.items()]

    summary_out = out_dir / "registry_health_summary.tsv"
    _write_tsv(summary_out, ["metric", "value"], summary_rows)
    return summary_out


def main() -> None:
    p = argparse.ArgumentParser(description="Check tag registry health and write TSV reports.")
    p.add_argument("--registry", type=Path, required=True, help="Path to tag-registry.json")
    p.add_argument("--metrics", type=Path, default=None, help="Path to tag-metrics.json (optional)")
    p.add_argument("--out-dir", type=Path, required=True, help="Output directory for TSV reports")
    p.add_argument("--top", type=int, default=50, help="Number of tags in top_tags.tsv")
    args = p.parse_args()

    summary = run_health_checks(args.registry, args.out_dir, metrics_path=args.metrics, top_n=args.top)
    print(f"Wrote health reports: {summary.parent}")


if __name__ == "__main__":
    main()
