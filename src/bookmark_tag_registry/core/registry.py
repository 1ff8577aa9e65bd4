"""タグレジストリ（正規タグ・エイリアス・利用統計の永続ストア）.

- 正規タグ（TagRecord）とエイリアス（alias → canonical）の2つの名前空間を持つ
- 2つの名前空間は常に互いに素で、エイリアスは必ず正規タグを直接指す（1ホップ）
- スナップショットは tag-registry.json（JSON）として一時ファイル経由で原子的に書き込む

モジュールレベルのシングルトンは持たない。呼び出し側が1ラン（または1プロセス）ごとに
TagRegistry を生成し、各処理へ明示的に渡す。
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from .exceptions import AliasConflictError, RegistryCorruptError
from .normalize import normalize_tag
from .similarity import DEFAULT_SIMILARITY_THRESHOLD, find_similar_tags

DEFAULT_CATEGORY = "general"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TagRecord:
    """正規タグ1件分の統計."""

    category: str
    usage_count: int = 0
    first_used: str = field(default_factory=_utc_now)
    variants: list[str] | None = None

    def add_variant(self, raw_variant: str) -> None:
        if self.variants is None:
            self.variants = []
        if raw_variant not in self.variants:
            self.variants.append(raw_variant)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "category": self.category,
            "usageCount": self.usage_count,
            "firstUsed": self.first_used,
        }
        if self.variants is not None:
            data["variants"] = list(self.variants)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TagRecord:
        if not isinstance(data, dict):
            raise ValueError(f"tag record must be an object, got {type(data).__name__}")
        usage_count = data.get("usageCount", 0)
        if not isinstance(usage_count, int) or isinstance(usage_count, bool) or usage_count < 0:
            raise ValueError(f"usageCount must be a non-negative integer, got {usage_count!r}")
        variants = data.get("variants")
        if variants is not None and not isinstance(variants, list):
            raise ValueError(f"variants must be a list, got {type(variants).__name__}")
        return cls(
            category=str(data.get("category") or DEFAULT_CATEGORY),
            usage_count=usage_count,
            first_used=str(data.get("firstUsed") or _utc_now()),
            variants=[str(v) for v in variants] if variants is not None else None,
        )


@dataclass(frozen=True)
class TagContext:
    """タグ提案用のコンテキスト（カテゴリ内の人気タグ + 全体の人気タグ）."""

    category_tags: list[tuple[str, int]]
    global_tags: list[tuple[str, int]]

    @property
    def combined(self) -> list[tuple[str, int]]:
        return [*self.category_tags, *self.global_tags]


class TagRegistry:
    """正規タグとエイリアスを管理するレジストリ.

    Args:
        tags: 正規タグ → TagRecord（挿入順がそのまま類似検索のタイブレーク順になる）
        aliases: エイリアス → 正規タグ
        last_updated: 最終更新時刻（ISO 8601）
        path: persist() の既定の書き込み先
        similarity_threshold: 取り込み時の類似タグ統合に使う閾値
    """

    def __init__(
        self,
        tags: dict[str, TagRecord] | None = None,
        aliases: dict[str, str] | None = None,
        last_updated: str | None = None,
        path: Path | str | None = None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self._tags: dict[str, TagRecord] = dict(tags or {})
        self._aliases: dict[str, str] = dict(aliases or {})
        self.last_updated = last_updated or _utc_now()
        self.path = Path(path) if path is not None else None
        self.similarity_threshold = similarity_threshold

    # ------------------------------------------------------------------
    # 参照系
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._tags)

    def __contains__(self, key: object) -> bool:
        return key in self._tags

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    @property
    def tags(self) -> dict[str, TagRecord]:
        return self._tags

    @property
    def aliases(self) -> dict[str, str]:
        return self._aliases

    def known_tags(self) -> set[str]:
        """正規タグとエイリアスを合わせた既知の語彙."""
        return set(self._tags) | set(self._aliases)

    def lookup(self, key: str) -> TagRecord | None:
        return self._tags.get(key)

    def is_alias(self, key: str) -> bool:
        return key in self._aliases

    def resolve_alias(self, key: str) -> str:
        """エイリアスなら参照先の正規タグを、それ以外は key をそのまま返す（1ホップのみ）."""
        return self._aliases.get(key, key)

    # ------------------------------------------------------------------
    # 更新系
    # ------------------------------------------------------------------

    def record_usage(self, key: str, category: str) -> str:
        """タグの利用を1回記録する（addTag）.

        既存の正規タグなら usage_count を加算し、無ければ usage_count=1 で新規登録する。
        エイリアスが渡された場合は参照先の正規タグに記録する。

        Raises:
            ValueError: key が空文字列の場合（呼び出し側で除外しておくこと）
        """
        if not key:
            raise ValueError("record_usage() requires a non-empty normalized tag")

        key = self.resolve_alias(key)
        record = self._tags.get(key)
        if record is None:
            self._tags[key] = TagRecord(category=category, usage_count=1)
        else:
            record.usage_count += 1
            if category:
                record.category = category
        return key

    def ensure_tag(self, key: str, category: str = DEFAULT_CATEGORY, usage_count: int = 0) -> TagRecord:
        """正規タグが無ければ登録し、TagRecord を返す（既存なら何もしない）."""
        if not key:
            raise ValueError("ensure_tag() requires a non-empty normalized tag")
        if key in self._aliases:
            raise AliasConflictError(key, key, f"'{key}' is an alias of '{self._aliases[key]}'")
        record = self._tags.get(key)
        if record is None:
            record = TagRecord(category=category, usage_count=usage_count)
            self._tags[key] = record
        return record

    def process_suggested_tags(self, raw_tags: Iterable[str], category: str) -> list[str]:
        """提案タグを正規化し、既存語彙に寄せてから利用を記録する.

        各タグは独立に処理する:
            1. 正規化（空なら捨てる）
            2. エイリアスなら正規タグへ解決
            3. 既知の正規タグならそのまま記録
            4. 未知なら類似タグを探し、閾値以上のベストマッチがあればそちらに記録
            5. 類似タグも無ければ新しい正規タグとして登録

        Returns:
            記録した正規タグのリスト（入力順。重複は除去しない）
        """
        processed: list[str] = []
        for raw_tag in raw_tags:
            key = normalize_tag(raw_tag)
            if not key:
                logger.debug(f"Dropped unusable tag: {raw_tag!r}")
                continue

            key = self.resolve_alias(key)
            if key in self._tags:
                processed.append(self.record_usage(key, category))
                continue

            similar = find_similar_tags(key, self._tags, self.similarity_threshold)
            if similar:
                best_match, score = similar[0]
                logger.info(f'Consolidating "{raw_tag}" -> "{best_match}" (similarity {score:.2f})')
                processed.append(self.record_usage(best_match, category))
            else:
                processed.append(self.record_usage(key, category))
        return processed

    def merge(self, canonical: str, variant: str, raw_variant: str | None = None) -> bool:
        """variant を canonical のエイリアスとして登録する.

        - variant が正規タグとして記録されていた場合、その usage_count と variants を canonical に畳み込む
        - variant を指していたエイリアスは canonical へ付け替える（1ホップを維持）
        - variant が別の正規タグのエイリアスだった場合は付け替える（後勝ち、警告ログ）

        Args:
            canonical: 統合先の正規タグ（正規化済み）
            variant: 統合するタグ（正規化済み）
            raw_variant: variants に記録する元表記（省略時は variant）

        Returns:
            エイリアスを新規登録（または付け替え）した場合 True

        Raises:
            ValueError: どちらかが空文字列の場合
            AliasConflictError: canonical 自身がエイリアスの場合
        """
        if not canonical or not variant:
            raise ValueError("merge() requires non-empty normalized tags")
        if canonical in self._aliases:
            raise AliasConflictError(
                canonical,
                variant,
                f"'{canonical}' is itself an alias of '{self._aliases[canonical]}'; resolve it first",
            )

        if variant == canonical:
            self.ensure_tag(canonical).add_variant(raw_variant or variant)
            return False

        record = self._tags.get(canonical)
        if record is None:
            variant_record = self._tags.get(variant)
            category = variant_record.category if variant_record else DEFAULT_CATEGORY
            record = self.ensure_tag(canonical, category)

        previous_target = self._aliases.get(variant)
        if previous_target == canonical:
            record.add_variant(raw_variant or variant)
            return False
        if previous_target is not None:
            logger.warning(
                f"Alias '{variant}' re-pointed from '{previous_target}' to '{canonical}' (last write wins)"
            )

        folded = self._tags.pop(variant, None)
        if folded is not None:
            record.usage_count += folded.usage_count
            for folded_variant in folded.variants or []:
                record.add_variant(folded_variant)

        for alias, target in self._aliases.items():
            if target == variant:
                self._aliases[alias] = canonical

        self._aliases[variant] = canonical
        record.add_variant(raw_variant or variant)
        return True

    # ------------------------------------------------------------------
    # 人気タグ（タグ提案のコンテキスト）
    # ------------------------------------------------------------------

    def popular_tags(self, limit: int = 10) -> list[tuple[str, int]]:
        ranked = sorted(self._tags.items(), key=lambda kv: kv[1].usage_count, reverse=True)
        return [(tag, record.usage_count) for tag, record in ranked[:limit]]

    def popular_tags_by_category(self, category: str, limit: int = 10) -> list[tuple[str, int]]:
        in_category = [(tag, r) for tag, r in self._tags.items() if r.category == category]
        ranked = sorted(in_category, key=lambda kv: kv[1].usage_count, reverse=True)
        return [(tag, record.usage_count) for tag, record in ranked[:limit]]

    def combined_tag_context(self, category: str, global_limit: int = 8, category_limit: int = 7) -> TagContext:
        """カテゴリ内の人気タグを優先し、全体の人気タグから重複を除いて結合する."""
        category_tags = self.popular_tags_by_category(category, category_limit)
        seen = {tag for tag, _ in category_tags}
        global_tags = [(tag, count) for tag, count in self.popular_tags(global_limit) if tag not in seen]
        return TagContext(category_tags=category_tags, global_tags=global_tags)

    # ------------------------------------------------------------------
    # 永続化
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, object]:
        return {
            "tags": {tag: record.to_dict() for tag, record in self._tags.items()},
            "aliases": dict(self._aliases),
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        path: Path | str | None = None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> TagRegistry:
        """スナップショット辞書からレジストリを復元する.

        Raises:
            ValueError: 構造が不正な場合
        """
        if not isinstance(data, dict):
            raise ValueError(f"registry snapshot must be an object, got {type(data).__name__}")

        raw_tags = data.get("tags") or {}
        raw_aliases = data.get("aliases") or {}
        if not isinstance(raw_tags, dict):
            raise ValueError("'tags' must be an object")
        if not isinstance(raw_aliases, dict):
            raise ValueError("'aliases' must be an object")

        tags = {str(tag): TagRecord.from_dict(record) for tag, record in raw_tags.items()}
        aliases = _repair_aliases(tags, {str(k): str(v) for k, v in raw_aliases.items()})

        return cls(
            tags=tags,
            aliases=aliases,
            last_updated=data.get("lastUpdated"),
            path=path,
            similarity_threshold=similarity_threshold,
        )

    @classmethod
    def load_snapshot(
        cls,
        path: Path | str,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> TagRegistry | None:
        """スナップショットを読み込む。ファイルが無ければ None（初回実行）.

        Raises:
            RegistryCorruptError: ファイルはあるが解釈できない場合
        """
        path = Path(path)
        if not path.exists():
            logger.info(f"No tag registry snapshot at {path}")
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            registry = cls.from_dict(data, path=path, similarity_threshold=similarity_threshold)
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
            raise RegistryCorruptError(path, str(e)) from e

        logger.info(f"Loaded tag registry: {len(registry)} tags, {len(registry.aliases)} aliases from {path}")
        return registry

    @classmethod
    def load(
        cls,
        path: Path | str,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> TagRegistry:
        """スナップショットを読み込む。ファイルが無ければ空のレジストリで初期化する."""
        registry = cls.load_snapshot(path, similarity_threshold=similarity_threshold)
        if registry is None:
            logger.info("Creating new tag registry")
            registry = cls(path=path, similarity_threshold=similarity_threshold)
        return registry

    def persist(self, path: Path | str | None = None) -> Path:
        """スナップショットを一時ファイル経由で原子的に書き込む.

        Returns:
            書き込んだファイルのパス
        """
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("persist() requires a path (none was configured)")

        self.last_updated = _utc_now()
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.tmp-{os.getpid()}")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, target)

        logger.debug(f"Tag registry persisted to {target} ({len(self)} tags)")
        return target


def _repair_aliases(tags: dict[str, TagRecord], aliases: dict[str, str]) -> dict[str, str]:
    """古いスナップショットのエイリアスを不変条件に合わせて修復する.

    - 正規タグと同名のエイリアスは捨てる
    - エイリアスの連鎖は終端の正規タグへ直接向け直す（循環は捨てる）
    """
    repaired: dict[str, str] = {}
    for alias, target in aliases.items():
        if alias in tags:
            logger.warning(f"Dropped alias '{alias}' -> '{target}': '{alias}' is a canonical tag")
            continue

        seen = {alias}
        while target in aliases and target not in tags:
            if target in seen:
                break
            seen.add(target)
            target = aliases[target]

        if target in seen:
            logger.warning(f"Dropped alias '{alias}': alias cycle detected")
            continue
        repaired[alias] = target
    return repaired
