"""バッチ統合（外部サジェスターのグルーピング提案 → 旧タグ→正規タグのマッピング）.

取り込み時のファジー統合（TagRegistry.process_suggested_tags）とは別経路。
サジェスターが返した ConsolidationGroup から

- 旧タグ → 正規タグのマッピングを作る（build_mapping）
- アイテムのタグへマッピングを適用する（apply_mapping）
- レジストリへエイリアスとして畳み込む（apply_groups_to_registry）

を行う。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from .normalize import normalize_tag
from .registry import DEFAULT_CATEGORY, TagRegistry

if TYPE_CHECKING:
    from ..adapters.base_adapter import Item


@dataclass(frozen=True)
class ConsolidationGroup:
    """同じ意味のタグのグループ（canonical は慣例として variants の1つ）."""

    canonical: str
    variants: tuple[str, ...]
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ConsolidationGroup:
        """サジェスターの JSON 出力から生成する.

        Raises:
            ValueError: canonical / variants の形式が不正な場合
        """
        if not isinstance(data, dict):
            raise ValueError(f"group must be an object, got {type(data).__name__}")
        canonical = data.get("canonical")
        variants = data.get("variants")
        if not isinstance(canonical, str) or not canonical.strip():
            raise ValueError(f"group has no usable 'canonical': {data!r}")
        if not isinstance(variants, list) or not all(isinstance(v, str) for v in variants):
            raise ValueError(f"group 'variants' must be a list of strings: {data!r}")
        return cls(canonical=canonical, variants=tuple(variants), reason=str(data.get("reason") or ""))


@dataclass(frozen=True)
class GroupingResult:
    """1バッチ分のグルーピング提案."""

    groups: list[ConsolidationGroup]
    standalone: list[str]


@dataclass(frozen=True)
class MappingCollision:
    """同じ variant が複数グループに現れ、別々の canonical を指していたケース."""

    variant: str
    previous_canonical: str
    canonical: str


@dataclass(frozen=True)
class ItemUpdate:
    item_id: str
    old_tags: tuple[str, ...]
    new_tags: tuple[str, ...]

    @property
    def changed(self) -> bool:
        # 順序違いだけなら再送しない
        return set(self.old_tags) != set(self.new_tags)


def find_mapping_collisions(groups: Sequence[ConsolidationGroup]) -> list[MappingCollision]:
    """build_mapping で後勝ちになる variant を列挙する."""
    seen: dict[str, str] = {}
    collisions: list[MappingCollision] = []
    for group in groups:
        for variant in group.variants:
            if variant == group.canonical:
                continue
            previous = seen.get(variant)
            if previous is not None and previous != group.canonical:
                collisions.append(MappingCollision(variant, previous, group.canonical))
            seen[variant] = group.canonical
    return collisions


def build_mapping(groups: Sequence[ConsolidationGroup]) -> dict[str, str]:
    """グループから 旧タグ → 正規タグ のマッピングを作る.

    - canonical と文字列として等しい variant はマッピングしない
    - 同じ variant が複数グループにある場合は後のグループが勝つ（警告ログ）
    - A→B, B→C のような連鎖は終端へ畳む（適用結果が冪等になるように）

    Examples:
        >>> g = ConsolidationGroup("javascript", ("js", "javascript", "javascript-lang"))
        >>> build_mapping([g])
        {'js': 'javascript', 'javascript-lang': 'javascript'}
    """
    mapping: dict[str, str] = {}
    for group in groups:
        for variant in group.variants:
            if variant != group.canonical:
                mapping[variant] = group.canonical

    for collision in find_mapping_collisions(groups):
        logger.warning(
            f"Tag '{collision.variant}' proposed for both '{collision.previous_canonical}' "
            f"and '{collision.canonical}'; using '{collision.canonical}' (last group wins)"
        )

    return _collapse_chains(mapping)


def _collapse_chains(mapping: dict[str, str]) -> dict[str, str]:
    working = dict(mapping)

    # 自分自身に戻ってくる循環は、その variant を終端（正規タグ）として切る
    for variant in list(working):
        target = working[variant]
        seen = {variant}
        while target in working and target not in seen:
            seen.add(target)
            target = working[target]
        if target == variant:
            logger.warning(f"Mapping cycle through '{variant}' broken; '{variant}' stays as-is")
            del working[variant]

    collapsed: dict[str, str] = {}
    for variant, target in working.items():
        hops = 0
        while target in working and hops < len(working):
            target = working[target]
            hops += 1
        collapsed[variant] = target
    return collapsed


def remap_tags(tags: Sequence[str], mapping: Mapping[str, str]) -> list[str]:
    """タグ列にマッピングを適用し、初出順を保って重複を除く."""
    return list(dict.fromkeys(mapping.get(tag, tag) for tag in tags))


def apply_mapping(items: Iterable[Item], mapping: Mapping[str, str]) -> list[ItemUpdate]:
    """各アイテムのタグへマッピングを適用する.

    Returns:
        アイテムごとの ItemUpdate（changed が False のものも含む）
    """
    updates: list[ItemUpdate] = []
    for item in items:
        new_tags = remap_tags(item.tags, mapping)
        updates.append(ItemUpdate(item_id=str(item.id), old_tags=tuple(item.tags), new_tags=tuple(new_tags)))
    return updates


def apply_groups_to_registry(
    registry: TagRegistry,
    groups: Sequence[ConsolidationGroup],
    tag_usage: Mapping[str, int],
) -> int:
    """グループをレジストリへエイリアスとして畳み込む.

    canonical は先に resolve_alias で正規タグへ解決してから merge する。
    レジストリが把握していない variant のコーパス上の利用回数は、canonical が
    新規でも既存でも canonical の usage_count に合算する（該当アイテムは
    canonical へ書き換えられるため）。把握済みの variant の回数は merge 時に畳み込まれる。

    Args:
        registry: 更新対象のレジストリ
        groups: サジェスターのグルーピング提案
        tag_usage: 生タグ → コーパス上の利用回数

    Returns:
        新たに登録（または付け替え）したエイリアスの数
    """
    merged = 0
    for group in groups:
        canonical = normalize_tag(group.canonical)
        if not canonical:
            logger.warning(f"Skipped group with unusable canonical tag: {group.canonical!r}")
            continue
        canonical = registry.resolve_alias(canonical)

        variant_keys = [(raw, normalize_tag(raw)) for raw in group.variants]
        known = registry.known_tags()
        untracked_usage = sum(tag_usage.get(raw, 0) for raw, key in variant_keys if key and key not in known)

        if canonical in registry:
            registry.lookup(canonical).usage_count += untracked_usage
        else:
            category = next(
                (
                    record.category
                    for _, key in variant_keys
                    if key and (record := registry.lookup(registry.resolve_alias(key))) is not None
                ),
                DEFAULT_CATEGORY,
            )
            registry.ensure_tag(canonical, category, usage_count=untracked_usage)

        for raw, key in variant_keys:
            if not key:
                logger.warning(f"Skipped unusable variant {raw!r} in group '{group.canonical}'")
                continue
            if registry.merge(canonical, key, raw_variant=raw):
                merged += 1

    logger.info(f"Registry consolidation: {merged} aliases registered from {len(groups)} groups")
    return merged
