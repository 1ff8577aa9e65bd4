"""外部コラボレータ用アダプタ（基底クラス）.

アイテムストア（ブックマークサービス等）とタグサジェスター（LLM等）を
共通インターフェースで扱うための抽象基底クラスを定義します。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..core.consolidation import GroupingResult
from ..core.content_type import ContentType
from ..core.registry import TagContext

# Raindrop の「未整理」コレクション
UNSORTED_COLLECTION_ID = -1


@dataclass
class Item:
    """アイテムストア上の1アイテム（ブックマーク）."""

    id: str
    title: str = ""
    tags: list[str] = field(default_factory=list)
    link: str = ""
    excerpt: str = ""
    collection_id: int | None = None

    @classmethod
    def from_record(cls, record: dict) -> Item:
        """Raindrop 形式のレコード（API レスポンス / JSON エクスポート）から生成する."""
        return cls(
            id=str(record.get("_id")),
            title=record.get("title") or "",
            tags=[str(t) for t in record.get("tags") or []],
            link=record.get("link") or "",
            excerpt=record.get("excerpt") or "",
            collection_id=(record.get("collection") or {}).get("$id"),
        )


class BaseItemStore(ABC):
    """アイテムストアの基底クラス.

    失敗は CollaboratorError として送出する（呼び出し側がアイテム単位で捕捉する）。
    """

    @abstractmethod
    def fetch_items(self, collection_id: int) -> list[Item]:
        """コレクション内の全アイテムを取得する."""
        ...

    @abstractmethod
    def set_tags(self, item_id: str, tags: Sequence[str]) -> None:
        """アイテムのタグを置き換える."""
        ...

    @abstractmethod
    def move_item(self, item_id: str, collection_id: int, tags: Sequence[str]) -> None:
        """アイテムを別コレクションへ移動し、タグを置き換える."""
        ...


class BaseTagSuggester(ABC):
    """タグサジェスターの基底クラス.

    カテゴリ分類・タグ提案・タグのグルーピング提案を行う。
    失敗は CollaboratorError として送出する。
    """

    @abstractmethod
    def classify(self, item: Item, categories: Sequence[str], content_type: ContentType) -> str:
        """アイテムを categories のいずれかに分類する."""
        ...

    @abstractmethod
    def suggest_tags(self, item: Item, category: str, content_type: ContentType, context: TagContext) -> list[str]:
        """アイテムに付けるタグ候補を返す（生タグ。正規化はレジストリ側）."""
        ...

    @abstractmethod
    def group_tags(self, tags: Sequence[str]) -> GroupingResult:
        """同じ意味のタグをグループにまとめる（1バッチ分）."""
        ...
