"""アイテムストア・タグサジェスターのアダプタ群."""

from .base_adapter import UNSORTED_COLLECTION_ID, BaseItemStore, BaseTagSuggester, Item
from .json_adapter import JSONItemStore
from .openai_adapter import OpenAITagSuggester
from .raindrop_adapter import RaindropItemStore

__all__ = [
    "BaseItemStore",
    "BaseTagSuggester",
    "Item",
    "JSONItemStore",
    "OpenAITagSuggester",
    "RaindropItemStore",
    "UNSORTED_COLLECTION_ID",
]
