"""JSONItemStore for local bookmark exports.

This adapter reads and writes a JSON export of bookmarks, so that classification and
cleanup runs can be executed offline against a file instead of the Raindrop API.

File format::

    [
        {"_id": 1, "title": "...", "link": "...", "tags": ["a", "b"], "collection": {"$id": -1}},
        ...
    ]
"""

from __future__ import annotations

import json
import os
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from ..core.exceptions import CollaboratorError
from .base_adapter import BaseItemStore, Item


class JSONItemStore(BaseItemStore):
    """Item store backed by a JSON file.

    Args:
        file_path: Path to JSON file
    """

    def __init__(self, file_path: Path | str) -> None:
        """Initialize adapter.

        Args:
            file_path: Path to JSON file

        Raises:
            FileNotFoundError: JSON file does not exist
        """
        self.file_path = Path(file_path)
        if not self.file_path.exists():
            raise FileNotFoundError(f"JSON file not found: {self.file_path}")

    def _read(self) -> list[dict]:
        try:
            with open(self.file_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CollaboratorError("json", "read", f"{self.file_path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("items", [])
        if not isinstance(data, list):
            raise CollaboratorError("json", "read", f"{self.file_path}: expected a list of items")
        return data

    def _write(self, records: list[dict]) -> None:
        tmp = self.file_path.with_name(f".{self.file_path.name}.tmp-{os.getpid()}")
        tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.file_path)

    def _update(self, item_id: str, changes: dict) -> None:
        records = self._read()
        for record in records:
            if str(record.get("_id")) == str(item_id):
                record.update(changes)
                self._write(records)
                return
        raise CollaboratorError("json", "update", f"item not found: {item_id}")

    def fetch_items(self, collection_id: int) -> list[Item]:
        """Read all items of a collection."""
        items = [
            Item.from_record(record)
            for record in self._read()
            if (record.get("collection") or {}).get("$id") == collection_id
        ]
        logger.debug(f"Read {len(items)} items of collection {collection_id} from {self.file_path}")
        return items

    def set_tags(self, item_id: str, tags: Sequence[str]) -> None:
        self._update(item_id, {"tags": list(tags)})

    def move_item(self, item_id: str, collection_id: int, tags: Sequence[str]) -> None:
        self._update(item_id, {"collection": {"$id": collection_id}, "tags": list(tags)})
