"""Raindrop.io item store.

Fetches bookmarks from the Raindrop REST API (v1) and writes tag / collection updates back.
Pagination is page-based: pages are requested until an empty page is returned.
Retry/backoff is intentionally not handled here; failures surface as CollaboratorError.
"""

from __future__ import annotations

from collections.abc import Sequence

import httpx
from loguru import logger

from ..core.exceptions import CollaboratorError
from .base_adapter import BaseItemStore, Item


class RaindropItemStore(BaseItemStore):
    """Item store backed by the Raindrop.io API.

    Args:
        token: Raindrop API token (RAINDROP_TOKEN)
        timeout: Request timeout in seconds
        client: Pre-built httpx client (tests inject one with a MockTransport)
    """

    API_BASE = "https://api.raindrop.io/rest/v1"
    PER_PAGE = 50

    def __init__(self, token: str, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        if not token:
            raise ValueError("RaindropItemStore requires an API token (set RAINDROP_TOKEN)")
        self.client = client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def close(self) -> None:
        """Close HTTP client resources."""
        self.client.close()

    def __enter__(self) -> RaindropItemStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: object) -> dict:
        url = f"{self.API_BASE}{path}"
        operation = f"{method} {path}"
        try:
            response = self.client.request(method, url, headers=self._headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            detail = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            raise CollaboratorError("raindrop", operation, detail) from e
        except httpx.HTTPError as e:
            raise CollaboratorError("raindrop", operation, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise CollaboratorError("raindrop", operation, f"invalid JSON response: {e}") from e

    def fetch_items(self, collection_id: int) -> list[Item]:
        """Fetch every bookmark of a collection, page by page."""
        items: list[Item] = []
        page = 0
        while True:
            data = self._request(
                "GET",
                f"/raindrops/{collection_id}",
                params={"perpage": self.PER_PAGE, "page": page},
            )
            records = data.get("items") or []
            if not records:
                break
            items.extend(Item.from_record(record) for record in records)
            page += 1

        logger.debug(f"Fetched {len(items)} bookmarks from collection {collection_id} ({page} pages)")
        return items

    def set_tags(self, item_id: str, tags: Sequence[str]) -> None:
        self._request("PUT", f"/raindrop/{item_id}", json={"tags": list(tags)})

    def move_item(self, item_id: str, collection_id: int, tags: Sequence[str]) -> None:
        self._request(
            "PUT",
            f"/raindrop/{item_id}",
            json={"collection": {"$id": collection_id}, "tags": list(tags)},
        )
