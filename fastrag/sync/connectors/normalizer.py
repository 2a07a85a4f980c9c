"""
Response Normalizer.

Maps heterogeneous JSON payloads (API pages, JSON files, database rows) to
canonical Content documents.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from fastrag.sync.models import Content, utc_now

logger = logging.getLogger(__name__)

ITEM_CONTAINER_FIELDS = ("data", "items", "results")
TEXT_FIELDS = ("content", "text", "body", "description", "message")
TITLE_FIELDS = ("title", "name", "subject", "headline")
ID_FIELDS = ("id", "_id", "uuid")

TITLE_FROM_TEXT_LENGTH = 100


@dataclass
class NormalizedPage:
    """Documents extracted from one payload."""
    contents: List[Content] = field(default_factory=list)
    item_count: int = 0
    skipped: int = 0


class ResponseNormalizer:
    """
    Converts raw items to Content.

    Items without any recognised text or title field are dropped. Ids come
    from the item when present, otherwise they are synthesized and are not
    stable across syncs.
    """

    def __init__(
        self,
        source_id: str,
        source_type: str = "api",
        fetch_metadata: Optional[Dict[str, Any]] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None
    ):
        self.source_id = source_id
        self.source_type = source_type
        self.fetch_metadata = fetch_metadata or {}
        self._log = log or logger

    @staticmethod
    def extract_items(payload: Any) -> List[Any]:
        """Locate the item array of a payload."""
        if payload is None:
            return []
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            for key in ITEM_CONTAINER_FIELDS:
                value = payload.get(key)
                if isinstance(value, list):
                    return value
        # Single item response
        return [payload]

    @staticmethod
    def _first_string(item: Dict[str, Any], fields) -> str:
        for name in fields:
            value = item.get(name)
            if isinstance(value, str) and value:
                return value
        return ""

    def _item_id(self, item: Dict[str, Any]) -> str:
        for name in ID_FIELDS:
            value = item.get(name)
            if value is not None and value != "":
                return str(value)
        return f"{self.source_id}-{int(time.time() * 1000)}-{uuid4().hex[:12]}"

    def to_content(self, item: Any, extra_metadata: Optional[Dict[str, Any]] = None) -> Optional[Content]:
        """Transform one item, or return None when it carries no text."""
        if not isinstance(item, dict):
            self._log.warning(f"Skipping non-object item of type {type(item).__name__}")
            return None

        try:
            text = self._first_string(item, TEXT_FIELDS)
            title = self._first_string(item, TITLE_FIELDS)

            if not text and not title:
                return None

            if not text:
                text = title

            return Content(
                id=self._item_id(item),
                source_id=self.source_id,
                title=title or text[:TITLE_FROM_TEXT_LENGTH],
                text=text,
                metadata={
                    **item,
                    "source_type": self.source_type,
                    **self.fetch_metadata,
                    **(extra_metadata or {}),
                    "fetched_at": utc_now().isoformat()
                },
                last_updated=utc_now(),
                version=1
            )
        except (TypeError, ValueError) as e:
            self._log.warning(
                f"Failed to transform item to content: {e}; "
                f"item: {json.dumps(item, default=str)[:200]}"
            )
            return None

    def normalize(self, payload: Any) -> NormalizedPage:
        """Normalize one page."""
        items = self.extract_items(payload)
        page = NormalizedPage(item_count=len(items))

        for item in items:
            content = self.to_content(item)
            if content is None:
                page.skipped += 1
            else:
                page.contents.append(content)

        if page.skipped:
            self._log.debug(f"Dropped {page.skipped} of {page.item_count} items without text")

        return page
