"""Pick OCaml posts out of a commit event.

A create matches when the post was written within the last 48 hours and its
text mentions the topic keyword or carries the topic emoji. Deletes are
passed through untouched: we remove the URI whether or not we ever stored it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ocamlfeed.events import POST_COLLECTION, CommitEvent, CreateOp, DeleteOp, MatchedPost, iso_timestamp

logger = logging.getLogger(__name__)

MATCH_WINDOW = timedelta(hours=48)


@dataclass(frozen=True)
class Topic:
    keyword: str = "ocaml"
    marker: str = "\N{BACTRIAN CAMEL}"

    def matches_text(self, text: str) -> bool:
        lowered = text.lower()
        return self.keyword.lower() in lowered or self.marker.lower() in lowered


@dataclass
class Classification:
    deletes: List[str] = field(default_factory=list)
    creates: List[MatchedPost] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.deletes and not self.creates


def parse_created_at(value: Any) -> Optional[datetime]:
    """Parse a record's ``createdAt``; naive timestamps are taken as UTC."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_match(
    record: Dict[str, Any],
    topic: Topic,
    now: datetime,
    window: timedelta = MATCH_WINDOW,
) -> bool:
    created_at = parse_created_at(record.get("createdAt"))
    if created_at is None:
        logger.debug(f"Skipping post with invalid time: {record.get('createdAt')!r}")
        return False
    if created_at <= now - window:
        return False
    text = record.get("text")
    return isinstance(text, str) and topic.matches_text(text)


def classify(event: CommitEvent, topic: Topic, now: Optional[datetime] = None) -> Classification:
    """Split ``event`` into post URIs to delete and posts to index."""
    now = now or datetime.now(timezone.utc)
    result = Classification()
    for op in event.ops:
        if op.collection != POST_COLLECTION:
            continue
        if isinstance(op, DeleteOp):
            result.deletes.append(op.uri)
        elif isinstance(op, CreateOp) and is_match(op.record, topic, now):
            result.creates.append(MatchedPost(uri=op.uri, cid=op.cid, indexed_at=iso_timestamp(now)))
    return result
