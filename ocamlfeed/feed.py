"""getFeedSkeleton algorithms, keyed by the feed record's short name."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from ocamlfeed.errors import InvalidCursor
from ocamlfeed.events import iso_timestamp
from ocamlfeed.store import PostStore

SHORTNAME = "ocaml"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def encode_cursor(indexed_at: str, cid: str) -> str:
    moment = datetime.fromisoformat(indexed_at.replace("Z", "+00:00"))
    millis = (moment - _EPOCH) // timedelta(milliseconds=1)
    return f"{millis}::{cid}"


def decode_cursor(cursor: str) -> Tuple[str, str]:
    """Return the ``(indexed_at, cid)`` bound encoded in ``cursor``."""
    millis, sep, cid = cursor.partition("::")
    if not sep or not cid:
        raise InvalidCursor("malformed cursor")
    try:
        moment = _EPOCH + timedelta(milliseconds=int(millis))
    except (ValueError, OverflowError):
        raise InvalidCursor("malformed cursor") from None
    return iso_timestamp(moment), cid


def ocaml_handler(post_store: PostStore, limit: int, cursor: Optional[str] = None) -> Dict[str, Any]:
    before = decode_cursor(cursor) if cursor else None
    posts = post_store.page(limit, before)

    skeleton: Dict[str, Any] = {"feed": [{"post": post.uri} for post in posts]}
    if posts:
        last = posts[-1]
        skeleton["cursor"] = encode_cursor(last.indexed_at, last.cid)
    return skeleton


AlgoHandler = Callable[[PostStore, int, Optional[str]], Dict[str, Any]]

ALGOS: Dict[str, AlgoHandler] = {
    SHORTNAME: ocaml_handler,
}
