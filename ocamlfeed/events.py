"""Typed commit events handed from the firehose to the classifier."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

# Collection name of a Bluesky post record.
POST_COLLECTION = "app.bsky.feed.post"


def at_uri(repo: str, path: str) -> str:
    """Build the record URI for ``path`` (``collection/rkey``) in ``repo``."""
    return f"at://{repo}/{path}"


@dataclass(frozen=True)
class CreateOp:
    collection: str
    uri: str
    cid: str
    record: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteOp:
    collection: str
    uri: str
    cid: Optional[str] = None


Operation = Union[CreateOp, DeleteOp]


@dataclass(frozen=True)
class CommitEvent:
    """One commit from the firehose: a sequence number, a repo and its ops."""

    seq: int
    repo: str
    ops: Tuple[Operation, ...] = ()


@dataclass(frozen=True)
class MatchedPost:
    uri: str
    cid: str
    indexed_at: str

    def as_row(self) -> Dict[str, str]:
        return {"uri": self.uri, "cid": self.cid, "indexed_at": self.indexed_at}


def iso_timestamp(moment: datetime) -> str:
    """Millisecond UTC timestamp, e.g. ``2024-05-01T12:00:00.000Z``."""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
