"""Bluesky feed generator that indexes OCaml posts from the firehose."""

from ocamlfeed.classifier import Topic, classify
from ocamlfeed.events import CommitEvent, CreateOp, DeleteOp, MatchedPost
from ocamlfeed.subscription import FirehoseSubscription

__all__ = [
    "CommitEvent",
    "CreateOp",
    "DeleteOp",
    "FirehoseSubscription",
    "MatchedPost",
    "Topic",
    "classify",
]
