"""
HTTP surface of the feed generator.

Endpoints:
- GET /xrpc/app.bsky.feed.getFeedSkeleton
- GET /xrpc/app.bsky.feed.describeFeedGenerator
- GET /.well-known/did.json
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.responses import JSONResponse

from ocamlfeed.config import Settings
from ocamlfeed.errors import FeedError, UnsupportedAlgorithm
from ocamlfeed.feed import ALGOS
from ocamlfeed.store import PostStore

logger = logging.getLogger(__name__)

FEED_GENERATOR_COLLECTION = "app.bsky.feed.generator"


def feed_uri(publisher_did: str, shortname: str) -> str:
    return f"at://{publisher_did}/{FEED_GENERATOR_COLLECTION}/{shortname}"


def resolve_algorithm(settings: Settings, feed: str):
    """Map a feed URI onto one of our algorithms."""
    prefix = f"at://{settings.publisher_did}/{FEED_GENERATOR_COLLECTION}/"
    shortname = feed[len(prefix):] if feed.startswith(prefix) else None
    if shortname not in ALGOS:
        raise UnsupportedAlgorithm(f"Unsupported algorithm: {feed}")
    return ALGOS[shortname]


def create_app(settings: Settings, post_store: PostStore) -> FastAPI:
    app = FastAPI(title="ocaml-feed")

    @app.exception_handler(FeedError)
    async def feed_error_handler(request, exc: FeedError):
        logger.info(f"Rejected {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": type(exc).__name__, "message": str(exc)},
        )

    @app.get("/xrpc/app.bsky.feed.getFeedSkeleton")
    def get_feed_skeleton(
        feed: str,
        limit: int = Query(50, ge=1, le=100),
        cursor: Optional[str] = None,
    ):
        handler = resolve_algorithm(settings, feed)
        return handler(post_store, limit, cursor)

    @app.get("/xrpc/app.bsky.feed.describeFeedGenerator")
    def describe_feed_generator():
        return {
            "did": settings.service_did,
            "feeds": [{"uri": feed_uri(settings.publisher_did, name)} for name in ALGOS],
        }

    @app.get("/.well-known/did.json")
    def did_document():
        if settings.service_did != f"did:web:{settings.hostname}":
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return {
            "@context": ["https://www.w3.org/ns/did/v1"],
            "id": settings.service_did,
            "service": [
                {
                    "id": "#bsky_fg",
                    "type": "BskyFeedGenerator",
                    "serviceEndpoint": f"https://{settings.hostname}",
                }
            ],
        }

    return app
