"""Process entry point: firehose subscription plus the feed HTTP server."""

import logging
import threading

import uvicorn

from ocamlfeed.classifier import Topic
from ocamlfeed.config import Settings
from ocamlfeed.dispatch import PersistenceDispatcher
from ocamlfeed.firehose import FirehoseEventSource
from ocamlfeed.server import create_app
from ocamlfeed.store import CursorStore, Database, PostStore
from ocamlfeed.subscription import FirehoseSubscription

logger = logging.getLogger(__name__)


def build_subscription(settings: Settings, db: Database) -> FirehoseSubscription:
    return FirehoseSubscription(
        source=FirehoseEventSource(settings.subscription_endpoint),
        cursor_store=CursorStore(db, settings.subscription_endpoint),
        dispatcher=PersistenceDispatcher(PostStore(db), workers=settings.dispatch_workers),
        topic=Topic(settings.topic_keyword, settings.topic_marker),
        reconnect_delay=settings.reconnect_delay,
    )


def main():
    settings = Settings.from_env()

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    # Create the post and cursor tables if this is a fresh database.
    db = Database(settings.database_url)
    db.create_all()

    subscription = build_subscription(settings, db)
    consumer = threading.Thread(target=subscription.run, name="firehose-subscription", daemon=True)
    consumer.start()

    app = create_app(settings, PostStore(db))
    logger.info(f"Feed generator listening on http://{settings.listen_host}:{settings.port}")
    try:
        uvicorn.run(app, host=settings.listen_host, port=settings.port, log_level=settings.log_level.lower())
    finally:
        # Stop intake first, then let queued writes reach the store.
        subscription.stop()
        consumer.join(timeout=settings.reconnect_delay + 5)
        subscription.dispatcher.close()
        db.dispose()


if __name__ == "__main__":
    main()
