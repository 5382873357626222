"""Settings read from FEEDGEN_* environment variables and an optional .env file."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from ocamlfeed.errors import ConfigError


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///db.sqlite"
    subscription_endpoint: str = "wss://bsky.network"
    reconnect_delay: float = 3.0
    hostname: str = "example.com"
    listen_host: str = "localhost"
    port: int = 3000
    publisher_did: str = "did:example:alice"
    service_did: str = "did:web:example.com"
    topic_keyword: str = "ocaml"
    topic_marker: str = "\N{BACTRIAN CAMEL}"
    dispatch_workers: int = 4
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from the environment, after loading ``.env``."""
        load_dotenv(dotenv_path)

        database_url = os.getenv("FEEDGEN_DATABASE_URL")
        if not database_url:
            location = os.getenv("FEEDGEN_SQLITE_LOCATION") or "db.sqlite"
            database_url = f"sqlite:///{location}"

        hostname = os.getenv("FEEDGEN_HOSTNAME") or cls.hostname

        # FEEDGEN_SUBSCRIPTION_RECONNECT_DELAY is given in milliseconds.
        delay_ms = _int("FEEDGEN_SUBSCRIPTION_RECONNECT_DELAY", 3000)
        if delay_ms < 0:
            raise ConfigError("FEEDGEN_SUBSCRIPTION_RECONNECT_DELAY cannot be negative")

        workers = _int("FEEDGEN_DISPATCH_WORKERS", cls.dispatch_workers)
        if workers < 1:
            raise ConfigError("FEEDGEN_DISPATCH_WORKERS must be at least 1")

        return cls(
            database_url=database_url,
            subscription_endpoint=os.getenv("FEEDGEN_SUBSCRIPTION_ENDPOINT") or cls.subscription_endpoint,
            reconnect_delay=delay_ms / 1000,
            hostname=hostname,
            listen_host=os.getenv("FEEDGEN_LISTENHOST") or cls.listen_host,
            port=_int("FEEDGEN_PORT", cls.port),
            publisher_did=os.getenv("FEEDGEN_PUBLISHER_DID") or cls.publisher_did,
            service_did=os.getenv("FEEDGEN_SERVICE_DID") or f"did:web:{hostname}",
            topic_keyword=os.getenv("FEEDGEN_TOPIC_KEYWORD") or cls.topic_keyword,
            topic_marker=os.getenv("FEEDGEN_TOPIC_MARKER") or cls.topic_marker,
            dispatch_workers=workers,
            log_level=(os.getenv("FEEDGEN_LOG_LEVEL") or cls.log_level).upper(),
        )
