class FeedError(Exception):
    """Base class for errors raised by the feed generator."""


class ConfigError(FeedError):
    """Raised when an environment setting cannot be read."""


class InvalidCursor(FeedError):
    """Raised when a feed cursor is not in ``<millis>::<cid>`` form."""


class UnsupportedAlgorithm(FeedError):
    """Raised when a feed URI names an algorithm we do not serve."""
