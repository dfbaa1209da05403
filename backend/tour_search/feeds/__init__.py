"""External feed loading, normalization and selection."""

from .loader import FeedError, FeedLoader, FeedPayload, rewrite_sheet_url
from .normalizer import ExternalFeedNormalizer
from .selection import FeedSelection, select_feeds

__all__ = [
    "ExternalFeedNormalizer",
    "FeedError",
    "FeedLoader",
    "FeedPayload",
    "FeedSelection",
    "rewrite_sheet_url",
    "select_feeds",
]
