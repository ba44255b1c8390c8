"""Media resolution for model requests."""

from parley.media.fetcher import (
    MediaDownloadError,
    MediaError,
    MediaFetcher,
    PlatformMediaFetcher,
    TranscodeError,
)

__all__ = [
    "MediaFetcher",
    "PlatformMediaFetcher",
    "MediaError",
    "MediaDownloadError",
    "TranscodeError",
]
