"""YouTube URL validation, normalization and cache hashing."""

import hashlib
import re

from converter_api.core.errors import InvalidSourceUrlError

_YOUTUBE_URL_RE = re.compile(
    r"^https?://(?:(?:www|m|music)\.)?"
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|shorts/|embed/|live/)|youtu\.be/)"
    r"[\w-]+"
)
_VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|shorts/|embed/|live/)|youtu\.be/)"
    r"([A-Za-z0-9_-]{11})(?![A-Za-z0-9_-])"
)

CANONICAL_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


def is_valid_youtube_url(url: str) -> bool:
    """Check that the URL has the shape of a single YouTube video URL."""
    if not url:
        return False
    return bool(_YOUTUBE_URL_RE.match(url.strip()))


def extract_video_id(url: str) -> str | None:
    """Extract the 11-character video id, or None."""
    if not url:
        return None
    match = _VIDEO_ID_RE.search(url.strip())
    return match.group(1) if match else None


def normalize_url(video_id: str) -> str:
    return CANONICAL_WATCH_URL.format(video_id=video_id)


def cache_key(normalized_url: str) -> str:
    """Content-address a normalized URL for the result cache."""
    return hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()


def validate_source_url(url: str | None) -> tuple[str, str]:
    """
    Validate a submitted URL.

    Returns:
        (video_id, normalized_url)

    Raises:
        InvalidSourceUrlError: If the URL is empty, not YouTube-shaped, or
            carries no extractable video id
    """
    if not url or not url.strip():
        raise InvalidSourceUrlError("URL is required")
    if not is_valid_youtube_url(url):
        raise InvalidSourceUrlError("Invalid YouTube URL")
    video_id = extract_video_id(url)
    if video_id is None:
        raise InvalidSourceUrlError("Cannot extract video ID")
    return video_id, normalize_url(video_id)
