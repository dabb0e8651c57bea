"""YouTube-to-MP3 conversion service."""

__version__ = "1.0.0"
