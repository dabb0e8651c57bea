"""Deterministic classification of backend diagnostics into retry classes."""

from dataclasses import dataclass
from enum import Enum
import re

from converter_api.core.errors import BackendError, PermanentBackendError, TransientBackendError


class FailureClass(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Patterns are regexes matched against the lowercased diagnostic. Status codes
# and short words carry word boundaries so byte counts, offsets and ordinary
# prose do not trigger a rule.
_UNAVAILABLE_PATTERNS: tuple[str, ...] = (
    r"\bvideo unavailable\b",
    r"\bthis video is unavailable\b",
    r"\bhas been removed\b",
    r"\baccount associated with this video has been terminated\b",
    r"\bvideo does not exist\b",
    r"\bvideo not found\b",
    r"\bhttp error 404\b",
    r"\b404 not found\b",
)
_ACCESS_PATTERNS: tuple[str, ...] = (
    r"\bprivate video\b",
    r"\bvideo is private\b",
    r"\bsign in to confirm your age\b",
    r"\bage[- ]?restricted\b",
    r"\bmembers[- ]only\b",
    r"\bjoin this channel\b",
    r"\bhttp error 403\b",
    r"\b403 forbidden\b",
)
_REGION_PATTERNS: tuple[str, ...] = (
    r"\bnot available in your (country|region)\b",
    r"\bblocked it in your country\b",
    r"\bgeo[- ]?restricted\b",
    r"\bregion\b.*\bnot available\b",
    r"\bnot available\b.*\bregion\b",
)
_LIVE_PATTERNS: tuple[str, ...] = (
    r"\blive event will begin\b",
    r"\bpremieres in\b",
    r"\bis a live stream\b",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    r"\btoo many requests\b",
    r"\brate[- ]?limit",
    r"\bhttp error 429\b",
    r"\b429\b",
    r"\btry again later\b",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    r"\btimed out\b",
    r"\btimeout\b",
    r"\bconnection (reset|refused|aborted)\b",
    r"\btemporary failure in name resolution\b",
    r"\btemporarily unavailable\b",
    r"\bnetwork is unreachable\b",
    r"\bremote end closed connection\b",
    r"\bincomplete ?read\b",
    r"\bhttp error 50[0234]\b",
    r"\b50[0234] (internal server error|bad gateway|service unavailable|gateway timeout)\b",
)

_Rules = tuple[tuple[str, tuple[re.Pattern[str], ...]], ...]


def _compile(*rules: tuple[str, tuple[str, ...]]) -> _Rules:
    return tuple(
        (reason_code, tuple(re.compile(pattern) for pattern in patterns))
        for reason_code, patterns in rules
    )


# Permanent rules are checked first: a diagnostic matching both wins as permanent
_PERMANENT_RULES = _compile(
    ("access_restricted", _ACCESS_PATTERNS),
    ("region_restricted", _REGION_PATTERNS),
    ("live_or_upcoming", _LIVE_PATTERNS),
    ("video_unavailable", _UNAVAILABLE_PATTERNS),
)
_TRANSIENT_RULES = _compile(
    ("rate_limited", _RATE_LIMIT_PATTERNS),
    ("network", _NETWORK_PATTERNS),
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None = None

    @property
    def is_transient(self) -> bool:
        return self.failure_class == FailureClass.TRANSIENT


def classify_failure(
    message: str,
    *,
    default: FailureClass = FailureClass.TRANSIENT,
) -> FailureClassification:
    """
    Classify a backend diagnostic (stderr, provider message, exception text).

    Unrecognized diagnostics fall back to ``default``: subprocess crashes
    are usually worth another attempt, explicit provider failures are not.
    """
    haystack = (message or "").lower()

    for reason_code, patterns in _PERMANENT_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(FailureClass.PERMANENT, reason_code, pattern)

    for reason_code, patterns in _TRANSIENT_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(FailureClass.TRANSIENT, reason_code, pattern)

    return FailureClassification(default, "unclassified")


def error_for(
    message: str,
    *,
    default: FailureClass = FailureClass.TRANSIENT,
) -> BackendError:
    """Build the typed backend error matching the classification of ``message``."""
    classification = classify_failure(message, default=default)
    error_cls = TransientBackendError if classification.is_transient else PermanentBackendError
    return error_cls(message, reason_code=classification.reason_code)


def _first_match(haystack: str, patterns: tuple[re.Pattern[str], ...]) -> str | None:
    for pattern in patterns:
        if pattern.search(haystack):
            return pattern.pattern
    return None
