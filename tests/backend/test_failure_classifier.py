"""Unit tests for backend failure classification."""

import pytest

from converter_api.conversion.failure_classifier import (
    FailureClass,
    classify_failure,
    error_for,
)
from converter_api.core.errors import PermanentBackendError, TransientBackendError


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "message, reason_code",
        [
            ("ERROR: [youtube] abc: Video unavailable", "video_unavailable"),
            ("ERROR: [youtube] abc: Private video. Sign in if you've been granted access", "access_restricted"),
            ("Sign in to confirm your age. This video may be inappropriate", "access_restricted"),
            ("This video is not available in your country", "region_restricted"),
            ("This live event will begin in 3 hours", "live_or_upcoming"),
            ("HTTP Error 403: Forbidden", "access_restricted"),
        ],
    )
    def test_permanent_diagnostics(self, message, reason_code):
        classification = classify_failure(message)

        assert classification.failure_class == FailureClass.PERMANENT
        assert classification.reason_code == reason_code
        assert classification.matched_pattern is not None

    @pytest.mark.parametrize(
        "message, reason_code",
        [
            ("HTTP Error 429: Too Many Requests", "rate_limited"),
            ("Read timed out. (read timeout=20)", "network"),
            ("[Errno 104] Connection reset by peer", "network"),
            ("Temporary failure in name resolution", "network"),
            ("HTTP Error 503: Service Unavailable", "network"),
        ],
    )
    def test_transient_diagnostics(self, message, reason_code):
        classification = classify_failure(message)

        assert classification.is_transient
        assert classification.reason_code == reason_code

    @pytest.mark.parametrize(
        "message, reason_code",
        [
            ("ERROR: IncompleteRead(4045 bytes read, 1000 more expected)", "network"),
            ("Connection timed out while reading region 2 of 5", "network"),
            ("Read timed out after 4031 bytes", "network"),
            ("HTTP Error 502: Bad Gateway (fragment 404 of 1403)", "network"),
        ],
    )
    def test_incidental_numbers_and_words_stay_transient(self, message, reason_code):
        classification = classify_failure(message)

        assert classification.is_transient
        assert classification.reason_code == reason_code

    @pytest.mark.parametrize(
        "message",
        [
            "HTTP Error 404: Not Found",
            "The uploader has not made this video available in your region (not available)",
            "Video is geo-restricted",
            "Video is georestricted",
        ],
    )
    def test_bounded_permanent_patterns_still_match(self, message):
        assert classify_failure(message).failure_class == FailureClass.PERMANENT

    def test_permanent_wins_over_transient(self):
        classification = classify_failure("Video unavailable (after connection reset)")

        assert classification.failure_class == FailureClass.PERMANENT

    def test_unrecognized_uses_default(self):
        assert classify_failure("segfault").failure_class == FailureClass.TRANSIENT
        assert (
            classify_failure("segfault", default=FailureClass.PERMANENT).failure_class
            == FailureClass.PERMANENT
        )
        assert classify_failure("").reason_code == "unclassified"


class TestErrorFor:
    def test_builds_transient_error(self):
        error = error_for("Connection reset by peer")

        assert isinstance(error, TransientBackendError)
        assert error.reason_code == "network"
        assert str(error) == "Connection reset by peer"

    def test_builds_permanent_error(self):
        error = error_for("Video unavailable")

        assert isinstance(error, PermanentBackendError)
        assert error.reason_code == "video_unavailable"
