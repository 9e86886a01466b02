"""
Unit tests for outcome classifiers.
"""

import pytest
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from advanced_request.outcomes import (
    Attempt,
    DefaultClassifier,
    Fail,
    Finish,
    OutcomeClassifier,
    ResponseClassifier,
)


def make_attempt(status_code=200, body="payload", headers=None):
    return Attempt(
        name="X",
        url="https://api.example.com/x",
        method="GET",
        attempt_number=1,
        status_code=status_code,
        headers=headers or {},
        body=body
    )


class TestDefaultClassifier:
    """Test cases for DefaultClassifier."""

    def test_always_finishes(self):
        """Test that any response finishes with its body."""
        classifier = DefaultClassifier()

        assert classifier.classify(make_attempt(500, "")) == Finish("")
        assert classifier.classify(make_attempt(200, b"\x00\x01")) == Finish(b"\x00\x01")

    def test_is_outcome_classifier(self):
        """Test the classifier interface."""
        assert isinstance(DefaultClassifier(), OutcomeClassifier)

    def test_abstract_interface(self):
        """Test that the base class cannot be instantiated."""
        with pytest.raises(TypeError):
            OutcomeClassifier()


class TestResponseClassifier:
    """Test cases for ResponseClassifier."""

    @pytest.fixture
    def classifier(self):
        """Create a classifier with a rate-limit marker."""
        return ResponseClassifier(
            rate_limit_markers=["You are doing that too often"],
            rate_limit_delay=3600,
            server_error_delay=10,
            blank_delay=5
        )

    def test_success(self, classifier):
        """Test that a normal response finishes."""
        assert classifier.classify(make_attempt()) == Finish("payload")

    def test_blank_body_fails(self, classifier):
        """Test that blank bodies are retried."""
        outcome = classifier.classify(make_attempt(body="  \n"))

        assert isinstance(outcome, Fail)
        assert outcome.delay_seconds == 5
        assert "blank" in outcome.reason

    def test_blank_allowed(self):
        """Test that blank bodies can be accepted."""
        classifier = ResponseClassifier(allow_blank=True)

        assert classifier.classify(make_attempt(body="")) == Finish("")

    def test_rate_limit_status(self, classifier):
        """Test 429 without Retry-After."""
        outcome = classifier.classify(make_attempt(429, "slow down"))

        assert outcome.delay_seconds == 3600
        assert "429" in outcome.reason

    def test_rate_limit_retry_after_seconds(self, classifier):
        """Test 429 with Retry-After in seconds, matched case-insensitively."""
        outcome = classifier.classify(make_attempt(429, "", headers={"retry-after": "30"}))

        assert outcome.delay_seconds == 30

    def test_rate_limit_retry_after_date(self, classifier):
        """Test 429 with Retry-After as an HTTP date."""
        when = datetime.now(timezone.utc) + timedelta(seconds=120)
        outcome = classifier.classify(
            make_attempt(429, "", headers={"Retry-After": format_datetime(when, usegmt=True)})
        )

        assert 100 <= outcome.delay_seconds <= 120

    def test_rate_limit_retry_after_garbage(self, classifier):
        """Test that an unparseable Retry-After falls back to the default delay."""
        outcome = classifier.classify(make_attempt(429, "", headers={"Retry-After": "soon"}))

        assert outcome.delay_seconds == 3600

    def test_rate_limit_marker(self, classifier):
        """Test that a rate-limit message in a 200 body is retried."""
        outcome = classifier.classify(make_attempt(200, "Error: You are doing that too often"))

        assert isinstance(outcome, Fail)
        assert outcome.delay_seconds == 3600

    def test_rate_limit_marker_in_bytes(self, classifier):
        """Test marker detection in binary bodies."""
        outcome = classifier.classify(make_attempt(200, b"You are doing that too often"))

        assert isinstance(outcome, Fail)

    @pytest.mark.parametrize("status_code", [500, 502, 503, 504])
    def test_server_errors(self, classifier, status_code):
        """Test that 5xx statuses are retried."""
        outcome = classifier.classify(make_attempt(status_code, "oops"))

        assert outcome.delay_seconds == 10
        assert str(status_code) in outcome.reason

    def test_client_error_finishes(self, classifier):
        """Test that other statuses are left to the caller."""
        assert classifier.classify(make_attempt(404, "not here")) == Finish("not here")
