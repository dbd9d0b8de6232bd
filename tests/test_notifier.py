"""
Tests for the insights_updated broadcaster.

Covers:
- event envelope
- missing webhook guard
- HTTP failure handling (never raises)
"""
import os
import sys
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models import InsightBundle, Priority, Recommendation, RecommendationKind
from notifier import broadcast_insights_update, build_event


def _bundle():
    rec = Recommendation(kind=RecommendationKind.TREND, priority=Priority.LOW,
                         message="This metric is stable - maintain current approach",
                         related_metric_ids=(3,))
    return InsightBundle(correlations=(), trends=(), patterns=(), recommendations=(rec,),
                         generated_at=datetime(2024, 2, 1, tzinfo=timezone.utc))


class TestBuildEvent:

    def test_envelope(self):
        event = build_event(9, _bundle())
        assert event["topic"] == "user:9"
        assert event["event"] == "insights_updated"
        assert event["payload"]["recommendations"][0]["metrics"] == [3]
        assert event["payload"]["generated_at"] == "2024-02-01T00:00:00+00:00"


class TestBroadcast:

    def test_no_url_skips(self):
        with patch("notifier.WEBHOOK_URL", ""), patch("notifier.requests.post") as post:
            assert broadcast_insights_update(9, _bundle()) is False
        post.assert_not_called()

    def test_posts_event(self):
        response = MagicMock()
        with patch("notifier.requests.post", return_value=response) as post:
            assert broadcast_insights_update(9, _bundle(), url="http://hooks.local/insights") is True
        args, kwargs = post.call_args
        assert args[0] == "http://hooks.local/insights"
        assert kwargs["json"]["topic"] == "user:9"
        assert "timeout" in kwargs
        response.raise_for_status.assert_called_once()

    def test_uses_configured_url(self):
        with patch("notifier.WEBHOOK_URL", "http://configured/hook"), \
                patch("notifier.requests.post") as post:
            assert broadcast_insights_update(9, _bundle()) is True
        assert post.call_args[0][0] == "http://configured/hook"

    def test_connection_error_returns_false(self):
        with patch("notifier.requests.post", side_effect=requests.ConnectionError("refused")):
            assert broadcast_insights_update(9, _bundle(), url="http://hooks.local") is False

    def test_http_error_returns_false(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("502")
        with patch("notifier.requests.post", return_value=response):
            assert broadcast_insights_update(9, _bundle(), url="http://hooks.local") is False
