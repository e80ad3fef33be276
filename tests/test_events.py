"""Unit tests for events.py - Resource event recording."""

import logging

import pytest

from events import (
    EVENT_NORMAL,
    EVENT_WARNING,
    REASON_HEALTH_ERROR,
    REASON_SYNCED,
    Event,
    EventRecorder,
)
from resources import KIND_RADARR, KIND_SONARR, Resource


@pytest.fixture
def tv():
    return Resource(kind=KIND_SONARR, namespace="media", name="tv")


@pytest.fixture
def movies():
    return Resource(kind=KIND_RADARR, namespace="media", name="movies")


class TestEvent:
    """Tests for the Event dataclass."""

    def test_involved_object(self):
        event = Event(
            type=EVENT_NORMAL,
            reason=REASON_SYNCED,
            message="Applied 2 changes",
            kind=KIND_SONARR,
            namespace="media",
            name="tv",
        )
        assert event.involved_object == "SonarrConfig/media/tv"

    def test_to_dict_timestamp_iso8601(self):
        event = Event(
            type=EVENT_WARNING,
            reason=REASON_HEALTH_ERROR,
            message="[IndexerStatusCheck] down",
            kind=KIND_SONARR,
            namespace="media",
            name="tv",
        )
        data = event.to_dict()
        assert data["reason"] == "HealthError"
        assert isinstance(data["timestamp"], str)
        assert "T" in data["timestamp"]


# ==================== EventRecorder tests ====================


class TestEventRecorder:
    """Tests for recording and history."""

    def test_records_event_about_resource(self, tv):
        recorder = EventRecorder()
        event = recorder.normal(tv, REASON_SYNCED, "Applied 2 changes")

        assert event.type == EVENT_NORMAL
        assert event.kind == KIND_SONARR
        assert event.namespace == "media"
        assert event.name == "tv"
        assert recorder.history() == [event]

    def test_warning_is_logged_as_warning(self, tv, caplog):
        recorder = EventRecorder()
        with caplog.at_level(logging.WARNING, logger="events"):
            recorder.warning(tv, REASON_HEALTH_ERROR, "[UpdateCheck] failed")

        assert "[SonarrConfig/media/tv] HealthError: [UpdateCheck] failed" in (
            caplog.text
        )

    def test_history_filters(self, tv, movies):
        recorder = EventRecorder()
        recorder.normal(tv, REASON_SYNCED, "Applied 1 changes")
        recorder.warning(tv, REASON_HEALTH_ERROR, "[x] y")
        recorder.normal(movies, REASON_SYNCED, "Applied 3 changes")

        assert len(recorder.history(resource=tv)) == 2
        assert len(recorder.history(reason=REASON_SYNCED)) == 2
        (only,) = recorder.history(resource=movies, reason=REASON_SYNCED)
        assert only.message == "Applied 3 changes"

    def test_history_is_bounded(self, tv):
        recorder = EventRecorder(history_size=2)
        for i in range(5):
            recorder.normal(tv, REASON_SYNCED, f"Applied {i} changes")

        assert [e.message for e in recorder.history()] == [
            "Applied 3 changes",
            "Applied 4 changes",
        ]

