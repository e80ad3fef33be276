"""Unit tests for conditions.py - Status condition merging."""

from datetime import datetime, timedelta, timezone

from conditions import (
    CONDITION_CONNECTED,
    CONDITION_READY,
    CONDITION_SYNCED,
    STATUS_FALSE,
    STATUS_TRUE,
    Condition,
    find_condition,
    is_condition_true,
    set_condition,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
T1 = T0 + timedelta(minutes=5)


class TestSetCondition:
    """Tests for set_condition."""

    def test_appends_new_type(self):
        """Test a new condition type is appended with the current time."""
        result = set_condition([], CONDITION_READY, STATUS_TRUE, "Ready", "ok", now=T0)

        assert len(result) == 1
        assert result[0].type == CONDITION_READY
        assert result[0].last_transition_time == T0

    def test_same_status_keeps_transition_time(self):
        """Test reason and message change without moving the timestamp."""
        first = set_condition([], CONDITION_READY, STATUS_TRUE, "Ready", "a", now=T0)
        second = set_condition(
            first, CONDITION_READY, STATUS_TRUE, "Synced", "b", now=T1
        )

        assert second[0].last_transition_time == T0
        assert second[0].reason == "Synced"
        assert second[0].message == "b"

    def test_status_change_moves_transition_time(self):
        """Test flipping the status records a new transition."""
        first = set_condition([], CONDITION_READY, STATUS_TRUE, "Ready", "a", now=T0)
        second = set_condition(
            first, CONDITION_READY, STATUS_FALSE, "ConnectionFailed", "b", now=T1
        )

        assert second[0].last_transition_time == T1
        assert second[0].status == STATUS_FALSE

    def test_idempotent(self):
        """Test applying the same condition twice yields the same list."""
        first = set_condition([], CONDITION_SYNCED, STATUS_TRUE, "InSync", "ok", now=T0)
        second = set_condition(
            first, CONDITION_SYNCED, STATUS_TRUE, "InSync", "ok", now=T1
        )

        assert second == first

    def test_order_preserved(self):
        """Test existing entries keep their position when replaced."""
        conditions = [
            Condition(type=CONDITION_CONNECTED, status=STATUS_TRUE),
            Condition(type=CONDITION_READY, status=STATUS_FALSE),
            Condition(type=CONDITION_SYNCED, status=STATUS_TRUE),
        ]

        result = set_condition(conditions, CONDITION_READY, STATUS_TRUE, "Ready", "")

        assert [c.type for c in result] == [
            CONDITION_CONNECTED,
            CONDITION_READY,
            CONDITION_SYNCED,
        ]
        assert conditions[1].status == STATUS_FALSE

    def test_observed_generation(self):
        result = set_condition(
            [], CONDITION_READY, STATUS_TRUE, "Ready", "", observed_generation=4
        )
        assert result[0].observed_generation == 4


class TestFindCondition:
    """Tests for condition lookups."""

    def test_find_missing(self):
        assert find_condition([], CONDITION_READY) is None

    def test_is_condition_true(self):
        conditions = set_condition([], CONDITION_READY, STATUS_TRUE, "Ready", "")
        assert is_condition_true(conditions, CONDITION_READY) is True
        assert is_condition_true(conditions, CONDITION_SYNCED) is False

    def test_camel_case_document(self):
        """Test conditions round-trip through their stored camelCase shape."""
        conditions = set_condition(
            [], CONDITION_READY, STATUS_TRUE, "Ready", "", now=T0
        )
        document = conditions[0].model_dump(by_alias=True, mode="json")

        assert "lastTransitionTime" in document
        restored = Condition.model_validate(document)
        assert restored.last_transition_time == T0
