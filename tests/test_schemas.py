"""Tests for upstream payload validation."""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from lifelog_ingestor.utils.schemas import IngestionWindow, LifelogEntry, format_timestamp, parse_timestamp


class TestLifelogEntry:
    def test_created_at_from_camel_case(self):
        entry = LifelogEntry.from_payload({"id": "a", "createdAt": "2024-01-01T00:00:00Z"})
        assert entry.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_created_at_falls_back_to_start_time(self):
        entry = LifelogEntry.from_payload({"id": "a", "startTime": "2024-02-03T04:05:06+02:00"})
        assert entry.created_at == datetime(2024, 2, 3, 2, 5, 6, tzinfo=timezone.utc)

    def test_missing_created_at_uses_now(self):
        before = datetime.now(timezone.utc)
        entry = LifelogEntry.from_payload({"id": "a", "createdAt": None})
        assert entry.created_at >= before

    def test_naive_timestamp_is_utc(self):
        entry = LifelogEntry.from_payload({"id": "a", "created_at": "2024-01-01T10:00:00"})
        assert entry.created_at.tzinfo == timezone.utc
        assert entry.created_at.hour == 10

    def test_raw_payload_keeps_unknown_keys(self):
        payload = {"id": "a", "title": "t", "isStarred": True, "updatedAt": "2024-01-01T00:00:00Z"}
        entry = LifelogEntry.from_payload(payload)
        assert entry.raw_payload == payload

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            LifelogEntry.from_payload({"id": ""})

    def test_contents_accept_upstream_aliases(self):
        entry = LifelogEntry.from_payload(
            {
                "id": "a",
                "contents": [
                    {
                        "type": "heading1",
                        "content": "Standup",
                        "children": [
                            {
                                "type": "blockquote",
                                "content": "Morning",
                                "speakerName": "Sam",
                                "speakerIdentifier": "user",
                                "startOffsetMs": 0,
                                "endOffsetMs": 1500,
                            }
                        ],
                    }
                ],
            }
        )
        child = entry.contents[0].children[0]
        assert child.speaker_name == "Sam"
        assert child.speaker_identifier == "user"
        assert child.end_offset_ms == 1500

    def test_null_contents_become_empty(self):
        assert LifelogEntry.from_payload({"id": "a", "contents": None}).contents == []


def test_timestamps_are_fixed_width():
    with_micro = format_timestamp(datetime(2024, 1, 1, 0, 0, 0, 5, tzinfo=timezone.utc))
    without_micro = format_timestamp(datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc))
    assert len(with_micro) == len(without_micro)
    assert with_micro < without_micro
    assert parse_timestamp(without_micro) == datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)


def test_window_params_drop_empty_bounds():
    window = IngestionWindow(start="2024-01-01", timezone="UTC")
    assert window.to_params() == {"start": "2024-01-01", "timezone": "UTC"}
