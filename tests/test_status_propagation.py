"""Tests for status events, the Redis Streams status bus, and the propagator."""

from __future__ import annotations

import uuid
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.insights.events.bus import StatusBus, stream_id_key
from src.insights.events.propagator import StatusPropagator
from src.insights.events.schemas import StatusEntity, StatusEvent
from src.insights.meetings.repository import StatusTransitionError
from src.insights.meetings.schemas import AnalysisStatus, MeetingStatus

MEETING_ID = str(uuid.uuid4())
ANALYSIS_ID = str(uuid.uuid4())


def _event(**overrides) -> StatusEvent:
    params = {
        "meeting_id": MEETING_ID,
        "entity": StatusEntity.ANALYSIS,
        "status": "failed",
        "analysis_id": ANALYSIS_ID,
        "error_message": "OpenAI API quota exceeded.",
        "error_code": "transcription_quota_exceeded",
    }
    params.update(overrides)
    return StatusEvent(**params)


# ── Schema ───────────────────────────────────────────────────────────────────


class TestStatusEvent:
    def test_stream_dict_is_flat_strings(self):
        data = _event(analysis_id=None, error_message=None, error_code=None).to_stream_dict()
        assert all(isinstance(v, str) for v in data.values())
        assert data["analysis_id"] == ""

    def test_from_stream_dict_restores_optionals(self):
        original = _event()
        restored = StatusEvent.from_stream_dict(original.to_stream_dict(), stream_id="5-0")

        assert restored.event_id == original.event_id
        assert restored.entity == StatusEntity.ANALYSIS
        assert restored.error_code == "transcription_quota_exceeded"
        assert restored.timestamp == original.timestamp
        assert restored.stream_id == "5-0"

        bare = StatusEvent.from_stream_dict(
            _event(analysis_id=None, error_message=None, error_code=None).to_stream_dict()
        )
        assert bare.analysis_id is None
        assert bare.error_message is None
        assert isinstance(bare.timestamp, datetime)


# ── StatusBus ────────────────────────────────────────────────────────────────


class TestStatusBus:
    def test_stream_key_format(self):
        assert StatusBus.stream_key("abc") == "meetings:abc:status"

    def test_stream_ids_order_numerically(self):
        assert stream_id_key("1700000000000-10") > stream_id_key("1700000000000-9")
        assert stream_id_key("10-0") > stream_id_key("9-5")
        assert stream_id_key("12") == (12, 0)
        assert stream_id_key("$") == (0, 0)

    async def test_publish_calls_xadd_with_trimming(self):
        redis = AsyncMock()
        redis.xadd = AsyncMock(return_value="1700000000000-0")
        bus = StatusBus(redis, maxlen=250)

        message_id = await bus.publish(_event())

        assert message_id == "1700000000000-0"
        args, kwargs = redis.xadd.call_args
        assert args[0] == f"meetings:{MEETING_ID}:status"
        assert args[1]["status"] == "failed"
        assert kwargs == {"maxlen": 250, "approximate": True}

    async def test_history_reads_whole_stream(self):
        redis = AsyncMock()
        redis.xrange = AsyncMock(
            return_value=[
                ("1-0", _event(entity=StatusEntity.MEETING, status="processing").to_stream_dict()),
                ("2-0", _event(entity=StatusEntity.MEETING, status="failed").to_stream_dict()),
            ]
        )
        events = await StatusBus(redis).history(MEETING_ID)

        redis.xrange.assert_awaited_once_with(f"meetings:{MEETING_ID}:status")
        assert [(e.stream_id, e.status) for e in events] == [("1-0", "processing"), ("2-0", "failed")]

    async def test_listen_resumes_after_last_seen_id(self):
        key = f"meetings:{MEETING_ID}:status"
        redis = AsyncMock()
        redis.xread = AsyncMock(
            side_effect=[
                [[key, [("1-0", _event(status="processing").to_stream_dict())]]],
                [],
                [[key, [("3-0", _event(status="ready").to_stream_dict())]]],
            ]
        )
        bus = StatusBus(redis)

        received = []
        async for event in bus.listen(MEETING_ID, last_id="0", block_ms=10):
            received.append(event)
            if len(received) == 2:
                break

        assert [e.status for e in received] == ["processing", "ready"]
        streams = [call.args[0] for call in redis.xread.call_args_list]
        assert streams == [{key: "0"}, {key: "1-0"}, {key: "1-0"}]


# ── StatusPropagator ─────────────────────────────────────────────────────────


class TestStatusPropagator:
    async def test_meeting_status_written_then_published(self, repo, bus, meeting):
        propagator = StatusPropagator(repo, bus)
        meeting_id = str(meeting.id)

        updated = await propagator.set_meeting_status(
            meeting_id, MeetingStatus.PROCESSING, analysis_id=ANALYSIS_ID
        )

        assert updated.status == MeetingStatus.PROCESSING
        assert repo.meetings[meeting_id].status == MeetingStatus.PROCESSING
        assert bus.trail(meeting_id) == [("meeting", "processing")]
        assert bus.events[0].analysis_id == ANALYSIS_ID

    async def test_analysis_event_carries_error(self, repo, bus, meeting):
        propagator = StatusPropagator(repo, bus)
        await propagator.analysis_changed(
            str(meeting.id),
            ANALYSIS_ID,
            AnalysisStatus.FAILED,
            error_message="boom",
            error_code="unknown",
        )
        event = bus.events[0]
        assert event.entity == StatusEntity.ANALYSIS
        assert event.status == "failed"
        assert (event.error_message, event.error_code) == ("boom", "unknown")

    async def test_publish_failure_does_not_raise(self, repo, bus, meeting):
        bus.fail = RedisConnectionError("redis down")
        propagator = StatusPropagator(repo, bus)
        meeting_id = str(meeting.id)

        await propagator.set_meeting_status(meeting_id, MeetingStatus.PROCESSING)

        assert repo.meetings[meeting_id].status == MeetingStatus.PROCESSING
        assert bus.events == []

    async def test_terminal_meeting_not_moved(self, repo, bus, meeting):
        propagator = StatusPropagator(repo, bus)
        meeting_id = str(meeting.id)
        await propagator.set_meeting_status(meeting_id, MeetingStatus.PROCESSING)
        await propagator.set_meeting_status(meeting_id, MeetingStatus.COMPLETED)

        with pytest.raises(StatusTransitionError):
            await propagator.set_meeting_status(meeting_id, MeetingStatus.PROCESSING)

        assert repo.meetings[meeting_id].status == MeetingStatus.COMPLETED
        assert bus.trail(meeting_id) == [("meeting", "processing"), ("meeting", "completed")]
