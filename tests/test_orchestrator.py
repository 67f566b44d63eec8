"""End-to-end tests for PipelineOrchestrator with in-memory collaborators.

Stage clients are AsyncMock doubles; the normalizer, persister and status
propagator are real, running against InMemoryMeetingRepository and
InMemoryStatusBus.
"""

from __future__ import annotations

import json
import uuid

import pytest
from prometheus_client import REGISTRY

from src.insights.meetings.schemas import AnalysisStatus, MeetingStatus
from src.insights.pipeline.errors import (
    DownloadFailure,
    ExtractionRequestFailure,
    FailureCode,
    MeetingNotFound,
    MeetingNotProcessable,
    PipelineAlreadyRunning,
    TranscriptionQuotaExceeded,
)
from src.insights.pipeline.orchestrator import PipelineOrchestrator
from src.insights.pipeline.schemas import ExtractionResult, TokenUsage, TranscriptionResult

AUDIO_PATH = "recordings/q4-planning.m4a"


def _runs(outcome: str, code: str) -> float:
    return (
        REGISTRY.get_sample_value("pipeline_runs_total", {"outcome": outcome, "code": code})
        or 0.0
    )


@pytest.fixture
def orchestrator(pipeline_context) -> PipelineOrchestrator:
    return PipelineOrchestrator(pipeline_context)


def _only_analysis(repo):
    assert len(repo.analyses) == 1
    return next(iter(repo.analyses.values()))


# ── Happy path ───────────────────────────────────────────────────────────────


class TestSuccessfulRun:
    async def test_ready_and_completed(self, orchestrator, repo, meeting):
        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.success is True
        assert outcome.error_code is None
        analysis = _only_analysis(repo)
        assert outcome.analysis_id == analysis.id
        assert analysis.status == AnalysisStatus.READY
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.COMPLETED
        assert len(repo.segments[str(analysis.id)]) == len(analysis.analysis_json.transcript_segments)

    async def test_three_segments_two_action_items(self, orchestrator, repo, meeting):
        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        analysis_id = str(outcome.analysis_id)
        assert len(repo.segments[analysis_id]) == 3
        assert len(repo.action_items[analysis_id]) == 2
        assert outcome.persistence.segments_inserted == 3
        assert outcome.persistence.action_items_inserted == 2

    async def test_analysis_metadata_recorded(self, orchestrator, repo, meeting):
        await orchestrator.run(str(meeting.id), AUDIO_PATH)

        analysis = _only_analysis(repo)
        assert analysis.model == "gpt-4o-mini-2024-07-18"
        assert analysis.token_usage == {
            "transcription_segments": 3,
            "prompt_tokens": 900,
            "completion_tokens": 300,
            "total_tokens": 1200,
        }
        # Mean of the document's segment confidences (0.9, 0.8, 0.7)
        assert analysis.confidence_score == pytest.approx(0.8)
        assert analysis.processing_duration_ms is not None
        assert analysis.raw_transcript["segments"][0]["text"] == "Segment 0."

    async def test_meeting_media_recorded(self, orchestrator, repo, meeting):
        await orchestrator.run(str(meeting.id), AUDIO_PATH)
        stored = repo.meetings[str(meeting.id)]
        assert stored.duration_seconds == 15.0
        assert stored.language == "english"

    async def test_stage_inputs(self, orchestrator, meeting, storage, transcriber, extractor):
        await orchestrator.run(str(meeting.id), AUDIO_PATH)

        storage.download.assert_awaited_once_with(AUDIO_PATH)
        transcriber.transcribe.assert_awaited_once_with(
            b"RIFF....WAVEfmt ", filename="audio.m4a", language="en"
        )
        segments = extractor.extract.call_args.args[0]
        assert [s["text"] for s in segments] == ["Segment 0.", "Segment 1.", "Segment 2."]

    async def test_status_events_in_order(self, orchestrator, bus, meeting):
        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert bus.trail(str(meeting.id)) == [
            ("analysis", "processing"),
            ("meeting", "processing"),
            ("analysis", "ready"),
            ("meeting", "completed"),
        ]
        assert all(e.analysis_id == str(outcome.analysis_id) for e in bus.events)

    async def test_lock_released(self, orchestrator, run_lock, meeting):
        await orchestrator.run(str(meeting.id), AUDIO_PATH)
        assert run_lock.held == set()
        assert run_lock.released == [str(meeting.id)]

    async def test_success_counted(self, orchestrator, meeting):
        before = _runs("success", "none")
        await orchestrator.run(str(meeting.id), AUDIO_PATH)
        assert _runs("success", "none") == before + 1

    async def test_fenced_extraction_output(self, orchestrator, repo, meeting, extractor, sample_analysis):
        extractor.extract.return_value = ExtractionResult(
            content=f"```json\n{json.dumps(sample_analysis)}\n```",
            model="gpt-4o-mini",
            usage=TokenUsage(),
        )
        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)
        assert outcome.success is True
        assert outcome.document.summary == sample_analysis["summary"]


# ── Stage failures ───────────────────────────────────────────────────────────


class TestFailedRun:
    async def test_quota_error_fails_both(self, orchestrator, repo, bus, meeting, transcriber, extractor):
        transcriber.transcribe.side_effect = TranscriptionQuotaExceeded()
        before = _runs("failed", "transcription_quota_exceeded")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        analysis = _only_analysis(repo)
        assert outcome.success is False
        assert outcome.error_code == FailureCode.TRANSCRIPTION_QUOTA_EXCEEDED.value
        assert analysis.status == AnalysisStatus.FAILED
        assert analysis.error_code == "transcription_quota_exceeded"
        assert "quota exceeded" in analysis.error_message
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.FAILED
        extractor.extract.assert_not_awaited()
        assert _runs("failed", "transcription_quota_exceeded") == before + 1

        assert bus.trail(str(meeting.id))[-2:] == [("analysis", "failed"), ("meeting", "failed")]
        assert bus.events[-1].error_code == "transcription_quota_exceeded"

    async def test_non_json_extraction(self, orchestrator, repo, meeting, extractor):
        extractor.extract.return_value = ExtractionResult(
            content="I'm sorry, the transcript is too short to analyze.", model="gpt-4o-mini"
        )

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        analysis = _only_analysis(repo)
        assert outcome.error_code == FailureCode.EXTRACTION_PARSE_FAILED.value
        assert analysis.status == AnalysisStatus.FAILED
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.FAILED
        assert "complete_analysis" not in repo.calls
        assert "insert_transcript_segments" not in repo.calls
        assert "insert_action_items" not in repo.calls

    async def test_invalid_shape_is_validation_failure(self, orchestrator, repo, meeting, extractor):
        extractor.extract.return_value = ExtractionResult(
            content='{"summary": "x", "action_items": "none"}', model="gpt-4o-mini"
        )
        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)
        assert outcome.error_code == FailureCode.EXTRACTION_VALIDATION_FAILED.value
        assert _only_analysis(repo).error_code == "extraction_validation_failed"

    async def test_transcript_checkpoint_survives_extraction_failure(
        self, orchestrator, repo, meeting, extractor
    ):
        extractor.extract.side_effect = ExtractionRequestFailure("OpenAI analysis failed: 500")

        await orchestrator.run(str(meeting.id), AUDIO_PATH)

        analysis = _only_analysis(repo)
        assert analysis.status == AnalysisStatus.FAILED
        assert analysis.error_message == "OpenAI analysis failed: 500"
        assert analysis.raw_transcript is not None
        assert len(analysis.raw_transcript["segments"]) == 3

    async def test_download_failure_skips_transcription(
        self, orchestrator, repo, meeting, storage, transcriber
    ):
        storage.download.side_effect = DownloadFailure("Failed to download audio: HTTP 404")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.error_code == "download_failed"
        transcriber.transcribe.assert_not_awaited()
        assert _only_analysis(repo).raw_transcript is None

    async def test_unexpected_exception_is_unknown(self, orchestrator, repo, meeting, transcriber):
        transcriber.transcribe.side_effect = KeyError("segments")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.success is False
        assert outcome.error_code == FailureCode.UNKNOWN.value
        assert _only_analysis(repo).status == AnalysisStatus.FAILED
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.FAILED

    async def test_document_write_failure(self, orchestrator, repo, meeting):
        repo.fail_on["complete_analysis"] = RuntimeError("connection lost")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.error_code == FailureCode.PERSISTENCE_FAILED.value
        assert _only_analysis(repo).status == AnalysisStatus.FAILED

    async def test_action_item_insert_failure_is_not_fatal(self, orchestrator, repo, meeting):
        repo.fail_on["insert_action_items"] = RuntimeError("constraint violated")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        analysis = _only_analysis(repo)
        assert outcome.success is True
        assert analysis.status == AnalysisStatus.READY
        assert repo.action_items.get(str(analysis.id), []) == []
        assert len(analysis.analysis_json.action_items) == 2
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.COMPLETED
        assert not outcome.persistence.complete

    async def test_failure_recording_error_keeps_original(
        self, orchestrator, repo, meeting, transcriber
    ):
        transcriber.transcribe.side_effect = TranscriptionQuotaExceeded()
        repo.fail_on["fail_analysis"] = RuntimeError("db gone")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.error_code == "transcription_quota_exceeded"
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.FAILED

    async def test_meeting_completion_failure_keeps_ready_analysis(
        self, orchestrator, repo, bus, meeting, monkeypatch
    ):
        update_status = repo.update_meeting_status

        async def refuse_completed(meeting_id, status):
            if status == MeetingStatus.COMPLETED:
                raise RuntimeError("connection lost")
            return await update_status(meeting_id, status)

        monkeypatch.setattr(repo, "update_meeting_status", refuse_completed)

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.success is False
        assert outcome.error_code == FailureCode.UNKNOWN.value
        assert _only_analysis(repo).status == AnalysisStatus.READY
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.FAILED
        assert bus.trail(str(meeting.id)) == [
            ("analysis", "processing"),
            ("meeting", "processing"),
            ("analysis", "ready"),
            ("meeting", "failed"),
        ]

    async def test_status_publish_failure_does_not_fail_run(self, orchestrator, repo, bus, meeting):
        bus.fail = ConnectionError("redis down")

        outcome = await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert outcome.success is True
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.COMPLETED

    async def test_lock_released_after_failure(self, orchestrator, run_lock, meeting, transcriber):
        transcriber.transcribe.side_effect = TranscriptionQuotaExceeded()
        await orchestrator.run(str(meeting.id), AUDIO_PATH)
        assert run_lock.held == set()


# ── Preconditions ────────────────────────────────────────────────────────────


class TestPreconditions:
    async def test_unknown_meeting(self, orchestrator, repo):
        with pytest.raises(MeetingNotFound):
            await orchestrator.run(str(uuid.uuid4()), AUDIO_PATH)
        assert repo.analyses == {}

    async def test_malformed_meeting_id(self, orchestrator):
        with pytest.raises(MeetingNotFound):
            await orchestrator.run("not-a-uuid", AUDIO_PATH)

    async def test_terminal_meeting_rejected(self, orchestrator, repo, meeting):
        await orchestrator.run(str(meeting.id), AUDIO_PATH)

        with pytest.raises(MeetingNotProcessable) as exc_info:
            await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert exc_info.value.code == FailureCode.MEETING_NOT_PROCESSABLE
        assert len(repo.analyses) == 1

    async def test_duplicate_run_rejected(self, orchestrator, repo, run_lock, meeting):
        run_lock.held.add(str(meeting.id))

        with pytest.raises(PipelineAlreadyRunning):
            await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert repo.analyses == {}
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.UPLOADED
        # Lock belongs to the other run
        assert str(meeting.id) in run_lock.held

    async def test_meeting_completed_while_waiting_for_lock(
        self, orchestrator, repo, run_lock, meeting, monkeypatch
    ):
        acquire = run_lock.acquire

        async def acquire_after_other_run(meeting_id):
            # Another run takes the meeting through to completed first
            await repo.update_meeting_status(meeting_id, MeetingStatus.PROCESSING)
            await repo.update_meeting_status(meeting_id, MeetingStatus.COMPLETED)
            return await acquire(meeting_id)

        monkeypatch.setattr(run_lock, "acquire", acquire_after_other_run)

        with pytest.raises(MeetingNotProcessable):
            await orchestrator.run(str(meeting.id), AUDIO_PATH)

        assert repo.analyses == {}
        assert repo.meetings[str(meeting.id)].status == MeetingStatus.COMPLETED
        assert run_lock.held == set()
        assert run_lock.released == [str(meeting.id)]

    async def test_missing_confidences_give_null_score(
        self, orchestrator, repo, meeting, transcriber, extractor
    ):
        transcriber.transcribe.return_value = TranscriptionResult.model_validate(
            {"text": "hi", "segments": [{"start": 0, "end": 1, "text": "hi"}]}
        )
        extractor.extract.return_value = ExtractionResult(
            content='{"summary": "hi", "transcript_segments": [{"start": 0, "end": 1, "text": "hi"}]}',
            model="gpt-4o-mini",
        )
        await orchestrator.run(str(meeting.id), AUDIO_PATH)
        assert _only_analysis(repo).confidence_score is None
