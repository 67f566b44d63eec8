"""Per-invocation collaborators for one pipeline run.

Every run gets a PipelineContext built from settings; nothing in the pipeline
reaches for module-level clients.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis

from src.insights.config import Settings
from src.insights.core.redis import RunLock
from src.insights.events.bus import StatusBus
from src.insights.events.propagator import StatusPropagator
from src.insights.meetings.repository import MeetingRepository
from src.insights.pipeline.extraction import ExtractionClient
from src.insights.pipeline.normalizer import ResultNormalizer
from src.insights.pipeline.persistence import AnalysisPersister
from src.insights.pipeline.storage import StorageClient
from src.insights.pipeline.transcription import TranscriptionClient


@dataclass
class PipelineContext:
    repository: MeetingRepository
    propagator: StatusPropagator
    storage: StorageClient
    transcriber: TranscriptionClient
    extractor: ExtractionClient
    normalizer: ResultNormalizer
    persister: AnalysisPersister
    run_lock: RunLock
    transcription_language: str | None = "en"


def build_pipeline_context(
    settings: Settings,
    repository: MeetingRepository,
    redis: aioredis.Redis,
) -> PipelineContext:
    """Wire a PipelineContext from settings and shared connections."""
    retry = {
        "max_attempts": settings.STAGE_MAX_ATTEMPTS,
        "retry_min_wait": settings.STAGE_RETRY_MIN_WAIT,
        "retry_max_wait": settings.STAGE_RETRY_MAX_WAIT,
    }
    return PipelineContext(
        repository=repository,
        propagator=StatusPropagator(
            repository, StatusBus(redis, maxlen=settings.STATUS_STREAM_MAXLEN)
        ),
        storage=StorageClient(
            base_url=settings.STORAGE_URL,
            service_key=settings.STORAGE_SERVICE_KEY,
            bucket=settings.STORAGE_BUCKET,
            timeout=settings.STORAGE_TIMEOUT,
            **retry,
        ),
        transcriber=TranscriptionClient(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            model=settings.TRANSCRIPTION_MODEL,
            timeout=settings.TRANSCRIPTION_TIMEOUT,
            **retry,
        ),
        extractor=ExtractionClient(
            model=settings.EXTRACTION_MODEL,
            api_key=settings.OPENAI_API_KEY,
            temperature=settings.EXTRACTION_TEMPERATURE,
            max_tokens=settings.EXTRACTION_MAX_TOKENS,
            timeout=settings.EXTRACTION_TIMEOUT,
            **retry,
        ),
        normalizer=ResultNormalizer(),
        persister=AnalysisPersister(repository),
        run_lock=RunLock(redis, ttl_seconds=settings.PIPELINE_LOCK_TTL),
        transcription_language=settings.TRANSCRIPTION_LANGUAGE or None,
    )
