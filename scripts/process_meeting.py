#!/usr/bin/env python3
"""CLI script to run the analysis pipeline for one meeting.

Usage:
    uv run python scripts/process_meeting.py --meeting-id 3f0c... --audio-path recordings/3f0c.m4a

Connects directly to the database and Redis using settings from the
environment or .env file. Exits non-zero when the run fails or is rejected.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.insights
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def process(meeting_id: str, audio_path: str) -> int:
    """Run one pipeline invocation and print the outcome. Returns an exit code."""
    from src.insights.api.middleware.logging import configure_structlog
    from src.insights.config import get_settings
    from src.insights.core.database import close_db, get_session
    from src.insights.core.redis import close_redis, get_redis_pool
    from src.insights.meetings.repository import MeetingRepository
    from src.insights.pipeline.context import build_pipeline_context
    from src.insights.pipeline.errors import PipelineError
    from src.insights.pipeline.orchestrator import PipelineOrchestrator

    configure_structlog()
    settings = get_settings()
    context = build_pipeline_context(
        settings, MeetingRepository(session_factory=get_session), get_redis_pool()
    )

    try:
        outcome = await PipelineOrchestrator(context).run(meeting_id, audio_path)
    except PipelineError as exc:
        print(f"Rejected ({exc.code.value}): {exc.message}", file=sys.stderr)
        return 2
    finally:
        await close_redis()
        await close_db()

    if not outcome.success:
        print(f"Failed ({outcome.error_code}): {outcome.error_message}", file=sys.stderr)
        return 1

    report = outcome.persistence
    print("Analysis completed:")
    print(f"  Meeting:      {outcome.meeting_id}")
    print(f"  Analysis:     {outcome.analysis_id}")
    if outcome.document is not None:
        print(f"  Summary:      {outcome.document.summary}")
    if report is not None:
        print(f"  Segments:     {report.segments_inserted}")
        print(f"  Action items: {report.action_items_inserted}")
        for failure in report.failures:
            print(f"  Warning:      {failure}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the meeting analysis pipeline")
    parser.add_argument("--meeting-id", required=True, help="Meeting UUID")
    parser.add_argument("--audio-path", required=True, help="Recording path in the storage bucket")
    args = parser.parse_args()

    sys.exit(asyncio.run(process(args.meeting_id, args.audio_path)))


if __name__ == "__main__":
    main()
