"""Meeting insights data layer -- schemas, SQLAlchemy models, and repository.

Provides the persisted records (Meeting, Analysis, TranscriptSegment,
ActionItem), the AnalysisDocument stored as ``analysis_json``, and
MeetingRepository for async reads and status-guarded writes.
"""
