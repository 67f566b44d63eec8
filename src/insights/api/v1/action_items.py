"""Action item endpoints: manual creation and completion toggling."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.insights.api.deps import get_meeting_repository, parse_uuid
from src.insights.meetings.repository import MeetingRepository
from src.insights.meetings.schemas import ActionItem, ActionItemCreate, ActionItemUpdate

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["action-items"])


@router.post(
    "/analyses/{analysis_id}/action-items",
    response_model=ActionItem,
    status_code=status.HTTP_201_CREATED,
)
async def create_action_item(
    analysis_id: str,
    body: ActionItemCreate,
    repo: MeetingRepository = Depends(get_meeting_repository),
) -> ActionItem:
    """Add a manual action item to an analysis."""
    analysis_id = parse_uuid(analysis_id, "Analysis")
    if await repo.get_analysis(analysis_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Analysis not found: {analysis_id}",
        )
    item = await repo.create_action_item(analysis_id, body)
    logger.info("action_item_created", analysis_id=analysis_id, action_item_id=str(item.id))
    return item


@router.patch("/action-items/{item_id}", response_model=ActionItem)
async def update_action_item(
    item_id: str,
    body: ActionItemUpdate,
    repo: MeetingRepository = Depends(get_meeting_repository),
) -> ActionItem:
    """Mark an action item completed or reopen it."""
    item = await repo.set_action_item_completed(parse_uuid(item_id, "Action item"), body.completed)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Action item not found: {item_id}",
        )
    return item
