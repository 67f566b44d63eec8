"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.insights.api.v1 import action_items, health, meetings, pipeline

router = APIRouter()

router.include_router(health.router)
router.include_router(pipeline.router)
router.include_router(meetings.router)
router.include_router(action_items.router)
