"""Per-meeting status change feed.

Exports:
    StatusEvent: One status change of a meeting or analysis.
    StatusEntity: Meeting or analysis.
    StatusBus: Redis Streams publish/read for a meeting's feed.
    StatusPropagator: Durable status write followed by an event.
"""

from __future__ import annotations

from src.insights.events.schemas import StatusEntity, StatusEvent

__all__ = [
    "StatusBus",
    "StatusEntity",
    "StatusEvent",
    "StatusPropagator",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load bus and propagator to avoid circular imports."""
    if name == "StatusBus":
        from src.insights.events.bus import StatusBus

        return StatusBus
    if name == "StatusPropagator":
        from src.insights.events.propagator import StatusPropagator

        return StatusPropagator
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
