"""
Domain events emitted by the streak engine.

Events are plain dicts ``{"type": ..., "payload": {...}}``. Handlers are
fire-and-forget: they run after the mutation that produced the event has
finished, and a failing handler is logged and skipped.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List

logger = logging.getLogger("streakkeeper")

GOAL_MET = "streak.goal_met"
STREAK_MILESTONE = "streak.milestone"
STREAK_BROKEN = "streak.broken"
SHIELD_AUTO_DEPLOYED = "shield.auto_deployed"
SHIELD_LOW = "shield.low"

EVENT_TYPES = (GOAL_MET, STREAK_MILESTONE, STREAK_BROKEN, SHIELD_AUTO_DEPLOYED, SHIELD_LOW)

MILESTONES = (7, 14, 30, 60, 90, 180, 365)

Handler = Callable[[dict], None]


def make_event(event_type: str, **payload) -> dict:
    return {"type": event_type, "payload": payload}


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._wildcard: List[Handler] = []

    def subscribe(self, event_type: str, handler: Handler) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown event type: {event_type}")
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._wildcard.append(handler)

    def publish(self, events: Iterable[dict]) -> None:
        for event in events:
            for handler in [*self._handlers.get(event["type"], []), *self._wildcard]:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "events.handler_failed",
                        extra={"event_type": event["type"], "error_code": "handler_failed"},
                    )
