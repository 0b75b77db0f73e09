"""
Transition event bus.

In-process publish/subscribe for release transitions and environment alerts.
Every published event is kept in a bounded history and written to the
structured log.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Callable
from typing import Any, Union

from .logger import get_logger
from .models import EnvironmentAlert, TransitionEvent

logger = logging.getLogger(__name__)
event_log = get_logger("deploy_promoter.transitions")

PromoterEvent = Union[TransitionEvent, EnvironmentAlert]
EventCallback = Callable[[PromoterEvent], Any]


class TransitionEventBus:
    """Fan-out of promoter events to registered subscribers."""

    def __init__(self, history_size: int = 10000):
        self._subscribers: dict[str, EventCallback] = {}
        self.history: deque[PromoterEvent] = deque(maxlen=history_size)

    def subscribe(self, callback: EventCallback) -> str:
        """Register a sync or async callback; returns a subscription id."""
        subscription_id = str(uuid.uuid4())
        self._subscribers[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscribers.pop(subscription_id, None) is not None

    async def publish(self, event: PromoterEvent) -> None:
        self.history.append(event)

        if isinstance(event, TransitionEvent):
            event_log.info(
                "release_transition",
                environment=event.environment,
                revision=event.revision_id,
                release_id=event.release_id,
                from_state=event.from_state.value,
                to_state=event.to_state.value,
                occurred_at=event.timestamp.isoformat(),
                reason=event.reason,
            )
        else:
            event_log.critical(
                "environment_alert",
                environment=event.environment,
                revision=event.revision_id,
                alert=event.message,
                severity=event.severity,
                occurred_at=event.timestamp.isoformat(),
            )

        for subscription_id, callback in list(self._subscribers.items()):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(f"Event subscriber {subscription_id} failed")

    def transitions(self, environment: str | None = None) -> list[TransitionEvent]:
        return [
            e
            for e in self.history
            if isinstance(e, TransitionEvent) and (environment is None or e.environment == environment)
        ]

    def alerts(self) -> list[EnvironmentAlert]:
        return [e for e in self.history if isinstance(e, EnvironmentAlert)]
