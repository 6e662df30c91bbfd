"""Fan-out hub between reviewer agent sessions and their consumers."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from ..agent.session import AgentProcessSession
from ..events import (
    ActivityEvent,
    EnhancedEvent,
    SessionEndEvent,
    SessionMetadata,
    SessionStartEvent,
)
from .buffer import CircularBuffer
from .recorder import ActivityRecorder

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AgentProcessSession]
Subscriber = Callable[[EnhancedEvent], None]


@dataclass(slots=True)
class _SessionRoute:
    session: AgentProcessSession
    engineer_id: str
    task_id: str | None
    listeners: list[Subscriber] = field(default_factory=list)
    session_id: str | None = None


class EventBroker:
    """Tags agent events with a global sequence number and session metadata.

    One broker is constructed per workspace and passed to whoever needs it.
    Every event goes, in order, to the recent-event buffer, the recorder
    queue, the global subscribers and finally the listeners registered for
    that session only.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        recorder: ActivityRecorder | None = None,
        recent_capacity: int = 500,
    ) -> None:
        self._session_factory = session_factory
        self._recorder = recorder
        self._recent: CircularBuffer[EnhancedEvent] = CircularBuffer(recent_capacity)
        self._sequence = itertools.count(1)
        self._subscribers: list[Subscriber] = []
        self._routes: dict[str, _SessionRoute] = {}
        self._metadata: dict[str, SessionMetadata] = {}

    @property
    def recorder(self) -> ActivityRecorder | None:
        return self._recorder

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def start_session(
        self,
        prompt: str,
        system_prompt: str,
        resume_token: str | None = None,
        *,
        engineer_id: str = "unknown",
        task_id: str | None = None,
        listeners: Iterable[Subscriber] = (),
    ) -> str:
        """Spawn a consultation and return the session id the agent issued.

        ``listeners`` only ever see this session's events and are attached
        before the process starts.
        """

        route = _SessionRoute(
            session=self._session_factory(),
            engineer_id=engineer_id,
            task_id=task_id,
            listeners=list(listeners),
        )
        route.session.subscribe(lambda event: self._dispatch(route, event))
        invocation = await route.session.invoke(prompt, system_prompt, resume_token)
        logger.info(
            "Reviewer session started",
            extra={
                "session_id": invocation.session_id,
                "task_id": task_id,
                "resumed": resume_token is not None,
                "process_id": invocation.process_id,
            },
        )
        return invocation.session_id

    def _dispatch(self, route: _SessionRoute, event: ActivityEvent) -> None:
        session_id = event.session_id
        if isinstance(event, SessionStartEvent) and session_id:
            route.session_id = session_id
            self._routes[session_id] = route
            self._metadata[session_id] = SessionMetadata(
                id=session_id,
                engineer_id=route.engineer_id,
                task_id=route.task_id,
                process_id=route.session.process_id,
            )

        metadata = self._metadata.get(session_id) if session_id else None
        if isinstance(event, SessionEndEvent) and metadata is not None:
            metadata.mark_completed()

        enhanced = EnhancedEvent(
            event=event,
            sequence_number=next(self._sequence),
            session=metadata.model_copy() if metadata is not None else None,
        )
        self._recent.push(enhanced)

        if self._recorder is not None:
            try:
                self._recorder.submit(enhanced)
            except Exception:  # noqa: BLE001 - persistence must not stop delivery
                logger.exception("Activity recorder rejected event", extra={"session_id": session_id})

        for subscriber in [*self._subscribers, *route.listeners]:
            try:
                subscriber(enhanced)
            except Exception:  # noqa: BLE001 - isolate subscribers from each other
                logger.exception(
                    "Event subscriber failed",
                    extra={"session_id": session_id, "event_type": event.type},
                )

        # Finished sessions keep only their metadata.
        if isinstance(event, SessionEndEvent) and session_id:
            self._routes.pop(session_id, None)

    async def stop_session(self, session_id: str) -> bool:
        """Kill the session's process and mark it completed.

        Returns ``False`` for unknown sessions and for sessions that already ended.
        """

        route = self._routes.get(session_id)
        if route is None:
            return False
        await route.session.stop()
        metadata = self._metadata.get(session_id)
        if metadata is not None:
            metadata.mark_completed()
        logger.info("Reviewer session stopped", extra={"session_id": session_id})
        return True

    def active_sessions(self) -> list[SessionMetadata]:
        return [meta.model_copy() for meta in self._metadata.values() if meta.status == "active"]

    def get_session_metadata(self, session_id: str) -> SessionMetadata | None:
        metadata = self._metadata.get(session_id)
        return metadata.model_copy() if metadata is not None else None

    def recent_events(self, count: int = 50) -> list[EnhancedEvent]:
        return self._recent.get_recent(count)

    async def shutdown(self, *, grace_seconds: float = 5.0) -> None:
        """Stop active sessions, wait for their streams, then close the recorder."""

        active = [
            self._routes[meta.id]
            for meta in self._metadata.values()
            if meta.status == "active" and meta.id in self._routes
        ]
        for route in active:
            await route.session.stop()
        if active:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(route.session.wait() for route in active)),
                    timeout=grace_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for reviewer sessions to exit")
        for route in active:
            if route.session_id and route.session_id in self._metadata:
                self._metadata[route.session_id].mark_completed()

        if self._recorder is not None:
            try:
                await self._recorder.flush()
            finally:
                await self._recorder.close()


__all__ = ["EventBroker", "SessionFactory", "Subscriber"]
