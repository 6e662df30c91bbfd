"""Blocking consultations with the reviewer, and the task transitions they gate."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..events import AgentMessageEvent, EnhancedEvent, SessionEndEvent
from ..streaming.broker import EventBroker
from ..tasks.engine import TaskWorkflowEngine
from ..tasks.models import AddTask, Task, TaskModification
from .decision import ReviewDecision, approved_indices, classify_review

logger = logging.getLogger(__name__)


def still_running_message(session_id: str) -> str:
    return (
        f"The reviewer is still working in session {session_id}. The session keeps "
        "running and its activity is still being logged; check recent_activity for "
        "the outcome, or consult the reviewer again to resume the conversation."
    )


@dataclass(slots=True)
class Consultation:
    session_id: str
    text: str
    timed_out: bool
    decision: ReviewDecision


@dataclass(slots=True)
class ReviewOutcome:
    task: Task
    consultation: Consultation
    created_tasks: list[Task] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.task.status == "done"


@dataclass(slots=True)
class ProposalOutcome:
    consultation: Consultation
    approved: list[TaskModification] = field(default_factory=list)
    rejected: list[TaskModification] = field(default_factory=list)


class ReviewGate:
    """Turn one streamed reviewer session into a single awaited response.

    A session-scoped listener collects ``agent_message`` text and resolves a
    future when the session's ``session_end`` arrives. When the caller's
    timeout elapses first the caller gets a placeholder while the session and
    its listener stay in place, so the rest of the run is still delivered
    and logged.
    """

    def __init__(
        self,
        broker: EventBroker,
        engine: TaskWorkflowEngine,
        *,
        timeout: float | None = 120.0,
        review_timeout: float | None = None,
    ) -> None:
        self._broker = broker
        self._engine = engine
        self._timeout = timeout
        self._review_timeout = review_timeout

    @property
    def engine(self) -> TaskWorkflowEngine:
        return self._engine

    async def consult(
        self,
        prompt: str,
        system_prompt: str,
        *,
        resume_token: str | None = None,
        engineer_id: str = "engineer",
        task_id: str | None = None,
        timeout: float | None = None,
    ) -> Consultation:
        """Run one consultation; ``timeout`` defaults to the gate's consultation timeout."""

        return await self._consult(
            prompt,
            system_prompt,
            resume_token=resume_token,
            engineer_id=engineer_id,
            task_id=task_id,
            wait_for=self._timeout if timeout is None else timeout,
        )

    async def _consult(
        self,
        prompt: str,
        system_prompt: str,
        *,
        resume_token: str | None,
        engineer_id: str,
        task_id: str | None,
        wait_for: float | None,
    ) -> Consultation:
        loop = asyncio.get_running_loop()
        finished: asyncio.Future[str] = loop.create_future()
        chunks: list[str] = []

        def collect(enhanced: EnhancedEvent) -> None:
            event = enhanced.event
            if isinstance(event, AgentMessageEvent):
                chunks.append(event.text)
            elif isinstance(event, SessionEndEvent) and not finished.done():
                finished.set_result("\n".join(chunks))

        session_id = await self._broker.start_session(
            prompt,
            system_prompt,
            resume_token,
            engineer_id=engineer_id,
            task_id=task_id,
            listeners=[collect],
        )

        try:
            if wait_for is None:
                text = await finished
            else:
                text = await asyncio.wait_for(asyncio.shield(finished), timeout=wait_for)
        except asyncio.TimeoutError:
            logger.warning(
                "Reviewer consultation timed out; session left running",
                extra={"session_id": session_id, "task_id": task_id, "timeout": wait_for},
            )
            placeholder = still_running_message(session_id)
            return Consultation(
                session_id=session_id,
                text=placeholder,
                timed_out=True,
                decision=ReviewDecision(
                    verdict="needs-discussion", confidence=0.0, summary=placeholder
                ),
            )

        decision = classify_review(text)
        logger.info(
            "Reviewer consultation finished",
            extra={
                "session_id": session_id,
                "task_id": task_id,
                "verdict": decision.verdict,
                "confidence": decision.confidence,
            },
        )
        return Consultation(session_id=session_id, text=text, timed_out=False, decision=decision)

    async def review_submission(
        self,
        task_id: str,
        prompt: str,
        system_prompt: str,
        *,
        resume_token: str | None = None,
        engineer_id: str = "engineer",
        timeout: float | None = None,
    ) -> ReviewOutcome:
        """Move ``task_id`` into review, consult, and settle its status.

        Without an explicit ``timeout`` the gate's review timeout applies,
        which by default waits for the reviewer to finish. Approval marks the
        task done and applies any ADD directives from the reviewer. Every
        other outcome, including a timeout or an exception, returns the task
        to in-progress.
        """

        self._engine.begin_review(task_id)
        try:
            consultation = await self._consult(
                prompt,
                system_prompt,
                resume_token=resume_token,
                engineer_id=engineer_id,
                task_id=task_id,
                wait_for=self._review_timeout if timeout is None else timeout,
            )
        except (Exception, asyncio.CancelledError) as exc:
            self._engine.restore_status(task_id, "in-progress", f"Review failed: {exc}")
            raise

        decision = consultation.decision
        if consultation.timed_out:
            task = self._engine.restore_status(
                task_id,
                "in-progress",
                f"Review still running in session {consultation.session_id}",
            )
            return ReviewOutcome(task=task, consultation=consultation)

        if not decision.approved:
            task = self._engine.complete_review(
                task_id, approved=False, reason=decision.summary or "Changes requested"
            )
            return ReviewOutcome(task=task, consultation=consultation)

        task = self._engine.complete_review(
            task_id, approved=True, reason=decision.summary or "Approved by reviewer"
        )
        additions = [item for item in decision.task_modifications if isinstance(item, AddTask)]
        created: list[Task] = []
        if additions:
            known = {existing.id for existing in self._engine.list_tasks()}
            created = [
                item for item in self._engine.apply_modifications(additions) if item.id not in known
            ]
        return ReviewOutcome(task=task, consultation=consultation, created_tasks=created)

    async def review_plan(
        self,
        task_id: str,
        prompt: str,
        system_prompt: str,
        *,
        resume_token: str | None = None,
        engineer_id: str = "engineer",
        timeout: float | None = None,
    ) -> Consultation:
        return await self.consult(
            prompt,
            system_prompt,
            resume_token=resume_token,
            engineer_id=engineer_id,
            task_id=task_id,
            timeout=timeout,
        )

    async def review_proposal(
        self,
        modifications: Sequence[TaskModification],
        prompt: str,
        system_prompt: str,
        *,
        resume_token: str | None = None,
        engineer_id: str = "engineer",
        timeout: float | None = None,
    ) -> ProposalOutcome:
        """Ask the reviewer about ``modifications``; nothing is applied here."""

        consultation = await self.consult(
            prompt,
            system_prompt,
            resume_token=resume_token,
            engineer_id=engineer_id,
            timeout=timeout,
        )
        if consultation.timed_out or not consultation.decision.approved:
            return ProposalOutcome(consultation=consultation, rejected=list(modifications))

        # An approval without item numbers covers the whole proposal.
        chosen = set(approved_indices(consultation.text, len(modifications)) or range(len(modifications)))
        return ProposalOutcome(
            consultation=consultation,
            approved=[item for index, item in enumerate(modifications) if index in chosen],
            rejected=[item for index, item in enumerate(modifications) if index not in chosen],
        )


__all__ = [
    "Consultation",
    "ProposalOutcome",
    "ReviewGate",
    "ReviewOutcome",
    "still_running_message",
]
