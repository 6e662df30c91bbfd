"""Tool registration for Squabble MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from ..config import SquabbleSettings
from ..profiles import ProfileLoader, build_system_prompt, load_custom_prompt
from ..review import Consultation, ReviewGate
from ..roles import require_capability, can_use
from ..streaming import ActivityRecorder, EventBroker, format_narrative
from ..tasks import (
    Task,
    TaskModification,
    TaskValidationError,
    TaskWorkflowEngine,
    parse_modifications,
)
from ..tasks.models import AddTask
from ..workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeniedTool:
    """Stand-in handle for a tool the current role may not call."""

    fn: Callable[..., Any]
    name: str


@dataclass(slots=True)
class ToolHandles:
    get_next_task: Any
    claim_task: Any
    submit_for_review: Any
    propose_modification: Any
    update_tasks: Any
    consult_reviewer: Any
    recent_activity: Any
    stop_session: Any
    role: str
    registered: tuple[str, ...]


def _task_lines(tasks: Sequence[Task]) -> str:
    if not tasks:
        return "(no tasks)"
    return "\n".join(
        f"- {task.id} [{task.status}, {task.priority}] {task.title}"
        + (f" (depends on {', '.join(task.dependencies)})" if task.dependencies else "")
        for task in tasks
    )


def _plan_review_prompt(task: Task, plan: str) -> str:
    return "\n\n".join(
        [
            f"The engineer wants to start task {task.id}: {task.title}.",
            f"Description:\n{task.description or '(none)'}",
            f"Implementation plan:\n{plan.strip()}",
            "Review the plan. Approve it only if it is complete and sound; "
            "otherwise list the required changes as bullets.",
        ]
    )


def _submission_prompt(
    task: Task,
    summary: str,
    changed_files: Sequence[str],
    test_results: str | None,
) -> str:
    sections = [
        f"The engineer submitted task {task.id} for review: {task.title}.",
        f"Description:\n{task.description or '(none)'}",
        f"Summary of the work:\n{summary.strip()}",
    ]
    if changed_files:
        sections.append("Changed files:\n" + "\n".join(f"- {path}" for path in changed_files))
    if test_results:
        sections.append(f"Test results:\n{test_results.strip()}")
    sections.append(
        "Review the changes in the repository. Approve or request changes, listing each "
        "required change as a bullet. Suggest follow-up tasks inside a [TASK_MODIFY] block."
    )
    return "\n\n".join(sections)


def _proposal_prompt(
    modifications: Sequence[TaskModification],
    rationale: str,
    tasks: Sequence[Task],
) -> str:
    numbered = "\n".join(
        f"{index}. {item.type} {item.model_dump_json(exclude={'type', 'proposed_by'})}"
        for index, item in enumerate(modifications, start=1)
    )
    return "\n\n".join(
        [
            "The engineer proposes the following task modifications:",
            numbered,
            f"Rationale:\n{rationale.strip()}",
            f"Current tasks:\n{_task_lines(tasks)}",
            "Start your reply with 'Decision: APPROVED' or 'Decision: CHANGES REQUESTED'. "
            "An approval covers every item unless you name specific ones by number "
            "(for example 'approve 1 and 3').",
        ]
    )


def _consult_prompt(question: str, task: Task | None) -> str:
    if task is None:
        return question.strip()
    return f"Regarding task {task.id} ({task.title}, {task.status}):\n\n{question.strip()}"


def register_tools(
    server: FastMCP,
    *,
    settings: SquabbleSettings,
    workspace: Workspace,
    engine: TaskWorkflowEngine,
    gate: ReviewGate,
    broker: EventBroker,
    profiles: ProfileLoader,
    recorder: ActivityRecorder | None = None,
    role: str | None = None,
) -> ToolHandles:
    """Register the tools the current role may call on the server."""

    active_role = role or settings.role

    def _system_prompt() -> str:
        return build_system_prompt(profiles.get(), load_custom_prompt(workspace))

    def _remember_session(consultation: Consultation) -> None:
        workspace.record_reviewer_session(consultation.session_id)

    def _get_next_task(count: int = 3, context: Context | None = None) -> dict[str, Any]:
        """Return the best tasks to work on next."""

        tasks = engine.list_tasks()
        eligible = engine.get_next_eligible(count, tasks)

        if eligible:
            best = eligible[0]
            next_step = f"Call claim_task with task_id={best.id}."
            if best.requires_plan:
                next_step += " This task needs an approved implementation plan first."
            _emit_log(context, "debug", "Eligible tasks listed", extra={"count": len(eligible)})
            return {
                "tasks": [task.summary() for task in eligible],
                "message": f"{len(eligible)} task(s) ready. Recommended: {best.id} - {best.title}",
                "next_step": next_step,
            }

        report = engine.blocked_report(tasks)
        if report["total"] == 0:
            message = "There are no tasks yet."
            next_step = "Use propose_modification to propose the first tasks."
        elif report["done"] == report["total"]:
            message = "All tasks are done."
            next_step = "Consult the reviewer about what should come next."
        else:
            message = (
                "No task is eligible right now: "
                f"{report['in_progress']} in progress, {report['in_review']} in review, "
                f"{report['blocked']} blocked, {report['unmet_dependencies']} waiting on dependencies."
            )
            next_step = (
                "Finish the in-progress work and submit it for review."
                if report["in_progress"]
                else "Consult the reviewer about blocked tasks."
            )
        return {"tasks": [], "report": report, "message": message, "next_step": next_step}

    async def _claim_task(
        task_id: str,
        notes: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Claim a pending task, running plan review first when the task requires one."""

        task = engine.ensure_claimable(task_id)
        plan_approved = workspace.approval_path(task.id).exists()

        if task.requires_plan and not plan_approved:
            plan_path = workspace.plan_path(task.id)
            if not plan_path.exists():
                workspace.write_plan_skeleton(task.id, task.title, task.priority)
                return {
                    "status": "plan_required",
                    "task": task.summary(),
                    "plan_path": str(plan_path),
                    "message": f"Task {task.id} requires an implementation plan before it can be claimed.",
                    "next_step": f"Fill in the plan at {plan_path}, then call claim_task again for review.",
                }

            consultation = await gate.review_plan(
                task.id,
                _plan_review_prompt(task, plan_path.read_text(encoding="utf-8")),
                _system_prompt(),
                resume_token=workspace.reviewer_session(),
                engineer_id=active_role,
                timeout=settings.consultation_timeout_seconds,
            )
            _remember_session(consultation)

            if consultation.timed_out:
                return {
                    "status": "plan_review_pending",
                    "session_id": consultation.session_id,
                    "message": consultation.text,
                    "next_step": "Call claim_task again once the reviewer has answered.",
                }
            if not consultation.decision.approved:
                feedback_path = workspace.write_plan_feedback(task.id, task.title, consultation.text)
                _emit_log(
                    context,
                    "info",
                    "Plan review requested changes",
                    extra={"task_id": task.id, "verdict": consultation.decision.verdict},
                )
                return {
                    "status": "plan_changes_requested",
                    "verdict": consultation.decision.verdict,
                    "feedback": consultation.text,
                    "action_items": consultation.decision.action_items,
                    "feedback_path": str(feedback_path),
                    "message": f"The reviewer did not approve the plan for {task.id}.",
                    "next_step": f"Revise {plan_path} and call claim_task again.",
                }

            workspace.write_plan_approval(
                task.id,
                session_id=consultation.session_id,
                summary=consultation.decision.summary,
            )
            plan_approved = True

        claimed = engine.claim(task.id, notes=notes, plan_approved=plan_approved)
        workspace.save_context(
            "current-task",
            {
                "task_id": claimed.id,
                "title": claimed.title,
                "claimed_at": datetime.now(timezone.utc).isoformat(),
                "notes": notes,
            },
        )
        _emit_log(context, "info", "Task claimed", extra={"task_id": claimed.id})
        return {
            "status": "claimed",
            "task": claimed.summary(),
            "message": f"Claimed {claimed.id}: {claimed.title}",
            "next_step": "Implement the task, then call submit_for_review with a summary of the changes.",
        }

    async def _submit_for_review(
        task_id: str,
        summary: str,
        changed_files: list[str] | None = None,
        test_results: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Submit in-progress work and wait for the reviewer's decision."""

        task = engine.get_task(task_id)
        outcome = await gate.review_submission(
            task.id,
            _submission_prompt(task, summary, changed_files or [], test_results),
            _system_prompt(),
            resume_token=workspace.reviewer_session(),
            engineer_id=active_role,
        )
        consultation = outcome.consultation
        _remember_session(consultation)
        log_path = workspace.write_review_log(task.id, consultation.text)

        decision = consultation.decision
        if outcome.approved:
            message = f"{task.id} was approved and is done."
            next_step = "Call get_next_task to pick up the next task."
        elif consultation.timed_out:
            message = consultation.text
            next_step = "Keep working or check recent_activity for the reviewer's answer."
        else:
            message = f"The reviewer requested changes on {task.id} ({decision.verdict})."
            next_step = "Address the action items, then call submit_for_review again."

        _emit_log(
            context,
            "info",
            "Review finished",
            extra={"task_id": task.id, "verdict": decision.verdict, "status": outcome.task.status},
        )
        return {
            "task": outcome.task.summary(),
            "session_id": consultation.session_id,
            "verdict": decision.verdict,
            "confidence": decision.confidence,
            "timed_out": consultation.timed_out,
            "feedback": consultation.text,
            "action_items": decision.action_items,
            "created_tasks": [item.summary() for item in outcome.created_tasks],
            "review_log": str(log_path),
            "message": message,
            "next_step": next_step,
        }

    def _validate_modifications(
        payload: list[dict[str, Any]],
        proposed_by: str,
    ) -> list[TaskModification]:
        try:
            items = parse_modifications(
                [{**item, "proposed_by": item.get("proposed_by", proposed_by)} for item in payload]
            )
        except ValidationError as exc:
            raise TaskValidationError(
                f"Invalid task modifications: {exc.error_count()} error(s): {exc.errors()[0]['msg']}",
                hint="Each item needs a type (ADD, DELETE, MODIFY, BLOCK, SPLIT or MERGE) and its fields.",
            ) from exc
        if not items:
            raise TaskValidationError(
                "No modifications were given.",
                hint="Pass at least one modification.",
            )
        return items

    async def _propose_modification(
        modifications: list[dict[str, Any]],
        rationale: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Ask the reviewer to approve task modifications."""

        items = _validate_modifications(modifications, active_role)
        tasks = engine.list_tasks()
        known = {task.id for task in tasks}
        missing = sorted(
            {
                item.task_id
                for item in items
                if not isinstance(item, AddTask) and hasattr(item, "task_id") and item.task_id not in known
            }
        )
        if missing:
            raise TaskValidationError(
                f"Unknown task ids in proposal: {', '.join(missing)}.",
                hint="Call get_next_task to check the current task ids.",
            )

        outcome = await gate.review_proposal(
            items,
            _proposal_prompt(items, rationale, tasks),
            _system_prompt(),
            resume_token=workspace.reviewer_session(),
            engineer_id=active_role,
            timeout=settings.consultation_timeout_seconds,
        )
        consultation = outcome.consultation
        _remember_session(consultation)

        if outcome.approved:
            workspace.save_context(
                "approved-modifications",
                {
                    "session_id": consultation.session_id,
                    "approved_at": datetime.now(timezone.utc).isoformat(),
                    "rationale": rationale,
                    "modifications": [item.model_dump() for item in outcome.approved],
                },
            )

        if consultation.timed_out:
            message = consultation.text
            next_step = "Check recent_activity for the reviewer's decision."
        elif outcome.approved:
            message = f"The reviewer approved {len(outcome.approved)} of {len(items)} modification(s)."
            next_step = "The reviewer applies approved modifications with update_tasks; call get_next_task afterwards."
        else:
            message = "The reviewer did not approve the proposal."
            next_step = "Read the feedback and revise the proposal."

        _emit_log(
            context,
            "info",
            "Proposal reviewed",
            extra={"approved": len(outcome.approved), "rejected": len(outcome.rejected)},
        )
        return {
            "session_id": consultation.session_id,
            "approved": [item.model_dump() for item in outcome.approved],
            "rejected": [item.model_dump() for item in outcome.rejected],
            "timed_out": consultation.timed_out,
            "feedback": consultation.text,
            "message": message,
            "next_step": next_step,
        }

    def _update_tasks(
        modifications: list[dict[str, Any]],
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Apply task modifications directly (reviewer only)."""

        items = _validate_modifications(modifications, active_role)
        tasks = engine.apply_modifications(items)
        _emit_log(context, "info", "Tasks updated", extra={"applied": len(items), "total": len(tasks)})
        return {
            "applied": len(items),
            "tasks": [task.summary() for task in tasks],
            "message": f"Applied {len(items)} modification(s); {len(tasks)} task(s) in the list.",
            "next_step": "The engineer can call get_next_task to see the updated queue.",
        }

    async def _consult_reviewer(
        question: str,
        task_id: str | None = None,
        resume: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Ask the reviewer a question and wait for the answer."""

        task = engine.get_task(task_id) if task_id else None
        consultation = await gate.consult(
            _consult_prompt(question, task),
            _system_prompt(),
            resume_token=workspace.reviewer_session() if resume else None,
            engineer_id=active_role,
            task_id=task.id if task else None,
        )
        _remember_session(consultation)
        _emit_log(
            context,
            "debug",
            "Reviewer consulted",
            extra={"session_id": consultation.session_id, "timed_out": consultation.timed_out},
        )
        return {
            "session_id": consultation.session_id,
            "response": consultation.text,
            "timed_out": consultation.timed_out,
            "verdict": consultation.decision.verdict,
            "action_items": consultation.decision.action_items,
            "message": "The reviewer is still working." if consultation.timed_out else "The reviewer answered.",
            "next_step": "Continue with the reviewer's guidance.",
        }

    def _recent_activity(
        limit: int = 20,
        source: str = "log",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Show recent reviewer activity from the log or from memory."""

        if source not in {"log", "memory"}:
            raise ValueError("source must be 'log' or 'memory'")
        if source == "log" and recorder is not None:
            events = recorder.read_recent_events(limit)
        else:
            events = broker.recent_events(limit)

        transcript = [line for event in events for line in format_narrative(event) if line]
        return {
            "count": len(events),
            "events": [event.to_record() for event in events],
            "transcript": "\n".join(transcript),
            "active_sessions": [meta.model_dump(mode="json") for meta in broker.active_sessions()],
            "message": f"{len(events)} recent event(s).",
            "next_step": "Use stop_session to end a session that is no longer needed.",
        }

    async def _stop_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Stop a running reviewer session."""

        if not await broker.stop_session(session_id):
            raise ValueError(f"Session '{session_id}' is unknown or has already finished")
        _emit_log(context, "warning", "Reviewer session stopped", extra={"session_id": session_id})
        return {
            "session_id": session_id,
            "stopped": True,
            "message": f"Stopped reviewer session {session_id}.",
            "next_step": "Consult the reviewer again when needed.",
        }

    registered: list[str] = []

    def _register(name: str, description: str, fn: Callable[..., Any]) -> Any:
        if not can_use(active_role, name):
            def _denied(*args: Any, **kwargs: Any) -> Any:
                require_capability(active_role, name)

            return DeniedTool(fn=_denied, name=name)
        registered.append(name)
        return server.tool(name=name, description=description)(fn)

    handles = ToolHandles(
        get_next_task=_register(
            "get_next_task",
            "List the highest-priority pending tasks whose dependencies are done.",
            _get_next_task,
        ),
        claim_task=_register(
            "claim_task",
            "Claim a pending task. Tasks that require a plan are reviewed by the reviewer first.",
            _claim_task,
        ),
        submit_for_review=_register(
            "submit_for_review",
            "Submit an in-progress task for review and wait for the reviewer's decision.",
            _submit_for_review,
        ),
        propose_modification=_register(
            "propose_modification",
            "Propose task list changes (ADD, DELETE, MODIFY, BLOCK, SPLIT) for reviewer approval.",
            _propose_modification,
        ),
        update_tasks=_register(
            "update_tasks",
            "Apply task list changes directly. Reviewer role only.",
            _update_tasks,
        ),
        consult_reviewer=_register(
            "consult_reviewer",
            "Ask the reviewer a question, resuming the previous conversation by default.",
            _consult_reviewer,
        ),
        recent_activity=_register(
            "recent_activity",
            "Show recent reviewer activity from the activity log (source=log) or memory (source=memory).",
            _recent_activity,
        ),
        stop_session=_register(
            "stop_session",
            "Stop a running reviewer session.",
            _stop_session,
        ),
        role=active_role,
        registered=(),
    )
    handles.registered = tuple(registered)
    return handles


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["DeniedTool", "ToolHandles", "register_tools"]
