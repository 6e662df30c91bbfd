from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from squabble_mcp.agent import AgentTransportError, FakeAgentSession
from squabble_mcp.review import ReviewGate, still_running_message
from squabble_mcp.streaming import EventBroker
from squabble_mcp.tasks import AddTask, DeleteTask, Task, TaskStore, TaskWorkflowEngine


def reply(session_id: str, text: str) -> list[dict]:
    return [
        {"type": "system", "subtype": "init", "session_id": session_id},
        {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}},
    ]


def build_gate(tmp_path: Path, *scripts, hold_open: bool = False, **gate_kwargs):
    store = TaskStore(tmp_path / "tasks.json", tmp_path / "counter.json")
    engine = TaskWorkflowEngine(store)
    created: list[FakeAgentSession] = []
    pending = list(scripts)

    def factory() -> FakeAgentSession:
        session = FakeAgentSession(pending.pop(0), hold_open=hold_open)
        created.append(session)
        return session

    broker = EventBroker(factory)
    gate = ReviewGate(broker, engine, **gate_kwargs)
    return gate, engine, broker, created


def test_approved_submission_marks_done_and_adds_tasks(tmp_path: Path) -> None:
    text = 'Decision: APPROVED\n\n[TASK_MODIFY]\nADD "Follow-up docs" PRIORITY low\n[/TASK_MODIFY]'
    gate, engine, _, _ = build_gate(tmp_path, reply("s1", text))
    engine.store.save([Task(id="SQBL-7", title="feature", status="in-progress")])

    outcome = asyncio.run(gate.review_submission("SQBL-7", "please review", "system"))

    assert outcome.approved
    assert outcome.task.status == "done"
    assert [task.title for task in outcome.created_tasks] == ["Follow-up docs"]
    assert outcome.created_tasks[0].priority == "low"
    assert engine.get_task("SQBL-7").status == "done"
    assert len(engine.list_tasks()) == 2


def test_changes_requested_returns_task_to_in_progress(tmp_path: Path) -> None:
    text = 'Changes requested: must fix error handling.\n\n[TASK_MODIFY]\nADD "ignored"\n[/TASK_MODIFY]'
    gate, engine, _, created = build_gate(tmp_path, reply("s1", text))
    engine.store.save([Task(id="T1", title="feature", status="in-progress")])

    outcome = asyncio.run(gate.review_submission("T1", "please review", "system", resume_token="old"))

    assert not outcome.approved
    assert outcome.consultation.decision.verdict == "changes-requested"
    assert engine.get_task("T1").status == "in-progress"
    assert [task.id for task in engine.list_tasks()] == ["T1"]
    history = engine.get_task("T1").modification_history
    assert [entry.details["to"] for entry in history] == ["review", "in-progress"]
    assert created[0].invocations[0]["resume_token"] == "old"


def test_timed_out_review_keeps_session_streaming(tmp_path: Path) -> None:
    gate, engine, broker, created = build_gate(
        tmp_path, reply("slow", "Decision: APPROVED"), hold_open=True
    )
    engine.store.save([Task(id="T1", title="feature", status="in-progress")])
    seen: list = []
    broker.subscribe(seen.append)

    async def run():
        outcome = await gate.review_submission("T1", "please review", "system", timeout=0.05)
        assert engine.get_task("T1").status == "in-progress"
        created[0].release()
        await created[0].wait()
        return outcome

    outcome = asyncio.run(run())

    assert outcome.consultation.timed_out
    assert outcome.consultation.text == still_running_message("slow")
    assert outcome.consultation.decision.confidence == 0.0
    assert outcome.task.status == "in-progress"
    assert [event.type for event in seen] == ["session_start", "agent_message", "session_end"]
    assert broker.get_session_metadata("slow").status == "completed"


def test_failed_consultation_rolls_back_review(tmp_path: Path) -> None:
    gate, engine, _, _ = build_gate(tmp_path, [])
    engine.store.save([Task(id="T1", title="feature", status="in-progress")])

    with pytest.raises(AgentTransportError):
        asyncio.run(gate.review_submission("T1", "please review", "system"))

    task = engine.get_task("T1")
    assert task.status == "in-progress"
    assert task.modification_history[-1].details["rollback"] is True


def test_consult_uses_gate_timeout(tmp_path: Path) -> None:
    gate, _, _, created = build_gate(tmp_path, reply("s1", "Thinking..."), hold_open=True, timeout=0.05)

    async def run():
        consultation = await gate.consult("question", "system")
        created[0].release()
        await created[0].wait()
        return consultation

    consultation = asyncio.run(run())

    assert consultation.timed_out
    assert consultation.decision.verdict == "needs-discussion"


def test_proposal_review_selects_items(tmp_path: Path) -> None:
    modifications = [AddTask(title="one"), DeleteTask(task_id="T1")]
    gate, _, _, _ = build_gate(
        tmp_path,
        reply("s1", "Decision: APPROVED\n\nI approve 2 only; keep the first out for now."),
        reply("s2", "Decision: APPROVED"),
        reply("s3", "Let's talk about this first."),
    )

    async def run():
        return [
            await gate.review_proposal(modifications, "p", "s"),
            await gate.review_proposal(modifications, "p", "s"),
            await gate.review_proposal(modifications, "p", "s"),
        ]

    by_index, approve_all, undecided = asyncio.run(run())

    assert by_index.approved == [modifications[1]]
    assert by_index.rejected == [modifications[0]]
    assert approve_all.approved == modifications
    assert undecided.approved == []
    assert undecided.rejected == modifications


def test_needs_changes_with_bulleted_items(tmp_path: Path) -> None:
    text = "This needs changes before it can land.\n\n- Validate the token\n- Add a retry\n- Log failures"
    gate, engine, _, _ = build_gate(tmp_path, reply("s1", text))
    engine.store.save([Task(id="T1", title="login", status="in-progress")])

    outcome = asyncio.run(gate.review_submission("T1", "please review", "system"))

    decision = outcome.consultation.decision
    assert decision.verdict == "changes-requested"
    assert decision.action_items == ["Validate the token", "Add a retry", "Log failures"]
    assert engine.get_task("T1").status == "in-progress"


def test_proposal_rejected_when_verdict_is_not_approval(tmp_path: Path) -> None:
    modifications = [AddTask(title="one"), AddTask(title="two")]
    gate, _, _, _ = build_gate(
        tmp_path,
        reply("s1", "Decision: CHANGES REQUESTED\nI can't approve all of these; item 2 duplicates SQBL-3."),
        reply("s2", "Changes requested. Approve 1 once the title is clearer."),
    )

    async def run():
        return [
            await gate.review_proposal(modifications, "p", "s"),
            await gate.review_proposal(modifications, "p", "s"),
        ]

    outcomes = asyncio.run(run())

    for outcome in outcomes:
        assert outcome.consultation.decision.verdict == "changes-requested"
        assert outcome.approved == []
        assert outcome.rejected == modifications
