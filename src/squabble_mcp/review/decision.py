"""Heuristic classification of free-text reviewer responses.

The reviewer answers in prose, so classification is best effort and every
decision carries a confidence. Precedence:

1. An explicit verdict line (``Decision: APPROVED``, ``Verdict: CHANGES
   REQUESTED``, ``Status: NEEDS DISCUSSION``) wins outright.
2. Otherwise negated approvals ("not approved", "cannot approve",
   "disapprove") count as rejection signals and negated rejections ("no
   changes requested", "doesn't need changes", "nothing to fix") count as
   approval signals; both are masked before the plain keyword scan so that
   "not approved" never also reads as "approved".
3. Any rejection signal means changes are requested. Only approval signals
   means approved. No signal at all means the response needs discussion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

from ..tasks.models import AddTask, BlockTask, DeleteTask, ModifyTask, SplitTask, TaskModification

Verdict = Literal["approved", "changes-requested", "needs-discussion"]

_VERDICT_LINE = re.compile(
    r"^[\s>*#_-]*(?:decision|verdict|status)[\s*_]*:[\s*_]*"
    r"(approved|changes[\s_-]+requested|needs[\s_-]+discussion)\b",
    re.IGNORECASE | re.MULTILINE,
)
_NEGATED_APPROVAL = re.compile(
    r"\b(?:not\s+(?:yet\s+)?approved|cannot\s+approve|can't\s+approve|disapprov(?:e|ed|es))\b",
    re.IGNORECASE,
)
_NO_CHANGES = re.compile(
    r"\b(?:no\s+(?:further\s+|more\s+)?changes\s+(?:are\s+)?(?:needed|required|requested)"
    r"|(?:does\s+not|doesn't|do\s+not|don't)\s+need\s+(?:any\s+)?changes"
    r"|nothing\s+(?:left\s+)?to\s+fix)\b",
    re.IGNORECASE,
)
_APPROVAL = re.compile(r"\b(?:approved|looks\s+good|lgtm|ready\s+to\s+merge)\b", re.IGNORECASE)
_REJECTION = re.compile(
    r"\b(?:needs?\s+changes|changes\s+requested|requires?\s+modifications?|must\s+fix|please\s+update)\b",
    re.IGNORECASE,
)

_ACTION_ITEM = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+?)\s*$")
_DIRECTIVE_BLOCK = re.compile(r"\[TASK_MODIFY\](.*?)\[/TASK_MODIFY\]", re.IGNORECASE | re.DOTALL)
_ADD = re.compile(r'^ADD\s+"([^"]+)"(?:\s+PRIORITY\s+(low|medium|high|critical))?', re.IGNORECASE)
_DELETE = re.compile(r'^DELETE\s+(\S+)(?:\s+"([^"]*)")?', re.IGNORECASE)
_MODIFY = re.compile(r'^MODIFY\s+(\S+)\s+"([^"]*)"', re.IGNORECASE)
_BLOCK = re.compile(r"^BLOCK\s+(\S+)\s+UNTIL\s+(\S+)", re.IGNORECASE)
_SPLIT = re.compile(r"^SPLIT\s+(\S+)\s+INTO\s+(.+)$", re.IGNORECASE)
_QUOTED = re.compile(r'"([^"]+)"')
_SUGGESTED_TASK = re.compile(
    r"\b(?:add|create)\s+(?:a\s+)?(?:new\s+)?task\s+(?:for|to)\s+([^.\n]+)",
    re.IGNORECASE,
)
_APPROVE_ALL = re.compile(r"\bapprove\s+all\b", re.IGNORECASE)
_APPROVE_INDICES = re.compile(
    r"\bapprove(?:d)?\s+((?:(?:items?|modifications?|#)?\s*\d+\s*(?:,|and|&)?\s*)+)",
    re.IGNORECASE,
)
_NEGATION_BEFORE = re.compile(r"(?:\bnot|\bcannot|n't|\bnever)\s+$", re.IGNORECASE)

_SUMMARY_LIMIT = 500


@dataclass(slots=True)
class ReviewDecision:
    verdict: Verdict
    confidence: float
    summary: str
    action_items: list[str] = field(default_factory=list)
    task_modifications: list[TaskModification] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.verdict == "approved"

    def as_dict(self) -> dict[str, object]:
        return {
            "verdict": self.verdict,
            "confidence": self.confidence,
            "summary": self.summary,
            "action_items": list(self.action_items),
            "task_modifications": [item.model_dump() for item in self.task_modifications],
        }


def _normalize_verdict(raw: str) -> Verdict:
    token = re.sub(r"[\s_-]+", "-", raw.strip().lower())
    if token == "approved":
        return "approved"
    if token == "changes-requested":
        return "changes-requested"
    return "needs-discussion"


def _strip_directives(text: str) -> str:
    return _DIRECTIVE_BLOCK.sub("", text)


def summarize(text: str) -> str:
    """First paragraph of ``text``, trimmed to a readable length."""

    for paragraph in re.split(r"\n\s*\n", _strip_directives(text).strip()):
        cleaned = paragraph.strip()
        if cleaned:
            return cleaned if len(cleaned) <= _SUMMARY_LIMIT else cleaned[: _SUMMARY_LIMIT - 3] + "..."
    return ""


def extract_action_items(text: str) -> list[str]:
    items: list[str] = []
    for line in _strip_directives(text).splitlines():
        match = _ACTION_ITEM.match(line)
        if match:
            item = match.group(1).strip()
            if item and item not in items:
                items.append(item)
    return items


def _parse_directive_line(line: str) -> TaskModification | None:
    match = _ADD.match(line)
    if match:
        return AddTask(
            title=match.group(1),
            priority=(match.group(2) or "medium").lower(),
            reason="Requested by reviewer",
            proposed_by="pm",
        )
    match = _DELETE.match(line)
    if match:
        return DeleteTask(
            task_id=match.group(1),
            reason=match.group(2) or "Removed by reviewer",
            proposed_by="pm",
        )
    match = _MODIFY.match(line)
    if match:
        return ModifyTask(
            task_id=match.group(1),
            description=match.group(2),
            reason="Updated by reviewer",
            proposed_by="pm",
        )
    match = _BLOCK.match(line)
    if match:
        return BlockTask(
            task_id=match.group(1),
            blocked_by=match.group(2),
            reason=f"Blocked until {match.group(2)}",
            proposed_by="pm",
        )
    match = _SPLIT.match(line)
    if match:
        titles = _QUOTED.findall(match.group(2))
        if titles:
            return SplitTask(
                task_id=match.group(1),
                subtasks=titles,
                reason="Split by reviewer",
                proposed_by="pm",
            )
    return None


def parse_directives(text: str) -> list[TaskModification]:
    """Read ``[TASK_MODIFY]`` blocks and free-text new-task suggestions."""

    modifications: list[TaskModification] = []
    for block in _DIRECTIVE_BLOCK.findall(text):
        for raw_line in block.splitlines():
            line = re.sub(r"^\s*(?:[-*•]|\d+[.)])?\s*", "", raw_line).strip()
            if not line:
                continue
            modification = _parse_directive_line(line)
            if modification is not None:
                modifications.append(modification)

    known_titles = {item.title.lower() for item in modifications if isinstance(item, AddTask)}
    for match in _SUGGESTED_TASK.finditer(_strip_directives(text)):
        title = match.group(1).strip().strip("\"'` ")
        if title and title.lower() not in known_titles:
            known_titles.add(title.lower())
            modifications.append(
                AddTask(title=title, priority="medium", reason="Suggested during review", proposed_by="pm")
            )
    return modifications


def classify_review(text: str) -> ReviewDecision:
    body = text or ""
    summary = summarize(body)
    action_items = extract_action_items(body)
    modifications = parse_directives(body)

    verdict_line = _VERDICT_LINE.search(body)
    if verdict_line:
        return ReviewDecision(
            verdict=_normalize_verdict(verdict_line.group(1)),
            confidence=0.95,
            summary=summary,
            action_items=action_items,
            task_modifications=modifications,
        )

    scan = _strip_directives(body)
    rejections = len(_NEGATED_APPROVAL.findall(scan))
    scan = _NEGATED_APPROVAL.sub(" ", scan)
    approvals = len(_NO_CHANGES.findall(scan))
    scan = _NO_CHANGES.sub(" ", scan)
    approvals += len(_APPROVAL.findall(scan))
    rejections += len(_REJECTION.findall(scan))

    if rejections:
        verdict: Verdict = "changes-requested"
        confidence = 0.5 if approvals else 0.8
    elif approvals:
        verdict, confidence = "approved", 0.8
    else:
        verdict, confidence = "needs-discussion", 0.2

    return ReviewDecision(
        verdict=verdict,
        confidence=confidence,
        summary=summary,
        action_items=action_items,
        task_modifications=modifications,
    )


def _negated(text: str, start: int) -> bool:
    return bool(_NEGATION_BEFORE.search(text[max(0, start - 20) : start]))


def approved_indices(text: str, count: int) -> list[int]:
    """Zero-based indices of proposal items the reviewer approved by number.

    Understands "approve all" and phrases like "approve 1 and 3" or
    "approved items 2, 4". Numbers outside ``1..count`` are ignored, and so
    are negated phrases such as "can't approve all".
    """

    if count <= 0:
        return []
    body = text or ""
    if any(not _negated(body, match.start()) for match in _APPROVE_ALL.finditer(body)):
        return list(range(count))
    chosen: set[int] = set()
    for match in _APPROVE_INDICES.finditer(body):
        if _negated(body, match.start()):
            continue
        for number in re.findall(r"\d+", match.group(1)):
            value = int(number)
            if 1 <= value <= count:
                chosen.add(value - 1)
    return sorted(chosen)


__all__ = [
    "ReviewDecision",
    "Verdict",
    "approved_indices",
    "classify_review",
    "extract_action_items",
    "parse_directives",
    "summarize",
]
