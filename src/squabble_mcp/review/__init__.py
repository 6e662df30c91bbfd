"""Reviewer consultations and response classification."""

from .decision import (
    ReviewDecision,
    Verdict,
    approved_indices,
    classify_review,
    extract_action_items,
    parse_directives,
    summarize,
)
from .gate import Consultation, ProposalOutcome, ReviewGate, ReviewOutcome, still_running_message

__all__ = [
    "Consultation",
    "ProposalOutcome",
    "ReviewDecision",
    "ReviewGate",
    "ReviewOutcome",
    "Verdict",
    "approved_indices",
    "classify_review",
    "extract_action_items",
    "parse_directives",
    "still_running_message",
    "summarize",
]
