"""
Feedback selection.

For each report section we attach up to two pieces of narrative feedback
from the feedback library:

- overall: the one "overall" entry for (assessment, dimension), shown no
  matter what the score is
- specific: an entry whose [min_score, max_score] band contains the
  section's score; a NULL bound is open on that side

When several entries qualify we always take the earliest by
(created_at, id), so regenerating a report never shuffles its text.
"""

from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from assessment_reports.models import FeedbackEntry


@dataclass
class FeedbackSelection:
    overall_feedback: Optional[str] = None
    overall_feedback_id: Optional[str] = None
    specific_feedback: Optional[str] = None
    specific_feedback_id: Optional[str] = None


def _ordered(entries: Iterable[FeedbackEntry]) -> list[FeedbackEntry]:
    return sorted(entries, key=lambda e: (e.created_at, str(e.id)))


def score_in_band(score: float, min_score: Optional[float], max_score: Optional[float]) -> bool:
    """Inclusive band check. NULL bounds don't constrain."""
    if min_score is not None and score < min_score:
        return False
    if max_score is not None and score > max_score:
        return False
    return True


def select_feedback(
    entries: Iterable[FeedbackEntry],
    dimension_id: Optional[UUID],
    score: Optional[float],
) -> FeedbackSelection:
    """Pick the overall and score-banded feedback for one dimension.

    Args:
        entries: Feedback library rows for the assessment (any dimension).
        dimension_id: The section's dimension, or None for report-level feedback.
        score: The section score. None (partial reports) means no specific feedback.
    """
    candidates = _ordered(e for e in entries if e.dimension_id == dimension_id)
    selection = FeedbackSelection()

    for entry in candidates:
        if entry.type == "overall":
            selection.overall_feedback = entry.feedback
            selection.overall_feedback_id = str(entry.id)
            break

    if score is not None:
        for entry in candidates:
            if entry.type == "specific" and score_in_band(score, entry.min_score, entry.max_score):
                selection.specific_feedback = entry.feedback
                selection.specific_feedback_id = str(entry.id)
                break

    return selection
