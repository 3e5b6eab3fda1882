"""Progress tracking for subtasks.

Durations are protected: the estimate (or the user's override) is never
rewritten here. Logging time only appends to the session history and moves
``time_spent``; everything else is derived.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sessionplan.core.time_arithmetic import date_string
from sessionplan.models.subtask import SessionRecord, Subtask

logger = logging.getLogger(__name__)

TOTAL_DURATION_TOLERANCE = 1
REMAINING_TIME_TOLERANCE = 5


@dataclass
class DurationValidation:
    is_valid: bool
    corrected: Subtask
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def log_session(
    subtask: Subtask,
    minutes: int,
    notes: str | None = None,
    *,
    on: date | None = None,
    segment_index: int | None = None,
    total_segments: int | None = None,
) -> Subtask:
    """Return a copy of ``subtask`` with ``minutes`` of work recorded."""
    if minutes < 0:
        raise ValueError(f"Cannot log a negative duration ({minutes} minutes)")

    record = SessionRecord(
        date=on or date.today(),
        duration=minutes,
        notes=notes,
        segment_index=segment_index,
        total_segments=total_segments,
    )
    time_spent = subtask.time_spent + minutes
    updated = subtask.model_copy(
        update={
            "time_spent": time_spent,
            "session_history": (*subtask.session_history, record),
        }
    )
    if not updated.completed and updated.effective_duration > 0 and updated.progress_percentage >= 100:
        updated = updated.model_copy(update={"completed": True, "completed_at": datetime.now()})
        logger.info(f"Subtask {subtask.id} completed after {time_spent} minutes")
    return _with_snapshots(updated)


def _with_snapshots(subtask: Subtask) -> Subtask:
    return subtask.model_copy(
        update={
            "total_duration": subtask.effective_duration,
            "recorded_remaining": subtask.remaining_time,
            "recorded_progress": subtask.progress_percentage,
        }
    )


def validate_durations(subtask: Subtask) -> DurationValidation:
    """Detect stored duration snapshots that drifted from the derived values.

    The returned ``corrected`` copy always carries the derived values; drift is
    logged, never propagated.
    """
    issues: list[str] = []
    warnings: list[str] = []
    effective = subtask.effective_duration

    if subtask.total_duration is not None and abs(subtask.total_duration - effective) > TOTAL_DURATION_TOLERANCE:
        issues.append(
            f"Stored total duration {subtask.total_duration} does not match "
            f"effective duration {effective}"
        )
    if (
        subtask.recorded_remaining is not None
        and abs(subtask.recorded_remaining - subtask.remaining_time) > REMAINING_TIME_TOLERANCE
    ):
        warnings.append(
            f"Stored remaining time {subtask.recorded_remaining} differs from "
            f"derived remaining time {subtask.remaining_time}"
        )
    if subtask.time_spent > effective:
        warnings.append(f"Time spent {subtask.time_spent} exceeds duration {effective}")

    for message in issues + warnings:
        logger.warning(f"Subtask {subtask.id}: {message}")

    return DurationValidation(
        is_valid=not issues,
        corrected=_with_snapshots(subtask),
        issues=issues,
        warnings=warnings,
    )


def get_subtask_stats(subtask: Subtask) -> dict[str, Any]:
    history = subtask.session_history
    last_session = max((record.date for record in history), default=None)
    return {
        "total_duration": subtask.effective_duration,
        "time_spent": subtask.time_spent,
        "remaining_time": subtask.remaining_time,
        "progress_percentage": subtask.progress_percentage,
        "session_count": len(history),
        "last_session_date": date_string(last_session) if last_session else None,
        "average_session_minutes": round(sum(r.duration for r in history) / len(history)) if history else 0,
        "is_completed": subtask.completed,
    }
