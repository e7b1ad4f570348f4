from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from .errors import NoSlotAvailableError
from .models import Job
from .utils import format_clock

DEFAULT_WORKING_HOURS_END = 17


@dataclass(slots=True)
class CollisionResult:
    has_collision: bool
    overlapping_jobs: list[Job] = field(default_factory=list)
    message: str | None = None


@dataclass(slots=True)
class SlotPlan:
    start: datetime
    end: datetime
    shifted: bool = False
    message: str | None = None


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    # half-open intervals: touching edges do not overlap
    return start_a < end_b and start_b < end_a


def _scheduled(jobs: Iterable[Job]) -> list[Job]:
    return [job for job in jobs if job.is_scheduled]


def check_collision(
    proposed_start: datetime,
    proposed_end: datetime,
    existing_jobs: Iterable[Job],
    exclude_job_id: str | None = None,
) -> CollisionResult:
    overlapping = [
        job
        for job in _scheduled(existing_jobs)
        if job.id != exclude_job_id
        and overlaps(proposed_start, proposed_end, job.scheduled_start, job.scheduled_end)
    ]
    if not overlapping:
        return CollisionResult(has_collision=False)
    titles = ", ".join(job.title for job in overlapping)
    noun = "job" if len(overlapping) == 1 else "jobs"
    return CollisionResult(
        has_collision=True,
        overlapping_jobs=overlapping,
        message=f"Conflicts with {len(overlapping)} scheduled {noun}: {titles}",
    )


def find_next_available_slot(
    proposed_start: datetime,
    duration_minutes: int,
    existing_jobs: Iterable[Job],
    working_hours_end: int = DEFAULT_WORKING_HOURS_END,
) -> datetime | None:
    """Greedy forward scan for the first gap that fits ``duration_minutes``.

    A candidate that fits before the next job is returned as is. Once every job
    has been passed, the candidate is kept only if its end hour of day is at
    most ``working_hours_end``; otherwise ``None``.
    """
    duration = timedelta(minutes=duration_minutes)
    ordered = sorted(_scheduled(existing_jobs), key=lambda job: job.scheduled_start)

    candidate = proposed_start
    for job in ordered:
        if candidate + duration <= job.scheduled_start:
            return candidate
        if candidate < job.scheduled_end:
            candidate = job.scheduled_end

    if (candidate + duration).hour > working_hours_end:
        return None
    return candidate


def resolve_slot(
    proposed_start: datetime,
    duration_minutes: int,
    existing_jobs: Iterable[Job],
    working_hours_end: int = DEFAULT_WORKING_HOURS_END,
    exclude_job_id: str | None = None,
) -> SlotPlan:
    """Keep the proposed slot when it is free, otherwise auto-shift to the next gap."""
    jobs = list(existing_jobs)
    if exclude_job_id is not None:
        jobs = [job for job in jobs if job.id != exclude_job_id]
    proposed_end = proposed_start + timedelta(minutes=duration_minutes)
    collision = check_collision(proposed_start, proposed_end, jobs)
    if not collision.has_collision:
        return SlotPlan(start=proposed_start, end=proposed_end)

    next_slot = find_next_available_slot(proposed_start, duration_minutes, jobs, working_hours_end)
    if next_slot is None:
        raise NoSlotAvailableError(collision.message or "Conflicting schedule")
    return SlotPlan(
        start=next_slot,
        end=next_slot + timedelta(minutes=duration_minutes),
        shifted=True,
        message=f"{collision.message}. Auto-shifted to {format_clock(next_slot)}.",
    )
