from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TechnicianStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"
    ON_LEAVE = "on_leave"
    NOT_WORKING = "not_working"
    OVER_CAPACITY = "over_capacity"


class DispatchStatus(str, Enum):
    PENDING = "pending"
    PLANNED = "planned"
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


LOCKED_STATUSES = frozenset({DispatchStatus.CONFIRMED, DispatchStatus.IN_PROGRESS, DispatchStatus.COMPLETED})


def is_locked_status(status: DispatchStatus | str | None) -> bool:
    """Confirmed dispatches and anything past them are locked against edits and deletion."""
    if status is None:
        return False
    if isinstance(status, DispatchStatus):
        return status in LOCKED_STATUSES
    try:
        return DispatchStatus(str(status).strip().lower()) in LOCKED_STATUSES
    except ValueError:
        return False


@dataclass(slots=True)
class Location:
    address: str
    lat: float | None = None
    lng: float | None = None


@dataclass(slots=True)
class DaySchedule:
    enabled: bool = True
    start: str = "08:00"
    end: str = "17:00"
    lunch_start: str | None = None
    lunch_end: str | None = None


@dataclass(slots=True)
class Job:
    id: str
    title: str
    status: JobStatus = JobStatus.UNASSIGNED
    priority: Priority = Priority.MEDIUM
    estimated_duration: int = 60
    original_duration: int | None = None
    description: str = ""
    required_skills: list[str] = field(default_factory=list)
    location: Location = field(default_factory=lambda: Location(address="No address"))
    customer_name: str = "Unknown"
    customer_phone: str | None = None
    customer_email: str | None = None
    contact_id: str | None = None
    service_order_id: str | None = None
    service_order_number: str | None = None
    service_order_title: str | None = None
    installation_id: str | None = None
    installation_name: str | None = None
    assigned_technician_id: str | None = None
    dispatch_id: str | None = None
    job_ids: list[str] = field(default_factory=list)
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    is_locked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.original_duration is None:
            self.original_duration = self.estimated_duration

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_start is not None and self.scheduled_end is not None


@dataclass(slots=True)
class Technician:
    id: str
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    skills: list[str] = field(default_factory=list)
    status: TechnicianStatus = TechnicianStatus.AVAILABLE
    working_hours: dict[str, DaySchedule] = field(default_factory=dict)
    location: Location | None = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or (self.email or self.id)


@dataclass(slots=True)
class Dispatch:
    id: str
    status: DispatchStatus
    dispatch_number: str | None = None
    priority: Priority = Priority.MEDIUM
    scheduled_date: datetime | None = None
    scheduled_start_time: str | None = None
    scheduled_end_time: str | None = None
    estimated_duration: int | None = None
    job_id: str | None = None
    job_ids: list[str] = field(default_factory=list)
    service_order_id: str | None = None
    installation_id: str | None = None
    installation_name: str | None = None
    contact_id: str | None = None
    contact_name: str | None = None
    site_address: str | None = None
    notes: str = ""
    assigned_technicians: list[object] = field(default_factory=list)
    assigned_technician_ids: list[str] = field(default_factory=list)
    dispatched_by: str | None = None
    created_date: str | None = None
    created_by: str | None = None
    modified_date: str | None = None
    modified_by: str | None = None

    @property
    def is_locked(self) -> bool:
        return is_locked_status(self.status)

    @property
    def label(self) -> str:
        return self.dispatch_number or self.id

    def referenced_job_ids(self) -> set[str]:
        referenced = set(self.job_ids)
        if self.job_id:
            referenced.add(self.job_id)
        return referenced


@dataclass(slots=True)
class ServiceOrder:
    id: str
    order_number: str
    status: str
    title: str = ""
    priority: Priority = Priority.MEDIUM
    contact_id: str | None = None
    contact_name: str | None = None
    jobs: list[Job] = field(default_factory=list)


@dataclass(slots=True)
class InstallationGroup:
    installation_id: str
    installation_name: str
    jobs: list[Job]

    @property
    def total_duration(self) -> int:
        return sum(job.estimated_duration for job in self.jobs)


@dataclass(slots=True)
class ScheduleOverride:
    start: datetime
    end: datetime
    updated_at: float


@dataclass(slots=True)
class LockInfo:
    is_locked: bool
    locked_at: str | None = None
    locked_by: str | None = None
