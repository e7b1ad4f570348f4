from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, TypeVar

from .app_logging import get_logger, log_with_fields
from .cache import DispatchCache, Resource
from .config import AppConfig
from .models import (
    DaySchedule,
    Dispatch,
    DispatchStatus,
    Job,
    JobStatus,
    Location,
    Priority,
    ServiceOrder,
    Technician,
    TechnicianStatus,
)
from .remote import Payload, RemoteError, RemoteServices, page_items
from .store import ScheduleOverrideStore, TechnicianMetadataStore
from .utils import (
    NUMERIC_ID_REGEX,
    day_key,
    ids_match,
    minutes_between,
    numeric_id,
    parse_datetime,
    parse_int_id,
    parse_time_of_day,
)

# Remote job statuses that keep a job out of the unassigned pool.
NON_POOL_JOB_STATUSES = frozenset(
    {"completed", "cancelled", "dispatched", "in_progress", "scheduled", "planned", "assigned"}
)
PLANNABLE_ORDER_STATUSES = frozenset({"pending", "ready_for_planning", "planned", "scheduled", "in_progress"})

E = TypeVar("E")


def _enum(enum_type: type[E], value: Any, default: E) -> E:
    try:
        return enum_type(str(value).lower())  # type: ignore[call-arg]
    except ValueError:
        return default


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _location(payload: Payload, fallback: str = "No address") -> Location:
    address = payload.get("siteAddress") or payload.get("address") or fallback
    lat = payload.get("latitude", payload.get("lat"))
    lng = payload.get("longitude", payload.get("lng"))
    return Location(
        address=str(address),
        lat=float(lat) if lat is not None else None,
        lng=float(lng) if lng is not None else None,
    )


def job_status_from_remote(raw: Any) -> JobStatus:
    status = str(raw or "").lower()
    if status == "completed":
        return JobStatus.COMPLETED
    if status == "cancelled":
        return JobStatus.CANCELLED
    if status == "in_progress":
        return JobStatus.IN_PROGRESS
    if status in NON_POOL_JOB_STATUSES:
        return JobStatus.ASSIGNED
    return JobStatus.UNASSIGNED


def parse_dispatch(payload: Payload) -> Dispatch:
    scheduling = payload.get("scheduling") or {}
    job_ids = [str(item) for item in payload.get("jobIds") or []]
    return Dispatch(
        id=str(payload["id"]),
        status=_enum(DispatchStatus, payload.get("status"), DispatchStatus.ASSIGNED),
        dispatch_number=_opt_str(payload.get("dispatchNumber")),
        priority=_enum(Priority, payload.get("priority"), Priority.MEDIUM),
        scheduled_date=parse_datetime(payload.get("scheduledDate") or scheduling.get("scheduledDate")),
        scheduled_start_time=scheduling.get("scheduledStartTime") or payload.get("scheduledStartTime"),
        scheduled_end_time=scheduling.get("scheduledEndTime") or payload.get("scheduledEndTime"),
        estimated_duration=scheduling.get("estimatedDuration") or payload.get("estimatedDuration"),
        job_id=_opt_str(payload.get("jobId")),
        job_ids=job_ids,
        service_order_id=_opt_str(payload.get("serviceOrderId")),
        installation_id=_opt_str(payload.get("installationId")),
        installation_name=payload.get("installationName"),
        contact_id=_opt_str(payload.get("contactId")),
        contact_name=payload.get("contactName"),
        site_address=payload.get("siteAddress"),
        notes=payload.get("notes") or "",
        assigned_technicians=list(payload.get("assignedTechnicians") or []),
        assigned_technician_ids=[str(item) for item in payload.get("assignedTechnicianIds") or []],
        dispatched_by=_opt_str(payload.get("dispatchedBy")),
        created_date=payload.get("createdDate"),
        created_by=payload.get("createdBy"),
        modified_date=payload.get("modifiedDate"),
        modified_by=payload.get("modifiedBy"),
    )


def parse_job(payload: Payload, order: ServiceOrder | None = None, default_duration: int = 60) -> Job:
    duration = int(payload.get("estimatedDuration") or default_duration)
    priority_raw = payload.get("priority") or (order.priority.value if order else None)
    return Job(
        id=str(payload["id"]),
        title=payload.get("title") or f"Job #{payload['id']}",
        description=payload.get("jobDescription") or payload.get("description") or "",
        status=job_status_from_remote(payload.get("status")),
        priority=_enum(Priority, priority_raw, Priority.MEDIUM),
        estimated_duration=duration,
        original_duration=int(payload.get("originalDuration") or duration),
        required_skills=list(payload.get("requiredSkills") or []),
        location=_location(payload),
        customer_name=(order.contact_name if order else None) or payload.get("contactName") or "Unknown",
        customer_phone=payload.get("contactPhone"),
        customer_email=payload.get("contactEmail"),
        contact_id=order.contact_id if order else _opt_str(payload.get("contactId")),
        service_order_id=order.id if order else _opt_str(payload.get("serviceOrderId")),
        service_order_number=order.order_number if order else None,
        service_order_title=(order.title or order.order_number) if order else None,
        installation_id=_opt_str(payload.get("installationId")),
        installation_name=payload.get("installationName"),
        created_at=parse_datetime(payload.get("createdDate")),
        updated_at=parse_datetime(payload.get("modifiedDate")),
    )


def parse_service_order(payload: Payload, default_duration: int = 60) -> ServiceOrder:
    order = ServiceOrder(
        id=str(payload["id"]),
        order_number=str(payload.get("orderNumber") or f"SO-{payload['id']}"),
        status=str(payload.get("status") or "pending").lower(),
        title=payload.get("title") or "",
        priority=_enum(Priority, payload.get("priority"), Priority.MEDIUM),
        contact_id=_opt_str(payload.get("contactId")),
        contact_name=payload.get("contactName"),
    )
    order.jobs = [parse_job(item, order, default_duration) for item in payload.get("jobs") or []]
    return order


def _working_hours(raw: Any) -> dict[str, DaySchedule]:
    if not isinstance(raw, dict):
        return {}
    schedule: dict[str, DaySchedule] = {}
    for day, value in raw.items():
        if not isinstance(value, dict):
            continue
        schedule[str(day)] = DaySchedule(
            enabled=bool(value.get("enabled", True)),
            start=str(value.get("start", "08:00")),
            end=str(value.get("end", "17:00")),
            lunch_start=value.get("lunchStart"),
            lunch_end=value.get("lunchEnd"),
        )
    return schedule


def parse_technician(payload: Payload, metadata: dict[str, Any] | None = None, technician_id: str | None = None) -> Technician:
    metadata = metadata or {}
    location = metadata.get("location") or payload.get("location")
    return Technician(
        id=technician_id or str(payload["id"]),
        first_name=payload.get("firstName") or payload.get("first_name") or "",
        last_name=payload.get("lastName") or payload.get("last_name") or "",
        email=payload.get("email"),
        phone=payload.get("phone") or payload.get("phoneNumber"),
        skills=list(metadata.get("skills") or payload.get("skills") or []),
        status=_enum(TechnicianStatus, metadata.get("status") or payload.get("status"), TechnicianStatus.AVAILABLE),
        working_hours=_working_hours(metadata.get("workingHours") or payload.get("workingHours")),
        location=_location(location) if isinstance(location, dict) else None,
    )


def extract_technician_id(dispatch: Dispatch) -> str | None:
    """Resolve the technician of a dispatch from whichever shape the server filled in."""
    if dispatch.assigned_technicians:
        first = dispatch.assigned_technicians[0]
        if isinstance(first, dict) and first.get("id"):
            return str(first["id"])
        if isinstance(first, (str, int)) and not isinstance(first, bool):
            return str(first)

    if dispatch.assigned_technician_ids:
        return str(dispatch.assigned_technician_ids[0])

    if dispatch.dispatched_by:
        match = NUMERIC_ID_REGEX.search(dispatch.dispatched_by)
        if match:
            return match.group(0)
    return None


def technician_matches_dispatch(dispatch: Dispatch, technician_id: str) -> bool:
    dispatch_technician_id = extract_technician_id(dispatch)
    if not dispatch_technician_id:
        return False
    return ids_match(dispatch_technician_id, technician_id)


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for index in range(0, len(items), size):
        yield items[index : index + size]


class JobMapper:
    """Turns remote records into board jobs and owns the cached read paths."""

    def __init__(
        self,
        cache: DispatchCache,
        remote: RemoteServices,
        overrides: ScheduleOverrideStore,
        config: AppConfig | None = None,
        technician_meta: TechnicianMetadataStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.overrides = overrides
        self.config = config or AppConfig()
        self.technician_meta = technician_meta
        self.logger = logger or get_logger()
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def default_duration(self) -> int:
        return self.config.scheduling.default_duration_minutes

    # dispatch -> calendar job

    def _server_interval(self, dispatch: Dispatch) -> tuple[datetime, datetime, bool]:
        scheduled_date = dispatch.scheduled_date or datetime.now().replace(second=0, microsecond=0)
        start = scheduled_date
        start_time = parse_time_of_day(dispatch.scheduled_start_time)
        end_time = parse_time_of_day(dispatch.scheduled_end_time)
        if start_time is not None:
            start = datetime.combine(scheduled_date.date(), start_time)
        if end_time is not None:
            end = datetime.combine(scheduled_date.date(), end_time)
            if end <= start:
                end += timedelta(days=1)
        else:
            end = start + timedelta(minutes=dispatch.estimated_duration or self.default_duration)
        return start, end, start_time is not None and end_time is not None

    def resolve_interval(self, dispatch: Dispatch) -> tuple[datetime, datetime]:
        """Local override first, then explicit server times, then date plus default duration."""
        start, end, explicit = self._server_interval(dispatch)
        override = self.overrides.get(dispatch.id)
        if override is None:
            return start, end
        if explicit and override.start == start and override.end == end:
            self.overrides.discard(dispatch.id)
            return start, end
        return override.start, override.end

    def dispatch_to_job(self, dispatch: Dispatch, technician_id: str | None = None) -> Job:
        start, end = self.resolve_interval(dispatch)
        duration = max(self.config.scheduling.min_duration_minutes, minutes_between(start, end))
        clean_notes = dispatch.notes.strip() if isinstance(dispatch.notes, str) else ""

        order_id = dispatch.service_order_id or dispatch.job_id
        order_number = f"SO-{dispatch.service_order_id}"
        order_title = order_number
        for order in self.cache.service_orders:
            if order.id == str(dispatch.service_order_id):
                order_number = order.order_number or order_number
                order_title = order.title or order.order_number or order_title
                break

        multi_job = len(dispatch.job_ids) > 1
        if multi_job and dispatch.installation_name:
            title = dispatch.installation_name
        else:
            title = clean_notes.split("\n")[0] or f"Dispatch #{dispatch.dispatch_number}"
        description = f"{len(dispatch.job_ids)} jobs" if multi_job else clean_notes

        if dispatch.status == DispatchStatus.COMPLETED:
            status = JobStatus.COMPLETED
        elif dispatch.status == DispatchStatus.IN_PROGRESS:
            status = JobStatus.IN_PROGRESS
        else:
            status = JobStatus.ASSIGNED

        if technician_id is None:
            technician_id = extract_technician_id(dispatch)
        return Job(
            id=dispatch.id,
            title=title,
            description=description,
            status=status,
            priority=dispatch.priority,
            estimated_duration=duration,
            service_order_id=_opt_str(order_id),
            service_order_number=order_number,
            service_order_title=order_title,
            assigned_technician_id=numeric_id(technician_id) if technician_id else None,
            dispatch_id=dispatch.id,
            job_ids=sorted(dispatch.referenced_job_ids()),
            scheduled_start=start,
            scheduled_end=end,
            is_locked=dispatch.is_locked,
            installation_id=dispatch.installation_id,
            installation_name=dispatch.installation_name,
            location=Location(address=dispatch.site_address or "No address"),
            customer_name=dispatch.contact_name or "Unknown",
            contact_id=dispatch.contact_id,
            created_at=parse_datetime(dispatch.created_date) or datetime.now(),
            updated_at=parse_datetime(dispatch.modified_date) or datetime.now(),
        )

    # unassigned pool

    @staticmethod
    def is_pool_eligible(job: Job, dispatched_job_ids: set[str]) -> bool:
        return job.id not in dispatched_job_ids and job.status == JobStatus.UNASSIGNED

    def unassigned_pool(self, service_orders: list[ServiceOrder], dispatches: list[Dispatch]) -> list[Job]:
        dispatched: set[str] = set()
        for dispatch in dispatches:
            dispatched |= dispatch.referenced_job_ids()
        return [
            job
            for order in service_orders
            if order.status in PLANNABLE_ORDER_STATUSES
            for job in order.jobs
            if self.is_pool_eligible(job, dispatched)
        ]

    # technicians

    async def _load_technicians(self) -> list[Technician]:
        users = await self.remote.users.get_all()
        technicians = [
            parse_technician(user, self._technician_metadata(str(user["id"])))
            for user in users
            if user.get("id") is not None
        ]
        admin_id = self.config.remote.admin_user_id
        if admin_id is not None and not any(ids_match(tech.id, admin_id) for tech in technicians):
            try:
                admin = await self.remote.users.get_by_id(admin_id)
            except RemoteError as exc:
                log_with_fields(self.logger, logging.WARNING, "admin_user_fetch_failed", user_id=admin_id, error=str(exc))
            else:
                technician_id = f"admin-{admin_id}"
                technicians.append(parse_technician(admin, self._technician_metadata(technician_id), technician_id))
        return technicians

    def _technician_metadata(self, technician_id: str) -> dict[str, Any]:
        if self.technician_meta is None:
            return {}
        return self.technician_meta.get(technician_id)

    async def fetch_technicians(self, force: bool = False) -> list[Technician]:
        if not force and self.cache.has_fresh_technicians():
            return self.cache.technicians
        try:
            return await self.cache.fetch_once(Resource.TECHNICIANS, self._load_technicians)
        except RemoteError as exc:
            log_with_fields(self.logger, logging.ERROR, "technicians_fetch_failed", error=str(exc))
            return self.cache.technicians

    # dispatches

    async def _load_dispatches(self) -> list[Dispatch]:
        page = await self.remote.dispatches.get_all({"pageSize": self.config.scheduling.dispatch_page_size})
        return [parse_dispatch(item) for item in page_items(page)]

    async def fetch_dispatches(self, force: bool = False) -> list[Dispatch]:
        if not force and self.cache.has_fresh_dispatches():
            return self.cache.dispatches
        try:
            return await self.cache.fetch_once(Resource.DISPATCHES, self._load_dispatches)
        except RemoteError as exc:
            log_with_fields(self.logger, logging.ERROR, "dispatches_fetch_failed", error=str(exc))
            return self.cache.dispatches

    # service orders and the unassigned pool

    async def _load_service_orders(self) -> tuple[list[ServiceOrder], list[Job]]:
        page = await self.remote.service_orders.get_all(
            {"pageSize": self.config.scheduling.dispatch_page_size, "includeJobs": True}
        )
        orders = [parse_service_order(item, self.default_duration) for item in page_items(page, "serviceOrders")]
        dispatches = await self.fetch_dispatches()
        pool = self.unassigned_pool(orders, dispatches)
        await self.resolve_installation_names(pool, orders)
        return orders, pool

    def _store_service_orders(self, result: tuple[list[ServiceOrder], list[Job]]) -> None:
        orders, pool = result
        self.cache.service_orders = orders
        self.cache.unassigned_jobs = pool

    async def refresh_service_orders(self) -> list[Job]:
        try:
            _, pool = await self.cache.fetch_once(
                Resource.SERVICE_ORDERS, self._load_service_orders, self._store_service_orders
            )
        except RemoteError as exc:
            log_with_fields(self.logger, logging.ERROR, "service_orders_fetch_failed", error=str(exc))
            return self.cache.unassigned_jobs
        return pool

    async def fetch_unassigned_jobs(self, force: bool = False) -> list[Job]:
        """Fresh cache, else stale cache plus a background refresh, else a blocking fetch."""
        if not force and self.cache.has_fresh_unassigned_jobs():
            return self.cache.unassigned_jobs
        if not force and self.cache.has_stale_unassigned_jobs():
            self.refresh_in_background()
            return self.cache.unassigned_jobs
        return await self.refresh_service_orders()

    def refresh_in_background(self) -> asyncio.Task[list[Job]]:
        task = asyncio.ensure_future(self.refresh_service_orders())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background))

    # installation names

    async def _lookup_installation(self, installation_id: str) -> None:
        numeric = parse_int_id(installation_id)
        if numeric is None:
            return
        try:
            installation = await self.remote.installations.get_by_id(numeric)
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "installation_lookup_failed",
                installation_id=installation_id,
                error=str(exc),
            )
            return
        name = installation.get("name") if isinstance(installation, dict) else None
        if name:
            self.cache.set_installation_name(installation_id, str(name))

    async def resolve_installation_names(self, jobs: list[Job], service_orders: list[ServiceOrder]) -> None:
        all_jobs = list(jobs) + [job for order in service_orders for job in order.jobs]
        missing: list[str] = []
        for job in all_jobs:
            installation_id = job.installation_id
            if not installation_id or job.installation_name:
                continue
            if self.cache.has_installation_name(installation_id) or installation_id in missing:
                continue
            missing.append(installation_id)

        for batch in _chunks(missing, self.config.scheduling.installation_batch_size):
            await asyncio.gather(*(self._lookup_installation(item) for item in batch))

        for job in all_jobs:
            if job.installation_id and not job.installation_name:
                job.installation_name = self.cache.get_installation_name(job.installation_id)

    # assigned jobs for the calendar

    async def _dispatches_between(self, start: datetime, end: datetime) -> list[Dispatch]:
        page = await self.remote.dispatches.get_all(
            {
                "pageSize": self.config.scheduling.dispatch_page_size,
                "dateFrom": start.isoformat(),
                "dateTo": end.isoformat(),
            }
        )
        return [parse_dispatch(item) for item in page_items(page)]

    async def get_assigned_jobs_for_technician(self, technician_id: str, day: date) -> list[Job]:
        key = day_key(technician_id, day)
        cached = self.cache.get_assigned_jobs(key)
        if cached is not None:
            return cached

        generation = self.cache.assigned_jobs_generation
        try:
            dispatches = await self._dispatches_between(
                datetime.combine(day, time.min), datetime.combine(day, time.max)
            )
        except RemoteError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "assigned_jobs_fetch_failed",
                technician_id=technician_id,
                day=day.isoformat(),
                error=str(exc),
            )
            return []

        jobs = [
            self.dispatch_to_job(dispatch, technician_id)
            for dispatch in dispatches
            if technician_matches_dispatch(dispatch, technician_id)
        ]
        self.cache.set_assigned_jobs(key, jobs, generation)
        return jobs

    async def get_assigned_jobs_for_date_range(
        self,
        technician_ids: list[str],
        start: date,
        end: date,
    ) -> dict[str, list[Job]]:
        generation = self.cache.assigned_jobs_generation
        try:
            dispatches = await self._dispatches_between(
                datetime.combine(start, time.min), datetime.combine(end, time.max)
            )
        except RemoteError as exc:
            log_with_fields(self.logger, logging.ERROR, "assigned_jobs_range_fetch_failed", error=str(exc))
            return {}

        result: dict[str, list[Job]] = {}
        for dispatch in dispatches:
            dispatch_technician_id = extract_technician_id(dispatch)
            if not dispatch_technician_id:
                continue
            matching = next(
                (candidate for candidate in technician_ids if ids_match(candidate, dispatch_technician_id)),
                None,
            )
            if matching is None:
                continue
            job = self.dispatch_to_job(dispatch, matching)
            result.setdefault(day_key(matching, job.scheduled_start), []).append(job)

        for key, jobs in result.items():
            self.cache.set_assigned_jobs(key, jobs, generation)
        return result
