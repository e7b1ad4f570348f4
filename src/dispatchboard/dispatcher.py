from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from .app_logging import get_logger, log_with_fields
from .cache import DispatchCache
from .collision import SlotPlan, resolve_slot
from .config import AppConfig
from .errors import AlreadyProcessingError, DispatchLockedError, NoSlotAvailableError, ValidationError
from .mapping import JobMapper, parse_dispatch
from .models import Dispatch, DispatchStatus, InstallationGroup, Job, LockInfo, Priority
from .remote import Payload, RemoteError, RemoteServices
from .undo import RestoreFn, UndoAction, UndoKind, UndoLog
from .utils import display_name, format_clock, format_time_of_day, minutes_between, numeric_id, parse_int_id


@dataclass(slots=True)
class BatchAssignment:
    success: list[Dispatch] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    end: datetime | None = None


def installation_group_key(installation_id: str) -> str:
    # prefixed so group keys never collide with plain job ids
    return f"inst-{installation_id}"


class Dispatcher:
    """Lifecycle of dispatches: assign, reschedule, resize, lock, delete and undo.

    Primary mutations raise on failure. Audit notes and notifications are
    best-effort and never abort the mutation they describe. Every successful
    mutation invalidates the dispatch-derived cache before returning.
    """

    def __init__(
        self,
        config: AppConfig,
        cache: DispatchCache,
        remote: RemoteServices,
        mapper: JobMapper,
        logger: logging.Logger | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.cache = cache
        self.remote = remote
        self.mapper = mapper
        self.overrides = mapper.overrides
        self.logger = logger or get_logger()
        self.now = now
        self.undo_log = UndoLog(config.scheduling.undo_capacity)
        self.jobs_in_flight: set[str] = set()
        self.groups_in_flight: set[str] = set()

    # helpers

    def current_user_name(self) -> str:
        try:
            return display_name(self.remote.identity.current_user())
        except Exception as exc:
            log_with_fields(self.logger, logging.WARNING, "identity_lookup_failed", error=str(exc))
            return display_name(None)

    @staticmethod
    def _require_int(value: str, label: str) -> int:
        parsed = parse_int_id(value)
        if parsed is None:
            raise ValidationError(f"Invalid {label} ID: {value!r}")
        return parsed

    def _require_duration(self, start: datetime, end: datetime) -> int:
        minutes = minutes_between(start, end)
        floor = self.config.scheduling.min_duration_minutes
        if minutes < floor:
            raise ValidationError(f"Duration must be at least {floor} minutes")
        return minutes

    def _stamp(self) -> str:
        return self.now().strftime("%Y-%m-%d %H:%M")

    async def _add_order_note(self, service_order_id: str | None, content: str, kind: str) -> None:
        order_id = parse_int_id(service_order_id) if service_order_id else None
        if order_id is None:
            return
        try:
            await self.remote.service_orders.add_note(order_id, {"content": content, "type": kind})
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "audit_note_failed",
                service_order_id=service_order_id,
                kind=kind,
                error=str(exc),
            )

    async def _add_dispatch_note(self, dispatch_id: int, text: str) -> None:
        try:
            await self.remote.dispatches.add_note(dispatch_id, text, "system")
        except Exception as exc:
            log_with_fields(self.logger, logging.WARNING, "dispatch_note_failed", dispatch_id=dispatch_id, error=str(exc))

    async def _notify_technician(self, technician_id: str, title: str, description: str, dispatch: Dispatch) -> None:
        user_id = parse_int_id(technician_id)
        if user_id is None:
            return
        try:
            await self.remote.notifications.create(
                {
                    "userId": user_id,
                    "title": title,
                    "description": description,
                    "type": "info",
                    "category": "service_order",
                    "link": f"/dashboard/field/dispatches/{dispatch.id}",
                    "relatedEntityId": dispatch.id,
                    "relatedEntityType": "dispatch",
                }
            )
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "notification_failed",
                technician_id=technician_id,
                dispatch_id=dispatch.id,
                error=str(exc),
            )

    def _push_undo(self, action: UndoAction) -> None:
        self.undo_log.push(action)

    def _restore_deleted(self, dispatch_id: str) -> RestoreFn:
        async def restore() -> None:
            await self.remote.dispatches.delete(self._require_int(dispatch_id, "dispatch"))
            self.overrides.discard(dispatch_id)

        return restore

    def _restore_interval(
        self,
        dispatch_id: str,
        original_start: datetime,
        original_end: datetime | None,
    ) -> RestoreFn:
        async def restore() -> None:
            changes: Payload = {
                "scheduledDate": original_start.isoformat(),
                "scheduledStartTime": format_time_of_day(original_start),
            }
            if original_end is not None:
                changes["scheduledEndTime"] = format_time_of_day(original_end)
            await self.remote.dispatches.update(self._require_int(dispatch_id, "dispatch"), changes)
            self.overrides.discard(dispatch_id)

        return restore

    async def _current_interval(self, dispatch_id: int) -> tuple[Dispatch | None, datetime | None, datetime | None]:
        try:
            current = parse_dispatch(await self.remote.dispatches.get_by_id(dispatch_id))
        except RemoteError as exc:
            log_with_fields(self.logger, logging.WARNING, "dispatch_lookup_failed", dispatch_id=dispatch_id, error=str(exc))
            return None, None, None
        if current.scheduled_date is None:
            return current, None, None
        start, end = self.mapper.resolve_interval(current)
        return current, start, end

    # collision pre-check

    async def propose_slot(
        self,
        technician_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_job_id: str | None = None,
    ) -> SlotPlan:
        existing = await self.mapper.get_assigned_jobs_for_technician(technician_id, start.date())
        try:
            plan = resolve_slot(
                start,
                duration_minutes,
                existing,
                self.config.scheduling.working_hours_end,
                exclude_job_id,
            )
        except NoSlotAvailableError as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "no_slot_available",
                technician_id=technician_id,
                start=start.isoformat(),
                duration=duration_minutes,
                error=str(exc),
            )
            raise
        if plan.shifted:
            log_with_fields(
                self.logger,
                logging.INFO,
                "slot_auto_shifted",
                technician_id=technician_id,
                requested=start.isoformat(),
                shifted_to=plan.start.isoformat(),
            )
        return plan

    # assign

    async def assign_job(
        self,
        job_id: str,
        technician_id: str,
        scheduled_start: datetime,
        scheduled_end: datetime,
        technician_name: str | None = None,
        priority: Priority = Priority.MEDIUM,
    ) -> Dispatch:
        if job_id in self.jobs_in_flight:
            raise AlreadyProcessingError(job_id, "This job is already being processed. Please wait.")
        job_id_num = self._require_int(job_id, "job")
        self._require_duration(scheduled_start, scheduled_end)

        self.jobs_in_flight.add(job_id)
        try:
            request: Payload = {
                "assignedTechnicianIds": [numeric_id(technician_id)],
                "scheduledDate": scheduled_start.isoformat(),
                "scheduledStartTime": format_time_of_day(scheduled_start),
                "scheduledEndTime": format_time_of_day(scheduled_end),
                "priority": Priority(priority).value,
                "notes": f"Scheduled: {format_clock(scheduled_start)} - {format_clock(scheduled_end)}",
            }
            dispatch = parse_dispatch(await self.remote.dispatches.create_from_job(job_id_num, request))
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "assign_failed", job_id=job_id, error=str(exc))
            raise
        else:
            self._push_undo(
                UndoAction(
                    kind=UndoKind.ASSIGN,
                    description=f"Assigned job to {technician_name or 'technician'}",
                    timestamp=time.time(),
                    dispatch_id=dispatch.id,
                    job_id=job_id,
                    technician_id=technician_id,
                    service_order_id=dispatch.service_order_id,
                    dispatch_number=dispatch.dispatch_number,
                    scheduled_start=scheduled_start,
                    scheduled_end=scheduled_end,
                    restore=self._restore_deleted(dispatch.id),
                )
            )
            when = scheduled_start.strftime("%Y-%m-%d %H:%M")
            await self._add_order_note(
                dispatch.service_order_id,
                f"Job dispatched - Dispatch #{dispatch.label}\n"
                f"Dispatched by: {self.current_user_name()}\n"
                f"Assigned to: {technician_name or 'Unknown Technician'}\n"
                f"Priority: {Priority(priority).value.capitalize()}\n"
                f"Scheduled: {when}",
                "dispatch_created",
            )
            await self._notify_technician(
                technician_id,
                "New Job Assigned",
                f"You have been assigned a new job (Dispatch #{dispatch.label}) scheduled for {when}.",
                dispatch,
            )
            self.cache.invalidate_dispatch_data()
            log_with_fields(
                self.logger,
                logging.INFO,
                "dispatch_assigned",
                dispatch_id=dispatch.id,
                job_id=job_id,
                technician_id=technician_id,
                start=scheduled_start.isoformat(),
                end=scheduled_end.isoformat(),
            )
            return dispatch
        finally:
            self.jobs_in_flight.discard(job_id)

    async def assign_service_order_jobs(
        self,
        service_order_id: str,
        jobs: list[Job],
        technician_id: str,
        start: datetime,
        technician_name: str | None = None,
    ) -> BatchAssignment:
        """Assign jobs back to back, each starting where the previous one ends."""
        result = BatchAssignment()
        current_start = start
        for job in jobs:
            duration = job.estimated_duration or self.config.scheduling.default_duration_minutes
            job_end = current_start + timedelta(minutes=duration)
            try:
                dispatch = await self.assign_job(
                    job.id, technician_id, current_start, job_end, technician_name, job.priority or Priority.MEDIUM
                )
                result.success.append(dispatch)
            except Exception as exc:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "batch_job_failed",
                    service_order_id=service_order_id,
                    job_id=job.id,
                    error=str(exc),
                )
                result.failed.append(job.id)
            current_start = job_end
        result.end = current_start

        if result.success:
            numbers = ", ".join(f"#{dispatch.label}" for dispatch in result.success)
            content = (
                f"Batch dispatch - {len(result.success)} jobs assigned\n"
                f"Dispatched by: {self.current_user_name()}\n"
                f"Assigned to: {technician_name or 'Unknown Technician'}\n"
                f"Start: {start.strftime('%Y-%m-%d %H:%M')}\n"
                f"Jobs: {numbers}"
            )
            if result.failed:
                content += f"\nFailed: {len(result.failed)} jobs"
            await self._add_order_note(service_order_id, content, "batch_dispatch_created")
        log_with_fields(
            self.logger,
            logging.INFO,
            "batch_assigned",
            service_order_id=service_order_id,
            succeeded=len(result.success),
            failed=result.failed,
        )
        return result

    async def assign_installation_group(
        self,
        group: InstallationGroup,
        technician_id: str,
        scheduled_start: datetime,
        scheduled_end: datetime | None = None,
        technician_name: str | None = None,
        priority: Priority = Priority.MEDIUM,
    ) -> Dispatch:
        group_key = installation_group_key(group.installation_id)
        if group_key in self.groups_in_flight:
            raise AlreadyProcessingError(group_key, "This installation is already being processed. Please wait.")

        job_ids = [parsed for parsed in (parse_int_id(job.id) for job in group.jobs) if parsed is not None]
        if not job_ids:
            raise ValidationError("No valid job IDs found")
        if scheduled_end is None:
            scheduled_end = scheduled_start + timedelta(minutes=group.total_duration)
        self._require_duration(scheduled_start, scheduled_end)

        self.groups_in_flight.add(group_key)
        try:
            first = group.jobs[0]
            request: Payload = {
                "installationId": parse_int_id(group.installation_id) or group.installation_id,
                "installationName": group.installation_name,
                "jobIds": job_ids,
                "assignedTechnicianIds": [numeric_id(technician_id)],
                "scheduledDate": scheduled_start.isoformat(),
                "scheduledStartTime": format_time_of_day(scheduled_start),
                "scheduledEndTime": format_time_of_day(scheduled_end),
                "priority": Priority(priority).value,
                "notes": (
                    f"Installation: {group.installation_name}\n{len(job_ids)} jobs\n"
                    f"Scheduled: {format_clock(scheduled_start)} - {format_clock(scheduled_end)}"
                ),
                "siteAddress": first.location.address if first.location else None,
                "contactId": parse_int_id(first.contact_id) if first.contact_id else None,
                "serviceOrderId": parse_int_id(first.service_order_id) if first.service_order_id else None,
            }
            dispatch = parse_dispatch(await self.remote.dispatches.create_from_installation(request))
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "installation_assign_failed",
                installation_id=group.installation_id,
                error=str(exc),
            )
            raise
        else:
            self._push_undo(
                UndoAction(
                    kind=UndoKind.ASSIGN,
                    description=f'Assigned installation "{group.installation_name}" to {technician_name or "technician"}',
                    timestamp=time.time(),
                    dispatch_id=dispatch.id,
                    technician_id=technician_id,
                    service_order_id=dispatch.service_order_id,
                    dispatch_number=dispatch.dispatch_number,
                    scheduled_start=scheduled_start,
                    scheduled_end=scheduled_end,
                    restore=self._restore_deleted(dispatch.id),
                )
            )
            when = scheduled_start.strftime("%Y-%m-%d %H:%M")
            await self._add_order_note(
                dispatch.service_order_id,
                f"Installation dispatched - {group.installation_name}\n"
                f"Dispatch #{dispatch.label}\n"
                f"{len(job_ids)} jobs included\n"
                f"Dispatched by: {self.current_user_name()}\n"
                f"Assigned to: {technician_name or 'Unknown'}\n"
                f"Priority: {Priority(priority).value}\n"
                f"Scheduled: {when}",
                "dispatch_created",
            )
            await self._notify_technician(
                technician_id,
                "New Installation Assigned",
                f'Installation "{group.installation_name}" ({len(job_ids)} jobs) assigned. '
                f"Dispatch #{dispatch.label}, scheduled {when}.",
                dispatch,
            )
            self.cache.invalidate_dispatch_data()
            log_with_fields(
                self.logger,
                logging.INFO,
                "installation_assigned",
                dispatch_id=dispatch.id,
                installation_id=group.installation_id,
                job_ids=job_ids,
                technician_id=technician_id,
            )
            return dispatch
        finally:
            self.groups_in_flight.discard(group_key)

    # delete

    async def unassign_job(
        self,
        dispatch_id: str,
        service_order_id: str | None = None,
        dispatch_number: str | None = None,
    ) -> None:
        dispatch_id_num = self._require_int(dispatch_id, "dispatch")

        current: Dispatch | None = None
        try:
            current = parse_dispatch(await self.remote.dispatches.get_by_id(dispatch_id_num))
        except RemoteError as exc:
            log_with_fields(self.logger, logging.WARNING, "dispatch_lookup_failed", dispatch_id=dispatch_id, error=str(exc))

        if current is not None and current.is_locked:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "delete_blocked",
                dispatch_id=dispatch_id,
                status=current.status.value,
            )
            raise DispatchLockedError(dispatch_id, current.status.value)

        service_order_id = service_order_id or (current.service_order_id if current else None)
        dispatch_number = dispatch_number or (current.dispatch_number if current else None)

        try:
            await self.remote.dispatches.delete(dispatch_id_num)
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "delete_failed", dispatch_id=dispatch_id, error=str(exc))
            raise

        self._push_undo(
            UndoAction(
                kind=UndoKind.UNASSIGN,
                description=f"Deleted dispatch #{dispatch_number or dispatch_id}",
                timestamp=time.time(),
                dispatch_id=dispatch_id,
                service_order_id=service_order_id,
                dispatch_number=dispatch_number,
            )
        )
        self.overrides.discard(dispatch_id)
        await self._add_order_note(
            service_order_id,
            f"Dispatch deleted - #{dispatch_number or dispatch_id}\n"
            f"Deleted by: {self.current_user_name()}\n"
            f"Date: {self._stamp()}\n"
            "Job is now available for reassignment",
            "dispatch_deleted",
        )
        self.cache.invalidate_dispatch_data()
        log_with_fields(self.logger, logging.INFO, "dispatch_deleted", dispatch_id=dispatch_id)

    async def delete_dispatch(
        self,
        dispatch_id: str,
        service_order_id: str | None = None,
        dispatch_number: str | None = None,
    ) -> None:
        await self.unassign_job(dispatch_id, service_order_id, dispatch_number)

    # interval changes

    async def reschedule_dispatch(self, dispatch_id: str, new_start: datetime) -> None:
        """Move a dispatch to ``new_start``, keeping its current duration when it is known."""
        dispatch_id_num = self._require_int(dispatch_id, "dispatch")
        _, original_start, original_end = await self._current_interval(dispatch_id_num)

        changes: Payload = {
            "scheduledDate": new_start.isoformat(),
            "scheduledStartTime": format_time_of_day(new_start),
        }
        new_end: datetime | None = None
        if original_start is not None and original_end is not None:
            new_end = new_start + (original_end - original_start)
            changes["scheduledEndTime"] = format_time_of_day(new_end)

        try:
            await self.remote.dispatches.update(dispatch_id_num, changes)
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "reschedule_failed", dispatch_id=dispatch_id, error=str(exc))
            raise

        if new_end is not None:
            self.overrides.set(dispatch_id, new_start, new_end)
        else:
            self.overrides.discard(dispatch_id)
        self.cache.invalidate_dispatch_data()
        self._push_undo(
            UndoAction(
                kind=UndoKind.RESCHEDULE,
                description=f"Rescheduled dispatch #{dispatch_id}",
                timestamp=time.time(),
                dispatch_id=dispatch_id,
                original_start=original_start,
                original_end=original_end,
                scheduled_start=new_start,
                scheduled_end=new_end,
                restore=self._restore_interval(dispatch_id, original_start, original_end) if original_start else None,
            )
        )
        log_with_fields(
            self.logger,
            logging.INFO,
            "dispatch_rescheduled",
            dispatch_id=dispatch_id,
            start=new_start.isoformat(),
        )

    async def update_schedule(self, dispatch_id: str, new_start: datetime, new_end: datetime) -> None:
        dispatch_id_num = self._require_int(dispatch_id, "dispatch")
        self._require_duration(new_start, new_end)
        _, original_start, original_end = await self._current_interval(dispatch_id_num)

        try:
            await self.remote.dispatches.update(
                dispatch_id_num,
                {
                    "scheduledDate": new_start.isoformat(),
                    "scheduledStartTime": format_time_of_day(new_start),
                    "scheduledEndTime": format_time_of_day(new_end),
                },
            )
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "update_schedule_failed", dispatch_id=dispatch_id, error=str(exc))
            raise

        self.overrides.set(dispatch_id, new_start, new_end)
        self.cache.invalidate_dispatch_data()
        self._push_undo(
            UndoAction(
                kind=UndoKind.RESCHEDULE,
                description=f"Updated schedule for dispatch #{dispatch_id}",
                timestamp=time.time(),
                dispatch_id=dispatch_id,
                original_start=original_start,
                original_end=original_end,
                scheduled_start=new_start,
                scheduled_end=new_end,
                restore=self._restore_interval(dispatch_id, original_start, original_end) if original_start else None,
            )
        )
        log_with_fields(
            self.logger,
            logging.INFO,
            "dispatch_schedule_updated",
            dispatch_id=dispatch_id,
            start=new_start.isoformat(),
            end=new_end.isoformat(),
        )

    async def resize_job(self, dispatch_id: str, new_end: datetime) -> None:
        """Change the end of a dispatch, keeping its start."""
        dispatch_id_num = self._require_int(dispatch_id, "dispatch")
        current = parse_dispatch(await self.remote.dispatches.get_by_id(dispatch_id_num))
        start, _ = self.mapper.resolve_interval(current)
        duration = self._require_duration(start, new_end)

        try:
            await self.remote.dispatches.update(
                dispatch_id_num,
                {
                    "scheduledDate": start.isoformat(),
                    "scheduledStartTime": format_time_of_day(start),
                    "scheduledEndTime": format_time_of_day(new_end),
                },
            )
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "resize_failed", dispatch_id=dispatch_id, error=str(exc))
            raise

        self.overrides.set(dispatch_id, start, new_end)
        self.cache.invalidate_dispatch_data()
        log_with_fields(self.logger, logging.INFO, "dispatch_resized", dispatch_id=dispatch_id, duration=duration)

    # lock state

    async def lock_job(self, dispatch_id: str) -> None:
        dispatch_id_num = self._require_int(dispatch_id, "dispatch")
        try:
            await self.remote.dispatches.update_status(dispatch_id_num, DispatchStatus.CONFIRMED.value)
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "lock_failed", dispatch_id=dispatch_id, error=str(exc))
            raise
        await self._add_dispatch_note(
            dispatch_id_num,
            f"Dispatch confirmed and locked by {self.current_user_name()} on {self._stamp()}",
        )
        self.cache.invalidate_dispatch_data()
        log_with_fields(self.logger, logging.INFO, "dispatch_locked", dispatch_id=dispatch_id)

    async def unlock_job(self, dispatch_id: str) -> None:
        dispatch_id_num = self._require_int(dispatch_id, "dispatch")
        try:
            await self.remote.dispatches.update_status(
                dispatch_id_num, DispatchStatus.ASSIGNED.value, DispatchStatus.CONFIRMED.value
            )
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "unlock_failed", dispatch_id=dispatch_id, error=str(exc))
            raise
        await self._add_dispatch_note(
            dispatch_id_num,
            f"Dispatch unlocked by {self.current_user_name()} on {self._stamp()}",
        )
        self.cache.invalidate_dispatch_data()
        log_with_fields(self.logger, logging.INFO, "dispatch_unlocked", dispatch_id=dispatch_id)

    async def is_dispatch_locked(self, dispatch_id: str) -> bool:
        dispatch_id_num = parse_int_id(dispatch_id)
        if dispatch_id_num is None:
            return False
        try:
            payload = await self.remote.dispatches.get_by_id(dispatch_id_num)
        except RemoteError as exc:
            log_with_fields(self.logger, logging.WARNING, "lock_check_failed", dispatch_id=dispatch_id, error=str(exc))
            return False
        return parse_dispatch(payload).is_locked

    def _cached_dispatch(self, dispatch_id: str, dispatches: list[Dispatch] | None = None) -> Dispatch | None:
        candidates = dispatches if dispatches is not None else self.cache.dispatches
        return next((dispatch for dispatch in candidates if dispatch.id == str(dispatch_id)), None)

    def is_dispatch_locked_sync(self, dispatch_id: str, dispatches: list[Dispatch] | None = None) -> bool:
        dispatch = self._cached_dispatch(dispatch_id, dispatches)
        return dispatch is not None and dispatch.is_locked

    def get_dispatch_lock_info(self, dispatch_id: str) -> LockInfo:
        dispatch = self._cached_dispatch(dispatch_id)
        if dispatch is None:
            return LockInfo(is_locked=False)
        return LockInfo(
            is_locked=dispatch.is_locked,
            locked_at=dispatch.modified_date or dispatch.created_date,
            locked_by=dispatch.modified_by or dispatch.created_by,
        )

    # undo

    def last_undo_action(self) -> UndoAction | None:
        return self.undo_log.peek()

    async def undo_last_action(self) -> bool:
        action = self.undo_log.pop()
        if action is None:
            return False
        if not action.reversible:
            log_with_fields(
                self.logger,
                logging.INFO,
                "undo_not_reversible",
                kind=action.kind.value,
                dispatch_id=action.dispatch_id,
            )
            return False
        try:
            await action.restore()
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "undo_failed",
                kind=action.kind.value,
                dispatch_id=action.dispatch_id,
                error=str(exc),
            )
            return False
        self.cache.invalidate_dispatch_data()
        log_with_fields(self.logger, logging.INFO, "undo_applied", kind=action.kind.value, dispatch_id=action.dispatch_id)
        return True
