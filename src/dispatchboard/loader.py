from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from .app_logging import get_logger, log_with_fields
from .cache import DispatchCache
from .mapping import JobMapper
from .models import Dispatch, Job, Technician

PHASE_PROGRESS = {"start": 10, "technicians": 35, "dispatches": 55, "jobs": 100}


@dataclass(slots=True)
class LoadProgress:
    percent: int = 0
    technicians_loaded: bool = False
    dispatches_loaded: bool = False
    jobs_loaded: bool = False
    complete: bool = False
    from_cache: bool = False
    refreshing: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BoardData:
    technicians: list[Technician] = field(default_factory=list)
    dispatches: list[Dispatch] = field(default_factory=list)
    unassigned_jobs: list[Job] = field(default_factory=list)


ProgressCallback = Callable[[LoadProgress], None]


class ProgressiveLoader:
    """Initial load of the board: technicians, then dispatches, then service orders."""

    def __init__(
        self,
        cache: DispatchCache,
        mapper: JobMapper,
        on_progress: ProgressCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache = cache
        self.mapper = mapper
        self.on_progress = on_progress
        self.logger = logger or get_logger()
        self.progress = LoadProgress()
        self.data = BoardData()

    def _report(self, **changes: object) -> None:
        for name, value in changes.items():
            setattr(self.progress, name, value)
        if self.on_progress is not None:
            self.on_progress(self.progress)

    def _from_cache(self) -> BoardData:
        return BoardData(
            technicians=self.cache.technicians,
            dispatches=self.cache.dispatches,
            unassigned_jobs=self.cache.unassigned_jobs,
        )

    async def load(self) -> BoardData:
        self.progress = LoadProgress()
        if self.cache.has_fresh_cache():
            self.data = self._from_cache()
            self._report(
                percent=100,
                technicians_loaded=True,
                dispatches_loaded=True,
                jobs_loaded=True,
                complete=True,
                from_cache=True,
            )
            return self.data

        if self.cache.technicians and self.cache.has_stale_unassigned_jobs():
            # show what we have, then revalidate
            self.data = self._from_cache()
            self._report(
                percent=100,
                technicians_loaded=True,
                dispatches_loaded=True,
                jobs_loaded=True,
                complete=True,
                from_cache=True,
                refreshing=True,
            )
            await self._run_phases(force=True, report=False)
            self._report(refreshing=False)
            return self.data

        await self._run_phases(force=False, report=True)
        return self.data

    async def refresh(self) -> BoardData:
        self.cache.clear_all()
        self.progress = LoadProgress()
        await self._run_phases(force=True, report=True)
        return self.data

    async def _run_phases(self, force: bool, report: bool) -> None:
        if report:
            self._report(percent=PHASE_PROGRESS["start"])
        try:
            self.data.technicians = await self.mapper.fetch_technicians(force=force)
            if report:
                self._report(percent=PHASE_PROGRESS["technicians"], technicians_loaded=True)

            self.data.dispatches = await self.mapper.fetch_dispatches(force=force)
            if report:
                self._report(percent=PHASE_PROGRESS["dispatches"], dispatches_loaded=True)

            if force:
                self.data.unassigned_jobs = await self.mapper.refresh_service_orders()
            else:
                self.data.unassigned_jobs = await self.mapper.fetch_unassigned_jobs()
            if report:
                self._report(jobs_loaded=True)
        except Exception as exc:
            log_with_fields(self.logger, logging.ERROR, "load_phase_failed", percent=self.progress.percent, error=str(exc))
            self.progress.errors.append(str(exc))
        finally:
            if report:
                self._report(percent=PHASE_PROGRESS["jobs"], complete=True)
