from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from .config import CacheConfig
from .models import Dispatch, Job, ServiceOrder, Technician


class Resource(str, Enum):
    TECHNICIANS = "technicians"
    DISPATCHES = "dispatches"
    UNASSIGNED_JOBS = "unassigned_jobs"
    SERVICE_ORDERS = "service_orders"


DISPATCH_DERIVED = (Resource.DISPATCHES, Resource.UNASSIGNED_JOBS, Resource.SERVICE_ORDERS)


@dataclass(slots=True)
class CacheEntry:
    value: Any
    fetched_at: float


class DispatchCache:
    """TTL store for the dispatch board.

    One instance is shared by the mapper, the dispatcher and the loader. Every
    resource keeps its fetch timestamp, and a pending task slot so concurrent
    callers share one in-flight fetch. Each resource also carries a generation
    counter bumped on invalidation; a fetch that started before an invalidation
    never writes its result back.
    """

    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or CacheConfig()
        self.clock = clock
        self._ttls = {
            Resource.TECHNICIANS: self.config.technicians_ttl_seconds,
            Resource.DISPATCHES: self.config.dispatches_ttl_seconds,
            Resource.UNASSIGNED_JOBS: self.config.unassigned_jobs_ttl_seconds,
            Resource.SERVICE_ORDERS: self.config.unassigned_jobs_ttl_seconds,
        }
        self._entries: dict[Resource, CacheEntry] = {}
        self._assigned_jobs: dict[str, CacheEntry] = {}
        self._assigned_generation = 0
        self._installation_names: dict[str, str] = {}
        self._pending: dict[Resource, asyncio.Task[Any]] = {}
        self._generations: dict[Resource, int] = {resource: 0 for resource in Resource}

    # generic access

    def get(self, resource: Resource) -> list[Any]:
        entry = self._entries.get(resource)
        return entry.value if entry is not None else []

    def set(self, resource: Resource, value: list[Any]) -> None:
        self._entries[resource] = CacheEntry(value=list(value), fetched_at=self.clock())

    def has_fresh(self, resource: Resource) -> bool:
        entry = self._entries.get(resource)
        if entry is None or not entry.value:
            return False
        return self.clock() - entry.fetched_at < self._ttls[resource]

    def has_stale(self, resource: Resource) -> bool:
        entry = self._entries.get(resource)
        return entry is not None and bool(entry.value)

    def generation(self, resource: Resource) -> int:
        return self._generations[resource]

    def pending(self, resource: Resource) -> asyncio.Task[Any] | None:
        return self._pending.get(resource)

    async def fetch_once(
        self,
        resource: Resource,
        loader: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], None] | None = None,
    ) -> Any:
        """Run ``loader`` unless a fetch for ``resource`` is already in flight, then await that one."""
        in_flight = self._pending.get(resource)
        if in_flight is not None:
            return await asyncio.shield(in_flight)

        generation = self._generations[resource]
        task = asyncio.ensure_future(loader())
        self._pending[resource] = task
        try:
            value = await asyncio.shield(task)
        finally:
            if self._pending.get(resource) is task:
                del self._pending[resource]

        if generation == self._generations[resource]:
            if on_result is not None:
                on_result(value)
            else:
                self.set(resource, value)
        return value

    # technicians

    @property
    def technicians(self) -> list[Technician]:
        return self.get(Resource.TECHNICIANS)

    @technicians.setter
    def technicians(self, value: list[Technician]) -> None:
        self.set(Resource.TECHNICIANS, value)

    def has_fresh_technicians(self) -> bool:
        return self.has_fresh(Resource.TECHNICIANS)

    # dispatches

    @property
    def dispatches(self) -> list[Dispatch]:
        return self.get(Resource.DISPATCHES)

    @dispatches.setter
    def dispatches(self, value: list[Dispatch]) -> None:
        self.set(Resource.DISPATCHES, value)

    def has_fresh_dispatches(self) -> bool:
        return self.has_fresh(Resource.DISPATCHES)

    # unassigned jobs

    @property
    def unassigned_jobs(self) -> list[Job]:
        return self.get(Resource.UNASSIGNED_JOBS)

    @unassigned_jobs.setter
    def unassigned_jobs(self, value: list[Job]) -> None:
        self.set(Resource.UNASSIGNED_JOBS, value)

    def has_fresh_unassigned_jobs(self) -> bool:
        return self.has_fresh(Resource.UNASSIGNED_JOBS)

    def has_stale_unassigned_jobs(self) -> bool:
        return self.has_stale(Resource.UNASSIGNED_JOBS)

    # service orders

    @property
    def service_orders(self) -> list[ServiceOrder]:
        return self.get(Resource.SERVICE_ORDERS)

    @service_orders.setter
    def service_orders(self, value: list[ServiceOrder]) -> None:
        self.set(Resource.SERVICE_ORDERS, value)

    def has_fresh_service_orders(self) -> bool:
        return self.has_fresh(Resource.SERVICE_ORDERS)

    def has_stale_service_orders(self) -> bool:
        return self.has_stale(Resource.SERVICE_ORDERS)

    # assigned jobs per technician and day

    def get_assigned_jobs(self, key: str) -> list[Job] | None:
        if not self.has_fresh_assigned_jobs(key):
            return None
        return self._assigned_jobs[key].value

    @property
    def assigned_jobs_generation(self) -> int:
        return self._assigned_generation

    def set_assigned_jobs(self, key: str, jobs: list[Job], generation: int | None = None) -> bool:
        if generation is not None and generation != self._assigned_generation:
            return False
        self._assigned_jobs[key] = CacheEntry(value=list(jobs), fetched_at=self.clock())
        return True

    def has_fresh_assigned_jobs(self, key: str) -> bool:
        # an empty day is a valid answer, so presence alone counts here
        entry = self._assigned_jobs.get(key)
        if entry is None:
            return False
        return self.clock() - entry.fetched_at < self.config.assigned_jobs_ttl_seconds

    # installation names

    def get_installation_name(self, installation_id: str) -> str | None:
        return self._installation_names.get(str(installation_id))

    def set_installation_name(self, installation_id: str, name: str) -> None:
        self._installation_names[str(installation_id)] = name

    def has_installation_name(self, installation_id: str) -> bool:
        return str(installation_id) in self._installation_names

    # invalidation

    def _drop(self, resource: Resource) -> None:
        self._entries.pop(resource, None)
        self._pending.pop(resource, None)
        self._generations[resource] += 1

    def invalidate_dispatch_data(self) -> None:
        for resource in DISPATCH_DERIVED:
            self._drop(resource)
        self._assigned_jobs.clear()
        self._assigned_generation += 1

    def clear_all(self) -> None:
        for resource in Resource:
            self._drop(resource)
        self._assigned_jobs.clear()
        self._assigned_generation += 1
        self._installation_names.clear()

    def has_fresh_cache(self) -> bool:
        return self.has_fresh_technicians() and self.has_fresh_unassigned_jobs() and self.has_fresh_dispatches()
