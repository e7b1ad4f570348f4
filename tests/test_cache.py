from __future__ import annotations

import asyncio
import unittest

from dispatchboard.cache import DispatchCache, Resource
from dispatchboard.config import CacheConfig
from dispatchboard.models import Dispatch, DispatchStatus, Job, Technician

from fakes import FakeClock


def make_cache() -> tuple[DispatchCache, FakeClock]:
    clock = FakeClock()
    return DispatchCache(CacheConfig(), clock=clock), clock


class FreshnessTest(unittest.TestCase):
    def test_fresh_then_expired_but_still_stale(self) -> None:
        cache, clock = make_cache()
        cache.unassigned_jobs = [Job(id="1", title="Inspect")]
        self.assertTrue(cache.has_fresh_unassigned_jobs())
        self.assertTrue(cache.has_stale_unassigned_jobs())

        clock.advance(45)
        self.assertFalse(cache.has_fresh_unassigned_jobs())
        self.assertTrue(cache.has_stale_unassigned_jobs())

    def test_ttl_per_resource(self) -> None:
        cache, clock = make_cache()
        cache.technicians = [Technician(id="7", first_name="Tina", last_name="Tech")]
        cache.dispatches = [Dispatch(id="101", status=DispatchStatus.ASSIGNED)]
        clock.advance(61)
        self.assertTrue(cache.has_fresh_technicians())
        self.assertFalse(cache.has_fresh_dispatches())
        clock.advance(60)
        self.assertFalse(cache.has_fresh_technicians())

    def test_empty_value_is_never_fresh(self) -> None:
        cache, _ = make_cache()
        cache.dispatches = []
        self.assertFalse(cache.has_fresh_dispatches())
        self.assertEqual(cache.dispatches, [])

    def test_assigned_jobs_per_key(self) -> None:
        cache, clock = make_cache()
        cache.set_assigned_jobs("7-2024-01-01", [])
        self.assertEqual(cache.get_assigned_jobs("7-2024-01-01"), [])
        self.assertIsNone(cache.get_assigned_jobs("8-2024-01-01"))
        clock.advance(30)
        self.assertIsNone(cache.get_assigned_jobs("7-2024-01-01"))

    def test_has_fresh_cache_needs_all_three(self) -> None:
        cache, _ = make_cache()
        cache.technicians = [Technician(id="7", first_name="Tina", last_name="Tech")]
        cache.dispatches = [Dispatch(id="101", status=DispatchStatus.ASSIGNED)]
        self.assertFalse(cache.has_fresh_cache())
        cache.unassigned_jobs = [Job(id="1", title="Inspect")]
        self.assertTrue(cache.has_fresh_cache())


class InvalidationTest(unittest.TestCase):
    def test_invalidate_keeps_technicians_and_names(self) -> None:
        cache, _ = make_cache()
        cache.technicians = [Technician(id="7", first_name="Tina", last_name="Tech")]
        cache.dispatches = [Dispatch(id="101", status=DispatchStatus.ASSIGNED)]
        cache.unassigned_jobs = [Job(id="1", title="Inspect")]
        cache.service_orders = ["order"]
        cache.set_assigned_jobs("7-2024-01-01", [Job(id="101", title="x")])
        cache.set_installation_name("5", "Rooftop array")

        cache.invalidate_dispatch_data()

        self.assertTrue(cache.has_fresh_technicians())
        self.assertEqual(cache.get_installation_name("5"), "Rooftop array")
        self.assertFalse(cache.has_fresh_dispatches())
        self.assertFalse(cache.has_stale_unassigned_jobs())
        self.assertFalse(cache.has_stale_service_orders())
        self.assertIsNone(cache.get_assigned_jobs("7-2024-01-01"))

    def test_clear_all(self) -> None:
        cache, _ = make_cache()
        cache.technicians = [Technician(id="7", first_name="Tina", last_name="Tech")]
        cache.set_installation_name("5", "Rooftop array")
        cache.clear_all()
        self.assertFalse(cache.has_fresh_technicians())
        self.assertFalse(cache.has_installation_name("5"))

    def test_stale_assigned_jobs_write_is_dropped(self) -> None:
        cache, _ = make_cache()
        generation = cache.assigned_jobs_generation
        cache.invalidate_dispatch_data()
        self.assertFalse(cache.set_assigned_jobs("7-2024-01-01", [], generation))
        self.assertIsNone(cache.get_assigned_jobs("7-2024-01-01"))


class FetchOnceTest(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_callers_share_one_fetch(self) -> None:
        cache, _ = make_cache()
        gate = asyncio.Event()
        calls = 0

        async def loader() -> list[str]:
            nonlocal calls
            calls += 1
            await gate.wait()
            return ["a"]

        first = asyncio.create_task(cache.fetch_once(Resource.DISPATCHES, loader))
        second = asyncio.create_task(cache.fetch_once(Resource.DISPATCHES, loader))
        await asyncio.sleep(0)
        self.assertIsNotNone(cache.pending(Resource.DISPATCHES))
        gate.set()

        self.assertEqual(await first, ["a"])
        self.assertEqual(await second, ["a"])
        self.assertEqual(calls, 1)
        self.assertIsNone(cache.pending(Resource.DISPATCHES))
        self.assertEqual(cache.dispatches, ["a"])

    async def test_pending_slot_cleared_after_failure(self) -> None:
        cache, _ = make_cache()

        async def loader() -> list[str]:
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            await cache.fetch_once(Resource.TECHNICIANS, loader)
        self.assertIsNone(cache.pending(Resource.TECHNICIANS))
        self.assertEqual(cache.technicians, [])

    async def test_fetch_in_flight_during_clear_does_not_repopulate(self) -> None:
        cache, _ = make_cache()
        slow_gate = asyncio.Event()

        async def slow_loader() -> list[str]:
            await slow_gate.wait()
            return ["outdated"]

        async def fast_loader() -> list[str]:
            return ["current"]

        slow = asyncio.create_task(cache.fetch_once(Resource.DISPATCHES, slow_loader))
        await asyncio.sleep(0)
        cache.clear_all()

        self.assertEqual(await cache.fetch_once(Resource.DISPATCHES, fast_loader), ["current"])
        slow_gate.set()
        self.assertEqual(await slow, ["outdated"])
        self.assertEqual(cache.dispatches, ["current"])


if __name__ == "__main__":
    unittest.main()
