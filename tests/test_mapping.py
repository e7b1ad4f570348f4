from __future__ import annotations

import asyncio
from datetime import date, datetime
import unittest

from dispatchboard.config import AppConfig, RemoteConfig
from dispatchboard.mapping import extract_technician_id, parse_dispatch, technician_matches_dispatch
from dispatchboard.models import Dispatch, DispatchStatus, JobStatus, ServiceOrder, TechnicianStatus
from dispatchboard.store import TechnicianMetadataStore

from fakes import build_board


def dispatch_payload(dispatch_id: int, technician_id: int, day: str, start: str, end: str, **extra) -> dict:
    payload = {
        "id": dispatch_id,
        "dispatchNumber": f"D-{dispatch_id}",
        "status": "assigned",
        "scheduledDate": f"{day}T00:00:00",
        "scheduledStartTime": start,
        "scheduledEndTime": end,
        "assignedTechnicianIds": [technician_id],
        "jobIds": [11],
        "serviceOrderId": 1,
    }
    payload.update(extra)
    return payload


class ExtractTechnicianIdTest(unittest.TestCase):
    def test_object_list_wins(self) -> None:
        dispatch = Dispatch(
            id="1",
            status=DispatchStatus.ASSIGNED,
            assigned_technicians=[{"id": 7, "name": "Tina"}],
            assigned_technician_ids=["8"],
            dispatched_by="user-9",
        )
        self.assertEqual(extract_technician_id(dispatch), "7")

    def test_id_list_then_dispatched_by(self) -> None:
        self.assertEqual(
            extract_technician_id(Dispatch(id="1", status=DispatchStatus.ASSIGNED, assigned_technician_ids=["8"])),
            "8",
        )
        self.assertEqual(
            extract_technician_id(Dispatch(id="1", status=DispatchStatus.ASSIGNED, dispatched_by="admin-22")),
            "22",
        )
        self.assertIsNone(extract_technician_id(Dispatch(id="1", status=DispatchStatus.ASSIGNED)))

    def test_admin_prefixed_technician_matches(self) -> None:
        dispatch = parse_dispatch(dispatch_payload(5, 22, "2024-01-01", "09:00:00", "10:00:00"))
        self.assertTrue(technician_matches_dispatch(dispatch, "admin-22"))
        self.assertFalse(technician_matches_dispatch(dispatch, "23"))

    def test_scheduling_sub_object_is_read(self) -> None:
        dispatch = parse_dispatch(
            {
                "id": 9,
                "status": "confirmed",
                "scheduling": {
                    "scheduledDate": "2024-01-01T00:00:00",
                    "scheduledStartTime": "14:00:00",
                    "scheduledEndTime": "15:30:00",
                },
            }
        )
        self.assertEqual(dispatch.scheduled_start_time, "14:00:00")
        self.assertTrue(dispatch.is_locked)


class ResolveIntervalTest(unittest.TestCase):
    def setUp(self) -> None:
        self.board = build_board()
        self.mapper = self.board.mapper

    def tearDown(self) -> None:
        self.board.close()

    def test_explicit_server_times(self) -> None:
        dispatch = parse_dispatch(dispatch_payload(5, 7, "2024-01-01", "09:00:00", "10:30:00"))
        self.assertEqual(
            self.mapper.resolve_interval(dispatch),
            (datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 10, 30)),
        )

    def test_end_before_start_rolls_to_next_day(self) -> None:
        dispatch = parse_dispatch(dispatch_payload(5, 7, "2024-01-01", "23:00:00", "01:00:00"))
        start, end = self.mapper.resolve_interval(dispatch)
        self.assertEqual(start, datetime(2024, 1, 1, 23))
        self.assertEqual(end, datetime(2024, 1, 2, 1))

    def test_date_only_uses_default_duration(self) -> None:
        dispatch = Dispatch(id="5", status=DispatchStatus.ASSIGNED, scheduled_date=datetime(2024, 1, 1, 9))
        self.assertEqual(
            self.mapper.resolve_interval(dispatch),
            (datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 10)),
        )

    def test_override_wins_over_server(self) -> None:
        dispatch = parse_dispatch(dispatch_payload(5, 7, "2024-01-01", "09:00:00", "10:00:00"))
        self.board.overrides.set("5", datetime(2024, 1, 1, 13), datetime(2024, 1, 1, 14))
        self.assertEqual(
            self.mapper.resolve_interval(dispatch),
            (datetime(2024, 1, 1, 13), datetime(2024, 1, 1, 14)),
        )

    def test_override_matching_server_is_discarded(self) -> None:
        dispatch = parse_dispatch(dispatch_payload(5, 7, "2024-01-01", "09:00:00", "10:00:00"))
        self.board.overrides.set("5", datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 10))
        self.mapper.resolve_interval(dispatch)
        self.assertIsNone(self.board.overrides.get("5"))


class DispatchToJobTest(unittest.TestCase):
    def setUp(self) -> None:
        self.board = build_board()
        self.mapper = self.board.mapper

    def tearDown(self) -> None:
        self.board.close()

    def test_short_duration_is_clamped(self) -> None:
        dispatch = Dispatch(
            id="5",
            status=DispatchStatus.ASSIGNED,
            scheduled_date=datetime(2024, 1, 1, 9),
            estimated_duration=5,
        )
        job = self.mapper.dispatch_to_job(dispatch, "7")
        self.assertEqual(job.estimated_duration, 15)
        self.assertEqual(job.scheduled_end, datetime(2024, 1, 1, 9, 5))

    def test_multi_job_dispatch_shows_installation(self) -> None:
        dispatch = parse_dispatch(
            dispatch_payload(
                5, 7, "2024-01-01", "09:00:00", "12:30:00",
                jobIds=[21, 22], installationId=5, installationName="Rooftop array", status="confirmed",
            )
        )
        job = self.mapper.dispatch_to_job(dispatch, "admin-7")
        self.assertEqual(job.title, "Rooftop array")
        self.assertEqual(job.description, "2 jobs")
        self.assertEqual(job.job_ids, ["21", "22"])
        self.assertEqual(job.assigned_technician_id, "7")
        self.assertEqual(job.estimated_duration, 210)
        self.assertTrue(job.is_locked)

    def test_single_job_title_from_notes(self) -> None:
        dispatch = parse_dispatch(
            dispatch_payload(5, 7, "2024-01-01", "09:00:00", "10:00:00", notes="Bring ladder\nGate code 1234")
        )
        job = self.mapper.dispatch_to_job(dispatch)
        self.assertEqual(job.title, "Bring ladder")
        self.assertEqual(job.id, "5")
        self.assertEqual(job.dispatch_id, "5")
        self.assertEqual(job.status, JobStatus.ASSIGNED)

        untitled = parse_dispatch(dispatch_payload(6, 7, "2024-01-01", "09:00:00", "10:00:00", status="completed"))
        job = self.mapper.dispatch_to_job(untitled)
        self.assertEqual(job.title, "Dispatch #D-6")
        self.assertEqual(job.status, JobStatus.COMPLETED)

    def test_service_order_number_from_cache(self) -> None:
        self.board.cache.service_orders = [
            ServiceOrder(id="1", order_number="SO-001", status="ready_for_planning", title="Boiler service")
        ]
        job = self.mapper.dispatch_to_job(parse_dispatch(dispatch_payload(5, 7, "2024-01-01", "09:00:00", "10:00:00")))
        self.assertEqual(job.service_order_number, "SO-001")
        self.assertEqual(job.service_order_title, "Boiler service")


class UnassignedPoolTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.board = build_board()
        self.mapper = self.board.mapper

    async def asyncTearDown(self) -> None:
        self.board.close()

    async def test_pool_excludes_finished_dispatched_and_draft(self) -> None:
        self.board.state.dispatches[201] = dispatch_payload(201, 7, "2024-01-01", "09:00:00", "10:00:00", jobIds=[12])
        pool = await self.mapper.fetch_unassigned_jobs()
        self.assertEqual([job.id for job in pool], ["11", "13", "21", "22"])
        self.assertEqual(pool[0].service_order_number, "SO-001")
        self.assertEqual(pool[0].customer_name, "ACME")

    async def test_installation_names_resolved_once(self) -> None:
        pool = await self.mapper.fetch_unassigned_jobs()
        names = {job.id: job.installation_name for job in pool if job.installation_id}
        self.assertEqual(names, {"21": "Rooftop array", "22": "Rooftop array"})
        self.assertEqual(self.board.state.count("installations.get_by_id"), 1)

    async def test_installation_lookup_failure_is_tolerated(self) -> None:
        self.board.state.failures.add("installations.get_by_id")
        pool = await self.mapper.fetch_unassigned_jobs()
        self.assertEqual(len(pool), 5)
        self.assertIsNone(next(job for job in pool if job.id == "21").installation_name)

    async def test_stale_pool_is_served_while_refreshing(self) -> None:
        await self.mapper.fetch_unassigned_jobs()
        self.board.clock.advance(46)
        self.board.state.orders[1]["jobs"][0]["status"] = "cancelled"

        stale = await self.mapper.fetch_unassigned_jobs()
        self.assertIn("11", [job.id for job in stale])
        await self.mapper.wait_background()

        self.assertEqual(self.board.state.count("service_orders.get_all"), 2)
        self.assertNotIn("11", [job.id for job in self.board.cache.unassigned_jobs])

    async def test_fetch_failure_falls_back_to_cache(self) -> None:
        first = await self.mapper.fetch_unassigned_jobs()
        self.board.state.failures.add("service_orders.get_all")
        self.assertEqual(await self.mapper.fetch_unassigned_jobs(force=True), first)


class TechnicianFetchTest(unittest.IsolatedAsyncioTestCase):
    async def test_metadata_is_merged(self) -> None:
        board = build_board()
        TechnicianMetadataStore(board.local_store).update("7", status="on_leave", skills=["hvac"])
        technicians = await board.mapper.fetch_technicians()
        tina = next(tech for tech in technicians if tech.id == "7")
        self.assertEqual(tina.status, TechnicianStatus.ON_LEAVE)
        self.assertEqual(tina.skills, ["hvac"])
        self.assertEqual(tina.name, "Tina Tech")
        board.close()

    async def test_admin_user_is_added(self) -> None:
        board = build_board(AppConfig(remote=RemoteConfig(admin_user_id=1)))
        board.remote.users.admin = {"id": 1, "firstName": "Ada", "lastName": "Admin"}
        technicians = await board.mapper.fetch_technicians()
        self.assertEqual([tech.id for tech in technicians], ["7", "8", "admin-1"])
        board.close()

    async def test_admin_already_listed_is_not_duplicated(self) -> None:
        board = build_board(AppConfig(remote=RemoteConfig(admin_user_id=7)))
        technicians = await board.mapper.fetch_technicians()
        self.assertEqual([tech.id for tech in technicians], ["7", "8"])
        self.assertEqual(board.state.count("users.get_by_id"), 0)
        board.close()

    async def test_concurrent_fetches_share_one_request(self) -> None:
        board = build_board()
        gate = asyncio.Event()
        board.state.gates["users.get_all"] = gate
        first = asyncio.create_task(board.mapper.fetch_technicians())
        second = asyncio.create_task(board.mapper.fetch_technicians())
        await asyncio.sleep(0)
        gate.set()
        self.assertEqual(len(await first), 2)
        self.assertEqual(len(await second), 2)
        self.assertEqual(board.state.count("users.get_all"), 1)
        board.close()

    async def test_failure_returns_cached_technicians(self) -> None:
        board = build_board()
        await board.mapper.fetch_technicians()
        board.state.failures.add("users.get_all")
        technicians = await board.mapper.fetch_technicians(force=True)
        self.assertEqual(len(technicians), 2)
        board.close()


class AssignedJobsTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.board = build_board()
        self.board.state.dispatches = {
            201: dispatch_payload(201, 7, "2024-01-01", "09:00:00", "10:00:00"),
            202: dispatch_payload(202, 8, "2024-01-01", "11:00:00", "12:00:00"),
            203: dispatch_payload(203, 8, "2024-01-02", "08:00:00", "09:00:00"),
        }

    async def asyncTearDown(self) -> None:
        self.board.close()

    async def test_per_technician_day_is_cached(self) -> None:
        jobs = await self.board.mapper.get_assigned_jobs_for_technician("7", date(2024, 1, 1))
        self.assertEqual([job.id for job in jobs], ["201"])
        self.assertEqual(jobs[0].scheduled_start, datetime(2024, 1, 1, 9))

        again = await self.board.mapper.get_assigned_jobs_for_technician("7", date(2024, 1, 1))
        self.assertEqual([job.id for job in again], ["201"])
        self.assertEqual(self.board.state.count("dispatches.get_all"), 1)

    async def test_empty_day_is_cached_too(self) -> None:
        self.assertEqual(await self.board.mapper.get_assigned_jobs_for_technician("7", date(2024, 1, 2)), [])
        self.assertEqual(await self.board.mapper.get_assigned_jobs_for_technician("7", date(2024, 1, 2)), [])
        self.assertEqual(self.board.state.count("dispatches.get_all"), 1)

    async def test_date_range_groups_by_technician_and_day(self) -> None:
        result = await self.board.mapper.get_assigned_jobs_for_date_range(
            ["7", "8"], date(2024, 1, 1), date(2024, 1, 2)
        )
        self.assertEqual(
            {key: [job.id for job in jobs] for key, jobs in result.items()},
            {"7-2024-01-01": ["201"], "8-2024-01-01": ["202"], "8-2024-01-02": ["203"]},
        )
        self.assertEqual([job.id for job in self.board.cache.get_assigned_jobs("8-2024-01-02")], ["203"])

    async def test_fetch_failure_returns_empty(self) -> None:
        self.board.state.failures.add("dispatches.get_all")
        self.assertEqual(await self.board.mapper.get_assigned_jobs_for_technician("7", date(2024, 1, 1)), [])
        self.assertIsNone(self.board.cache.get_assigned_jobs("7-2024-01-01"))


if __name__ == "__main__":
    unittest.main()
