from __future__ import annotations

import asyncio
import os
import unittest
from datetime import datetime
from tempfile import TemporaryDirectory

from enginesis.client_config import EnginesisConfig
from enginesis.domain import StateStatus
from enginesis.error_handling import error_code, is_error
from enginesis.event_bus import EventBus
from enginesis.http_client import TransportResponse
from enginesis.local_storage import SERVICE_QUEUE_KEY, LocalStorage
from enginesis.service_queue import ServiceQueue
from enginesis.session import Session

from fakes import FakeTransport


class ServiceQueueTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.storage = LocalStorage(os.path.join(self.tmpdir.name, "storage.json"))
        self.transport = FakeTransport()
        self.bus = EventBus()
        self.delivered = []
        self.session = Session(EnginesisConfig(site_id=106, developer_key="X", server_stage=""))
        self.queue = self._make_queue()

    async def asyncTearDown(self) -> None:
        self.tmpdir.cleanup()

    def _make_queue(self) -> ServiceQueue:
        return ServiceQueue(self.session, self.storage, [self.transport], self.bus)

    async def test_online_request_is_sent_and_delivered(self):
        preprocessed = []
        self.queue.set_result_preprocessor(lambda r: preprocessed.append(r["fn"]))

        result = await self.queue.enqueue("GameGet", {"game_id": 1099}, self.delivered.append)

        self.assertFalse(is_error(result))
        self.assertEqual(result["fn"], "GameGet")
        self.assertEqual(self.delivered, [result])
        self.assertEqual(preprocessed, ["GameGet"])
        self.assertEqual(len(self.queue), 0)

        url, fields = self.transport.calls[0]
        self.assertEqual(url, "https://www.enginesis.com/index.php")
        self.assertEqual(fields["fn"], "GameGet")
        self.assertEqual(fields["site_id"], "106")
        self.assertEqual(fields["game_id"], "1099")
        self.assertEqual(fields["response"], "json")
        self.assertEqual(fields["state_status"], "1")

    async def test_default_subscriber_without_callback(self):
        self.queue.set_default_subscriber(self.delivered.append)
        await self.queue.enqueue("GameGet", {"game_id": 1})
        await self.queue.enqueue("GameGet", {"game_id": 2}, callback=lambda r: None)
        self.assertEqual(len(self.delivered), 1)

    async def test_caller_cannot_override_envelope(self):
        await self.queue.enqueue("GameGet", {"fn": "Other", "state_seq": 999, "state_status": 2})
        _, fields = self.transport.calls[0]
        self.assertEqual(fields["fn"], "GameGet")
        self.assertNotEqual(fields["state_seq"], "999")

    async def test_state_seq_strictly_increases(self):
        for _ in range(4):
            await self.queue.enqueue("GameGet", {})
        seqs = [int(fields["state_seq"]) for _, fields in self.transport.calls]
        self.assertEqual(seqs, sorted(set(seqs)))
        self.assertEqual(len(seqs), 4)

    async def test_one_request_in_flight(self):
        self.transport.delay = 0.01
        results = await asyncio.gather(*(self.queue.enqueue("GameGet", {"game_id": i}) for i in range(5)))
        self.assertEqual(self.transport.max_in_flight, 1)
        self.assertEqual([f["game_id"] for _, f in self.transport.calls], ["0", "1", "2", "3", "4"])
        self.assertFalse(any(is_error(r) for r in results))

    async def test_offline_queues_and_persists(self):
        self.session.is_online = False

        first = await self.queue.enqueue("GameGet", {"game_id": 1}, self.delivered.append)
        second = await self.queue.enqueue("GameGet", {"game_id": 2}, self.delivered.append)

        self.assertEqual(error_code(first), "OFFLINE")
        self.assertEqual(error_code(second), "OFFLINE")
        self.assertEqual(self.transport.calls, [])
        self.assertEqual(self.delivered, [])
        self.assertEqual(self.queue.pending_count(), 2)
        saved = self.storage.load_object(SERVICE_QUEUE_KEY)
        self.assertEqual([e["game_id"] for e in saved], [1, 2])

        results = await self.queue.drain_on_reconnect()

        self.assertEqual(len(results), 2)
        self.assertEqual([f["game_id"] for _, f in self.transport.calls], ["1", "2"])
        self.assertEqual(len(self.delivered), 2)
        self.assertEqual(len(self.queue), 0)
        self.assertIsNone(self.storage.load_object(SERVICE_QUEUE_KEY))
        self.assertIn("online", self.bus.statuses())

    async def test_transport_failure_goes_offline_and_retries(self):
        self.transport.fail = True

        result = await self.queue.enqueue("GameGet", {"game_id": 1}, self.delivered.append)

        self.assertEqual(error_code(result), "OFFLINE")
        self.assertFalse(self.session.is_online)
        self.assertEqual(self.bus.statuses(), ["offline"])
        self.assertEqual(self.queue.entries[0].state_status, StateStatus.PENDING)
        self.assertEqual(self.delivered, [])
        self.assertEqual(len(self.storage.load_object(SERVICE_QUEUE_KEY)), 1)

        self.transport.fail = False
        await self.queue.drain_on_reconnect()

        self.assertEqual(len(self.transport.calls), 2)
        self.assertEqual(len(self.delivered), 1)
        self.assertFalse(is_error(self.delivered[0]))
        self.assertEqual(len(self.queue), 0)
        self.assertTrue(self.session.is_online)

    async def test_set_offline_broadcasts_on_transition_only(self):
        self.assertTrue(self.queue.set_offline())
        self.assertFalse(self.queue.set_offline())
        self.assertEqual(self.bus.statuses(), ["offline"])

    async def test_restore_dispatches_each_entry_once(self):
        self.storage.save_object(
            SERVICE_QUEUE_KEY,
            [
                {"fn": "GameGet", "state_seq": 3, "state_status": 1, "game_id": 1},
                {"fn": "GameGet", "state_seq": 4, "state_status": 0, "game_id": 2},
                {"fn": "GameGet", "state_seq": 4, "state_status": 0, "game_id": 2},
                {"fn": "ScoreSubmit", "state_seq": 7, "state_status": 0, "data": "abc"},
                {"no": "fn"},
            ],
        )

        self.assertTrue(self.queue.restore_queue())
        self.assertEqual(self.queue.pending_count(), 3)
        self.assertGreaterEqual(self.session.sync_id, 7)

        await self.queue.drain_on_reconnect()

        self.assertEqual(self.transport.services, ["GameGet", "GameGet", "ScoreSubmit"])
        self.assertEqual([f["state_seq"] for _, f in self.transport.calls], ["3", "4", "7"])
        self.assertIsNone(self.storage.load_object(SERVICE_QUEUE_KEY))

        await self.queue.enqueue("GameGet", {})
        self.assertGreater(int(self.transport.calls[-1][1]["state_seq"]), 7)

    async def test_restore_with_nothing_saved(self):
        self.assertFalse(self.queue.restore_queue())

    async def test_non_200_is_a_service_error(self):
        self.transport.responder = lambda fields: TransportResponse(500, "oops")
        result = await self.queue.enqueue("GameGet", {}, self.delivered.append)
        self.assertEqual(error_code(result), "SERVICE_ERROR")
        self.assertEqual(self.delivered, [result])
        self.assertEqual(len(self.queue), 0)
        self.assertTrue(self.session.is_online)

    async def test_bad_json_is_a_service_error(self):
        self.transport.responder = lambda fields: TransportResponse(200, "<html>")
        result = await self.queue.enqueue("GameGet", {})
        self.assertEqual(error_code(result), "SERVICE_ERROR")

    async def test_missing_status_is_a_service_error(self):
        self.transport.responder = lambda fields: TransportResponse(200, '{"results": {"result": []}}')
        result = await self.queue.enqueue("GameGet", {})
        self.assertEqual(error_code(result), "SERVICE_ERROR")

    async def test_disabled_and_invalid_state(self):
        self.session.disabled = True
        result = await self.queue.enqueue("GameGet", {}, self.delivered.append)
        self.assertEqual(error_code(result), "DISABLED")

        session = Session(EnginesisConfig(site_id=0, developer_key="X"))
        queue = ServiceQueue(session, self.storage, [self.transport], self.bus)
        result = await queue.enqueue("GameGet", {})
        self.assertEqual(error_code(result), "VALIDATION_FAILED")

        self.assertEqual(self.transport.calls, [])
        self.assertEqual(len(self.delivered), 1)

    async def test_no_transport_available_means_offline(self):
        queue = ServiceQueue(self.session, self.storage, [], self.bus)
        result = await queue.enqueue("GameGet", {})
        self.assertEqual(error_code(result), "OFFLINE")
        self.assertEqual(len(queue), 1)

    async def test_unsendable_parameters_are_rejected_without_blocking_the_queue(self):
        result = await self.queue.enqueue(
            "GameGet", {"meta": {"when": datetime(2026, 1, 1)}}, self.delivered.append
        )

        self.assertEqual(error_code(result), "INVALID_PARAM")
        self.assertEqual(self.delivered, [result])
        self.assertEqual(len(self.queue), 0)
        self.assertEqual(self.transport.calls, [])

        after = await self.queue.enqueue("GameGet", {"game_id": 1})
        self.assertFalse(is_error(after))
        self.assertEqual(len(self.queue), 0)

    async def test_callback_errors_do_not_break_delivery(self):
        def boom(result):
            raise RuntimeError("handler bug")

        result = await self.queue.enqueue("GameGet", {}, boom)
        self.assertFalse(is_error(result))
        self.assertEqual(len(self.queue), 0)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
