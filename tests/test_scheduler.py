"""
Tests for watch tasks, the report scheduler and the watch tools.
"""

import json
import os
import sys
import threading
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatbridge.models import ToolInvocation
from chatbridge.scheduler import ReportScheduler, WatchRegistry
from chatbridge.tools.registry import ToolRegistry
from chatbridge.tools.watch import WatchToolProvider


class TestWatchRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = WatchRegistry()

    def tearDown(self):
        self.registry.cancel_all()

    def test_task_runs_until_cancelled(self):
        ran = threading.Event()
        self.assertTrue(self.registry.start("project-1", ran.set, interval=60))
        self.assertTrue(ran.wait(2))
        self.assertTrue(self.registry.is_running("project-1"))

        self.assertTrue(self.registry.cancel("project-1"))
        self.assertFalse(self.registry.is_running("project-1"))
        self.assertFalse(self.registry.cancel("project-1"))

    def test_one_watch_per_resource(self):
        self.assertTrue(self.registry.start("project-1", lambda: None, interval=60))
        self.assertFalse(self.registry.start("project-1", lambda: None, interval=60))
        self.assertEqual(self.registry.active(), ["project-1"])

    def test_cancel_all(self):
        for name in ("a", "b", "c"):
            self.registry.start(name, lambda: None, interval=60)

        self.assertEqual(self.registry.cancel_all(), 3)
        self.assertEqual(self.registry.active(), [])
        self.assertEqual(self.registry.cancel_all(), 0)

    def test_failing_task_keeps_running(self):
        calls = []
        second_call = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")
            second_call.set()

        self.registry.start("flaky", flaky, interval=0.01)
        self.assertTrue(second_call.wait(2))


class TestReportScheduler(unittest.TestCase):

    def test_run_once_broadcasts_answer(self):
        run_exchange = MagicMock(return_value="All systems nominal")
        broadcast = MagicMock(return_value=2)
        scheduler = ReportScheduler(run_exchange, broadcast, "status?", "reporter", 3600)

        self.assertEqual(scheduler.run_once(), "All systems nominal")
        broadcast.assert_called_once_with("All systems nominal")
        session_id, prompt, role = run_exchange.call_args[0]
        self.assertEqual((prompt, role), ("status?", "reporter"))

    def test_each_run_uses_a_fresh_session(self):
        run_exchange = MagicMock(return_value="ok")
        scheduler = ReportScheduler(run_exchange, MagicMock(return_value=0), "status?", "reporter", 3600)

        scheduler.run_once()
        scheduler.run_once()

        sessions = [c[0][0] for c in run_exchange.call_args_list]
        self.assertNotEqual(sessions[0], sessions[1])

    def test_no_answer_is_not_broadcast(self):
        broadcast = MagicMock()
        scheduler = ReportScheduler(MagicMock(return_value=None), broadcast, "status?", "reporter", 3600)

        self.assertIsNone(scheduler.run_once())
        broadcast.assert_not_called()

    def test_start_and_stop(self):
        delivered = threading.Event()
        scheduler = ReportScheduler(lambda s, p, r: "report", lambda text: delivered.set() or 1,
                                    "status?", "reporter", 3600)
        scheduler.start()
        try:
            self.assertTrue(delivered.wait(2))
        finally:
            scheduler.stop(timeout=2)


class TestWatchTools(unittest.TestCase):

    def setUp(self):
        self.watches = WatchRegistry()
        self.ticked = threading.Event()
        self.exchanges = []

        def run_exchange(session_id, prompt, role):
            self.exchanges.append((session_id, prompt))
            self.ticked.set()
            return "checked"

        self.provider = WatchToolProvider(self.watches, interval_seconds=60, run_exchange=run_exchange)
        self.registry = ToolRegistry([self.provider])

    def tearDown(self):
        self.watches.cancel_all()

    def test_schedule_and_stop(self):
        arguments = {"resourceId": "pipeline-7", "instructions": "Deploy when tests pass"}
        started = self.registry.dispatch(ToolInvocation("c1", "schedule_watch", json.dumps(arguments)))

        self.assertFalse(started.is_error)
        self.assertTrue(started.structured["success"])
        self.assertTrue(self.ticked.wait(2))
        self.assertEqual(self.exchanges[0][1], "Deploy when tests pass")

        again = self.registry.dispatch(ToolInvocation("c2", "schedule_watch", json.dumps(arguments)))
        self.assertFalse(again.structured["success"])

        stopped = self.registry.dispatch(ToolInvocation("c3", "stop_watches", "{}"))
        self.assertEqual(stopped.structured["stoppedCount"], 1)
        self.assertEqual(self.watches.active(), [])

    def test_missing_arguments(self):
        result = self.registry.dispatch(ToolInvocation("c1", "schedule_watch", json.dumps({"resourceId": "x"})))
        self.assertTrue(result.is_error)


if __name__ == '__main__':
    unittest.main()
