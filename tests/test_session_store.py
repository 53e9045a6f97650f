"""
Tests for the session store, its cache and the JSONL turn log.
"""

import json
import os
import sys
import tempfile
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatbridge.config import SUMMARY_PROMPT, SessionConfig
from chatbridge.errors import ModelUnavailable, SessionFinishedError, TurnLogError
from chatbridge.models import (
    STRUCTURED_ANSWER_TOOL,
    ModelResponse,
    Session,
    ToolInvocation,
    ToolResult,
    Turn,
    TurnRole,
)
from chatbridge.session_store import SessionCache, SessionStore
from chatbridge.turn_log import JsonlTurnLog


class FailingCache(SessionCache):
    def set(self, session):
        raise RuntimeError("cache unavailable")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def fill(store, session_id, count):
    for i in range(count):
        turn = Turn.user(f"question {i}") if i % 2 == 0 else Turn.assistant(f"answer {i}")
        store.append(session_id, turn)


class TestSessionCache(unittest.TestCase):

    def test_entries_expire_after_write(self):
        clock = FakeClock()
        cache = SessionCache(ttl_seconds=900, clock=clock)
        store = SessionStore(MagicMock(), cache=cache)
        store.turn_log.find_system_role.return_value = None

        cache.set(Session(id="s", system_role="r"))
        clock.now = 899
        self.assertIsNotNone(cache.get("s"))
        clock.now = 900
        self.assertIsNone(cache.get("s"))
        self.assertIsNone(store.get("s"))

    def test_writes_drop_expired_entries_of_other_sessions(self):
        clock = FakeClock()
        cache = SessionCache(ttl_seconds=10, clock=clock)
        for i in range(50):
            cache.set(Session(id=f"old-{i}", system_role="r"))
        clock.now = 5
        cache.set(Session(id="b", system_role="r"))
        self.assertEqual(len(cache), 51)

        clock.now = 12
        cache.set(Session(id="c", system_role="r"))
        self.assertEqual(len(cache), 2)
        self.assertIsNotNone(cache.get("b"))
        self.assertIsNone(cache.get("old-0"))


class TestSessionStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.log_path = os.path.join(self.tmp.name, "turns.jsonl")
        self.turn_log = JsonlTurnLog(self.log_path)
        self.model = MagicMock()
        self.model.submit.return_value = ModelResponse(text="user asked things, assistant answered")
        self.store = SessionStore(self.turn_log, self.model, SessionConfig(summary_threshold=8))

    def tearDown(self):
        self.tmp.cleanup()

    def _log_kinds(self):
        with open(self.log_path, encoding="utf-8") as f:
            return [json.loads(line)["kind"] for line in f if line.strip()]

    def test_unknown_session(self):
        self.assertIsNone(self.store.get("missing"))

    def test_create_and_append(self):
        self.store.create("s1", "Be brief")
        session = self.store.append("s1", Turn.user("hello"))

        self.assertEqual(session.system_role, "Be brief")
        self.assertEqual([t.content for t in session.turns], ["hello"])
        self.assertEqual(self._log_kinds(), ["system", "user"])

    def test_rebuild_from_log(self):
        self.store.create("s1", "Be brief")
        fill(self.store, "s1", 3)

        fresh = SessionStore(JsonlTurnLog(self.log_path), self.model)
        session = fresh.get("s1")

        self.assertEqual(session.system_role, "Be brief")
        self.assertEqual([t.role for t in session.turns],
                         [TurnRole.USER, TurnRole.ASSISTANT, TurnRole.USER])

    def test_compaction_at_threshold(self):
        self.store.create("s1", "Be brief")
        fill(self.store, "s1", 8)

        compacted = self.store.compact_if_needed(self.store.get("s1"))

        self.assertEqual(self.model.submit.call_count, 1)
        _, request_turns = self.model.submit.call_args[0][:2]
        self.assertEqual(request_turns[-1].content, SUMMARY_PROMPT)
        self.assertEqual(len(compacted.turns), 1)
        self.assertEqual(compacted.turns[0].role, TurnRole.SUMMARY)
        self.assertEqual(self._log_kinds().count("summary"), 1)

        # The next read starts from the summary turn only
        self.store.append("s1", Turn.user("next question"))
        reread = SessionStore(JsonlTurnLog(self.log_path), self.model).get("s1")
        self.assertEqual([t.role for t in reread.turns], [TurnRole.SUMMARY, TurnRole.USER])
        self.assertEqual(reread.turns[0].content, "user asked things, assistant answered")

    def test_no_compaction_below_threshold(self):
        self.store.create("s1", "Be brief")
        fill(self.store, "s1", 7)

        session = self.store.compact_if_needed(self.store.get("s1"))

        self.assertEqual(len(session.turns), 7)
        self.model.submit.assert_not_called()

    def test_compaction_failure_is_not_fatal(self):
        self.model.submit.side_effect = ModelUnavailable("timeout")
        self.store.create("s1", "Be brief")
        fill(self.store, "s1", 8)

        session = self.store.compact_if_needed(self.store.get("s1"))

        self.assertEqual(len(session.turns), 8)
        self.assertNotIn("summary", self._log_kinds())

        # Retried on the next crossing
        self.model.submit.side_effect = None
        self.store.append("s1", Turn.user("again"))
        session = self.store.compact_if_needed(self.store.get("s1"))
        self.assertEqual(len(session.turns), 1)

    def test_log_failure_leaves_cache_untouched(self):
        turn_log = MagicMock()
        turn_log.find_system_role.return_value = "role"
        turn_log.read_turns_since.return_value = []
        store = SessionStore(turn_log)
        store.create("s1", "role")
        turn_log.append_turn.side_effect = TurnLogError("disk full")

        with self.assertRaises(TurnLogError):
            store.append("s1", Turn.user("lost"))
        self.assertEqual(store.get("s1").turns, [])

    def test_cache_failure_is_not_fatal(self):
        store = SessionStore(self.turn_log, cache=FailingCache())
        store.create("s1", "role")

        session = store.append("s1", Turn.user("kept"))

        self.assertEqual([t.content for t in session.turns], ["kept"])
        self.assertEqual([t.content for t in store.get("s1").turns], ["kept"])

    def test_tool_result_must_reference_prior_invocation(self):
        self.store.create("s1", "role")
        self.store.append("s1", Turn.user("list files"))

        with self.assertRaises(ValueError):
            self.store.append("s1", Turn.tool_result(ToolResult(invocation_id="call_1", payload="x")))

        self.store.append("s1", Turn.assistant("", [ToolInvocation("call_1", "execute_shell_command", "{}")]))
        session = self.store.append("s1", Turn.tool_result(ToolResult(invocation_id="call_1", payload="x")))
        self.assertEqual(session.turns[-1].invocation_id, "call_1")

    def test_finished_session_rejects_new_turns(self):
        self.store.create("s1", "role")
        self.store.append("s1", Turn.user("start"))
        invocation = ToolInvocation("call_9", STRUCTURED_ANSWER_TOOL,
                                    json.dumps({"response": "All done", "isFinished": True}))
        session = self.store.append("s1", Turn.assistant("", [invocation]))
        self.assertTrue(session.finished)

        with self.assertRaises(SessionFinishedError) as ctx:
            self.store.append("s1", Turn.user("more"))
        self.assertEqual(ctx.exception.last_answer, "All done")

        # Finished state survives a rebuild from the log
        rebuilt = SessionStore(JsonlTurnLog(self.log_path)).get("s1")
        self.assertTrue(rebuilt.finished)


if __name__ == '__main__':
    unittest.main()
