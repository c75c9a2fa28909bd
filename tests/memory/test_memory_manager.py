import asyncio
import unittest

from step_sync_assistant.memory import (
    ConversationMemoryManager,
    ConversationPersistence,
    MemoryConfig,
    Message,
    PersistenceError,
)
from step_sync_assistant.token_counter import TokenCounter
from tests.memory.base import FakeClock, MemoryStoreTestCase, make_message


class _RecordingPersistence:
    def __init__(self, *, fail_saves: bool = False, fail_loads: bool = False, crash_saves: bool = False) -> None:
        self.saved: dict[str, list[Message]] = {}
        self.loads: list[str] = []
        self.deleted: list[str] = []
        self.fail_saves = fail_saves
        self.fail_loads = fail_loads
        self.crash_saves = crash_saves
        self.save_gates: dict[str, asyncio.Event] = {}

    async def load_messages(self, session_id: str) -> list[Message]:
        self.loads.append(session_id)
        if self.fail_loads:
            raise PersistenceError("disk unavailable")
        return list(self.saved.get(session_id, []))

    async def save_message(self, session_id: str, message: Message) -> None:
        gate = self.save_gates.get(session_id)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        if self.fail_saves:
            raise PersistenceError("disk full")
        if self.crash_saves:
            raise RuntimeError("driver bug")
        self.saved.setdefault(session_id, []).append(message)

    async def delete_session(self, session_id: str) -> None:
        self.deleted.append(session_id)
        self.saved.pop(session_id, None)


class ConversationMemoryManagerTests(unittest.TestCase):
    def test_recording_persistence_satisfies_protocol(self) -> None:
        self.assertIsInstance(_RecordingPersistence(), ConversationPersistence)

    def test_history_keeps_only_most_recent_messages(self) -> None:
        manager = ConversationMemoryManager()

        async def scenario() -> list[Message]:
            for i in range(1, 26):
                await manager.add_message("s1", f"message {i}")
            return await manager.get_history("s1")

        history = asyncio.run(scenario())
        self.assertEqual(20, len(history))
        self.assertEqual([f"message {i}" for i in range(6, 26)], [m.text for m in history])

    def test_history_is_a_copy(self) -> None:
        manager = ConversationMemoryManager()

        async def scenario() -> list[Message]:
            await manager.add_message("s1", "hello")
            history = await manager.get_history("s1")
            history.clear()
            return await manager.get_history("s1")

        self.assertEqual(["hello"], [m.text for m in asyncio.run(scenario())])

    def test_unknown_session_has_empty_history(self) -> None:
        manager = ConversationMemoryManager()
        self.assertEqual([], asyncio.run(manager.get_history("nobody")))
        self.assertFalse(manager.has_session("nobody"))

    def test_rejects_unknown_role(self) -> None:
        manager = ConversationMemoryManager()
        with self.assertRaises(ValueError):
            asyncio.run(manager.add_message("s1", "hi", role="system"))

    def test_invalid_config_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            MemoryConfig(max_messages=0)
        with self.assertRaises(ValueError):
            MemoryConfig(persistence_mode="eventually")

    def test_unknown_and_cleared_sessions_leave_no_lock_behind(self) -> None:
        manager = ConversationMemoryManager()

        async def scenario() -> None:
            await manager.get_history("nobody")
            await manager.clear_session("nobody")
            self.assertEqual(0, manager.get_lock_stats()["total_locks"])

            await manager.add_message("s1", "hello")
            self.assertEqual(1, manager.get_lock_stats()["total_locks"])
            await manager.clear_session("s1")
            self.assertEqual(0, manager.get_lock_stats()["total_locks"])

        asyncio.run(scenario())

    def test_recent_messages(self) -> None:
        manager = ConversationMemoryManager()

        async def scenario() -> tuple[list[Message], list[Message]]:
            for i in range(5):
                await manager.add_message("s1", f"m{i}")
            return await manager.get_recent_messages("s1", 2), await manager.get_recent_messages("s1", 0)

        recent, none = asyncio.run(scenario())
        self.assertEqual(["m3", "m4"], [m.text for m in recent])
        self.assertEqual([], none)

    def test_token_counts_are_recorded(self) -> None:
        manager = ConversationMemoryManager(token_counter=TokenCounter())

        async def scenario() -> Message:
            return await manager.add_message("s1", "Hello world")

        self.assertEqual(3, asyncio.run(scenario()).token_count)
        self.assertEqual(3, manager.get_stats().estimated_tokens)


class ConversationMemoryConcurrencyTests(unittest.TestCase):
    def test_concurrent_appends_to_one_session_keep_arrival_order(self) -> None:
        persistence = _RecordingPersistence()
        manager = ConversationMemoryManager(persistence)

        async def scenario() -> list[Message]:
            await asyncio.gather(*(manager.add_message("s1", f"m{i}") for i in range(10)))
            return await manager.get_history("s1")

        history = asyncio.run(scenario())
        expected = [f"m{i}" for i in range(10)]
        self.assertEqual(expected, [m.text for m in history])
        self.assertEqual(expected, [m.text for m in persistence.saved["s1"]])

    def test_busy_session_does_not_block_other_sessions(self) -> None:
        persistence = _RecordingPersistence()
        manager = ConversationMemoryManager(persistence)

        async def scenario() -> None:
            gate = asyncio.Event()
            persistence.save_gates["slow"] = gate

            slow = asyncio.create_task(manager.add_message("slow", "waiting on disk"))
            await asyncio.sleep(0)
            self.assertEqual(["slow"], manager.get_lock_stats()["locked_sessions"])

            await asyncio.wait_for(manager.add_message("fast", "no waiting"), timeout=1.0)
            self.assertFalse(slow.done())

            gate.set()
            await slow

        asyncio.run(scenario())
        self.assertEqual(0, manager.get_lock_stats()["active_locks"])


class ConversationMemoryPersistenceTests(MemoryStoreTestCase):
    def test_restart_reconstructs_history_from_durable_store(self) -> None:
        first = ConversationMemoryManager(self._persistence)

        async def write() -> list[Message]:
            await first.add_message("s1", "my steps are not syncing")
            await first.add_message("s1", "Let's check your permissions.", role="assistant")
            await first.add_message("s1", "permissions look fine")
            return await first.get_history("s1")

        before = asyncio.run(write())

        second = ConversationMemoryManager(self._persistence)
        after = asyncio.run(second.get_history("s1"))

        self.assertEqual([m.id for m in before], [m.id for m in after])
        self.assertEqual([m.text for m in before], [m.text for m in after])
        self.assertEqual(["user", "assistant", "user"], [m.role for m in after])

    def test_hydration_keeps_most_recent_window(self) -> None:
        for i in range(30):
            self._save("s1", f"stored {i}")

        manager = ConversationMemoryManager(self._persistence, MemoryConfig(max_messages=20))
        history = asyncio.run(manager.get_history("s1"))
        self.assertEqual([f"stored {i}" for i in range(10, 30)], [m.text for m in history])

    def test_background_writes_land_after_flush(self) -> None:
        manager = ConversationMemoryManager(self._persistence, MemoryConfig(persistence_mode="background"))

        async def scenario() -> None:
            for i in range(3):
                await manager.add_message("s1", f"m{i}")
            await manager.flush()
            self.assertEqual(0, manager.get_lock_stats()["pending_writes"])

        asyncio.run(scenario())
        stored = asyncio.run(self._persistence.load_messages("s1"))
        self.assertEqual(["m0", "m1", "m2"], [m.text for m in stored])

    def test_clear_session_deletes_durable_history(self) -> None:
        manager = ConversationMemoryManager(self._persistence)

        async def scenario() -> tuple[bool, bool, list[Message]]:
            await manager.add_message("s1", "hello")
            first = await manager.clear_session("s1")
            second = await manager.clear_session("s1")
            return first, second, await manager.get_history("s1")

        first, second, history = asyncio.run(scenario())
        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual([], history)
        self.assertEqual([], asyncio.run(self._persistence.load_messages("s1")))


    def test_clear_in_background_mode_waits_for_queued_writes(self) -> None:
        manager = ConversationMemoryManager(self._persistence, MemoryConfig(persistence_mode="background"))

        async def scenario() -> bool:
            await manager.add_message("s1", "secret-ish")
            cleared = await manager.clear_session("s1")
            await manager.flush()
            return cleared

        self.assertTrue(asyncio.run(scenario()))
        self.assertEqual([], asyncio.run(self._persistence.load_messages("s1")))
        self.assertEqual([], self._store.query("SELECT id FROM sessions"))

        restarted = ConversationMemoryManager(self._persistence)
        self.assertEqual([], asyncio.run(restarted.get_history("s1")))


class ConversationMemoryHydrationTests(unittest.TestCase):
    def test_durable_store_is_consulted_once_per_session(self) -> None:
        persistence = _RecordingPersistence()
        persistence.saved["s1"] = [make_message("s1", "from disk")]
        manager = ConversationMemoryManager(persistence)

        async def scenario() -> list[Message]:
            await manager.get_history("s1")
            await manager.add_message("s1", "new")
            await manager.get_history("s1")
            await manager.get_history("empty")
            await manager.get_history("empty")
            return await manager.get_history("s1")

        history = asyncio.run(scenario())
        self.assertEqual(["from disk", "new"], [m.text for m in history])
        self.assertEqual(["s1", "empty"], persistence.loads)

    def test_persistence_failures_are_not_fatal(self) -> None:
        persistence = _RecordingPersistence(fail_saves=True, fail_loads=True)
        manager = ConversationMemoryManager(persistence)

        async def scenario() -> list[Message]:
            await manager.add_message("s1", "still remembered")
            return await manager.get_history("s1")

        history = asyncio.run(scenario())
        self.assertEqual(["still remembered"], [m.text for m in history])
        self.assertEqual(2, manager.get_lock_stats()["persistence_failures"])


class ConversationMemoryWriteFailureTests(unittest.TestCase):
    def test_unexpected_save_error_still_keeps_history_bounded(self) -> None:
        persistence = _RecordingPersistence()
        manager = ConversationMemoryManager(persistence, MemoryConfig(max_messages=2))

        async def scenario() -> list[Message]:
            await manager.add_message("s1", "m0")
            await manager.add_message("s1", "m1")
            persistence.crash_saves = True
            with self.assertRaises(RuntimeError):
                await manager.add_message("s1", "m2")
            return await manager.get_history("s1")

        self.assertEqual(["m1", "m2"], [m.text for m in asyncio.run(scenario())])

    def test_unexpected_background_error_surfaces_on_flush(self) -> None:
        persistence = _RecordingPersistence(crash_saves=True)
        manager = ConversationMemoryManager(persistence, MemoryConfig(persistence_mode="background"))

        async def scenario() -> None:
            await manager.add_message("s1", "hello")
            with self.assertRaises(RuntimeError):
                await manager.flush()
            self.assertEqual(0, manager.get_lock_stats()["pending_writes"])

        asyncio.run(scenario())
        self.assertEqual(["hello"], [m.text for m in asyncio.run(manager.get_history("s1"))])


class ConversationMemoryLifecycleTests(unittest.TestCase):
    def test_idle_sessions_expire_but_durable_history_survives(self) -> None:
        clock = FakeClock()
        persistence = _RecordingPersistence()
        manager = ConversationMemoryManager(persistence, MemoryConfig(session_ttl_seconds=3600), clock=clock)

        async def scenario() -> None:
            await manager.add_message("idle", "old conversation")
            clock.advance(minutes=50)
            await manager.add_message("busy", "recent conversation")
            clock.advance(minutes=20)

            self.assertEqual(["idle"], await manager.expire_idle_sessions())
            self.assertFalse(manager.has_session("idle"))
            self.assertTrue(manager.has_session("busy"))
            self.assertEqual(1, manager.get_lock_stats()["total_locks"])

            history = await manager.get_history("idle")
            self.assertEqual(["old conversation"], [m.text for m in history])

        asyncio.run(scenario())

    def test_clear_all_sessions(self) -> None:
        persistence = _RecordingPersistence()
        manager = ConversationMemoryManager(persistence)

        async def scenario() -> int:
            for sid in ("a", "b", "c"):
                await manager.add_message(sid, "hi")
            return await manager.clear_all_sessions()

        self.assertEqual(3, asyncio.run(scenario()))
        self.assertEqual([], manager.active_session_ids())
        self.assertEqual(["a", "b", "c"], sorted(persistence.deleted))

    def test_stats_and_usage(self) -> None:
        clock = FakeClock()
        manager = ConversationMemoryManager(clock=clock)

        async def scenario() -> None:
            for i in range(8):
                await manager.add_message("a", f"question {i}")
                await manager.add_message("a", f"answer {i}", role="assistant")
            clock.advance(seconds=30)
            await manager.add_message("b", "hello")

        asyncio.run(scenario())

        stats = manager.get_stats()
        self.assertEqual(2, stats.total_sessions)
        self.assertEqual(17, stats.total_messages)
        self.assertEqual(9, stats.user_messages)
        self.assertEqual(8, stats.assistant_messages)
        self.assertEqual(8.5, stats.average_messages_per_session)
        self.assertLess(stats.oldest_activity, stats.newest_activity)

        usage = manager.get_session_usage()
        self.assertEqual(["a", "b"], list(usage))
        self.assertEqual(16, usage["a"]["messages"])
        self.assertEqual(80.0, usage["a"]["capacity_pct"])
        self.assertTrue(usage["a"]["near_capacity"])
        self.assertFalse(usage["b"]["near_capacity"])

    def test_empty_stats(self) -> None:
        stats = ConversationMemoryManager().get_stats()
        self.assertEqual(0, stats.total_sessions)
        self.assertEqual(0.0, stats.average_messages_per_session)
        self.assertIsNone(stats.oldest_activity)


if __name__ == "__main__":
    unittest.main()
