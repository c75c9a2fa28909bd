import asyncio
import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from loguru import logger

from step_sync_assistant.app_config import RuntimeEnv, parse_app_config
from step_sync_assistant.bootstrap import bootstrap_runtime

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class BootstrapRuntimeTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"bootstrap-{uuid4().hex}"

    def tearDown(self) -> None:
        logger.remove()
        logger.configure(patcher=lambda record: None)
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_template_only_runtime_without_key_or_memory(self) -> None:
        app = parse_app_config({"MemoryEnabled": False, "LogConsumers": []})
        env = RuntimeEnv(provider_api_key="", provider_env_var="ANTHROPIC_API_KEY")

        async def scenario() -> str:
            runtime = await bootstrap_runtime(app, env)
            try:
                self.assertIsNone(runtime.provider)
                self.assertIsNone(runtime.memory_store)
                self.assertEqual(["anthropic"], runtime.breakers.endpoints())
                reply = await runtime.orchestrator.respond(runtime.chat.session_id, "asdf qwerty")
                return reply.text
            finally:
                await runtime.close()

        self.assertTrue(asyncio.run(scenario()))

    def test_durable_memory_survives_restart(self) -> None:
        config = {
            "MemoryDbPath": str(self._tmp_dir / "memory.db"),
            "SessionId": "demo",
            "LogConsumers": [],
        }
        env = RuntimeEnv(provider_api_key="", provider_env_var="ANTHROPIC_API_KEY")

        async def first_run() -> None:
            runtime = await bootstrap_runtime(parse_app_config(config), env)
            try:
                self.assertEqual("demo", runtime.chat.session_id)
                await runtime.orchestrator.respond("demo", "hello")
            finally:
                await runtime.close()

        async def second_run() -> list[str]:
            runtime = await bootstrap_runtime(parse_app_config(config), env)
            try:
                history = await runtime.memory.get_history("demo")
                return [m.role for m in history]
            finally:
                await runtime.close()

        asyncio.run(first_run())
        self.assertEqual(["user", "assistant"], asyncio.run(second_run()))

    def test_provider_is_created_when_key_is_present(self) -> None:
        app = parse_app_config({"Provider": "openai", "MemoryEnabled": False, "LogConsumers": []})
        env = RuntimeEnv(provider_api_key="sk-test", provider_env_var="OPENAI_API_KEY")

        async def scenario() -> str:
            runtime = await bootstrap_runtime(app, env)
            try:
                return runtime.provider.name
            finally:
                await runtime.close()

        self.assertEqual("openai", asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()
