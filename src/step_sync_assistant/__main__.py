import asyncio

from dotenv import load_dotenv
from loguru import logger

from step_sync_assistant.app_config import load_json_config, parse_app_config, resolve_runtime_env
from step_sync_assistant.bootstrap import bootstrap_runtime


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    runtime = await bootstrap_runtime(app, env)
    chat = runtime.chat

    print("step-sync-assistant (type 'exit' to quit, '/help' for commands)")
    if runtime.provider is not None:
        print(f"Model: {app.provider_name} / {app.model}")
    else:
        print(f"Model: none ({env.provider_env_var} not set, template replies only)")
    print(f"Session: {chat.session_id}")
    if runtime.memory_store is not None:
        print(f"Memory: {runtime.memory_store.db_path} (keeping {app.memory.max_messages} messages)")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                await runtime.memory.expire_idle_sessions()
                await chat.run(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {type(ex).__name__}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
