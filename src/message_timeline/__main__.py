import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from message_timeline.app_config import load_json_config, parse_app_config, resolve_runtime_env
from message_timeline.bootstrap import bootstrap_runtime


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    runtime = bootstrap_runtime(app, resolve_runtime_env())

    print("message-timeline (type 'exit' to quit, '/help' for commands)")
    print(f"API: {runtime.api_base_url} (page size: {app.page_size})")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        if len(sys.argv) > 1:
            await runtime.shell.load(sys.argv[1])

        while True:
            try:
                user_input = input("timeline> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                await runtime.shell.run(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.source.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
