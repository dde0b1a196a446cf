"""Interactive session against OpenAI and Nango.

Requires OPENAI_API_KEY and NANGO_SECRET_KEY (a .env file works too) and a
Nango connection id for the user.

Run:
    python examples/quick_start.py <connection-id>
"""

import asyncio
import logging
import os
import sys

from actionflow import OpenAIAdaptor, QueueChannel, SessionHandler, Settings

SESSION_ID = "cli"


async def print_events(channel: QueueChannel) -> None:
    queue = channel.queue(SESSION_ID)
    while True:
        event = await queue.get()
        data = event.to_dict()
        if data["type"] == "conversational_text_segment":
            segment = data["content"].get("segment")
            if segment:
                print(segment["segment"], end="", flush=True)
        elif data["type"] == "stream_end":
            print()
        else:
            print(f"[{data['type']}] {data['content']}")


async def main(connection_id: str) -> None:
    settings = Settings.from_env()
    if settings.tool_config_path is None:
        settings.tool_config_path = os.path.join(os.path.dirname(__file__), "tool_config.json")

    channel = QueueChannel()
    client = OpenAIAdaptor(
        api_key=settings.openai_api_key,
        model=settings.model,
        base_url=settings.base_url,
        max_tokens=settings.max_tokens,
    )
    handler = SessionHandler.from_settings(settings, client, channel)
    printer = asyncio.create_task(print_events(channel))

    handler.open(SESSION_ID)
    await handler.handle_message(SESSION_ID, {"type": "init", "content": {"userId": "cli-user"}})
    await handler.handle_message(
        SESSION_ID, {"type": "update_active_connection", "content": {"connectionId": connection_id}}
    )

    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, input, "> ")
        if line.strip() in ("quit", "exit"):
            break
        if line.startswith("!run "):
            message = {"type": "execute_action", "content": {"actionId": line[5:].strip()}}
        elif line.startswith("!set "):
            action_id, name, value = line[5:].split(" ", 2)
            message = {
                "type": "update_parameter",
                "content": {"actionId": action_id, "paramName": name, "value": value},
            }
        else:
            message = {"type": "content", "content": line}
        await handler.handle_message(SESSION_ID, message)
        await asyncio.sleep(0)

    handler.close(SESSION_ID)
    printer.cancel()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    logging.basicConfig(level=logging.WARNING)
    asyncio.run(main(sys.argv[1]))
