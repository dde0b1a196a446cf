"""Ollama adaptor for actionflow."""

import json
import uuid
from typing import AsyncIterator, Optional

from ollama import AsyncClient

from actionflow.execution import Message
from actionflow.model import CompletionClient, CompletionDelta, ToolCallDelta


class OllamaAdaptor(CompletionClient):
    """Ollama streaming client using the official SDK.

    Ollama delivers each tool call whole and without an id, so ids are
    generated here.

    Args:
        model: Model name (default: llama3.1).
        host: Ollama server URL (default: None, SDK defaults to localhost:11434).
    """

    def __init__(
        self,
        model: str = "llama3.1",
        host: Optional[str] = None,
    ):
        self.model = model
        self.client = AsyncClient(host=host)

    async def stream(
        self,
        messages: list[Message],
        tools: Optional[list[dict]] = None,
        **kwargs,
    ) -> AsyncIterator[CompletionDelta]:
        chat_kwargs = {
            "model": kwargs.get("model", self.model),
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": True,
        }
        if tools:
            chat_kwargs["tools"] = tools
        if kwargs.get("response_format"):
            chat_kwargs["format"] = "json"
        options = {}
        if "temperature" in kwargs:
            options["temperature"] = kwargs["temperature"]
        if "max_tokens" in kwargs:
            options["num_predict"] = kwargs["max_tokens"]
        if options:
            chat_kwargs["options"] = options

        index = 0
        async for part in await self.client.chat(**chat_kwargs):
            message = part.message
            tool_calls = []
            for tc in message.tool_calls or []:
                arguments = tc.function.arguments
                tool_calls.append(
                    ToolCallDelta(
                        index=index,
                        id=f"call_{uuid.uuid4().hex[:12]}",
                        name=tc.function.name,
                        arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
                    )
                )
                index += 1
            yield CompletionDelta(
                content=message.content or "",
                tool_calls=tool_calls,
                finish_reason=(part.done_reason or "stop") if part.done else None,
            )
