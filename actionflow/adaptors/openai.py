"""OpenAI API adaptor for actionflow."""

import json
import os
from typing import AsyncIterator, Optional

import httpx

from actionflow.execution import Message
from actionflow.model import CompletionClient, CompletionDelta, ToolCallDelta


class OpenAIAdaptor(CompletionClient):
    """OpenAI-compatible streaming completion client.

    Supports the OpenAI API and compatible endpoints (local models, proxies, etc.).

    Args:
        api_key: OpenAI API key. Falls back to OPENAI_API_KEY environment variable.
        model: Model name (default: gpt-4o-mini).
        base_url: Base URL for the API (default: https://api.openai.com/v1).
        max_tokens: Default completion budget per request.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        max_tokens: int = 1000,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key not provided. "
                "Pass api_key argument or set OPENAI_API_KEY environment variable."
            )

        self.model = model
        self.base_url = base_url or "https://api.openai.com/v1"
        self.max_tokens = max_tokens

    def _payload(self, messages: list[Message], tools: Optional[list[dict]], kwargs: dict) -> dict:
        payload = {
            "model": kwargs.get("model", self.model),
            "messages": self._convert_messages(messages),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
            "stream": True,
        }
        if "temperature" in kwargs:
            payload["temperature"] = kwargs["temperature"]
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = kwargs.get("tool_choice", "auto")
        if kwargs.get("response_format"):
            payload["response_format"] = kwargs["response_format"]
        return payload

    async def stream(
        self,
        messages: list[Message],
        tools: Optional[list[dict]] = None,
        **kwargs,
    ) -> AsyncIterator[CompletionDelta]:
        """Stream a chat completion as server-sent events.

        Raises:
            ValueError: If the API answers with an error status.
            httpx.HTTPError: If the request fails.
        """
        payload = self._payload(messages, tools, kwargs)

        async with httpx.AsyncClient() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=kwargs.get("timeout", 60.0),
            ) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise ValueError(f"OpenAI API error: {self._error_message(body)}")

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    if data:
                        yield self._parse_chunk(json.loads(data))

    def _error_message(self, body: bytes) -> str:
        try:
            error_data = json.loads(body)
        except ValueError:
            return body.decode(errors="replace") or "Unknown error"
        return error_data.get("error", {}).get("message", "Unknown error")

    def _convert_messages(self, messages: list[Message]) -> list[dict]:
        openai_messages = []
        for msg in messages:
            openai_msg = {"role": msg.role, "content": msg.content}
            if msg.tool_call_id:
                openai_msg["tool_call_id"] = msg.tool_call_id
            if msg.role == "assistant" and msg.tool_calls:
                openai_msg["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in msg.tool_calls
                ]
            openai_messages.append(openai_msg)
        return openai_messages

    def _parse_chunk(self, chunk: dict) -> CompletionDelta:
        """Parse one streamed chunk into a CompletionDelta."""
        choices = chunk.get("choices") or []
        if not choices:
            return CompletionDelta()

        choice = choices[0]
        delta = choice.get("delta") or {}
        tool_calls = [
            ToolCallDelta(
                index=tc.get("index", 0),
                id=tc.get("id"),
                name=(tc.get("function") or {}).get("name"),
                arguments=(tc.get("function") or {}).get("arguments") or "",
            )
            for tc in delta.get("tool_calls") or []
        ]
        return CompletionDelta(
            content=delta.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
        )
