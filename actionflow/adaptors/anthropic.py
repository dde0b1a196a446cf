"""Anthropic API adaptor for actionflow."""

import os
from typing import AsyncIterator, Optional

from anthropic import AsyncAnthropic

from actionflow.execution import Message
from actionflow.model import CompletionClient, CompletionDelta, ToolCallDelta

_FINISH_REASONS = {"tool_use": "tool_calls", "end_turn": "stop", "max_tokens": "length"}


class AnthropicAdaptor(CompletionClient):
    """Anthropic streaming client using the official SDK.

    Args:
        api_key: Anthropic API key. Falls back to ANTHROPIC_API_KEY environment variable.
        model: Model name (default: claude-sonnet-4-5-20250929).
        max_tokens: Maximum tokens in the response (default: 1024).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 1024,
    ):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key not provided. "
                "Pass api_key argument or set ANTHROPIC_API_KEY environment variable."
            )

        self.model = model
        self.max_tokens = max_tokens
        self.client = AsyncAnthropic(api_key=self.api_key)

    async def stream(
        self,
        messages: list[Message],
        tools: Optional[list[dict]] = None,
        **kwargs,
    ) -> AsyncIterator[CompletionDelta]:
        system, anthropic_messages = self._convert_messages(messages)
        create_kwargs = {
            "model": kwargs.get("model", self.model),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
            "messages": anthropic_messages,
            "stream": True,
        }
        if system:
            create_kwargs["system"] = system
        if "temperature" in kwargs:
            create_kwargs["temperature"] = kwargs["temperature"]
        if tools:
            create_kwargs["tools"] = [self._convert_tool(tool) for tool in tools]
            create_kwargs["tool_choice"] = {"type": kwargs.get("tool_choice", "auto")}

        response = await self.client.messages.create(**create_kwargs)
        async for event in response:
            delta = self._parse_event(event)
            if delta is not None:
                yield delta

    def _convert_messages(self, messages: list[Message]) -> tuple[str, list[dict]]:
        system_parts = []
        anthropic_messages = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role == "assistant":
                content_blocks = []
                if msg.content:
                    content_blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls or []:
                    content_blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                anthropic_messages.append({
                    "role": "assistant",
                    "content": content_blocks or msg.content,
                })
            elif msg.role == "tool":
                anthropic_messages.append({
                    "role": "user",
                    "content": [{
                        "type": "tool_result",
                        "tool_use_id": msg.tool_call_id,
                        "content": msg.content,
                    }],
                })
            else:
                anthropic_messages.append({"role": "user", "content": msg.content})
        return "\n\n".join(system_parts), anthropic_messages

    def _convert_tool(self, tool: dict) -> dict:
        function = tool.get("function", tool)
        return {
            "name": function["name"],
            "description": function.get("description", ""),
            "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
        }

    def _parse_event(self, event) -> Optional[CompletionDelta]:
        if event.type == "content_block_start" and event.content_block.type == "tool_use":
            block = event.content_block
            return CompletionDelta(
                tool_calls=[ToolCallDelta(index=event.index, id=block.id, name=block.name)]
            )
        if event.type == "content_block_delta":
            if event.delta.type == "text_delta":
                return CompletionDelta(content=event.delta.text)
            if event.delta.type == "input_json_delta":
                return CompletionDelta(
                    tool_calls=[ToolCallDelta(index=event.index, arguments=event.delta.partial_json)]
                )
        if event.type == "message_delta" and event.delta.stop_reason:
            reason = event.delta.stop_reason
            return CompletionDelta(finish_reason=_FINISH_REASONS.get(reason, reason))
        return None
