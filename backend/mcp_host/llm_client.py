# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Chat model adapters.

The conversation is kept in OpenAI chat-completions shape (user / assistant with
tool_calls / tool messages). OpenAIChatModel sends it as-is; AnthropicChatModel
converts it at the API boundary and converts the reply back.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from mcp_host.core.config import Config, get_anthropic_api_key, get_openai_api_key
from mcp_host.core.errors import ConfigurationError, ProtocolError
from mcp_host.tool_schema import FunctionDefinition

logger = logging.getLogger(__name__)

PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ModelToolCall:
    """One function call requested by the model. `arguments` is the raw JSON text."""
    id: str
    name: str
    arguments: str = ""

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ModelReply:
    """Provider-neutral model response"""
    content: Optional[str]
    tool_calls: List[ModelToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)

    def assistant_message(self) -> Dict[str, Any]:
        """The assistant turn to append to the conversation"""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        return message


class ChatModel(ABC):
    """A model endpoint that supports function calling"""

    model: str

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[Sequence[FunctionDefinition]] = None,
        allow_tool_calls: bool = True,
    ) -> ModelReply:
        """
        Run one model round.

        Args:
            messages: Conversation in OpenAI chat shape
            tools: Function definitions known to the conversation
            allow_tool_calls: False offers no callable tools this round
        """
        ...


class OpenAIChatModel(ChatModel):
    """OpenAI chat completions"""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_tokens: int = 1000,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[Sequence[FunctionDefinition]] = None,
        allow_tool_calls: bool = True,
    ) -> ModelReply:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
        }
        if tools and allow_tool_calls:
            kwargs["tools"] = [t.to_openai() for t in tools]
            kwargs["tool_choice"] = "auto"

        response = await self.client.chat.completions.create(**kwargs)

        choices = getattr(response, "choices", None)
        if not choices:
            raise ProtocolError("Model returned no choices", source=PROVIDER_OPENAI)
        choice = choices[0]
        message = choice.message

        tool_calls: List[ModelToolCall] = []
        for tool_call in message.tool_calls or []:
            function = getattr(tool_call, "function", None)
            if function is None:
                logger.warning(f"Unknown tool call format from model: {tool_call!r}")
                continue
            tool_calls.append(ModelToolCall(
                id=tool_call.id,
                name=function.name,
                arguments=function.arguments or "",
            ))

        usage = {}
        if getattr(response, "usage", None) is not None:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            }

        return ModelReply(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            usage=usage,
        )


def _parse_arguments(arguments: Optional[str]) -> Dict[str, Any]:
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def convert_messages_to_anthropic(
    messages: List[Dict[str, Any]],
) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Convert OpenAI-shaped history to (system prompt, Anthropic messages)"""
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for msg in messages:
        role = msg.get("role")
        content = msg.get("content")

        if role == "system":
            system_parts.append(content or "")

        elif role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id"),
                "content": content or "",
            }
            # Consecutive tool results share one user turn
            previous = converted[-1] if converted else None
            if previous and previous["role"] == "user" and isinstance(previous["content"], list):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})

        elif role == "assistant":
            blocks: List[Dict[str, Any]] = []
            if content:
                blocks.append({"type": "text", "text": content})
            for call in msg.get("tool_calls") or []:
                function = call.get("function", {})
                blocks.append({
                    "type": "tool_use",
                    "id": call.get("id"),
                    "name": function.get("name"),
                    "input": _parse_arguments(function.get("arguments")),
                })
            converted.append({"role": "assistant", "content": blocks or (content or "")})

        else:
            converted.append({"role": "user", "content": content or ""})

    system = "\n\n".join(p for p in system_parts if p) or None
    return system, converted


class AnthropicChatModel(ChatModel):
    """Anthropic messages API"""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1000,
        client: Optional[AsyncAnthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[Sequence[FunctionDefinition]] = None,
        allow_tool_calls: bool = True,
    ) -> ModelReply:
        system, converted = convert_messages_to_anthropic(messages)
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": converted,
        }
        if system:
            kwargs["system"] = system
        # Tool definitions must accompany tool_use history even when none may be called
        if tools:
            kwargs["tools"] = [t.to_anthropic() for t in tools]
            if not allow_tool_calls:
                kwargs["tool_choice"] = {"type": "none"}

        response = await self.client.messages.create(**kwargs)

        blocks = getattr(response, "content", None)
        if blocks is None:
            raise ProtocolError("Model returned no content", source=PROVIDER_ANTHROPIC)

        text = "".join(block.text for block in blocks if block.type == "text")
        tool_calls = [
            ModelToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input))
            for block in blocks
            if block.type == "tool_use"
        ]

        usage = {}
        if getattr(response, "usage", None) is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }

        return ModelReply(
            content=text or None,
            tool_calls=tool_calls,
            finish_reason=response.stop_reason,
            usage=usage,
        )


def provider_for_model(model_name: str) -> str:
    """Determine which provider serves a model name"""
    if model_name.startswith("claude-"):
        return PROVIDER_ANTHROPIC
    return PROVIDER_OPENAI


def resolve_api_key(credentials: Optional[str], model_name: str) -> str:
    """
    Request credentials first, then the provider's environment variable.

    Raises:
        ConfigurationError: no key available
    """
    if credentials:
        return credentials
    provider = provider_for_model(model_name)
    key = get_anthropic_api_key() if provider == PROVIDER_ANTHROPIC else get_openai_api_key()
    if not key:
        env_name = "ANTHROPIC_API_KEY" if provider == PROVIDER_ANTHROPIC else "OPENAI_API_KEY"
        raise ConfigurationError(
            f"API key is required. Pass apiKey or set {env_name}.",
            field="apiKey",
        )
    return key


def create_chat_model(model_name: str, api_key: str, config: Config) -> ChatModel:
    """Build the adapter for a model name"""
    if provider_for_model(model_name) == PROVIDER_ANTHROPIC:
        return AnthropicChatModel(api_key=api_key, model=model_name, max_tokens=config.llm_max_tokens)
    return OpenAIChatModel(
        api_key=api_key,
        model=model_name,
        max_tokens=config.llm_max_tokens,
        base_url=config.llm_base_url,
    )
