"""Concrete implementations for LLM providers."""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from .errors import ConfigurationError, TransportError, classify_error
from .models import (
    SYSTEM_ROLE,
    ChatMessage,
    Credential,
    ToolCall,
    ToolInvocation,
    new_id,
)
from .tools import Tool, serialize_result

logger = logging.getLogger(__name__)

DEFAULT_STEP_BUDGET = 5

StreamItem = Union[str, ToolCall]


class LLM(ABC):
    """Abstract Base Class for all LLM providers.

    Subclasses only implement a single generation step
    (``generate_response``). The agentic loop in ``stream`` drives the
    generate / execute-tools / continue cycle on top of it.
    """

    provider = "llm"

    @abstractmethod
    def generate_response(
        self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]
    ) -> AsyncIterator[StreamItem]:
        """Runs one generation step against the provider.

        Parameters
        ----------
        messages : List[Dict[str, Any]]
            The working history in OpenAI chat format, including earlier
            tool calls and their results.
        tools : List[Dict[str, Any]]
            Tool declarations in OpenAI function-calling format.

        Returns
        -------
        AsyncIterator[Union[str, ToolCall]]
            Text deltas as they arrive, followed by any tool calls the model
            requested in this step, in request order.
        """
        pass

    def format_messages(
        self, history: Sequence[ChatMessage], system_prompt: str = ""
    ) -> List[Dict[str, Any]]:
        messages = []
        if system_prompt:
            messages.append({"role": SYSTEM_ROLE, "content": system_prompt})
        for msg in history:
            if msg.is_streaming:
                continue
            messages.append({"role": msg.role, "content": msg.content})
        return messages

    def create_assistant_message(
        self, content: str, tool_calls: Sequence[ToolCall]
    ) -> Dict[str, Any]:
        return {
            "role": "assistant",
            "content": content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.function_name,
                        "arguments": call.function_args,
                    },
                }
                for call in tool_calls
            ],
        }

    def create_tool_result_messages(
        self, invocations: Sequence[ToolInvocation]
    ) -> List[Dict[str, Any]]:
        return [
            {
                "role": "tool",
                "tool_call_id": invocation.id,
                "content": serialize_result(invocation.result),
            }
            for invocation in invocations
        ]

    async def stream(
        self,
        history: Sequence[ChatMessage],
        tools: Tool,
        system_prompt: str = "",
        step_budget: int = DEFAULT_STEP_BUDGET,
        cancel_event: Optional[asyncio.Event] = None,
        on_tool_call: Optional[Callable[[ToolInvocation], None]] = None,
    ) -> AsyncIterator[str]:
        """Streams the reply to ``history``, resolving tool calls along the way.

        Each step generates until the model stops; if it requested tools, they
        run in request order and their results are appended to the working
        history before the next step. The loop ends when a step requests no
        tools, when ``step_budget`` steps have run, or when ``cancel_event``
        is set. Running out of budget is not an error.

        Raises
        ------
        TransportError
            If the provider fails; ``QuotaExceeded`` for usage-limit rejections.
        """

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        messages = self.format_messages(history, system_prompt)
        declarations = tools.get_tools()

        for _ in range(step_budget):
            if cancelled():
                return
            text_parts: List[str] = []
            requested: List[ToolCall] = []
            try:
                async with aclosing(
                    self.generate_response(messages, declarations)
                ) as items:
                    async for item in items:
                        if cancelled():
                            return
                        if isinstance(item, ToolCall):
                            requested.append(item)
                        elif item:
                            text_parts.append(item)
                            yield item
            except TransportError:
                raise
            except Exception as e:
                raise classify_error(e, provider=self.provider) from e

            if cancelled() or not requested:
                return

            messages.append(self.create_assistant_message("".join(text_parts), requested))
            invocations = []
            for call in requested:
                if cancelled():
                    return
                invocation = await tools.execute_tool_call(call)
                invocations.append(invocation)
                if on_tool_call is not None:
                    on_tool_call(invocation)
            messages.extend(self.create_tool_result_messages(invocations))

        logger.info("Step budget of %d exhausted, ending the turn", step_budget)


class OpenAI(LLM):
    """Streams from an OpenAI-compatible chat completions endpoint."""

    provider = "openai"
    base_url: Optional[str] = None
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        credential: Optional[Credential] = None,
        default_model: str = "gpt-4o",
        client: Any = None,
        **request_kwargs: Any,
    ):
        if client is None:
            from openai import AsyncOpenAI

            if credential is not None:
                api_key = credential.api_key.get_secret_value()
            else:
                api_key = os.environ.get(self.api_key_env)
            client = AsyncOpenAI(api_key=api_key, base_url=self.base_url)
        self.client = client
        self.model = credential.model if credential is not None else default_model
        self.request_kwargs = request_kwargs

    async def generate_response(self, messages, tools):
        kwargs = dict(self.request_kwargs)
        if tools:
            kwargs["tools"] = tools
        stream = await self.client.chat.completions.create(
            model=self.model, messages=messages, stream=True, **kwargs
        )

        # Tool call fragments arrive spread over chunks, keyed by index.
        pending: Dict[int, Dict[str, str]] = {}
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
                for tc in delta.tool_calls or []:
                    index = tc.index if tc.index is not None else len(pending)
                    entry = pending.setdefault(
                        index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function is not None:
                        entry["name"] += tc.function.name or ""
                        entry["arguments"] += tc.function.arguments or ""
        finally:
            await stream.close()

        for index in sorted(pending):
            entry = pending[index]
            yield ToolCall(
                id=entry["id"] or new_id(),
                function_name=entry["name"],
                function_args=entry["arguments"] or "{}",
            )


class OpenRouter(OpenAI):
    provider = "openrouter"
    base_url = "https://openrouter.ai/api/v1"
    api_key_env = "OPENROUTER_API_KEY"

    def __init__(self, credential=None, default_model="openai/gpt-4o-mini", **kwargs):
        kwargs.setdefault(
            "extra_headers",
            {"HTTP-Referer": "https://github.com/dealpilot", "X-Title": "DealPilot"},
        )
        super().__init__(credential, default_model=default_model, **kwargs)


class Gemini(OpenAI):
    """Gemini through Google's OpenAI-compatible endpoint."""

    provider = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/openai/"
    api_key_env = "GEMINI_API_KEY"

    def __init__(self, credential=None, default_model="gemini-2.5-flash", **kwargs):
        super().__init__(credential, default_model=default_model, **kwargs)


class Echo(LLM):
    """Offline provider that streams the last user prompt back, word by word."""

    provider = "echo"

    def __init__(self, default_model: str = "echo-v1", delay: float = 0.0):
        self.model = default_model
        self.delay = delay

    async def generate_response(self, messages, tools):
        user_prompt = next(
            (m["content"] for m in reversed(messages) if m["role"] == "user"),
            "No message provided",
        )
        content = f"**Echo LLM - static response for testing**\n\n{user_prompt}"
        for i, word in enumerate(content.split(" ")):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if i == 0 else " " + word


PROVIDERS = {
    "openai": OpenAI,
    "openrouter": OpenRouter,
    "gemini": Gemini,
}


def create_llm(provider: str, credential: Credential, **kwargs: Any) -> LLM:
    """Instantiates the provider class registered under ``provider``."""
    try:
        llm_class = PROVIDERS[provider]
    except KeyError:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. Choose one of: {', '.join(PROVIDERS)}"
        ) from None
    return llm_class(credential, **kwargs)
