"""Concrete implementations for tool handlers."""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import InvalidArguments, ToolError, UnknownTool
from .models import ToolCall, ToolInvocation

logger = logging.getLogger(__name__)


class Tool(ABC):
    """Interface for executing agentic tools."""

    @abstractmethod
    def get_tools(self) -> List[Dict[str, Any]]:
        """Returns a list of tool specifications for the LLM."""
        return []

    @abstractmethod
    async def execute_tool_call(self, tool_call: ToolCall) -> ToolInvocation:
        """Executes a tool call requested by the model.

        Implementations must not raise for bad requests; failures are reported
        through ``ToolInvocation.is_error`` so the model can reason about them.
        """
        pass


class NoTool(Tool):
    """Default handler that provides no tools and does nothing."""

    def get_tools(self) -> List[Dict[str, Any]]:
        return []

    async def execute_tool_call(self, tool_call: ToolCall) -> ToolInvocation:
        return ToolInvocation(
            id=tool_call.id,
            tool_name=tool_call.function_name,
            result={"error": "No tools are available in this conversation."},
            is_error=True,
        )


class ToolSpec(BaseModel):
    """A named tool: a description, an argument schema, and the executor.

    The executor receives an instance of ``input_schema`` and may be a plain
    function or a coroutine function.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    description: str
    input_schema: Type[BaseModel]
    execute: Callable[[Any], Any]

    def declaration(self) -> Dict[str, Any]:
        parameters = self.input_schema.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ToolRegistry(Tool):
    """A fixed table of tools, dispatched by name."""

    def __init__(self, specs: Iterable[ToolSpec] = ()):
        self._registry: Dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._registry:
            raise ValueError(f"Tool '{spec.name}' is already registered.")
        self._registry[spec.name] = spec

    @property
    def names(self) -> List[str]:
        return list(self._registry)

    def __contains__(self, name: str) -> bool:
        return name in self._registry

    def __len__(self) -> int:
        return len(self._registry)

    def get_tools(self) -> List[Dict[str, Any]]:
        return [spec.declaration() for spec in self._registry.values()]

    def validate(self, name: str, raw_args: Any) -> BaseModel:
        """Resolve ``name`` and validate ``raw_args`` against its schema.

        ``raw_args`` may be a mapping or a JSON-encoded object.

        Raises
        ------
        UnknownTool
            If no tool is registered under ``name``.
        InvalidArguments
            If the arguments cannot be parsed or fail the schema.
        """
        spec = self._registry.get(name)
        if spec is None:
            raise UnknownTool(name)

        if raw_args is None or raw_args == "":
            raw_args = {}
        if isinstance(raw_args, str):
            try:
                raw_args = json.loads(raw_args)
            except json.JSONDecodeError as e:
                raise InvalidArguments(name, f"Failed to parse arguments: {e}") from e
        if not isinstance(raw_args, dict):
            raise InvalidArguments(name, "arguments must be a JSON object")

        try:
            return spec.input_schema.model_validate(raw_args)
        except ValidationError as e:
            raise InvalidArguments(name, str(e)) from e

    async def validate_and_execute(self, name: str, raw_args: Any) -> Any:
        """Validate the arguments, then run the executor and return its result verbatim."""
        args = self.validate(name, raw_args)
        return await self._run(name, args)

    async def _run(self, name: str, args: BaseModel) -> Any:
        result = self._registry[name].execute(args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def execute_tool_call(self, tool_call: ToolCall) -> ToolInvocation:
        name = tool_call.function_name
        try:
            args = self.validate(name, tool_call.function_args)
        except ToolError as e:
            logger.warning("Rejected tool call %s: %s", name, e)
            return ToolInvocation(
                id=tool_call.id,
                tool_name=name,
                result={"error": str(e)},
                is_error=True,
            )

        arguments = args.model_dump(mode="json")
        try:
            result = await self._run(name, args)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return ToolInvocation(
                id=tool_call.id,
                tool_name=name,
                arguments=arguments,
                result={"error": f"Tool '{name}' failed: {e}"},
                is_error=True,
            )

        return ToolInvocation(
            id=tool_call.id, tool_name=name, arguments=arguments, result=result
        )


def serialize_result(result: Any) -> str:
    """Render a tool result as the text the model reads."""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)
