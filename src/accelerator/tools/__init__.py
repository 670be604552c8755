"""Tool plugin system for the agent loop."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from accelerator.models.agent_schemas import ToolArgumentError, UnknownToolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any]
    strict: bool = True

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "strict": self.strict,
        }


@dataclass(frozen=True)
class Tool:
    definition: ToolDefinition
    args_model: type[BaseModel]
    execute: Callable[[Any], Awaitable[Any]]

    @property
    def name(self) -> str:
        return self.definition.name

    def parse_args(self, raw: str | dict[str, Any]) -> BaseModel:
        """Validate raw call arguments against the tool's argument model."""
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"Invalid JSON arguments for '{self.name}': {e}") from e
        try:
            return self.args_model.model_validate(data)
        except ValidationError as e:
            raise ToolArgumentError(f"Invalid arguments for '{self.name}': {e}") from e


def strict_schema(model: type[BaseModel]) -> dict[str, Any]:
    """JSON schema for a pydantic model, shaped for strict function calling."""
    schema = model.model_json_schema()

    def _clean(node: Any, is_properties: bool = False) -> Any:
        if isinstance(node, list):
            return [_clean(item) for item in node]
        if not isinstance(node, dict):
            return node
        if is_properties:
            # Keys here are field names, "title" included.
            return {name: _clean(prop) for name, prop in node.items()}
        node = {
            k: _clean(v, is_properties=(k == "properties"))
            for k, v in node.items()
            if k != "title"
        }
        if node.get("type") == "object" and "properties" in node:
            node["required"] = list(node["properties"])
            node["additionalProperties"] = False
        return node

    return _clean(schema)


def make_tool(
    name: str,
    description: str,
    args_model: type[BaseModel],
    execute: Callable[[Any], Awaitable[Any]],
) -> Tool:
    definition = ToolDefinition(
        name=name,
        description=description,
        parameters=strict_schema(args_model),
    )
    return Tool(definition=definition, args_model=args_model, execute=execute)


class ToolRegistry:
    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name '{tool.name}'")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def to_openai_tools(self) -> list[dict[str, Any]]:
        return [tool.definition.to_openai() for tool in self._tools.values()]
