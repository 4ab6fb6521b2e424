"""
Explicit tool-call capabilities for model invocations.

A flow builds a ToolRegistry of the data lookups it allows and passes it
with the model call. The model may request any registered tool before it
produces its final structured answer; nothing is discovered implicitly.
"""

import json
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mediquest.config.logging_config import get_logger
from mediquest.errors import AnalysisUnavailable

logger = get_logger(__name__)


@dataclass(frozen=True)
class Tool:
    """
    A named async data lookup the model may call.

    Attributes:
        name: Function name exposed to the model.
        description: What the tool returns, shown to the model.
        input_model: Pydantic model the call arguments must satisfy.
        handler: Async function receiving a validated input_model instance.
    """
    name: str
    description: str
    input_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]

    def definition(self) -> dict[str, Any]:
        """Render the OpenAI function-tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_model.model_json_schema(),
            },
        }


class ToolRegistry:
    """Mapping from tool name to Tool, registered with a single model call."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    async def invoke(self, name: str, arguments: str | None) -> str:
        """
        Run a tool requested by the model.

        Args:
            name: Tool name from the model's tool call.
            arguments: JSON-encoded arguments from the model.

        Returns:
            The handler's result as a JSON string for the tool message.

        Raises:
            AnalysisUnavailable: Unknown tool or arguments that do not fit
                the tool's input model.
            NotFound: Propagated from the handler when a document is absent.
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Model requested unknown tool", tool=name, available=self.names)
            raise AnalysisUnavailable(f"Model requested unknown tool: {name}")

        try:
            params = tool.input_model.model_validate_json(arguments or "{}")
        except PydanticValidationError as e:
            logger.warning("Invalid tool arguments", tool=name, error_count=e.error_count())
            raise AnalysisUnavailable(f"Invalid arguments for tool {name}") from e

        logger.info("Tool call", tool=name)
        result = await tool.handler(params)
        return json.dumps(result, default=str)
