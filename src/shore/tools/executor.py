"""Validates model tool-call payloads and runs the matching tools."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool

from shore.errors import ToolCallError
from shore.models.tool import Tool
from shore.providers.base import ToolCallRequest
from shore.tools.builtin import BUILTIN_TOOLS

logger = logging.getLogger(__name__)

_BUILTIN_PREFIX = "builtin:"


class ToolExecutor:
    def __init__(self, implementations: Mapping[str, BaseTool] | None = None) -> None:
        self._impls = dict(BUILTIN_TOOLS if implementations is None else implementations)

    def resolve(self, tool_row: Tool) -> BaseTool | None:
        if not tool_row.invocation.startswith(_BUILTIN_PREFIX):
            logger.warning("Tool %s has unsupported invocation %r", tool_row.name, tool_row.invocation)
            return None
        return self._impls.get(tool_row.invocation.removeprefix(_BUILTIN_PREFIX))

    def specs(self, tool_rows: list[Tool]) -> list[dict[str, Any]]:
        """OpenAI function specs for the attached tools that can actually run."""
        specs = []
        for row in tool_rows:
            impl = self.resolve(row)
            if impl is None or row.disabled or row.deprecated:
                continue
            spec = convert_to_openai_tool(impl)
            spec["function"]["name"] = row.name
            if row.description:
                spec["function"]["description"] = row.description
            specs.append(spec)
        return specs

    def prepare(self, call: ToolCallRequest, tool_rows: list[Tool]) -> tuple[BaseTool, dict[str, Any]]:
        """Match a call to an attached tool and decode its arguments.

        Raises ``ToolCallError`` for an unknown tool or arguments that are not
        a JSON object.
        """
        row = next((t for t in tool_rows if t.name == call.name), None)
        impl = self.resolve(row) if row is not None else None
        if impl is None:
            raise ToolCallError(f"Unknown tool: {call.name!r}")
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as exc:
            raise ToolCallError(f"Malformed arguments for {call.name}: {exc}") from exc
        if not isinstance(args, dict):
            raise ToolCallError(f"Arguments for {call.name} must be a JSON object")
        return impl, args

    def run(self, impl: BaseTool, args: dict[str, Any]) -> str:
        """Run a prepared tool; failures become an error result for the model."""
        try:
            result = impl.invoke(args)
        except Exception as e:
            logger.warning("Tool %s failed: %s", impl.name, e)
            return f"Error: {e}"
        return result if isinstance(result, str) else json.dumps(result, default=str)

    def execute(self, call: ToolCallRequest, tool_rows: list[Tool]) -> str:
        impl, args = self.prepare(call, tool_rows)
        return self.run(impl, args)
