from datetime import datetime

import pytest
from langchain_core.tools import tool
from langchain_core.utils.function_calling import convert_to_openai_tool

from shore.errors import ToolCallError
from shore.models.tool import Tool
from shore.providers.base import ToolCallRequest
from shore.tools.builtin import current_datetime
from shore.tools.executor import ToolExecutor

DATETIME_ROW = Tool(
    id=1,
    name="current_datetime",
    description="What time is it?",
    invocation="builtin:current_datetime",
)


@tool
def explode() -> str:
    """Always fails."""
    raise ValueError("kaboom")


def call(arguments="{}", name="current_datetime"):
    return ToolCallRequest(id="c1", name=name, arguments=arguments)


class TestBuiltins:
    def test_current_datetime_with_offset(self):
        result = current_datetime.invoke({"utc_offset_hours": 5.5})
        assert result.endswith("+05:30")
        assert datetime.fromisoformat(result)

    def test_current_datetime_local(self):
        assert datetime.fromisoformat(current_datetime.invoke({})).tzinfo is not None


class TestSpecs:
    def test_name_and_description_from_row(self):
        [spec] = ToolExecutor().specs([DATETIME_ROW])
        assert spec["type"] == "function"
        assert spec["function"]["name"] == "current_datetime"
        assert spec["function"]["description"] == "What time is it?"
        assert "utc_offset_hours" in spec["function"]["parameters"]["properties"]

    def test_seeded_row_schema_comes_from_implementation(self, store):
        [row] = [t for t in store.list_tools() if t.name == "current_datetime"]
        [spec] = ToolExecutor().specs([row])
        expected = convert_to_openai_tool(current_datetime)["function"]["parameters"]
        assert spec["function"]["parameters"] == expected
        assert not hasattr(row, "parameters_json")

    def test_unrunnable_rows_skipped(self):
        rows = [
            Tool(id=2, name="shell", invocation="exec:/bin/sh"),
            Tool(id=3, name="missing", invocation="builtin:missing"),
            Tool(id=4, name="old", invocation="builtin:current_datetime", deprecated=True),
        ]
        assert ToolExecutor().specs(rows) == []


class TestPrepare:
    def test_decodes_arguments(self):
        impl, args = ToolExecutor().prepare(call('{"utc_offset_hours": 1}'), [DATETIME_ROW])
        assert impl is current_datetime
        assert args == {"utc_offset_hours": 1}

    def test_empty_arguments(self):
        _, args = ToolExecutor().prepare(call(""), [DATETIME_ROW])
        assert args == {}

    def test_unknown_tool(self):
        with pytest.raises(ToolCallError, match="Unknown tool"):
            ToolExecutor().prepare(call(name="rm_rf"), [DATETIME_ROW])

    @pytest.mark.parametrize("arguments", ["{oops", "[1, 2]", '"text"'])
    def test_malformed_arguments(self, arguments):
        with pytest.raises(ToolCallError):
            ToolExecutor().prepare(call(arguments), [DATETIME_ROW])


class TestRun:
    def test_execute(self):
        result = ToolExecutor().execute(call('{"utc_offset_hours": 0}'), [DATETIME_ROW])
        assert result.endswith("+00:00")

    def test_failure_becomes_result(self):
        row = Tool(id=9, name="explode", invocation="builtin:explode")
        executor = ToolExecutor({"explode": explode})
        assert executor.execute(call(name="explode"), [row]) == "Error: kaboom"

    def test_non_string_result_serialized(self):
        @tool
        def numbers() -> list:
            """Some numbers."""
            return [1, 2]

        row = Tool(id=10, name="numbers", invocation="builtin:numbers")
        executor = ToolExecutor({"numbers": numbers})
        assert executor.execute(call(name="numbers"), [row]) == "[1, 2]"
