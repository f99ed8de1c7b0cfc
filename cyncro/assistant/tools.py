"""Tool dispatcher for the agentic loop.

Tools form a closed, explicit set: each registration pairs a name with a
pydantic input model and an async handler. The dispatcher validates the
model-supplied input against that model before running the handler and
always returns a ToolCallRecord, never raises. Unknown names, invalid
input and handler exceptions become failed records that are fed back to
the model.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from cyncro.assistant.content import UploadedFile
from cyncro.llm.types import Tool, ToolCall, ToolParameters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Per-turn facts handed to every tool handler."""

    user_id: str
    uploaded_files: tuple[UploadedFile, ...] = ()


ToolHandler = Callable[[Any, ToolContext], Awaitable[Any]]


class ToolCallRecord(BaseModel):
    """Audit record of one executed tool call; written once, never mutated."""

    tool_name: str
    input: dict[str, Any]
    success: bool
    output: Any = None
    error: str | None = None
    duration_ms: int = 0

    def result_content(self) -> str:
        """The tool_result payload sent back to the model."""
        return json.dumps(self.output, default=str)


@dataclass
class _Registration:
    handler: ToolHandler
    input_model: type[BaseModel]
    description: str
    parameters: ToolParameters = field(default_factory=ToolParameters)


def _clean_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Drop pydantic titles and collapse Optional[X] to X."""
    schema = {k: v for k, v in schema.items() if k not in ("title", "default")}
    any_of = schema.pop("anyOf", None)
    if any_of is not None:
        non_null = [s for s in any_of if s.get("type") != "null"]
        if len(non_null) == 1:
            schema = {**_clean_schema(non_null[0]), **schema}
        else:
            schema["anyOf"] = [_clean_schema(s) for s in any_of]
    if "items" in schema and isinstance(schema["items"], dict):
        schema["items"] = _clean_schema(schema["items"])
    return schema


def parameters_from_model(model: type[BaseModel]) -> ToolParameters:
    schema = model.model_json_schema()
    return ToolParameters(
        properties={name: _clean_schema(prop) for name, prop in schema.get("properties", {}).items()},
        required=list(schema.get("required", [])),
    )


class ToolDispatcher:
    """Registers tool handlers and dispatches tool calls from the model."""

    def __init__(self) -> None:
        self._tools: dict[str, _Registration] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        input_model: type[BaseModel],
        description: str,
    ) -> None:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = _Registration(
            handler=handler,
            input_model=input_model,
            description=description,
            parameters=parameters_from_model(input_model),
        )

    def tools(self) -> list[Tool]:
        """Definitions of every registered tool, in registration order."""
        return [
            Tool(name=name, description=reg.description, parameters=reg.parameters)
            for name, reg in self._tools.items()
        ]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def dispatch(self, call: ToolCall, context: ToolContext) -> ToolCallRecord:
        start = time.monotonic()

        def failed(message: str) -> ToolCallRecord:
            return ToolCallRecord(
                tool_name=call.name,
                input=call.input,
                success=False,
                output={"error": message},
                error=message,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        registration = self._tools.get(call.name)
        if registration is None:
            logger.warning("Model requested unknown tool: %s", call.name)
            return failed(f"Unknown tool: {call.name}")

        try:
            params = registration.input_model.model_validate(call.input)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
            )
            logger.info("Invalid input for tool %s: %s", call.name, problems)
            return failed(f"Invalid input for {call.name}: {problems}")

        try:
            output = await registration.handler(params, context)
        except Exception as e:
            logger.exception("Tool dispatch error for %s", call.name)
            return failed(str(e) or type(e).__name__)

        record = ToolCallRecord(
            tool_name=call.name,
            input=call.input,
            success=True,
            output=output,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info("Tool %s succeeded in %dms", call.name, record.duration_ms)
        return record
