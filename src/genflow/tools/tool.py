"""Tools: named actions whose input is generated by a model.

A Tool's input schema validates into exactly the type its action accepts.
`use_tool` generates the input with structured generation and then runs the
action; failures of the action surface as ToolExecutionError, distinct from
generation errors.

Example:
    >>> @tool
    ... def get_weather(city: str) -> str:
    ...     '''Current weather for a city.
    ...
    ...     Args:
    ...         city: City name
    ...     '''
    ...     return f"Sunny in {city}"
    ...
    >>> result = await use_tool(model, get_weather, "What's the weather in Paris?")
    >>> result.parameters.city, result.result
    ('Paris', 'Sunny in Paris')
"""

from __future__ import annotations

import asyncio
import inspect
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, get_type_hints, overload

from pydantic import BaseModel, Field, create_model

from genflow.foundation.context import RunContext
from genflow.foundation.errors import CancellationError, ToolExecutionError
from genflow.model.base import CallOptions, JsonGenerationModel, JsonOrTextGenerationModel
from genflow.runtime.observability import CallFailedEvent, CallFinishedEvent, CallStartedEvent, emit
from genflow.structured import PydanticValidator, Schema, generate_json, generate_json_or_text

P = TypeVar("P")
R = TypeVar("R")

EXECUTE_TOOL = "execute-tool"


@dataclass(frozen=True, slots=True)
class Tool(Generic[P, R]):
    """Named action with a validated input schema.

    Attributes:
        name: Tool name offered to the model
        description: What the tool does
        input_schema: Validates generated input into the action's parameter type
        execute: The action; sync or async
    """

    name: str
    description: str | None
    input_schema: Schema[P]
    execute: Callable[[P], R] | Callable[[P], Awaitable[R]]


@dataclass(frozen=True, slots=True)
class ToolCallResult(Generic[P, R]):
    tool: str
    parameters: P
    result: R


@dataclass(frozen=True, slots=True)
class TextResult:
    """The model answered with text instead of selecting a tool."""

    text: str


# ─────────────────────────────────────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────────────────────────────────────


async def _invoke(action: Callable[[P], Any], input: P) -> Any:
    if inspect.iscoroutinefunction(action):
        return await action(input)
    result = await asyncio.to_thread(action, input)
    return await result if inspect.isawaitable(result) else result


async def execute_tool(tool: Tool[P, R], input: P, options: CallOptions | None = None) -> R:
    """Run the tool's action on already-validated input.

    Emits started/finished/failed events with function type "execute-tool".

    Raises:
        ToolExecutionError: If the action raises (cancellation excepted)
        CancellationError: If the run is cancelled before or during the action
    """
    options = options or CallOptions()
    run = options.run or RunContext(function_id=options.function_id)
    function_id = options.function_id or run.function_id
    sinks = (*run.observers, *options.observers)
    fields: dict[str, Any] = dict(
        function_type=EXECUTE_TOOL,
        call_id=run.call_id,
        function_id=function_id,
        user_id=run.user_id,
        model=None,
        input=input,
        started_at=time.time(),
    )
    t0 = time.perf_counter()
    emit(sinks, CallStartedEvent(**fields))

    def failed(error: BaseException, *, cancelled: bool = False) -> BaseException:
        elapsed = (time.perf_counter() - t0) * 1000
        if isinstance(error, (CancellationError, ToolExecutionError)):
            error.with_call_info(attempts=1, elapsed_ms=elapsed, function_id=function_id)
        emit(sinks, CallFailedEvent(**fields, finished_at=time.time(), duration_ms=elapsed, error=error, cancelled=cancelled))
        return error

    try:
        result = await run.token.guard(_invoke(tool.execute, input))
    except CancellationError as exc:
        raise failed(exc, cancelled=True) from None
    except asyncio.CancelledError as exc:
        failed(exc, cancelled=True)
        raise
    except Exception as exc:
        raise failed(ToolExecutionError(tool.name, input, exc)) from exc
    emit(sinks, CallFinishedEvent(
        **fields,
        finished_at=time.time(),
        duration_ms=(time.perf_counter() - t0) * 1000,
        value=result,
        usage=None,
        response=None,
    ))
    return result


async def use_tool(
    model: JsonGenerationModel,
    tool: Tool[P, R],
    prompt: Any | Callable[[Tool[P, R]], Any],
    options: CallOptions | None = None,
) -> ToolCallResult[P, R]:
    """Generate the tool's input with `model`, then execute the tool.

    Raises:
        SchemaMismatchError: If the generated input is invalid (the action never runs)
        ToolExecutionError: If the action raises
    """
    expanded = prompt(tool) if callable(prompt) else prompt
    parameters = await generate_json(model, tool.input_schema, expanded, options)
    result = await execute_tool(tool, parameters, options)
    return ToolCallResult(tool.name, parameters, result)


async def use_tool_or_generate_text(
    model: JsonOrTextGenerationModel,
    tools: Sequence[Tool[Any, Any]],
    prompt: Any | Callable[[Sequence[Tool[Any, Any]]], Any],
    options: CallOptions | None = None,
) -> ToolCallResult[Any, Any] | TextResult:
    """Let the model pick one of `tools` (and its input) or answer with text."""
    by_schema = {t.input_schema.name: t for t in tools}
    expanded = prompt(tools) if callable(prompt) else prompt
    selection = await generate_json_or_text(model, [t.input_schema for t in tools], expanded, options)
    if selection.schema is None:
        return TextResult(selection.text or "")
    selected = by_schema[selection.schema]
    result = await execute_tool(selected, selection.value, options)
    return ToolCallResult(selected.name, selection.value, result)


# ─────────────────────────────────────────────────────────────────────────────
# The @tool Decorator
# ─────────────────────────────────────────────────────────────────────────────

_PARAM_PATTERN = re.compile(
    r"^\s*(?P<name>\w+)\s*(?:\([^)]*\))?\s*:\s*(?P<desc>.+?)(?=\n\s*\w+\s*:|$)",
    re.MULTILINE | re.DOTALL,
)


def _parse_docstring_params(docstring: str | None) -> dict[str, str]:
    """Extract parameter descriptions from a Google style Args section."""
    if not docstring:
        return {}
    sections = re.split(r"\n\s*(?:Args|Arguments|Parameters)\s*:\s*\n", docstring, flags=re.IGNORECASE)
    if len(sections) < 2:
        return {}
    args_section = re.split(r"\n\s*(?:Returns|Raises|Examples?|Notes?|Yields)\s*:", sections[1], flags=re.IGNORECASE)[0]
    return {m.group("name"): " ".join(m.group("desc").split()) for m in _PARAM_PATTERN.finditer(args_section)}


def _extract_description(docstring: str | None) -> str | None:
    if not docstring or not docstring.strip():
        return None
    return docstring.strip().split("\n")[0].strip()


def _to_pascal_case(name: str) -> str:
    return "".join(word.capitalize() for word in re.split(r"[_\-\s]+", name))


def parameters_model(func: Callable[..., Any], model_name: str) -> type[BaseModel]:
    """Build a pydantic model from a function's signature and docstring."""
    sig = inspect.signature(func)
    hints = get_type_hints(func)
    docs = _parse_docstring_params(func.__doc__)
    fields: dict[str, Any] = {}
    for name, param in sig.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            raise TypeError(f"Tool function '{func.__name__}' cannot take *{name}")
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[name] = (hints.get(name, str), Field(default, description=docs.get(name)))
    return create_model(model_name, **fields)


@overload
def tool(func: Callable[..., R]) -> Tool[BaseModel, R]: ...


@overload
def tool(*, name: str | None = None, description: str | None = None) -> Callable[[Callable[..., R]], Tool[BaseModel, R]]: ...


def tool(
    func: Callable[..., R] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
) -> Tool[BaseModel, R] | Callable[[Callable[..., R]], Tool[BaseModel, R]]:
    """Create a Tool from a function.

    The input schema is generated from the function's type hints and its
    docstring's Args section. The action receives the validated parameters
    model and calls the function with its fields as keyword arguments.

    Args:
        func: The function (when used without parentheses)
        name: Tool name (defaults to the function name)
        description: Tool description (defaults to the docstring's first line)
    """
    def decorator(fn: Callable[..., R]) -> Tool[BaseModel, R]:
        tool_name = name or fn.__name__
        tool_desc = description or _extract_description(fn.__doc__)
        params = parameters_model(fn, f"{_to_pascal_case(tool_name)}Parameters")
        is_async = inspect.iscoroutinefunction(fn)

        async def execute(p: BaseModel) -> R:
            kwargs = {field: getattr(p, field) for field in type(p).model_fields}
            if is_async:
                return await fn(**kwargs)  # type: ignore[misc,no-any-return]
            return await asyncio.to_thread(fn, **kwargs)

        execute.__name__ = fn.__name__
        return Tool(tool_name, tool_desc, Schema(tool_name, tool_desc, PydanticValidator(params)), execute)

    return decorator(func) if func is not None else decorator
