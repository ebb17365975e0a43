"""Tools: model-generated input, validated, then executed."""

from .tool import (
    EXECUTE_TOOL,
    TextResult,
    Tool,
    ToolCallResult,
    execute_tool,
    parameters_model,
    tool,
    use_tool,
    use_tool_or_generate_text,
)

__all__ = [
    "Tool", "ToolCallResult", "TextResult", "tool", "parameters_model",
    "execute_tool", "use_tool", "use_tool_or_generate_text", "EXECUTE_TOOL",
]
