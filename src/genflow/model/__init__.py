"""Model capabilities, settings, usage and prompt formats.

Generation entry points live in `genflow.model.text`, `genflow.structured`
and `genflow.tools`, and are re-exported from the top-level package.
"""

from .base import (
    CallOptions,
    Capability,
    JsonGenerationModel,
    JsonOrTextGenerationModel,
    JsonOrTextSelection,
    Model,
    ModelSettings,
    ProviderCallOptions,
    TextGenerationModel,
    TextStreamingModel,
    capabilities_of,
    model_info,
    require_capability,
)
from .prompt import (
    AlpacaInstructionPromptFormat,
    ChatMessage,
    ChatMLChatPromptFormat,
    ChatPrompt,
    ChatPromptValidationError,
    InstructionPrompt,
    Llama2InstructionPromptFormat,
    OpenAIChatChatPromptFormat,
    OpenAIChatInstructionPromptFormat,
    PromptFormat,
    PromptFormatTextModel,
    PromptFormatTextStreamingModel,
    validate_chat_prompt,
    with_prompt_format,
)
from .usage import Usage, total_usage

__all__ = [
    # Settings & options
    "ModelSettings", "CallOptions", "ProviderCallOptions", "JsonOrTextSelection",
    # Capabilities
    "Model", "TextGenerationModel", "TextStreamingModel", "JsonGenerationModel", "JsonOrTextGenerationModel",
    "Capability", "capabilities_of", "require_capability", "model_info",
    # Usage
    "Usage", "total_usage",
    # Prompts
    "InstructionPrompt", "ChatMessage", "ChatPrompt", "ChatPromptValidationError", "validate_chat_prompt",
    "PromptFormat", "AlpacaInstructionPromptFormat", "Llama2InstructionPromptFormat", "ChatMLChatPromptFormat",
    "OpenAIChatInstructionPromptFormat", "OpenAIChatChatPromptFormat",
    "PromptFormatTextModel", "PromptFormatTextStreamingModel", "with_prompt_format",
]
