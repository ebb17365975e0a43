"""Prompt formats: map provider-neutral prompts to what a model expects.

Two neutral prompt shapes are supported:

- InstructionPrompt: an instruction with optional system text and input
- ChatPrompt: an optional system message followed by alternating user/ai
  messages that ends with a user message

A prompt format turns one of them into a model's raw prompt (a string for
completion models, a message list for chat models) and may contribute
stop sequences. `with_prompt_format(model, fmt)` composes the two.

Example:
    >>> model = with_prompt_format(llama_model, AlpacaInstructionPromptFormat())
    >>> await generate_text(model, InstructionPrompt(instruction="Write a poem", input="about rain"))
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Literal, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict, model_validator

from genflow.foundation.config import merge_settings

from .base import (
    Capability,
    ModelSettings,
    ProviderCallOptions,
    TextGenerationModel,
    capabilities_of,
    require_capability,
)

P = TypeVar("P", contravariant=True)


class ChatPromptValidationError(ValueError):
    """A chat prompt violates the message ordering rules."""


class InstructionPrompt(BaseModel):
    """Instruction with optional system text and input."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    instruction: str
    system: str | None = None
    input: str | None = None


class ChatMessage(BaseModel):
    """One chat message. Accepts the shorthand ``{"user": "Hello"}``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Literal["system", "user", "ai"]
    content: str

    @model_validator(mode="before")
    @classmethod
    def _shorthand(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and len(data) == 1 and "role" not in data:
            ((role, content),) = data.items()
            return {"role": role, "content": content}
        return data


ChatPrompt = Sequence[ChatMessage | Mapping[str, str]]


def validate_chat_prompt(prompt: ChatPrompt) -> tuple[ChatMessage, ...]:
    """Normalize and validate a chat prompt.

    Raises:
        ChatPromptValidationError: If the prompt is empty, has a misplaced
            system message, does not alternate user/ai or does not end with
            a user message
    """
    messages = tuple(m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m) for m in prompt)
    if not messages:
        raise ChatPromptValidationError("Chat prompt must contain at least one message")
    body = messages[1:] if messages[0].role == "system" else messages
    for i, message in enumerate(body):
        expected = "user" if i % 2 == 0 else "ai"
        if message.role != expected:
            raise ChatPromptValidationError(
                f"Message {i + len(messages) - len(body)} has role '{message.role}', expected '{expected}'"
            )
    if not body or body[-1].role != "user":
        raise ChatPromptValidationError("Chat prompt must end with a user message")
    return messages


# ─────────────────────────────────────────────────────────────────────────────
# Prompt Formats
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class PromptFormat(Protocol[P]):
    """Maps a neutral prompt to a model's raw prompt."""

    stop_sequences: tuple[str, ...]

    def format(self, prompt: P) -> Any: ...


def _instruction(prompt: InstructionPrompt | Mapping[str, Any]) -> InstructionPrompt:
    return prompt if isinstance(prompt, InstructionPrompt) else InstructionPrompt.model_validate(prompt)


_ALPACA_PREAMBLE = "Below is an instruction that describes a task. Write a response that appropriately completes the request."
_ALPACA_PREAMBLE_WITH_INPUT = (
    "Below is an instruction that describes a task, paired with an input that provides further context. "
    "Write a response that appropriately completes the request."
)


@dataclass(frozen=True, slots=True)
class AlpacaInstructionPromptFormat:
    """Alpaca template. A system text replaces the default preamble."""

    stop_sequences: tuple[str, ...] = ()

    def format(self, prompt: InstructionPrompt | Mapping[str, Any]) -> str:
        p = _instruction(prompt)
        preamble = p.system or (_ALPACA_PREAMBLE_WITH_INPUT if p.input else _ALPACA_PREAMBLE)
        text = f"{preamble}\n\n### Instruction:\n{p.instruction}\n\n"
        if p.input:
            text += f"### Input:\n{p.input}\n\n"
        return text + "### Response:\n"


@dataclass(frozen=True, slots=True)
class Llama2InstructionPromptFormat:
    """Llama 2 chat template for a single instruction."""

    stop_sequences: tuple[str, ...] = ("[/INST]",)

    def format(self, prompt: InstructionPrompt | Mapping[str, Any]) -> str:
        p = _instruction(prompt)
        system = f"<<SYS>>\n{p.system}\n<</SYS>>\n\n" if p.system else ""
        instruction = f"{p.instruction}\n\n{p.input}" if p.input else p.instruction
        return f"<s>[INST] {system}{instruction} [/INST]\n"


_CHATML_ROLES = {"system": "system", "user": "user", "ai": "assistant"}


@dataclass(frozen=True, slots=True)
class ChatMLChatPromptFormat:
    """ChatML template; ends with an open assistant turn."""

    stop_sequences: tuple[str, ...] = ("<|im_end|>",)

    def format(self, prompt: ChatPrompt) -> str:
        turns = (f"<|im_start|>{_CHATML_ROLES[m.role]}\n{m.content}<|im_end|>\n" for m in validate_chat_prompt(prompt))
        return "".join(turns) + "<|im_start|>assistant\n"


_OPENAI_ROLES = {"system": "system", "user": "user", "ai": "assistant"}


@dataclass(frozen=True, slots=True)
class OpenAIChatInstructionPromptFormat:
    """Instruction prompt as OpenAI chat messages."""

    stop_sequences: tuple[str, ...] = ()

    def format(self, prompt: InstructionPrompt | Mapping[str, Any]) -> list[dict[str, str]]:
        p = _instruction(prompt)
        messages = [{"role": "system", "content": p.system}] if p.system else []
        messages.append({"role": "user", "content": p.instruction})
        if p.input:
            messages.append({"role": "user", "content": p.input})
        return messages


@dataclass(frozen=True, slots=True)
class OpenAIChatChatPromptFormat:
    """Chat prompt as OpenAI chat messages."""

    stop_sequences: tuple[str, ...] = ()

    def format(self, prompt: ChatPrompt) -> list[dict[str, str]]:
        return [{"role": _OPENAI_ROLES[m.role], "content": m.content} for m in validate_chat_prompt(prompt)]


# ─────────────────────────────────────────────────────────────────────────────
# Composition
# ─────────────────────────────────────────────────────────────────────────────


def _with_stop_sequences(settings: ModelSettings, extra: Iterable[str]) -> ModelSettings:
    extra = tuple(extra)
    if not extra:
        return settings
    current = settings.stop_sequences or ()
    return merge_settings(settings, {"stop_sequences": current + tuple(s for s in extra if s not in current)})


class PromptFormatTextModel(Generic[P]):
    """Text model that formats neutral prompts before delegating.

    The format's stop sequences are added to the wrapped model's settings.
    """

    def __init__(self, model: TextGenerationModel, prompt_format: PromptFormat[P]) -> None:
        self.model = model
        self.prompt_format = prompt_format
        self.settings = _with_stop_sequences(model.settings, prompt_format.stop_sequences)

    @property
    def provider(self) -> str:
        return self.model.provider

    @property
    def model_name(self) -> str | None:
        return self.model.model_name

    @property
    def settings_for_event(self) -> dict[str, Any]:
        return self.settings.for_event()

    def with_settings(self, **overrides: Any) -> PromptFormatTextModel[P]:
        return type(self)(self.model.with_settings(**overrides), self.prompt_format)

    async def generate_text_response(self, prompt: P, options: ProviderCallOptions) -> Any:
        return await self.model.generate_text_response(self.prompt_format.format(prompt), options)

    def extract_text(self, response: Any) -> str:
        return self.model.extract_text(response)

    def extract_usage(self, response: Any) -> Any:
        extract = getattr(self.model, "extract_usage", None)
        return extract(response) if extract is not None else None

    def classify_error(self, exc: BaseException) -> Any:
        from genflow.runtime.execution import classify_provider_error

        return classify_provider_error(self.model, exc)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.model!r}, {type(self.prompt_format).__name__}())"


class PromptFormatTextStreamingModel(PromptFormatTextModel[P]):
    """Streaming variant of PromptFormatTextModel."""

    async def generate_delta_stream_response(self, prompt: P, options: ProviderCallOptions) -> AsyncIterator[Any]:
        return await self.model.generate_delta_stream_response(self.prompt_format.format(prompt), options)  # type: ignore[attr-defined]

    def extract_text_delta(self, delta: Any) -> str | None:
        return self.model.extract_text_delta(delta)  # type: ignore[attr-defined]


def with_prompt_format(model: TextGenerationModel, prompt_format: PromptFormat[P]) -> PromptFormatTextModel[P]:
    """Compose a text model with a prompt format.

    The result keeps the model's streaming capability when it has one.
    """
    require_capability(model, Capability.TEXT)
    if Capability.TEXT_STREAM in capabilities_of(model):
        return PromptFormatTextStreamingModel(model, prompt_format)
    return PromptFormatTextModel(model, prompt_format)
