"""
Message normalization: (system instruction, history, prompt) -> native turns.

Two target shapes exist:

- Flat-turn: one list where the system instruction (if any) is a leading
  "system" entry, history follows in order, and the prompt is the last
  "user" entry. Used by Ollama and OpenAI.
- Separated-instruction: history plus prompt only, with a backend-specific
  assistant role name; the caller carries the system instruction in a
  top-level field. Used by Anthropic ("system") and Gemini
  ("systemInstruction", assistant role "model").

History is never reordered or deduplicated, and the prompt is always last.
"""

from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """One prior turn of the conversation.

    Accepts the persistence shape as well ({"senderType": "user",
    "message": "..."}). Any sender other than the user is the assistant.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Role = Field(
        validation_alias=AliasChoices("role", "sender_type", "senderType")
    )
    content: str = Field(
        validation_alias=AliasChoices("content", "message", "text")
    )

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Role:
        if isinstance(value, Role):
            return value
        return Role.USER if str(value).lower() == Role.USER.value else Role.ASSISTANT


TurnLike = Union[ConversationTurn, Mapping[str, Any]]


def normalize_history(history: Optional[Iterable[TurnLike]]) -> list[ConversationTurn]:
    """Coerce history items to ConversationTurn, preserving order."""
    if not history:
        return []
    return [
        turn if isinstance(turn, ConversationTurn) else ConversationTurn.model_validate(turn)
        for turn in history
    ]


def build_flat_messages(
    prompt: str,
    history: Optional[Iterable[TurnLike]] = None,
    system_instruction: Optional[str] = None,
) -> list[dict]:
    """Build the flat-turn shape: [system?] + history + [user prompt]."""
    messages = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})
    for turn in normalize_history(history):
        messages.append({"role": turn.role.value, "content": turn.content})
    messages.append({"role": Role.USER.value, "content": prompt})
    return messages


def _content_turn(role: str, text: str) -> dict:
    return {"role": role, "content": text}


def build_separated_turns(
    prompt: str,
    history: Optional[Iterable[TurnLike]] = None,
    assistant_role: str = Role.ASSISTANT.value,
    format_turn: Callable[[str, str], dict] = _content_turn,
) -> list[dict]:
    """
    Build the turn list of the separated-instruction shape.

    Args:
        prompt: Current user message, appended last
        history: Prior turns, oldest first
        assistant_role: Backend name for the assistant role (e.g. "model")
        format_turn: Builds one native entry from (role, text)
    """
    turns = []
    for turn in normalize_history(history):
        role = Role.USER.value if turn.role is Role.USER else assistant_role
        turns.append(format_turn(role, turn.content))
    turns.append(format_turn(Role.USER.value, prompt))
    return turns
