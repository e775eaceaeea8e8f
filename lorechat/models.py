"""Core domain models.

Every assembly stage reads these types and none of them mutates its inputs.
Pydantic is used for validation and serialisation at every data boundary
(HTTP bodies, imported files, the settings file).
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]

LorebookLogic = Literal["OR", "AND", "NOT_AND", "NOT_OR"]

LorebookPosition = Literal[
    "before_char",
    "after_char",
    "an_top",
    "an_bottom",
    "at_depth",
    "em_top",
    "em_bottom",
]

MatchSource = Literal["char_desc", "scenario", "creator_notes", "persona_desc"]

# Imported world-info files store logic and position as integers.
_LOGIC_CODES: tuple[LorebookLogic, ...] = ("OR", "AND", "NOT_AND", "NOT_OR")
_POSITION_CODES: tuple[LorebookPosition, ...] = (
    "before_char",
    "after_char",
    "an_top",
    "an_bottom",
    "at_depth",
    "em_top",
    "em_bottom",
)


# ---------------------------------------------------------------------------
# Chat history
# ---------------------------------------------------------------------------

class Message(BaseModel):
    """One turn of a chat session.

    Assistant turns keep every generated version ("swipe") in `content` and
    select the displayed one with `active_version`.
    """

    role: Literal["user", "assistant"]
    content: str | list[str]
    active_version: int = 0
    timestamp: str = ""
    error: str | None = None  # set when sending this turn failed

    @model_validator(mode="after")
    def _check_versions(self) -> Message:
        if isinstance(self.content, list):
            if self.role == "user":
                raise ValueError("user messages cannot carry versions")
            if not 0 <= self.active_version < len(self.content):
                raise ValueError(
                    f"active_version {self.active_version} out of range "
                    f"for {len(self.content)} versions"
                )
        return self

    @property
    def text(self) -> str:
        """The displayed content: the active version for assistant turns."""
        if isinstance(self.content, list):
            return self.content[self.active_version]
        return self.content

    @property
    def versions(self) -> list[str]:
        if isinstance(self.content, list):
            return list(self.content)
        return [self.content]


class ChatMessage(BaseModel):
    """A provider-agnostic message produced by assembly."""

    role: Role
    content: str
    identifier: str | None = None  # prompt identifier, set on compiled prompts
    error: str | None = None


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class Character(BaseModel):
    """The character being played. Read-only input to assembly."""

    id: str = ""
    name: str = ""
    description: str = ""
    scenario: str = ""
    example_dialogue: str = ""
    creator_notes: str = ""
    first_message: list[str] = Field(default_factory=list)


class Persona(BaseModel):
    """The user's persona."""

    id: str = ""
    name: str = ""
    description: str = ""


# ---------------------------------------------------------------------------
# Prompt sets
# ---------------------------------------------------------------------------

class PromptPosition(BaseModel):
    type: Literal["relative", "chat"] = "relative"
    depth: int = 4


class PromptItem(BaseModel):
    identifier: str
    name: str = ""
    role: Role = "system"
    content: str = ""
    enabled: bool = True
    position: PromptPosition = Field(default_factory=PromptPosition)
    order: int = 0


class PromptSet(BaseModel):
    id: str
    name: str = ""
    prompts: list[PromptItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Lorebooks
# ---------------------------------------------------------------------------

class LorebookEntry(BaseModel):
    id: str = ""
    name: str = ""
    keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] = Field(default_factory=list)
    content: str = ""
    enabled: bool = True
    constant: bool = False
    logic: LorebookLogic = "OR"
    position: LorebookPosition = "before_char"
    order: int = 100
    scan_depth: int = 4
    match_sources: set[MatchSource] = Field(default_factory=set)

    @field_validator("keywords", "secondary_keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [k for k in value if isinstance(k, str)]
        return value

    @field_validator("logic", mode="before")
    @classmethod
    def _logic_from_code(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(_LOGIC_CODES):
                return _LOGIC_CODES[value]
        return value

    @field_validator("position", mode="before")
    @classmethod
    def _position_from_code(cls, value: Any) -> Any:
        """Map numeric codes to names; unknown positions go after the anchor."""
        if value is None:
            return "before_char"
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(_POSITION_CODES):
                return _POSITION_CODES[value]
            return "after_char"
        if value not in _POSITION_CODES:
            return "after_char"
        return value


class Lorebook(BaseModel):
    id: str
    name: str = ""
    enabled: bool = True
    entries: list[LorebookEntry] = Field(default_factory=list)

    @field_validator("entries", mode="before")
    @classmethod
    def _drop_malformed_entries(cls, value: Any) -> Any:
        """Skip entries that fail validation instead of rejecting the lorebook."""
        if not isinstance(value, list):
            return value
        entries: list[Any] = []
        for raw in value:
            if isinstance(raw, LorebookEntry):
                entries.append(raw)
                continue
            try:
                entries.append(LorebookEntry.model_validate(raw))
            except ValidationError as e:
                logger.warning("Dropping malformed lorebook entry %r: %s", raw, e)
        return entries


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class GlobalSettings(BaseModel):
    """Generation settings shared by every chat."""

    context_size: int = 30000
    api_provider: str = "openai"
    api_model: str = ""
    api_key: str = ""
    temperature: float = 1.0
    top_p: float = 1.0
    max_tokens: int = 3000
    repetition_penalty: float = 0.0
    summarization_max_tokens: int = 1000
    summarization_prompt: str = ""
