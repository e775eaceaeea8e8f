"""Pydantic request models for API endpoints."""

from pydantic import BaseModel, Field

from lorechat.models import Character, Lorebook, Message, Persona, PromptSet


class SnapshotBody(BaseModel):
    history: list[Message] = Field(default_factory=list)
    character: Character = Field(default_factory=Character)
    persona: Persona = Field(default_factory=Persona)
    prompt_set: PromptSet | None = None
    lorebooks: list[Lorebook] = Field(default_factory=list)
    memory: str = ""


class ChatBody(SnapshotBody):
    message: str


class MemoryBody(BaseModel):
    history: list[Message]


class ImportBody(BaseModel):
    file_name: str
    content: str


class CheckConnectionBody(BaseModel):
    provider: str
    api_key: str
    model: str


class TurnBody(SnapshotBody):
    index: int


class SwitchVersionBody(BaseModel):
    message: Message
    direction: int
