"""Template variable substitution for prompt and lorebook text.

Recognised placeholders:

    {{char}}             character name ("char" when unset)
    {{user}}             persona name ("user" when unset)
    {{personality}}      character description
    {{scenario}}         character scenario
    {{exampleDialogue}}  character example dialogue
    {{memory}}           long-term memory summary of the chat

Anything else in double braces is left as-is.
"""

from __future__ import annotations

import re

from pydantic import BaseModel

from lorechat.models import Character, Persona

_PLACEHOLDER_RE = re.compile(
    r"\{\{(char|user|personality|scenario|exampleDialogue|memory)\}\}"
)


class PlaceholderContext(BaseModel):
    char_name: str = ""
    user_name: str = ""
    description: str = ""
    scenario: str = ""
    example_dialogue: str = ""
    memory: str = ""

    @classmethod
    def from_snapshot(
        cls,
        character: Character | None,
        persona: Persona | None,
        memory: str = "",
    ) -> PlaceholderContext:
        character = character or Character()
        persona = persona or Persona()
        return cls(
            char_name=character.name,
            user_name=persona.name,
            description=character.description,
            scenario=character.scenario,
            example_dialogue=character.example_dialogue,
            memory=memory,
        )

    def values(self) -> dict[str, str]:
        return {
            "char": self.char_name or "char",
            "user": self.user_name or "user",
            "personality": self.description,
            "scenario": self.scenario,
            "exampleDialogue": self.example_dialogue,
            "memory": self.memory,
        }


def resolve(template: object, context: PlaceholderContext) -> str:
    """Substitute every recognised placeholder in `template`.

    Substitution is a single pass, so placeholders appearing inside the
    substituted values are not expanded again. Non-string input yields "".
    """
    if not isinstance(template, str):
        return ""
    values = context.values()
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template)
