"""Prompt set compilation.

A prompt set is a user-ordered list of instruction blocks. Compilation merges
the enabled blocks with the selected history window:

  chat      inserted `depth` messages from the end of the list built so far
  relative  pushed to the front of the list

Blocks are applied in ascending `order`, so relative blocks end up at the
front in reverse of their configured order.
"""

from __future__ import annotations

from lorechat.models import ChatMessage, Message, PromptItem, PromptPosition, PromptSet
from lorechat.placeholders import PlaceholderContext, resolve

CHAT_HISTORY_IDENTIFIER = "chatHistory"
CHAR_DESCRIPTION_IDENTIFIER = "char_description"


DEFAULT_PROMPT_SET = PromptSet(
    id="prompt_set_default",
    name="Default prompts",
    prompts=[
        PromptItem(
            identifier="core_guidelines",
            name="Core roleplay guidelines",
            content=(
                "# Core Roleplay Guidelines\n"
                "- You are an immersive, emotionally driven and creative roleplay character.\n"
                "- Never wait for commands; always drive the story forward.\n"
                "- Combine narration and dialogue into a complete story segment.\n"
                "- Use Markdown formatting (e.g. **bold**, *italic*) to enhance immersion."
            ),
            order=0,
        ),
        PromptItem(
            identifier="main_system_prompt",
            name="Main system prompt (character data)",
            content=(
                "[{{char}}'s personality: {{personality}}]\n"
                "[Circumstances and context of the dialogue: {{scenario}}]\n"
                "[Memory: {{memory}}]\n"
                "[Example Dialogue: {{exampleDialogue}}]"
            ),
            order=1,
        ),
        PromptItem(
            identifier="perspective_third_person",
            name="Perspective: third person",
            content=(
                "# Narrative Perspective\n"
                "- Describe all of {{char}}'s actions, thoughts, and dialogue in the third person.\n"
                "- Avoid describing {{user}}'s internal thoughts; present them through "
                "{{char}}'s observations."
            ),
            order=2,
        ),
        PromptItem(
            identifier="perspective_first_person",
            name="Perspective: first person",
            content=(
                "# Narrative Perspective\n"
                "- Describe all of {{char}}'s actions, thoughts, and dialogue in the first person."
            ),
            enabled=False,
            order=3,
        ),
        PromptItem(
            identifier="language_output_en",
            name="Output language: English",
            content=(
                "# Language & Format\n"
                "- Your output language MUST BE English, regardless of the language "
                "of previous context."
            ),
            enabled=False,
            order=4,
        ),
        PromptItem(
            identifier="continue_prompt",
            name="Continue generation",
            role="user",
            content="Continue.",
            enabled=False,
            position=PromptPosition(type="chat", depth=0),
            order=5,
        ),
    ],
)


def enabled_prompts(prompt_set: PromptSet) -> list[PromptItem]:
    """Enabled items except the history placeholder, sorted by `order`."""
    items = [
        p for p in prompt_set.prompts
        if p.enabled and p.identifier != CHAT_HISTORY_IDENTIFIER
    ]
    return sorted(items, key=lambda p: p.order)


def history_to_messages(history: list[Message]) -> list[ChatMessage]:
    return [
        ChatMessage(role=m.role, content=m.text, error=m.error)
        for m in history
    ]


def build_final_messages(
    history_window: list[Message],
    prompt_set: PromptSet | None,
    context: PlaceholderContext,
) -> list[ChatMessage]:
    """Merge the enabled prompts of `prompt_set` into the history window.

    Each compiled prompt keeps its identifier so later stages can find it
    without searching message text.
    """
    prompt_set = prompt_set or DEFAULT_PROMPT_SET
    result = history_to_messages(history_window)

    for prompt in enabled_prompts(prompt_set):
        message = ChatMessage(
            role=prompt.role,
            content=resolve(prompt.content, context),
            identifier=prompt.identifier,
        )
        if prompt.position.type == "chat":
            index = max(0, len(result) - prompt.position.depth)
            result.insert(index, message)
        else:
            result.insert(0, message)

    return result


def prompt_content_by_identifier(
    prompt_set: PromptSet | None, identifier: str
) -> str | None:
    """Content of the enabled prompt with `identifier`.

    Falls back to the default prompt set (enabled or not), then None.
    """
    prompt_set = prompt_set or DEFAULT_PROMPT_SET
    for p in prompt_set.prompts:
        if p.identifier == identifier and p.enabled:
            return p.content
    for p in DEFAULT_PROMPT_SET.prompts:
        if p.identifier == identifier:
            return p.content
    return None
