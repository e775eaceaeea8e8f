"""Message assembly: turns a chat snapshot into one ordered message list.

Steps:
  1. Estimate the fixed cost: enabled prompts plus lorebook injections
     triggered against the full history.
  2. Select the history window that fits the remaining context budget.
  3. Compile the prompt set around that window.
  4. Trigger lorebook entries against the window.
  5. Splice the injections around the anchor message: the prompt tagged
     `char_description`, else the first system message, else index 0.
     `before_char` injections go right before the anchor, all others right
     after it, each group sorted by `order`.

The result is provider-agnostic; see providers.format_messages.

Note on step 1: the cost is computed from injections scanned against the
full history, while the injections actually spliced in step 4 are scanned
against the window. The two sets can differ.
"""

from __future__ import annotations

import logging

from lorechat.budget import (
    TokenEstimator,
    estimate_tokens,
    fixed_token_cost,
    select_history_window,
)
from lorechat.lorebook import Injection, build_injections
from lorechat.models import (
    Character,
    ChatMessage,
    GlobalSettings,
    Lorebook,
    Message,
    Persona,
    PromptSet,
)
from lorechat.placeholders import PlaceholderContext
from lorechat.prompts import (
    CHAR_DESCRIPTION_IDENTIFIER,
    DEFAULT_PROMPT_SET,
    build_final_messages,
)

logger = logging.getLogger(__name__)


def find_anchor(messages: list[ChatMessage]) -> int:
    for i, m in enumerate(messages):
        if m.identifier == CHAR_DESCRIPTION_IDENTIFIER:
            return i
    for i, m in enumerate(messages):
        if m.role == "system":
            return i
    return 0


def splice_injections(
    messages: list[ChatMessage], injections: list[Injection]
) -> list[ChatMessage]:
    """Return a copy of `messages` with the injections inserted around the anchor."""
    result = list(messages)
    if not injections:
        return result

    anchor = find_anchor(result)
    before = [
        ChatMessage(role="system", content=inj.content)
        for inj in sorted(
            (i for i in injections if i.position == "before_char"),
            key=lambda i: i.order,
        )
    ]
    after = [
        ChatMessage(role="system", content=inj.content)
        for inj in sorted(
            (i for i in injections if i.position != "before_char"),
            key=lambda i: i.order,
        )
    ]

    result[anchor:anchor] = before
    after_index = anchor + len(before) + 1
    result[after_index:after_index] = after
    return result


def assemble(
    *,
    history: list[Message],
    prompt_set: PromptSet | None,
    lorebooks: list[Lorebook],
    character: Character | None,
    persona: Persona | None,
    settings: GlobalSettings,
    memory: str = "",
    estimator: TokenEstimator = estimate_tokens,
) -> list[ChatMessage]:
    """Build the ordered message list for one request."""
    prompt_set = prompt_set or DEFAULT_PROMPT_SET
    context = PlaceholderContext.from_snapshot(character, persona, memory)

    full_injections = build_injections(lorebooks, history, character, persona, memory)
    fixed = fixed_token_cost(prompt_set.prompts, full_injections, context, estimator)

    window = select_history_window(history, fixed, settings.context_size, estimator)
    messages = build_final_messages(window, prompt_set, context)

    injections = build_injections(lorebooks, window, character, persona, memory)
    result = splice_injections(messages, injections)

    logger.debug(
        "assembled messages=%d window=%d injections=%d fixed=%d",
        len(result), len(window), len(injections), fixed,
    )
    return result
