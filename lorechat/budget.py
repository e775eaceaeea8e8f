"""Token budget: fit as much recent history as the context window allows.

Token cost is estimated, not counted. The default estimator uses character
length; pass any `(text) -> int` callable to use a real tokenizer instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from lorechat.lorebook import Injection
from lorechat.models import Message, PromptItem
from lorechat.placeholders import PlaceholderContext, resolve

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]


def estimate_tokens(text: str | None = "") -> int:
    return len(text or "")


def fixed_token_cost(
    prompts: list[PromptItem],
    injections: list[Injection],
    context: PlaceholderContext,
    estimator: TokenEstimator = estimate_tokens,
) -> int:
    """Cost of everything that is sent regardless of history length:
    every enabled prompt after placeholder resolution plus every
    triggered lorebook injection."""
    prompt_cost = sum(
        estimator(resolve(p.content, context)) for p in prompts if p.enabled
    )
    lore_cost = sum(estimator(inj.content) for inj in injections)
    return prompt_cost + lore_cost


def select_history_window(
    full_history: list[Message],
    fixed_cost: int,
    max_context: int,
    estimator: TokenEstimator = estimate_tokens,
) -> list[Message]:
    """Return the longest suffix of `full_history` that fits the budget.

    Walks from the newest message backwards and stops at the first message
    that would overflow; older messages are never considered after that.
    The result may be empty.
    """
    used = 0
    start = len(full_history)
    for i in range(len(full_history) - 1, -1, -1):
        cost = estimator(full_history[i].text)
        if fixed_cost + used + cost > max_context:
            break
        used += cost
        start = i

    window = full_history[start:]
    logger.debug(
        "history window=%d/%d fixed=%d history_tokens=%d max=%d",
        len(window), len(full_history), fixed_cost, used, max_context,
    )
    return window
