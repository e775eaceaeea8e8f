"""Long-term memory: summarise the chat into a note fed back via {{memory}}."""

from __future__ import annotations

import asyncio
import logging

from lorechat.budget import TokenEstimator, estimate_tokens, select_history_window
from lorechat.config import ConfigError
from lorechat.models import ChatMessage, GlobalSettings, Message
from lorechat.providers import build_request, format_messages
from lorechat.transport import Transport

logger = logging.getLogger(__name__)

MAX_SUMMARY_HISTORY_TOKENS = 28000
MIN_SUMMARY_MESSAGES = 4
SUMMARY_SYSTEM_PROMPT = "You are a summarization expert."


def conversation_text(
    history: list[Message],
    max_tokens: int = MAX_SUMMARY_HISTORY_TOKENS,
    estimator: TokenEstimator = estimate_tokens,
) -> str:
    """Render the most recent messages that fit `max_tokens` as `role: text` lines."""
    window = select_history_window(history, 0, max_tokens, estimator)
    return "\n".join(f"{m.role}: {m.text}" for m in window)


def build_summary_messages(
    history: list[Message], settings: GlobalSettings
) -> list[ChatMessage]:
    if not settings.summarization_prompt:
        raise ConfigError("No summarization prompt configured in settings")
    prompt = settings.summarization_prompt.replace(
        "{{conversation}}", conversation_text(history), 1
    )
    return [
        ChatMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
        ChatMessage(role="user", content=prompt),
    ]


async def update_memory(
    *,
    history: list[Message],
    settings: GlobalSettings,
    transport: Transport,
    cancel: asyncio.Event | None = None,
) -> str:
    """Return a fresh memory summary for `history`."""
    if len(history) < MIN_SUMMARY_MESSAGES:
        raise ValueError("Conversation is too short to summarise")

    provider = settings.api_provider
    formatted = format_messages(build_summary_messages(history, settings), provider)
    request = build_request(provider, formatted, settings, for_summary=True)
    reply = await transport.send(provider, request, cancel)
    logger.info("memory updated provider=%s len=%d", provider, len(reply.text))
    return reply.text
