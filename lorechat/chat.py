"""Chat turn operations over immutable history snapshots.

Every function takes the current history and returns a new list; the input
list and its messages are never modified. A caller that loses a race or sees
GenerationCancelled simply keeps the history it already had.

Turn flow (send_turn):
  1. Append the user message.
  2. Assemble, format and build the provider request.
  3. Send it through the transport.
  4. Lock the previous assistant branch to its active version.
  5. Append the reply as a new assistant message.

A transport failure keeps the user message with an error marker so it can be
retried; the marker also keeps it out of later prompts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from lorechat.assembly import assemble
from lorechat.budget import TokenEstimator, estimate_tokens
from lorechat.models import (
    Character,
    GlobalSettings,
    Lorebook,
    Message,
    Persona,
    PromptSet,
)
from lorechat.prompts import prompt_content_by_identifier
from lorechat.providers import ProviderRequest, Reply, build_request, format_messages
from lorechat.transport import Transport, TransportError

logger = logging.getLogger(__name__)

CONTINUE_IDENTIFIER = "continue_prompt"
DEFAULT_CONTINUE_PROMPT = "Continue."
TRUNCATED_MARKER = "Reply truncated at the length limit"


class ChatContext(BaseModel):
    """Read-only snapshot of everything assembly needs besides history."""

    character: Character = Field(default_factory=Character)
    persona: Persona = Field(default_factory=Persona)
    prompt_set: PromptSet | None = None
    lorebooks: list[Lorebook] = Field(default_factory=list)
    settings: GlobalSettings = Field(default_factory=GlobalSettings)
    memory: str = ""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_chat_request(
    history: list[Message],
    context: ChatContext,
    estimator: TokenEstimator = estimate_tokens,
) -> ProviderRequest:
    provider = context.settings.api_provider
    messages = assemble(
        history=history,
        prompt_set=context.prompt_set,
        lorebooks=context.lorebooks,
        character=context.character,
        persona=context.persona,
        settings=context.settings,
        memory=context.memory,
        estimator=estimator,
    )
    formatted = format_messages(messages, provider)
    return build_request(provider, formatted, context.settings)


async def _generate(
    history: list[Message],
    context: ChatContext,
    transport: Transport,
    cancel: asyncio.Event | None,
) -> Reply:
    provider = context.settings.api_provider
    request = build_chat_request(history, context)
    reply = await transport.send(provider, request, cancel)
    if reply.truncated:
        logger.warning("%s reply truncated at the length limit (len=%d)", provider, len(reply.text))
    return reply


def _truncation_error(reply: Reply) -> str | None:
    return TRUNCATED_MARKER if reply.truncated and not reply.text else None


def _assistant(reply: Reply) -> Message:
    return Message(
        role="assistant", content=[reply.text], active_version=0,
        timestamp=_now(), error=_truncation_error(reply),
    )


# ---------------------------------------------------------------------------
# Pure history helpers
# ---------------------------------------------------------------------------

def lock_branch(history: list[Message]) -> list[Message]:
    """Keep only the active version of the last assistant message."""
    result = list(history)
    for i in range(len(result) - 1, -1, -1):
        msg = result[i]
        if msg.role != "assistant":
            continue
        if isinstance(msg.content, list) and len(msg.content) > 1:
            result[i] = msg.model_copy(update={"content": [msg.text], "active_version": 0})
        break
    return result


def switch_version(message: Message, direction: int) -> Message:
    """Move the active version by `direction`; out-of-range moves are ignored."""
    if not isinstance(message.content, list):
        return message
    index = message.active_version + direction
    if not 0 <= index < len(message.content):
        return message
    return message.model_copy(update={"active_version": index})


def mark_failed(history: list[Message], index: int, reason: str) -> list[Message]:
    result = list(history)
    result[index] = result[index].model_copy(update={"error": reason})
    return result


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------

async def send_turn(
    *,
    history: list[Message],
    text: str,
    context: ChatContext,
    transport: Transport,
    cancel: asyncio.Event | None = None,
) -> list[Message]:
    """Send a user message and return the history with the reply appended."""
    pending = [*history, Message(role="user", content=text, timestamp=_now())]
    try:
        reply = await _generate(pending, context, transport, cancel)
    except TransportError as e:
        logger.warning("send failed: %s", e)
        return mark_failed(pending, len(pending) - 1, f"Send failed: {e}")
    return [*lock_branch(pending), _assistant(reply)]


async def retry_turn(
    *,
    history: list[Message],
    index: int,
    context: ChatContext,
    transport: Transport,
    cancel: asyncio.Event | None = None,
) -> list[Message]:
    """Resend a user message that previously failed."""
    target = history[index]
    if target.role != "user" or not target.error:
        raise ValueError(f"Message {index} is not a failed user message")

    cleared = [*history[:index], target.model_copy(update={"error": None}), *history[index + 1:]]
    try:
        reply = await _generate(cleared[:index + 1], context, transport, cancel)
    except TransportError as e:
        logger.warning("retry failed: %s", e)
        return mark_failed(history, index, f"Retry failed: {e}")
    return [*cleared, _assistant(reply)]


async def regenerate(
    *,
    history: list[Message],
    index: int,
    context: ChatContext,
    transport: Transport,
    cancel: asyncio.Event | None = None,
) -> list[Message]:
    """Generate a new version of the assistant message at `index`."""
    target = history[index]
    if target.role != "assistant":
        raise ValueError(f"Message {index} is not an assistant message")

    reply = await _generate(history[:index], context, transport, cancel)
    versions = [*target.versions, reply.text]
    updated = target.model_copy(update={
        "content": versions,
        "active_version": len(versions) - 1,
        "error": _truncation_error(reply),
    })
    return [*history[:index], updated, *history[index + 1:]]


async def continue_reply(
    *,
    history: list[Message],
    context: ChatContext,
    transport: Transport,
    cancel: asyncio.Event | None = None,
) -> list[Message]:
    """Ask the model to continue the last assistant message in place."""
    if not history or history[-1].role != "assistant":
        raise ValueError("The last message is not an assistant message")

    prompt = (
        prompt_content_by_identifier(context.prompt_set, CONTINUE_IDENTIFIER)
        or DEFAULT_CONTINUE_PROMPT
    )
    reply = await _generate(
        [*history, Message(role="user", content=prompt)], context, transport, cancel,
    )

    last = history[-1]
    if _truncation_error(reply):
        logger.warning("continue produced no text before the length limit")
        return list(history)

    versions = last.versions
    versions[last.active_version] = versions[last.active_version] + reply.text
    content: str | list[str] = versions if isinstance(last.content, list) else versions[0]
    return [*history[:-1], last.model_copy(update={"content": content})]
