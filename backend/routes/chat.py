"""Assembly preview, chat turn and memory endpoints."""

from fastapi import APIRouter, HTTPException

from lorechat import config
from lorechat.assembly import assemble
from lorechat.chat import (
    ChatContext,
    continue_reply,
    regenerate,
    retry_turn,
    send_turn,
    switch_version,
)
from lorechat.memory import update_memory
from lorechat.providers import format_messages
from lorechat.transport import HttpTransport, TransportError

from .models import ChatBody, MemoryBody, SnapshotBody, SwitchVersionBody, TurnBody

router = APIRouter()


def _context(body: SnapshotBody) -> ChatContext:
    return ChatContext(
        character=body.character,
        persona=body.persona,
        prompt_set=body.prompt_set,
        lorebooks=body.lorebooks,
        settings=config.load_settings(),
        memory=body.memory,
    )


@router.post("/assemble")
async def assemble_preview(body: SnapshotBody):
    """Assemble and format the next request without sending it."""
    ctx = _context(body)
    messages = assemble(
        history=body.history,
        prompt_set=ctx.prompt_set,
        lorebooks=ctx.lorebooks,
        character=ctx.character,
        persona=ctx.persona,
        settings=ctx.settings,
        memory=ctx.memory,
    )
    try:
        payload = format_messages(messages, ctx.settings.api_provider)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {
        "messages": [m.model_dump(exclude_none=True) for m in messages],
        "payload": payload,
    }


@router.post("/chat")
async def chat(body: ChatBody):
    """Send a user message; returns the new history.

    A provider failure is reported on the user message (`error`), not as an
    HTTP error, so the client can offer a retry.
    """
    try:
        history = await send_turn(
            history=body.history,
            text=body.message,
            context=_context(body),
            transport=HttpTransport(),
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"history": [m.model_dump(exclude_none=True) for m in history]}


@router.post("/chat/retry")
async def chat_retry(body: TurnBody):
    """Resend the failed user message at `index`."""
    try:
        history = await retry_turn(
            history=body.history,
            index=body.index,
            context=_context(body),
            transport=HttpTransport(),
        )
    except (ValueError, IndexError) as e:
        raise HTTPException(400, str(e))
    return {"history": [m.model_dump(exclude_none=True) for m in history]}


@router.post("/chat/regenerate")
async def chat_regenerate(body: TurnBody):
    """Add a new version to the assistant message at `index`."""
    try:
        history = await regenerate(
            history=body.history,
            index=body.index,
            context=_context(body),
            transport=HttpTransport(),
        )
    except (ValueError, IndexError) as e:
        raise HTTPException(400, str(e))
    except TransportError as e:
        raise HTTPException(502, str(e))
    return {"history": [m.model_dump(exclude_none=True) for m in history]}


@router.post("/chat/continue")
async def chat_continue(body: SnapshotBody):
    """Extend the last assistant message."""
    try:
        history = await continue_reply(
            history=body.history,
            context=_context(body),
            transport=HttpTransport(),
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    except TransportError as e:
        raise HTTPException(502, str(e))
    return {"history": [m.model_dump(exclude_none=True) for m in history]}


@router.post("/chat/switch-version")
async def chat_switch_version(body: SwitchVersionBody):
    """Select the next or previous version of an assistant message."""
    return switch_version(body.message, body.direction).model_dump(exclude_none=True)


@router.post("/memory")
async def memory(body: MemoryBody):
    """Summarise the conversation into a new long-term memory note."""
    try:
        text = await update_memory(
            history=body.history,
            settings=config.load_settings(),
            transport=HttpTransport(),
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    except TransportError as e:
        raise HTTPException(502, str(e))
    return {"memory": text}
