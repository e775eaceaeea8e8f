"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings, check-connection), chat
(assemble preview, send, retry, regenerate and continue turns, version
switching, memory update) and import (prompt presets,
world info). Chat state is not stored server-side: every request carries
the history and the character/persona/prompt-set/lorebook snapshot it
applies to, and gets the new history back.
"""

from fastapi import APIRouter

from .chat import router as chat_router
from .imports import router as imports_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(chat_router)
router.include_router(imports_router)
