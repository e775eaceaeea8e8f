"""Prompt preset and world-info import endpoints."""

from fastapi import APIRouter, HTTPException

from lorechat.importers import ImportFormatError, parse_lorebook_file, parse_prompt_set_file

from .models import ImportBody

router = APIRouter()


@router.post("/import/prompt-set")
async def import_prompt_set(body: ImportBody):
    """Convert a SillyTavern preset file into a prompt set."""
    try:
        return parse_prompt_set_file(body.content, body.file_name)
    except ImportFormatError as e:
        raise HTTPException(400, str(e))


@router.post("/import/lorebook")
async def import_lorebook(body: ImportBody):
    """Convert a SillyTavern world-info file into a lorebook."""
    try:
        return parse_lorebook_file(body.content, body.file_name)
    except ImportFormatError as e:
        raise HTTPException(400, str(e))
