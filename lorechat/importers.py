"""Import SillyTavern prompt presets and world-info (lorebook) files."""

from __future__ import annotations

import json
import re
import time
from typing import Any

from pydantic import ValidationError

from lorechat.models import (
    Lorebook,
    PromptItem,
    PromptPosition,
    PromptSet,
)

# prompt_order group used by SillyTavern for the global (non-character) order
GLOBAL_ORDER_CHARACTER_ID = 100001

_MATCH_FLAGS = {
    "matchCharacterDescription": "char_desc",
    "matchScenario": "scenario",
    "matchCreatorNotes": "creator_notes",
    "matchPersonaDescription": "persona_desc",
}


class ImportFormatError(ValueError):
    """Raised when an imported file does not have the expected structure."""


def _strip_json_suffix(file_name: str) -> str:
    return re.sub(r"\.json$", "", file_name, flags=re.IGNORECASE)


def _load(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"File is not valid JSON: {e}") from e


def parse_prompt_set_file(content: str, file_name: str) -> PromptSet:
    """Build a PromptSet from a SillyTavern preset (`prompts` + `prompt_order`)."""
    data = _load(content)
    if not isinstance(data, dict):
        raise ImportFormatError("Preset must be a JSON object")
    prompts = data.get("prompts")
    prompt_order = data.get("prompt_order")
    if not isinstance(prompts, list) or not isinstance(prompt_order, list) or not prompt_order:
        raise ImportFormatError('Preset is missing the "prompts" or "prompt_order" array')

    group = next(
        (g for g in prompt_order
         if isinstance(g, dict) and g.get("character_id") == GLOBAL_ORDER_CHARACTER_ID),
        prompt_order[0],
    )
    order = group.get("order") if isinstance(group, dict) else None
    if not isinstance(order, list):
        raise ImportFormatError('No usable "order" list in "prompt_order"')

    modules = {p.get("identifier"): p for p in prompts if isinstance(p, dict)}
    items: list[PromptItem] = []
    for index, ref in enumerate(order):
        module = modules.get(ref.get("identifier")) if isinstance(ref, dict) else None
        if module is None:
            continue
        position = module.get("position") or {}
        depth = position.get("depth") if isinstance(position, dict) else None
        try:
            items.append(PromptItem(
                identifier=module["identifier"],
                name=module.get("name") or f"Untitled module {index + 1}",
                enabled=bool(ref.get("enabled", True)),
                role=module.get("role") or "system",
                content=module.get("content") or "",
                position=PromptPosition(
                    type="chat" if depth is not None else "relative",
                    depth=depth if depth is not None else 4,
                ),
                order=index,
            ))
        except ValidationError as e:
            raise ImportFormatError(
                f"Invalid prompt {module.get('identifier')!r}: {e}"
            ) from e

    return PromptSet(
        id=f"prompt_set_{int(time.time() * 1000)}",
        name=_strip_json_suffix(file_name),
        prompts=items,
    )


def _entry_from_world_info(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": f"entry_{raw.get('uid', '')}",
        "name": raw.get("comment") or "Untitled entry",
        "keywords": raw.get("key") or [],
        "secondary_keywords": raw.get("keysecondary") or [],
        "content": raw.get("content") or "",
        "enabled": not raw.get("disable", False),
        "constant": bool(raw.get("constant", False)),
        "order": raw.get("order") or 100,
        "position": raw.get("position") or "before_char",
        "scan_depth": raw.get("depth") or 4,
        "logic": raw.get("selectiveLogic") or 0,
        "match_sources": {tag for flag, tag in _MATCH_FLAGS.items() if raw.get(flag)},
    }


def parse_lorebook_file(content: str, file_name: str) -> Lorebook:
    """Build a Lorebook from a SillyTavern world-info file.

    Imported lorebooks start disabled. Entries that cannot be mapped are
    dropped by Lorebook validation.
    """
    data = _load(content)
    entries = data.get("entries") if isinstance(data, dict) else None
    if isinstance(entries, dict):
        raw_entries = list(entries.values())
    elif isinstance(entries, list):
        raw_entries = entries
    else:
        raise ImportFormatError('World info is missing the "entries" object')

    mapped: list[Any] = [
        _entry_from_world_info(raw) if isinstance(raw, dict) else raw
        for raw in raw_entries
    ]
    return Lorebook(
        id=f"lorebook_{int(time.time() * 1000)}",
        name=_strip_json_suffix(file_name),
        enabled=False,
        entries=mapped,
    )
