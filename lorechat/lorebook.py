"""Lorebook trigger engine.

Decides which lorebook entries fire for the current chat and returns them as
position-tagged injections. Ordering by `order` happens later, in assembly.

Constant entries always fire. Every other entry is matched against a scan
text built from the last `scan_depth` history messages plus any extra sources
the entry opts into (character description, scenario, creator notes, persona
description). Matching is a case-insensitive substring search.

Logic:
  OR       any primary keyword present
  AND      all primary keywords present
  NOT_AND  not all primary keywords present
  NOT_OR   no primary keyword present

For NOT_AND and NOT_OR, when secondary keywords exist at least one of them
must also be present.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from lorechat.models import (
    Character,
    Lorebook,
    LorebookEntry,
    LorebookLogic,
    LorebookPosition,
    Message,
    Persona,
)
from lorechat.placeholders import PlaceholderContext, resolve

logger = logging.getLogger(__name__)

DEFAULT_SCAN_DEPTH = 4


class Injection(BaseModel):
    content: str
    position: LorebookPosition
    order: int


def _normalise_keywords(keywords: list[str]) -> list[str]:
    return [k.strip().lower() for k in keywords if k and k.strip()]


def build_scan_text(
    entry: LorebookEntry,
    history: list[Message],
    character: Character,
    persona: Persona,
) -> str:
    """Join the recent history and the entry's extra match sources."""
    depth = entry.scan_depth or DEFAULT_SCAN_DEPTH
    sources = ["\n".join(m.text for m in history[-depth:])]

    if "char_desc" in entry.match_sources:
        sources.append(character.description)
    if "scenario" in entry.match_sources:
        sources.append(character.scenario)
    if "creator_notes" in entry.match_sources:
        sources.append(character.creator_notes)
    if "persona_desc" in entry.match_sources:
        sources.append(persona.description)

    return "\n".join(sources)


def evaluate_logic(
    logic: LorebookLogic,
    keywords: list[str],
    secondary_keywords: list[str],
    scan_text: str,
) -> bool:
    """Evaluate an entry's keyword rule against the scan text.

    Keywords are expected trimmed and lowercased. An empty primary list never
    triggers.
    """
    if not keywords:
        return False
    text = scan_text.lower()

    if logic == "OR":
        return any(k in text for k in keywords)
    if logic == "AND":
        return all(k in text for k in keywords)

    if logic == "NOT_AND":
        triggered = not all(k in text for k in keywords)
    elif logic == "NOT_OR":
        triggered = not any(k in text for k in keywords)
    else:
        return False

    if triggered and secondary_keywords:
        triggered = any(k in text for k in secondary_keywords)
    return triggered


def entry_triggers(
    entry: LorebookEntry,
    history: list[Message],
    character: Character,
    persona: Persona,
) -> bool:
    if entry.constant:
        return True
    keywords = _normalise_keywords(entry.keywords)
    if not keywords:
        return False
    secondary = _normalise_keywords(entry.secondary_keywords)
    scan_text = build_scan_text(entry, history, character, persona)
    return evaluate_logic(entry.logic, keywords, secondary, scan_text)


def build_injections(
    lorebooks: list[Lorebook],
    recent_history: list[Message],
    character: Character | None,
    persona: Persona | None,
    memory: str = "",
) -> list[Injection]:
    """Return an injection for every enabled entry that fires, in lorebook
    then entry order."""
    character = character or Character()
    persona = persona or Persona()
    context = PlaceholderContext.from_snapshot(character, persona, memory)

    injections: list[Injection] = []
    for book in lorebooks:
        if not book.enabled:
            continue
        for entry in book.entries:
            if not entry.enabled:
                continue
            try:
                triggered = entry_triggers(entry, recent_history, character, persona)
            except (AttributeError, TypeError, IndexError) as e:
                logger.warning(
                    "Lorebook %r entry %r could not be evaluated: %s",
                    book.name, entry.name, e,
                )
                continue
            if triggered:
                injections.append(Injection(
                    content=resolve(entry.content, context),
                    position=entry.position,
                    order=entry.order,
                ))

    logger.debug("lorebook injections=%d books=%d", len(injections), len(lorebooks))
    return injections
