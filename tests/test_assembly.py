"""Tests for message assembly."""

from lorechat.assembly import assemble, find_anchor, splice_injections
from lorechat.lorebook import Injection
from lorechat.models import (
    Character,
    ChatMessage,
    GlobalSettings,
    Lorebook,
    LorebookEntry,
    Message,
    Persona,
    PromptItem,
    PromptSet,
)


def _sys(content: str, identifier: str | None = None) -> ChatMessage:
    return ChatMessage(role="system", content=content, identifier=identifier)


def _inj(content: str, position: str = "before_char", order: int = 100) -> Injection:
    return Injection(content=content, position=position, order=order)


class TestFindAnchor:
    def test_prefers_char_description(self) -> None:
        messages = [_sys("a"), _sys("b", identifier="char_description")]
        assert find_anchor(messages) == 1

    def test_first_system_message(self) -> None:
        messages = [ChatMessage(role="user", content="hi"), _sys("a")]
        assert find_anchor(messages) == 1

    def test_defaults_to_zero(self) -> None:
        assert find_anchor([ChatMessage(role="user", content="hi")]) == 0
        assert find_anchor([]) == 0

    def test_content_text_is_not_an_anchor(self) -> None:
        messages = [_sys("first"), _sys("char_description")]
        assert find_anchor(messages) == 0


class TestSpliceInjections:
    def test_before_and_after_anchor(self) -> None:
        messages = [_sys("rules"), _sys("CHAR", identifier="char_description"),
                    ChatMessage(role="user", content="hi")]
        result = splice_injections(messages, [_inj("A", "after_char"), _inj("B")])
        assert [m.content for m in result] == ["rules", "B", "CHAR", "A", "hi"]

    def test_sorted_by_order_within_group(self) -> None:
        messages = [_sys("anchor")]
        injections = [
            _inj("b2", order=20), _inj("b1", order=10),
            _inj("a2", "at_depth", order=5), _inj("a1", "an_top", order=1),
        ]
        result = splice_injections(messages, injections)
        assert [m.content for m in result] == ["b1", "b2", "anchor", "a1", "a2"]

    def test_injections_are_system_messages(self) -> None:
        result = splice_injections([_sys("anchor")], [_inj("lore")])
        assert result[0].role == "system"

    def test_no_injections_returns_copy(self) -> None:
        messages = [_sys("anchor")]
        result = splice_injections(messages, [])
        assert result == messages
        assert result is not messages

    def test_input_not_modified(self) -> None:
        messages = [_sys("anchor")]
        splice_injections(messages, [_inj("x")])
        assert len(messages) == 1


class TestAssemble:
    def test_minimal_snapshot(self) -> None:
        result = assemble(
            history=[Message(role="user", content="hi")],
            prompt_set=PromptSet(id="ps", prompts=[PromptItem(identifier="main", content="Be nice")]),
            lorebooks=[],
            character=None,
            persona=None,
            settings=GlobalSettings(context_size=10**9),
        )
        assert [(m.role, m.content) for m in result] == [("system", "Be nice"), ("user", "hi")]

    def test_lore_spliced_around_character_prompt(self) -> None:
        prompt_set = PromptSet(id="ps", prompts=[
            PromptItem(identifier="char_description", content="{{char}}: {{personality}}"),
        ])
        lorebook = Lorebook(id="lb", entries=[
            LorebookEntry(keywords=["sword"], content="Swords are rare.", position="after_char"),
            LorebookEntry(constant=True, content="The world is flat."),
        ])
        result = assemble(
            history=[Message(role="user", content="I draw my sword")],
            prompt_set=prompt_set,
            lorebooks=[lorebook],
            character=Character(name="Bo", description="brave"),
            persona=Persona(name="Al"),
            settings=GlobalSettings(),
        )
        assert [m.content for m in result] == [
            "The world is flat.", "Bo: brave", "Swords are rare.", "I draw my sword",
        ]

    def test_history_trimmed_to_budget(self) -> None:
        history = [Message(role="user", content="x" * 40), Message(role="user", content="recent")]
        prompt_set = PromptSet(id="ps", prompts=[PromptItem(identifier="p", content="12345")])
        result = assemble(
            history=history, prompt_set=prompt_set, lorebooks=[],
            character=None, persona=None, settings=GlobalSettings(context_size=20),
        )
        assert [m.content for m in result] == ["12345", "recent"]

    def test_window_only_triggers_spliced_lore(self) -> None:
        history = [Message(role="user", content="dragon " * 10), Message(role="user", content="hello")]
        lorebook = Lorebook(id="lb", entries=[LorebookEntry(keywords=["dragon"], content="D")])
        result = assemble(
            history=history, prompt_set=PromptSet(id="ps"), lorebooks=[lorebook],
            character=None, persona=None, settings=GlobalSettings(context_size=10),
        )
        assert [m.content for m in result] == ["hello"]

    def test_custom_estimator(self) -> None:
        history = [Message(role="user", content="one two"), Message(role="user", content="three")]
        result = assemble(
            history=history, prompt_set=PromptSet(id="ps"), lorebooks=[],
            character=None, persona=None, settings=GlobalSettings(context_size=1),
            estimator=lambda t: len(t.split()),
        )
        assert [m.content for m in result] == ["three"]
