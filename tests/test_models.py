"""Tests for lorechat.models."""

import pytest
from pydantic import ValidationError

from lorechat.models import GlobalSettings, Lorebook, LorebookEntry, Message


class TestMessage:
    def test_user_text_is_content(self) -> None:
        m = Message(role="user", content="hi")
        assert m.text == "hi"
        assert m.versions == ["hi"]

    def test_assistant_text_is_active_version(self) -> None:
        m = Message(role="assistant", content=["one", "two"], active_version=1)
        assert m.text == "two"

    def test_active_version_out_of_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="assistant", content=["one"], active_version=1)

    def test_negative_active_version_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="assistant", content=["one"], active_version=-1)

    def test_user_versions_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="user", content=["a", "b"])

    def test_error_defaults_to_none(self) -> None:
        assert Message(role="user", content="x").error is None

    def test_serialise_roundtrip(self) -> None:
        m = Message(role="assistant", content=["a", "b"], active_version=1, timestamp="t")
        assert Message.model_validate(m.model_dump()) == m


class TestLorebookEntry:
    def test_defaults(self) -> None:
        e = LorebookEntry()
        assert e.logic == "OR"
        assert e.position == "before_char"
        assert e.order == 100
        assert e.scan_depth == 4
        assert e.match_sources == set()

    def test_numeric_logic_codes(self) -> None:
        assert [LorebookEntry(logic=i).logic for i in range(4)] == [
            "OR", "AND", "NOT_AND", "NOT_OR",
        ]

    def test_numeric_position_codes(self) -> None:
        assert LorebookEntry(position=0).position == "before_char"
        assert LorebookEntry(position=1).position == "after_char"
        assert LorebookEntry(position=4).position == "at_depth"

    def test_null_keywords_become_empty(self) -> None:
        e = LorebookEntry(keywords=None, secondary_keywords=None)
        assert e.keywords == []
        assert e.secondary_keywords == []

    def test_non_string_keywords_dropped(self) -> None:
        assert LorebookEntry(keywords=["dragon", 3, None]).keywords == ["dragon"]

    @pytest.mark.parametrize("position", [7, -1, "outlet"])
    def test_unknown_position_goes_after_anchor(self, position) -> None:
        assert LorebookEntry(position=position).position == "after_char"

    def test_unknown_logic_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LorebookEntry(logic="XOR")


class TestLorebook:
    def test_malformed_entries_dropped(self) -> None:
        book = Lorebook.model_validate({
            "id": "lb",
            "entries": [
                {"name": "good", "keywords": ["dragon"]},
                {"name": "bad", "keywords": "not-a-list", "logic": "XOR"},
                "garbage",
            ],
        })
        assert [e.name for e in book.entries] == ["good"]

    def test_enabled_by_default(self) -> None:
        assert Lorebook(id="lb").enabled is True


class TestGlobalSettings:
    def test_defaults(self) -> None:
        s = GlobalSettings()
        assert s.context_size == 30000
        assert s.api_provider == "openai"
        assert s.summarization_max_tokens == 1000
