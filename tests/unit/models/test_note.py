"""
Unit tests for models.note module.

Tests:
- Construction and field validation
- tags_of_type() extraction and malformed tag handling
- referenced_pubkeys(), referenced_event_ids(), relevant_pubkeys()
- to_dict() / from_dict() / from_json()
"""

import json

import pytest

from pushbrotr.models import Note


class TestConstruction:
    """Note construction and validation."""

    def test_valid(self, note_dict):
        note = Note.from_dict(note_dict)
        assert note.id == "e1"
        assert note.pubkey == "alice"
        assert note.created_at == 1_700_000_000

    def test_tags_frozen(self, note_dict):
        note = Note.from_dict(note_dict)
        assert isinstance(note.tags, tuple)
        assert all(isinstance(tag, tuple) for tag in note.tags)

    def test_immutable(self, note_dict):
        note = Note.from_dict(note_dict)
        with pytest.raises(AttributeError):
            note.content = "changed"  # type: ignore[misc]

    @pytest.mark.parametrize("field", ["id", "pubkey"])
    def test_empty_identifier_rejected(self, note_dict, field):
        note_dict[field] = ""
        with pytest.raises(ValueError, match=field):
            Note.from_dict(note_dict)

    def test_null_byte_in_id_rejected(self, note_dict):
        note_dict["id"] = "e\x001"
        with pytest.raises(ValueError, match="null bytes"):
            Note.from_dict(note_dict)

    def test_negative_created_at_rejected(self, note_dict):
        note_dict["created_at"] = -1
        with pytest.raises(ValueError, match="created_at"):
            Note.from_dict(note_dict)

    def test_bool_created_at_rejected(self, note_dict):
        note_dict["created_at"] = True
        with pytest.raises(TypeError, match="created_at"):
            Note.from_dict(note_dict)

    @pytest.mark.parametrize("kind", [-1, 65_536])
    def test_kind_out_of_range(self, note_dict, kind):
        note_dict["kind"] = kind
        with pytest.raises(ValueError, match="kind"):
            Note.from_dict(note_dict)

    def test_content_must_be_str(self, note_dict):
        note_dict["content"] = 42
        with pytest.raises(TypeError, match="content"):
            Note.from_dict(note_dict)

    def test_tags_must_be_list_of_lists(self, note_dict):
        note_dict["tags"] = [["p", "bob"], "e"]
        with pytest.raises(TypeError, match=r"tags\[1\]"):
            Note.from_dict(note_dict)

    def test_tags_string_rejected(self, note_dict):
        note_dict["tags"] = "p"
        with pytest.raises(TypeError, match="tags"):
            Note.from_dict(note_dict)


class TestTagsOfType:
    """Generic tag extraction."""

    def test_order_preserved(self, make_note):
        note = make_note(tags=[["p", "carol"], ["e", "x"], ["p", "bob"], ["p", "carol"]])
        assert note.tags_of_type("p") == ["carol", "bob", "carol"]

    def test_no_match(self, make_note):
        note = make_note(tags=[["e", "x"]])
        assert note.tags_of_type("p") == []

    def test_short_tags_skipped(self, make_note):
        note = make_note(tags=[["p"], [], ["p", "bob"]])
        assert note.tags_of_type("p") == ["bob"]

    def test_extra_elements_ignored(self, make_note):
        note = make_note(tags=[["e", "x", "wss://relay.example", "reply"]])
        assert note.tags_of_type("e") == ["x"]

    def test_non_string_values_skipped(self, make_note):
        note = make_note(tags=[["p", 42], ["p", None], ["p", ["bob"]], ["p", "bob"]])
        assert note.tags_of_type("p") == ["bob"]

    def test_null_byte_values_skipped(self, make_note):
        note = make_note(tags=[["p", "bo\x00b"], ["p", "bob"]])
        assert note.tags_of_type("p") == ["bob"]

    def test_non_string_tag_name_does_not_match(self, make_note):
        note = make_note(tags=[[1, "bob"]])
        assert note.tags_of_type("p") == []


class TestRelevance:
    """Derived relevance views."""

    def test_referenced_pubkeys(self, make_note):
        note = make_note(tags=[["p", "bob"], ["p", "carol"], ["p", "bob"]])
        assert note.referenced_pubkeys() == {"bob", "carol"}

    def test_referenced_event_ids(self, make_note):
        note = make_note(tags=[["e", "e0"], ["e", "e00"], ["p", "bob"]])
        assert note.referenced_event_ids() == {"e0", "e00"}

    def test_empty_values_dropped(self, make_note):
        note = make_note(tags=[["p", ""], ["e", ""]])
        assert note.referenced_pubkeys() == set()
        assert note.referenced_event_ids() == set()

    def test_relevant_pubkeys_includes_author(self, make_note):
        note = make_note(pubkey="alice", tags=[["p", "bob"]])
        assert note.relevant_pubkeys() == {"alice", "bob"}

    def test_relevant_pubkeys_without_tags(self, make_note):
        assert make_note(pubkey="alice").relevant_pubkeys() == {"alice"}

    def test_relevant_pubkeys_returns_fresh_set(self, make_note):
        note = make_note(tags=[["p", "bob"]])
        note.relevant_pubkeys().add("mallory")
        assert "mallory" not in note.relevant_pubkeys()

    def test_references_pubkey(self, make_note):
        note = make_note(pubkey="alice", tags=[["p", "bob"]])
        assert note.references_pubkey("bob") is True
        assert note.references_pubkey("alice") is False


class TestSerialization:
    """Dict and JSON conversion."""

    def test_to_dict(self, note_dict):
        assert Note.from_dict(note_dict).to_dict() == note_dict

    def test_from_dict_ignores_unknown_keys(self, note_dict):
        note_dict["relays"] = ["wss://relay.example"]
        assert Note.from_dict(note_dict).id == "e1"

    def test_from_dict_missing_keys(self, note_dict):
        del note_dict["sig"]
        del note_dict["kind"]
        with pytest.raises(ValueError, match="kind, sig"):
            Note.from_dict(note_dict)

    def test_from_dict_not_a_dict(self):
        with pytest.raises(TypeError, match="JSON object"):
            Note.from_dict(["e1"])  # type: ignore[arg-type]

    def test_from_json(self, note_dict):
        note = Note.from_json(json.dumps(note_dict))
        assert note.referenced_pubkeys() == {"bob"}

    def test_from_json_bytes(self, note_dict):
        assert Note.from_json(json.dumps(note_dict).encode()).id == "e1"

    def test_from_json_invalid(self):
        with pytest.raises(ValueError, match="invalid note JSON"):
            Note.from_json("{not json")
