"""
Unit tests for the token exception / alias JSON stores
"""

import json

from common.types import ExceptionType
from mask_server.store import AliasStore, JsonFileCache, TokenExceptionStore
from tests.conftest import write_exceptions


class TestJsonFileCache:
    """Test cases for JsonFileCache"""

    def test_missing_file(self, tmp_path):
        """Test missing file loads as None"""
        assert JsonFileCache().load(tmp_path / "absent.json") is None

    def test_malformed_file_is_none(self, tmp_path):
        """Test malformed JSON loads as None"""
        p = tmp_path / "bad.json"
        p.write_text("{not json")
        assert JsonFileCache().load(p) is None

    def test_sees_changes_on_disk(self, tmp_path):
        """Test edits and deletion are picked up"""
        cache = JsonFileCache()
        p = tmp_path / "data.json"
        p.write_text(json.dumps({"a": 1}))
        assert cache.load(p) == {"a": 1}
        p.write_text(json.dumps({"a": 1, "b": 22}))
        assert cache.load(p) == {"a": 1, "b": 22}
        p.unlink()
        assert cache.load(p) is None

    def test_reuses_parsed_value_when_unchanged(self, tmp_path):
        """Test unchanged file is not parsed again"""
        cache = JsonFileCache()
        p = tmp_path / "data.json"
        p.write_text(json.dumps({"a": [1, 2]}))
        assert cache.load(p) is cache.load(p)


class TestTokenExceptionStore:
    """Test cases for TokenExceptionStore"""

    def test_single_rule_becomes_list(self, tmp_path):
        """Test a single rule object is wrapped in a list"""
        write_exceptions(tmp_path, {"7": {"trait_type": "Head", "type": "SKIP_TRAIT"}})
        rules = TokenExceptionStore(tmp_path / "token_exceptions.json").rules_for("7")
        assert len(rules) == 1
        assert rules[0].trait_type == "Head"
        assert rules[0].is_(ExceptionType.SKIP_TRAIT)

    def test_rule_list_keeps_order(self, tmp_path):
        """Test rule lists keep file order and fields"""
        write_exceptions(
            tmp_path,
            {
                "7": [
                    {"trait_type": "Face", "type": "OVERRIDE_MASK", "layer": "head_layer1", "url": "/x.png"},
                    {"trait_type": "Face", "type": "SKIP_TRAIT"},
                ]
            },
        )
        rules = TokenExceptionStore(tmp_path / "token_exceptions.json").rules_for(7)
        assert [r.type for r in rules] == ["OVERRIDE_MASK", "SKIP_TRAIT"]
        assert rules[0].layer == "head_layer1" and rules[0].url == "/x.png"

    def test_unknown_token_or_none(self, tmp_path):
        """Test unknown or missing token id yields no rules"""
        write_exceptions(tmp_path, {"7": {"trait_type": "Head", "type": "SKIP_TRAIT"}})
        store = TokenExceptionStore(tmp_path / "token_exceptions.json")
        assert store.rules_for("8") == []
        assert store.rules_for(None) == []

    def test_missing_or_malformed_file(self, tmp_path):
        """Test absent, malformed or non-object file loads as empty"""
        store = TokenExceptionStore(tmp_path / "token_exceptions.json")
        assert not store.exists
        assert store.load_all() == {}
        (tmp_path / "token_exceptions.json").write_text("[1, 2")
        assert store.load_all() == {}
        (tmp_path / "token_exceptions.json").write_text("[1, 2]")
        assert store.load_all() == {}


class TestAliasStore:
    """Test cases for AliasStore"""

    def test_resolves_alias_to_canonical(self, tmp_path):
        """Test alias maps back to its canonical name"""
        (tmp_path / "mask_hair_and_hat_aliases.json").write_text(
            json.dumps({"Blue Green": ["Teal", "Aqua"], "Gold": "not-a-list"})
        )
        store = AliasStore(tmp_path)
        assert store.reverse_map("Hair and Hat") == {"Teal": "Blue Green", "Aqua": "Blue Green"}
        assert store.resolve("Hair and Hat", "Aqua") == "Blue Green"
        assert store.resolve("Hair and Hat", "Gold") == "Gold"

    def test_no_alias_file(self, tmp_path):
        """Test name is unchanged without an alias file"""
        assert AliasStore(tmp_path).resolve("Face", "Male") == "Male"

    def test_malformed_alias_file(self, tmp_path):
        """Test malformed alias file is ignored"""
        (tmp_path / "mask_face_aliases.json").write_text("{oops")
        assert AliasStore(tmp_path).resolve("Face", "Guy") == "Guy"
