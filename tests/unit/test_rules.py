"""
Unit tests for global exception rules
"""

from pathlib import Path

import pytest

from mask_server.rules import (
    DEFAULT_RULES,
    PRIMARY,
    RECOVERY,
    Redirect,
    RuleConfigError,
    Skip,
    SubstituteAsset,
    TraitCondition,
    load_rules,
    parse_rules,
)
from tests.conftest import T

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture
def rules():
    return parse_rules(DEFAULT_RULES)


class TestDefaults:
    """Test cases for the built-in rule set"""

    def test_order_and_actions(self, rules):
        """Test rule order and action kinds"""
        assert [r.name for r in rules.rules] == ["scarf", "bucket_hat", "powersuit_neck", "c2tech"]
        kinds = [type(r.action) for r in rules.rules]
        assert kinds == [Skip, Skip, SubstituteAsset, Redirect]

    def test_shipped_yaml_matches_builtin(self, rules):
        """Test shipped rules file equals the built-in rules"""
        assert load_rules(PROJECT_ROOT / "config" / "exception_rules.yaml") == rules

    def test_missing_file_uses_builtin(self, rules, tmp_path):
        """Test missing rules file falls back to built-in rules"""
        assert load_rules(tmp_path / "nope.yaml") == rules
        assert load_rules(None) == rules


class TestScarf:
    """Test cases for the scarf rule"""

    def test_skips_accessory_neck(self, rules):
        """Test scarf body layer skips Accessory Neck"""
        traits = [T("Body Layer", "Black Scarf"), T("Accessory Neck", "X")]
        d = rules.activate(traits, PRIMARY).decide(traits[1])
        assert d is not None and d.skip and d.rule == "scarf"

    def test_other_categories_untouched(self, rules):
        """Test other categories are not affected"""
        traits = [T("Body Layer", "White Scarf"), T("Head", "Cap")]
        assert rules.activate(traits, PRIMARY).decide(traits[1]) is None

    def test_value_is_not_trimmed(self, rules):
        """Test scarf values must match exactly"""
        traits = [T("Body Layer", "Black Scarf "), T("Accessory Neck", "X")]
        assert rules.activate(traits, PRIMARY).decide(traits[1]) is None

    def test_applies_to_recovery(self, rules):
        """Test scarf rule also applies in recovery mode"""
        traits = [T("Body Layer", "Khaki Scarf"), T("Accessory Neck", "X")]
        d = rules.activate(traits, RECOVERY).decide(traits[1])
        assert d is not None and d.skip


def test_bucket_hat_trims_value(rules):
    """Test bucket hat values match after trimming"""
    traits = [T("Hair and Hat", "  Long Gold with Bucket Hat "), T("Head", "Cap")]
    d = rules.activate(traits, PRIMARY).decide(traits[1])
    assert d is not None and d.skip and d.rule == "bucket_hat"


class TestPowersuit:
    """Test cases for the Powersuit neck rule"""

    @pytest.mark.parametrize(
        "face,url",
        [
            ("Male", "/assets/Exception/head_layer1_Male_Powersuit.png"),
            (" Male Blue Skin ", "/assets/Exception/head_layer1_Male_Powersuit.png"),
            ("Female Red Skin", "/assets/Exception/head_layer1_Female_Powersuit.png"),
        ],
    )
    def test_substitutes_face(self, rules, face, url):
        """Test face mask substitution by face prefix"""
        traits = [T("Body Layer", "Powersuit Neck Violet"), T("Face", face)]
        d = rules.activate(traits, PRIMARY).decide(traits[1])
        assert d is not None
        assert not d.skip
        assert d.layer == "head_layer1"
        assert d.url == url

    def test_unknown_face_falls_through(self, rules):
        """Test face without a choice is left to normal search"""
        traits = [T("Body Layer", "Powersuit Neck Red"), T("Face", "Robot")]
        assert rules.activate(traits, PRIMARY).decide(traits[1]) is None

    def test_not_active_for_recovery(self, rules):
        """Test Powersuit rule is primary only"""
        traits = [T("Body Layer", "Powersuit Neck Red"), T("Face", "Male")]
        assert rules.activate(traits, RECOVERY).decide(traits[1]) is None


class TestC2Tech:
    """Test cases for the C2Tech redirect rule"""

    @pytest.mark.parametrize("clothes", ["C2Tech Black", "C2 Tech White", "Black C2Tech"])
    def test_redirects_face(self, rules, clothes):
        """Test C2Tech variants redirect the Face folder"""
        traits = [T("Clothes", clothes), T("Face", "Male")]
        active = rules.activate(traits, PRIMARY)
        assert active.decide(traits[1]) is None
        assert active.folder_for(traits[1]) == "Exception"

    @pytest.mark.parametrize("clothes", ["C2Tech", "C2 Tech", "Hoodie"])
    def test_plain_or_absent_does_not_redirect(self, rules, clothes):
        """Test plain C2Tech or other clothes do not redirect"""
        traits = [T("Clothes", clothes), T("Face", "Male")]
        assert rules.activate(traits, PRIMARY).folder_for(traits[1]) is None

    def test_only_face_is_redirected(self, rules):
        """Test only the Face category is redirected"""
        traits = [T("Clothes", "C2Tech Black"), T("Head", "Cap")]
        assert rules.activate(traits, PRIMARY).folder_for(traits[1]) is None

    def test_not_active_for_recovery(self, rules):
        """Test C2Tech rule is primary only"""
        traits = [T("Clothes", "C2Tech Black"), T("Face", "Male")]
        assert rules.activate(traits, RECOVERY).folder_for(traits[1]) is None

    def test_only_first_clothes_trait_counts(self, rules):
        """Test a later C2Tech Clothes trait does not trigger the redirect"""
        face = T("Face", "Male")
        later = [T("Clothes", "Hoodie"), T("Clothes", "C2Tech Black"), face]
        first = [T("Clothes", "C2Tech Black"), T("Clothes", "Hoodie"), face]
        assert rules.activate(later, PRIMARY).folder_for(face) is None
        assert rules.activate(first, PRIMARY).folder_for(face) == "Exception"

    def test_condition_any_vs_first_only(self):
        """Test first_only restricts matching to the first trait of the type"""
        traits = [T("Clothes", "Hoodie"), T("Clothes", "C2Tech Black")]
        assert TraitCondition("Clothes", contains="C2Tech").holds(traits)
        assert not TraitCondition("Clothes", contains="C2Tech", first_only=True).holds(traits)
        assert not TraitCondition("Clothes", contains="C2Tech", first_only=True).holds([T("Face", "Male")])


class TestLoading:
    """Test cases for rules file loading"""

    def test_custom_yaml(self, tmp_path):
        """Test a custom rules file replaces the built-in rules"""
        p = tmp_path / "rules.yaml"
        p.write_text(
            "rules:\n"
            "  - name: no_tail\n"
            "    when: {trait_type: Body Layer, values: [Robe]}\n"
            "    target: Tail\n"
            "    action: skip\n"
            "    modes: [recovery]\n"
        )
        rs = load_rules(p)
        assert [r.name for r in rs.rules] == ["no_tail"]
        traits = [T("Body Layer", "Robe"), T("Tail", "Long")]
        assert rs.activate(traits, PRIMARY).decide(traits[1]) is None
        assert rs.activate(traits, RECOVERY).decide(traits[1]).skip

    def test_invalid_yaml_falls_back(self, tmp_path):
        """Test invalid YAML falls back to built-in rules"""
        p = tmp_path / "rules.yaml"
        p.write_text("rules: [\n")
        assert load_rules(p) == parse_rules(DEFAULT_RULES)

    def test_unknown_action_falls_back(self, tmp_path):
        """Test unknown action falls back to built-in rules"""
        p = tmp_path / "rules.yaml"
        p.write_text("rules:\n  - {name: x, when: {trait_type: A}, target: B, action: explode}\n")
        assert load_rules(p) == parse_rules(DEFAULT_RULES)

    def test_parse_rejects_unknown_mode(self):
        """Test unknown mode is a config error"""
        with pytest.raises(RuleConfigError, match="unknown modes"):
            parse_rules([{"name": "x", "when": {"trait_type": "A"}, "target": "B", "action": "skip", "modes": ["web"]}])
