from __future__ import annotations

"""
Global exception rules: "if some trait looks like X, treat trait category Y differently".

Each rule is a predicate over the whole trait list plus an action on one
target category:

    skip        -> the target trait contributes nothing
    substitute  -> the target trait gets a fixed asset URL (picked by its value)
    redirect    -> the target trait is searched in another asset folder

`skip` and `substitute` are terminal and are checked before per-token
exceptions; `redirect` only changes the search folder and is checked after
them. Rules are loaded from config/exception_rules.yaml; DEFAULT_RULES is
used when that file is missing or invalid.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

import yaml

from common.types import Trait
from common.utils import compact


log = logging.getLogger(__name__)

PRIMARY = "primary"
RECOVERY = "recovery"
ALL_MODES = frozenset({PRIMARY, RECOVERY})


DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "name": "scarf",
        "when": {
            "trait_type": "Body Layer",
            "values": [
                "Black Scarf",
                "White Scarf",
                "Khaki Scarf",
                "Multicolor Scarf Black",
                "Multicolor Scarf White",
            ],
        },
        "target": "Accessory Neck",
        "action": "skip",
    },
    {
        "name": "bucket_hat",
        "when": {
            "trait_type": "Hair and Hat",
            "trim": True,
            "values": [
                "Long Black with Bucket Hat",
                "Long Blue Green with Bucket Hat",
                "Long Gold with Bucket Hat",
                "Long Green with Bucket Hat",
                "Long Pink with Bucket Hat",
                "Long Purple with Bucket Hat",
                "Long White Ash with Bucket Hat",
                "Long White with Bucket Hat",
            ],
        },
        "target": "Head",
        "action": "skip",
    },
    {
        "name": "powersuit_neck",
        "when": {
            "trait_type": "Body Layer",
            "values": ["Powersuit Neck Amber", "Powersuit Neck Red", "Powersuit Neck Violet"],
        },
        "target": "Face",
        "action": "substitute",
        "layer": "head_layer1",
        "choices": [
            {
                "values": ["Male", "Male Red Skin", "Male Blue Skin"],
                "url": "/assets/Exception/head_layer1_Male_Powersuit.png",
            },
            {
                "values": ["Female", "Female Red Skin", "Female Blue Skin"],
                "url": "/assets/Exception/head_layer1_Female_Powersuit.png",
            },
        ],
        "modes": [PRIMARY],
    },
    {
        "name": "c2tech",
        "when": {"trait_type": "Clothes", "contains": "C2Tech", "first_only": True},
        "target": "Face",
        "action": "redirect",
        "folder": "Exception",
        "modes": [PRIMARY],
    },
]


class RuleConfigError(ValueError):
    pass


# ----------------------------
# Predicates / actions
# ----------------------------
@dataclass(frozen=True)
class TraitCondition:
    """
    Holds when some trait of `trait_type` matches:
      - `values`: exact value match (after strip() if `trim`)
      - `contains`: whitespace-free value contains the token but is not equal to it
    With `first_only` only the first trait of `trait_type` is looked at.
    """
    trait_type: str
    values: FrozenSet[str] = frozenset()
    trim: bool = False
    contains: Optional[str] = None
    first_only: bool = False

    def matches(self, trait: Trait) -> bool:
        if trait.trait_type != self.trait_type:
            return False
        if self.contains is not None:
            v = compact(trait.value)
            return self.contains in v and v != self.contains
        v = trait.value.strip() if self.trim else trait.value
        return v in self.values

    def holds(self, traits: Iterable[Trait]) -> bool:
        if self.first_only:
            first = next((t for t in traits if t.trait_type == self.trait_type), None)
            return first is not None and self.matches(first)
        return any(self.matches(t) for t in traits)


@dataclass(frozen=True)
class Skip:
    pass


@dataclass(frozen=True)
class Redirect:
    folder: str


@dataclass(frozen=True)
class SubstituteAsset:
    layer: str
    choices: Tuple[Tuple[FrozenSet[str], str], ...] = ()

    def pick(self, part_name: str) -> Optional[str]:
        for values, url in self.choices:
            if part_name in values:
                return url
        return None


Action = Union[Skip, Redirect, SubstituteAsset]


@dataclass(frozen=True)
class ExceptionRule:
    name: str
    when: TraitCondition
    target: str
    action: Action
    modes: FrozenSet[str] = ALL_MODES

    @property
    def terminal(self) -> bool:
        return not isinstance(self.action, Redirect)


@dataclass(frozen=True)
class Decision:
    """Outcome of terminal rules for a single trait."""
    rule: str
    skip: bool = False
    layer: Optional[str] = None
    url: Optional[str] = None


@dataclass
class ActiveRules:
    """Rules whose predicate holds for one request's trait list."""
    terminal: List[ExceptionRule] = field(default_factory=list)
    redirects: List[ExceptionRule] = field(default_factory=list)

    def decide(self, trait: Trait) -> Optional[Decision]:
        for rule in self.terminal:
            if rule.target != trait.trait_type:
                continue
            if isinstance(rule.action, Skip):
                return Decision(rule=rule.name, skip=True)
            if isinstance(rule.action, SubstituteAsset):
                url = rule.action.pick(trait.part_name)
                if url:
                    return Decision(rule=rule.name, layer=rule.action.layer, url=url)
        return None

    def folder_for(self, trait: Trait) -> Optional[str]:
        for rule in self.redirects:
            if rule.target == trait.trait_type:
                return rule.action.folder  # type: ignore[union-attr]
        return None


@dataclass(frozen=True)
class RuleSet:
    rules: Tuple[ExceptionRule, ...] = ()

    def activate(self, traits: Sequence[Trait], mode: str) -> ActiveRules:
        active = ActiveRules()
        for rule in self.rules:
            if mode not in rule.modes or not rule.when.holds(traits):
                continue
            log.info("Exception rule '%s' active: %s handling for '%s'", rule.name, mode, rule.target)
            (active.terminal if rule.terminal else active.redirects).append(rule)
        return active


# ----------------------------
# Loading
# ----------------------------
def _parse_rule(d: Dict[str, Any]) -> ExceptionRule:
    try:
        name = str(d["name"])
        when = d["when"]
        target = str(d["target"])
        kind = str(d["action"])
    except (KeyError, TypeError) as e:
        raise RuleConfigError(f"rule missing field: {e}") from e

    contains = when.get("contains")
    cond = TraitCondition(
        trait_type=str(when["trait_type"]),
        values=frozenset(str(v) for v in when.get("values") or []),
        trim=bool(when.get("trim", False)),
        contains=None if contains is None else str(contains),
        first_only=bool(when.get("first_only", False)),
    )

    action: Action
    if kind == "skip":
        action = Skip()
    elif kind == "redirect":
        action = Redirect(folder=str(d["folder"]))
    elif kind == "substitute":
        choices = tuple(
            (frozenset(str(v) for v in c.get("values") or []), str(c["url"]))
            for c in d.get("choices") or []
        )
        action = SubstituteAsset(layer=str(d["layer"]), choices=choices)
    else:
        raise RuleConfigError(f"rule '{name}': unknown action '{kind}'")

    modes = frozenset(str(m) for m in d.get("modes") or ALL_MODES)
    unknown = modes - ALL_MODES
    if unknown:
        raise RuleConfigError(f"rule '{name}': unknown modes {sorted(unknown)}")
    return ExceptionRule(name=name, when=cond, target=target, action=action, modes=modes)


def parse_rules(items: Iterable[Dict[str, Any]]) -> RuleSet:
    return RuleSet(rules=tuple(_parse_rule(d) for d in items))


def load_rules(path: Optional[Path] = None) -> RuleSet:
    """YAML rules file (`rules: [...]`); built-in defaults if absent or invalid."""
    if path is None or not Path(path).exists():
        return parse_rules(DEFAULT_RULES)
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f) or {}
        return parse_rules(doc.get("rules") or [])
    except (OSError, yaml.YAMLError, RuleConfigError, KeyError, TypeError, AttributeError) as e:
        log.error("Invalid exception rules file %s, using defaults: %s", path, e)
        return parse_rules(DEFAULT_RULES)
