from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from common.types import ExceptionType, MaskResult, Trait, TokenExceptionRule
from common.utils import layer_tag, mask_base_name, normalize_name
from mask_server.config import Settings
from mask_server.rules import PRIMARY, RECOVERY, RuleSet, load_rules
from mask_server.store import AliasStore, JsonFileCache, TokenExceptionStore


log = logging.getLogger(__name__)

FACE = "Face"
RECOVERY_LAYER2 = "recovery_layer2"
RECOVERY_LAYER2_RETAG = {
    "Body Layer": "recovery_layer2_body",         # drawn behind
    "Face Accessories": "recovery_layer2_face",   # drawn in front
}


class AssetRootMissing(FileNotFoundError):
    """The asset tree root directory does not exist."""


@dataclass(frozen=True)
class AssetTree:
    """
    One mask image tree:

        root/
          └─ {TraitType}/
              └─ [{prefix}_layer{N}_]{Part Name}.png

    `file_prefix` is the regex for the optional filename prefix.
    """
    root: Path
    url_prefix: str
    file_prefix: str = r".*_layer\d+_"
    case_insensitive_folders: bool = True

    @property
    def exists(self) -> bool:
        return self.root.is_dir()

    def find_folder(self, name: str) -> Optional[Path]:
        """Category folder; exact name first, then (optionally) case-insensitive."""
        if not name or name in (".", "..") or Path(name).name != name:
            return None
        exact = self.root / name
        if not self.case_insensitive_folders:
            return exact if exact.is_dir() else None
        try:
            entries = [e for e in sorted(self.root.iterdir()) if e.is_dir()]
        except OSError as e:
            log.error("Folder lookup failed in %s: %s", self.root, e)
            return None
        for e in entries:
            if e.name == name:
                return e
        lowered = name.lower()
        for e in entries:
            if e.name.lower() == lowered:
                return e
        return None

    def find_mask(self, folder: Path, search_name: str) -> Optional[str]:
        """First file (by name) whose normalised part name equals the search name."""
        target = normalize_name(search_name)
        for p in sorted(folder.iterdir()):
            if not p.is_file():
                continue
            base = mask_base_name(p.name, self.file_prefix)
            if base is not None and normalize_name(base) == target:
                return p.name
        return None

    def url(self, folder: Path, file_name: str) -> str:
        return f"{self.url_prefix}/{folder.name}/{file_name}"


class MaskResolver:
    """
    Turns a trait list into layered mask URLs.

    Order per trait (first hit wins):
      1) terminal global rules (skip / substitute)
      2) per-token exception (first rule for the trait's category)
      3) redirect rules (change the search folder)
      4) filename search in the category folder
    """

    def __init__(
        self,
        assets: AssetTree,
        recovery: AssetTree,
        rules: RuleSet,
        exceptions: TokenExceptionStore,
        aliases: AliasStore,
    ):
        self.assets = assets
        self.recovery = recovery
        self.rules = rules
        self.exceptions = exceptions
        self.aliases = aliases

    # -------- public API --------

    def resolve(self, traits: Sequence[Trait], token_id: Optional[str] = None) -> MaskResult:
        if not self.assets.exists:
            raise AssetRootMissing(str(self.assets.root))

        result = MaskResult()
        active = self.rules.activate(traits, PRIMARY)
        token_rules = self.exceptions.rules_for(token_id)

        for trait in traits:
            is_face = trait.trait_type == FACE

            decision = active.decide(trait)
            if decision is not None:
                if decision.skip:
                    log.info(" -> skip: %s (%s) [%s]", trait.trait_type, trait.value, decision.rule)
                else:
                    log.info("Rule '%s': %s mask -> %s", decision.rule, trait.trait_type, decision.url)
                    result.add(decision.layer, decision.url, face=is_face)  # type: ignore[arg-type]
                continue

            ex = _token_rule_for(token_rules, trait)
            if ex is not None:
                if ex.is_(ExceptionType.SKIP_TRAIT):
                    log.info("Token %s exception: skip %s", token_id, trait.trait_type)
                    continue
                if ex.is_(ExceptionType.OVERRIDE_MASK):
                    self._apply_override(result, ex, token_id, face=is_face)
                    continue

            redirect = active.folder_for(trait)
            if redirect is not None:
                folder: Optional[Path] = self.assets.root / redirect
                if not folder.is_dir():
                    log.warning("Redirect folder %s missing for %s", folder, trait.trait_type)
                    continue
            else:
                folder = self.assets.find_folder(trait.trait_type)
                if folder is None:
                    log.debug("No asset folder for %s", trait.trait_type)
                    continue

            search_name = self.aliases.resolve(trait.trait_type, trait.part_name)
            file_name = self.assets.find_mask(folder, search_name)
            if file_name:
                result.add(layer_tag(file_name), self.assets.url(folder, file_name), face=is_face)

        return result

    def resolve_recovery(self, traits: Sequence[Trait], token_id: Optional[str] = None) -> MaskResult:
        if not self.recovery.exists:
            log.error("Recovery asset root missing: %s", self.recovery.root)
            raise AssetRootMissing(str(self.recovery.root))

        result = MaskResult()
        active = self.rules.activate(traits, RECOVERY)
        token_rules = self.exceptions.rules_for(token_id)

        for trait in traits:
            decision = active.decide(trait)
            if decision is not None:
                if decision.skip:
                    log.info(" -> skip (recovery): %s (%s) [%s]", trait.trait_type, trait.value, decision.rule)
                else:
                    result.add(decision.layer, decision.url)  # type: ignore[arg-type]
                continue

            ex = _token_rule_for(token_rules, trait)
            if ex is not None:
                if ex.is_(ExceptionType.SKIP_TRAIT):
                    log.info("Token %s exception (recovery): skip %s", token_id, trait.trait_type)
                    continue
                if ex.is_(ExceptionType.OVERRIDE_RECOVERY):
                    self._apply_override(result, ex, token_id)
                    continue

            redirect = active.folder_for(trait)
            folder = self.recovery.find_folder(redirect or trait.trait_type)
            if folder is None:
                continue

            # aliases are not applied to recovery masks
            file_name = self.recovery.find_mask(folder, trait.part_name)
            if file_name:
                tag = layer_tag(file_name)
                if tag == RECOVERY_LAYER2:
                    tag = RECOVERY_LAYER2_RETAG.get(trait.trait_type, tag)
                result.add(tag, self.recovery.url(folder, file_name))

        log.info("Recovery masks resolved", extra={"extra": {"layers": result.masks_by_layer}})
        return result

    # -------- internals --------

    @staticmethod
    def _apply_override(result: MaskResult, ex: TokenExceptionRule, token_id: Optional[str], *, face: bool = False) -> None:
        if not ex.layer or not ex.url:
            log.warning("Token %s %s rule for %s lacks layer/url; trait skipped", token_id, ex.type, ex.trait_type)
            return
        log.info("Token %s exception (%s): %s -> %s", token_id, ex.type, ex.trait_type, ex.url)
        result.add(ex.layer, ex.url, face=face)


def _token_rule_for(rules: List[TokenExceptionRule], trait: Trait) -> Optional[TokenExceptionRule]:
    for r in rules:
        if r.trait_type == trait.trait_type:
            return r
    return None


def build_resolver(S: Settings, cache: Optional[JsonFileCache] = None) -> MaskResolver:
    """Resolver wired to the configured asset trees, rules and JSON files."""
    cache = cache or JsonFileCache()
    return MaskResolver(
        assets=AssetTree(S.assets_dir, "/assets"),
        recovery=AssetTree(
            S.recovery_assets_dir,
            "/recovery_assets",
            file_prefix=r"recovery_layer\d+_",
            case_insensitive_folders=False,
        ),
        rules=load_rules(S.rules_path),
        exceptions=TokenExceptionStore(S.token_exceptions_path, cache),
        aliases=AliasStore(S.alias_dir, cache),
    )
