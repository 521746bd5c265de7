from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


MasksByLayer = Dict[str, List[str]]


class ExceptionType(str, Enum):
    SKIP_TRAIT = "SKIP_TRAIT"
    OVERRIDE_MASK = "OVERRIDE_MASK"
    OVERRIDE_RECOVERY = "OVERRIDE_RECOVERY"


@dataclass(slots=True)
class Trait:
    """
    One NFT attribute as sent by the browser.

    Attributes:
        trait_type: category name, e.g. "Body Layer". Also the asset folder name.
        value: display name of the part, e.g. "Black Scarf".
    """
    trait_type: str
    value: str

    @classmethod
    def from_dict(cls, d: Any) -> "Trait":
        if not isinstance(d, dict):
            raise ValueError("trait must be a JSON object")
        trait_type = d.get("trait_type")
        value = d.get("value")
        return cls(
            trait_type="" if trait_type is None else str(trait_type),
            value="" if value is None else str(value),
        )

    @property
    def part_name(self) -> str:
        return self.value.strip()


@dataclass(slots=True)
class TokenExceptionRule:
    """
    Per-token override read from token_exceptions.json.

    `type` is kept as the raw string so unknown kinds survive loading;
    they never match an ExceptionType and therefore never act.
    """
    trait_type: str
    type: str
    layer: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TokenExceptionRule":
        return cls(
            trait_type=str(d.get("trait_type", "")),
            type=str(d.get("type", "")),
            layer=d.get("layer"),
            url=d.get("url"),
        )

    def is_(self, kind: ExceptionType) -> bool:
        return self.type == kind.value


@dataclass(slots=True)
class MaskResult:
    """Accumulator for one resolution pass."""
    masks_by_layer: MasksByLayer = field(default_factory=dict)
    face_mask_urls: List[str] = field(default_factory=list)

    def add(self, layer: str, url: str, *, face: bool = False) -> None:
        self.masks_by_layer.setdefault(layer, []).append(url)
        if face:
            self.face_mask_urls.append(url)

    def to_dict(self, *, include_face: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {"maskUrlsByLayer": self.masks_by_layer}
        if include_face:
            d["faceMaskUrls"] = self.face_mask_urls
        return d
