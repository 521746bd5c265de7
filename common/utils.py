from __future__ import annotations

import re
from typing import Optional

_SEPARATORS = re.compile(r"[-_.\s]")
_WHITESPACE = re.compile(r"\s")


def normalize_name(s: object) -> str:
    """Drop hyphens, underscores, periods and whitespace; lower-case."""
    if not isinstance(s, str):
        return ""
    return _SEPARATORS.sub("", s).lower()


def compact(s: str) -> str:
    """Remove all whitespace (used for substring checks like 'C2 Tech')."""
    return _WHITESPACE.sub("", s)


def alias_file_name(trait_type: str) -> str:
    """'Hair and Hat' -> 'mask_hair_and_hat_aliases.json'"""
    return f"mask_{_WHITESPACE.sub('_', trait_type.lower())}_aliases.json"


def mask_base_name(file_name: str, prefix: str = r".*_layer\d+_") -> Optional[str]:
    """
    Part name embedded in a mask filename, or None if it is not a PNG.

        head_layer1_Blue-Green.png -> 'Blue-Green'
        Blue-Green.png             -> 'Blue-Green'
    """
    m = re.match(rf"^(?:{prefix})?(.*)\.png$", file_name, flags=re.IGNORECASE)
    return m.group(1) if m else None


def layer_tag(file_name: str) -> str:
    """
    First two '_' components of the filename: head_layer1_Male.png -> 'head_layer1'.
    A name without '_' yields its stem.
    """
    parts = file_name.split("_")
    if len(parts) < 2:
        return file_name.rsplit(".", 1)[0]
    return f"{parts[0]}_{parts[1]}"
