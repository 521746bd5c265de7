from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

import pytest

from common.types import Trait
from mask_server.config import Settings
from mask_server.resolver import MaskResolver, build_resolver

PNG = b"\x89PNG\r\n\x1a\n"

ASSET_FILES = {
    "Face": ["head_layer1_Male.png", "head_layer1_Female.png"],
    "Exception": [
        "head_layer2_Male.png",
        "head_layer1_Male_Powersuit.png",
        "head_layer1_Female_Powersuit.png",
    ],
    "Head": ["head_layer3_Cap.png"],
    "Accessory Neck": ["neck_layer1_X.png"],
    "Hair and Hat": ["hair_layer2_Blue-Green.png", "notes.txt"],
    "Clothes": ["body_layer1_C2Tech_Black.png"],
}

RECOVERY_FILES = {
    "Body Layer": ["recovery_layer2_Black Scarf.png", "recovery_layer2_Tank Top.png"],
    "Face Accessories": ["recovery_layer2_Glasses.png"],
    "Head": ["recovery_layer1_Cap.png"],
    "Accessory Neck": ["recovery_layer1_X.png"],
    "Face": ["recovery_layer1_Male.png"],
}


def T(trait_type: str, value: str) -> Trait:
    return Trait(trait_type=trait_type, value=value)


def write_tree(root: Path, files: Dict[str, List[str]]) -> None:
    for folder, names in files.items():
        d = root / folder
        d.mkdir(parents=True, exist_ok=True)
        for name in names:
            (d / name).write_bytes(PNG)


def write_exceptions(root: Path, data: Dict) -> Path:
    path = root / "token_exceptions.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    write_tree(tmp_path / "assets", ASSET_FILES)
    write_tree(tmp_path / "recovery_assets", RECOVERY_FILES)
    return tmp_path


@pytest.fixture
def settings(project_root: Path) -> Settings:
    # no config/exception_rules.yaml under tmp root -> built-in rules
    return Settings.from_dict({"paths": {"root": str(project_root)}})


@pytest.fixture
def resolver(settings: Settings) -> MaskResolver:
    return build_resolver(settings)
