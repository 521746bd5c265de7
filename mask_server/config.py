from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


METADATA_BASE_URL = "https://nft.financie.io/metadata/KRG/"
DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 3000},
    "paths": {
        "root": ".",
        "assets": "assets",
        "recovery_assets": "recovery_assets",
        "alias_dir": ".",
        "token_exceptions": "token_exceptions.json",
        "debug_output": "debug_output",
        "index_page": "static/index.html",
        "rules": "config/exception_rules.yaml",
    },
    "metadata": {"base_url": METADATA_BASE_URL, "timeout_s": 10.0},
    "proxy": {
        "allowed_hosts": ["nft.financie.io", "*.financie.io"],
        "timeout_s": 15.0,
        "chunk_size": 64 * 1024,
    },
    "cors": {"allow_origins": ["*"]},
}


def _merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


@dataclass
class Settings:
    root: Path
    assets_dir: Path
    recovery_assets_dir: Path
    alias_dir: Path
    token_exceptions_path: Path
    debug_output_dir: Path
    index_page: Path
    rules_path: Path
    metadata_base_url: str = METADATA_BASE_URL
    metadata_timeout_s: float = 10.0
    proxy_allowed_hosts: List[str] = field(default_factory=list)
    proxy_timeout_s: float = 15.0
    proxy_chunk_size: int = 64 * 1024
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 3000

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "Settings":
        P = _merge(DEFAULTS, params)
        paths = P["paths"]
        root = Path(paths["root"])

        def rel(key: str) -> Path:
            p = Path(paths[key])
            return p if p.is_absolute() else root / p

        return cls(
            root=root,
            assets_dir=rel("assets"),
            recovery_assets_dir=rel("recovery_assets"),
            alias_dir=rel("alias_dir"),
            token_exceptions_path=rel("token_exceptions"),
            debug_output_dir=rel("debug_output"),
            index_page=rel("index_page"),
            rules_path=rel("rules"),
            metadata_base_url=str(P["metadata"]["base_url"]),
            metadata_timeout_s=float(P["metadata"]["timeout_s"]),
            proxy_allowed_hosts=[str(h) for h in P["proxy"].get("allowed_hosts") or []],
            proxy_timeout_s=float(P["proxy"]["timeout_s"]),
            proxy_chunk_size=int(P["proxy"]["chunk_size"]),
            cors_origins=[str(o) for o in P["cors"].get("allow_origins") or []],
            host=str(P["server"]["host"]),
            port=int(os.environ.get("PORT") or P["server"]["port"]),
        )


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Read YAML settings; a missing file means built-in defaults.
    Path precedence: explicit arg, env KIRINUKI_CONFIG, config/params.yaml.
    """
    path = path or os.environ.get("KIRINUKI_CONFIG") or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return Settings.from_dict({})
    with open(path, "r", encoding="utf-8") as f:
        return Settings.from_dict(yaml.safe_load(f) or {})
