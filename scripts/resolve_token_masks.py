#!/usr/bin/env python3
"""
Resolve mask layers for a token without running the server.

Traits come from the metadata endpoint (by token id) or from a local JSON
file holding either the metadata document or a bare trait array.

Examples:
  python scripts/resolve_token_masks.py --token 123
  python scripts/resolve_token_masks.py --token 123 --traits-file traits.json --recovery
  python scripts/resolve_token_masks.py --traits-file traits.json --config config/params.yaml
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.logging_setup import get_logger, setup_logging
from common.types import Trait
from mask_server.config import load_settings
from mask_server.metadata import MetadataFetchError, MetadataService
from mask_server.resolver import AssetRootMissing, build_resolver


log = get_logger("resolve_token_masks")


def _load_traits_file(path: str) -> List[Dict[str, Any]]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("traits") or []
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a trait array or a metadata object")
    return data


def main() -> int:
    ap = argparse.ArgumentParser(description="Resolve layered mask URLs for a token")
    ap.add_argument("--token", help="token id (used for metadata and per-token exceptions)")
    ap.add_argument("--traits-file", help="local JSON instead of fetching metadata")
    ap.add_argument("--config", default=None, help="settings YAML (default: config/params.yaml)")
    ap.add_argument("--recovery", action="store_true", help="also resolve recovery masks")
    ap.add_argument("--log-level", default=None)
    args = ap.parse_args()

    setup_logging(args.log_level)
    if not args.token and not args.traits_file:
        ap.error("one of --token / --traits-file is required")

    S = load_settings(args.config)
    if args.traits_file:
        raw = _load_traits_file(args.traits_file)
    else:
        try:
            raw = MetadataService(S.metadata_base_url, timeout=S.metadata_timeout_s).get_traits(args.token)
        except MetadataFetchError as e:
            log.error("Metadata fetch failed (%d): %s", e.status_code, e)
            return 1

    traits = [Trait.from_dict(d) for d in raw]
    resolver = build_resolver(S)
    out: Dict[str, Any] = {"tokenId": args.token, "traits": raw}
    try:
        out.update(resolver.resolve(traits, args.token).to_dict())
        if args.recovery:
            out["recovery"] = resolver.resolve_recovery(traits, args.token).to_dict(include_face=False)
    except AssetRootMissing as e:
        log.error("Asset root not found: %s", e)
        return 2

    print(json.dumps(out, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
