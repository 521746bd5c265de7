"""
KIRINUKI RG mask server

- Resolves NFT traits to layered PNG mask URLs from `assets/{TraitType}/`
  and `recovery_assets/{TraitType}/`
- Applies global trait-combination rules and per-token exceptions
- Proxies token metadata / images and stores debug snapshots
"""
