from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path


log = logging.getLogger(__name__)

_PNG_DATA_URI = re.compile(r"^data:image/png;base64,")


class DebugImageError(ValueError):
    pass


class DebugImageWriter:
    """
    Saves browser-rendered PNG snapshots (base64 / data URI) under one folder.
    Concurrent writes to the same name are not coordinated; the last one wins.
    """

    def __init__(self, out_dir: Path):
        self.out_dir = Path(out_dir)

    def ensure_dir(self) -> None:
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def target(self, filename: str) -> Path:
        if "\x00" in filename:
            raise DebugImageError(f"invalid filename: {filename!r}")
        base = self.out_dir.resolve()
        try:
            path = (base / filename).resolve()
        except (ValueError, OSError) as e:
            raise DebugImageError(f"invalid filename: {filename!r}") from e
        if path == base or base not in path.parents:
            raise DebugImageError(f"invalid filename: {filename!r}")
        return path

    @staticmethod
    def decode(image_data: str) -> bytes:
        payload = _PNG_DATA_URI.sub("", image_data, count=1)
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise DebugImageError("imageData is not valid base64") from e

    def save(self, filename: str, image_data: str) -> Path:
        """Decode and write; raises DebugImageError for bad input, OSError on write failure."""
        path = self.target(filename)
        data = self.decode(image_data)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.info("Saved debug image %s (%d bytes)", filename, len(data))
        return path
