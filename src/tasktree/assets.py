"""Resolution of external assets (images, text files) referenced by nodes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import AssetError

logger = logging.getLogger(__name__)


class AssetResolver:
    """Resolves asset paths relative to a task directory.

    Missing assets are reported the first time a node uses them, not when
    the tree is built.
    """

    def __init__(self, root: Optional[Union[str, Path]] = None) -> None:
        self.root = Path(root) if root is not None else Path.cwd()
        self._resolved: Dict[str, Path] = {}

    def resolve(self, name: str) -> Path:
        """Absolute path of an existing asset.

        Raises:
            AssetError: If the file does not exist (E7001).
        """
        if name in self._resolved:
            return self._resolved[name]

        path = Path(name)
        if not path.is_absolute():
            path = self.root / path

        if not path.is_file():
            raise AssetError(f"Asset not found: '{name}' (looked in {self.root})")

        logger.debug(f"Resolved asset '{name}' -> {path}")
        self._resolved[name] = path
        return path

    def read_text(self, name: str) -> str:
        path = self.resolve(name)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise AssetError(f"Cannot read asset '{name}': {e}", code="E7002") from e


__all__ = ["AssetResolver"]
