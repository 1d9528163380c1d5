"""
Asset access for LUT files.

Resolves textual asset keys (e.g. "luts/teal_orange.cube") against one or more
asset directories and returns the file contents as text.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from errors import AssetNotFoundError, IOFailureError

logger = logging.getLogger(__name__)


class AssetResolver:
    """
    Looks up asset keys in a list of root directories.

    Usage:
        assets = AssetResolver(["assets"])
        text = assets.read_text("luts/film.cube")
    """

    def __init__(self, roots: Optional[Iterable[Union[str, Path]]] = None,
                 encoding: str = "utf-8"):
        """
        Initialize the resolver.

        Args:
            roots: Directories searched in order (defaults to the working directory)
            encoding: Text encoding of asset files
        """
        self.roots: List[Path] = [Path(r).resolve() for r in (roots or [os.getcwd()])]
        self.encoding = encoding
        self._text_cache: Dict[Path, str] = {}

    def resolve(self, key: str) -> Path:
        """
        Map an asset key to an existing file.

        Raises:
            AssetNotFoundError: if the key is empty, escapes the roots,
                                or matches no file
        """
        if not key or os.path.isabs(key):
            raise AssetNotFoundError(f"Invalid asset key: {key!r}")

        for root in self.roots:
            candidate = (root / key).resolve()
            if root != candidate and root not in candidate.parents:
                raise AssetNotFoundError(f"Asset key escapes asset directory: {key!r}")
            if candidate.is_file():
                return candidate

        searched = ", ".join(str(r) for r in self.roots)
        raise AssetNotFoundError(f"Asset not found: {key} (searched {searched})")

    def read_text(self, key: str) -> str:
        """
        Return the full text of an asset.

        Raises:
            AssetNotFoundError: if the key does not resolve
            IOFailureError: if the file cannot be read or decoded
        """
        path = self.resolve(key)
        if path in self._text_cache:
            return self._text_cache[path]

        try:
            text = path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise IOFailureError(f"Failed to read asset {key}: {e}") from e

        self._text_cache[path] = text
        logger.debug(f"Loaded asset: {key} ({path})")
        return text
