"""Deduplicated storage for rendered images.

The renderer embeds images either inline (data URI) or by reference into
an :class:`ImageStore`.  Stores are passed in explicitly; there is no
process-wide registry.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

_log = logging.getLogger("store")


@runtime_checkable
class ImageStore(Protocol):
    """Storage addressed by a hash of the encoded markup."""

    def resolve_or_register(self, content_hash: str, image_path: Path) -> str:
        """Store *image_path* under *content_hash*; return the reference
        to embed in the ``src`` attribute."""
        ...


class DirectoryImageStore:
    """Stores images as ``<root>/<content_hash><suffix>``.

    Rendering the same markup twice resolves to the same file, which is
    overwritten with the newest render.

    Usage::

        store = DirectoryImageStore(Path("page.images"))
        src = store.resolve_or_register("3f2a...", Path("/tmp/x/latex.png"))
    """

    def __init__(self, root: Path, prefix: str | None = None) -> None:
        self._root = root
        self._prefix = prefix

    @property
    def root(self) -> Path:
        return self._root

    def resolve_or_register(self, content_hash: str, image_path: Path) -> str:
        self._root.mkdir(parents=True, exist_ok=True)
        target = self._root / f"{content_hash}{image_path.suffix}"
        existed = target.exists()
        shutil.copyfile(image_path, target)
        _log.debug(
            "    %s %s", "updated" if existed else "registered", target.name,
        )
        if self._prefix is not None:
            return f"{self._prefix}/{target.name}" if self._prefix else target.name
        return str(target)
