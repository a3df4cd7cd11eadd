"""Pixel dimensions of rendered images.

Raster output (PNG) is decoded with pymupdf.  When decoding fails, the
file is read as SVG and the ``width`` / ``height`` attributes of the root
``<svg>`` element are used; they must be expressed as ``<number>px``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from xml.etree import ElementTree

import pymupdf

from latex_images.markers import SVG_PX_DIMENSION_RE
from latex_images.models import ImageSize

_log = logging.getLogger("sizing")


class ImageSizeError(ValueError):
    """Raised when the image dimensions cannot be determined."""


def get_image_size(path: Path) -> ImageSize:
    """Return the pixel size of the image at *path*.

    Tries native raster decoding first, then falls back to
    :func:`get_svg_size`.
    """
    try:
        pix = pymupdf.Pixmap(str(path))
    except Exception as exc:
        _log.debug("    raster decode failed for %s (%s), trying SVG", path.name, exc)
        return get_svg_size(path)
    return ImageSize(width=pix.width, height=pix.height)


def _local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree adds to tag names."""
    return tag.rsplit("}", 1)[-1]


def get_svg_size(path: Path) -> ImageSize:
    """Read the pixel size declared on the root ``<svg>`` element.

    Raises
    ------
    ImageSizeError
        If the file is not XML, the root is not ``svg``, the ``width`` /
        ``height`` attributes are missing, or they are not in ``<n>px``
        form.
    """
    try:
        root = ElementTree.parse(path).getroot()
    except (ElementTree.ParseError, OSError) as exc:
        raise ImageSizeError(f'Output format unsupported "{path}". {exc}') from exc

    if _local_name(root.tag) != "svg":
        raise ImageSizeError(
            f"Output format unsupported \"{path}\". Can't find 'svg' element."
        )

    width_str = root.get("width")
    height_str = root.get("height")
    if width_str is None or height_str is None:
        raise ImageSizeError(
            f"Output format unsupported \"{path}\". "
            f"Can't find 'width' and 'height' attributes."
        )

    width_match = SVG_PX_DIMENSION_RE.match(width_str)
    height_match = SVG_PX_DIMENSION_RE.match(height_str)
    if width_match is None or height_match is None:
        raise ImageSizeError(
            f"Output format unsupported \"{path}\". Unknown format for "
            f"'width' and 'height' attributes -- should be in '[\\d]+px' format."
        )

    return ImageSize(
        width=int(width_match.group(1)),
        height=int(height_match.group(1)),
    )
