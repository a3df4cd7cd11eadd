"""Vertical alignment metrics for rendered LaTeX images.

The TeX source written by :mod:`latex_images.toolchain` records the depth
and height of the typeset box in a ``.dims`` side-file next to the image::

    depth: 1.5pt
    height: 8.0pt

The values are converted to ``em`` so the image sits on the text baseline
(``vertical-align: -<depth>em``) at any font size.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from latex_images.models import ImageMetrics

_log = logging.getLogger("metrics")

METRICS_SUFFIX = ".dims"
"""Extension of the metrics side-file (same base name as the image)."""

MTPRO2_FACTOR = 2.0 / 2.32
"""Empirical pt → em correction for MathTime Pro 2 glyphs."""

EM_PER_PT = 0.2554 / 1.1 * MTPRO2_FACTOR
"""Scale applied to both depth and height (matches the rasterizer's
point-to-pixel convention for the reference font family)."""

DEPTH_PADDING_PT = 0.1
"""Added to the depth before scaling."""

_DEPTH_RE = re.compile(r"depth:\s*(\d*\.?\d*)pt")
_HEIGHT_RE = re.compile(r"height:\s*(\d*\.?\d*)pt")


class MetricsError(ValueError):
    """Raised when the metrics side-file is missing or malformed."""


def metrics_path(image_path: Path) -> Path:
    """Return the metrics side-file path for *image_path*."""
    return image_path.with_suffix(METRICS_SUFFIX)


def _parse_value(pattern: re.Pattern[str], name: str, text: str) -> float:
    m = pattern.search(text)
    if m is None or not m.group(1) or m.group(1) == ".":
        raise MetricsError(f"No '{name}:<number>pt' entry in metrics file")
    # float() always uses '.' as decimal separator, whatever the locale.
    return float(m.group(1))


def parse_metrics(text: str) -> tuple[float, float]:
    """Parse raw ``(depth, height)`` in points from side-file *text*."""
    depth = _parse_value(_DEPTH_RE, "depth", text)
    height = _parse_value(_HEIGHT_RE, "height", text)
    return depth, height


def scale_metrics(depth: float, height: float) -> ImageMetrics:
    """Apply the fixed scale factor and depth padding."""
    return ImageMetrics(
        depth=depth,
        height=height,
        baseline_offset=(depth + DEPTH_PADDING_PT) * EM_PER_PT,
        total_height=(height + depth) * EM_PER_PT,
    )


def read_metrics(image_path: Path) -> ImageMetrics:
    """Read and scale the metrics recorded for *image_path*.

    Raises
    ------
    MetricsError
        If the side-file does not exist or lacks a depth/height entry.
    """
    path = metrics_path(image_path)
    if not path.is_file():
        raise MetricsError(f'File "{path}" does not exist.')

    depth, height = parse_metrics(path.read_text(encoding="utf-8"))
    metrics = scale_metrics(depth, height)
    _log.debug(
        "    metrics %s: depth=%.2fpt height=%.2fpt -> %.4fem / %.4fem",
        path.name, depth, height,
        metrics.total_height, metrics.baseline_offset,
    )
    return metrics
