"""Centralized marker and pattern definitions for LaTeX/image conversion.

Single source of truth for every HTML-comment marker and composite regex
used when scanning an HTML fragment.  No other module hard-codes these
patterns.

Markers are :class:`MarkerDef` instances; the class derives the literal
comment string and a compiled regex from the tag name.

Usage::

    from latex_images.markers import LATEX_ERROR_BEGIN, LATEX_ERROR_BLOCK_RE

    LATEX_ERROR_BEGIN.marker            # '<!-- LATEX_ERROR_BEGIN -->'
    LATEX_ERROR_BEGIN.re.search(text)   # tolerant whitespace match
    LATEX_ERROR_BLOCK_RE.sub("", html)  # strip all error annotations
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property


@dataclass(frozen=True)
class MarkerDef:
    """HTML-comment marker definition.

    Parameters
    ----------
    tag:
        Upper-case token embedded in the HTML comment,
        e.g. ``"LATEX_ERROR_BEGIN"``.
    """

    tag: str

    @property
    def marker(self) -> str:
        """Literal marker string.

        >>> LATEX_ERROR_END.marker
        '<!-- LATEX_ERROR_END -->'
        """
        return f"<!-- {self.tag} -->"

    @cached_property
    def re(self) -> re.Pattern[str]:
        """Regex matching the marker with tolerant whitespace (no groups).

        >>> REFERENCES_BEGIN.re.search('<!--REFERENCES_BEGIN-->') is not None
        True
        """
        return re.compile(rf"<!--\s*{re.escape(self.tag)}\s*-->")

    def wrap(self, end: MarkerDef, content: str) -> str:
        """Surround *content* with this marker and *end*."""
        return f"{self.marker}{content}{end.marker}"


# ---------------------------------------------------------------------------
# Marker instances
# ---------------------------------------------------------------------------

LATEX_ERROR_BEGIN = MarkerDef("LATEX_ERROR_BEGIN")
"""Start of an inline error annotation emitted for a failed render."""

LATEX_ERROR_END = MarkerDef("LATEX_ERROR_END")
"""End of an inline error annotation."""

REFERENCES_BEGIN = MarkerDef("REFERENCES_BEGIN")
"""Start of the trailing reference section.

Everything from this marker to the end of the selection is held aside
during LaTeX → image conversion and re-appended verbatim.
"""

# ---------------------------------------------------------------------------
# Composite regexes
# ---------------------------------------------------------------------------

LATEX_ERROR_BLOCK_RE = re.compile(
    rf"<!--\s*{re.escape(LATEX_ERROR_BEGIN.tag)}\s*-->"
    r".*?"
    rf"<!--\s*{re.escape(LATEX_ERROR_END.tag)}\s*-->",
    re.DOTALL,
)
"""Regex matching a full error annotation (begin through end)."""


def reference_section_re(marker: str | None = None) -> re.Pattern[str]:
    """Return a regex matching a trailing reference section.

    Matches from the first occurrence of the marker to the end of the
    text.  *marker* is a regex for the start of the section; defaults to
    the :data:`REFERENCES_BEGIN` comment.
    """
    start = marker if marker else REFERENCES_BEGIN.re.pattern
    return re.compile(rf"(?:{start}).*\Z", re.DOTALL | re.IGNORECASE)


REFERENCE_SECTION_RE = reference_section_re()
"""Default trailing reference-section regex."""

LATEX_IMAGE_RE = re.compile(
    r"<img\b[^>]*?\bdata-latex=\"([A-Za-z0-9+/=\s]*)\"[^>]*>",
    re.IGNORECASE,
)
"""Regex matching an embedded LaTeX image element.

Captures ``(base64_markup)`` from the ``data-latex`` attribute.
"""

ELEMENT_ID_RE = re.compile(r"(?<![\w-])id=\"([^\"]*)\"", re.IGNORECASE)
"""Regex capturing the ``id`` attribute of an element."""

LOADER_SCRIPT_RE = re.compile(
    r"<script\b[^>]*\bdata-latex-for=\"([^\"]+)\"[^>]*>.*?</script>",
    re.DOTALL | re.IGNORECASE,
)
"""Regex matching a companion loader script.

Captures ``(target_element_id)``.
"""

SVG_PX_DIMENSION_RE = re.compile(r"^\s*(\d+)(?:\.\d+)?px\s*$")
"""Regex matching an SVG ``<number>px`` dimension; captures the integer part."""

SVG_ROOT_TAG_RE = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)
"""Regex matching the opening tag of the root ``<svg>`` element."""

SVG_PT_DIMENSION_RE = re.compile(r"(?<![\w-])(width|height)=([\"'])(\d+(?:\.\d+)?)pt\2")
"""Regex matching a ``width`` or ``height`` attribute given in points."""

BR_TAG_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
"""Regex matching ``<br>`` line breaks inside captured markup."""

HTML_TAG_RE = re.compile(r"<[^>]+>")
"""Regex matching any HTML tag (used to flatten captured markup)."""
