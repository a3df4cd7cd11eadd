"""Data types shared by the conversion modules.

Tag rules and rendering profiles come from configuration; match spans,
render outcomes and replacements are transient and scoped to one
conversion call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class LatexTag:
    """Rendering profile controlling how markup is wrapped for TeX.

    ``tex_begin`` / ``tex_end`` surround the code inside the generated TeX
    document (e.g. ``$`` / ``$`` for inline math).
    """

    name: str
    tex_begin: str
    tex_end: str

    def surround(self, code: str) -> str:
        """Wrap *code* in this profile's TeX delimiters."""
        return f"{self.tex_begin}{code}{self.tex_end}"


@dataclass(frozen=True)
class TagRule:
    """Association between a document delimiter pattern and a profile.

    ``pattern`` must capture the inner markup in group 1.  ``open`` and
    ``close`` are the literal document delimiters; they rebuild the source
    text stored inside a rendered fragment so that reverting an image
    yields text this rule matches again.
    """

    pattern: re.Pattern[str]
    open: str
    close: str
    tag: LatexTag

    @classmethod
    def from_delimiters(cls, open: str, close: str, tag: LatexTag) -> TagRule:
        """Build a rule matching ``open ... close`` (non-greedy, multi-line)."""
        pattern = re.compile(
            rf"{re.escape(open)}(.+?){re.escape(close)}",
            re.DOTALL,
        )
        return cls(pattern=pattern, open=open, close=close, tag=tag)

    def surround(self, code: str) -> str:
        """Wrap *code* in the document delimiters."""
        return f"{self.open}{code}{self.close}"


@dataclass(frozen=True)
class MatchSpan:
    """One occurrence of a tag rule inside the editable region."""

    start: int
    """Offset of the match in the conversion baseline."""
    end: int
    """End offset (exclusive)."""
    original_text: str
    """Full matched text including delimiters."""
    markup_code: str
    """Captured inner markup, still HTML-encoded as found."""
    occurrence: int
    """1-based rank of ``original_text`` among this rule's matches."""
    rule: TagRule


@dataclass(frozen=True)
class RenderSuccess:
    """Successful render: an embeddable fragment."""

    fragment: str
    """``<img>`` element replacing the match."""
    script: str = ""
    """Companion loader script (empty unless loader scripts are enabled)."""

    ok = True


@dataclass(frozen=True)
class RenderFailure:
    """Failed render: a human-readable reason."""

    error: str

    ok = False


RenderOutcome = RenderSuccess | RenderFailure


@dataclass(frozen=True)
class ImageMetrics:
    """Vertical alignment data for a rendered image.

    ``depth`` and ``height`` are the raw values in points read from the
    metrics side-file; the scaled values are in ``em``.
    """

    depth: float
    height: float
    baseline_offset: float
    """Scaled depth (with padding), used as ``vertical-align`` offset."""
    total_height: float
    """Scaled ``height + depth``."""


@dataclass(frozen=True)
class ImageSize:
    """Pixel dimensions of a rendered image."""

    width: int
    height: int


@dataclass(frozen=True)
class Replacement:
    """A span replacement computed against an unmodified baseline."""

    start: int
    end: int
    text: str
