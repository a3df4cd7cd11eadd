"""LaTeX ⇄ image conversion of an HTML document selection.

:class:`LatexDocument` owns the full HTML text and the editable selection
inside it.  Each conversion rewrites the selection and splices it back
into the document:

- :meth:`LatexDocument.convert_latex_to_images` renders every markup span
  matched by the configured tag rules and replaces it with an ``<img>``
  fragment (or an inline error annotation when rendering fails).
- :meth:`LatexDocument.convert_images_to_latex` decodes the markup stored
  in every embedded image and puts the escaped source text back.

All edits are computed as :class:`~latex_images.models.Replacement` spans
against a baseline captured before any change and applied in one pass, so
duplicate spans are each replaced at their own position.
"""

from __future__ import annotations

import html
import logging
import re

from latex_images.config import LatexConfig
from latex_images.markers import (
    ELEMENT_ID_RE,
    LATEX_ERROR_BLOCK_RE,
    LATEX_IMAGE_RE,
    LOADER_SCRIPT_RE,
    reference_section_re,
)
from latex_images.models import (
    MatchSpan,
    RenderSuccess,
    Replacement,
    TagRule,
)
from latex_images.renderer import LatexRenderer, build_error_html, decode_markup
from latex_images.store import ImageStore

_log = logging.getLogger("document")


# ---------------------------------------------------------------------------
# Span helpers (pure functions)
# ---------------------------------------------------------------------------


def _gaps(length: int, claimed: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Return the unclaimed ``(start, end)`` ranges of ``[0, length)``."""
    gaps: list[tuple[int, int]] = []
    pos = 0
    for start, end in sorted(claimed):
        if start > pos:
            gaps.append((pos, start))
        pos = max(pos, end)
    if pos < length:
        gaps.append((pos, length))
    return gaps


def find_spans(text: str, rules: tuple[TagRule, ...] | list[TagRule]) -> list[MatchSpan]:
    """Find the markup spans of every rule in *text*.

    Rules are evaluated in order.  A rule only searches the text left
    unclaimed by earlier rules, as if their matches had already been
    replaced.  Offsets always refer to *text* itself.

    Each span records its occurrence rank: the N-th match of the same
    ``original_text`` within its rule gets ``occurrence == N``.

    Returns spans grouped by rule, in document order within a rule.
    """
    claimed: list[tuple[int, int]] = []
    spans: list[MatchSpan] = []

    for rule in rules:
        counts: dict[str, int] = {}
        rule_spans: list[MatchSpan] = []
        for gap_start, gap_end in _gaps(len(text), claimed):
            for m in rule.pattern.finditer(text, gap_start, gap_end):
                if m.end() == m.start():
                    continue
                original = m.group(0)
                counts[original] = counts.get(original, 0) + 1
                rule_spans.append(MatchSpan(
                    start=m.start(),
                    end=m.end(),
                    original_text=original,
                    markup_code=m.group(1) or "",
                    occurrence=counts[original],
                    rule=rule,
                ))
        claimed.extend((s.start, s.end) for s in rule_spans)
        spans.extend(rule_spans)

    return spans


def apply_replacements(text: str, replacements: list[Replacement]) -> str:
    """Rewrite *text* in a single pass.

    Raises
    ------
    ValueError
        If two replacements overlap or one falls outside *text*.
    """
    if not replacements:
        return text

    parts: list[str] = []
    pos = 0
    for rep in sorted(replacements, key=lambda r: (r.start, r.end)):
        if rep.start < pos or rep.end < rep.start or rep.end > len(text):
            raise ValueError(
                f"Invalid replacement span [{rep.start}, {rep.end}) "
                f"(previous end {pos}, text length {len(text)})"
            )
        parts.append(text[pos:rep.start])
        parts.append(rep.text)
        pos = rep.end
    parts.append(text[pos:])
    return "".join(parts)


def split_reference_section(
    text: str,
    pattern: re.Pattern[str],
) -> tuple[str, str]:
    """Split *text* into ``(body, references)``.

    ``references`` is the trailing section matched by *pattern* (empty
    when there is none); ``body + references == text``.
    """
    m = pattern.search(text)
    if m is None:
        return text, ""
    return text[:m.start()], text[m.start():]


def relocate_loader_scripts(text: str) -> str:
    """Move every companion loader script to the end of *text*.

    Scripts keep their relative order; everything else is untouched.
    """
    scripts = [m.group(0) for m in LOADER_SCRIPT_RE.finditer(text)]
    if not scripts:
        return text
    return LOADER_SCRIPT_RE.sub("", text) + "".join(scripts)


def escape_latex(source: str) -> str:
    """Escape ``&``, ``<`` and ``>`` so decoded markup stays text."""
    return html.escape(source, quote=False)


# ---------------------------------------------------------------------------
# LatexDocument
# ---------------------------------------------------------------------------


class LatexDocument:
    """An HTML document with an editable selection to convert.

    Created per conversion request from the host's HTML and optional
    selection (defaults to the whole document).  Conversions may be
    chained on one instance: each call works on the current selection and
    leaves the converted selection in place for the next call.

    Usage::

        doc = LatexDocument(config, html)
        rendered_html = doc.convert_latex_to_images()
        source_html = doc.convert_images_to_latex()
    """

    def __init__(
        self,
        config: LatexConfig,
        html_text: str,
        selection: str | None = None,
        *,
        renderer: LatexRenderer | None = None,
        store: ImageStore | None = None,
    ) -> None:
        self._config = config
        self._html = html_text
        self._selection = selection if selection is not None else html_text
        self._renderer = renderer if renderer is not None else LatexRenderer(
            config, store=store,
        )
        self._reference_re = reference_section_re(config.reference_marker)

    @property
    def html(self) -> str:
        """The full document text."""
        return self._html

    @property
    def selection(self) -> str:
        """The editable region (a substring of :attr:`html`)."""
        return self._selection

    # -- public API --------------------------------------------------------

    def convert_latex_to_images(self) -> str:
        """Render all LaTeX spans in the selection; return the full HTML.

        Steps:

        1. Strip error annotations left by a previous conversion.
        2. Hold aside the trailing reference section.
        3. Match every tag rule (in order) against the cleaned baseline.
        4. Render each span; failures become inline error annotations.
           Element ids already present in the document are never reused.
        5. Apply all replacements in one pass, move loader scripts to the
           end, then re-append the reference section.

        Raises
        ------
        ValueError
            If the selection is not part of the document.
        """
        self._check_selection()

        cleaned = LATEX_ERROR_BLOCK_RE.sub("", self._selection)
        body, references = split_reference_section(cleaned, self._reference_re)

        spans = find_spans(body, self._config.rules)
        if not spans:
            _log.debug("  No LaTeX spans found")
            return self._commit(cleaned)

        _log.info("  Rendering %d LaTeX span(s)...", len(spans))

        taken_ids = set(ELEMENT_ID_RE.findall(self._html))
        replacements: list[Replacement] = []
        scripts: list[str] = []
        failed = 0
        for span in spans:
            outcome = self._renderer.render(span, taken_ids)
            if isinstance(outcome, RenderSuccess):
                replacements.append(Replacement(span.start, span.end, outcome.fragment))
                if outcome.script:
                    scripts.append(outcome.script)
            else:
                failed += 1
                replacements.append(Replacement(
                    span.start, span.end,
                    build_error_html(self._config, span.original_text, outcome.error),
                ))

        new_body = apply_replacements(body, replacements)
        if scripts:
            new_body = relocate_loader_scripts(new_body + "".join(scripts))

        if failed:
            _log.warning(
                "  LaTeX → images: %d rendered, %d failed",
                len(spans) - failed, failed,
            )
        else:
            _log.info("  LaTeX → images: %d rendered", len(spans))

        return self._commit(new_body + references)

    def convert_images_to_latex(self) -> str:
        """Replace every embedded LaTeX image with its escaped source.

        Each distinct payload is decoded once.  Every occurrence of a
        fragment is replaced, including duplicates.  Loader scripts that
        targeted a converted image are removed.  Fragments whose payload
        cannot be decoded are left as they are.

        Raises
        ------
        ValueError
            If the selection is not part of the document.
        """
        self._check_selection()
        text = self._selection

        decoded: dict[str, str | None] = {}
        replacements: list[Replacement] = []
        converted_ids: set[str] = set()

        for m in LATEX_IMAGE_RE.finditer(text):
            payload = m.group(1)
            if payload not in decoded:
                try:
                    decoded[payload] = escape_latex(decode_markup(payload))
                except ValueError as exc:
                    _log.warning("  Skipping image with undecodable LaTeX: %s", exc)
                    decoded[payload] = None
            latex = decoded[payload]
            if latex is None:
                continue
            replacements.append(Replacement(m.start(), m.end(), latex))
            id_match = ELEMENT_ID_RE.search(m.group(0))
            if id_match:
                converted_ids.add(id_match.group(1))

        if not replacements:
            _log.debug("  No LaTeX images found")
            return self._commit(text)

        converted = len(replacements)
        for m in LOADER_SCRIPT_RE.finditer(text):
            if m.group(1) in converted_ids:
                replacements.append(Replacement(m.start(), m.end(), ""))

        _log.info("  Images → LaTeX: %d image(s) converted", converted)
        return self._commit(apply_replacements(text, replacements))

    # -- internal methods --------------------------------------------------

    def _check_selection(self) -> None:
        if self._selection not in self._html:
            raise ValueError("Selection is not part of the document")

    def _commit(self, new_selection: str) -> str:
        """Splice *new_selection* into the document and make it current."""
        if new_selection != self._selection:
            self._html = self._html.replace(self._selection, new_selection, 1)
            self._selection = new_selection
        return self._html
