"""Render one LaTeX match into an embeddable HTML fragment.

For each :class:`~latex_images.models.MatchSpan` the renderer:

1. **Decodes** the captured markup to plain text (:func:`plain_text`).
2. **Runs the toolchain** in a private temporary directory (DVI, then
   PNG/SVG).
3. **Measures** the image: alignment metrics from the ``.dims`` side-file
   and pixel size from the image itself.
4. **Builds** the ``<img>`` fragment from the configured template, with the
   image inlined as a data URI or stored in an
   :class:`~latex_images.store.ImageStore`.

Every failure, expected or not, is returned as a
:class:`~latex_images.models.RenderFailure`; nothing raised inside a match
escapes :meth:`LatexRenderer.render`.
"""

from __future__ import annotations

import base64
import hashlib
import html
import logging
import tempfile
from pathlib import Path

from latex_images.config import LatexConfig
from latex_images.markers import (
    BR_TAG_RE,
    HTML_TAG_RE,
    LATEX_ERROR_BEGIN,
    LATEX_ERROR_END,
)
from latex_images.metrics import MetricsError, read_metrics
from latex_images.models import (
    ImageMetrics,
    ImageSize,
    MatchSpan,
    RenderFailure,
    RenderOutcome,
    RenderSuccess,
)
from latex_images.sizing import ImageSizeError, get_image_size
from latex_images.store import ImageStore
from latex_images.toolchain import LatexToolchain

_log = logging.getLogger("renderer")

INCOMPLETE_INSTALL_MESSAGE = (
    "An unknown error occurred, make sure your TeX installation has all "
    "the required packages, or set it to install missing packages on-the-fly"
)
"""Reported when the toolchain claims success but produced no image."""

_TEMP_PREFIX = "latex-images-"


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def plain_text(markup: str) -> str:
    """Decode HTML-encoded markup captured from the document.

    ``<br>`` becomes a newline, other tags are dropped, entities are
    decoded and non-breaking spaces become regular spaces.

    >>> plain_text("a &lt; b<br>c&nbsp;d")
    'a < b\\nc d'
    """
    text = BR_TAG_RE.sub("\n", markup)
    text = HTML_TAG_RE.sub("", text)
    text = html.unescape(text)
    return text.replace("\xa0", " ")


def text_to_html(text: str) -> str:
    """Escape *text* for display inside an HTML element."""
    return html.escape(text).replace("\r\n", "\n").replace("\n", "<br>")


def encode_markup(source: str) -> str:
    """Base64-encode *source* (UTF-8) for the ``data-latex`` attribute."""
    return base64.b64encode(source.encode("utf-8")).decode("ascii")


def decode_markup(encoded: str) -> str:
    """Inverse of :func:`encode_markup`.

    Raises ``ValueError`` (``binascii.Error`` or ``UnicodeDecodeError``)
    for payloads that are not base64-encoded UTF-8.
    """
    raw = base64.b64decode("".join(encoded.split()), validate=True)
    return raw.decode("utf-8")


def _fmt(value: float) -> str:
    """Locale-independent short decimal (``0.3000`` → ``0.3``)."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def build_loader_script(element_id: str) -> str:
    """Script moving ``data-src`` into ``src`` once the image exists."""
    return (
        f'<script data-latex-for="{element_id}">'
        f'(function(){{var e=document.getElementById("{element_id}");'
        f"if(e&&e.getAttribute(\"data-src\")){{e.src=e.getAttribute(\"data-src\");}}}})();"
        f"</script>"
    )


def build_image_html(
    config: LatexConfig,
    size: ImageSize,
    metrics: ImageMetrics,
    payload: str,
    encoded: str,
    element_id: str,
) -> str:
    """Fill the image template's positional slots.

    ``{0}`` width (px), ``{1}`` total height (em), ``{2}`` payload,
    ``{3}`` base64 markup, ``{4}`` element id, ``{5}`` baseline offset (em).
    """
    return config.effective_image_template.format(
        size.width,
        _fmt(metrics.total_height),
        payload,
        encoded,
        element_id,
        _fmt(metrics.baseline_offset),
    )


def unique_element_id(
    content_hash: str,
    tag_name: str,
    occurrence: int,
    taken_ids: set[str],
) -> str:
    """Return ``latex-<hash12>-<tag>-<n>`` not yet in *taken_ids*; record it.

    ``n`` starts at *occurrence* and is bumped past ids already taken.
    """
    n = occurrence
    element_id = f"latex-{content_hash[:12]}-{tag_name}-{n}"
    while element_id in taken_ids:
        n += 1
        element_id = f"latex-{content_hash[:12]}-{tag_name}-{n}"
    taken_ids.add(element_id)
    return element_id


def build_error_html(config: LatexConfig, original_text: str, error: str) -> str:
    """Return *original_text* followed by an escaped error annotation.

    The annotation is wrapped in ``LATEX_ERROR`` markers so the next
    conversion can strip it.
    """
    annotation = config.error_template.format(text_to_html(error or ""))
    return original_text + LATEX_ERROR_BEGIN.wrap(LATEX_ERROR_END, annotation)


# ---------------------------------------------------------------------------
# LatexRenderer
# ---------------------------------------------------------------------------


class LatexRenderer:
    """Render matches through the TeX toolchain.

    Holds the configuration, the toolchain and the optional image store so
    callers only pass the match.

    Usage::

        renderer = LatexRenderer(config, store=DirectoryImageStore(root))
        outcome = renderer.render(span)
        if outcome.ok:
            html = outcome.fragment
    """

    def __init__(
        self,
        config: LatexConfig,
        toolchain: LatexToolchain | None = None,
        store: ImageStore | None = None,
    ) -> None:
        self._config = config
        self._toolchain = toolchain if toolchain is not None else LatexToolchain(config)
        self._store = store

    def render(
        self,
        span: MatchSpan,
        taken_ids: set[str] | None = None,
    ) -> RenderOutcome:
        """Render *span*; never raises.

        *taken_ids* holds the element ids already used in the document.
        The id of a successful fragment is chosen outside it and added to
        it, so ids stay unique across spans and conversion passes.
        """
        try:
            outcome = self._render(span, taken_ids if taken_ids is not None else set())
        except Exception as exc:
            outcome = RenderFailure(str(exc) or type(exc).__name__)

        if isinstance(outcome, RenderFailure):
            _log.warning("    ✗ %s: %s", _short(span.original_text), outcome.error)
        else:
            _log.debug("    ✓ %s", _short(span.original_text))
        return outcome

    def _render(self, span: MatchSpan, taken_ids: set[str]) -> RenderOutcome:
        code = plain_text(span.markup_code)

        with tempfile.TemporaryDirectory(prefix=_TEMP_PREFIX) as tmp:
            work_dir = Path(tmp)

            result = self._toolchain.generate_dvi(span.rule.tag, code, work_dir)
            if not result.ok:
                return RenderFailure(result.value)

            result = self._toolchain.generate_image(Path(result.value))
            if not result.ok:
                return RenderFailure(result.value)
            if not result.value.strip():
                return RenderFailure(INCOMPLETE_INSTALL_MESSAGE)

            image_path = Path(result.value)
            if not image_path.is_file():
                return RenderFailure(f'File "{image_path}" does not exist.')

            try:
                return self._build_success(image_path, span, code, taken_ids)
            except (MetricsError, ImageSizeError) as exc:
                return RenderFailure(str(exc))

    def _build_success(
        self,
        image_path: Path,
        span: MatchSpan,
        code: str,
        taken_ids: set[str],
    ) -> RenderSuccess:
        metrics = read_metrics(image_path)
        size = get_image_size(image_path)

        encoded = encode_markup(span.rule.surround(code))
        content_hash = hashlib.sha1(encoded.encode("ascii")).hexdigest()
        element_id = unique_element_id(
            content_hash, span.rule.tag.name, span.occurrence, taken_ids,
        )

        if self._store is not None:
            payload = self._store.resolve_or_register(content_hash, image_path)
        else:
            data = base64.b64encode(image_path.read_bytes()).decode("ascii")
            payload = f"data:{self._config.image_mime};base64,{data}"

        fragment = build_image_html(
            self._config, size, metrics, payload, encoded, element_id,
        )
        script = build_loader_script(element_id) if self._config.loader_script else ""
        return RenderSuccess(fragment=fragment, script=script)


def _short(text: str, limit: int = 40) -> str:
    """Single-line, truncated *text* for log messages."""
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit - 1] + "…"
