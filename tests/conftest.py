"""Shared test fixtures and helpers for latex-images tests."""

from __future__ import annotations

from pathlib import Path

import pymupdf

from latex_images.models import MatchSpan, RenderFailure, RenderSuccess
from latex_images.renderer import build_loader_script, encode_markup, plain_text
from latex_images.toolchain import ToolchainResult


def write_png(path: Path, width: int = 20, height: int = 10) -> Path:
    """Write a real blank PNG of the given pixel size to *path*."""
    pix = pymupdf.Pixmap(pymupdf.csRGB, pymupdf.IRect(0, 0, width, height), 0)
    pix.clear_with(255)
    pix.save(str(path))
    return path


class FakeToolchain:
    """Stands in for :class:`~latex_images.toolchain.LatexToolchain`.

    Writes a DVI placeholder, a ``.dims`` side-file and a real PNG into
    the work directory, exactly where the real toolchain would.

    Args:
        fail_codes: Markup codes for which ``generate_dvi`` fails.
        dims: Content of the metrics side-file (``None`` = not written).
        produce_image: When False, ``generate_image`` succeeds without
            producing a file.
    """

    def __init__(
        self,
        fail_codes: tuple[str, ...] = (),
        dims: str | None = "depth: 1.5pt\nheight: 8.0pt\n",
        produce_image: bool = True,
    ) -> None:
        self.fail_codes = fail_codes
        self.dims = dims
        self.produce_image = produce_image
        self.codes: list[str] = []

    def generate_dvi(self, tag, code, work_dir):
        self.codes.append(code)
        if code in self.fail_codes:
            return ToolchainResult(False, "Undefined control sequence. (l.7 \\foo)")
        dvi_path = work_dir / "latex.dvi"
        dvi_path.write_bytes(b"dvi")
        if self.dims is not None:
            (work_dir / "latex.dims").write_text(self.dims, encoding="utf-8")
        return ToolchainResult(True, str(dvi_path))

    def generate_image(self, dvi_path):
        if not self.produce_image:
            return ToolchainResult(True, "")
        return ToolchainResult(True, str(write_png(dvi_path.with_suffix(".png"))))


class FakeRenderer:
    """Renderer returning predictable fragments without any toolchain.

    Fragments look like real ones (``data-latex`` payload and ``id``) so
    they can be converted back.  Codes listed in *fail_codes* produce a
    :class:`RenderFailure`.
    """

    def __init__(self, fail_codes: tuple[str, ...] = (), scripts: bool = False) -> None:
        self.fail_codes = fail_codes
        self.scripts = scripts
        self.spans: list[MatchSpan] = []

    def render(self, span: MatchSpan, taken_ids: set[str] | None = None):
        self.spans.append(span)
        code = plain_text(span.markup_code)
        if code in self.fail_codes:
            return RenderFailure(f"cannot render {code}")
        element_id = f"img-{span.rule.tag.name}-{len(self.spans)}-{span.occurrence}"
        encoded = encode_markup(span.rule.surround(code))
        fragment = f'<img src="x.png" data-latex="{encoded}" id="{element_id}">'
        script = build_loader_script(element_id) if self.scripts else ""
        return RenderSuccess(fragment=fragment, script=script)
