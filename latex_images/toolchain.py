"""External TeX toolchain invocation.

Two blocking stages, each reporting a :class:`ToolchainResult`:

1. :meth:`LatexToolchain.generate_dvi` writes a TeX document around the
   markup and runs ``latex`` to produce a DVI file plus the ``.dims``
   metrics side-file.
2. :meth:`LatexToolchain.generate_image` runs ``dvipng`` (PNG) or
   ``dvisvgm`` (SVG) on the DVI file.  SVG sizes given in points are
   rewritten as pixels at the configured dpi.

Commands come from :class:`~latex_images.config.LatexConfig` as argument
lists with ``{tex}``, ``{dvi}``, ``{output}`` and ``{dpi}`` placeholders.
Every command runs in the per-render work directory with the configured
timeout.  Failures are reported, never retried.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from latex_images.config import LatexConfig
from latex_images.markers import SVG_PT_DIMENSION_RE, SVG_ROOT_TAG_RE
from latex_images.models import LatexTag

_log = logging.getLogger("toolchain")

JOB_NAME = "latex"
"""Base name of every file produced in the work directory."""

_SOURCE_TEMPLATE = r"""\documentclass[{class_options}]{{{document_class}}}
{preamble}
\pagestyle{{empty}}
\newsavebox{{\latexbox}}
\newwrite\latexdims
\begin{{document}}
\begin{{lrbox}}{{\latexbox}}{code}\end{{lrbox}}
\immediate\openout\latexdims=\jobname.dims
\immediate\write\latexdims{{depth: \the\dp\latexbox}}
\immediate\write\latexdims{{height: \the\ht\latexbox}}
\immediate\closeout\latexdims
\usebox{{\latexbox}}
\end{{document}}
"""

_MAX_DIAGNOSTIC_CHARS = 500


@dataclass(frozen=True)
class ToolchainResult:
    """Outcome of one toolchain stage.

    ``value`` is the output path on success, a diagnostic otherwise.
    """

    ok: bool
    value: str


def _extract_tex_error(output: str) -> str | None:
    """Return the first TeX error line (starting with ``!``), if any."""
    lines = output.splitlines()
    for i, line in enumerate(lines):
        if line.startswith("!"):
            msg = line[1:].strip()
            # TeX reports the offending input on the following "l.N" line.
            for follow in lines[i + 1:i + 4]:
                if follow.startswith("l."):
                    return f"{msg} ({follow.strip()})"
            return msg
    return None


def svg_dimensions_to_px(svg_text: str, dpi: int) -> str:
    """Rewrite point ``width``/``height`` on the root ``<svg>`` tag as pixels.

    One point is 1/72 inch, so ``Npt`` becomes ``round(N * dpi / 72)px``.
    Values in other units are left as they are.
    """
    root = SVG_ROOT_TAG_RE.search(svg_text)
    if root is None:
        return svg_text

    def to_px(m: re.Match[str]) -> str:
        px = max(1, round(float(m.group(3)) * dpi / 72))
        return f"{m.group(1)}={m.group(2)}{px}px{m.group(2)}"

    tag = SVG_PT_DIMENSION_RE.sub(to_px, root.group(0))
    return svg_text[:root.start()] + tag + svg_text[root.end():]


def _tail(output: str) -> str:
    output = output.strip()
    if len(output) > _MAX_DIAGNOSTIC_CHARS:
        return "..." + output[-_MAX_DIAGNOSTIC_CHARS:]
    return output


class LatexToolchain:
    """Runs the configured TeX → DVI → image commands.

    Usage::

        toolchain = LatexToolchain(config)
        res = toolchain.generate_dvi(tag, r"x^2", work_dir)
        if res.ok:
            res = toolchain.generate_image(Path(res.value))
    """

    def __init__(self, config: LatexConfig) -> None:
        self._config = config

    def build_source(self, tag: LatexTag, code: str) -> str:
        """Return the complete TeX document for *code* under *tag*."""
        return _SOURCE_TEMPLATE.format(
            class_options=self._config.class_options,
            document_class=self._config.document_class,
            preamble=self._config.preamble,
            code=tag.surround(code),
        )

    def _run(self, command: list[str], cwd: Path) -> tuple[bool, str]:
        """Run *command* in *cwd*; return ``(success, combined output)``."""
        _log.debug("    $ %s", " ".join(command))
        try:
            proc = subprocess.run(
                command,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                timeout=self._config.timeout,
                check=False,
            )
        except FileNotFoundError:
            return False, f'"{command[0]}" not found. Is a TeX distribution installed?'
        except subprocess.TimeoutExpired:
            return False, (
                f'"{command[0]}" timed out after {self._config.timeout:g}s'
            )
        except OSError as exc:
            return False, f'"{command[0]}" could not be started: {exc}'

        output = proc.stdout or ""
        if proc.returncode != 0:
            return False, (
                _extract_tex_error(output)
                or f'"{command[0]}" returned error code {proc.returncode}: {_tail(output)}'
            )
        return True, output

    def _format(self, template: tuple[str, ...], **values: str) -> list[str]:
        return [arg.format(**values) for arg in template]

    def generate_dvi(self, tag: LatexTag, code: str, work_dir: Path) -> ToolchainResult:
        """Compile *code* into ``<work_dir>/latex.dvi``.

        Returns ``ToolchainResult(False, diagnostic)`` if TeX fails or no
        DVI file is produced, ``ToolchainResult(True, dvi_path)`` otherwise.
        """
        tex_path = work_dir / f"{JOB_NAME}.tex"
        dvi_path = work_dir / f"{JOB_NAME}.dvi"
        tex_path.write_text(self.build_source(tag, code), encoding="utf-8")

        command = self._format(
            self._config.latex_command,
            tex=tex_path.name, dvi=dvi_path.name, output=dvi_path.name,
            dpi=str(self._config.dpi),
        )
        ok, output = self._run(command, work_dir)
        if not ok:
            return ToolchainResult(False, output)

        if not dvi_path.is_file():
            # nonstopmode can exit 0 without shipping out a page.
            return ToolchainResult(
                False,
                _extract_tex_error(output)
                or f'"{command[0]}" did not create "{dvi_path.name}"',
            )
        return ToolchainResult(True, str(dvi_path))

    def generate_image(self, dvi_path: Path) -> ToolchainResult:
        """Rasterize *dvi_path* next to itself in the configured format.

        The image shares the DVI base name so the ``.dims`` side-file
        written by TeX sits beside it.
        """
        image_path = dvi_path.with_suffix(self._config.image_suffix)
        command = self._format(
            self._config.raster_command,
            dvi=dvi_path.name, output=image_path.name, tex="",
            dpi=str(self._config.dpi),
        )
        ok, output = self._run(command, dvi_path.parent)
        if not ok:
            return ToolchainResult(False, output)

        if not image_path.is_file():
            # Success without an artifact; the caller reports it as an
            # incomplete installation.
            _log.debug('    "%s" produced no image: %s', command[0], _tail(output))
            return ToolchainResult(True, "")
        if self._config.image_format == "svg":
            self._normalize_svg(image_path)
        return ToolchainResult(True, str(image_path))

    def _normalize_svg(self, image_path: Path) -> None:
        """dvisvgm sizes the root element in pt; image sizing needs px."""
        text = image_path.read_text(encoding="utf-8")
        normalized = svg_dimensions_to_px(text, self._config.dpi)
        if normalized != text:
            _log.debug("    svg dimensions converted to px at %d dpi", self._config.dpi)
            image_path.write_text(normalized, encoding="utf-8")
