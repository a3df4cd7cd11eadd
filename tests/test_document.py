"""Tests for the document converter (document.py).

Most tests use :class:`tests.conftest.FakeRenderer`; the integration tests
at the end go through :class:`~latex_images.renderer.LatexRenderer` with a
fake toolchain.
"""

from __future__ import annotations

import re

import pytest

from latex_images.config import DEFAULT_CONFIG, LatexConfig
from latex_images.document import (
    LatexDocument,
    apply_replacements,
    escape_latex,
    find_spans,
    relocate_loader_scripts,
    split_reference_section,
)
from latex_images.markers import (
    ELEMENT_ID_RE,
    LATEX_ERROR_BEGIN,
    LATEX_ERROR_BLOCK_RE,
    LATEX_IMAGE_RE,
    LOADER_SCRIPT_RE,
    REFERENCE_SECTION_RE,
)
from latex_images.models import Replacement
from latex_images.renderer import LatexRenderer, build_loader_script, encode_markup
from tests.conftest import FakeRenderer, FakeToolchain


def _doc(html: str, selection: str | None = None, **renderer_kwargs) -> LatexDocument:
    return LatexDocument(
        DEFAULT_CONFIG, html, selection, renderer=FakeRenderer(**renderer_kwargs),
    )


def _image(markup: str, element_id: str = "i1") -> str:
    return f'<img src="a.png" data-latex="{encode_markup(markup)}" id="{element_id}">'


# ---------------------------------------------------------------------------
# find_spans()
# ---------------------------------------------------------------------------


class TestFindSpans:
    """Rule ordering, claimed text and occurrence ranks."""

    def test_single_inline(self):
        spans = find_spans("a $x$ b", DEFAULT_CONFIG.rules)
        assert [(s.start, s.end, s.original_text, s.markup_code) for s in spans] == [
            (2, 5, "$x$", "x"),
        ]

    def test_display_claims_before_inline(self):
        text = "$$a$$ and $b$"
        spans = find_spans(text, DEFAULT_CONFIG.rules)
        assert [(s.original_text, s.rule.tag.name) for s in spans] == [
            ("$$a$$", "display"),
            ("$b$", "inline"),
        ]

    def test_later_rule_skips_claimed_text(self):
        # The inline rule alone would pair the "$" inside "$$x$$".
        spans = find_spans("$$x$$", DEFAULT_CONFIG.rules)
        assert len(spans) == 1

    def test_offsets_refer_to_input(self):
        text = r"\[y\] then $z$"
        for span in find_spans(text, DEFAULT_CONFIG.rules):
            assert text[span.start:span.end] == span.original_text

    def test_occurrences(self):
        spans = find_spans("$x$ $y$ $x$ $x$", DEFAULT_CONFIG.rules)
        assert [(s.original_text, s.occurrence) for s in spans] == [
            ("$x$", 1), ("$y$", 1), ("$x$", 2), ("$x$", 3),
        ]

    def test_no_match(self):
        assert find_spans("no math here", DEFAULT_CONFIG.rules) == []


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestApplyReplacements:
    """apply_replacements() single-pass rewrite."""

    def test_order_independent(self):
        text = "0123456789"
        reps = [Replacement(6, 8, "B"), Replacement(1, 3, "A")]
        assert apply_replacements(text, reps) == "0A345B89"

    def test_insertion_and_deletion(self):
        assert apply_replacements("abc", [Replacement(1, 1, "X"), Replacement(2, 3, "")]) == "aXb"

    def test_empty(self):
        assert apply_replacements("abc", []) == "abc"

    def test_overlap_rejected(self):
        with pytest.raises(ValueError, match="Invalid replacement span"):
            apply_replacements("abcdef", [Replacement(0, 3, "x"), Replacement(2, 4, "y")])

    def test_out_of_bounds_rejected(self):
        with pytest.raises(ValueError):
            apply_replacements("abc", [Replacement(2, 10, "x")])


class TestHelpers:
    """Reference splitting, script relocation and escaping."""

    def test_split_reference_section(self):
        body, refs = split_reference_section(
            "body $x$<!-- REFERENCES_BEGIN -->$y$", REFERENCE_SECTION_RE,
        )
        assert body == "body $x$"
        assert refs == "<!-- REFERENCES_BEGIN -->$y$"

    def test_split_without_references(self):
        assert split_reference_section("body", REFERENCE_SECTION_RE) == ("body", "")

    def test_relocate_loader_scripts(self):
        s1, s2 = build_loader_script("a"), build_loader_script("b")
        text = f"x{s1}y{s2}z"
        assert relocate_loader_scripts(text) == f"xyz{s1}{s2}"

    def test_relocate_without_scripts(self):
        assert relocate_loader_scripts("plain") == "plain"

    def test_escape_latex(self):
        assert escape_latex('$a<b & c>"d"$') == '$a&lt;b &amp; c&gt;"d"$'


# ---------------------------------------------------------------------------
# LaTeX → images
# ---------------------------------------------------------------------------


class TestConvertLatexToImages:
    """LatexDocument.convert_latex_to_images()."""

    def test_no_markup_unchanged(self):
        html = "<p>Nothing to do &amp; no dollars.</p>"
        doc = _doc(html)
        assert doc.convert_latex_to_images() == html
        assert doc.selection == html

    def test_replaces_span(self):
        doc = _doc("<p>Let $x^2$ be</p>")
        out = doc.convert_latex_to_images()
        assert out.startswith("<p>Let <img ")
        assert out.endswith("> be</p>")
        assert "$" not in out

    def test_duplicates_each_replaced(self):
        renderer = FakeRenderer()
        doc = LatexDocument(DEFAULT_CONFIG, "$x^2$ and $x^2$", renderer=renderer)
        out = doc.convert_latex_to_images()

        assert [s.occurrence for s in renderer.spans] == [1, 2]
        images = LATEX_IMAGE_RE.findall(out)
        assert len(images) == 2
        ids = re.findall(r'id="([^"]+)"', out)
        assert len(set(ids)) == 2
        assert " and " in out

    def test_partial_failure(self):
        doc = _doc("$ok$ then $bad$ then $fine$", fail_codes=("bad",))
        out = doc.convert_latex_to_images()

        assert len(LATEX_IMAGE_RE.findall(out)) == 2
        assert "$bad$" + LATEX_ERROR_BEGIN.marker in out
        assert "cannot render bad" in out
        assert out.count(LATEX_ERROR_BEGIN.marker) == 1

    def test_error_annotations_do_not_accumulate(self):
        doc = _doc("$bad$", fail_codes=("bad",))
        first = doc.convert_latex_to_images()
        second = doc.convert_latex_to_images()
        assert first == second
        assert second.count(LATEX_ERROR_BEGIN.marker) == 1

    def test_stale_errors_stripped_without_spans(self):
        stale = LATEX_ERROR_BEGIN.marker + "old<!-- LATEX_ERROR_END -->"
        doc = _doc(f"<p>text{stale}</p>")
        assert doc.convert_latex_to_images() == "<p>text</p>"

    def test_reference_section_preserved(self):
        refs = "<!-- REFERENCES_BEGIN --><p>cost $5 and $10</p>"
        doc = _doc(f"<p>$x$</p>{refs}")
        out = doc.convert_latex_to_images()
        assert out.endswith(refs)
        assert len(LATEX_IMAGE_RE.findall(out)) == 1

    def test_custom_reference_marker(self):
        config = LatexConfig(reference_marker=r"<h2>References</h2>")
        doc = LatexDocument(config, "$x$<h2>References</h2>$y$", renderer=FakeRenderer())
        out = doc.convert_latex_to_images()
        assert out.endswith("<h2>References</h2>$y$")

    def test_loader_scripts_after_body_before_references(self):
        refs = "<!-- REFERENCES_BEGIN -->refs"
        old_script = build_loader_script("old")
        doc = _doc(f"{old_script}<p>$a$ $b$</p>{refs}", scripts=True)
        out = doc.convert_latex_to_images()

        body = out[:out.index(refs)]
        scripts = LOADER_SCRIPT_RE.findall(body)
        assert scripts == ["old", "img-inline-1-1", "img-inline-2-1"]
        assert body.endswith("</script>")
        assert body.startswith("<p><img")

    def test_html_entities_in_markup(self):
        renderer = FakeRenderer()
        doc = LatexDocument(DEFAULT_CONFIG, "$a &lt; b$", renderer=renderer)
        doc.convert_latex_to_images()
        assert renderer.spans[0].markup_code == "a &lt; b"


# ---------------------------------------------------------------------------
# Images → LaTeX
# ---------------------------------------------------------------------------


class TestConvertImagesToLatex:
    """LatexDocument.convert_images_to_latex()."""

    def test_restores_markup(self):
        doc = _doc(f"<p>Let {_image('$x^2$')} be</p>")
        assert doc.convert_images_to_latex() == "<p>Let $x^2$ be</p>"

    def test_escapes_markup(self):
        doc = _doc(_image("$a<b$"))
        assert doc.convert_images_to_latex() == "$a&lt;b$"

    def test_all_duplicates_replaced(self):
        img = _image("$x$")
        doc = _doc(f"{img} and {img} and {img}")
        assert doc.convert_images_to_latex() == "$x$ and $x$ and $x$"

    def test_undecodable_left_alone(self):
        broken = '<img data-latex="////" id="b">'
        doc = _doc(f"{broken} {_image('$y$')}")
        assert doc.convert_images_to_latex() == f"{broken} $y$"

    def test_removes_matching_loader_scripts(self):
        keep = build_loader_script("other")
        html = f"{_image('$x$', 'i1')}{build_loader_script('i1')}{keep}"
        assert _doc(html).convert_images_to_latex() == f"$x${keep}"

    def test_no_images_unchanged(self):
        html = '<p><img src="photo.jpg"></p>'
        assert _doc(html).convert_images_to_latex() == html


# ---------------------------------------------------------------------------
# Selection handling and round trips
# ---------------------------------------------------------------------------


class TestSelection:
    """The editable region is converted and spliced back."""

    def test_only_selection_converted(self):
        html = "<div>$a$</div><div>$b$</div>"
        doc = _doc(html, "<div>$b$</div>")
        out = doc.convert_latex_to_images()
        assert out.startswith("<div>$a$</div><div><img ")
        assert doc.selection in out
        assert "$b$" not in doc.selection

    def test_selection_not_in_document(self):
        doc = _doc("<p>$a$</p>", "<p>missing</p>")
        with pytest.raises(ValueError, match="not part of the document"):
            doc.convert_latex_to_images()
        with pytest.raises(ValueError):
            doc.convert_images_to_latex()

    def test_round_trip(self):
        html = r"<p>Let $x^2$ and $$\sum a$$ with \[y\] and \(z\) and $a &lt; b$.</p>"
        doc = _doc(html)
        rendered = doc.convert_latex_to_images()
        assert rendered != html
        assert doc.convert_images_to_latex() == html

    def test_round_trip_on_selection(self):
        html = "<h1>$t$</h1><p>$x$ $x$</p>"
        doc = _doc(html, "<p>$x$ $x$</p>")
        doc.convert_latex_to_images()
        assert doc.html.startswith("<h1>$t$</h1><p><img")
        assert doc.convert_images_to_latex() == html


# ---------------------------------------------------------------------------
# Integration with LatexRenderer
# ---------------------------------------------------------------------------


class TestWithRenderer:
    """End to end through LatexRenderer and a fake toolchain."""

    def test_render_and_revert(self):
        renderer = LatexRenderer(DEFAULT_CONFIG, toolchain=FakeToolchain(fail_codes=("bad",)))
        html = r"<p>$x^2$, \[y\] and $bad$</p>"
        doc = LatexDocument(DEFAULT_CONFIG, html, renderer=renderer)

        rendered = doc.convert_latex_to_images()
        assert len(LATEX_IMAGE_RE.findall(rendered)) == 2
        assert "Undefined control sequence" in rendered

        reverted = doc.convert_images_to_latex()
        assert LATEX_ERROR_BLOCK_RE.sub("", reverted) == html

    def test_loader_scripts_removed_on_revert(self):
        config = LatexConfig(loader_script=True)
        renderer = LatexRenderer(config, toolchain=FakeToolchain())
        doc = LatexDocument(config, "$x$ $x$", renderer=renderer)

        rendered = doc.convert_latex_to_images()
        assert len(LOADER_SCRIPT_RE.findall(rendered)) == 2
        assert doc.convert_images_to_latex() == "$x$ $x$"

    def test_ids_unique_across_passes(self):
        config = LatexConfig(loader_script=True)
        renderer = LatexRenderer(config, toolchain=FakeToolchain())
        first = LatexDocument(config, "<p>$x$</p>", renderer=renderer).convert_latex_to_images()

        second = LatexDocument(config, first + "<p>$x$</p>", renderer=renderer)
        rendered = second.convert_latex_to_images()

        ids = ELEMENT_ID_RE.findall(rendered)
        assert len(ids) == 2
        assert len(set(ids)) == 2
        assert set(LOADER_SCRIPT_RE.findall(rendered)) == set(ids)

    def test_ids_unique_for_same_decoded_code(self):
        config = LatexConfig(loader_script=True)
        renderer = LatexRenderer(config, toolchain=FakeToolchain())
        doc = LatexDocument(config, "$a&lt;b$ $a<b$", renderer=renderer)

        rendered = doc.convert_latex_to_images()
        ids = ELEMENT_ID_RE.findall(rendered)
        assert len(ids) == 2
        assert len(set(ids)) == 2
