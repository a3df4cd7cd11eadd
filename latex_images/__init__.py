"""LaTeX ⇄ image conversion for HTML fragments.

Renders delimiter-wrapped LaTeX markup inside an HTML document into
inline images through an external TeX toolchain, and converts those images
back into editable source.  The original markup travels inside each image
fragment, so a document can round-trip through edit sessions repeatedly.

Key features:
- Ordered, configurable tag rules (``$...$``, ``\\[...\\]``, custom regexes)
- Occurrence-safe replacement of duplicate spans
- Per-span failure isolation with inline, self-cleaning error annotations
- Baseline alignment from TeX box metrics
- Data-URI or deduplicated image-store embedding
- Trailing reference sections preserved verbatim

Note: Imports are deferred so that importing the package does not load
``pymupdf``.  Use explicit imports from submodules (e.g.,
``from latex_images.document import LatexDocument``) or access the names
via this package.
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("latex-images")
except PackageNotFoundError:
    __version__ = "0.0.0"  # fallback for uninstalled dev usage


def __getattr__(name: str):
    """Lazy imports to avoid loading pymupdf at package import time."""
    # Map attribute names to their source modules.
    _lazy_imports = {
        # latex_images.config
        "AUTO_CONFIG_FILENAME": "latex_images.config",
        "ConfigError": "latex_images.config",
        "DEFAULT_CONFIG": "latex_images.config",
        "LatexConfig": "latex_images.config",
        "load_config": "latex_images.config",
        "generate_config_template": "latex_images.config",
        # latex_images.document
        "LatexDocument": "latex_images.document",
        "apply_replacements": "latex_images.document",
        "find_spans": "latex_images.document",
        # latex_images.models
        "ImageMetrics": "latex_images.models",
        "ImageSize": "latex_images.models",
        "LatexTag": "latex_images.models",
        "MatchSpan": "latex_images.models",
        "RenderFailure": "latex_images.models",
        "RenderSuccess": "latex_images.models",
        "Replacement": "latex_images.models",
        "TagRule": "latex_images.models",
        # latex_images.metrics
        "MetricsError": "latex_images.metrics",
        "read_metrics": "latex_images.metrics",
        # latex_images.renderer
        "LatexRenderer": "latex_images.renderer",
        "build_image_html": "latex_images.renderer",
        # latex_images.sizing
        "ImageSizeError": "latex_images.sizing",
        "get_image_size": "latex_images.sizing",
        # latex_images.store
        "DirectoryImageStore": "latex_images.store",
        "ImageStore": "latex_images.store",
        # latex_images.toolchain
        "LatexToolchain": "latex_images.toolchain",
        "ToolchainResult": "latex_images.toolchain",
    }

    if name in _lazy_imports:
        import importlib
        module = importlib.import_module(_lazy_imports[name])
        return getattr(module, name)

    raise AttributeError(f"module 'latex_images' has no attribute {name!r}")


__all__ = [
    "apply_replacements",
    "AUTO_CONFIG_FILENAME",
    "build_image_html",
    "ConfigError",
    "DEFAULT_CONFIG",
    "DirectoryImageStore",
    "find_spans",
    "generate_config_template",
    "get_image_size",
    "ImageMetrics",
    "ImageSize",
    "ImageSizeError",
    "ImageStore",
    "LatexConfig",
    "LatexDocument",
    "LatexRenderer",
    "LatexTag",
    "LatexToolchain",
    "load_config",
    "MatchSpan",
    "MetricsError",
    "read_metrics",
    "RenderFailure",
    "RenderSuccess",
    "Replacement",
    "TagRule",
    "ToolchainResult",
]
