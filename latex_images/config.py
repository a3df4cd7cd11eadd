"""Conversion configuration: tag rules, toolchain commands, HTML templates.

A :class:`LatexConfig` is immutable and built either from the defaults
(:data:`DEFAULT_CONFIG`) or from a JSON file via :func:`load_config`.
Keys absent from the file keep their default value.

JSON layout::

    {
      "profiles": {"inline": {"tex_begin": "$", "tex_end": "$"}},
      "rules": [{"open": "$", "close": "$", "profile": "inline"}],
      "image_format": "png",
      "dpi": 150,
      ...
    }

A rule may give an explicit ``"pattern"`` (group 1 = inner markup)
instead of relying on the escaped ``open`` / ``close`` delimiters.

Also provides :func:`generate_config_template` to scaffold a config file
holding every default.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path

from latex_images.models import LatexTag, TagRule

AUTO_CONFIG_FILENAME = ".latex-images.json"
"""Filename auto-discovered next to each input file (when no ``--config``)."""

IMAGE_FORMATS = ("png", "svg")
"""Supported rasterizer outputs."""


class ConfigError(ValueError):
    """Raised for malformed configuration (fatal for the whole call)."""


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

INLINE = LatexTag("inline", "$", "$")
DISPLAY = LatexTag("display", r"$\displaystyle ", "$")

DEFAULT_RULES: tuple[TagRule, ...] = (
    TagRule.from_delimiters("$$", "$$", DISPLAY),
    TagRule.from_delimiters(r"\[", r"\]", DISPLAY),
    TagRule.from_delimiters("$", "$", INLINE),
    TagRule.from_delimiters(r"\(", r"\)", INLINE),
)
"""Evaluation order matters: display ``$$`` must claim its text before
the inline ``$`` rule sees it."""

DEFAULT_PREAMBLE = "\n".join([
    r"\usepackage[utf8]{inputenc}",
    r"\usepackage{amsmath}",
    r"\usepackage{amssymb}",
])

DEFAULT_LATEX_COMMAND = (
    "latex", "-interaction=nonstopmode", "-halt-on-error", "{tex}",
)
DEFAULT_PNG_COMMAND = (
    "dvipng", "-q", "-T", "tight", "-D", "{dpi}",
    "-bg", "Transparent", "-o", "{output}", "{dvi}",
)
DEFAULT_SVG_COMMAND = (
    "dvisvgm", "--no-fonts", "--exact-bbox", "-o", "{output}", "{dvi}",
)

DEFAULT_IMAGE_TEMPLATE = (
    '<img class="latex" src="{2}" data-latex="{3}" id="{4}" '
    'data-width="{0}" style="height:{1}em;vertical-align:-{5}em">'
)
"""Positional slots: ``{0}`` width (px), ``{1}`` total height (em),
``{2}`` payload, ``{3}`` base64 markup, ``{4}`` element id,
``{5}`` baseline offset (em)."""

DEFAULT_LOADER_IMAGE_TEMPLATE = (
    '<img class="latex" data-src="{2}" data-latex="{3}" id="{4}" '
    'data-width="{0}" style="height:{1}em;vertical-align:-{5}em">'
)
"""Image template used with loader scripts: the payload lands in
``data-src`` and the companion script moves it into ``src``."""

DEFAULT_ERROR_TEMPLATE = (
    '<span class="latex-error" style="color:red;font-weight:bold">'
    "[LaTeX error: {0}]</span>"
)


@dataclass(frozen=True)
class LatexConfig:
    """Complete conversion configuration."""

    rules: tuple[TagRule, ...] = DEFAULT_RULES
    document_class: str = "article"
    class_options: str = "12pt"
    preamble: str = DEFAULT_PREAMBLE
    image_format: str = "png"
    dpi: int = 150
    latex_command: tuple[str, ...] = DEFAULT_LATEX_COMMAND
    png_command: tuple[str, ...] = DEFAULT_PNG_COMMAND
    svg_command: tuple[str, ...] = DEFAULT_SVG_COMMAND
    timeout: float = 30.0
    """Seconds before a toolchain subprocess is killed."""
    image_template: str | None = None
    """``None`` selects the default template matching ``loader_script``."""
    error_template: str = DEFAULT_ERROR_TEMPLATE
    loader_script: bool = False
    reference_marker: str | None = None
    """Regex for the start of the trailing reference section
    (default: the ``REFERENCES_BEGIN`` comment)."""

    @property
    def effective_image_template(self) -> str:
        if self.image_template:
            return self.image_template
        if self.loader_script:
            return DEFAULT_LOADER_IMAGE_TEMPLATE
        return DEFAULT_IMAGE_TEMPLATE

    @property
    def image_suffix(self) -> str:
        return f".{self.image_format}"

    @property
    def image_mime(self) -> str:
        return "image/svg+xml" if self.image_format == "svg" else "image/png"

    @property
    def raster_command(self) -> tuple[str, ...]:
        """Second-stage command for the configured output format."""
        return self.svg_command if self.image_format == "svg" else self.png_command


DEFAULT_CONFIG = LatexConfig()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SCALAR_KEYS: dict[str, type | tuple[type, ...]] = {
    "document_class": str,
    "class_options": str,
    "preamble": str,
    "image_format": str,
    "dpi": int,
    "timeout": (int, float),
    "image_template": str,
    "error_template": str,
    "loader_script": bool,
    "reference_marker": str,
}

_COMMAND_KEYS = ("latex_command", "png_command", "svg_command")

_OPTIONAL_KEYS = frozenset({"image_template", "reference_marker"})
"""Keys that accept ``null``."""

_VALID_KEYS: frozenset[str] = frozenset(
    {"profiles", "rules"} | set(_SCALAR_KEYS) | set(_COMMAND_KEYS)
)


def _parse_profiles(raw: object) -> dict[str, LatexTag]:
    if not isinstance(raw, dict):
        raise ConfigError("'profiles' must be an object mapping name -> profile")
    profiles: dict[str, LatexTag] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Profile {name!r} must be an object")
        try:
            profiles[name] = LatexTag(
                name, str(entry["tex_begin"]), str(entry["tex_end"]),
            )
        except KeyError as exc:
            raise ConfigError(
                f"Profile {name!r} is missing {exc.args[0]!r}"
            ) from exc
    return profiles


def _parse_rules(raw: object, profiles: dict[str, LatexTag]) -> tuple[TagRule, ...]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("'rules' must be a non-empty list")

    rules: list[TagRule] = []
    for idx, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            raise ConfigError(f"Rule #{idx} must be an object")
        missing = [k for k in ("open", "close", "profile") if k not in entry]
        if missing:
            raise ConfigError(
                f"Rule #{idx} is missing {', '.join(repr(k) for k in missing)}"
            )
        profile_name = entry["profile"]
        if profile_name not in profiles:
            raise ConfigError(
                f"Rule #{idx} references unknown profile {profile_name!r}. "
                f"Valid profiles: {', '.join(sorted(profiles))}"
            )
        tag = profiles[profile_name]
        pattern_src = entry.get("pattern")
        if pattern_src is None:
            rules.append(TagRule.from_delimiters(entry["open"], entry["close"], tag))
            continue
        try:
            pattern = re.compile(pattern_src, re.DOTALL)
        except re.error as exc:
            raise ConfigError(f"Rule #{idx} has an invalid pattern: {exc}") from exc
        if pattern.groups < 1:
            raise ConfigError(
                f"Rule #{idx} pattern must capture the markup in group 1"
            )
        rules.append(TagRule(pattern, entry["open"], entry["close"], tag))
    return tuple(rules)


def config_from_dict(data: dict) -> LatexConfig:
    """Build a :class:`LatexConfig` from a parsed JSON object.

    Raises
    ------
    ConfigError
        On unknown keys, wrong value types, unknown profiles, invalid
        rule patterns or an unsupported image format.
    """
    unknown = set(data) - _VALID_KEYS
    if unknown:
        raise ConfigError(
            f"Unknown config key(s): {', '.join(sorted(unknown))}. "
            f"Valid keys: {', '.join(sorted(_VALID_KEYS))}"
        )

    overrides: dict = {}

    for key, expected in _SCALAR_KEYS.items():
        if key not in data:
            continue
        value = data[key]
        if value is None and key in _OPTIONAL_KEYS:
            overrides[key] = None
            continue
        # bool is an int subclass; reject it for numeric keys.
        if not isinstance(value, expected) or (
            isinstance(value, bool) and expected is not bool
        ):
            raise ConfigError(f"Config key {key!r} has invalid value {value!r}")
        overrides[key] = value

    for key in _COMMAND_KEYS:
        if key not in data:
            continue
        value = data[key]
        if (
            not isinstance(value, list)
            or not value
            or not all(isinstance(v, str) for v in value)
        ):
            raise ConfigError(
                f"Config key {key!r} must be a non-empty list of strings"
            )
        overrides[key] = tuple(value)

    if "rules" in data or "profiles" in data:
        profiles = {r.tag.name: r.tag for r in DEFAULT_RULES}
        if "profiles" in data:
            profiles.update(_parse_profiles(data["profiles"]))
        overrides["rules"] = _parse_rules(
            data.get("rules", [rule_to_dict(r) for r in DEFAULT_RULES]),
            profiles,
        )

    config = replace(DEFAULT_CONFIG, **overrides)

    if config.image_format not in IMAGE_FORMATS:
        raise ConfigError(
            f"Unsupported image_format {config.image_format!r} "
            f"(expected one of: {', '.join(IMAGE_FORMATS)})"
        )
    if config.timeout <= 0:
        raise ConfigError("'timeout' must be positive")
    if config.dpi <= 0:
        raise ConfigError("'dpi' must be positive")

    return config


def load_config(path: Path) -> LatexConfig:
    """Load and validate a JSON config file.

    Raises
    ------
    ConfigError
        If the file is not valid JSON or fails validation.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a JSON object")
    return config_from_dict(data)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def rule_to_dict(rule: TagRule) -> dict:
    """Serialize *rule*, omitting the pattern when delimiters imply it."""
    result = {"open": rule.open, "close": rule.close, "profile": rule.tag.name}
    implied = TagRule.from_delimiters(rule.open, rule.close, rule.tag).pattern
    if rule.pattern.pattern != implied.pattern:
        result["pattern"] = rule.pattern.pattern
    return result


def config_to_dict(config: LatexConfig) -> dict:
    """Serialize *config* to a JSON-compatible dict (loadable again)."""
    profiles: dict[str, dict[str, str]] = {}
    for rule in config.rules:
        profiles[rule.tag.name] = {
            "tex_begin": rule.tag.tex_begin,
            "tex_end": rule.tag.tex_end,
        }

    data: dict = {
        "profiles": profiles,
        "rules": [rule_to_dict(r) for r in config.rules],
    }
    for f in fields(config):
        if f.name == "rules":
            continue
        value = getattr(config, f.name)
        data[f.name] = list(value) if isinstance(value, tuple) else value
    return data


def generate_config_template(path: Path) -> None:
    """Write the default configuration to *path* as indented JSON.

    Loading the file produces a config equal to :data:`DEFAULT_CONFIG`.
    """
    text = json.dumps(config_to_dict(DEFAULT_CONFIG), indent=2)
    path.write_text(text + "\n", encoding="utf-8")
