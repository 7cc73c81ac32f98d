# app/infrastructure/svg/fonts.py
import base64
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from fontTools.ttLib import TTFont

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [FONTS] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

# @font-face { font-family: 'X'; src: url('/fonts/X.ttf') ... }
DECLARATION_PATTERN = re.compile(
    r"""font-family\s*:\s*['"](.+?)['"][^}]*?url\(\s*['"](.+?)['"]\s*\)""", re.S
)
ATTRIBUTE_PATTERN = re.compile(r"""font-family\s*=\s*(?:"([^"]+)"|'([^']+)')""")
PROPERTY_PATTERN = re.compile(r"""font-family\s*:\s*([^;}"<>]+|"[^"]+"|'[^']+')""")
STYLE_CDATA_PATTERN = re.compile(r"<style\b[^>]*>\s*<!\[CDATA\[")

FONT_EXTENSIONS = (".ttf", ".otf", ".woff", ".woff2")


@dataclass(frozen=True)
class FontMapping:
    """Font family name -> font file path, relative to ``root``."""
    fonts: Mapping[str, str] = field(default_factory=dict)
    root: Path = Path(".")

    def __post_init__(self):
        object.__setattr__(self, "fonts", MappingProxyType(dict(self.fonts)))
        object.__setattr__(self, "root", Path(self.root))

    @classmethod
    def from_css(cls, css: str, root) -> "FontMapping":
        fonts = {}
        for match in DECLARATION_PATTERN.finditer(css):
            family = match.group(1).strip()
            # first declaration wins
            fonts.setdefault(family, match.group(2).strip())
        return cls(fonts, root)

    @classmethod
    def load(cls, css_path, root) -> "FontMapping":
        if not os.path.isfile(css_path):
            logger.error(f"Font declaration file not found at: {css_path}")
            return cls({}, root)
        with open(css_path, "r", encoding="utf-8") as f:
            mapping = cls.from_css(f.read(), root)
        logger.info(f"Loaded {len(mapping.fonts)} font families from {css_path}")
        return mapping

    def resolve(self, family: str) -> Optional[Path]:
        rel = self.fonts.get(family)
        if rel is None:
            return None
        return self.root / rel.lstrip("/\\")


@dataclass(frozen=True)
class SkippedFont:
    family: str
    reason: str


@dataclass(frozen=True)
class EmbeddedSvg:
    svg: str
    embedded: Tuple[str, ...] = ()
    skipped: Tuple[SkippedFont, ...] = ()
    injected: bool = False


def _clean_family(value: str) -> str:
    first = value.split(",")[0]
    return first.strip().strip("'\"").strip()


def detect_font_families(svg: str) -> List[str]:
    families = {}
    for match in ATTRIBUTE_PATTERN.finditer(svg):
        family = _clean_family(match.group(1) or match.group(2))
        if family:
            families.setdefault(family, None)
    for match in PROPERTY_PATTERN.finditer(svg):
        family = _clean_family(match.group(1))
        if family:
            families.setdefault(family, None)
    return list(families)


def font_format(path) -> str:
    return "opentype" if str(path).lower().endswith(".otf") else "truetype"


def font_face_rule(family: str, font_bytes: bytes, fmt: str) -> str:
    mime = "font/otf" if fmt == "opentype" else "font/ttf"
    b64 = base64.b64encode(font_bytes).decode("ascii")
    return (
        "\n@font-face {\n"
        f'  font-family: "{family}";\n'
        f'  src: url("data:{mime};base64,{b64}") format("{fmt}");\n'
        "  font-weight: normal;\n"
        "  font-style: normal;\n"
        "}\n"
    )


def embed_fonts(svg: str, font_map: FontMapping) -> EmbeddedSvg:
    """Inline every resolvable font family used by ``svg`` as base64 ``@font-face`` rules.

    An SVG that already carries ``@font-face`` is returned untouched. Fonts that
    cannot be resolved are reported in ``skipped``. The rules go right after
    the first ``<style><![CDATA[`` opening; an SVG without that block is
    returned without them.
    """
    if "@font-face" in svg:
        return EmbeddedSvg(svg)

    used = detect_font_families(svg)
    if not used:
        logger.info("No fonts detected in SVG.")
        return EmbeddedSvg(svg)

    rules = []
    embedded = []
    skipped = []
    for family in used:
        path = font_map.resolve(family)
        if path is None:
            logger.warning(f"'{family}' not found in font declarations")
            skipped.append(SkippedFont(family, "not declared"))
            continue
        if not path.is_file():
            logger.warning(f"Font file missing: {path}")
            skipped.append(SkippedFont(family, f"file missing: {path}"))
            continue
        rules.append(font_face_rule(family, path.read_bytes(), font_format(path)))
        embedded.append(family)

    if not rules:
        return EmbeddedSvg(svg, skipped=tuple(skipped))

    match = STYLE_CDATA_PATTERN.search(svg)
    if match is None:
        logger.warning(f"SVG has no <style><![CDATA[ block, fonts {embedded} not injected")
        return EmbeddedSvg(svg, skipped=tuple(skipped))

    at = match.end()
    result = svg[:at] + "".join(rules) + svg[at:]
    logger.info(f"Embedded fonts: {embedded}")
    return EmbeddedSvg(result, tuple(embedded), tuple(skipped), True)


def font_family_name(path) -> str:
    """Family name from the font's name table, else guessed from the file name."""
    try:
        with TTFont(path, lazy=True) as font:
            family = font["name"].getBestFamilyName()
        if family:
            return family.strip()
    except Exception as e:
        logger.warning(f"Could not read name table of {path}: {type(e).__name__}")
    stem = os.path.splitext(os.path.basename(path))[0]
    return re.sub(r"\s+", " ", re.sub(r"[-_]", " ", stem)).strip()


def build_font_declarations(font_dir, url_prefix: str = "/fonts") -> str:
    """Render a declaration file for every font found in ``font_dir``."""
    css = "\n"
    for name in sorted(os.listdir(font_dir)):
        ext = os.path.splitext(name)[1].lower()
        if ext not in FONT_EXTENSIONS:
            continue
        family = font_family_name(os.path.join(font_dir, name))
        fmt = {".otf": "opentype", ".woff": "woff", ".woff2": "woff2"}.get(ext, "truetype")
        css += (
            "@font-face {\n"
            f'  font-family: "{family}";\n'
            f'  src: url("{url_prefix.rstrip("/")}/{name}") format("{fmt}");\n'
            "  font-weight: 400;\n"
            "  font-style: normal;\n"
            "  font-display: swap;\n"
            "}\n\n"
        )
    return css
