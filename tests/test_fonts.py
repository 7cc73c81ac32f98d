import base64
import re

from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen

from app.infrastructure.svg.fonts import (
    FontMapping,
    build_font_declarations,
    detect_font_families,
    font_family_name,
    embed_fonts,
)
from app.tools.fonts_css import main as fonts_css_main

from conftest import CARD_SVG, MARTEL_BYTES


def test_font_mapping_first_declaration_wins(tmp_path):
    css = """
    @font-face { font-family: 'Martel'; src: url('/fonts/Martel-Regular.ttf') format('truetype'); }
    @font-face { font-family: "Martel"; src: url("/fonts/Martel-Bold.ttf") format("truetype"); }
    @font-face { font-family: "Great Vibes"; src: url("/fonts/GreatVibes.otf") format("opentype"); }
    """
    mapping = FontMapping.from_css(css, tmp_path)
    assert dict(mapping.fonts) == {
        "Martel": "/fonts/Martel-Regular.ttf",
        "Great Vibes": "/fonts/GreatVibes.otf",
    }
    assert mapping.resolve("Martel") == tmp_path / "fonts" / "Martel-Regular.ttf"
    assert mapping.resolve("Arial") is None


def test_font_mapping_load_missing_file(tmp_path):
    mapping = FontMapping.load(tmp_path / "nope.css", tmp_path)
    assert len(mapping.fonts) == 0


def test_detect_font_families():
    svg = (
        '<svg><text font-family="Martel">a</text>'
        "<text style=\"font-family: 'Great Vibes', cursive; fill: red\">b</text>"
        '<text font-family="Martel">c</text>'
        "<style>.t { font-family: Poppins; }</style></svg>"
    )
    assert detect_font_families(svg) == ["Martel", "Great Vibes", "Poppins"]


def test_embed_inserts_inside_cdata(font_map, martel_b64):
    result = embed_fonts(CARD_SVG, font_map)
    assert result.injected
    assert result.svg.count("@font-face") == 1
    assert result.svg.startswith("<svg><style><![CDATA[\n@font-face {")
    assert f"data:font/ttf;base64,{martel_b64}" in result.svg
    assert 'format("truetype")' in result.svg

    encoded = re.search(r"base64,([A-Za-z0-9+/=]+)", result.svg).group(1)
    assert base64.b64decode(encoded) == MARTEL_BYTES


def test_embed_one_block_per_family(font_root):
    (font_root / "fonts" / "GreatVibes.otf").write_bytes(b"OTTO-fake")
    css = (
        '@font-face { font-family: "Martel"; src: url("/fonts/Martel-Regular.ttf"); }\n'
        '@font-face { font-family: "Great Vibes"; src: url("/fonts/GreatVibes.otf"); }\n'
    )
    mapping = FontMapping.from_css(css, font_root)
    svg = (
        '<svg><style type="text/css"><![CDATA[ .x{} ]]></style>'
        '<text font-family="Martel">a</text><text font-family="Great Vibes">b</text>'
        '<text font-family="Martel">c</text></svg>'
    )
    result = embed_fonts(svg, mapping)
    assert result.svg.count("@font-face") == 2
    assert result.embedded == ("Martel", "Great Vibes")
    assert 'format("opentype")' in result.svg
    assert "data:font/otf;base64," in result.svg


def test_embed_is_idempotent(font_map):
    once = embed_fonts(CARD_SVG, font_map).svg
    again = embed_fonts(once, font_map)
    assert again.svg == once
    assert again.embedded == ()


def test_unknown_and_missing_fonts_are_skipped(font_root):
    css = '@font-face { font-family: "Lost"; src: url("/fonts/Lost.ttf"); }'
    mapping = FontMapping.from_css(css, font_root)
    svg = '<svg><style><![CDATA[]]></style><text font-family="Lost">a</text><text font-family="Nope">b</text></svg>'
    result = embed_fonts(svg, mapping)
    assert result.svg == svg
    assert [s.family for s in result.skipped] == ["Lost", "Nope"]
    assert result.skipped[1].reason == "not declared"


def test_no_style_scaffold_is_a_noop(font_map):
    svg = '<svg><text font-family="Martel">Aisha</text></svg>'
    result = embed_fonts(svg, font_map)
    assert result.svg == svg
    assert not result.injected


def test_generated_declarations_are_parseable(tmp_path):
    font_dir = tmp_path / "fonts"
    font_dir.mkdir()
    (font_dir / "Great_Vibes-Regular.ttf").write_bytes(b"x")
    (font_dir / "Poppins.otf").write_bytes(b"x")
    (font_dir / "readme.txt").write_text("not a font")

    css = build_font_declarations(font_dir)
    assert css.count("@font-face") == 2
    assert 'format("opentype")' in css
    mapping = FontMapping.from_css(css, tmp_path)
    assert mapping.resolve("Great Vibes Regular") == font_dir / "Great_Vibes-Regular.ttf"


def test_fonts_css_cli_writes_file(tmp_path):
    font_dir = tmp_path / "fonts"
    font_dir.mkdir()
    (font_dir / "Martel.ttf").write_bytes(b"x")
    out = tmp_path / "decl" / "fonts.css"

    assert fonts_css_main([str(font_dir), str(out)]) == 0
    assert 'font-family: "Martel"' in out.read_text()


def _build_ttf(path, family, style="Regular"):
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder([".notdef", "space"])
    fb.setupCharacterMap({0x20: "space"})
    fb.setupGlyf({".notdef": TTGlyphPen(None).glyph(), "space": TTGlyphPen(None).glyph()})
    fb.setupHorizontalMetrics({".notdef": (500, 0), "space": (250, 0)})
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    fb.setupNameTable({"familyName": family, "styleName": style})
    fb.setupOS2()
    fb.setupPost()
    fb.save(str(path))


def test_family_name_comes_from_name_table(tmp_path):
    font_dir = tmp_path / "fonts"
    font_dir.mkdir()
    _build_ttf(font_dir / "GreatVibes-Regular.ttf", "Great Vibes")

    assert font_family_name(font_dir / "GreatVibes-Regular.ttf") == "Great Vibes"
    mapping = FontMapping.from_css(build_font_declarations(font_dir), tmp_path)
    assert mapping.resolve("Great Vibes") == font_dir / "GreatVibes-Regular.ttf"
    assert mapping.resolve("GreatVibes Regular") is None


def test_family_name_falls_back_to_file_name(tmp_path):
    path = tmp_path / "Dancing_Script-Bold.woff2"
    path.write_bytes(b"not a font")
    assert font_family_name(path) == "Dancing Script Bold"
