# app/tools/fonts_css.py
"""Regenerate the font declaration file from the fonts directory.

    python -m app.tools.fonts_css public/fonts public/fontsDeclaration/fonts.css
"""
import argparse
import os

from app.infrastructure.svg.fonts import build_font_declarations


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate @font-face declarations for a fonts directory")
    parser.add_argument("font_dir", help="directory holding .ttf/.otf/.woff/.woff2 files")
    parser.add_argument("output", help="declaration file to write")
    parser.add_argument("--url-prefix", default="/fonts", help="URL path the fonts are served from")
    args = parser.parse_args(argv)

    if not os.path.isdir(args.font_dir):
        parser.error(f"not a directory: {args.font_dir}")

    css = build_font_declarations(args.font_dir, args.url_prefix)
    os.makedirs(os.path.dirname(os.path.abspath(args.output)), exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as f:
        f.write(css)

    count = css.count("@font-face")
    print(f"Generated {args.output} with {count} fonts")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
