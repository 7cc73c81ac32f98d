# app/infrastructure/svg/placeholders.py
import re
from typing import Iterable, List, Mapping, Tuple, Union

from app.infrastructure.svg.fonts import EmbeddedSvg, FontMapping, embed_fonts

FieldValues = Union[Mapping[str, str], Iterable[Tuple[str, str]]]

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")


def _field_pairs(fields: FieldValues) -> Iterable[Tuple[str, str]]:
    # Starlette QueryParams keeps repeated keys only through multi_items()
    if hasattr(fields, "multi_items"):
        return fields.multi_items()
    if isinstance(fields, Mapping):
        return fields.items()
    return fields


def substitute_placeholders(svg: str, fields: FieldValues) -> str:
    """Replace every ``{{NAME}}`` token with its value.

    Matching is literal and case-sensitive and values are inserted verbatim,
    markup included. Tokens without a value are left in place.
    """
    customized = svg
    for key, value in _field_pairs(fields):
        customized = customized.replace("{{" + key + "}}", "" if value is None else str(value))
    return customized


def customize_svg(svg: str, fields: FieldValues, font_map: FontMapping) -> EmbeddedSvg:
    return embed_fonts(substitute_placeholders(svg, fields), font_map)


def find_placeholders(svg: str) -> List[str]:
    return [m.group(1).strip() for m in PLACEHOLDER_PATTERN.finditer(svg)]


def format_label(name: str) -> str:
    words = name.replace("_", " ").split(" ")
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def extract_placeholder_labels(svg: str) -> List[str]:
    """Display labels for every placeholder, in document order, duplicates kept."""
    return [format_label(name) for name in find_placeholders(svg)]


def normalize_field_name(name: str) -> str:
    # "First Name" / "first_name" -> FIRST_NAME
    return re.sub(r"[\s_]+", "_", name.strip()).upper()
