"""Template themes and the branding overrides layered on top of them."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any


class Theme(StrEnum):
    MODERN = "MODERN"
    CLASSIC = "CLASSIC"
    PROFESSIONAL = "PROFESSIONAL"
    CREATIVE = "CREATIVE"


@dataclass(frozen=True)
class Palette:
    name: str
    primary_color: str
    secondary_color: str
    accent_color: str
    font_family: str
    header_style: str
    table_style: str


PALETTES: dict[Theme, Palette] = {
    Theme.MODERN: Palette(
        name="Modern",
        primary_color="#2563eb",
        secondary_color="#64748b",
        accent_color="#f59e0b",
        font_family="Inter, sans-serif",
        header_style="minimal",
        table_style="bordered",
    ),
    Theme.CLASSIC: Palette(
        name="Classic",
        primary_color="#1f2937",
        secondary_color="#6b7280",
        accent_color="#dc2626",
        font_family="Georgia, serif",
        header_style="traditional",
        table_style="striped",
    ),
    Theme.PROFESSIONAL: Palette(
        name="Professional",
        primary_color="#0f172a",
        secondary_color="#475569",
        accent_color="#059669",
        font_family="system-ui, sans-serif",
        header_style="corporate",
        table_style="minimal",
    ),
    Theme.CREATIVE: Palette(
        name="Creative",
        primary_color="#7c3aed",
        secondary_color="#a78bfa",
        accent_color="#f97316",
        font_family="Poppins, sans-serif",
        header_style="artistic",
        table_style="gradient",
    ),
}

# branding key -> Palette field
_BRANDING_FIELDS = {
    "primaryColor": "primary_color",
    "secondaryColor": "secondary_color",
    "accentColor": "accent_color",
    "fontFamily": "font_family",
}


def get_palette(theme: str | None, branding: dict[str, Any] | None = None) -> Palette:
    """Resolve a theme name to its palette; unknown names fall back to MODERN."""
    try:
        palette = PALETTES[Theme(str(theme).upper())]
    except ValueError:
        palette = PALETTES[Theme.MODERN]

    if not branding:
        return palette

    overrides = {
        field: str(branding[key])
        for key, field in _BRANDING_FIELDS.items()
        if branding.get(key)
    }
    return replace(palette, **overrides) if overrides else palette
