"""
XIV Material Model
Color tables and dye tables for the two material generations (legacy 16-row,
Dawntrail 32-row) plus the opaque fallback, and the parsed material record.
Consumers branch on the concrete table type.
"""

import json
from dataclasses import dataclass, field
from typing import List, Optional, Union

Color = tuple  # (r, g, b) linear floats

LEGACY_ROW_COUNT = 16
DAWNTRAIL_ROW_COUNT = 32


@dataclass
class ColorTableRow:
    diffuse_color: Color = (1.0, 1.0, 1.0)
    specular_color: Color = (0.0, 0.0, 0.0)
    emissive_color: Color = (0.0, 0.0, 0.0)


@dataclass
class LegacyColorTable:
    rows: List[ColorTableRow] = field(default_factory=list)


@dataclass
class DawntrailColorTable:
    rows: List[ColorTableRow] = field(default_factory=list)


@dataclass
class OpaqueColorTable:
    """Color table whose layout we don't understand; contributes no rows."""
    data: bytes = b''


ColorTable = Union[LegacyColorTable, DawntrailColorTable, OpaqueColorTable]


@dataclass
class LegacyColorDyeRow:
    template: int = 0
    diffuse: bool = False
    specular: bool = False
    emissive: bool = False
    gloss: bool = False
    specular_strength: bool = False


@dataclass
class DawntrailColorDyeRow:
    template: int = 0
    channel: int = 0
    diffuse: bool = False
    specular: bool = False
    emissive: bool = False
    gloss: bool = False
    specular_strength: bool = False


@dataclass
class LegacyColorDyeTable:
    rows: List[LegacyColorDyeRow] = field(default_factory=list)


@dataclass
class DawntrailColorDyeTable:
    rows: List[DawntrailColorDyeRow] = field(default_factory=list)


ColorDyeTable = Union[LegacyColorDyeTable, DawntrailColorDyeTable]


@dataclass
class ParsedMaterial:
    texture_paths: List[str] = field(default_factory=list)
    color_table: Optional[ColorTable] = None
    color_dye_table: Optional[ColorDyeTable] = None


def color_table_row_count(color_table: Optional[ColorTable]) -> int:
    if isinstance(color_table, LegacyColorTable):
        return LEGACY_ROW_COUNT
    if isinstance(color_table, DawntrailColorTable):
        return DAWNTRAIL_ROW_COUNT
    return 0


def color_table_rows(color_table: Optional[ColorTable]) -> List[ColorTableRow]:
    if isinstance(color_table, (LegacyColorTable, DawntrailColorTable)):
        return color_table.rows
    return []


def diffuse_colors(color_table: Optional[ColorTable]) -> List[Color]:
    return [tuple(row.diffuse_color) for row in color_table_rows(color_table)]


def emissive_colors(color_table: Optional[ColorTable]) -> List[Color]:
    return [tuple(row.emissive_color) for row in color_table_rows(color_table)]


def _row_from_dict(entry: dict) -> ColorTableRow:
    return ColorTableRow(
        diffuse_color=tuple(entry.get('diffuse', (1.0, 1.0, 1.0))),
        specular_color=tuple(entry.get('specular', (0.0, 0.0, 0.0))),
        emissive_color=tuple(entry.get('emissive', (0.0, 0.0, 0.0))),
    )


def material_from_dict(data: dict) -> ParsedMaterial:
    """Material from its JSON form.

    {"textures": [...],
     "color_table": {"generation": "legacy" | "dawntrail" | "opaque", "rows": [...]},
     "dye_table": {"generation": ..., "rows": [{"template", "channel", "diffuse", ...}]}}
    """
    color_table = None
    table = data.get('color_table')
    if table is not None:
        generation = table.get('generation', 'legacy')
        rows = [_row_from_dict(r) for r in table.get('rows', [])]
        if generation == 'legacy':
            color_table = LegacyColorTable(rows)
        elif generation == 'dawntrail':
            color_table = DawntrailColorTable(rows)
        else:
            color_table = OpaqueColorTable()

    dye_table = None
    dyes = data.get('dye_table')
    if dyes is not None:
        generation = dyes.get('generation', 'legacy')
        flags = ('diffuse', 'specular', 'emissive', 'gloss', 'specular_strength')
        if generation == 'dawntrail':
            dye_table = DawntrailColorDyeTable([
                DawntrailColorDyeRow(template=int(r.get('template', 0)), channel=int(r.get('channel', 0)),
                                     **{k: bool(r.get(k, False)) for k in flags})
                for r in dyes.get('rows', [])
            ])
        else:
            dye_table = LegacyColorDyeTable([
                LegacyColorDyeRow(template=int(r.get('template', 0)),
                                  **{k: bool(r.get(k, False)) for k in flags})
                for r in dyes.get('rows', [])
            ])

    return ParsedMaterial(
        texture_paths=list(data.get('textures', [])),
        color_table=color_table,
        color_dye_table=dye_table,
    )


def load_material_json(path: str) -> ParsedMaterial:
    with open(path, 'r', encoding='utf-8') as f:
        return material_from_dict(json.load(f))
