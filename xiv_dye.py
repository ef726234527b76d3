"""
XIV Dye Resolver
Resolves per-row color table colors against the user's stain selection and
the staining template table. Pure functions; the output always has one
entry per color table row.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from xiv_materials import (
    Color,
    ColorDyeTable,
    ColorTable,
    DawntrailColorDyeTable,
    DawntrailColorTable,
    LegacyColorDyeTable,
    LegacyColorTable,
    color_table_rows,
    diffuse_colors,
)
from xiv_stm import DyePack, StainingTemplate


@dataclass
class ResolvedColor:
    diffuse: Color
    specular: Color
    emissive: Color


def _matched_dye_rows(color_table: ColorTable, dye_table: Optional[ColorDyeTable]) -> Optional[list]:
    """Dye rows aligned to the color table, or None when the generations differ."""
    if isinstance(color_table, LegacyColorTable) and isinstance(dye_table, LegacyColorDyeTable):
        rows = dye_table.rows
    elif isinstance(color_table, DawntrailColorTable) and isinstance(dye_table, DawntrailColorDyeTable):
        rows = dye_table.rows
    else:
        return None
    return [rows[i] if i < len(rows) else None for i in range(len(color_table.rows))]


def _stain_for_row(color_table: ColorTable, dye_row, stain_ids: Sequence[int]) -> int:
    if isinstance(color_table, DawntrailColorTable):
        return stain_ids[min(dye_row.channel, 1)]
    return stain_ids[0]


def _dye_pack_for_row(color_table: ColorTable, dye_row, stm: StainingTemplate,
                      stain_ids: Sequence[int]) -> Optional[DyePack]:
    if dye_row is None:
        return None
    stain_id = _stain_for_row(color_table, dye_row, stain_ids)
    if stain_id <= 0:
        return None
    return stm.get_dye_pack(dye_row.template, stain_id - 1)


def apply_dye(color_table: ColorTable, dye_table: Optional[ColorDyeTable], stm: StainingTemplate,
              stain_ids: Sequence[int]) -> List[Color]:
    """Diffuse color per color table row with the selected stains applied.

    Legacy materials only follow the first stain; Dawntrail rows pick theirs
    by channel. Mismatched table generations keep the static colors.
    """
    dye_rows = _matched_dye_rows(color_table, dye_table)
    if dye_rows is None:
        return diffuse_colors(color_table)

    colors = []
    for row, dye_row in zip(color_table.rows, dye_rows):
        pack = None
        if dye_row is not None and dye_row.diffuse:
            pack = _dye_pack_for_row(color_table, dye_row, stm, stain_ids)
        colors.append(tuple(pack.diffuse) if pack is not None else tuple(row.diffuse_color))
    return colors


def resolve_dye_rows(color_table: ColorTable, dye_table: Optional[ColorDyeTable], stm: StainingTemplate,
                     stain_ids: Sequence[int]) -> List[ResolvedColor]:
    """Diffuse, specular and emissive per row, each gated by its own dye flag."""
    rows = color_table_rows(color_table)
    dye_rows = _matched_dye_rows(color_table, dye_table) or [None] * len(rows)

    resolved = []
    for row, dye_row in zip(rows, dye_rows):
        pack = _dye_pack_for_row(color_table, dye_row, stm, stain_ids)
        diffuse, specular, emissive = row.diffuse_color, row.specular_color, row.emissive_color
        if pack is not None:
            if dye_row.diffuse:
                diffuse = pack.diffuse
            if dye_row.specular:
                specular = pack.specular
            if dye_row.emissive:
                emissive = pack.emissive
        resolved.append(ResolvedColor(tuple(diffuse), tuple(specular), tuple(emissive)))
    return resolved


def has_dual_dye(materials: Dict[int, object]) -> bool:
    """True when any Dawntrail dye row is bound to the second stain channel."""
    for material in materials.values():
        dye_table = getattr(material, 'color_dye_table', None)
        if isinstance(dye_table, DawntrailColorDyeTable):
            if any(row.channel > 0 for row in dye_table.rows):
                return True
    return False
