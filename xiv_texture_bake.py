"""
XIV Texture Baker
Synthesizes full-resolution diffuse and emissive bitmaps from an index
texture (red channel selects a color table row) and per-row linear colors.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from PIL import Image

from xiv_materials import ColorTable, color_table_row_count, diffuse_colors, emissive_colors

EMISSIVE_THRESHOLD = 0.001


@dataclass
class TextureData:
    """RGBA8 pixels, row-major, 4 bytes per pixel."""
    rgba: bytes
    width: int
    height: int

    def to_array(self) -> np.ndarray:
        return np.frombuffer(self.rgba, dtype=np.uint8).reshape(self.height, self.width, 4)

    def to_image(self) -> Image.Image:
        return Image.frombytes('RGBA', (self.width, self.height), bytes(self.rgba))

    @classmethod
    def from_image(cls, image: Image.Image) -> 'TextureData':
        rgba = image.convert('RGBA')
        return cls(rgba.tobytes(), rgba.width, rgba.height)

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> 'TextureData':
        pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
        height, width = pixels.shape[:2]
        return cls(pixels.tobytes(), width, height)

    @classmethod
    def solid(cls, rgba: Sequence[int], width: int = 1, height: int = 1) -> 'TextureData':
        return cls(bytes(rgba) * (width * height), width, height)


def fallback_white() -> TextureData:
    return TextureData.solid((255, 255, 255, 255))


def linear_to_srgb(c):
    """sRGB transfer function; works on scalars and numpy arrays."""
    c = np.asarray(c, dtype=np.float64)
    safe = np.maximum(c, 0.0)
    return np.where(c <= 0.0031308, c * 12.92, 1.055 * np.power(safe, 1.0 / 2.4) - 0.055)


def linear_to_srgb_bytes(colors) -> np.ndarray:
    """Clamp linear colors to [0, 1], encode to sRGB and truncate to uint8.

    Truncation (not rounding) is a compatibility choice that keeps bakes
    byte-identical with existing viewers. sRGB(1.0) lands a hair under 1.0, so
    linear white becomes 254, not 255.
    """
    clamped = np.clip(np.asarray(colors, dtype=np.float64), 0.0, 1.0)
    return (np.clip(linear_to_srgb(clamped), 0.0, 1.0) * 255.0).astype(np.uint8)


def select_rows(red: np.ndarray, row_count: int) -> np.ndarray:
    """Color table row per red value: floor(red * rows / 256), clamped."""
    if row_count <= 0:
        return np.zeros_like(red, dtype=np.int64)
    rows = (red.astype(np.int64) * row_count) // 256
    return np.minimum(rows, row_count - 1)


def _bake(id_tex: TextureData, row_count: int, palette: np.ndarray) -> TextureData:
    pixels = id_tex.to_array()
    rows = select_rows(pixels[..., 0], row_count)
    out = np.empty(pixels.shape, dtype=np.uint8)
    out[..., :3] = linear_to_srgb_bytes(palette)[rows]
    out[..., 3] = 255
    return TextureData.from_array(out)


def _row_palette(row_count: int, *sources, default=(1.0, 1.0, 1.0)) -> np.ndarray:
    """Per-row color from the first source long enough to cover the row."""
    palette = np.empty((max(row_count, 1), 3), dtype=np.float64)
    for row in range(palette.shape[0]):
        color = default
        for source in sources:
            if source is not None and row < len(source):
                color = source[row]
                break
        palette[row] = color
    return palette


def bake_color_table_texture(id_tex: TextureData, color_table: ColorTable,
                             dyed_colors: Optional[Sequence] = None) -> TextureData:
    """Diffuse bitmap at the index texture's resolution.

    Rows take the dyed color when given, else the table's static color, else white.
    """
    row_count = color_table_row_count(color_table)
    base = diffuse_colors(color_table)
    if row_count == 0:
        # Nothing to look up; every pixel resolves to white
        palette = np.ones((1, 3), dtype=np.float64)
    else:
        palette = _row_palette(row_count, dyed_colors, base)
    return _bake(id_tex, row_count, palette)


def _emissive_rows(color_table: ColorTable, resolved_emissive: Optional[Sequence]) -> list:
    return list(resolved_emissive) if resolved_emissive is not None else emissive_colors(color_table)


def has_emissive(color_table: ColorTable, resolved_emissive: Optional[Sequence] = None) -> bool:
    """True when any emissive row glows above the threshold."""
    colors = _emissive_rows(color_table, resolved_emissive)
    return any(component > EMISSIVE_THRESHOLD for color in colors for component in color)


def bake_emissive_texture(id_tex: TextureData, color_table: ColorTable,
                          resolved_emissive: Optional[Sequence] = None) -> TextureData:
    """Emissive bitmap, or a 1x1 opaque black bitmap when no row glows.

    Callers decide whether to keep the result with has_emissive, not by its size.
    """
    if not has_emissive(color_table, resolved_emissive):
        return TextureData.solid((0, 0, 0, 255))
    row_count = color_table_row_count(color_table)
    palette = _row_palette(row_count, _emissive_rows(color_table, resolved_emissive), default=(0.0, 0.0, 0.0))
    return _bake(id_tex, row_count, palette)
