"""
XIV Staining Template Parser
Reads chara/base_material/stainingtemplate.stm into per-template channel
arrays of 128 stain slots each, expanding the three on-disk encodings
(singleton, one-to-one, palette + index).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from xiv_binary import BinaryCursor, DecodeError, halves_to_floats

STM_PATH = 'chara/base_material/stainingtemplate.stm'
STAIN_COUNT = 128
INDEX_MARKER = 0xFF

# (name, half-floats per element), in on-disk order
CHANNELS: List[Tuple[str, int]] = [
    ('diffuse', 3),
    ('specular', 3),
    ('emissive', 3),
    ('gloss', 1),
    ('specular_power', 1),
]


@dataclass
class DyePack:
    diffuse: Tuple[float, float, float]
    specular: Tuple[float, float, float]
    emissive: Tuple[float, float, float]
    gloss: float
    specular_power: float


@dataclass
class StainingTemplateEntry:
    diffuse: np.ndarray         # (128, 3)
    specular: np.ndarray        # (128, 3)
    emissive: np.ndarray        # (128, 3)
    gloss: np.ndarray           # (128,)
    specular_power: np.ndarray  # (128,)

    def dye_pack(self, stain_index: int) -> Optional[DyePack]:
        if not 0 <= stain_index < STAIN_COUNT:
            return None
        return DyePack(
            diffuse=tuple(float(v) for v in self.diffuse[stain_index]),
            specular=tuple(float(v) for v in self.specular[stain_index]),
            emissive=tuple(float(v) for v in self.emissive[stain_index]),
            gloss=float(self.gloss[stain_index]),
            specular_power=float(self.specular_power[stain_index]),
        )


class StainingTemplate:
    """Template id -> channel arrays; template ids are looked up verbatim."""

    def __init__(self, entries: Optional[Dict[int, StainingTemplateEntry]] = None):
        self.entries: Dict[int, StainingTemplateEntry] = dict(entries or {})

    def __contains__(self, template_id: int) -> bool:
        return template_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get_dye_pack(self, template_id: int, stain_index: int) -> Optional[DyePack]:
        entry = self.entries.get(template_id)
        if entry is None:
            return None
        return entry.dye_pack(stain_index)


def _indexed_marker_offset(size: int, elem_size: int) -> int:
    """Where the 0xFF marker sits if a sub-table of size bytes is palette + index."""
    return (size - STAIN_COUNT - 1) // elem_size * elem_size


def _looks_indexed(raw: np.ndarray, size: int, elem_size: int) -> bool:
    """Large palettes push the element count past 128; the marker byte tells them apart."""
    if size == STAIN_COUNT * elem_size or size < STAIN_COUNT + 1:
        return False
    # sub-tables are padded to whole u16s
    if (size - STAIN_COUNT - 1) % elem_size > 1:
        return False
    return raw[_indexed_marker_offset(size, elem_size)] == INDEX_MARKER


def _decode_indexed(raw: np.ndarray, start: int, size: int, components: int, field: str) -> np.ndarray:
    """Palette, 0xFF marker, then one index byte per stain."""
    elem_size = 2 * components
    if size < STAIN_COUNT + 1:
        raise DecodeError(f"indexed table of {size} bytes too small for {STAIN_COUNT} indices", start, field)
    marker_at = _indexed_marker_offset(size, elem_size)
    palette_count = marker_at // elem_size
    if raw[marker_at] != INDEX_MARKER:
        raise DecodeError(f"expected 0xFF marker, found 0x{int(raw[marker_at]):02X}", start + marker_at, field)

    palette = np.zeros((palette_count + 1, components), dtype=np.float32)
    if palette_count:
        palette[1:] = halves_to_floats(raw[:marker_at].reshape(palette_count, elem_size))
    indices = raw[marker_at + 1:marker_at + 1 + STAIN_COUNT].astype(np.int64)
    # 0xFF doubles as "default" like index 0
    indices[indices == INDEX_MARKER] = 0
    bad = np.nonzero(indices > palette_count)[0]
    if bad.size:
        where = int(bad[0])
        raise DecodeError(f"stain {where} selects palette entry {int(indices[where])} of {palette_count}",
                          start + marker_at + 1 + where, field)
    return palette[indices]


def _decode_channel(buffer: bytes, start: int, size: int, components: int, field: str) -> np.ndarray:
    """Expand one sub-table to 128 slots; shape (128, components)."""
    elem_size = 2 * components
    out = np.zeros((STAIN_COUNT, components), dtype=np.float32)
    count = size // elem_size
    if count == 0:
        return out

    raw = np.frombuffer(buffer, dtype=np.uint8, count=size, offset=start)

    if count == 1:
        out[:] = halves_to_floats(raw[:elem_size])
        return out

    if count >= STAIN_COUNT and not _looks_indexed(raw, size, elem_size):
        values = raw[:STAIN_COUNT * elem_size].reshape(STAIN_COUNT, elem_size)
        return halves_to_floats(values)

    return _decode_indexed(raw, start, size, components, field)


def _read_entry(buffer: bytes, entry_start: int, template_id: int) -> StainingTemplateEntry:
    cur = BinaryCursor(buffer, entry_start)
    ends = [cur.read_u16(f'template[{template_id}].{name}.end') * 2 for name, _ in CHANNELS]
    data_start = cur.tell()
    if data_start + ends[-1] > len(buffer):
        raise DecodeError(f"entry data of {ends[-1]} bytes runs past end of file", data_start,
                          f'template[{template_id}]')

    channels = {}
    previous = 0
    for (name, components), end in zip(CHANNELS, ends):
        if end < previous:
            raise DecodeError(f"sub-table end {end} precedes previous end {previous}", entry_start,
                              f'template[{template_id}].{name}')
        decoded = _decode_channel(buffer, data_start + previous, end - previous, components,
                                  f'template[{template_id}].{name}')
        channels[name] = decoded if components > 1 else decoded[:, 0].copy()
        previous = end
    return StainingTemplateEntry(**channels)


def parse_staining_template(buffer: bytes) -> StainingTemplate:
    """Parse a raw .stm file; raises DecodeError on malformed data."""
    cur = BinaryCursor(buffer)
    cur.read_bytes(4, 'header.magic')
    entry_count = cur.read_u32('header.entry_count')
    keys = [cur.read_u32('header.keys') for _ in range(entry_count)]
    offsets = [cur.read_u32('header.offsets') for _ in range(entry_count)]
    data_base = cur.tell()

    entries = {}
    for key, offset in zip(keys, offsets):
        entries[key] = _read_entry(buffer, data_base + offset * 2, key)
    return StainingTemplate(entries)


def load_staining_template(game) -> Optional[StainingTemplate]:
    """Read and parse the staining template through the game-data layer."""
    try:
        data = game.read_file(STM_PATH)
    except LookupError as e:
        print(f"  ⚠️ Staining template unavailable: {e}")
        return None
    stm = parse_staining_template(data)
    print(f"  ✅ Staining template: {len(stm)} templates")
    return stm
