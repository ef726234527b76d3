"""
XIV Model Container Parser
Decodes .mdl mesh containers into per-mesh numpy vertex/index buffers.
Only the highest-detail LOD is extracted; every declared vertex element is
gathered from its interleaved stream and decoded per its numeric format.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import trimesh

from xiv_binary import BinaryCursor, DecodeError, halves_to_floats, read_c_string
from xiv_game_data import AssetUnavailableError

# Vertex declaration layout
VERTEX_ELEMENT_SLOTS = 17
VERTEX_ELEMENT_SIZE = 8
STREAM_END = 0xFF
MAX_STREAMS = 3
LOD_COUNT = 3

# Containers at or below this version use fixed 64-entry bone tables
BONE_TABLE_V2_VERSION = 0x1000005
EXTRA_LOD_FLAG = 0x10

# Numeric formats
FORMAT_SINGLE2 = 1
FORMAT_SINGLE3 = 2
FORMAT_SINGLE4 = 3
FORMAT_UBYTE4 = 5
FORMAT_NBYTE4 = 8
FORMAT_HALF2 = 13
FORMAT_HALF4 = 14

FORMAT_SIZES = {
    FORMAT_SINGLE2: 8,
    FORMAT_SINGLE3: 12,
    FORMAT_SINGLE4: 16,
    FORMAT_UBYTE4: 4,
    FORMAT_NBYTE4: 4,
    FORMAT_HALF2: 4,
    FORMAT_HALF4: 8,
}

# Element usages
USAGE_POSITION = 0
USAGE_BLEND_WEIGHT = 1
USAGE_BLEND_INDEX = 2
USAGE_NORMAL = 3
USAGE_UV = 4
USAGE_TANGENT = 6
USAGE_COLOR = 7


@dataclass
class VertexElement:
    stream: int
    offset: int
    format: int
    usage: int
    record_offset: int = 0  # file position of the 8-byte record


@dataclass
class MdlLod:
    mesh_index: int
    mesh_count: int
    vertex_data_offset: int
    index_data_offset: int
    record_offset: int = 0


@dataclass
class MdlMesh:
    vertex_count: int
    index_count: int
    material_index: int
    submesh_index: int
    submesh_count: int
    bone_table_index: int
    start_index: int
    vertex_buffer_offset: Tuple[int, int, int]
    vertex_buffer_stride: Tuple[int, int, int]
    stream_count: int
    record_offset: int = 0


@dataclass
class MdlBoneTable:
    """Local (skin-weight) bone index -> global bone-name index."""
    bone_indices: List[int] = field(default_factory=list)


@dataclass
class MeshData:
    positions: np.ndarray
    normals: np.ndarray
    uvs: np.ndarray
    colors: np.ndarray
    tangents: np.ndarray
    blend_weights: np.ndarray
    blend_indices: np.ndarray
    indices: np.ndarray
    material_index: int = 0
    bone_table_index: int = 0

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def index_count(self) -> int:
        return len(self.indices)

    @classmethod
    def empty(cls, vertex_count: int, material_index: int = 0, bone_table_index: int = 0) -> 'MeshData':
        """Vertices at their neutral defaults, no indices."""
        normals = np.zeros((vertex_count, 3), dtype=np.float32)
        normals[:, 1] = 1.0
        tangents = np.zeros((vertex_count, 4), dtype=np.float32)
        tangents[:, 0] = 1.0
        tangents[:, 3] = 1.0
        return cls(
            positions=np.zeros((vertex_count, 3), dtype=np.float32),
            normals=normals,
            uvs=np.zeros((vertex_count, 2), dtype=np.float32),
            colors=np.ones((vertex_count, 4), dtype=np.float32),
            tangents=tangents,
            blend_weights=np.zeros((vertex_count, 4), dtype=np.float32),
            blend_indices=np.zeros((vertex_count, 4), dtype=np.uint8),
            indices=np.zeros(0, dtype=np.uint16),
            material_index=material_index,
            bone_table_index=bone_table_index,
        )

    def to_trimesh(self) -> trimesh.Trimesh:
        """Unprocessed trimesh with normals, UVs and vertex colors attached."""
        usable = self.index_count - self.index_count % 3
        faces = self.indices[:usable].astype(np.int64).reshape(-1, 3)
        mesh = trimesh.Trimesh(
            vertices=self.positions.astype(np.float64),
            faces=faces,
            vertex_normals=self.normals.astype(np.float64),
            process=False,
        )
        mesh.visual = trimesh.visual.TextureVisuals(uv=self.uvs.astype(np.float64))
        mesh.metadata['vertex_colors'] = self.colors.copy()
        mesh.metadata['tangents'] = self.tangents.copy()
        return mesh


@dataclass
class MdlResult:
    meshes: List[MeshData]
    material_names: List[str]
    bone_names: List[str]
    bone_tables: List[MdlBoneTable]
    version: int = 0
    source_path: Optional[str] = None


def _read_vertex_declarations(cur: BinaryCursor, count: int) -> List[List[VertexElement]]:
    decls = []
    for d in range(count):
        elements = []
        for slot in range(VERTEX_ELEMENT_SLOTS):
            record_offset = cur.tell()
            stream = cur.read_u8(f'vertex_decl[{d}].stream')
            if stream == STREAM_END:
                # Rest of the fixed-size declaration is unused
                cur.skip(VERTEX_ELEMENT_SIZE * (VERTEX_ELEMENT_SLOTS - slot) - 1, f'vertex_decl[{d}].padding')
                break
            offset = cur.read_u8(f'vertex_decl[{d}].offset')
            fmt = cur.read_u8(f'vertex_decl[{d}].format')
            usage = cur.read_u8(f'vertex_decl[{d}].usage')
            cur.skip(4, f'vertex_decl[{d}].padding')
            elements.append(VertexElement(stream, offset, fmt, usage, record_offset))
        decls.append(elements)
    return decls


def _read_lod(cur: BinaryCursor, index: int) -> MdlLod:
    name = f'lod[{index}]'
    record_offset = cur.tell()
    mesh_index = cur.read_u16(f'{name}.mesh_index')
    mesh_count = cur.read_u16(f'{name}.mesh_count')
    # model_lod_range, texture_lod_range, water/shadow/terrain/fog ranges, edge geometry
    cur.skip(8 + 16 + 16 + 8, f'{name}.ranges')
    vertex_data_offset = cur.read_u32(f'{name}.vertex_data_offset')
    index_data_offset = cur.read_u32(f'{name}.index_data_offset')
    return MdlLod(mesh_index, mesh_count, vertex_data_offset, index_data_offset, record_offset)


def _read_mesh(cur: BinaryCursor, index: int) -> MdlMesh:
    name = f'mesh[{index}]'
    record_offset = cur.tell()
    vertex_count = cur.read_u16(f'{name}.vertex_count')
    cur.skip(2, f'{name}.padding')
    index_count = cur.read_u32(f'{name}.index_count')
    material_index = cur.read_u16(f'{name}.material_index')
    submesh_index = cur.read_u16(f'{name}.submesh_index')
    submesh_count = cur.read_u16(f'{name}.submesh_count')
    bone_table_index = cur.read_u16(f'{name}.bone_table_index')
    start_index = cur.read_u32(f'{name}.start_index')
    offsets = tuple(cur.read_u32(f'{name}.vertex_buffer_offset') for _ in range(MAX_STREAMS))
    strides = tuple(cur.read_u8(f'{name}.vertex_buffer_stride') for _ in range(MAX_STREAMS))
    stream_count = cur.read_u8(f'{name}.stream_count')
    return MdlMesh(vertex_count, index_count, material_index, submesh_index, submesh_count,
                   bone_table_index, start_index, offsets, strides, stream_count, record_offset)


def _read_bone_tables(cur: BinaryCursor, version: int, count: int) -> List[MdlBoneTable]:
    tables = []
    if version <= BONE_TABLE_V2_VERSION:
        for t in range(count):
            indices = [cur.read_u16(f'bone_table[{t}].indices') for _ in range(64)]
            used = cur.read_u8(f'bone_table[{t}].count')
            cur.skip(3, f'bone_table[{t}].padding')
            if used > 64:
                raise DecodeError(f"bone table declares {used} of 64 entries", cur.tell() - 4, f'bone_table[{t}].count')
            tables.append(MdlBoneTable(indices[:used]))
        return tables

    counts = []
    for t in range(count):
        cur.read_u16(f'bone_table[{t}].offset')
        counts.append(cur.read_u16(f'bone_table[{t}].count'))
    for t, used in enumerate(counts):
        indices = [cur.read_u16(f'bone_table[{t}].indices') for _ in range(used)]
        cur.align(4, f'bone_table[{t}].padding')
        tables.append(MdlBoneTable(indices))
    return tables


def _gather_element(data: np.ndarray, mesh: MdlMesh, lod: MdlLod, elem: VertexElement,
                    size: int, field_name: str) -> np.ndarray:
    """Bytes of one element for every vertex, shape (vertex_count, size)."""
    if elem.stream >= MAX_STREAMS:
        raise DecodeError(f"stream id {elem.stream} outside 0..{MAX_STREAMS - 1}", elem.record_offset,
                          field_name)
    base = (lod.vertex_data_offset + mesh.vertex_buffer_offset[elem.stream] + elem.offset)
    starts = base + mesh.vertex_buffer_stride[elem.stream] * np.arange(mesh.vertex_count, dtype=np.int64)
    last = int(starts[-1]) + size
    if last > len(data):
        bad = int(starts[np.searchsorted(starts + size, len(data), side='right')])
        raise DecodeError(f"vertex element needs {size} bytes past end of {len(data)} byte buffer", bad, field_name)
    return data[starts[:, None] + np.arange(size, dtype=np.int64)]


def _decode_floats(raw: np.ndarray, fmt: int) -> np.ndarray:
    if fmt in (FORMAT_HALF2, FORMAT_HALF4):
        return halves_to_floats(raw)
    if fmt in (FORMAT_SINGLE2, FORMAT_SINGLE3, FORMAT_SINGLE4):
        return np.ascontiguousarray(raw).view('<f4').astype(np.float32)
    # byte formats normalized to [0, 1]
    return raw.astype(np.float32) / 255.0


# (usage, format) pairs this pass understands
_DECODED_ELEMENTS = {
    (USAGE_POSITION, FORMAT_SINGLE3), (USAGE_POSITION, FORMAT_SINGLE4), (USAGE_POSITION, FORMAT_HALF4),
    (USAGE_BLEND_WEIGHT, FORMAT_NBYTE4), (USAGE_BLEND_WEIGHT, FORMAT_UBYTE4),
    (USAGE_BLEND_INDEX, FORMAT_UBYTE4),
    (USAGE_NORMAL, FORMAT_SINGLE3), (USAGE_NORMAL, FORMAT_SINGLE4), (USAGE_NORMAL, FORMAT_HALF4),
    (USAGE_NORMAL, FORMAT_NBYTE4),
    (USAGE_UV, FORMAT_SINGLE2), (USAGE_UV, FORMAT_HALF2), (USAGE_UV, FORMAT_HALF4),
    (USAGE_TANGENT, FORMAT_HALF4), (USAGE_TANGENT, FORMAT_NBYTE4),
    (USAGE_COLOR, FORMAT_NBYTE4),
}


def _decode_mesh(data: np.ndarray, mesh: MdlMesh, decl: List[VertexElement], lod: MdlLod,
                 mesh_number: int) -> MeshData:
    out = MeshData.empty(mesh.vertex_count, mesh.material_index, mesh.bone_table_index)

    for elem in decl:
        key = (elem.usage, elem.format)
        if key not in _DECODED_ELEMENTS:
            continue
        field_name = f'mesh[{mesh_number}].element(usage={elem.usage}, format={elem.format})'
        raw = _gather_element(data, mesh, lod, elem, FORMAT_SIZES[elem.format], field_name)

        if elem.usage == USAGE_BLEND_INDEX:
            out.blend_indices = raw.astype(np.uint8)
            continue

        values = _decode_floats(raw, elem.format)
        if elem.usage == USAGE_POSITION:
            out.positions = values[:, :3].copy()
        elif elem.usage == USAGE_BLEND_WEIGHT:
            out.blend_weights = values
        elif elem.usage == USAGE_NORMAL:
            if elem.format == FORMAT_NBYTE4:
                values = values * 2.0 - 1.0
            out.normals = values[:, :3].copy()
        elif elem.usage == USAGE_UV:
            out.uvs = values[:, :2].copy()
        elif elem.usage == USAGE_TANGENT:
            if elem.format == FORMAT_NBYTE4:
                values = values * 2.0 - 1.0
            out.tangents = values
        elif elem.usage == USAGE_COLOR:
            out.colors = values

    start = lod.index_data_offset + mesh.start_index * 2
    end = start + mesh.index_count * 2
    if end > len(data):
        raise DecodeError(f"{mesh.index_count} indices run past end of {len(data)} byte buffer",
                          start, f'mesh[{mesh_number}].indices')
    out.indices = data[start:end].view('<u2').astype(np.uint16)
    return out


def parse_mdl(buffer: bytes) -> MdlResult:
    """Parse a raw .mdl container; raises DecodeError on truncated or malformed data."""
    cur = BinaryCursor(buffer)

    # Step 1: File header
    version = cur.read_u32('header.version')
    cur.read_u32('header.stack_size')
    cur.read_u32('header.runtime_size')
    vertex_decl_count = cur.read_u16('header.vertex_declaration_count')
    cur.read_u16('header.material_count')
    cur.skip(48, 'header.buffer_offsets')
    cur.skip(4, 'header.lod_flags')

    # Step 2: Vertex declarations
    decls = _read_vertex_declarations(cur, vertex_decl_count)

    # Step 3: String block
    cur.read_u16('strings.count')
    cur.skip(2, 'strings.padding')
    string_size = cur.read_u32('strings.size')
    string_block = cur.read_bytes(string_size, 'strings.block')

    # Step 4: Model header
    cur.read_f32('model_header.radius')
    mesh_count = cur.read_u16('model_header.mesh_count')
    attribute_count = cur.read_u16('model_header.attribute_count')
    submesh_count = cur.read_u16('model_header.submesh_count')
    material_count = cur.read_u16('model_header.material_count')
    bone_count = cur.read_u16('model_header.bone_count')
    bone_table_count = cur.read_u16('model_header.bone_table_count')
    cur.read_u16('model_header.shape_count')
    cur.read_u16('model_header.shape_mesh_count')
    cur.read_u16('model_header.shape_value_count')
    cur.read_u8('model_header.lod_count')
    cur.read_u8('model_header.flags1')
    element_id_count = cur.read_u16('model_header.element_id_count')
    terrain_shadow_mesh_count = cur.read_u8('model_header.terrain_shadow_mesh_count')
    flags2 = cur.read_u8('model_header.flags2')
    cur.skip(8, 'model_header.clip_distances')
    cur.read_u16('model_header.unknown4')
    terrain_shadow_submesh_count = cur.read_u16('model_header.terrain_shadow_submesh_count')
    cur.skip(16, 'model_header.reserved')

    # Step 5: Element ids, LODs and the optional extra LOD block
    cur.skip(element_id_count * 32, 'element_ids')
    lods = [_read_lod(cur, i) for i in range(LOD_COUNT)]
    if flags2 & EXTRA_LOD_FLAG:
        cur.skip(32 * LOD_COUNT, 'extra_lods')

    # Step 6: Mesh records and the tables we don't need
    meshes = [_read_mesh(cur, i) for i in range(mesh_count)]
    cur.skip(attribute_count * 4, 'attribute_name_offsets')
    cur.skip(terrain_shadow_mesh_count * 20, 'terrain_shadow_meshes')
    cur.skip(submesh_count * 16, 'submeshes')
    cur.skip(terrain_shadow_submesh_count * 12, 'terrain_shadow_submeshes')

    material_offsets = [cur.read_u32('material_name_offsets') for _ in range(material_count)]
    bone_offsets = [cur.read_u32('bone_name_offsets') for _ in range(bone_count)]
    bone_tables = _read_bone_tables(cur, version, bone_table_count)

    material_names = [read_c_string(string_block, off) for off in material_offsets]
    bone_names = [read_c_string(string_block, off) for off in bone_offsets]

    # Step 7: Vertex and index data for LOD 0 only
    data = np.frombuffer(buffer, dtype=np.uint8)
    lod = lods[0]
    result_meshes = []
    for mi in range(lod.mesh_index, lod.mesh_index + lod.mesh_count):
        if mi >= len(meshes):
            raise DecodeError(f"LOD 0 references mesh {mi} of {len(meshes)}", lod.record_offset,
                              'lod[0].mesh_index')
        if mi >= len(decls):
            raise DecodeError(f"mesh {mi} has no vertex declaration ({len(decls)} declared)",
                              meshes[mi].record_offset,
                              f'mesh[{mi}].vertex_declaration')
        mesh = meshes[mi]
        if mesh.vertex_count == 0:
            continue
        result_meshes.append(_decode_mesh(data, mesh, decls[mi], lod, mi))

    return MdlResult(
        meshes=result_meshes,
        material_names=material_names,
        bone_names=bone_names,
        bone_tables=bone_tables,
        version=version,
    )


def load_mdl(game, path: str) -> MdlResult:
    """Read a container through the game-data layer and parse it."""
    result = parse_mdl(game.read_file(path))
    result.source_path = path
    return result


def load_mdl_with_fallback(game, paths: Sequence[str]) -> MdlResult:
    """First candidate path that parses into at least one non-empty mesh."""
    last_error = None
    for path in paths:
        try:
            result = load_mdl(game, path)
        except (AssetUnavailableError, DecodeError) as e:
            print(f"  ⚠️ {path}: {e}")
            last_error = e
            continue
        if result.meshes:
            return result
        print(f"  ⚠️ {path}: no meshes in LOD 0")
        last_error = AssetUnavailableError(f"{path}: no meshes in LOD 0")
    if last_error is None:
        raise AssetUnavailableError("no candidate model paths")
    raise AssetUnavailableError(f"no candidate model loaded, last error: {last_error}") from last_error


def compute_bounding_box(meshes: List[MeshData]) -> Tuple[List[float], List[float]]:
    """(min, max) over every vertex position; zero corners when there are none."""
    stacked = [m.positions for m in meshes if len(m.positions)]
    if not stacked:
        return [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
    all_positions = np.concatenate(stacked, axis=0)
    return all_positions.min(axis=0).tolist(), all_positions.max(axis=0).tolist()


def summarize_mdl(result: MdlResult) -> Dict[str, int]:
    return {
        'meshes': len(result.meshes),
        'vertices': sum(m.vertex_count for m in result.meshes),
        'indices': sum(m.index_count for m in result.meshes),
        'materials': len(result.material_names),
        'bones': len(result.bone_names),
    }
