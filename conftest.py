"""
Shared pytest fixtures: byte builders for synthetic .mdl and .stm files and
an in-memory game data store.
"""

import struct

import numpy as np
import pytest

from xiv_game_data import AssetUnavailableError, GameData
from xiv_mdl_parser import (
    FORMAT_HALF2,
    FORMAT_NBYTE4,
    FORMAT_SINGLE3,
    FORMAT_UBYTE4,
    USAGE_BLEND_INDEX,
    USAGE_BLEND_WEIGHT,
    USAGE_COLOR,
    USAGE_NORMAL,
    USAGE_POSITION,
    USAGE_TANGENT,
    USAGE_UV,
)

# stream 0: position f32x3, blend weights, blend indices
# stream 1: normal f32x3, tangent, color, uv half2
DEFAULT_DECL = [
    (0, 0, FORMAT_SINGLE3, USAGE_POSITION),
    (0, 12, FORMAT_NBYTE4, USAGE_BLEND_WEIGHT),
    (0, 16, FORMAT_UBYTE4, USAGE_BLEND_INDEX),
    (1, 0, FORMAT_SINGLE3, USAGE_NORMAL),
    (1, 12, FORMAT_NBYTE4, USAGE_TANGENT),
    (1, 16, FORMAT_NBYTE4, USAGE_COLOR),
    (1, 20, FORMAT_HALF2, USAGE_UV),
]
STREAM0_STRIDE = 20
STREAM1_STRIDE = 24


def mesh_spec(positions, indices, normals=None, uvs=None, colors=None, tangents=None,
              weights=None, bone_indices=None, material_index=0, bone_table_index=0, decl=None,
              raw_streams=None, strides=None):
    """Description of one mesh for build_mdl. Weights are raw bytes (0-255)."""
    n = len(positions)
    return {
        'positions': np.asarray(positions, dtype=np.float32).reshape(n, 3),
        'normals': np.asarray(normals if normals is not None else [[0.0, 1.0, 0.0]] * n, dtype=np.float32),
        'uvs': np.asarray(uvs if uvs is not None else [[0.0, 0.0]] * n, dtype=np.float32),
        'colors': np.asarray(colors if colors is not None else [[1.0, 1.0, 1.0, 1.0]] * n, dtype=np.float32),
        'tangents': np.asarray(tangents if tangents is not None else [[1.0, 0.0, 0.0, 1.0]] * n, dtype=np.float32),
        'weights': np.asarray(weights if weights is not None else [[255, 0, 0, 0]] * n, dtype=np.uint8),
        'bone_indices': np.asarray(bone_indices if bone_indices is not None else [[0, 0, 0, 0]] * n, dtype=np.uint8),
        'indices': list(indices),
        'material_index': material_index,
        'bone_table_index': bone_table_index,
        'decl': decl,
        'raw_streams': raw_streams,
        'strides': strides,
    }


def _unorm(values) -> list:
    return [int(round(min(max(v, 0.0), 1.0) * 255)) for v in values]


def _default_streams(mesh) -> tuple:
    s0 = bytearray()
    s1 = bytearray()
    for k in range(len(mesh['positions'])):
        s0 += struct.pack('<3f', *mesh['positions'][k])
        s0 += bytes(mesh['weights'][k].tolist())
        s0 += bytes(mesh['bone_indices'][k].tolist())
        s1 += struct.pack('<3f', *mesh['normals'][k])
        s1 += bytes(_unorm((mesh['tangents'][k] + 1.0) / 2.0))
        s1 += bytes(_unorm(mesh['colors'][k]))
        s1 += struct.pack('<2e', *mesh['uvs'][k])
    return bytes(s0), bytes(s1)


def _decl_bytes(elements) -> bytes:
    out = bytearray()
    for stream, offset, fmt, usage in elements:
        out += struct.pack('<BBBB4x', stream, offset, fmt, usage)
    if len(elements) < 17:
        out += b'\xff' + b'\x00' * (8 * (17 - len(elements)) - 1)
    return bytes(out)


def build_mdl(meshes, version=0x01000005, material_names=(), bone_names=(), bone_tables=(),
              lod0_range=None, extra_lod=False, empty_meshes=()):
    """Assemble a complete .mdl container.

    empty_meshes lists mesh slots (by final index) that get vertex_count 0.
    """
    all_meshes = list(meshes)
    for slot in sorted(empty_meshes):
        all_meshes.insert(slot, None)
    mesh_count = len(all_meshes)
    if lod0_range is None:
        lod0_range = (0, mesh_count)

    # String block
    block = bytearray()
    material_offsets = []
    for name in material_names:
        material_offsets.append(len(block))
        block += name.encode() + b'\0'
    bone_offsets = []
    for name in bone_names:
        bone_offsets.append(len(block))
        block += name.encode() + b'\0'

    # Vertex streams and index data
    vertex_data = bytearray()
    index_data = bytearray()
    layouts = []
    start_index = 0
    for mesh in all_meshes:
        if mesh is None:
            layouts.append((0, 0, 0, (0, 0, 0), (0, 0, 0)))
            continue
        streams = mesh['raw_streams'] or _default_streams(mesh)
        strides = mesh['strides'] or (STREAM0_STRIDE, STREAM1_STRIDE, 0)
        offsets = []
        for stream in streams:
            offsets.append(len(vertex_data))
            vertex_data += stream
        while len(offsets) < 3:
            offsets.append(0)
        layouts.append((len(mesh['positions']), len(mesh['indices']), start_index, tuple(offsets), tuple(strides)))
        index_data += struct.pack(f"<{len(mesh['indices'])}H", *mesh['indices'])
        start_index += len(mesh['indices'])

    def metadata(vertex_data_offset: int, index_data_offset: int) -> bytes:
        out = bytearray()
        out += struct.pack('<IIIHH', version, 0, 0, mesh_count, len(material_names))
        out += b'\0' * 48
        out += b'\0' * 4
        for mesh in all_meshes:
            out += _decl_bytes((mesh or {}).get('decl') or DEFAULT_DECL)
        out += struct.pack('<HHI', len(material_names) + len(bone_names), 0, len(block)) + bytes(block)
        out += struct.pack('<f9HBBHBB8xHH16x', 1.0, mesh_count, 0, 0, len(material_names), len(bone_names),
                           len(bone_tables), 0, 0, 0, 1, 0, 0, 0, 0x10 if extra_lod else 0, 0, 0)
        out += struct.pack('<HH48xII', lod0_range[0], lod0_range[1] - lod0_range[0],
                           vertex_data_offset, index_data_offset)
        out += struct.pack('<HH48xII', 0, 0, 0, 0) * 2
        if extra_lod:
            out += b'\0' * 96
        for mesh, (vcount, icount, start, offsets, strides) in zip(all_meshes, layouts):
            material_index = mesh['material_index'] if mesh else 0
            bone_table_index = mesh['bone_table_index'] if mesh else 0
            out += struct.pack('<H2xIHHHHI3I3BB', vcount, icount, material_index, 0, 0, bone_table_index,
                               start, offsets[0], offsets[1], offsets[2], strides[0], strides[1], strides[2], 2)
        for off in material_offsets:
            out += struct.pack('<I', off)
        for off in bone_offsets:
            out += struct.pack('<I', off)
        if version <= 0x01000005:
            for table in bone_tables:
                padded = list(table) + [0] * (64 - len(table))
                out += struct.pack('<64HB3x', *padded, len(table))
        else:
            for table in bone_tables:
                out += struct.pack('<HH', 0, len(table))
            for table in bone_tables:
                out += struct.pack(f'<{len(table)}H', *table)
                out += b'\0' * ((-len(out)) % 4)
        return bytes(out)

    head_size = len(metadata(0, 0))
    vertex_data_offset = head_size
    index_data_offset = head_size + len(vertex_data)
    return metadata(vertex_data_offset, index_data_offset) + bytes(vertex_data) + bytes(index_data)


def _half_bytes(values) -> bytes:
    return struct.pack(f'<{len(values)}e', *values)


def stm_singleton(value) -> bytes:
    return _half_bytes(list(value))


def stm_one_to_one(values) -> bytes:
    return b''.join(_half_bytes(list(v)) for v in values)


def stm_indexed(palette, indices) -> bytes:
    blob = b''.join(_half_bytes(list(v)) for v in palette) + b'\xff' + bytes(indices)
    return blob


def build_stm(entries) -> bytes:
    """entries: {template_id: [diffuse, specular, emissive, gloss, specular_power] sub-table blobs}."""
    keys = list(entries)
    bodies = []
    for key in keys:
        blobs = [b + b'\0' * (len(b) % 2) for b in entries[key]]
        ends = []
        total = 0
        for b in blobs:
            total += len(b)
            ends.append(total // 2)
        bodies.append(struct.pack('<5H', *ends) + b''.join(blobs))

    out = bytearray(b'ST\x00\x00')
    out += struct.pack('<I', len(keys))
    out += struct.pack(f'<{len(keys)}I', *keys)
    offset = 0
    offsets = []
    for body in bodies:
        offsets.append(offset // 2)
        offset += len(body)
    out += struct.pack(f'<{len(keys)}I', *offsets)
    for body in bodies:
        out += body
    return bytes(out)


class MemoryGameData(GameData):
    """Game files held in dictionaries; records what was requested."""

    def __init__(self, files=None, textures=None, materials=None, skeletons=None):
        self.files = dict(files or {})
        self.textures = dict(textures or {})
        self.materials = dict(materials or {})
        self.skeletons = dict(skeletons or {})
        self.material_requests = []
        self.skeleton_requests = []

    def read_file(self, path):
        if path not in self.files:
            raise AssetUnavailableError(f"file not found: {path}")
        return self.files[path]

    def file_exists(self, path):
        return path in self.files

    def parsed_tex(self, path):
        return self.textures.get(path)

    def parsed_mtrl(self, path):
        self.material_requests.append(path)
        return self.materials.get(path)

    def load_skeleton(self, race_code):
        self.skeleton_requests.append(race_code)
        return self.skeletons.get(race_code)


@pytest.fixture
def mdl_builder():
    return build_mdl


@pytest.fixture
def make_mesh():
    return mesh_spec


@pytest.fixture
def stm_builder():
    return build_stm


@pytest.fixture
def stm_encodings():
    return {'singleton': stm_singleton, 'one_to_one': stm_one_to_one, 'indexed': stm_indexed}


@pytest.fixture
def triangle(make_mesh):
    return make_mesh(
        positions=[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 2.0, 0.5]],
        indices=[0, 1, 2],
        normals=[[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [1.0, 0.0, 0.0]],
        uvs=[[0.0, 0.0], [0.5, 0.25], [1.0, 0.75]],
        colors=[[1.0, 0.0, 0.0, 1.0], [0.0, 1.0, 0.0, 1.0], [0.0, 0.0, 1.0, 0.0]],
        weights=[[255, 0, 0, 0], [128, 127, 0, 0], [0, 0, 0, 0]],
        bone_indices=[[0, 0, 0, 0], [0, 1, 0, 0], [0, 0, 0, 0]],
    )


@pytest.fixture
def game():
    return MemoryGameData()
