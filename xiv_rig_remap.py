"""
XIV Cross-Rig Remapper
Re-skins meshes authored for one race skeleton onto another by blending
per-bone remap matrices (target_bind * inverse(source_bind)) with the
vertex skin weights. Runs once at load time; meshes are modified in place.
"""

from typing import Dict, List, Optional

import numpy as np

from xiv_mdl_parser import MdlBoneTable, MeshData

WEIGHT_EPSILON = 1e-6
MAX_LOCAL_BONES = 256


def _remap_matrix(name: str, source_bind: Dict[str, np.ndarray], target_bind: Dict[str, np.ndarray]) -> np.ndarray:
    source = source_bind.get(name)
    target = target_bind.get(name)
    source = np.eye(4) if source is None else np.asarray(source, dtype=np.float64)
    target = np.eye(4) if target is None else np.asarray(target, dtype=np.float64)
    try:
        inverse_source = np.linalg.inv(source)
    except np.linalg.LinAlgError:
        print(f"WARNING: singular bind matrix for '{name}', using identity remap")
        return np.eye(4)
    return target @ inverse_source


def build_remap_palette(bone_table: MdlBoneTable, bone_names: List[str],
                        source_bind: Dict[str, np.ndarray],
                        target_bind: Dict[str, np.ndarray]):
    """Remap matrix per local bone index, plus which local indices resolve to a name."""
    palette = np.tile(np.eye(4), (MAX_LOCAL_BONES, 1, 1))
    resolved = np.zeros(MAX_LOCAL_BONES, dtype=bool)
    for local, global_index in enumerate(bone_table.bone_indices[:MAX_LOCAL_BONES]):
        if global_index >= len(bone_names):
            continue
        palette[local] = _remap_matrix(bone_names[global_index], source_bind, target_bind)
        resolved[local] = True
    return palette, resolved


def _normalize_rows(vectors: np.ndarray) -> np.ndarray:
    lengths = np.linalg.norm(vectors, axis=1)
    ok = np.isfinite(lengths) & (lengths > 1e-12)
    out = np.zeros_like(vectors)
    out[ok] = vectors[ok] / lengths[ok, None]
    return out


def remap_mesh(mesh: MeshData, palette: np.ndarray, resolved: np.ndarray) -> int:
    """Blend the palette by each vertex's skin weights and move the vertex. Returns vertices touched."""
    if mesh.vertex_count == 0:
        return 0

    weights = mesh.blend_weights.astype(np.float64)
    total = weights.sum(axis=1)
    skinned = total >= WEIGHT_EPSILON
    if not skinned.any():
        return 0

    weights = weights[skinned] / total[skinned, None]
    local = mesh.blend_indices[skinned].astype(np.int64)
    # Negligible influences and links that don't resolve to a bone name contribute nothing
    weights = np.where((weights >= WEIGHT_EPSILON) & resolved[local], weights, 0.0)
    blended = np.einsum('vk,vkij->vij', weights, palette[local])

    linear = blended[:, :3, :3]
    translation = blended[:, :3, 3]

    positions = mesh.positions[skinned].astype(np.float64)
    mesh.positions[skinned] = (np.einsum('vij,vj->vi', linear, positions) + translation).astype(mesh.positions.dtype)

    normals = np.einsum('vij,vj->vi', linear, mesh.normals[skinned].astype(np.float64))
    mesh.normals[skinned] = _normalize_rows(normals).astype(mesh.normals.dtype)

    tangents = mesh.tangents[skinned].astype(np.float64)
    tangent_xyz = np.einsum('vij,vj->vi', linear, tangents[:, :3])
    tangents[:, :3] = _normalize_rows(tangent_xyz)
    mesh.tangents[skinned] = tangents.astype(mesh.tangents.dtype)

    return int(skinned.sum())


def apply_skinning(meshes: List[MeshData], bone_names: List[str], bone_tables: List[MdlBoneTable],
                   source_bind: Dict[str, np.ndarray], target_bind: Dict[str, np.ndarray]) -> int:
    """Remap every mesh from the source bind pose to the target bind pose.

    Meshes whose bone table index doesn't resolve are left untouched.
    Returns the number of vertices moved.
    """
    moved = 0
    palettes: Dict[int, Optional[tuple]] = {}
    for mesh in meshes:
        table_index = mesh.bone_table_index
        if table_index >= len(bone_tables):
            continue
        if table_index not in palettes:
            palettes[table_index] = build_remap_palette(bone_tables[table_index], bone_names,
                                                        source_bind, target_bind)
        palette, resolved = palettes[table_index]
        moved += remap_mesh(mesh, palette, resolved)
    return moved
