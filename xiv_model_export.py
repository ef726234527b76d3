"""
XIV Model Export
Builds a trimesh scene from parsed meshes and their (baked) textures and
writes it out as .glb. Meshes are already skinned onto their final pose, so
no armature is exported.
"""

from typing import List, Optional

import numpy as np
import trimesh

from xiv_material_loader import MeshTextures
from xiv_mdl_parser import MeshData


def build_material(textures: Optional[MeshTextures], name: str) -> trimesh.visual.material.PBRMaterial:
    material = trimesh.visual.material.PBRMaterial()
    material.name = name
    material.baseColorFactor = [1.0, 1.0, 1.0, 1.0]
    if textures is None:
        return material

    material.baseColorTexture = textures.diffuse.to_image()
    if textures.normal is not None:
        material.normalTexture = textures.normal.to_image()
    if textures.emissive is not None:
        material.emissiveTexture = textures.emissive.to_image()
        material.emissiveFactor = [1.0, 1.0, 1.0]
    material.metallicFactor = 0.0
    material.roughnessFactor = 1.0
    return material


def mesh_to_trimesh(mesh: MeshData, textures: Optional[MeshTextures], name: str) -> trimesh.Trimesh:
    """Trimesh with the mesh's UVs and a PBR material built from its textures."""
    result = mesh.to_trimesh()
    # glTF UV origin is top-left, trimesh flips V on export
    uv = mesh.uvs.astype(np.float64).copy()
    uv[:, 1] = 1.0 - uv[:, 1]
    result.visual = trimesh.visual.TextureVisuals(uv=uv, material=build_material(textures, name))
    return result


def build_scene(meshes: List[MeshData], mesh_textures: Optional[List[MeshTextures]] = None,
                name: str = 'model') -> trimesh.Scene:
    scene = trimesh.Scene()
    for i, mesh in enumerate(meshes):
        if mesh.vertex_count == 0 or mesh.index_count < 3:
            print(f"  ⚠️ Skipping empty mesh {i}")
            continue
        textures = mesh_textures[i] if mesh_textures and i < len(mesh_textures) else None
        node_name = f"{name}_mesh{i}"
        scene.add_geometry(mesh_to_trimesh(mesh, textures, f"{node_name}_material"), node_name=node_name)
    return scene


def export_glb(scene: trimesh.Scene, output_path: str) -> bool:
    if not scene.geometry:
        print("❌ Nothing to export")
        return False
    data = scene.export(file_type='glb')
    with open(output_path, 'wb') as f:
        f.write(data)
    print(f"✅ Wrote {output_path} ({len(scene.geometry)} meshes, {len(data)} bytes)")
    return True
