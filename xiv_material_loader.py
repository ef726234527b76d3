"""
XIV Material Texture Loader
Resolves each mesh's material, picks its diffuse/normal/mask textures and
bakes a diffuse from the color table when the material ships none.
Textures are loaded once per material index.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from xiv_game_data import material_path
from xiv_materials import ColorDyeTable, ColorTable, ParsedMaterial
from xiv_mdl_parser import MeshData
from xiv_texture_bake import (
    TextureData,
    bake_color_table_texture,
    bake_emissive_texture,
    fallback_white,
    has_emissive,
)


@dataclass
class MeshTextures:
    diffuse: TextureData
    normal: Optional[TextureData] = None
    mask: Optional[TextureData] = None
    emissive: Optional[TextureData] = None


@dataclass
class CachedMaterial:
    color_table: Optional[ColorTable] = None
    color_dye_table: Optional[ColorDyeTable] = None
    id_texture: Optional[TextureData] = None
    uses_color_table: bool = False
    material_path: str = ''


@dataclass
class MaterialLoadResult:
    mesh_textures: List[MeshTextures]
    materials: Dict[int, CachedMaterial]


def _is_non_diffuse(path: str) -> bool:
    return (path.endswith('_n.tex') or path.endswith('_s.tex') or path.endswith('_m.tex')
            or '_norm.' in path or '_mask.' in path or '_id.' in path)


def _first(paths: List[str], predicate) -> Optional[str]:
    for p in paths:
        if predicate(p):
            return p
    return None


def find_diffuse_path(texture_paths: List[str]) -> Optional[str]:
    """_d.tex, then the Dawntrail _base.tex, then any real non-auxiliary texture."""
    return (_first(texture_paths, lambda p: p.endswith('_d.tex'))
            or _first(texture_paths, lambda p: '_base.tex' in p)
            or _first(texture_paths, lambda p: p and '/' in p and not _is_non_diffuse(p)))


def find_normal_path(texture_paths: List[str]) -> Optional[str]:
    return (_first(texture_paths, lambda p: p.endswith('_n.tex'))
            or _first(texture_paths, lambda p: '_norm.' in p))


def find_mask_path(texture_paths: List[str]) -> Optional[str]:
    return (_first(texture_paths, lambda p: '_mask.' in p)
            or _first(texture_paths, lambda p: p.endswith('_m.tex'))
            or _first(texture_paths, lambda p: p.endswith('_s.tex')))


def find_id_texture_path(texture_paths: List[str]) -> Optional[str]:
    return _first(texture_paths, lambda p: '_id.' in p)


def material_candidates(short_name: str, set_id: int, variant_id: int) -> List[str]:
    if variant_id != 1:
        return [material_path(short_name, set_id, variant_id), material_path(short_name, set_id, 1)]
    return [material_path(short_name, set_id, 1)]


def _textures_for_material(game, material: ParsedMaterial, path: str):
    """(MeshTextures, CachedMaterial) for one parsed material, or None."""
    normal = None
    normal_path = find_normal_path(material.texture_paths)
    if normal_path:
        normal = game.parsed_tex(normal_path)

    mask = None
    mask_path = find_mask_path(material.texture_paths)
    if mask_path:
        mask = game.parsed_tex(mask_path)

    diffuse_path = find_diffuse_path(material.texture_paths)
    if diffuse_path:
        print(f"    TEX: {diffuse_path}")
        diffuse = game.parsed_tex(diffuse_path)
        if diffuse is None:
            print("    ⚠️ Diffuse texture failed to load")
            return None
        cached = CachedMaterial(material.color_table, material.color_dye_table, None, False, path)
        return MeshTextures(diffuse, normal, mask, None), cached

    if material.color_table is None:
        print("    ⚠️ Material has neither a diffuse texture nor a color table")
        return None
    id_path = find_id_texture_path(material.texture_paths)
    if id_path is None:
        print("    ⚠️ Color table without an _id texture")
        return None
    id_tex = game.parsed_tex(id_path)
    if id_tex is None:
        print(f"    ⚠️ Failed to load {id_path}")
        return None

    print(f"    🎨 Baking color table through {id_path}")
    baked = bake_color_table_texture(id_tex, material.color_table)
    emissive = None
    if has_emissive(material.color_table):
        emissive = bake_emissive_texture(id_tex, material.color_table)
    cached = CachedMaterial(material.color_table, material.color_dye_table, id_tex, True, path)
    return MeshTextures(baked, normal, mask, emissive), cached


def load_material_textures(game, short_name: str, set_id: int, variant_id: int):
    """Try the item variant's material, then v0001."""
    for path in material_candidates(short_name, set_id, variant_id):
        print(f"    Trying MTRL: {path}")
        material = game.parsed_mtrl(path)
        if material is None:
            continue
        loaded = _textures_for_material(game, material, path)
        if loaded is not None:
            return loaded
    return None


def load_mesh_textures(game, material_names: List[str], meshes: List[MeshData],
                       set_id: int, variant_id: int) -> MaterialLoadResult:
    """Textures for every mesh; meshes without a usable material get a white 1x1."""
    texture_cache: Dict[int, MeshTextures] = {}
    materials: Dict[int, CachedMaterial] = {}
    mesh_textures = []

    for mesh in meshes:
        index = mesh.material_index
        if index not in texture_cache:
            loaded = None
            if index < len(material_names):
                print(f"  Material [{index}]: {material_names[index]}")
                loaded = load_material_textures(game, material_names[index], set_id, variant_id)
            else:
                print(f"  ⚠️ Material index {index} out of range ({len(material_names)} names)")

            if loaded is None:
                print("    ⚠️ Using white fallback texture")
                texture_cache[index] = MeshTextures(fallback_white())
            else:
                textures, cached = loaded
                print(f"    ✅ {textures.diffuse.width}x{textures.diffuse.height} "
                      f"normal={textures.normal is not None} mask={textures.mask is not None} "
                      f"emissive={textures.emissive is not None}")
                texture_cache[index] = textures
                materials[index] = cached

        cached_textures = texture_cache[index]
        mesh_textures.append(MeshTextures(cached_textures.diffuse, cached_textures.normal,
                                          cached_textures.mask, cached_textures.emissive))

    return MaterialLoadResult(mesh_textures, materials)
