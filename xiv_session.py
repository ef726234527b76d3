"""
XIV Model Session
Per-session state for loading equipment: the bind pose cache, the baked
texture cache and the staining template. Loads pick a model path per race,
remap meshes onto the requested race's skeleton and rebake color-table
textures when the dye selection changes.
"""

import queue
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from xiv_dye import apply_dye, has_dual_dye, resolve_dye_rows
from xiv_game_data import RACE_CODES, AssetUnavailableError, EquipmentModel, race_from_model_path
from xiv_material_loader import CachedMaterial, MaterialLoadResult, MeshTextures, load_mesh_textures
from xiv_mdl_parser import MdlResult, compute_bounding_box, load_mdl_with_fallback
from xiv_rig_remap import apply_skinning
from xiv_skeleton import SkeletonCache
from xiv_stm import StainingTemplate
from xiv_texture_bake import TextureData, bake_color_table_texture, bake_emissive_texture, has_emissive


@dataclass
class LoadedModel:
    item: EquipmentModel
    mdl: MdlResult
    race_code: str
    source_race: str
    textures: MaterialLoadResult
    bounding_box: Tuple[List[float], List[float]]
    is_dual_dye: bool = False
    remapped_vertices: int = 0

    @property
    def meshes(self):
        return self.mdl.meshes

    @property
    def materials(self) -> Dict[int, CachedMaterial]:
        return self.textures.materials


@dataclass
class LoadMessage:
    """One-shot result of a background load: kind is 'done' or 'error'."""
    kind: str
    model: Optional[LoadedModel] = None
    error: Optional[BaseException] = None


@dataclass
class ModelSession:
    game: object
    skeletons: SkeletonCache = field(default_factory=SkeletonCache)
    baked_textures: Dict[tuple, Tuple[TextureData, Optional[TextureData]]] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)
    _stm: Optional[StainingTemplate] = None
    _stm_loaded: bool = False

    @property
    def staining_template(self) -> Optional[StainingTemplate]:
        with self.lock:
            if not self._stm_loaded:
                self._stm = self.game.load_staining_template()
                self._stm_loaded = True
            return self._stm

    def pick_unified_race(self, items: Sequence[EquipmentModel]) -> str:
        """First race for which every item has a model file."""
        for race_code in RACE_CODES:
            if all(self.game.file_exists(item.model_path(race_code)) for item in items):
                return race_code
        return RACE_CODES[0]

    def remap_to_race(self, mdl: MdlResult, source_race: str, target_race: str) -> int:
        """Move meshes skinned for source_race onto target_race's bind pose."""
        with self.lock:
            target_bind = self.skeletons.get_bind_pose(target_race, self.game)
            source_bind = self.skeletons.get_bind_pose(source_race, self.game)
        if target_bind is None or source_bind is None:
            print(f"  ⚠️ Cannot remap {source_race} -> {target_race}, skeleton missing")
            return 0
        moved = apply_skinning(mdl.meshes, mdl.bone_names, mdl.bone_tables, source_bind, target_bind)
        print(f"  🔧 Remapped {moved} vertices {source_race} -> {target_race}")
        return moved

    def load_equipment(self, item: EquipmentModel, target_race: Optional[str] = None) -> LoadedModel:
        """Load one item posed for target_race (defaults to the first race that has it)."""
        print(f"🔧 Loading e{item.set_id:04}_{item.slot} v{item.variant_id:04}")
        mdl = load_mdl_with_fallback(self.game, item.candidate_paths(target_race))
        source_race = race_from_model_path(mdl.source_path) or (target_race or RACE_CODES[0])
        race_code = target_race or source_race
        print(f"  ✅ {mdl.source_path}: {len(mdl.meshes)} meshes")

        moved = 0
        if source_race != race_code:
            moved = self.remap_to_race(mdl, source_race, race_code)

        textures = load_mesh_textures(self.game, mdl.material_names, mdl.meshes, item.set_id, item.variant_id)
        return LoadedModel(
            item=item,
            mdl=mdl,
            race_code=race_code,
            source_race=source_race,
            textures=textures,
            bounding_box=compute_bounding_box(mdl.meshes),
            is_dual_dye=has_dual_dye(textures.materials),
            remapped_vertices=moved,
        )

    def load_outfit(self, items: Sequence[EquipmentModel]) -> List[LoadedModel]:
        """Load several items onto one shared race; items that fail to load are skipped."""
        race_code = self.pick_unified_race(items)
        print(f"🎭 Unified race: {race_code}")
        loaded = []
        for item in items:
            try:
                loaded.append(self.load_equipment(item, race_code))
            except AssetUnavailableError as e:
                print(f"  ❌ e{item.set_id:04}_{item.slot}: {e}")
        return loaded

    def _bake_material(self, material: CachedMaterial, stain_ids: Tuple[int, int]):
        key = (material.material_path, stain_ids)
        with self.lock:
            cached = self.baked_textures.get(key)
        if cached is not None:
            return cached

        stm = self.staining_template if any(stain_ids) else None
        dyed = None
        emissive_colors = None
        if stm is not None and material.color_dye_table is not None:
            dyed = apply_dye(material.color_table, material.color_dye_table, stm, stain_ids)
            emissive_colors = [row.emissive for row in
                               resolve_dye_rows(material.color_table, material.color_dye_table, stm, stain_ids)]

        diffuse = bake_color_table_texture(material.id_texture, material.color_table, dyed)
        emissive = None
        if has_emissive(material.color_table, emissive_colors):
            emissive = bake_emissive_texture(material.id_texture, material.color_table, emissive_colors)
        baked = (diffuse, emissive)
        with self.lock:
            self.baked_textures[key] = baked
        return baked

    def rebake(self, model: LoadedModel, stain_ids: Sequence[int]) -> List[Optional[MeshTextures]]:
        """New textures per mesh for a dye selection; None where nothing changes."""
        stains = (int(stain_ids[0]), int(stain_ids[1]) if len(stain_ids) > 1 else 0)
        updated: List[Optional[MeshTextures]] = []
        for mesh, current in zip(model.meshes, model.textures.mesh_textures):
            material = model.materials.get(mesh.material_index)
            if (material is None or not material.uses_color_table
                    or material.color_table is None or material.id_texture is None):
                updated.append(None)
                continue
            diffuse, emissive = self._bake_material(material, stains)
            textures = MeshTextures(diffuse, current.normal, current.mask, emissive)
            updated.append(textures)
        return updated

    def apply_rebake(self, model: LoadedModel, stain_ids: Sequence[int]) -> int:
        """Rebake and swap the model's textures in place. Returns meshes updated."""
        count = 0
        for i, textures in enumerate(self.rebake(model, stain_ids)):
            if textures is not None:
                model.textures.mesh_textures[i] = textures
                count += 1
        return count

    def load_in_background(self, item: EquipmentModel, target_race: Optional[str] = None) -> 'queue.Queue':
        """Run load_equipment on a worker thread; exactly one LoadMessage arrives on the queue."""
        results: 'queue.Queue' = queue.Queue(maxsize=1)

        def worker():
            try:
                with self.lock:
                    model = self.load_equipment(item, target_race)
            except Exception as e:
                print(f"  ❌ Background load failed: {e}")
                results.put(LoadMessage('error', error=e))
                return
            results.put(LoadMessage('done', model=model))

        thread = threading.Thread(target=worker, name=f"load-e{item.set_id:04}", daemon=True)
        thread.start()
        return results
