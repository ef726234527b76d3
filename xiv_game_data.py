"""
XIV Game Data Access
Interface the pipeline reads game files through, a folder-backed
implementation over an extracted file tree, and the path conventions for
equipment models, materials and skeletons.
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from PIL import Image

from xiv_materials import ParsedMaterial, load_material_json
from xiv_skeleton import Skeleton, load_skeleton_json
from xiv_stm import StainingTemplate, load_staining_template
from xiv_texture_bake import TextureData

# Race codes in the order candidates are tried
RACE_CODES = [
    'c0201', 'c0101', 'c0401', 'c0301', 'c0801', 'c0701', 'c0601', 'c0501',
    'c1401', 'c1301', 'c1201', 'c1101', 'c1001', 'c0901', 'c1801', 'c1701', 'c1501',
]

ACCESSORY_SLOTS = {'ear', 'nek', 'wrs', 'rir', 'ril'}

# Image files that stand in for .tex textures in an extracted tree
IMAGE_SUFFIXES = ['.png', '.tga', '.dds', '.bmp']


class AssetUnavailableError(LookupError):
    """A named game file is missing or no candidate produced a usable asset."""


@dataclass
class EquipmentModel:
    set_id: int
    variant_id: int
    slot: str  # 'top', 'dwn', 'glv', 'sho', 'met', 'ear', ...

    @property
    def is_accessory(self) -> bool:
        return self.slot in ACCESSORY_SLOTS

    def model_path(self, race_code: str) -> str:
        if self.is_accessory:
            return f"chara/accessory/a{self.set_id:04}/model/{race_code}a{self.set_id:04}_{self.slot}.mdl"
        return f"chara/equipment/e{self.set_id:04}/model/{race_code}e{self.set_id:04}_{self.slot}.mdl"

    def candidate_paths(self, preferred_race: Optional[str] = None) -> List[str]:
        races = list(RACE_CODES)
        if preferred_race:
            races = [preferred_race] + [r for r in races if r != preferred_race]
        return [self.model_path(r) for r in races]


def race_from_model_path(path: str) -> Optional[str]:
    """Race code embedded in a model file name (…/c0201e6001_top.mdl -> c0201)."""
    name = os.path.basename(path)
    if len(name) >= 5 and name[0] == 'c' and name[1:5].isdigit():
        return name[:5]
    return None


def skeleton_path(race_code: str) -> str:
    return f"chara/human/{race_code}/skeleton/base/b0001/skl_{race_code}b0001.sklb"


def material_path(short_name: str, set_id: int, variant_id: int) -> str:
    return f"chara/equipment/e{set_id:04}/material/v{variant_id:04}{short_name}"


class GameData:
    """Read access to game files by internal path."""

    def read_file(self, path: str) -> bytes:
        raise NotImplementedError

    def file_exists(self, path: str) -> bool:
        try:
            self.read_file(path)
        except AssetUnavailableError:
            return False
        return True

    def parsed_tex(self, path: str) -> Optional[TextureData]:
        raise NotImplementedError

    def parsed_mtrl(self, path: str) -> Optional[ParsedMaterial]:
        raise NotImplementedError

    def load_skeleton(self, race_code: str) -> Optional[Skeleton]:
        raise NotImplementedError

    def load_staining_template(self) -> Optional[StainingTemplate]:
        return load_staining_template(self)


class FolderGameData(GameData):
    """Game files extracted to a directory tree under their internal paths.

    Textures are regular image files (the .tex path itself, or a sibling with
    an image suffix); materials and skeletons are JSON sidecars named
    <internal path>.json.
    """

    def __init__(self, root: str):
        self.root = root

    def _local(self, path: str) -> str:
        return os.path.join(self.root, *path.split('/'))

    def read_file(self, path: str) -> bytes:
        local = self._local(path)
        if not os.path.isfile(local):
            raise AssetUnavailableError(f"file not found: {path}")
        with open(local, 'rb') as f:
            return f.read()

    def file_exists(self, path: str) -> bool:
        return os.path.isfile(self._local(path))

    def parsed_tex(self, path: str) -> Optional[TextureData]:
        local = self._local(path)
        stem = os.path.splitext(local)[0]
        for candidate in [local] + [stem + suffix for suffix in IMAGE_SUFFIXES]:
            if not os.path.isfile(candidate):
                continue
            try:
                with Image.open(candidate) as image:
                    return TextureData.from_image(image)
            except OSError as e:
                print(f"    ⚠️ Unreadable texture {candidate}: {e}")
        return None

    def parsed_mtrl(self, path: str) -> Optional[ParsedMaterial]:
        sidecar = self._local(path) + '.json'
        if not os.path.isfile(sidecar):
            return None
        return load_material_json(sidecar)

    def load_skeleton(self, race_code: str) -> Optional[Skeleton]:
        sidecar = self._local(skeleton_path(race_code)) + '.json'
        if not os.path.isfile(sidecar):
            return None
        return load_skeleton_json(sidecar)
