import json
import os

import pytest
from PIL import Image

from xiv_game_data import (
    AssetUnavailableError,
    EquipmentModel,
    FolderGameData,
    material_path,
    race_from_model_path,
    skeleton_path,
)
from xiv_materials import LegacyColorTable


def write_file(root, internal_path, data):
    local = os.path.join(str(root), *internal_path.split('/'))
    os.makedirs(os.path.dirname(local), exist_ok=True)
    mode = 'wb' if isinstance(data, bytes) else 'w'
    with open(local, mode) as f:
        f.write(data)
    return local


def test_equipment_and_accessory_paths():
    top = EquipmentModel(6001, 1, 'top')
    ring = EquipmentModel(42, 1, 'ril')
    assert top.model_path('c0201') == 'chara/equipment/e6001/model/c0201e6001_top.mdl'
    assert ring.is_accessory and not top.is_accessory
    assert ring.model_path('c0101') == 'chara/accessory/a0042/model/c0101a0042_ril.mdl'

    candidates = top.candidate_paths('c0801')
    assert candidates[0].endswith('c0801e6001_top.mdl')
    assert candidates[1].endswith('c0201e6001_top.mdl')
    assert len(candidates) == len(set(candidates))


def test_path_helpers():
    assert race_from_model_path('chara/equipment/e6001/model/c1401e6001_top.mdl') == 'c1401'
    assert race_from_model_path('bg/ffxiv/house.mdl') is None
    assert skeleton_path('c0101') == 'chara/human/c0101/skeleton/base/b0001/skl_c0101b0001.sklb'
    assert material_path('/mt_a.mtrl', 6001, 2) == 'chara/equipment/e6001/material/v0002/mt_a.mtrl'


def test_folder_reads_raw_files(tmp_path):
    write_file(tmp_path, 'chara/a/b.mdl', b'\x01\x02')
    game = FolderGameData(str(tmp_path))
    assert game.read_file('chara/a/b.mdl') == b'\x01\x02'
    assert game.file_exists('chara/a/b.mdl')
    assert not game.file_exists('chara/a/missing.mdl')
    with pytest.raises(AssetUnavailableError):
        game.read_file('chara/a/missing.mdl')


def test_folder_textures_use_image_siblings(tmp_path):
    local = write_file(tmp_path, 'chara/t/v01_top_d.png', b'')
    Image.new('RGBA', (4, 2), (1, 2, 3, 4)).save(local)
    game = FolderGameData(str(tmp_path))

    texture = game.parsed_tex('chara/t/v01_top_d.tex')
    assert (texture.width, texture.height) == (4, 2)
    assert texture.to_array()[0, 0].tolist() == [1, 2, 3, 4]
    assert game.parsed_tex('chara/t/v01_top_n.tex') is None


def test_folder_material_and_skeleton_sidecars(tmp_path):
    mtrl = 'chara/equipment/e6001/material/v0001/mt_a.mtrl'
    write_file(tmp_path, mtrl + '.json', json.dumps({
        'textures': ['chara/t/v01_top_id.tex'],
        'color_table': {'generation': 'legacy', 'rows': [{'diffuse': [0.5, 0.5, 0.5]}]},
        'dye_table': {'rows': [{'template': 100, 'diffuse': True}]},
    }))
    write_file(tmp_path, skeleton_path('c0101') + '.json', json.dumps({
        'bones': [{'name': 'j_kosi'}, {'name': 'j_sebo_a', 'parent': 0, 'position': [0, 0.1, 0]}],
    }))
    game = FolderGameData(str(tmp_path))

    material = game.parsed_mtrl(mtrl)
    assert isinstance(material.color_table, LegacyColorTable)
    assert material.color_table.rows[0].diffuse_color == (0.5, 0.5, 0.5)
    assert material.color_dye_table.rows[0].template == 100
    assert game.parsed_mtrl('chara/none.mtrl') is None

    skeleton = game.load_skeleton('c0101')
    assert [b.name for b in skeleton.bones] == ['j_kosi', 'j_sebo_a']
    assert skeleton.bones[1].parent_index == 0
    assert game.load_skeleton('c0201') is None


def test_missing_staining_template_is_none(tmp_path):
    assert FolderGameData(str(tmp_path)).load_staining_template() is None
