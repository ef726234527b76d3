import json
import os

from export_xiv_model import main
from xiv_game_data import EquipmentModel


def test_raw_mdl_export(tmp_path, mdl_builder, triangle):
    source = tmp_path / 'c0101e6001_top.mdl'
    source.write_bytes(mdl_builder([triangle], bone_names=['j_kosi'], bone_tables=[[0]]))
    output = tmp_path / 'top.glb'

    assert main(['--mdl', str(source), '-o', str(output)])
    assert output.read_bytes()[:4] == b'glTF'


def test_raw_mdl_export_with_remap(tmp_path, mdl_builder, triangle):
    source = tmp_path / 'top.mdl'
    source.write_bytes(mdl_builder([triangle], bone_names=['j_kosi', 'j_sebo_a'], bone_tables=[[0, 1]]))
    skeletons = []
    for name, height in (('src.json', 1.0), ('dst.json', 1.5)):
        path = tmp_path / name
        path.write_text(json.dumps({'bones': [{'name': 'j_kosi', 'position': [0, height, 0]}]}))
        skeletons.append(str(path))
    output = tmp_path / 'top.glb'

    assert main(['--mdl', str(source), '--source-skeleton', skeletons[0],
                 '--target-skeleton', skeletons[1], '-o', str(output)])
    assert output.exists()


def test_game_dir_export(tmp_path, mdl_builder, triangle):
    item = EquipmentModel(6001, 1, 'top')
    local = os.path.join(str(tmp_path), *item.model_path('c0201').split('/'))
    os.makedirs(os.path.dirname(local))
    with open(local, 'wb') as f:
        f.write(mdl_builder([triangle], material_names=['/mt_c0201e6001_top_a.mtrl']))
    output = tmp_path / 'top.glb'

    assert main(['--game-dir', str(tmp_path), '--set-id', '6001', '--stain', '5', '-o', str(output)])
    assert output.exists()


def test_failures_return_false(tmp_path):
    output = str(tmp_path / 'out.glb')
    assert not main(['--mdl', str(tmp_path / 'missing.mdl'), '-o', output])

    garbage = tmp_path / 'bad.mdl'
    garbage.write_bytes(b'\x00' * 10)
    assert not main(['--mdl', str(garbage), '-o', output])

    assert not main(['--game-dir', str(tmp_path), '--set-id', '6001', '-o', output])
    assert not main(['--game-dir', str(tmp_path), '-o', output])
