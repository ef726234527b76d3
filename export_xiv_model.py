#!/usr/bin/env python3
"""
XIV Model Exporter
Loads an equipment model (from an extracted game tree or a raw .mdl file),
optionally remaps it onto another race's skeleton, applies dyes and writes
a .glb with baked textures.
"""

import argparse
import sys

from xiv_binary import DecodeError
from xiv_game_data import AssetUnavailableError, EquipmentModel, FolderGameData
from xiv_mdl_parser import compute_bounding_box, parse_mdl, summarize_mdl
from xiv_model_export import build_scene, export_glb
from xiv_rig_remap import apply_skinning
from xiv_session import ModelSession
from xiv_skeleton import compute_bind_pose_matrices, load_skeleton_json


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export an equipment model to .glb")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--game-dir', help="Extracted game file tree")
    source.add_argument('--mdl', help="Raw .mdl file on disk")
    parser.add_argument('--set-id', type=int, help="Equipment set id (e.g. 6001)")
    parser.add_argument('--variant', type=int, default=1, help="Material variant")
    parser.add_argument('--slot', default='top', help="Slot suffix: top, dwn, glv, sho, met, ear, ...")
    parser.add_argument('--race', help="Race code to pose the model for (e.g. c0101)")
    parser.add_argument('--stain', type=int, nargs='+', default=[0, 0], help="Stain ids for dye channels 1 and 2")
    parser.add_argument('--source-skeleton', help="Skeleton JSON the raw .mdl is skinned to")
    parser.add_argument('--target-skeleton', help="Skeleton JSON to remap the raw .mdl onto")
    parser.add_argument('-o', '--output', required=True, help="Output .glb path")
    return parser


def export_raw_mdl(args) -> bool:
    with open(args.mdl, 'rb') as f:
        mdl = parse_mdl(f.read())
    print(f"✅ Parsed {args.mdl}: {summarize_mdl(mdl)}")

    if args.source_skeleton and args.target_skeleton:
        source_bind = compute_bind_pose_matrices(load_skeleton_json(args.source_skeleton))
        target_bind = compute_bind_pose_matrices(load_skeleton_json(args.target_skeleton))
        moved = apply_skinning(mdl.meshes, mdl.bone_names, mdl.bone_tables, source_bind, target_bind)
        print(f"🔧 Remapped {moved} vertices")
    elif args.source_skeleton or args.target_skeleton:
        print("⚠️ Remap needs both --source-skeleton and --target-skeleton, skipping")

    low, high = compute_bounding_box(mdl.meshes)
    print(f"  Bounds: {low} .. {high}")
    return export_glb(build_scene(mdl.meshes), args.output)


def export_from_game(args) -> bool:
    if args.set_id is None:
        print("❌ --set-id is required with --game-dir")
        return False

    session = ModelSession(FolderGameData(args.game_dir))
    item = EquipmentModel(args.set_id, args.variant, args.slot)
    model = session.load_equipment(item, args.race)
    print(f"  Bounds: {model.bounding_box[0]} .. {model.bounding_box[1]}")

    stains = (args.stain + [0, 0])[:2]
    if any(stains):
        if model.is_dual_dye:
            print(f"🎨 Dual dye: {stains[0]}, {stains[1]}")
        else:
            print(f"🎨 Dye: {stains[0]}")
        updated = session.apply_rebake(model, stains)
        print(f"  ✅ Rebaked {updated} meshes")

    scene = build_scene(model.meshes, model.textures.mesh_textures,
                        name=f"e{item.set_id:04}_{item.slot}")
    return export_glb(scene, args.output)


def main(argv=None) -> bool:
    args = build_parser().parse_args(argv)
    try:
        if args.mdl:
            return export_raw_mdl(args)
        return export_from_game(args)
    except (DecodeError, AssetUnavailableError, OSError) as e:
        print(f"❌ Export failed: {e}")
        return False


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
