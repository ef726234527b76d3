"""
XIV Skeleton and Bind Pose
Bone hierarchy types, world-space bind pose computation and the per-session
bind pose cache keyed by race code.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np


@dataclass
class Bone:
    name: str
    parent_index: int  # negative for roots
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)  # x, y, z, w
    scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)


@dataclass
class Skeleton:
    bones: List[Bone] = field(default_factory=list)

    def bone_index(self, name: str) -> Optional[int]:
        for i, bone in enumerate(self.bones):
            if bone.name == name:
                return i
        return None


def quaternion_to_matrix(rotation) -> np.ndarray:
    """3x3 rotation matrix for a unit quaternion stored (x, y, z, w)."""
    x, y, z, w = (float(c) for c in rotation)
    x2, y2, z2 = x + x, y + y, z + z
    xx, xy, xz = x * x2, x * y2, x * z2
    yy, yz, zz = y * y2, y * z2, z * z2
    wx, wy, wz = w * x2, w * y2, w * z2
    return np.array([
        [1.0 - (yy + zz), xy - wz, xz + wy],
        [xy + wz, 1.0 - (xx + zz), yz - wx],
        [xz - wy, yz + wx, 1.0 - (xx + yy)],
    ], dtype=np.float64)


def compose_transform(position, rotation, scale) -> np.ndarray:
    """Local 4x4 matrix T * R * S."""
    matrix = np.eye(4, dtype=np.float64)
    matrix[:3, :3] = quaternion_to_matrix(rotation) * np.asarray(scale, dtype=np.float64)[None, :]
    matrix[:3, 3] = np.asarray(position, dtype=np.float64)
    return matrix


def compute_world_matrices(skeleton: Skeleton) -> List[np.ndarray]:
    """World matrix per bone, in bone order."""
    world: List[np.ndarray] = []
    count = len(skeleton.bones)
    for i, bone in enumerate(skeleton.bones):
        local = compose_transform(bone.position, bone.rotation, bone.scale)
        parent = bone.parent_index
        if 0 <= parent < count:
            if parent >= i:
                print(f"WARNING: bone '{bone.name}' precedes its parent {parent}, treating as root")
                world.append(local)
                continue
            world.append(world[parent] @ local)
        else:
            world.append(local)
    return world


def compute_bind_pose_matrices(skeleton: Skeleton) -> Dict[str, np.ndarray]:
    """Bone name -> world-space bind pose matrix."""
    return {bone.name: matrix for bone, matrix in zip(skeleton.bones, compute_world_matrices(skeleton))}


class SkeletonCache:
    """Bind poses per race code, computed lazily for the lifetime of a session."""

    def __init__(self):
        self._bind_poses: Dict[str, Dict[str, np.ndarray]] = {}

    def __contains__(self, race_code: str) -> bool:
        return race_code in self._bind_poses

    def __len__(self) -> int:
        return len(self._bind_poses)

    def get_bind_pose(self, race_code: str, game) -> Optional[Dict[str, np.ndarray]]:
        cached = self._bind_poses.get(race_code)
        if cached is not None:
            return cached
        skeleton = game.load_skeleton(race_code)
        if skeleton is None:
            print(f"  ⚠️ No skeleton for {race_code}")
            return None
        bind_pose = compute_bind_pose_matrices(skeleton)
        self._bind_poses[race_code] = bind_pose
        print(f"  ✅ Bind pose for {race_code}: {len(bind_pose)} bones")
        return bind_pose

    def clear(self):
        self._bind_poses.clear()


def skeleton_from_dict(data: dict) -> Skeleton:
    """Skeleton from its JSON form: {"bones": [{"name", "parent", "position", "rotation", "scale"}]}."""
    bones = []
    for entry in data.get('bones', []):
        bones.append(Bone(
            name=entry['name'],
            parent_index=int(entry.get('parent', -1)),
            position=tuple(entry.get('position', (0.0, 0.0, 0.0))),
            rotation=tuple(entry.get('rotation', (0.0, 0.0, 0.0, 1.0))),
            scale=tuple(entry.get('scale', (1.0, 1.0, 1.0))),
        ))
    return Skeleton(bones)


def load_skeleton_json(path: str) -> Skeleton:
    with open(path, 'r', encoding='utf-8') as f:
        return skeleton_from_dict(json.load(f))
