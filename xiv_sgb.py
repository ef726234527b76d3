"""
XIV Scene Group Reader
Pulls referenced .mdl paths out of SGB scene group files. Only the string
table is scanned; everything else in the file is ignored.
"""

import struct
from typing import List

STRING_TABLE_END = 0xFF


def _read_i32(data: bytes, offset: int):
    if offset < 0 or offset + 4 > len(data):
        return None
    return struct.unpack_from('<i', data, offset)[0]


def extract_mdl_paths_from_sgb(data: bytes) -> List[str]:
    """Model paths in the string table, in file order.

    Truncated or odd files yield whatever was found before the data ran out.
    """
    paths: List[str] = []

    skip = _read_i32(data, 20)
    if skip is None:
        return paths
    strings_offset = _read_i32(data, skip + 24)
    if strings_offset is None:
        return paths

    p = skip + 20 + strings_offset
    if p < 0:
        return paths

    while p < len(data):
        end = p
        while end < len(data) and data[end] not in (0, STRING_TABLE_END):
            end += 1
        if end >= len(data):
            # unterminated tail
            break
        text = data[p:end]
        if text:
            try:
                path = text.decode('utf-8')
            except UnicodeDecodeError:
                path = None
            if path is not None and path.endswith('.mdl'):
                paths.append(path)
        if data[end] == STRING_TABLE_END:
            break
        p = end + 1

    return paths


def extract_mdl_paths_from_file(game, sgb_path: str) -> List[str]:
    return extract_mdl_paths_from_sgb(game.read_file(sgb_path))
