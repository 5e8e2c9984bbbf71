"""Synthetic cfg.bin tables matching the on-disk layout."""
from __future__ import annotations

import struct
import zlib

from cfgbin_parser import MAGIC_T2B


def _align(data: bytearray, alignment: int) -> None:
    while len(data) % alignment:
        data.append(0)


def _value_type(value) -> int:
    if value is None or isinstance(value, str):
        return 0
    if isinstance(value, float):
        return 2
    return 1


def build_cfg_bin(entries, value_length=4, encoding=1, name_base=0x40, string_count=None):
    """
    Build a cfg.bin table.

    entries: list of (name, [values]); str/None -> string, int -> integer,
    float -> floating point.
    """
    codec = 'cp932' if encoding == 0 else 'utf-8'
    int_fmt = '<i' if value_length == 4 else '<q'

    strings = bytearray()
    string_offsets = {}

    def string_offset(text):
        if text not in string_offsets:
            string_offsets[text] = len(strings)
            strings.extend(text.encode(codec) + b'\x00')
        return string_offsets[text]

    data = bytearray(16)
    for name, values in entries:
        types = [_value_type(v) for v in values]
        data.extend(struct.pack('<IB', zlib.crc32(name.encode('ascii')), len(values)))
        for j in range(0, len(types), 4):
            chunk = 0
            for h, t in enumerate(types[j:j + 4]):
                chunk |= t << (h * 2)
            data.append(chunk)
        _align(data, 4)
        for value, t in zip(values, types):
            if t == 0:
                raw = -1 if value is None else string_offset(value)
            elif t == 1:
                raw = value
            elif value_length == 4:
                raw = struct.unpack('<i', struct.pack('<f', value))[0]
            else:
                raw = struct.unpack('<q', struct.pack('<d', value))[0]
            data.extend(struct.pack(int_fmt, raw))

    _align(data, 16)
    string_data_offset = len(data)
    if string_count is None:
        string_count = len(string_offsets)
    data[0:16] = struct.pack('<IIII', len(entries), string_data_offset, len(strings), string_count)
    data.extend(strings)
    _align(data, 16)

    names = []
    for name, _ in entries:
        if name not in names:
            names.append(name)
    name_strings = bytearray()
    name_entries = bytearray()
    for name in names:
        name_entries.extend(struct.pack('<II', zlib.crc32(name.encode('ascii')),
                                        name_base + len(name_strings)))
        name_strings.extend(name.encode('ascii') + b'\x00')

    name_string_offset = 0x10 + len(name_entries)
    section_size = name_string_offset + len(name_strings)
    data.extend(struct.pack('<IIII', section_size, len(names), name_string_offset, len(name_strings)))
    data.extend(name_entries)
    data.extend(name_strings)
    _align(data, 16)

    data.extend(struct.pack('<IHhQ', MAGIC_T2B, 1, encoding, 0))
    return bytes(data)


def original_item(directory, filename, size, crc=0x1234):
    """CPK_ITEM as the game ships it: path, hash, offset, size, packed size"""
    return ('CPK_ITEM', [directory, filename, crc, 0, size, size])


def current_item(directory, filename, size):
    """CPK_ITEM as the current patch generator writes it"""
    return ('CPK_ITEM', [directory, filename, None, None, size, size])


def legacy_item(path, size):
    """CPK_ITEM as the legacy patch generator writes it"""
    return ('CPK_ITEM', [path, None, size, 0, 0, 0])


def list_header(count):
    return ('CPK_ITEM_BEGIN', [count])


