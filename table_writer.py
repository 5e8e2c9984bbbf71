#!/usr/bin/env python3
"""
Table writer: splice patched size values into a copy of the original table.

Only the bytes of each patched field change. The table is never re-encoded,
re-ordered or resized, so the name section, string data and anything else
the game checks stay exactly as they were.
"""

from typing import Iterable

from cpk_errors import OutOfBounds, SizeOverflow
from cfgbin_parser import FIELD_BYTEORDER, FIELD_SIGNED

SUPPORTED_WIDTHS = (1, 2, 4, 8)


def write_table(original: bytes, patches: Iterable) -> bytes:
    """
    Build the synchronized table.

    Args:
        original: Original table bytes (not modified)
        patches: PatchInstruction sequence

    Returns:
        New buffer, same length as original

    Raises:
        OutOfBounds: If a patch targets bytes outside the buffer or uses an
            unsupported field width
        SizeOverflow: If a value does not fit its field
    """
    output = bytearray(original)

    for patch in patches:
        if patch.width not in SUPPORTED_WIDTHS:
            raise OutOfBounds(f"Unsupported field width {patch.width} at offset 0x{patch.offset:X}")
        end = patch.offset + patch.width
        if patch.offset < 0 or end > len(output):
            raise OutOfBounds(
                f"Patch 0x{patch.offset:X}-0x{end:X} outside {len(output)}-byte table")

        try:
            encoded = patch.value.to_bytes(patch.width, FIELD_BYTEORDER, signed=FIELD_SIGNED)
        except OverflowError:
            raise SizeOverflow(f"offset 0x{patch.offset:X}", patch.value, patch.width) from None

        output[patch.offset:end] = encoded

    return bytes(output)
