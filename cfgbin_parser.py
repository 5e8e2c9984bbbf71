#!/usr/bin/env python3
"""
LEVEL5 cfg.bin (T2B) Table Parser
=================================

Decodes cpk_list.cfg.bin tables into typed entry records. The parser never
re-lays-out anything: every record remembers where it came from so the
writer can patch single fields in place.

File Structure:
--------------
| Offset             | Size     | Content                                   |
|--------------------|----------|-------------------------------------------|
| 0x00               | 16 bytes | Entry header                              |
| 0x10               | variable | Entries (padded to string data offset)    |
| string_data_offset | variable | Value strings (NUL-terminated)            |
| align16            | variable | Name section (crc32 -> entry name)        |
| end - 0x10         | 16 bytes | Footer (magic 0x62327401, encoding)       |

Entry Header (16 bytes, 4 x 4-byte fields):
------------------------------------------
0x00: Entry count
0x04: String data offset
0x08: String data length
0x0C: String count

Entry Layout:
------------
[crc32 4B] [value_count 1B] [type bytes] [pad to 4] [values]

Each type byte holds four 2-bit value types, low bits first:
  0 = string (offset into string data, negative = null)
  1 = integer
  2 = floating point

Values are 4 or 8 bytes wide. The width is a property of the whole table and
is detected by trying 4-byte values first.

Name Section (16-byte header):
-----------------------------
0x00: Section size
0x04: Name count
0x08: Name string offset (relative to section start)
0x0C: Name string size
followed by count x [crc32 4B] [name offset 4B]

Record Schemas (patched tables):
-------------------------------
| Schema  | Discriminator                      | Source size field |
|---------|------------------------------------|-------------------|
| legacy  | field 1 empty string               | index 2           |
| current | fields 2 and 3 both empty strings  | index 4           |

The destination size field is always integer field index 4.
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from cpk_errors import IoError, MalformedTable, UnsupportedSchema


# =============================================================================
# Constants
# =============================================================================

MAGIC_T2B = 0x62327401
FOOTER_SIZE = 0x10
ENTRY_HEADER_SIZE = 0x10
MIN_TABLE_SIZE = 0x30

# Entry block may end at most this many bytes before the string data
ENTRY_PADDING_LIMIT = 0x10

CPK_ITEM = "CPK_ITEM"

# Layout assumed for patched tables when none is configured
DEFAULT_SCHEMA = "current"

# Destination size field in every CPK_ITEM, whatever generated the table
DESTINATION_SIZE_INDEX = 4

# Integer fields are little-endian two's complement
FIELD_BYTEORDER = "little"
FIELD_SIGNED = True

ENCODINGS = {
    0: "cp932",     # Shift-JIS
    1: "utf-8",
    256: "utf-8",
    257: "utf-8",
}


class ValueType(Enum):
    STRING = 0
    INTEGER = 1
    FLOAT = 2


class SchemaVariant(Enum):
    """Known patched-table layouts"""
    LEGACY = "legacy"
    CURRENT = "current"

    @classmethod
    def from_name(cls, name: Union[str, "SchemaVariant"]) -> "SchemaVariant":
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise UnsupportedSchema(name) from None

    @property
    def discriminator_indices(self) -> Tuple[int, ...]:
        """Field indices that must hold empty strings"""
        if self is SchemaVariant.LEGACY:
            return (1,)
        return (2, 3)

    @property
    def source_size_index(self) -> int:
        """Field index holding the regenerated size"""
        if self is SchemaVariant.LEGACY:
            return 2
        return 4


FieldValue = Union[str, int, float, None]


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ByteSpan:
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass(frozen=True)
class RawRecord:
    """One decoded table entry"""
    name: str
    key_parts: Tuple[str, str]
    fields: Tuple[FieldValue, ...]
    field_types: Tuple[ValueType, ...]
    byte_span: ByteSpan
    size_field_offset: Optional[int]    # Relative to byte_span.start
    size_field_width: Optional[int]
    schema: Optional[SchemaVariant] = None
    source_size: Optional[int] = None

    @property
    def has_identity(self) -> bool:
        """Only CPK_ITEM entries with a first path component take part in matching"""
        return self.name == CPK_ITEM and self.key_parts[0] != ""

    @property
    def current_size(self) -> Optional[int]:
        if self.size_field_offset is None:
            return None
        return self.fields[DESTINATION_SIZE_INDEX]


@dataclass
class CfgBinTable:
    """Fully parsed table"""
    records: List[RawRecord]
    value_length: int
    encoding: str
    string_data_offset: int
    string_data_length: int
    size: int

    def count_by_name(self) -> Dict[str, int]:
        counts = {}
        for record in self.records:
            counts[record.name] = counts.get(record.name, 0) + 1
        return counts

    def count_by_schema(self) -> Dict[Optional[SchemaVariant], int]:
        counts = {}
        for record in self.records:
            if record.name != CPK_ITEM:
                continue
            counts[record.schema] = counts.get(record.schema, 0) + 1
        return counts


@dataclass
class _EntryLayout:
    """Entry as found in the entry block, before string and name resolution"""
    offset: int
    length: int
    crc32: int
    types: List[ValueType]
    values: List[int]
    value_offsets: List[int]


# =============================================================================
# Low-level helpers
# =============================================================================

def align_up(pos: int, alignment: int) -> int:
    return (pos + alignment - 1) & ~(alignment - 1)


def _read_u32(data: bytes, offset: int, stage: str) -> int:
    if offset < 0 or offset + 4 > len(data):
        raise MalformedTable("Buffer ends inside a 4-byte field", offset, stage)
    return struct.unpack('<I', data[offset:offset + 4])[0]


def read_cstring(data: bytes, offset: int, encoding: str, stage: str) -> str:
    """Read a NUL-terminated string from a string block"""
    if offset < 0 or offset >= len(data):
        raise MalformedTable(
            f"String offset {offset} outside {len(data)}-byte string block", offset, stage)
    end = data.find(b'\x00', offset)
    if end == -1:
        end = len(data)
    return data[offset:end].decode(encoding, errors='backslashreplace')


def is_empty_string(value: FieldValue) -> bool:
    """Null strings, empty strings and a bare pair of quotes count as empty"""
    return value is None or (isinstance(value, str) and value.strip('"') == "")


def parse_int_value(value: FieldValue) -> Optional[int]:
    """Integer fields as-is, numeric strings (optionally quoted) parsed"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip('"').strip()
        try:
            return int(text)
        except ValueError:
            return None
    return None


def format_field(value: FieldValue) -> str:
    if value is None:
        return "<null>"
    if isinstance(value, str):
        return repr(value)
    return str(value)


def read_table_file(path: str) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise IoError(path, e.strerror or str(e)) from e


# =============================================================================
# Parser Class
# =============================================================================

class CfgBinParser:
    """
    Parser for cpk_list.cfg.bin tables.

    With detect_schema off (original tables) no record is checked against the
    schema discriminator; every record has schema and source_size None.
    """

    def __init__(self, schema: Union[str, SchemaVariant] = SchemaVariant.CURRENT,
                 detect_schema: bool = True):
        self.schema = SchemaVariant.from_name(schema)
        self.detect_schema = detect_schema

    def parse(self, data: bytes) -> CfgBinTable:
        """
        Parse a complete table.

        Args:
            data: Raw table bytes

        Returns:
            CfgBinTable with one RawRecord per entry, in file order

        Raises:
            MalformedTable: If any part of the table cannot be decoded
        """
        data = bytes(data)
        if len(data) < MIN_TABLE_SIZE:
            raise MalformedTable(f"File too small ({len(data)} bytes)", 0, "header")

        encoding = self._read_footer(data)

        entry_count = _read_u32(data, 0x00, "header")
        string_data_offset = _read_u32(data, 0x04, "header")
        string_data_length = _read_u32(data, 0x08, "header")

        if string_data_offset < ENTRY_HEADER_SIZE or string_data_offset > len(data):
            raise MalformedTable(
                f"String data offset 0x{string_data_offset:X} outside file", 0x04, "header")
        if string_data_offset + string_data_length > len(data):
            raise MalformedTable("String data out of range", string_data_offset, "string data")

        value_length, layouts = self._detect_value_length(data, entry_count, string_data_offset)

        string_data = data[string_data_offset:string_data_offset + string_data_length]
        names = self._read_names(data, string_data_offset + string_data_length, encoding)

        records = []
        for layout in layouts:
            records.append(self._build_record(layout, string_data, names, encoding, value_length))

        return CfgBinTable(
            records=records,
            value_length=value_length,
            encoding=encoding,
            string_data_offset=string_data_offset,
            string_data_length=string_data_length,
            size=len(data),
        )

    # -------------------------------------------------------------------------
    # Container sections
    # -------------------------------------------------------------------------

    def _read_footer(self, data: bytes) -> str:
        footer_pos = len(data) - FOOTER_SIZE
        magic = _read_u32(data, footer_pos, "footer")
        if magic != MAGIC_T2B:
            raise MalformedTable(
                f"Invalid magic 0x{magic:08X} (expected 0x{MAGIC_T2B:08X})", footer_pos, "footer")

        encoding_raw = struct.unpack('<h', data[footer_pos + 6:footer_pos + 8])[0]
        if encoding_raw not in ENCODINGS:
            raise MalformedTable(f"Unknown string encoding {encoding_raw}", footer_pos + 6, "footer")
        return ENCODINGS[encoding_raw]

    def _detect_value_length(self, data: bytes, entry_count: int,
                             string_data_offset: int) -> Tuple[int, List[_EntryLayout]]:
        """Try 4-byte values, then 8-byte values. First width that fits wins."""
        try:
            return 4, self._read_entries(data, entry_count, string_data_offset, 4)
        except MalformedTable as narrow_error:
            try:
                return 8, self._read_entries(data, entry_count, string_data_offset, 8)
            except MalformedTable:
                raise narrow_error from None

    def _read_entries(self, data: bytes, entry_count: int, string_data_offset: int,
                      value_length: int) -> List[_EntryLayout]:
        """
        Walk the entry block with a given value width.

        The block must end within ENTRY_PADDING_LIMIT bytes of the string data;
        leftover bytes that cannot form another entry are an error.
        """
        limit = string_data_offset
        pos = ENTRY_HEADER_SIZE
        entries = []

        for index in range(entry_count):
            start = pos
            stage = f"entry {index}"
            if pos + 5 > limit:
                raise MalformedTable("Entry header runs past entry block", pos, stage)

            crc32 = struct.unpack('<I', data[pos:pos + 4])[0]
            value_count = data[pos + 4]
            pos += 5

            types = []
            for j in range(0, value_count, 4):
                if pos >= limit:
                    raise MalformedTable("Type bytes run past entry block", pos, stage)
                type_chunk = data[pos]
                pos += 1
                for h in range(4):
                    if j + h >= value_count:
                        break
                    raw_type = (type_chunk >> (h * 2)) & 0x3
                    if raw_type == 3:
                        raise MalformedTable(f"Invalid value type 3 for value {j + h}", pos - 1, stage)
                    types.append(ValueType(raw_type))

            pos = align_up(pos, 4)

            fmt = '<i' if value_length == 4 else '<q'
            values = []
            value_offsets = []
            for _ in types:
                if pos + value_length > limit:
                    raise MalformedTable("Value runs past entry block", pos, stage)
                value_offsets.append(pos)
                values.append(struct.unpack(fmt, data[pos:pos + value_length])[0])
                pos += value_length

            entries.append(_EntryLayout(
                offset=start,
                length=pos - start,
                crc32=crc32,
                types=types,
                values=values,
                value_offsets=value_offsets,
            ))

        if pos > limit or limit - pos >= ENTRY_PADDING_LIMIT:
            raise MalformedTable(
                f"{limit - pos} trailing bytes after last entry do not form an entry",
                pos, "entry block")

        return entries

    def _read_names(self, data: bytes, string_data_end: int, encoding: str) -> Dict[int, str]:
        """Read the name section and map crc32 -> entry name"""
        stage = "name section"
        section_pos = align_up(string_data_end, 0x10)
        if section_pos + 0x10 > len(data):
            raise MalformedTable("Name section header out of range", section_pos, stage)

        name_count = _read_u32(data, section_pos + 4, stage)
        name_string_offset = _read_u32(data, section_pos + 8, stage)
        name_string_size = _read_u32(data, section_pos + 12, stage)

        entries_pos = section_pos + 0x10
        strings_pos = section_pos + name_string_offset
        if (entries_pos + name_count * 8 > len(data)
                or strings_pos + name_string_size > len(data)):
            raise MalformedTable("Name section out of range", section_pos, stage)
        if name_count == 0:
            return {}

        name_strings = data[strings_pos:strings_pos + name_string_size]

        # Name offsets are relative to the first name entry's offset
        base_offset = _read_u32(data, entries_pos + 4, stage)
        names = {}
        for i in range(name_count):
            p = entries_pos + i * 8
            crc32, name_offset = struct.unpack('<II', data[p:p + 8])
            names[crc32] = read_cstring(name_strings, name_offset - base_offset, encoding, stage)
        return names

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def _build_record(self, layout: _EntryLayout, string_data: bytes, names: Dict[int, str],
                      encoding: str, value_length: int) -> RawRecord:
        stage = f"entry at 0x{layout.offset:X}"
        name = names.get(layout.crc32)
        if name is None:
            raise MalformedTable(f"No name for entry hash 0x{layout.crc32:08X}", layout.offset, stage)

        fields = []
        for value_type, raw in zip(layout.types, layout.values):
            if value_type is ValueType.STRING:
                fields.append(None if raw < 0 else read_cstring(string_data, raw, encoding, stage))
            elif value_type is ValueType.INTEGER:
                fields.append(raw)
            elif value_length == 4:
                fields.append(struct.unpack('<f', struct.pack('<i', raw))[0])
            else:
                fields.append(struct.unpack('<d', struct.pack('<q', raw))[0])

        key_parts = (self._key_part(fields, layout.types, 0), self._key_part(fields, layout.types, 1))

        size_field_offset = None
        size_field_width = None
        if (len(layout.types) > DESTINATION_SIZE_INDEX
                and layout.types[DESTINATION_SIZE_INDEX] is ValueType.INTEGER):
            size_field_offset = layout.value_offsets[DESTINATION_SIZE_INDEX] - layout.offset
            size_field_width = value_length

        schema = None
        source_size = None
        if (self.detect_schema and name == CPK_ITEM
                and self._matches_discriminator(fields, layout.types)):
            schema = self.schema
            source_index = schema.source_size_index
            if source_index >= len(fields):
                raise MalformedTable(
                    f"{schema.value} entry has no size field at index {source_index}",
                    layout.offset, stage)
            source_size = parse_int_value(fields[source_index])

        return RawRecord(
            name=name,
            key_parts=key_parts,
            fields=tuple(fields),
            field_types=tuple(layout.types),
            byte_span=ByteSpan(layout.offset, layout.length),
            size_field_offset=size_field_offset,
            size_field_width=size_field_width,
            schema=schema,
            source_size=source_size,
        )

    @staticmethod
    def _key_part(fields: List[FieldValue], types: List[ValueType], index: int) -> str:
        if index >= len(fields) or types[index] is not ValueType.STRING:
            return ""
        return fields[index] or ""

    def _matches_discriminator(self, fields: List[FieldValue], types: List[ValueType]) -> bool:
        for index in self.schema.discriminator_indices:
            if index >= len(fields) or types[index] is not ValueType.STRING:
                return False
            if not is_empty_string(fields[index]):
                return False
        return True


def parse_table(data: bytes, schema: Union[str, SchemaVariant] = SchemaVariant.CURRENT,
                detect_schema: bool = True) -> CfgBinTable:
    """
    Parse a cfg.bin table with the given patched-table schema.

    Args:
        data: Raw table bytes
        schema: 'legacy', 'current' or a SchemaVariant
        detect_schema: Match CPK_ITEM records against the schema (patched tables)

    Returns:
        CfgBinTable

    Raises:
        UnsupportedSchema: If schema is not a known layout
        MalformedTable: If the buffer cannot be decoded
    """
    return CfgBinParser(schema, detect_schema).parse(data)
