#!/usr/bin/env python3
"""
Size reconciliation between an original and a patched cpk_list.cfg.bin
=======================================================================

For every CPK_ITEM of the original table, look up its counterpart in the
patched table's index and plan a write of the patched size into the
original's destination size field (integer field index 4).

Outcomes per original entry:

| Status    | Meaning                                          | Patch |
|-----------|--------------------------------------------------|-------|
| matched   | Counterpart found, size fits the original field  | yes   |
| unmatched | No counterpart in the patched table              | no    |
| no-size   | Counterpart has no readable integer size         | no    |

A matched size that does not fit the original field width raises
SizeOverflow; it is never truncated.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from cpk_errors import MalformedTable, SizeOverflow
from cfgbin_parser import FIELD_SIGNED, RawRecord, SchemaVariant
from entry_index import EntryIndex, MatchKey

STATUS_MATCHED = "matched"
STATUS_UNMATCHED = "unmatched"
STATUS_NO_SIZE = "no-size"


@dataclass(frozen=True)
class PatchInstruction:
    """Write value as a width-byte integer at an absolute buffer offset"""
    offset: int
    width: int
    value: int


@dataclass(frozen=True)
class TraceEntry:
    key: MatchKey
    status: str
    schema: Optional[SchemaVariant]
    old_size: Optional[int]
    new_size: Optional[int]

    @property
    def changed(self) -> bool:
        return self.status == STATUS_MATCHED and self.old_size != self.new_size


@dataclass
class Reconciliation:
    patches: List[PatchInstruction] = field(default_factory=list)
    trace: List[TraceEntry] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return sum(1 for entry in self.trace if entry.status == STATUS_MATCHED)

    @property
    def changed(self) -> int:
        return sum(1 for entry in self.trace if entry.changed)

    @property
    def unmatched(self) -> int:
        return sum(1 for entry in self.trace if entry.status == STATUS_UNMATCHED)


def fits_width(value: int, width: int, signed: bool = FIELD_SIGNED) -> bool:
    """Check that value is representable in width bytes"""
    bits = width * 8
    if signed:
        return -(1 << (bits - 1)) <= value < (1 << (bits - 1))
    return 0 <= value < (1 << bits)


def reconcile_sizes(original_records: Iterable[RawRecord], patched_index: EntryIndex) -> Reconciliation:
    """
    Plan size patches for the original table.

    Args:
        original_records: Records of the original table, in table order
        patched_index: EntryIndex over the patched table

    Returns:
        Reconciliation with patches and a per-entry trace, both in table order

    Raises:
        SizeOverflow: If a patched size does not fit the original field
        MalformedTable: If a matched original entry has no integer size field
    """
    result = Reconciliation()

    for record in original_records:
        if not record.has_identity:
            continue

        key = MatchKey.from_record(record)
        counterpart = patched_index.get(key)

        if counterpart is None:
            result.trace.append(TraceEntry(key, STATUS_UNMATCHED, None, record.current_size, None))
            continue

        new_size = counterpart.source_size
        if new_size is None:
            result.trace.append(
                TraceEntry(key, STATUS_NO_SIZE, counterpart.schema, record.current_size, None))
            continue

        if record.size_field_offset is None:
            raise MalformedTable(
                f"Original entry {key} has no integer size field",
                record.byte_span.start, "reconcile")

        if not fits_width(new_size, record.size_field_width):
            raise SizeOverflow(key, new_size, record.size_field_width)

        result.patches.append(PatchInstruction(
            offset=record.byte_span.start + record.size_field_offset,
            width=record.size_field_width,
            value=new_size,
        ))
        result.trace.append(
            TraceEntry(key, STATUS_MATCHED, counterpart.schema, record.current_size, new_size))

    return result
