#!/usr/bin/env python3
"""
cpk_list.cfg.bin Size Synchronizer
==================================

Copies the file sizes from a patched LEVEL5 cpk_list.cfg.bin (regenerated by
a third-party mod tool) into the original table. The output is the original
table byte for byte, except for the size field of every entry that has a
counterpart in the patched table.

Pipeline:
  1. Parse original table
  2. Parse patched table with the selected record schema
  3. Index patched entries that carry the schema's discriminator
  4. Reconcile sizes -> patch instructions
  5. Splice patches into a copy of the original
  6. Write output atomically (only after every step succeeded)

Usage:
    python cpk_size_sync.py original.bin patched.bin synced.bin
    python cpk_size_sync.py original.bin patched.bin synced.bin --schema legacy
    CPK_DEBUG=1 python cpk_size_sync.py original.bin patched.bin synced.bin
"""

import sys
import os
import stat
import argparse
import tempfile
from dataclasses import dataclass

from cpk_errors import CpkSyncError, IoError, MalformedTable, UsageError
from cfgbin_parser import (
    DEFAULT_SCHEMA,
    CfgBinTable,
    SchemaVariant,
    format_field,
    parse_table,
    read_table_file,
)
from entry_index import EntryIndex
from size_reconciler import Reconciliation, reconcile_sizes
from table_writer import write_table

__version__ = "0.2.0"

PROG_NAME = "cpk-size-sync"

DEBUG_ENV_VAR = "CPK_DEBUG"
DEBUG_PREVIEW_ENTRIES = 3
FALSY_VALUES = ("", "0", "false", "no", "off")


@dataclass
class SyncResult:
    schema: SchemaVariant
    original: CfgBinTable
    patched: CfgBinTable
    index: EntryIndex
    reconciliation: Reconciliation
    output: bytes


# =============================================================================
# Core pipeline
# =============================================================================

def _parse_labeled(data: bytes, schema: SchemaVariant, label: str,
                   detect_schema: bool) -> CfgBinTable:
    try:
        return parse_table(data, schema, detect_schema)
    except MalformedTable as e:
        raise MalformedTable(f"{label} table: {e.message}", e.offset, e.stage) from e


def sync_tables(original_data: bytes, patched_data: bytes, schema=DEFAULT_SCHEMA) -> SyncResult:
    """
    Synchronize size fields of original_data with patched_data in memory.

    Args:
        original_data: Original table bytes
        patched_data: Patched table bytes
        schema: Record schema of the patched table ('legacy' or 'current')

    Returns:
        SyncResult with both parsed tables, the plan and the output bytes
    """
    schema = SchemaVariant.from_name(schema)

    # The schema describes the patched table only
    original = _parse_labeled(original_data, schema, "original", detect_schema=False)
    patched = _parse_labeled(patched_data, schema, "patched", detect_schema=True)

    # Only regenerated entries carry trustworthy sizes
    index = EntryIndex.build(record for record in patched.records if record.schema is not None)

    reconciliation = reconcile_sizes(original.records, index)
    output = write_table(original_data, reconciliation.patches)

    return SyncResult(
        schema=schema,
        original=original,
        patched=patched,
        index=index,
        reconciliation=reconciliation,
        output=output,
    )


# =============================================================================
# File I/O
# =============================================================================

def _output_mode(path: str) -> int:
    """Mode of the file being replaced, or what a plain open() would create"""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_output_file(path: str, data: bytes):
    """Write through a temporary file in the target directory, then rename"""
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile('wb', dir=directory, prefix='.cpk_sync_',
                                         delete=False) as f:
            tmp_path = f.name
            f.write(data)
        # NamedTemporaryFile creates 0600
        os.chmod(tmp_path, _output_mode(path))
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise IoError(path, e.strerror or str(e)) from e


# =============================================================================
# Debug output
# =============================================================================

def debug_enabled(value) -> bool:
    return value is not None and value.strip().lower() not in FALSY_VALUES


def print_debug_trace(result: SyncResult, out=None):
    """Print table summaries and one line per original entry"""
    out = out or sys.stderr
    schema = result.schema
    for label, table in (("Original", result.original), ("Patched", result.patched)):
        names = table.count_by_name()
        print(f"{label} table: {table.size:,} bytes, {table.value_length}-byte values, "
              f"encoding={table.encoding}, entries={len(table.records)}, "
              f"CPK_ITEM={names.get('CPK_ITEM', 0)}", file=out)

    print(f"Patched entries with {schema.value} schema: {len(result.index)}", file=out)
    for i, record in enumerate(result.patched.records[:DEBUG_PREVIEW_ENTRIES]):
        types = [t.value for t in record.field_types]
        values = [format_field(v) for v in record.fields]
        print(f"  Patched entry[{i}] name={record.name} offset=0x{record.byte_span.start:X} "
              f"types={types} values=[{', '.join(values)}]", file=out)

    print("-" * 70, file=out)
    for entry in result.reconciliation.trace:
        schema_name = entry.schema.value if entry.schema else "-"
        if entry.new_size is None:
            sizes = f"{entry.old_size}"
        else:
            sizes = f"{entry.old_size} -> {entry.new_size}"
        print(f"  {entry.status:9s} {schema_name:7s} {entry.key.path}  {sizes}", file=out)
    print("-" * 70, file=out)


# =============================================================================
# Main
# =============================================================================

class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        raise UsageError(message)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG_NAME,
        description='Synchronize file size entries in LEVEL5 cpk_list.cfg.bin tables',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Schemas (layout of the patched table):
  current   3rd and 4th fields empty, size in the 5th field (default)
  legacy    2nd field empty, size in the 3rd field

Examples:
  %(prog)s original.bin patched.bin synced.bin
  %(prog)s original.bin patched.bin synced.bin --schema legacy

Environment:
  {DEBUG_ENV_VAR}=1    Print debug info about parsed entries
"""
    )

    parser.add_argument('original', help='Source table whose size fields will be updated')
    parser.add_argument('patched', help='Patched table that already contains correct sizes')
    parser.add_argument('output', help='Output path for the synchronized table')
    parser.add_argument('--schema', default=DEFAULT_SCHEMA, metavar='NAME',
                        help=f'Record schema of the patched table: legacy or current '
                             f'(default: {DEFAULT_SCHEMA})')
    parser.add_argument('-v', '--version', action='version',
                        version=f'%(prog)s {__version__}')
    return parser


def run(args, debug: bool = False) -> SyncResult:
    schema = SchemaVariant.from_name(args.schema)

    original_data = read_table_file(args.original)
    patched_data = read_table_file(args.patched)

    result = sync_tables(original_data, patched_data, schema)

    if debug:
        print_debug_trace(result)

    write_output_file(args.output, result.output)
    return result


def main(argv=None):
    try:
        args = build_arg_parser().parse_args(argv)
        result = run(args, debug=debug_enabled(os.environ.get(DEBUG_ENV_VAR)))
    except CpkSyncError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return e.exit_code

    reconciliation = result.reconciliation
    if len(result.index) == 0:
        print(f"WARNING: no patched entries match the {result.schema.value} schema; "
              f"check --schema", file=sys.stderr)

    print(f"Updated {reconciliation.changed} entries ({reconciliation.matched} matched). "
          f"Output: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
