#!/usr/bin/env python3
"""
cfg.bin Table Dump
==================

Read-only inspection of a cpk_list.cfg.bin table: value width, encoding,
entry names, which entries carry a patched-table schema discriminator, and
the decoded fields of every entry. Useful for checking which --schema a
patched table was generated with before running cpk_size_sync.

Usage:
    python cfgbin_dump.py cpk_list.cfg.bin
    python cfgbin_dump.py cpk_list.cfg.bin --schema legacy --limit 20
    python cfgbin_dump.py cpk_list.cfg.bin --json entries.json
"""

import sys
import json
import argparse

from cpk_errors import CpkSyncError
from cfgbin_parser import (
    DEFAULT_SCHEMA,
    CfgBinTable,
    format_field,
    parse_table,
    read_table_file,
)


def table_to_dict(table: CfgBinTable) -> dict:
    """Structured view of a parsed table for JSON export"""
    entries = []
    for record in table.records:
        entries.append({
            'name': record.name,
            'key': list(record.key_parts),
            'offset': record.byte_span.start,
            'length': record.byte_span.length,
            'types': [t.name.lower() for t in record.field_types],
            'fields': list(record.fields),
            'schema': record.schema.value if record.schema else None,
            'source_size': record.source_size,
            'size': record.current_size,
            'size_offset': (record.byte_span.start + record.size_field_offset
                            if record.size_field_offset is not None else None),
            'size_width': record.size_field_width,
        })

    return {
        'size': table.size,
        'value_length': table.value_length,
        'encoding': table.encoding,
        'string_data_offset': table.string_data_offset,
        'string_data_length': table.string_data_length,
        'entries': entries,
    }


def print_table(table: CfgBinTable, limit: int = None):
    print(f"Size:          {table.size:,} bytes")
    print(f"Value width:   {table.value_length} bytes")
    print(f"Encoding:      {table.encoding}")
    print(f"String data:   0x{table.string_data_offset:X} ({table.string_data_length} bytes)")
    print(f"Entries:       {len(table.records)}")

    print("\nEntries by name:")
    for name, count in sorted(table.count_by_name().items()):
        print(f"  {name:20s} {count}")

    print("\nCPK_ITEM entries by schema:")
    for schema, count in table.count_by_schema().items():
        label = schema.value if schema else "(none)"
        print(f"  {label:20s} {count}")

    records = table.records if limit is None else table.records[:limit]
    print(f"\nShowing {len(records)} of {len(table.records)} entries:")
    for record in records:
        schema = record.schema.value if record.schema else "-"
        values = ', '.join(format_field(v) for v in record.fields)
        print(f"  0x{record.byte_span.start:06X} {record.name:16s} [{schema:7s}] {values}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='cfgbin-dump',
        description='Inspect a LEVEL5 cpk_list.cfg.bin table',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s cpk_list.cfg.bin
  %(prog)s cpk_list.cfg.bin --schema legacy --limit 20
  %(prog)s cpk_list.cfg.bin --json entries.json
"""
    )
    parser.add_argument('input', help='Table file to inspect')
    parser.add_argument('--schema', default=DEFAULT_SCHEMA, metavar='NAME',
                        help=f'Schema discriminator to check entries against (default: {DEFAULT_SCHEMA})')
    parser.add_argument('--limit', '-n', type=int, default=None,
                        help='Only list the first N entries')
    parser.add_argument('--json', type=str, metavar='FILE',
                        help='Export entries as JSON')

    args = parser.parse_args(argv)
    if args.limit is not None and args.limit < 0:
        parser.error(f"--limit must be 0 or more, got {args.limit}")

    try:
        data = read_table_file(args.input)
        table = parse_table(data, args.schema)
    except CpkSyncError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return e.exit_code

    print("=" * 60)
    print(f"cfg.bin table: {args.input}")
    print("=" * 60)
    print_table(table, args.limit)

    if args.json:
        with open(args.json, 'w', encoding='utf-8') as f:
            json.dump(table_to_dict(table), f, indent=2, ensure_ascii=False)
        print(f"\nExported to: {args.json}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
