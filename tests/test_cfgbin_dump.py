"""Tests for the cfgbin_dump inspection tool."""
from __future__ import annotations

import json

import pytest

from cfgbin_dump import main, table_to_dict
from cfgbin_parser import parse_table


class TestTableToDict:
    def test_structure(self, original_table) -> None:
        exported = table_to_dict(parse_table(original_table))
        assert exported['value_length'] == 4
        assert exported['encoding'] == 'utf-8'
        assert exported['size'] == len(original_table)
        assert len(exported['entries']) == 4

        item = exported['entries'][1]
        assert item['name'] == 'CPK_ITEM'
        assert item['key'] == ['data/', 'chr001.bin']
        assert item['offset'] == 0x1C
        assert item['size'] == 100
        assert item['size_offset'] == 0x1C + 0x18
        assert item['size_width'] == 4
        assert item['schema'] is None
        assert item['types'][:3] == ['string', 'string', 'integer']

    def test_schema_fields(self, patched_table) -> None:
        item = table_to_dict(parse_table(patched_table))['entries'][1]
        assert item['schema'] == 'current'
        assert item['source_size'] == 4096
        assert item['fields'][2] is None

    def test_json_serializable(self, patched_table) -> None:
        json.dumps(table_to_dict(parse_table(patched_table)))


class TestMain:
    def test_summary(self, tmp_path, patched_table, capsys) -> None:
        path = tmp_path / 'cpk_list.cfg.bin'
        path.write_bytes(patched_table)
        assert main([str(path)]) == 0

        out = capsys.readouterr().out
        assert "Value width:   4 bytes" in out
        assert "CPK_ITEM_BEGIN" in out
        assert "current" in out
        assert "Showing 3 of 3 entries" in out
        assert "'data/map/'" in out

    def test_limit(self, tmp_path, original_table, capsys) -> None:
        path = tmp_path / 'cpk_list.cfg.bin'
        path.write_bytes(original_table)
        assert main([str(path), '-n', '1']) == 0
        out = capsys.readouterr().out
        assert "Showing 1 of 4 entries" in out
        assert "(none)" in out

    def test_json_export(self, tmp_path, original_table, capsys) -> None:
        path = tmp_path / 'cpk_list.cfg.bin'
        export = tmp_path / 'entries.json'
        path.write_bytes(original_table)
        assert main([str(path), '--json', str(export)]) == 0

        data = json.loads(export.read_text(encoding='utf-8'))
        assert [e['name'] for e in data['entries']] == ['CPK_ITEM_BEGIN'] + ['CPK_ITEM'] * 3
        assert "Exported to:" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys) -> None:
        assert main([str(tmp_path / 'missing.bin')]) == 3
        assert "ERROR:" in capsys.readouterr().err

    def test_malformed(self, tmp_path, capsys) -> None:
        path = tmp_path / 'broken.bin'
        path.write_bytes(b'\x00' * 64)
        assert main([str(path)]) == 4

    def test_unknown_schema(self, tmp_path, original_table, capsys) -> None:
        path = tmp_path / 'cpk_list.cfg.bin'
        path.write_bytes(original_table)
        assert main([str(path), '--schema', 'auto']) == 5

    def test_negative_limit_rejected(self, tmp_path, original_table, capsys) -> None:
        path = tmp_path / 'cpk_list.cfg.bin'
        path.write_bytes(original_table)
        with pytest.raises(SystemExit) as excinfo:
            main([str(path), '--limit', '-1'])
        assert excinfo.value.code == 2
        assert "--limit" in capsys.readouterr().err

    def test_zero_limit(self, tmp_path, original_table, capsys) -> None:
        path = tmp_path / 'cpk_list.cfg.bin'
        path.write_bytes(original_table)
        assert main([str(path), '-n', '0']) == 0
        assert "Showing 0 of 4 entries" in capsys.readouterr().out

    def test_shared_helpers_live_in_parser_module(self) -> None:
        import cfgbin_dump
        assert cfgbin_dump.read_table_file.__module__ == "cfgbin_parser"
        assert cfgbin_dump.format_field.__module__ == "cfgbin_parser"
