"""Shared fixtures for table tests."""
from __future__ import annotations

import pytest

from cfgbin_factory import build_cfg_bin, current_item, list_header, original_item


@pytest.fixture()
def original_table():
    return build_cfg_bin([
        list_header(3),
        original_item('data/', 'chr001.bin', 100),
        original_item('data/', 'chr002.bin', 200),
        original_item('data/map/', 'town.bin', 300),
    ])


@pytest.fixture()
def patched_table():
    return build_cfg_bin([
        list_header(2),
        current_item('data/', 'chr001.bin', 4096),
        current_item('data/map/', 'town.bin', 300),
    ])
