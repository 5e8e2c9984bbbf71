#!/usr/bin/env python3
"""
Entry index for cpk_list.cfg.bin tables
=======================================

Maps a path key to the one record that carries it. Keys are compared exactly
and case-sensitively; there is no fuzzy or prefix matching.

Path generators disagree on where the directory ends: the original table
stores ("data/", "chr001.bin") while a legacy patch generator folds the whole
path into the first field, ("data/chr001.bin", ""). Both parts are joined and
split again after the last '/' so the two spellings meet on one key.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

from cpk_errors import DuplicateKey
from cfgbin_parser import RawRecord


@dataclass(frozen=True)
class MatchKey:
    directory: str
    filename: str

    @classmethod
    def from_parts(cls, key_parts: Tuple[str, str]) -> "MatchKey":
        path = key_parts[0] + key_parts[1]
        cut = path.rfind("/") + 1
        return cls(directory=path[:cut], filename=path[cut:])

    @classmethod
    def from_record(cls, record: RawRecord) -> "MatchKey":
        return cls.from_parts(record.key_parts)

    @property
    def path(self) -> str:
        return self.directory + self.filename

    def __str__(self):
        return f"'{self.path}'"


class EntryIndex:
    """Lookup of records by MatchKey. Built once, never modified."""

    def __init__(self, entries: Dict[MatchKey, RawRecord]):
        self._entries = dict(entries)

    @classmethod
    def build(cls, records: Iterable[RawRecord]) -> "EntryIndex":
        """
        Index every record that has an identity.

        Args:
            records: Parsed records in table order

        Returns:
            EntryIndex

        Raises:
            DuplicateKey: If two records derive the same key
        """
        entries = {}
        for record in records:
            if not record.has_identity:
                continue
            key = MatchKey.from_record(record)
            existing = entries.get(key)
            if existing is not None:
                raise DuplicateKey(key, existing.byte_span.start, record.byte_span.start)
            entries[key] = record
        return cls(entries)

    def get(self, key: MatchKey) -> Optional[RawRecord]:
        return self._entries.get(key)

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MatchKey]:
        return iter(self._entries)
