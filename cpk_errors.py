#!/usr/bin/env python3
"""
Error types for the cpk_list.cfg.bin size synchronizer
=======================================================

Every failure is terminal for a run. Each error class carries the process
exit code the command line tools return for it:

| Code | Error             | Meaning                                      |
|------|-------------------|----------------------------------------------|
| 2    | UsageError        | Bad or missing command line arguments        |
| 3    | IoError           | File could not be read or written            |
| 4    | MalformedTable    | Table truncated or unparseable               |
| 5    | UnsupportedSchema | Unknown record schema selector               |
| 6    | DuplicateKey      | Two patched entries share one key            |
| 7    | SizeOverflow      | Size does not fit the original field width   |
| 70   | OutOfBounds       | Patch outside the buffer (internal defect)   |
"""


class CpkSyncError(Exception):
    """Base class for all synchronizer errors"""

    exit_code = 1


class UsageError(CpkSyncError):
    exit_code = 2


class IoError(CpkSyncError, OSError):
    """File open/read/write failure for a specific path"""

    exit_code = 3

    def __init__(self, path, reason):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")

    def __str__(self):
        return f"{self.path}: {self.reason}"


class MalformedTable(CpkSyncError, ValueError):
    """Table buffer truncated or unparseable"""

    exit_code = 4

    def __init__(self, message: str, offset: int = None, stage: str = None):
        self.message = message
        self.offset = offset
        self.stage = stage
        context = []
        if stage:
            context.append(stage)
        if offset is not None:
            context.append(f"offset 0x{offset:X}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class UnsupportedSchema(CpkSyncError, ValueError):
    exit_code = 5

    def __init__(self, name):
        self.name = name
        super().__init__(f"Unsupported record schema: {name!r} (expected 'legacy' or 'current')")


class DuplicateKey(CpkSyncError, ValueError):
    exit_code = 6

    def __init__(self, key, first_offset: int, second_offset: int):
        self.key = key
        super().__init__(
            f"Duplicate entry key {key} at offsets 0x{first_offset:X} and 0x{second_offset:X}"
        )


class SizeOverflow(CpkSyncError, ValueError):
    exit_code = 7

    def __init__(self, key, value: int, width: int):
        self.key = key
        self.value = value
        self.width = width
        super().__init__(
            f"Size {value} for {key} does not fit in a {width}-byte field"
        )


class OutOfBounds(CpkSyncError, ValueError):
    """Patch target outside the table buffer. Indicates a parser defect."""

    exit_code = 70
