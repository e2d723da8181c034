"""Process exit codes for the rbundle CLI.

The numeric values are part of the CLI contract and should remain stable:
- 0: Success
- 1: User error (bad arguments, malformed bundle or manifest)
- 4: Network error (API or registry call failed)
- 5: I/O error (bundle file unreadable, output not writable)
- 6: Conflict (release already exists at the destination)
- 7: Not found (application or release does not exist)
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    OK = 0
    USER_ERROR = 1
    NETWORK_ERROR = 4
    IO_ERROR = 5
    CONFLICT = 6
    NOT_FOUND = 7

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
