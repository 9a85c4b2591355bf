from __future__ import annotations


class UstarError(Exception):
    """Base class for ustar-specific errors."""

    code = -1


class InvalidArgumentError(UstarError):
    code = -1


# Backend I/O
class OpenError(UstarError):
    code = -2


class ReadError(UstarError):
    code = -3


class WriteError(UstarError):
    code = -4


class SeekError(UstarError):
    code = -5


class CloseError(UstarError):
    code = -6


# Header/record
class BadChecksumError(UstarError):
    code = -7


class NullRecordError(UstarError):
    code = -8


class NotFoundError(UstarError):
    code = -9


class FieldOverflowError(UstarError, ValueError):
    pass


class PathTooLongError(FieldOverflowError):
    pass


_MESSAGES = {
    0: "success",
    -1: "general failure",
    -2: "failed to open",
    -3: "failed to read data",
    -4: "failed to write data",
    -5: "failed to seek",
    -6: "failed to close",
    -7: "bad header checksum",
    -8: "record is null",
    -9: "record not found",
    -10: "no memory left",
}


def strerror(code: int) -> str:
    return _MESSAGES.get(code, "unknown")
