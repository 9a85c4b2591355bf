from __future__ import annotations

import io
import os
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional

from .constants import MODE_APPEND, MODE_READ, MODE_WRITE, OPEN_MODES, SEEK_END, SEEK_SET
from .errors import (
    CloseError,
    InvalidArgumentError,
    OpenError,
    ReadError,
    SeekError,
    WriteError,
)


def _check_mode(mode: str) -> None:
    if mode not in OPEN_MODES:
        raise OpenError(f"Unsupported open mode: {mode!r} (expected one of {', '.join(OPEN_MODES)})")


def _check_whence(whence: int) -> None:
    if whence not in (SEEK_SET, SEEK_END):
        raise SeekError(f"Unsupported seek origin: {whence}")


class Stream(ABC):
    """Byte stream an archive is read from and written to.

    The archive engine talks to its medium only through these five operations,
    so any seekable byte store can host an archive.
    """

    @classmethod
    @abstractmethod
    def open(cls, target, mode: str) -> "Stream":
        """Open ``target`` for archive mode ``"r"``, ``"w"`` or ``"a"``."""

    @abstractmethod
    def seek(self, offset: int, whence: int = SEEK_SET) -> None:
        ...

    @abstractmethod
    def tell(self) -> int:
        ...

    @abstractmethod
    def read_exact(self, n: int) -> bytes:
        ...

    @abstractmethod
    def write_exact(self, data: bytes) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class FileStream(Stream):
    """Stream over a Python binary file object."""

    _FILE_MODES = {MODE_READ: "rb", MODE_WRITE: "wb"}

    def __init__(self, fh: BinaryIO):
        self.f: Optional[BinaryIO] = fh

    @classmethod
    def open(cls, target, mode: str) -> "FileStream":
        _check_mode(mode)
        try:
            if mode == MODE_APPEND:
                # r+b lets writes land anywhere, not only at EOF
                try:
                    fh = open(target, "r+b")
                except FileNotFoundError:
                    fh = open(target, "w+b")
            else:
                fh = open(target, cls._FILE_MODES[mode])
        except OSError as exc:
            raise OpenError(f"Failed to open {target} in mode {mode!r}: {exc}") from exc
        return cls(fh)

    def _handle(self) -> BinaryIO:
        if self.f is None:
            raise InvalidArgumentError("Stream is closed")
        return self.f

    def seek(self, offset: int, whence: int = SEEK_SET) -> None:
        _check_whence(whence)
        fh = self._handle()
        try:
            fh.seek(offset, whence)
        except (OSError, ValueError) as exc:
            raise SeekError(f"Seek to {offset} (whence={whence}) failed: {exc}") from exc

    def tell(self) -> int:
        fh = self._handle()
        try:
            return fh.tell()
        except OSError as exc:
            raise SeekError(f"Tell failed: {exc}") from exc

    def read_exact(self, n: int) -> bytes:
        fh = self._handle()
        try:
            data = fh.read(n)
        except OSError as exc:
            raise ReadError(f"Read of {n} bytes failed: {exc}") from exc
        if len(data) != n:
            raise ReadError(f"Unexpected EOF: wanted {n} bytes, got {len(data)}")
        return data

    def write_exact(self, data: bytes) -> None:
        fh = self._handle()
        try:
            written = fh.write(data)
        except OSError as exc:
            raise WriteError(f"Write of {len(data)} bytes failed: {exc}") from exc
        if written is not None and written != len(data):
            raise WriteError(f"Short write: {written} of {len(data)} bytes")

    def close(self) -> None:
        fh = self._handle()
        self.f = None
        try:
            fh.close()
        except OSError as exc:
            raise CloseError(f"Close failed: {exc}") from exc


class MemoryStream(FileStream):
    """Stream over an in-memory buffer owned by the caller.

    Closing the stream leaves the buffer intact so the archive bytes stay
    available through :meth:`getvalue` or the caller's own reference.
    """

    def __init__(self, buffer: Optional[io.BytesIO] = None):
        self.buffer = buffer if buffer is not None else io.BytesIO()
        super().__init__(self.buffer)

    @classmethod
    def open(cls, target, mode: str) -> "MemoryStream":
        _check_mode(mode)
        if target is not None and not isinstance(target, io.BytesIO):
            raise OpenError(f"MemoryStream needs an io.BytesIO target, got {type(target).__name__}")
        stream = cls(target)
        stream.buffer.seek(0)
        if mode == MODE_WRITE:
            stream.buffer.truncate()
        return stream

    def seek(self, offset: int, whence: int = SEEK_SET) -> None:
        _check_whence(whence)
        if whence == SEEK_END:
            with self._handle().getbuffer() as view:
                offset += view.nbytes
        if offset < 0:
            raise SeekError(f"Seek before start of buffer ({offset})")
        super().seek(offset, SEEK_SET)

    def close(self) -> None:
        self._handle()
        self.f = None

    def getvalue(self) -> bytes:
        return self.buffer.getvalue()


class FdStream(Stream):
    """Stream over a raw OS file descriptor."""

    _FD_FLAGS = {
        MODE_READ: os.O_RDONLY,
        MODE_WRITE: os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
        MODE_APPEND: os.O_RDWR | os.O_CREAT,
    }

    def __init__(self, fd: int):
        self.fd: Optional[int] = fd

    @classmethod
    def open(cls, target, mode: str, perms: int = 0o644) -> "FdStream":
        _check_mode(mode)
        flags = cls._FD_FLAGS[mode] | getattr(os, "O_BINARY", 0)
        try:
            fd = os.open(target, flags, perms)
        except OSError as exc:
            raise OpenError(f"Failed to open {target} in mode {mode!r}: {exc}") from exc
        return cls(fd)

    def _handle(self) -> int:
        if self.fd is None:
            raise InvalidArgumentError("Stream is closed")
        return self.fd

    def seek(self, offset: int, whence: int = SEEK_SET) -> None:
        _check_whence(whence)
        fd = self._handle()
        try:
            os.lseek(fd, offset, whence)
        except OSError as exc:
            raise SeekError(f"Seek to {offset} (whence={whence}) failed: {exc}") from exc

    def tell(self) -> int:
        fd = self._handle()
        try:
            return os.lseek(fd, 0, os.SEEK_CUR)
        except OSError as exc:
            raise SeekError(f"Tell failed: {exc}") from exc

    def read_exact(self, n: int) -> bytes:
        fd = self._handle()
        buf = bytearray()
        try:
            while len(buf) < n:
                part = os.read(fd, n - len(buf))
                if not part:
                    break
                buf += part
        except OSError as exc:
            raise ReadError(f"Read of {n} bytes failed: {exc}") from exc
        if len(buf) != n:
            raise ReadError(f"Unexpected EOF: wanted {n} bytes, got {len(buf)}")
        return bytes(buf)

    def write_exact(self, data: bytes) -> None:
        fd = self._handle()
        view = memoryview(data)
        try:
            while view:
                written = os.write(fd, view)
                if written <= 0:
                    raise WriteError(f"Short write: {len(data) - len(view)} of {len(data)} bytes")
                view = view[written:]
        except OSError as exc:
            raise WriteError(f"Write of {len(data)} bytes failed: {exc}") from exc

    def close(self) -> None:
        fd = self._handle()
        self.fd = None
        try:
            os.close(fd)
        except OSError as exc:
            raise CloseError(f"Close failed: {exc}") from exc
