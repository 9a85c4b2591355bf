from __future__ import annotations

import dataclasses
from typing import Iterator, List, Optional, Type

from .constants import (
    BLOCK_SIZE,
    CLOSING_RECORD_SIZE,
    MODE_READ,
    MODE_WRITE,
    OPEN_MODES,
    SEEK_END,
    SEEK_SET,
)
from .errors import (
    BadChecksumError,
    InvalidArgumentError,
    NotFoundError,
    NullRecordError,
    OpenError,
    PathTooLongError,
    ReadError,
    UstarError,
)
from .header import Header, decode_header, encode_header, round_up, split_path
from .stream import FileStream, Stream


_CLOSING_RECORD = bytes(CLOSING_RECORD_SIZE)


class Archive:
    """Streaming USTAR archive over a pluggable :class:`Stream` backend.

    One cursor walks the archive. Header reads never move it; entry data is
    streamed in caller-sized chunks while ``bytes_left`` tracks how much of the
    current entry remains. ``last_header_pos`` is where the cursor returns to
    once an entry's data has been fully read. ``write_pos`` is where written
    data ends; every write starts there, whatever reads moved the cursor.

    ``target`` is handed to ``backend.open`` (a path for :class:`FileStream` and
    :class:`FdStream`, an ``io.BytesIO`` for :class:`MemoryStream`); an already
    open :class:`Stream` may be passed instead and is then owned by the archive.
    """

    def __init__(self, target, mode: str = MODE_READ, *, backend: Type[Stream] = FileStream):
        if mode not in OPEN_MODES:
            raise OpenError(f"Unsupported open mode: {mode!r} (expected one of {', '.join(OPEN_MODES)})")
        self.target = target
        self.mode = mode
        self.backend = backend
        self.stream: Optional[Stream] = None
        self.finalize = False
        self.bytes_left = 0
        self.last_header_pos = 0
        self.entries_written = 0
        self._reading = False  # bytes_left belongs to a data read rather than a data write
        self.write_pos = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __iter__(self) -> Iterator[Header]:
        """Yield headers from the cursor onwards until the end-of-archive marker."""
        while True:
            try:
                header = self._scan_header()
            except NullRecordError:
                return
            yield header
            self.next()

    def open(self):
        if self.stream is not None:
            return
        stream = self.target if isinstance(self.target, Stream) else self.backend.open(self.target, self.mode)
        self.stream = stream
        self.bytes_left = 0
        self.last_header_pos = 0
        self.entries_written = 0
        self._reading = False
        self.write_pos = 0
        try:
            if self.mode == MODE_READ:
                self.finalize = False
                # Validate the archive
                self.read_header()
            elif self.mode == MODE_WRITE:
                self.finalize = True
            else:
                self.finalize = True
                self._prepare_append()
                self.write_pos = stream.tell()
        except UstarError:
            self.stream = None
            stream.close()
            raise

    def close(self):
        if self.stream is None:
            return
        stream = self.stream
        self.stream = None
        try:
            if self.finalize and self.entries_written:
                stream.seek(self.write_pos, SEEK_SET)
                stream.write_exact(_CLOSING_RECORD)
        finally:
            stream.close()

    def _require_open(self) -> Stream:
        if self.stream is None:
            raise InvalidArgumentError("Archive not open")
        return self.stream

    def _require_writable(self) -> Stream:
        stream = self._require_open()
        if self.mode == MODE_READ:
            raise InvalidArgumentError("Archive opened read-only")
        return stream

    def _prepare_append(self) -> None:
        stream = self.stream
        stream.seek(0, SEEK_END)
        size = stream.tell()
        stream.seek(0, SEEK_SET)
        if size < CLOSING_RECORD_SIZE:
            return  # too short to be an archive; overwrite from the start
        try:
            self.read_header()
        except (NullRecordError, BadChecksumError):
            return  # not a tar archive; overwrite from the start
        self._skip_closing_record()

    def _skip_closing_record(self) -> None:
        """Leave the cursor where the next entry belongs in an existing archive.

        A trailing end-of-archive marker is overwritten; otherwise entries are
        appended after the existing content. An unfinalized archive whose last
        1024 data bytes are zero is indistinguishable from a finalized one.
        """
        stream = self._require_open()
        stream.seek(-CLOSING_RECORD_SIZE, SEEK_END)
        tail = stream.read_exact(CLOSING_RECORD_SIZE)
        if tail == _CLOSING_RECORD:
            stream.seek(-CLOSING_RECORD_SIZE, SEEK_END)
        else:
            stream.seek(0, SEEK_END)

    def rewind(self) -> None:
        stream = self._require_open()
        if self.bytes_left and not self._reading:
            raise InvalidArgumentError(f"Entry still has {self.bytes_left} bytes of data to be written")
        self.last_header_pos = 0
        self.bytes_left = 0
        self._reading = False
        stream.seek(0, SEEK_SET)

    def read_header(self) -> Header:
        """Decode the header at the cursor without advancing it.

        Raises NullRecordError at the end-of-archive marker and
        BadChecksumError for a corrupt block.
        """
        stream = self._require_open()
        if self._reading:
            self._reading = False
            if self.bytes_left:
                # Abandon a partially read entry and go back to its header
                self.bytes_left = 0
                stream.seek(self.last_header_pos, SEEK_SET)
        self.last_header_pos = stream.tell()
        try:
            block = stream.read_exact(BLOCK_SIZE)
        finally:
            stream.seek(self.last_header_pos, SEEK_SET)
        return decode_header(block)

    def _scan_header(self) -> Header:
        """Like :meth:`read_header`, but running out of data exactly at a block
        boundary ends the archive the way a null record does.
        """
        try:
            return self.read_header()
        except ReadError as exc:
            stream = self.stream
            stream.seek(0, SEEK_END)
            end = stream.tell()
            stream.seek(self.last_header_pos, SEEK_SET)
            if self.last_header_pos == end:
                raise NullRecordError("Archive ends without an end-of-archive marker") from exc
            raise

    def _skip_record(self, header: Header) -> None:
        record_size = round_up(header.size, BLOCK_SIZE) + BLOCK_SIZE
        self.stream.seek(self.last_header_pos + record_size, SEEK_SET)

    def next(self) -> None:
        """Move the cursor past the current entry's header and data."""
        self._skip_record(self.read_header())

    def find(self, path: str) -> Header:
        """Scan from the start of the archive for ``path``.

        On success the cursor rests on the matching header, ready for
        :meth:`read_data`.
        """
        self._require_open()
        try:
            prefix, name = split_path(path)
        except PathTooLongError as exc:
            raise NullRecordError(f"Path cannot be stored in a USTAR archive: {path!r}") from exc
        self.rewind()
        while True:
            try:
                header = self._scan_header()
            except NullRecordError as exc:
                raise NotFoundError(f"{path!r} not found in archive") from exc
            if header.name == name and header.prefix == prefix:
                return header
            self._skip_record(header)

    def list(self) -> List[Header]:
        self.rewind()
        return [header for header in self]

    def read_data(self, size: int) -> bytes:
        """Read up to ``size`` bytes of the entry at the cursor.

        The first call for an entry reads its header; later calls continue
        where the previous one stopped. Once the entry is exhausted the cursor
        returns to its header, so :meth:`next` moves on to the following entry.
        """
        stream = self._require_open()
        if self.mode == MODE_WRITE:
            raise InvalidArgumentError("Archive opened write-only")
        if size < 0:
            raise InvalidArgumentError(f"Read size must be non-negative, got {size}")
        if self.bytes_left and not self._reading:
            raise InvalidArgumentError(f"Entry still has {self.bytes_left} bytes of data to be written")
        if self.bytes_left == 0:
            header = self.read_header()
            self.bytes_left = header.size
            self._reading = True
            stream.seek(self.last_header_pos + BLOCK_SIZE, SEEK_SET)
        n = min(size, self.bytes_left)
        data = stream.read_exact(n)
        self.bytes_left -= n
        if self.bytes_left == 0:
            self._reading = False
            stream.seek(self.last_header_pos, SEEK_SET)
        return data

    def write_header(self, header: Header) -> None:
        stream = self._require_writable()
        if self.bytes_left:
            if not self._reading:
                raise InvalidArgumentError(f"Previous entry still has {self.bytes_left} bytes of data to be written")
            self.bytes_left = 0
            self._reading = False
        block = encode_header(header)
        stream.seek(self.write_pos, SEEK_SET)
        stream.write_exact(block)
        self.write_pos += BLOCK_SIZE
        self.bytes_left = header.size
        self.entries_written += 1

    def write_data(self, data: bytes) -> int:
        """Write the next chunk of the current entry's data.

        Anything beyond the entry's declared size is ignored; the returned count
        says how much was taken. The final chunk is followed by zero padding up
        to the next block boundary.
        """
        stream = self._require_writable()
        if self._reading and self.bytes_left:
            raise InvalidArgumentError("Entry data is being read, not written")
        n = min(len(data), self.bytes_left)
        stream.seek(self.write_pos, SEEK_SET)
        if n:
            stream.write_exact(data[:n])
            self.write_pos += n
        self.bytes_left -= n
        if self.bytes_left == 0:
            pad = round_up(self.write_pos, BLOCK_SIZE) - self.write_pos
            if pad:
                stream.write_exact(bytes(pad))
                self.write_pos += pad
        return n

    def add_bytes(self, header: Header, data: bytes = b"") -> None:
        """Write one entry whose whole payload is in memory; ``size`` is taken from ``data``."""
        self.write_header(dataclasses.replace(header, size=len(data)))
        self.write_data(data)


def open_archive(target, mode: str = MODE_READ, *, backend: Type[Stream] = FileStream) -> Archive:
    archive = Archive(target, mode, backend=backend)
    archive.open()
    return archive
