from __future__ import annotations

import re
import struct
from dataclasses import dataclass
from typing import Tuple

from .constants import (
    BLOCK_SIZE,
    CHECKSUM_OFFSET,
    CHECKSUM_SIZE,
    DEFAULT_FILE_MODE,
    DIRTYPE,
    LINKNAME_SIZE,
    NAME_SIZE,
    OWNER_NAME_SIZE,
    PREFIX_SIZE,
    REGTYPE,
    REGULAR_TYPES,
    USTAR_MAGIC,
    USTAR_VERSION,
)
from .errors import (
    BadChecksumError,
    FieldOverflowError,
    InvalidArgumentError,
    NullRecordError,
    PathTooLongError,
)


# USTAR header block (fixed 512 bytes)
# struct: 100s 8s 8s 8s 12s 12s 8s c 100s 6s 2s 32s 32s 8s 8s 155s 12s
#  - name[100], mode[8], uid[8], gid[8], size[12], mtime[12]
#  - checksum[8] at offset 148, typeflag[1]
#  - linkname[100], magic[6] "ustar\0", version[2] "00"
#  - uname[32], gname[32], devmajor[8], devminor[8]
#  - prefix[155], padding[12]
_HDR_STRUCT = struct.Struct("100s8s8s8s12s12s8sc100s6s2s32s32s8s8s155s12s")
assert _HDR_STRUCT.size == BLOCK_SIZE

_OCTAL_RE = re.compile(rb"\s*([0-7]*)")
_CHECKSUM_SPACES = ord(" ") * CHECKSUM_SIZE


@dataclass
class Header:
    name: str = ""
    mode: int = DEFAULT_FILE_MODE
    uid: int = 0
    gid: int = 0
    size: int = 0
    mtime: int = 0
    typeflag: bytes = REGTYPE
    linkname: str = ""
    uname: str = ""
    gname: str = ""
    devmajor: int = 0
    devminor: int = 0
    prefix: str = ""

    @classmethod
    def for_path(cls, path: str, **fields) -> "Header":
        """Build a header for ``path``, splitting it across ``prefix``/``name`` when needed."""
        prefix, name = split_path(path)
        return cls(name=name, prefix=prefix, **fields)

    @property
    def path(self) -> str:
        return join_path(self.prefix, self.name)

    def is_file(self) -> bool:
        return self.typeflag in REGULAR_TYPES

    def is_dir(self) -> bool:
        return self.typeflag == DIRTYPE


def round_up(value: int, multiple: int) -> int:
    return value + (-value % multiple)


def _encode_text(value: str) -> bytes:
    return value.encode("utf-8", "surrogateescape")


def _decode_text(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", "surrogateescape")


def split_path(path: str) -> Tuple[str, str]:
    """Split ``path`` into ``(prefix, name)`` for the USTAR name fields.

    Paths of up to 100 bytes live in ``name`` alone. Longer paths are split at
    the rightmost ``/`` that leaves at most 155 bytes in ``prefix`` and at most
    100 bytes in ``name``; for most paths that is the last ``/``, putting the
    leaf in ``name``. A trailing slash stays in ``name``.
    """
    if len(_encode_text(path)) <= NAME_SIZE:
        return "", path
    trailing = "/" if path.endswith("/") else ""
    stem = path.rstrip("/")
    pos = len(stem)
    while True:
        pos = stem.rfind("/", 0, pos)
        if pos <= 0:
            raise PathTooLongError(f"Path cannot be split into USTAR prefix/name fields: {path!r}")
        name = stem[pos + 1 :] + trailing
        if len(_encode_text(name)) > NAME_SIZE:
            # moving the split further left only grows the name
            raise PathTooLongError(f"Path tail exceeds {NAME_SIZE} bytes: {name!r}")
        prefix = stem[:pos]
        if len(_encode_text(prefix)) <= PREFIX_SIZE:
            return prefix, name


def join_path(prefix: str, name: str) -> str:
    return f"{prefix}/{name}" if prefix else name


def _pack_text(field: str, value: str, width: int) -> bytes:
    data = _encode_text(value)
    if len(data) > width:
        raise FieldOverflowError(f"{field} too long for field ({len(data)} > {width} bytes)")
    return data


def _pack_octal(field: str, value: int, width: int) -> bytes:
    if value < 0:
        raise FieldOverflowError(f"{field} must be non-negative, got {value}")
    digits = format(value, "o").encode("ascii")
    if len(digits) > width:
        raise FieldOverflowError(f"{field} {value} too large for {width}-byte octal field")
    return digits


def _parse_octal(raw: bytes) -> int:
    # scanf("%o") semantics: leading whitespace, then octal digits up to the first other byte
    digits = _OCTAL_RE.match(raw).group(1)
    return int(digits, 8) if digits else 0


def compute_checksum(block: bytes) -> int:
    """Sum of all header bytes with the checksum field counted as 8 spaces."""
    end = CHECKSUM_OFFSET + CHECKSUM_SIZE
    return sum(block[:CHECKSUM_OFFSET]) + _CHECKSUM_SPACES + sum(block[end:])


def encode_header(header: Header) -> bytes:
    if len(header.typeflag) != 1:
        raise FieldOverflowError(f"typeflag must be a single byte, got {header.typeflag!r}")
    raw = _HDR_STRUCT.pack(
        _pack_text("name", header.name, NAME_SIZE),
        _pack_octal("mode", header.mode, 8),
        _pack_octal("uid", header.uid, 8),
        _pack_octal("gid", header.gid, 8),
        _pack_octal("size", header.size, 12),
        _pack_octal("mtime", header.mtime, 12),
        b"",  # checksum placeholder
        header.typeflag,
        _pack_text("linkname", header.linkname, LINKNAME_SIZE),
        USTAR_MAGIC,
        USTAR_VERSION,
        # owner names keep room for their terminator
        _pack_text("uname", header.uname, OWNER_NAME_SIZE - 1),
        _pack_text("gname", header.gname, OWNER_NAME_SIZE - 1),
        _pack_octal("devmajor", header.devmajor, 8),
        _pack_octal("devminor", header.devminor, 8),
        _pack_text("prefix", header.prefix, PREFIX_SIZE),
        b"",
    )
    checksum = b"%06o\x00 " % compute_checksum(raw)
    return raw[:CHECKSUM_OFFSET] + checksum + raw[CHECKSUM_OFFSET + CHECKSUM_SIZE :]


def decode_header(block: bytes) -> Header:
    """Decode a 512-byte header block.

    Raises NullRecordError for an empty slot (checksum field starting with NUL),
    BadChecksumError when the stored checksum does not match the block.
    """
    if len(block) != BLOCK_SIZE:
        raise InvalidArgumentError(f"Header block must be {BLOCK_SIZE} bytes, got {len(block)}")
    (
        name,
        mode,
        uid,
        gid,
        size,
        mtime,
        checksum,
        typeflag,
        linkname,
        _magic,
        _version,
        uname,
        gname,
        devmajor,
        devminor,
        prefix,
        _padding,
    ) = _HDR_STRUCT.unpack(block)
    if checksum[0] == 0:
        raise NullRecordError("Null record")
    if compute_checksum(block) != _parse_octal(checksum):
        raise BadChecksumError("Header checksum mismatch")
    return Header(
        name=_decode_text(name),
        mode=_parse_octal(mode),
        uid=_parse_octal(uid),
        gid=_parse_octal(gid),
        size=_parse_octal(size),
        mtime=_parse_octal(mtime),
        typeflag=typeflag,
        linkname=_decode_text(linkname),
        uname=_decode_text(uname),
        gname=_decode_text(gname),
        devmajor=_parse_octal(devmajor),
        devminor=_parse_octal(devminor),
        prefix=_decode_text(prefix),
    )
