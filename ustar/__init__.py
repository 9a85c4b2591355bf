"""
ustar: a small streaming engine for POSIX USTAR (tar) archives.

Features:

- Header codec: structured headers to and from the fixed 512-byte USTAR block,
  with checksum validation and prefix/name splitting for paths up to 256 bytes.
- Pluggable byte-stream backends: regular files, raw OS descriptors, and
  in-memory buffers all go through the same five-operation interface.
- Archive engine with read, write and append modes. Entry data is streamed in
  arbitrary chunk sizes; append mode overwrites an existing end-of-archive
  marker instead of burying it.

Compression, GNU/pax extensions and multi-volume archives are not supported.
"""

from .archive import Archive, open_archive
from .header import Header, decode_header, encode_header
from .stream import FdStream, FileStream, MemoryStream, Stream

__version__ = "0.1"

__all__ = [
    "Archive",
    "open_archive",
    "Header",
    "encode_header",
    "decode_header",
    "Stream",
    "FileStream",
    "FdStream",
    "MemoryStream",
    "constants",
    "errors",
]
