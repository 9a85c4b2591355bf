import os


BLOCK_SIZE = 512
CLOSING_RECORD_SIZE = 2 * BLOCK_SIZE  # two zero blocks terminate an archive

# Magic and version
USTAR_MAGIC = b"ustar\x00"  # 6 bytes: "ustar\0"
USTAR_VERSION = b"00"       # 2 bytes, no terminator

# Typeflags
REGTYPE = b"0"
AREGTYPE = b"\x00"  # legacy regular file
LNKTYPE = b"1"
SYMTYPE = b"2"
CHRTYPE = b"3"
BLKTYPE = b"4"
DIRTYPE = b"5"
FIFOTYPE = b"6"
CONTTYPE = b"7"

REGULAR_TYPES = (REGTYPE, AREGTYPE, CONTTYPE)


# Field widths (bytes)
NAME_SIZE = 100
LINKNAME_SIZE = 100
PREFIX_SIZE = 155
OWNER_NAME_SIZE = 32
CHECKSUM_OFFSET = 148
CHECKSUM_SIZE = 8


# Open modes
MODE_READ = "r"
MODE_WRITE = "w"
MODE_APPEND = "a"
OPEN_MODES = (MODE_READ, MODE_WRITE, MODE_APPEND)

# Seek origins understood by every stream backend
SEEK_SET = os.SEEK_SET
SEEK_END = os.SEEK_END


DEFAULT_FILE_MODE = 0o644
STREAM_BUFFER_SIZE = 1_048_576  # 1 MiB
