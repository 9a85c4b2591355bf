from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import BinaryIO, List, Optional

from ustar.archive import Archive
from ustar.constants import (
    BLKTYPE,
    CHRTYPE,
    CONTTYPE,
    DIRTYPE,
    FIFOTYPE,
    LNKTYPE,
    MODE_APPEND,
    MODE_READ,
    MODE_WRITE,
    REGTYPE,
    AREGTYPE,
    STREAM_BUFFER_SIZE,
    SYMTYPE,
)
from ustar.errors import UstarError
from ustar.header import Header
from ustar.pathutil import dir_entry_path, norm_path, safe_join


_KIND_NAMES = {
    REGTYPE: "file",
    AREGTYPE: "file",
    LNKTYPE: "hardlink",
    SYMTYPE: "symlink",
    CHRTYPE: "chardev",
    BLKTYPE: "blockdev",
    DIRTYPE: "dir",
    FIFOTYPE: "fifo",
    CONTTYPE: "contiguous",
}


def _safe_utime(path: str, mtime: Optional[int]) -> None:
    """Best‑effort utime that never raises.

    Args:
        path: Destination filesystem path to update.
        mtime: Modification time (seconds since epoch). If None, no change is made.
    """
    if mtime is None:
        return
    try:
        os.utime(path, (mtime, mtime), follow_symlinks=False)
    except (OSError, NotImplementedError) as exc:
        print(f"Warning: failed to set timestamps on {path}: {exc}", file=sys.stderr)


def _copy_data_out(tar: Archive, out: BinaryIO) -> int:
    """Stream the entry at the archive cursor into ``out``."""
    total = 0
    while True:
        chunk = tar.read_data(STREAM_BUFFER_SIZE)
        out.write(chunk)
        total += len(chunk)
        if tar.bytes_left == 0:
            return total


def _pack_file(tar: Archive, fs_path: Path, arc: str, owner: dict) -> None:
    st = os.stat(str(fs_path))
    header = Header.for_path(
        arc,
        mode=st.st_mode & 0o7777,
        size=st.st_size,
        mtime=int(st.st_mtime),
        typeflag=REGTYPE,
        **owner,
    )
    tar.write_header(header)
    with open(fs_path, "rb") as rf:
        while tar.bytes_left > 0:
            chunk = rf.read(min(STREAM_BUFFER_SIZE, tar.bytes_left))
            if not chunk:
                # File shrank since stat(); keep the record well-formed
                print(f"Warning: {fs_path} shrank while packing; padding with zeros", file=sys.stderr)
                chunk = bytes(tar.bytes_left)
            tar.write_data(chunk)


def _pack_dir(tar: Archive, fs_path: Path, arc: str, owner: dict) -> None:
    st = os.stat(str(fs_path))
    header = Header.for_path(
        dir_entry_path(arc),
        mode=st.st_mode & 0o7777,
        mtime=int(st.st_mtime),
        typeflag=DIRTYPE,
        **owner,
    )
    tar.write_header(header)


def _pack_symlink(tar: Archive, fs_path: Path, arc: str, owner: dict) -> None:
    st = os.lstat(str(fs_path))
    header = Header.for_path(
        arc,
        mode=0o777,
        mtime=int(st.st_mtime),
        typeflag=SYMTYPE,
        linkname=os.readlink(str(fs_path)),
        **owner,
    )
    tar.write_header(header)


def cmd_pack(
    archive: str,
    inputs: List[str],
    *,
    append: bool = False,
    uid: int = 0,
    gid: int = 0,
    uname: str = "",
    gname: str = "",
    quiet: bool = False,
) -> bool:
    """Write every input file and directory tree into ``archive``.

    Directories get one header each (no data); files get a header followed by
    their contents. With ``append`` the entries go after those already present.
    """
    owner = {"uid": uid, "gid": gid, "uname": uname, "gname": gname}
    with Archive(archive, MODE_APPEND if append else MODE_WRITE) as tar:
        for src in [Path(x) for x in inputs]:
            base = norm_path(src.name or src.resolve().name)
            if src.is_symlink():
                _pack_symlink(tar, src, base, owner)
                continue
            if not src.is_dir():
                if not quiet:
                    print(f"   adding: {base}")
                _pack_file(tar, src, base, owner)
                continue
            _pack_dir(tar, src, base, owner)
            for root, dirnames, filenames in os.walk(str(src)):
                dirnames.sort()
                for d in dirnames:
                    full = Path(root) / d
                    arc = norm_path(os.path.join(base, os.path.relpath(full, start=str(src))))
                    if full.is_symlink():
                        _pack_symlink(tar, full, arc, owner)
                    else:
                        if not quiet:
                            print(f" creating: {arc}/")
                        _pack_dir(tar, full, arc, owner)
                for f in sorted(filenames):
                    full = Path(root) / f
                    arc = norm_path(os.path.join(base, os.path.relpath(full, start=str(src))))
                    if full.is_symlink():
                        _pack_symlink(tar, full, arc, owner)
                    else:
                        if not quiet:
                            print(f"   adding: {arc}")
                        _pack_file(tar, full, arc, owner)
        count = tar.entries_written
    if not quiet:
        print(f"Packed {count} entries into {archive}")
    return True


def cmd_list(archive: str) -> bool:
    with Archive(archive, MODE_READ) as tar:
        for h in tar.list():
            kind = _KIND_NAMES.get(h.typeflag, "unknown")
            if h.typeflag in (SYMTYPE, LNKTYPE):
                print(f"{kind}\t-> {h.linkname}\t{h.path}")
            else:
                print(f"{kind}\t{h.size}\t{h.path}")
    return True


def cmd_cat(archive: str, path: str) -> bool:
    with Archive(archive, MODE_READ) as tar:
        tar.find(path)
        out = sys.stdout.buffer
        _copy_data_out(tar, out)
        out.flush()
    return True


def cmd_unpack(archive: str, *, outdir: str = ".", quiet: bool = False) -> bool:
    """Recreate the archive's directories and regular files under ``outdir``."""
    ok = True
    with Archive(archive, MODE_READ) as tar:
        for h in tar:
            dst = safe_join(outdir, h.path)
            if h.is_dir():
                if not quiet:
                    print(f" creating: {h.path}")
                os.makedirs(dst, exist_ok=True)
                _safe_utime(dst, h.mtime)
            elif h.is_file():
                if not quiet:
                    print(f"unpacking: {h.path}")
                os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
                with open(dst, "wb") as wf:
                    _copy_data_out(tar, wf)
                _safe_utime(dst, h.mtime)
            else:
                kind = _KIND_NAMES.get(h.typeflag, "unknown")
                print(f"Warning: skipping {h.path} (unsupported entry type: {kind})", file=sys.stderr)
                ok = False
    return ok


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="ustar",
        description="Minimal USTAR (POSIX tar) archive tool",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Pack files and directories into an archive")
    ap_pack.add_argument("archive", help="Output .tar path")
    ap_pack.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_pack.add_argument("--append", action="store_true", help="Append to an existing archive instead of replacing it")
    ap_pack.add_argument("--uid", type=int, default=0, help="Owner user id stored in headers (default 0)")
    ap_pack.add_argument("--gid", type=int, default=0, help="Owner group id stored in headers (default 0)")
    ap_pack.add_argument("--uname", default="", help="Owner user name stored in headers")
    ap_pack.add_argument("--gname", default="", help="Owner group name stored in headers")
    ap_pack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")

    ap_cat = sub.add_parser("cat", help="Write one entry's data to stdout")
    ap_cat.add_argument("archive", help="Archive path")
    ap_cat.add_argument("path", help="Entry path inside the archive")

    ap_unpack = sub.add_parser("unpack", help="Extract directories and regular files")
    ap_unpack.add_argument("archive", help="Archive path")
    ap_unpack.add_argument("--outdir", default=".", help="Output directory")
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "pack":
            success = cmd_pack(
                args.archive,
                args.inputs,
                append=args.append,
                uid=args.uid,
                gid=args.gid,
                uname=args.uname,
                gname=args.gname,
                quiet=args.quiet,
            )
        elif args.cmd == "list":
            success = cmd_list(args.archive)
        elif args.cmd == "cat":
            success = cmd_cat(args.archive, args.path)
        elif args.cmd == "unpack":
            success = cmd_unpack(args.archive, outdir=args.outdir, quiet=args.quiet)
        else:
            raise RuntimeError("Unknown command")
    except (ValueError, UstarError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
