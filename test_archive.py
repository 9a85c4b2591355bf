from __future__ import annotations

import io
import os
import tarfile
import tempfile
import unittest
from pathlib import Path

from ustar.archive import Archive, open_archive
from ustar.constants import BLOCK_SIZE, CLOSING_RECORD_SIZE, DIRTYPE, REGTYPE
from ustar.errors import (
    BadChecksumError,
    InvalidArgumentError,
    NotFoundError,
    NullRecordError,
    OpenError,
    ReadError,
)
from ustar.header import Header
from ustar.stream import FdStream, FileStream, MemoryStream


_ZERO_MARKER = bytes(CLOSING_RECORD_SIZE)


def _write_sample(tar: Archive) -> None:
    tar.add_bytes(Header(name="a.txt", mtime=1_700_000_000), b"alpha\n" * 100)
    tar.write_header(Header(name="dir/", typeflag=DIRTYPE, mode=0o755))
    tar.add_bytes(Header(name="dir/b.txt"), b"bravo")


def _count_markers(raw: bytes) -> int:
    """Count zero 1024-byte runs at block boundaries directly after a record."""
    count = 0
    pos = 0
    while pos + CLOSING_RECORD_SIZE <= len(raw):
        if raw[pos : pos + CLOSING_RECORD_SIZE] == _ZERO_MARKER:
            count += 1
            pos += CLOSING_RECORD_SIZE
        else:
            pos += BLOCK_SIZE
    return count


class ArchiveTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_hello_world_scenario(self):
        def scenario(tmp_path: Path):
            path = str(tmp_path / "hello.tar")
            with Archive(path, "w") as tar:
                tar.write_header(Header(name="hello.txt", size=5, typeflag=REGTYPE))
                self.assertEqual(5, tar.write_data(b"world"))
            self.assertEqual(BLOCK_SIZE * 2 + CLOSING_RECORD_SIZE, os.path.getsize(path))

            with Archive(path, "r") as tar:
                header = tar.read_header()
                self.assertEqual("hello.txt", header.name)
                self.assertEqual(5, header.size)
                self.assertEqual(b"world", tar.read_data(5))
                self.assertEqual(0, tar.bytes_left)
                # finishing an entry rewinds to its header, so next() comes
                # before the null record that follows the only entry
                self.assertEqual("hello.txt", tar.read_header().name)
                tar.next()
                with self.assertRaises(NullRecordError):
                    tar.read_header()

        self.run_with_tmpdir(scenario)

    def test_read_header_does_not_advance(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            _write_sample(tar)
        with Archive(buf, "r", backend=MemoryStream) as tar:
            first = tar.read_header()
            self.assertEqual(first, tar.read_header())
            self.assertEqual(0, tar.stream.tell())
            self.assertEqual(0, tar.last_header_pos)

    def test_next_skips_records(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            _write_sample(tar)
        with Archive(buf, "r", backend=MemoryStream) as tar:
            names = []
            while True:
                try:
                    names.append(tar.read_header().name)
                except NullRecordError:
                    break
                tar.next()
            self.assertEqual(["a.txt", "dir/", "dir/b.txt"], names)
            self.assertEqual(["a.txt", "dir/", "dir/b.txt"], [h.path for h in tar.list()])

    def test_block_alignment_after_data(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            for size in (0, 1, 511, 512, 513, 2000):
                tar.write_header(Header(name=f"f{size}", size=size))
                tar.write_data(b"x" * size)
                self.assertEqual(0, tar.bytes_left)
                self.assertEqual(0, tar.stream.tell() % BLOCK_SIZE)

    def test_chunked_writes_are_not_padded_midway(self):
        data = bytes(range(256)) * 10 + b"tail"  # 2564 bytes
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            tar.write_header(Header(name="chunked.bin", size=len(data)))
            for start in range(0, len(data), 100):
                self.assertEqual(len(data[start : start + 100]), tar.write_data(data[start : start + 100]))
            self.assertEqual(0, tar.stream.tell() % BLOCK_SIZE)
        with Archive(buf, "r", backend=MemoryStream) as tar:
            out = bytearray()
            while True:
                out += tar.read_data(77)
                if tar.bytes_left == 0:
                    break
            self.assertEqual(data, bytes(out))

    def test_write_data_clamps_to_declared_size(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            tar.write_header(Header(name="short", size=3))
            self.assertEqual(3, tar.write_data(b"abcdef"))
            self.assertEqual(0, tar.write_data(b"more"))
        with Archive(buf, "r", backend=MemoryStream) as tar:
            self.assertEqual(b"abc", tar.read_data(100))

    def test_write_header_refuses_unfinished_entry(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            tar.write_header(Header(name="half", size=10))
            tar.write_data(b"12345")
            with self.assertRaises(InvalidArgumentError):
                tar.write_header(Header(name="next"))
            tar.write_data(b"67890")
            tar.write_header(Header(name="next"))

    def test_find(self):
        def scenario(tmp_path: Path):
            path = str(tmp_path / "find.tar")
            with Archive(path, "w") as tar:
                _write_sample(tar)
            with Archive(path, "r") as tar:
                header = tar.find("dir/b.txt")
                self.assertEqual("dir/b.txt", header.name)
                self.assertEqual(b"bravo", tar.read_data(header.size + 1))
                self.assertTrue(tar.find("dir/").is_dir())
                self.assertEqual("a.txt", tar.find("a.txt").name)
                with self.assertRaises(NotFoundError):
                    tar.find("missing.txt")
                with self.assertRaises(NullRecordError):
                    tar.find("x" * 101)

        self.run_with_tmpdir(scenario)

    def test_long_path_roundtrip_and_find(self):
        long_path = "/".join(["a" * 50, "b" * 50, "c" * 57, "f" * 40])
        self.assertEqual(200, len(long_path))
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            tar.add_bytes(Header(name="short.txt"), b"s")
            tar.add_bytes(Header.for_path(long_path), b"long entry")
        with Archive(buf, "r", backend=MemoryStream) as tar:
            header = tar.find(long_path)
            self.assertEqual(long_path, header.path)
            self.assertNotEqual("", header.prefix)
            self.assertEqual(b"long entry", tar.read_data(64))
            with self.assertRaises(NotFoundError):
                tar.find("/".join(["a" * 50, "b" * 50, "c" * 57, "g" * 40]))

    def test_append_overwrites_end_marker(self):
        def scenario(tmp_path: Path):
            path = str(tmp_path / "append.tar")
            with Archive(path, "w") as tar:
                tar.add_bytes(Header(name="one.txt"), b"first session")
            size_one = os.path.getsize(path)
            with Archive(path, "a") as tar:
                tar.add_bytes(Header(name="two.txt"), b"second session")
                tar.add_bytes(Header(name="three.txt"), b"")
            raw = Path(path).read_bytes()
            self.assertEqual(size_one + 3 * BLOCK_SIZE, len(raw))
            self.assertEqual(_ZERO_MARKER, raw[-CLOSING_RECORD_SIZE:])
            self.assertEqual(1, _count_markers(raw))
            with Archive(path, "r") as tar:
                self.assertEqual(["one.txt", "two.txt", "three.txt"], [h.name for h in tar.list()])
                tar.find("two.txt")
                self.assertEqual(b"second session", tar.read_data(100))

        self.run_with_tmpdir(scenario)

    def test_append_after_reads_still_overwrites_marker(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            _write_sample(tar)
        with Archive(buf, "a", backend=MemoryStream) as tar:
            tar.find("a.txt")
            tar.read_data(10)
            tar.add_bytes(Header(name="late.txt"), b"late")
        raw = buf.getvalue()
        self.assertEqual(1, _count_markers(raw))
        with Archive(buf, "r", backend=MemoryStream) as tar:
            self.assertEqual(["a.txt", "dir/", "dir/b.txt", "late.txt"], [h.name for h in tar.list()])

    def test_append_find_after_write_keeps_entries(self):
        def scenario(tmp_path: Path):
            path = str(tmp_path / "mixed.tar")
            with Archive(path, "w") as tar:
                tar.add_bytes(Header(name="old.txt"), b"old data")
            with Archive(path, "a") as tar:
                tar.add_bytes(Header(name="new.txt"), b"new data")
                tar.find("old.txt")
                self.assertEqual(b"old", tar.read_data(3))
                tar.add_bytes(Header(name="newer.txt"), b"newer")
                tar.find("new.txt")
            raw = Path(path).read_bytes()
            self.assertEqual(8 * BLOCK_SIZE, len(raw))
            self.assertEqual(_ZERO_MARKER, raw[-CLOSING_RECORD_SIZE:])
            self.assertEqual(1, _count_markers(raw))
            with Archive(path, "r") as tar:
                self.assertEqual(["old.txt", "new.txt", "newer.txt"], [h.name for h in tar.list()])
                tar.find("old.txt")
                self.assertEqual(b"old data", tar.read_data(100))

        self.run_with_tmpdir(scenario)

    def test_reads_in_write_mode_do_not_move_writes(self):
        def scenario(tmp_path: Path):
            # write-only file handle: the lookup fails, the archive survives
            path = str(tmp_path / "w.tar")
            with Archive(path, "w") as tar:
                tar.add_bytes(Header(name="a.txt"), b"alpha")
                with self.assertRaises(ReadError):
                    tar.find("a.txt")
                tar.add_bytes(Header(name="b.txt"), b"bravo")
            self.assertEqual(4 * BLOCK_SIZE + CLOSING_RECORD_SIZE, os.path.getsize(path))
            with Archive(path, "r") as tar:
                self.assertEqual(["a.txt", "b.txt"], [h.name for h in tar.list()])

        self.run_with_tmpdir(scenario)

        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            tar.add_bytes(Header(name="a.txt"), b"alpha")
            self.assertEqual("a.txt", tar.find("a.txt").name)
            tar.rewind()
            tar.add_bytes(Header(name="b.txt"), b"bravo")
            tar.write_header(Header(name="c.txt", size=4))
            tar.write_data(b"ch")
            with self.assertRaises(InvalidArgumentError):
                tar.rewind()
            tar.write_data(b"ar")
        self.assertEqual(6 * BLOCK_SIZE + CLOSING_RECORD_SIZE, len(buf.getvalue()))
        with Archive(buf, "r", backend=MemoryStream) as tar:
            self.assertEqual(["a.txt", "b.txt", "c.txt"], [h.name for h in tar.list()])
            tar.find("c.txt")
            self.assertEqual(b"char", tar.read_data(10))

    def test_archive_without_end_marker(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            _write_sample(tar)
        unfinished = buf.getvalue()[:-CLOSING_RECORD_SIZE]
        with Archive(io.BytesIO(unfinished), "r", backend=MemoryStream) as tar:
            with self.assertRaises(NotFoundError):
                tar.find("missing")
            self.assertEqual(["a.txt", "dir/", "dir/b.txt"], [h.name for h in tar.list()])
            tar.find("dir/b.txt")
            self.assertEqual(b"bravo", tar.read_data(5))

        # a torn header block is still a read error
        with Archive(io.BytesIO(unfinished + b"\x01" * 100), "r", backend=MemoryStream) as tar:
            with self.assertRaises(ReadError):
                tar.find("missing")
            with self.assertRaises(ReadError):
                tar.list()

    def test_append_creates_missing_and_overwrites_garbage(self):
        def scenario(tmp_path: Path):
            fresh = str(tmp_path / "fresh.tar")
            with Archive(fresh, "a") as tar:
                tar.add_bytes(Header(name="new.txt"), b"new")
            with Archive(fresh, "r") as tar:
                self.assertEqual(["new.txt"], [h.name for h in tar.list()])

            for name, junk in (("short.tar", b"junk"), ("garbage.tar", b"\xab" * 3000), ("zeros.tar", bytes(4096))):
                target = tmp_path / name
                target.write_bytes(junk)
                with Archive(str(target), "a") as tar:
                    tar.add_bytes(Header(name="fresh.txt"), b"payload")
                with Archive(str(target), "r") as tar:
                    header = tar.read_header()
                    self.assertEqual("fresh.txt", header.name)
                    self.assertEqual(b"payload", tar.read_data(7))

        self.run_with_tmpdir(scenario)

    def test_append_without_marker_appends_at_eof(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            tar.add_bytes(Header(name="one.txt"), b"x" * 3000)
        unfinished = buf.getvalue()[:-CLOSING_RECORD_SIZE]
        buf = io.BytesIO(unfinished)
        with Archive(buf, "a", backend=MemoryStream) as tar:
            tar.add_bytes(Header(name="two.txt"), b"y")
        with Archive(buf, "r", backend=MemoryStream) as tar:
            self.assertEqual(["one.txt", "two.txt"], [h.name for h in tar.list()])

    def test_close_without_entries_writes_nothing(self):
        def scenario(tmp_path: Path):
            path = str(tmp_path / "empty.tar")
            with Archive(path, "w"):
                pass
            self.assertEqual(0, os.path.getsize(path))
            with Archive(path, "w") as tar:
                tar.add_bytes(Header(name="x"), b"")
            before = Path(path).read_bytes()
            with Archive(path, "a"):
                pass
            self.assertEqual(before, Path(path).read_bytes())

        self.run_with_tmpdir(scenario)

    def test_read_mode_rejects_non_archives(self):
        def scenario(tmp_path: Path):
            bad = tmp_path / "bad.tar"
            bad.write_bytes(b"\x01" * 1024)
            with self.assertRaises(BadChecksumError):
                Archive(str(bad), "r").open()
            empty = tmp_path / "empty.tar"
            empty.write_bytes(b"")
            with self.assertRaises(ReadError):
                Archive(str(empty), "r").open()
            with self.assertRaises(OpenError):
                Archive(str(tmp_path / "missing.tar"), "r").open()
            with self.assertRaises(OpenError):
                Archive(str(bad), "rw")

        self.run_with_tmpdir(scenario)

    def test_mode_and_state_guards(self):
        buf = io.BytesIO()
        tar = Archive(buf, "w", backend=MemoryStream)
        with self.assertRaises(InvalidArgumentError):
            tar.read_header()
        tar.open()
        tar.add_bytes(Header(name="x"), b"data")
        tar.close()
        tar.close()  # second close is a no-op
        self.assertEqual(_ZERO_MARKER, buf.getvalue()[-CLOSING_RECORD_SIZE:])
        self.assertEqual(BLOCK_SIZE * 2 + CLOSING_RECORD_SIZE, len(buf.getvalue()))
        with open_archive(buf, "r", backend=MemoryStream) as reader:
            with self.assertRaises(InvalidArgumentError):
                reader.write_header(Header(name="y"))
            with self.assertRaises(InvalidArgumentError):
                reader.read_data(-1)

    def test_partial_read_then_next(self):
        buf = io.BytesIO()
        with Archive(buf, "w", backend=MemoryStream) as tar:
            _write_sample(tar)
        with Archive(buf, "r", backend=MemoryStream) as tar:
            self.assertEqual(b"alpha", tar.read_data(5))
            self.assertGreater(tar.bytes_left, 0)
            tar.next()
            self.assertEqual("dir/", tar.read_header().name)
            seen = []
            tar.rewind()
            for header in tar:
                seen.append(header.name)
                if header.is_file():
                    tar.read_data(3)
            self.assertEqual(["a.txt", "dir/", "dir/b.txt"], seen)

    def test_backends_produce_identical_bytes(self):
        def scenario(tmp_path: Path):
            outputs = []
            for backend in (FileStream, FdStream):
                path = str(tmp_path / f"{backend.__name__}.tar")
                with Archive(path, "w", backend=backend) as tar:
                    _write_sample(tar)
                outputs.append(Path(path).read_bytes())
            buf = io.BytesIO()
            with Archive(buf, "w", backend=MemoryStream) as tar:
                _write_sample(tar)
            outputs.append(buf.getvalue())
            self.assertEqual(outputs[0], outputs[1])
            self.assertEqual(outputs[0], outputs[2])
            with Archive(FdStream.open(str(tmp_path / "FileStream.tar"), "r")) as tar:
                tar.find("dir/b.txt")
                self.assertEqual(b"bravo", tar.read_data(5))

        self.run_with_tmpdir(scenario)

    def test_stdlib_tarfile_interop(self):
        def scenario(tmp_path: Path):
            ours = str(tmp_path / "ours.tar")
            with Archive(ours, "w") as tar:
                _write_sample(tar)
            with tarfile.open(ours, "r:") as tf:
                self.assertEqual(["a.txt", "dir", "dir/b.txt"], tf.getnames())
                self.assertEqual(b"bravo", tf.extractfile("dir/b.txt").read())

            theirs = str(tmp_path / "theirs.tar")
            payload = b"written by tarfile"
            with tarfile.open(theirs, "w", format=tarfile.USTAR_FORMAT) as tf:
                for name in ("from/tarfile.txt", "from/second.txt"):
                    info = tarfile.TarInfo(name)
                    info.size = len(payload)
                    tf.addfile(info, io.BytesIO(payload))
            with Archive(theirs, "r") as tar:
                self.assertEqual(payload, tar.read_data(100))
                self.assertEqual(["from/tarfile.txt", "from/second.txt"], [h.name for h in tar.list()])
                tar.find("from/second.txt")
                self.assertEqual(payload, tar.read_data(100))

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
