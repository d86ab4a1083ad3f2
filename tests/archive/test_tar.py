"""Tests for tar and tgz archives."""

import gzip
import io
import os
import tarfile

import pytest

from artifact_cache.archive import TarArchive, TgzArchive, from_filename
from artifact_cache.errors import ArchiveDecodeError, ArchiveError, ArchiveFormatError


def _member_names(data: bytes):
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
        return tar.getnames()


def _assert_restored(dst):
    assert (dst / "deps" / "a.txt").read_text() == "hello from a\n"
    assert (dst / "deps" / "nested" / "b.bin").read_bytes() == bytes(range(256)) * 40
    assert os.path.islink(dst / "deps" / "link")
    assert os.readlink(dst / "deps" / "link") == "a.txt"


class TestFromFilename:
    """Tests for format selection by file name."""

    @pytest.mark.parametrize("name", ["archive.tar", "bucket/dir/deps.tar"])
    def test_tar(self, name):
        assert isinstance(from_filename(name), TarArchive)

    @pytest.mark.parametrize("name", ["archive.tgz", "deps.tar.gz"])
    def test_tgz(self, name):
        assert isinstance(from_filename(name), TgzArchive)

    @pytest.mark.parametrize("name", ["archive.zip", "archive", "archive.tar.bz2"])
    def test_unknown_format(self, name):
        with pytest.raises(ArchiveFormatError, match=f"unknown file format for archive {name}"):
            from_filename(name)

    def test_root_is_passed_through(self, tmp_path):
        assert from_filename("a.tgz", root=tmp_path).root == tmp_path


class TestTarPack:
    """Tests for TarArchive.pack."""

    def test_entries_in_order(self, mount_tree):
        """Each source is added in order, directories before their children."""
        out = io.BytesIO()
        TarArchive(root=mount_tree).pack(["lockfile", "deps"], out)

        names = _member_names(out.getvalue())
        assert names[0] == "lockfile"
        assert names[1] == "deps"
        assert set(names[2:]) == {"deps/a.txt", "deps/link", "deps/nested", "deps/nested/b.bin"}
        assert names.index("deps/nested") < names.index("deps/nested/b.bin")

    def test_symlink_stored_as_link(self, tar_bytes):
        with tarfile.open(fileobj=io.BytesIO(tar_bytes), mode="r:") as tar:
            link = tar.getmember("deps/link")
        assert link.issym()
        assert link.linkname == "a.txt"

    def test_names_are_normalized(self, mount_tree):
        out = io.BytesIO()
        TarArchive(root=mount_tree).pack(["./deps/nested/"], out)

        assert _member_names(out.getvalue()) == ["deps/nested", "deps/nested/b.bin"]

    def test_missing_source(self, mount_tree):
        """A missing mount fails with a stat error naming it."""
        with pytest.raises(ArchiveError, match="stat missing: no such file or directory"):
            TarArchive(root=mount_tree).pack(["missing"], io.BytesIO())

    def test_relative_to_cwd(self, mount_tree, monkeypatch):
        monkeypatch.chdir(mount_tree)
        out = io.BytesIO()
        TarArchive().pack(["lockfile"], out)

        assert _member_names(out.getvalue()) == ["lockfile"]


class TestTarUnpack:
    """Tests for TarArchive.unpack."""

    def test_round_trip(self, tar_bytes, tmp_path):
        dst = tmp_path / "restore"
        TarArchive().unpack(dst, io.BytesIO(tar_bytes))

        _assert_restored(dst)

    def test_preserves_mode_and_mtime(self, mount_tree, tmp_path):
        script = mount_tree / "deps" / "run.sh"
        script.write_text("#!/bin/sh\n")
        os.chmod(script, 0o750)
        os.utime(script, (1600000000, 1600000000))

        out = io.BytesIO()
        TarArchive(root=mount_tree).pack(["deps"], out)
        dst = tmp_path / "restore"
        TarArchive().unpack(dst, io.BytesIO(out.getvalue()))

        restored = dst / "deps" / "run.sh"
        assert restored.stat().st_mode & 0o777 == 0o750
        assert int(restored.stat().st_mtime) == 1600000000

    def test_overwrites_existing_files(self, tar_bytes, tmp_path):
        dst = tmp_path / "restore"
        (dst / "deps").mkdir(parents=True)
        (dst / "deps" / "a.txt").write_text("stale")
        (dst / "deps" / "extra").write_text("kept")

        TarArchive().unpack(dst, io.BytesIO(tar_bytes))

        assert (dst / "deps" / "a.txt").read_text() == "hello from a\n"
        assert (dst / "deps" / "extra").read_text() == "kept"

    def test_hard_link_becomes_copy(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "one").write_text("shared")
        os.link(src / "one", src / "two")

        out = io.BytesIO()
        TarArchive(root=src).pack(["one", "two"], out)
        dst = tmp_path / "dst"
        TarArchive().unpack(dst, io.BytesIO(out.getvalue()))

        assert (dst / "two").read_text() == "shared"

    def test_truncated_stream(self, tar_bytes, tmp_path):
        """An archive cut short reports unexpected EOF."""
        truncated = tar_bytes[: len(tar_bytes) // 2]

        with pytest.raises(ArchiveDecodeError, match="unexpected EOF"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(truncated))

    def test_truncated_between_members(self, tar_bytes, tmp_path):
        """A stream that stops after a complete member is still truncated."""
        with tarfile.open(fileobj=io.BytesIO(tar_bytes), mode="r:") as tar:
            boundary = tar.getmember("deps/a.txt").offset
        truncated = tar_bytes[:boundary]

        with pytest.raises(ArchiveDecodeError, match="unexpected EOF"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(truncated))

    def test_empty_stream(self, tmp_path):
        with pytest.raises(ArchiveDecodeError, match="unexpected EOF"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(b""))

    def test_garbage(self, tmp_path):
        with pytest.raises(ArchiveDecodeError):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(b"not a tar archive" * 64))

    def test_rejects_escaping_paths(self, tmp_path):
        out = io.BytesIO()
        with tarfile.open(fileobj=out, mode="w") as tar:
            info = tarfile.TarInfo("../evil")
            info.size = 4
            tar.addfile(info, io.BytesIO(b"evil"))

        with pytest.raises(ArchiveError, match="illegal path"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(out.getvalue()))

        assert not (tmp_path / "evil").exists()

    def test_rejects_unsupported_types(self, tmp_path):
        out = io.BytesIO()
        with tarfile.open(fileobj=out, mode="w") as tar:
            info = tarfile.TarInfo("fifo")
            info.type = tarfile.FIFOTYPE
            tar.addfile(info)

        with pytest.raises(ArchiveError, match="unsupported entry type"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(out.getvalue()))

    def test_corrupted_header_mid_stream(self, mount_tree, tmp_path):
        """A damaged header after the first member fails instead of ending early."""
        out = io.BytesIO()
        TarArchive(root=mount_tree).pack(["lockfile", "deps"], out)
        data = bytearray(out.getvalue())
        with tarfile.open(fileobj=io.BytesIO(bytes(data)), mode="r:") as tar:
            offset = tar.getmember("deps").offset
        # header checksum field
        data[offset + 148 : offset + 156] = b"XXXXXXXX"

        with pytest.raises(ArchiveDecodeError):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(bytes(data)))

    def test_rejects_writes_through_symlink(self, tmp_path):
        """An entry below a symlink that leads outside the destination is refused."""
        outside = tmp_path / "outside"
        outside.mkdir()
        out = io.BytesIO()
        with tarfile.open(fileobj=out, mode="w") as tar:
            link = tarfile.TarInfo("d")
            link.type = tarfile.SYMTYPE
            link.linkname = str(outside)
            tar.addfile(link)
            info = tarfile.TarInfo("d/x")
            info.size = 4
            tar.addfile(info, io.BytesIO(b"evil"))

        with pytest.raises(ArchiveError, match="illegal path"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(out.getvalue()))

        assert not (outside / "x").exists()

    def test_rejects_hard_link_to_outside_file(self, tmp_path):
        secret = tmp_path / "secret"
        secret.write_text("private")
        out = io.BytesIO()
        with tarfile.open(fileobj=out, mode="w") as tar:
            link = tarfile.TarInfo("s")
            link.type = tarfile.SYMTYPE
            link.linkname = str(secret)
            tar.addfile(link)
            hard = tarfile.TarInfo("h")
            hard.type = tarfile.LNKTYPE
            hard.linkname = "s"
            tar.addfile(hard)

        with pytest.raises(ArchiveError, match="illegal link"):
            TarArchive().unpack(tmp_path / "restore", io.BytesIO(out.getvalue()))

        assert not (tmp_path / "restore" / "h").exists()

    def test_directory_replaces_existing_symlink(self, tar_bytes, tmp_path):
        """A directory entry over a stale symlink creates a real directory."""
        outside = tmp_path / "outside"
        outside.mkdir()
        dst = tmp_path / "restore"
        dst.mkdir()
        os.symlink(outside, dst / "deps")

        TarArchive().unpack(dst, io.BytesIO(tar_bytes))

        assert not os.path.islink(dst / "deps")
        _assert_restored(dst)
        assert list(outside.iterdir()) == []


class TestTgz:
    """Tests for TgzArchive."""

    def test_output_is_gzip(self, mount_tree):
        out = io.BytesIO()
        TgzArchive(root=mount_tree).pack(["deps"], out)

        assert out.getvalue()[:2] == b"\x1f\x8b"
        inner = gzip.decompress(out.getvalue())
        assert "deps/a.txt" in _member_names(inner)

    def test_round_trip(self, mount_tree, tmp_path):
        out = io.BytesIO()
        TgzArchive(root=mount_tree).pack(["deps"], out)
        dst = tmp_path / "restore"
        TgzArchive().unpack(dst, io.BytesIO(out.getvalue()))

        _assert_restored(dst)

    def test_truncated_stream(self, mount_tree, tmp_path):
        out = io.BytesIO()
        TgzArchive(root=mount_tree).pack(["deps"], out)
        truncated = out.getvalue()[: len(out.getvalue()) // 2]

        with pytest.raises(ArchiveDecodeError, match="unexpected EOF"):
            TgzArchive().unpack(tmp_path / "restore", io.BytesIO(truncated))

    def test_not_gzip(self, tar_bytes, tmp_path):
        with pytest.raises(ArchiveDecodeError):
            TgzArchive().unpack(tmp_path / "restore", io.BytesIO(tar_bytes))

    def test_corrupted_body(self, mount_tree, tmp_path):
        """Damage inside the compressed data is reported, not extracted silently."""
        out = io.BytesIO()
        TgzArchive(root=mount_tree).pack(["deps"], out)
        data = bytearray(out.getvalue())
        data[len(data) // 2] ^= 0xFF

        with pytest.raises(ArchiveDecodeError):
            TgzArchive().unpack(tmp_path / "restore", io.BytesIO(bytes(data)))

    def test_bad_trailer_checksum(self, mount_tree, tmp_path):
        """A CRC mismatch in the gzip trailer fails even after the tar end marker."""
        out = io.BytesIO()
        TgzArchive(root=mount_tree).pack(["deps"], out)
        data = bytearray(out.getvalue())
        # CRC32 is the first four bytes of the eight byte trailer
        data[-8] ^= 0xFF

        with pytest.raises(ArchiveDecodeError):
            TgzArchive().unpack(tmp_path / "restore", io.BytesIO(bytes(data)))

    def test_missing_source(self, mount_tree):
        with pytest.raises(ArchiveError, match="stat missing: no such file or directory"):
            TgzArchive(root=mount_tree).pack(["missing"], io.BytesIO())
