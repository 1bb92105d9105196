"""Tests for body file access."""

from pathlib import Path

import pytest

from bramble.errors import BodyFileNotFound, FileAccessError
from bramble.files import DirectoryFileSource


def test_reads_text_and_binary(tmp_path: Path) -> None:
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "body.txt").write_text("hello")
    files = DirectoryFileSource(tmp_path)

    assert files.read_text_file("nested/body.txt") == "hello"
    assert files.read_binary_file("nested/body.txt") == b"hello"


def test_missing_file(tmp_path: Path) -> None:
    """Missing files raise BodyFileNotFound, a FileAccessError."""
    files = DirectoryFileSource(tmp_path)
    with pytest.raises(BodyFileNotFound):
        files.read_text_file("absent.json")


@pytest.mark.parametrize("name", ["bad\x00name.json", "x" * 5000])
def test_unusable_names_refused(tmp_path: Path, name: str) -> None:
    """Names the filesystem cannot handle should raise FileAccessError."""
    files = DirectoryFileSource(tmp_path)
    with pytest.raises(FileAccessError):
        files.read_text_file(name)
    with pytest.raises(FileAccessError):
        files.read_binary_file(name)


@pytest.mark.parametrize("name", ["../outside.txt", "/etc/passwd"])
def test_names_outside_root_refused(tmp_path: Path, name: str) -> None:
    """Names that escape the file root should be refused."""
    root = tmp_path / "files"
    root.mkdir()
    (tmp_path / "outside.txt").write_text("secret")
    files = DirectoryFileSource(root)

    with pytest.raises(FileAccessError):
        files.read_text_file(name)
