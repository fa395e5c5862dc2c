import os

import pytest

from udpfm import files
from udpfm.errors import CommandError, ErrorKind
from udpfm.sandbox import ensure_root


@pytest.fixture
def root(tmp_path):
    return ensure_root(tmp_path / "managed")


@pytest.mark.parametrize(
    "size, expected",
    [
        (0, "0.0 B"),
        (1023, "1023.0 B"),
        (1536, "1.5 KB"),
        (1024 ** 2, "1.0 MB"),
        (3 * 1024 ** 3, "3.0 GB"),
        (5 * 1024 ** 4, "5120.0 GB"),
    ],
)
def test_format_file_size(size, expected):
    assert files.format_file_size(size) == expected


@pytest.mark.anyio
async def test_list_files_sorted_with_types(root):
    (root / "b.py").write_text("print(1)")
    (root / "README").write_text("hello")
    (root / "a.txt").write_text("")

    result = await files.list_files(root)
    assert result["message"] == "File listing:"
    names = [entry["name"] for entry in result["files"]]
    assert names == sorted(["b.py", "README", "a.txt"])

    by_name = {entry["name"]: entry for entry in result["files"]}
    assert by_name["b.py"]["type"] == ".py"
    assert by_name["README"]["type"] == "No extension"
    assert by_name["README"]["size"] == "5.0 B"
    assert by_name["a.txt"]["modified"]


@pytest.mark.anyio
async def test_list_marks_unstatable_entries(root):
    if not hasattr(os, "symlink"):
        pytest.skip("no symlink support")
    try:
        os.symlink(root / "missing-target", root / "dangling")
    except OSError:
        pytest.skip("symlinks not permitted here")

    result = await files.list_files(root)
    assert result["files"] == [{"name": "dangling", "error": "Cannot read file info"}]


@pytest.mark.anyio
async def test_write_then_read_round_trip(root):
    path = root / "notes.txt"
    created = await files.write_file(path, "notes.txt", "line one\nline two ✓")
    assert created["message"] == "File notes.txt created successfully"
    assert "Location:" in created["details"]

    updated = await files.write_file(path, "notes.txt", "second")
    assert updated["message"] == "File notes.txt updated successfully"

    result = await files.read_file(path, "notes.txt")
    assert result["content"] == "second"
    assert result["details"].startswith("File size: 6.0 B | Last modified: ")


@pytest.mark.anyio
async def test_write_without_content_creates_empty_file(root):
    await files.write_file(root / "empty.txt", "empty.txt", None)
    assert (root / "empty.txt").read_text() == ""


@pytest.mark.anyio
async def test_read_missing_file(root):
    with pytest.raises(CommandError) as info:
        await files.read_file(root / "nope.txt", "nope.txt")
    assert info.value.kind is ErrorKind.IO
    assert info.value.message == 'File "nope.txt" not found'


@pytest.mark.anyio
async def test_read_binary_file_is_an_io_error(root):
    (root / "blob.bin").write_bytes(b"\xff\xfe\xfa")
    with pytest.raises(CommandError, match='Cannot read "blob.bin"'):
        await files.read_file(root / "blob.bin", "blob.bin")


@pytest.mark.anyio
async def test_delete(root):
    path = root / "gone.txt"
    path.write_text("bye")
    result = await files.delete_file(path, "gone.txt")
    assert result["message"] == 'File "gone.txt" has been deleted successfully'
    assert not path.exists()

    with pytest.raises(CommandError, match='File "gone.txt" does not exist'):
        await files.delete_file(path, "gone.txt")


@pytest.mark.anyio
async def test_delete_directory_reports_failure_details(root):
    (root / "folder").mkdir()
    with pytest.raises(CommandError) as info:
        await files.delete_file(root / "folder", "folder")
    assert info.value.message == 'Failed to delete "folder"'
    assert info.value.details


@pytest.mark.anyio
async def test_line_endings_survive_write_and_read(root):
    content = "dos\r\nmac\runix\n"
    await files.write_file(root / "eol.txt", "eol.txt", content)
    assert (root / "eol.txt").read_bytes() == content.encode("utf-8")
    result = await files.read_file(root / "eol.txt", "eol.txt")
    assert result["content"] == content
