"""Unit tests for FilesystemBackend."""

from pathlib import Path

import pytest

from agentvfs.backends.filesystem import FilesystemBackend


def test_virtual_mode_write_read_roundtrip(tmp_path: Path) -> None:
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    result = backend.write("/notes/todo.md", "one\ntwo")

    assert result.error is None
    assert result.files_update is None
    assert result.metadata == {"size": len(b"one\ntwo")}
    assert (tmp_path / "notes" / "todo.md").read_text() == "one\ntwo"
    assert backend.read("/notes/todo.md") == "one\ntwo"
    assert backend.read("/notes/todo.md", offset=1, limit=1) == "two"


def test_read_missing_file(tmp_path: Path) -> None:
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)
    assert backend.read("/missing.txt") == "Error: File '/missing.txt' not found"


def test_traversal_outside_root_is_denied(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (tmp_path / "secret.txt").write_text("secret")
    backend = FilesystemBackend(root_dir=root, virtual_mode=True)

    assert backend.read("/../secret.txt").startswith("Error: Permission denied")
    assert backend.write("/../escape.txt", "x").error is not None
    assert not (tmp_path / "escape.txt").exists()
    assert backend.download_files(["/../secret.txt"])[0].error == "permission_denied"
    with pytest.raises(PermissionError):
        backend.ls_info("/../")


def test_symlink_escape_is_denied(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "outside.txt"
    outside.write_text("outside")
    (root / "link.txt").symlink_to(outside)
    backend = FilesystemBackend(root_dir=root, virtual_mode=True)

    assert backend.read("/link.txt").startswith("Error: Permission denied")
    assert backend.ls_info("/") == []


def test_ls_info_lists_directories_with_trailing_slash(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "x.txt").write_text("x")
    (tmp_path / "a.txt").write_text("abc")
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    infos = backend.ls_info("/")

    assert [(i["path"], i["is_dir"]) for i in infos] == [("/a.txt", False), ("/sub/", True)]
    assert infos[0]["size"] == 3
    assert backend.ls_info("/does-not-exist") == []


def test_edit_on_disk(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("x = 1\n")
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    result = backend.edit("/a.py", "x = 1", "x = 2")

    assert result.error is None
    assert result.occurrences == 1
    assert result.files_update is None
    assert (tmp_path / "a.py").read_text() == "x = 2\n"


def test_glob_and_grep(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("import os\nprint('hi')\n")
    (tmp_path / "README.md").write_text("hi there\n")
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    assert [i["path"] for i in backend.glob_info("**/*.py")] == ["/src/main.py"]
    assert [i["path"] for i in backend.glob_info("*.md")] == ["/README.md"]

    matches = backend.grep_raw("hi")
    assert isinstance(matches, list)
    assert {(m["path"], m["line"]) for m in matches} == {("/README.md", 1), ("/src/main.py", 2)}
    assert backend.grep_raw("hi", glob="*.py") == [{"path": "/src/main.py", "line": 2, "text": "print('hi')"}]
    assert isinstance(backend.grep_raw("[bad"), str)


def test_grep_skips_large_files(tmp_path: Path) -> None:
    (tmp_path / "big.txt").write_text("needle\n" * 200_000)
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True, max_file_size_mb=1)
    assert backend.grep_raw("needle") == []


def test_upload_and_download(tmp_path: Path) -> None:
    (tmp_path / "dir").mkdir()
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    uploads = backend.upload_files([("/data/blob.bin", b"\x00\x01"), ("/dir", b"x")])
    assert uploads[0].error is None
    assert uploads[1].error == "is_directory"

    downloads = backend.download_files(["/data/blob.bin", "/missing", "/dir"])
    assert downloads[0].content == b"\x00\x01"
    assert downloads[1].error == "file_not_found"
    assert downloads[2].error == "is_directory"


def test_non_virtual_mode_accepts_absolute_paths_inside_root(tmp_path: Path) -> None:
    backend = FilesystemBackend(root_dir=tmp_path)
    target = tmp_path / "abs.txt"

    assert backend.write(str(target), "content").error is None
    assert backend.read(str(target)) == "content"
    assert backend.read("/etc/hostname").startswith("Error: Permission denied")
