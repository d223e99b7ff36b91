"""Unit tests for files/uploader.py and files/download.py."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from core.config import Settings
from core.errors import UploadError
from files.download import secure_download
from files.uploader import DEFAULT_EXTENSIONS, Uploader, safe_filename


@pytest.fixture
def target(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


def _file(content: bytes = b"hello") -> io.BytesIO:
    return io.BytesIO(content)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\temp\\notes.txt", "notes.txt"),
        ("..", ""),
        ("  ", ""),
        (None, ""),
    ],
)
def test_safe_filename(raw, expected) -> None:
    assert safe_filename(raw) == expected


class TestUpload:
    def test_saves_files(self, target: Path) -> None:
        uploader = Uploader(target)
        assert uploader.upload([("a.txt", _file(b"one")), ("b.pdf", _file(b"two"))])
        assert (target / "a.txt").read_bytes() == b"one"
        assert [f["filename"] for f in uploader.get_file_list()] == ["a.txt", "b.pdf"]
        assert uploader.get_errors() == {}

    def test_creates_directory(self, target: Path) -> None:
        assert not target.exists()
        assert Uploader(target).upload([])
        assert target.is_dir()

    def test_missing_directory_without_autocreate(self, target: Path) -> None:
        with pytest.raises(UploadError):
            Uploader(target, autocreate_dir=False).upload([("a.txt", _file())])

    def test_extension_not_allowed_rolls_back(self, target: Path) -> None:
        uploader = Uploader(target)
        assert not uploader.upload([("a.txt", _file()), ("run.exe", _file())])
        assert uploader.get_errors() == {"run.exe": ["The file extension (exe) is not allowed."]}
        assert not (target / "a.txt").exists()
        assert uploader.get_file_list() == []

    def test_extension_is_case_insensitive(self, target: Path) -> None:
        assert Uploader(target).upload([("SCAN.PNG", _file())])

    def test_no_extension(self, target: Path) -> None:
        uploader = Uploader(target)
        assert not uploader.upload([("README", _file())])
        assert "README" in uploader.get_errors()

    def test_custom_extensions(self, target: Path) -> None:
        uploader = Uploader(target, extensions=["log"])
        assert uploader.upload([("app.log", _file())])
        assert not uploader.upload([("a.txt", _file())])

    def test_size_limit(self, target: Path) -> None:
        uploader = Uploader(target, max_size=4)
        assert uploader.upload([("ok.txt", _file(b"1234"))])
        assert not uploader.upload([("big.txt", _file(b"12345"))])
        assert uploader.get_errors() == {"big.txt": ["The file is larger than 4 bytes."]}
        assert not (target / "big.txt").exists()

    def test_path_is_stripped(self, target: Path) -> None:
        assert Uploader(target).upload([("../escape.txt", _file())])
        assert (target / "escape.txt").exists()
        assert not (target.parent / "escape.txt").exists()

    def test_empty_name_is_skipped(self, target: Path) -> None:
        uploader = Uploader(target)
        assert uploader.upload([("", _file())])
        assert uploader.get_file_list() == []

    def test_dot_name_is_rejected(self, target: Path) -> None:
        uploader = Uploader(target)
        assert not uploader.upload([("..", _file())])
        assert ".." in uploader.get_errors()

    def test_simulate_writes_nothing(self, target: Path) -> None:
        uploader = Uploader(target, simulate=True)
        assert uploader.upload([("a.txt", _file())])
        assert uploader.get_file_list()[0]["filename"] == "a.txt"
        assert not (target / "a.txt").exists()

    def test_from_settings(self, target: Path) -> None:
        settings = Settings(debug=True, uploads_dir=str(target), upload_max_bytes=10, upload_extensions=["csv"])
        uploader = Uploader.from_settings(settings)
        assert uploader.uploads_dir == target
        assert uploader.max_size == 10
        assert uploader.extensions == {"csv"}
        assert Uploader.from_settings(Settings(debug=True)).extensions == set(DEFAULT_EXTENSIONS)


class TestDownload:
    def test_attachment(self, tmp_path: Path) -> None:
        path = tmp_path / "report.pdf"
        path.write_bytes(b"%PDF")
        response = secure_download(path)
        assert response is not None
        assert response.media_type == "application/octet-stream"
        assert 'filename="report.pdf"' in response.headers["content-disposition"]
        assert response.headers["content-disposition"].startswith("attachment")

    def test_missing_file(self, tmp_path: Path) -> None:
        assert secure_download(tmp_path / "nope.txt") is None
        assert secure_download(tmp_path) is None
