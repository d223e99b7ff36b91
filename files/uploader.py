"""
files/uploader.py -- Store uploaded files in a directory, all or nothing.

Each file is checked for a usable name, an allowed extension and the size
limit before it is written. The first failure stops the batch and removes
the files already written by it (rollback), so a request never leaves half
an upload behind.

Per-file problems are kept as messages keyed by filename (get_errors());
a directory that cannot be created raises UploadError.

Usage:
    uploader = Uploader("uploads", max_size=1024 * 1024)
    if uploader.upload([(f.filename, f.file) for f in files]):
        saved = uploader.get_file_list()
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from core.config import Settings, get_settings
from core.debuglog import DebugLog
from core.errors import UploadError

DEFAULT_EXTENSIONS: dict[str, str] = {
    "doc": "Microsoft Word 2003 Document",
    "docx": "Microsoft Word 2007 Document",
    "xls": "Microsoft Excel 2003 Workbook",
    "xlsx": "Microsoft Excel 2007 Workbook",
    "txt": "Text File",
    "rtf": "Rich Text Format",
    "csv": "Comma Separated Values",
    "gif": "GIF Picture",
    "jpg": "JPG Picture",
    "png": "PNG Picture",
    "zip": "ZIP Archive",
    "tar": "TAR Archive",
    "gz": "GZIP Archive",
    "mp3": "MP3 Audio File",
    "wav": "WAV Audio File",
    "mp4": "Music/Video File (.mp4)",
    "pdf": "PDF File",
}


def safe_filename(filename: str | None) -> str:
    """Return the bare file name, or "" when nothing usable is left."""
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    return "" if name in (".", "..") else name


class Uploader:
    def __init__(
        self,
        uploads_dir: str | Path,
        extensions: Iterable[str] | None = None,
        max_size: int = 0,
        autocreate_dir: bool = True,
        simulate: bool = False,
        settings: Settings | None = None,
    ) -> None:
        self.uploads_dir = Path(uploads_dir)
        self.extensions = {e.lower() for e in (extensions or DEFAULT_EXTENSIONS)}
        self.max_size = max_size
        self.autocreate_dir = autocreate_dir
        self.simulate = simulate
        self.log = DebugLog("Uploader", settings or get_settings())
        self.file_list: list[dict] = []
        self.errors: dict[str, list[str]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> Uploader:
        return cls(
            settings.uploads_dir,
            extensions=settings.upload_extensions or None,
            max_size=settings.upload_max_bytes,
            settings=settings,
        )

    def get_errors(self) -> dict[str, list[str]]:
        return self.errors

    def get_file_list(self) -> list[dict]:
        return self.file_list

    def _fail(self, filename: str, message: str) -> bool:
        self.errors.setdefault(filename, []).append(message)
        self.log.message("log", f"{filename}: {message}", "Uploader.save")
        return False

    def is_extension_allowed(self, filename: str) -> bool:
        name = safe_filename(filename)
        if not name:
            return False
        extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        if extension not in self.extensions:
            return self._fail(name, f"The file extension ({extension}) is not allowed.")
        return True

    def save(self, filename: str | None, source: BinaryIO) -> bool:
        """Write one file. An empty filename means "no file" and succeeds."""
        name = safe_filename(filename)
        if not name:
            if (filename or "").strip():
                return self._fail(filename or "", "The file name is not valid.")
            return True
        if not self.is_extension_allowed(name):
            return False

        if self.max_size:
            data = source.read(self.max_size + 1)
            if len(data) > self.max_size:
                return self._fail(name, f"The file is larger than {self.max_size} bytes.")
        target = self.uploads_dir / name
        if not self.simulate:
            try:
                with open(target, "wb") as out:
                    if self.max_size:
                        out.write(data)
                    else:
                        shutil.copyfileobj(source, out)
            except OSError as exc:
                self.log.message("log", f"Failed to upload {name}: {exc}", "Uploader.save")
                return self._fail(name, "Failed to upload file")

        self.file_list.append({"filename": name, "filepath": str(target)})
        return True

    def upload(self, files: Iterable[tuple[str | None, BinaryIO]]) -> bool:
        """Save (filename, stream) pairs; roll everything back on the first failure."""
        if not self.uploads_dir.is_dir():
            if not self.autocreate_dir:
                raise UploadError(f"The uploads directory {self.uploads_dir} does not exist.")
            try:
                self.uploads_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise UploadError("The uploads directory must be writable.") from exc

        for filename, source in files:
            if not self.save(filename, source):
                self.rollback()
                return False
        return True

    def rollback(self) -> None:
        """Remove every file written by this uploader."""
        if self.simulate:
            self.file_list.clear()
            return
        while self.file_list:
            info = self.file_list.pop()
            try:
                Path(info["filepath"]).unlink(missing_ok=True)
            except OSError as exc:
                self.log.message("log", f"Could not remove {info['filepath']}: {exc}", "Uploader.rollback")

    def close(self, context: dict | None = None) -> None:
        self.log.send_report({"files": self.file_list, "errors": self.errors, **(context or {})})
