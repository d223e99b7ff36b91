"""files/download.py -- Send a file as an attachment without exposing its path."""

from __future__ import annotations

from pathlib import Path

from starlette.responses import FileResponse


def secure_download(path: str | Path) -> FileResponse | None:
    """Return an attachment response for path, or None when it is not a regular file."""
    path = Path(path)
    if not path.is_file():
        return None
    return FileResponse(
        path,
        media_type="application/octet-stream",
        filename=path.name,
        headers={"Cache-Control": "must-revalidate", "Expires": "0", "Pragma": "public"},
    )
