"""
api/routes/v1/files.py -- File upload and download endpoints (admin only).

Routes:
  POST /api/v1/files             -- multipart upload of one or more "files"
  GET  /api/v1/files/{filename}  -- download a stored file as an attachment

Uploads are all or nothing: one rejected file (extension, size, bad name)
rolls back the files already written by the request and answers 400 with
the per-file messages in detail.
"""

from __future__ import annotations

import json
import os

from fastapi import APIRouter, Depends, UploadFile
from fastapi.responses import FileResponse

from api.models import UploadedFile, UploadResponse
from api.routes.v1.auth import fail
from auth.authentication import Authentication
from auth.dependencies import require_admin
from core.config import get_settings
from files.download import secure_download
from files.uploader import Uploader, safe_filename

router = APIRouter()


@router.post("/files", response_model=UploadResponse, status_code=201)
def upload_files(files: list[UploadFile], auth: Authentication = Depends(require_admin)) -> UploadResponse:
    uploader = Uploader.from_settings(get_settings())
    try:
        if not uploader.upload([(f.filename, f.file) for f in files]):
            raise fail(400, "upload_failed", "The upload was rejected.", detail=json.dumps(uploader.get_errors()))
        saved = uploader.get_file_list()
        return UploadResponse(
            files=[UploadedFile(filename=s["filename"], size=os.path.getsize(s["filepath"])) for s in saved]
        )
    finally:
        uploader.close({"user": auth.users.get("username")})


@router.get("/files/{filename}", response_class=FileResponse)
def download_file(filename: str, auth: Authentication = Depends(require_admin)) -> FileResponse:
    name = safe_filename(filename)
    response = secure_download(os.path.join(get_settings().uploads_dir, name)) if name == filename else None
    if response is None:
        raise fail(404, "not_found", "File not found.")
    return response
