"""
Upload intake — validate an incoming file set and stage it on disk.

Validation happens in two passes so rejected uploads leave nothing
behind:

    1. names, extensions, count, declared sizes  → no filesystem access
    2. stream each file into ``<staging_root>/<upload_id>/``, counting
       bytes; a file that turns out too large removes the directory

Errors are raised synchronously to the caller before any project or
deployment record exists.
"""

from __future__ import annotations

import logging
import mimetypes
import shutil
from pathlib import Path
from typing import BinaryIO, Iterable, Protocol

from werkzeug.utils import secure_filename

from sitedeploy.core.config.settings import UploadLimits
from sitedeploy.core.models import FileDescriptor, FileManifest, new_id

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class IncomingFile(Protocol):
    """What intake needs from an uploaded file (werkzeug's FileStorage fits)."""

    filename: str | None
    stream: BinaryIO
    mimetype: str
    content_length: int


# ── Errors ──────────────────────────────────────────────────────────


class IntakeError(Exception):
    """Base for upload rejections.  Carries a stable code and HTTP status."""

    code = "intake_error"
    http_status = 400


class EmptyUpload(IntakeError):
    code = "empty_upload"

    def __init__(self, message: str = "No files uploaded") -> None:
        super().__init__(message)


class InvalidFileType(IntakeError):
    code = "invalid_file_type"

    def __init__(self, filename: str, allowed: Iterable[str]) -> None:
        self.filename = filename
        allowed_list = ", ".join(f".{ext}" for ext in allowed)
        super().__init__(
            f"Invalid file type: {filename!r}. Allowed extensions: {allowed_list}"
        )


class PayloadTooLarge(IntakeError):
    code = "payload_too_large"
    http_status = 413


# ── Intake ──────────────────────────────────────────────────────────


def _content_type(name: str, declared: str | None) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def _validate(files: list[IncomingFile], limits: UploadLimits) -> list[tuple[str, IncomingFile]]:
    """First pass: return (safe_name, file) pairs or raise."""
    present = [f for f in files if f.filename]
    if not present:
        raise EmptyUpload()

    if len(present) > limits.max_files:
        raise PayloadTooLarge(
            f"Too many files: {len(present)} (limit {limits.max_files})"
        )

    accepted: list[tuple[str, IncomingFile]] = []
    for f in present:
        original = f.filename or ""
        safe_name = secure_filename(original)
        if not safe_name or not limits.allows(safe_name):
            raise InvalidFileType(original, limits.allowed_extensions)

        declared = getattr(f, "content_length", 0) or 0
        if declared > limits.max_file_size:
            raise PayloadTooLarge(
                f"File {original!r} exceeds {limits.max_file_size} bytes"
            )
        accepted.append((safe_name, f))
    return accepted


def _copy_bounded(src: BinaryIO, dest: Path, limit: int, name: str) -> int:
    written = 0
    with dest.open("wb") as out:
        while True:
            chunk = src.read(_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > limit:
                raise PayloadTooLarge(f"File {name!r} exceeds {limit} bytes")
            out.write(chunk)
    return written


def accept_upload(
    files: Iterable[IncomingFile],
    staging_root: Path,
    limits: UploadLimits | None = None,
) -> FileManifest:
    """Validate ``files`` and store them in a fresh staging directory.

    Args:
        files: Uploaded files, in upload order.
        staging_root: Parent of all staging directories.
        limits: Count/size/extension bounds (defaults apply if None).

    Returns:
        FileManifest describing the staged files in upload order.  When
        two files sanitize to the same name, the later one replaces the
        earlier (keeping the earlier position).

    Raises:
        EmptyUpload: No files (or only empty file fields) were supplied.
        InvalidFileType: A file's extension is not allowed.
        PayloadTooLarge: Too many files, or a file over the size cap.
    """
    limits = limits or UploadLimits()
    accepted = _validate(list(files), limits)

    upload_id = new_id()
    staging_dir = Path(staging_root) / upload_id
    staging_dir.mkdir(parents=True, exist_ok=False)

    descriptors: dict[str, FileDescriptor] = {}
    try:
        for safe_name, f in accepted:
            size = _copy_bounded(
                f.stream, staging_dir / safe_name, limits.max_file_size, f.filename or safe_name,
            )
            descriptors[safe_name] = FileDescriptor(
                name=safe_name,
                size=size,
                content_type=_content_type(safe_name, f.mimetype),
            )
    except BaseException:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise

    manifest = FileManifest(
        upload_id=upload_id,
        staging_dir=staging_dir,
        files=list(descriptors.values()),
    )
    logger.info(
        "Staged upload %s: %d file(s), %d bytes",
        upload_id, len(manifest.files), manifest.total_size,
    )
    return manifest
