"""
Packaging — copy a staged upload into the publish root.

Output for project ``<id>``::

    <publish_root>/<id>/
        <every uploaded file, same name>
        index.html            ← entry document

Entry document selection (in this order):
    1. an uploaded ``index.html`` is used as-is
    2. otherwise the first ``.html`` file in upload order is copied
       to ``index.html``
    3. otherwise a placeholder page naming the project is generated

The site is assembled in a temporary sibling directory and swapped in
with a rename, so a failed copy never leaves a half-published site.
Any I/O error propagates to the caller.
"""

from __future__ import annotations

import html
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from sitedeploy.core.models import FileManifest

logger = logging.getLogger(__name__)

ENTRY_DOCUMENT = "index.html"

ENTRY_UPLOADED = "uploaded"
ENTRY_COPIED = "copied"
ENTRY_GENERATED = "generated"

_PLACEHOLDER = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; text-align: center; }}
        h1 {{ color: #333; }}
    </style>
</head>
<body>
    <h1>Welcome to {title}</h1>
    <p>Your website has been successfully deployed!</p>
</body>
</html>
"""


@dataclass
class PackageResult:
    """What packaging produced."""

    project_id: str
    publish_dir: Path
    entry_source: str  # uploaded, copied, generated
    entry_from: str | None = None  # the uploaded file copied to index.html
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "publish_dir": str(self.publish_dir),
            "entry_source": self.entry_source,
            "entry_from": self.entry_from,
            "files": list(self.files),
        }


def placeholder_document(project_name: str | None) -> str:
    """Generated entry page for uploads without any HTML."""
    title = html.escape(project_name or "My Website")
    return _PLACEHOLDER.format(title=title)


def select_entry_source(names: list[str]) -> tuple[str, str | None]:
    """Decide how the entry document is obtained.

    Args:
        names: Uploaded file names in upload order.

    Returns:
        ``(entry_source, source_name)`` — source_name is the HTML file
        to copy when entry_source is ``copied``.
    """
    if ENTRY_DOCUMENT in names:
        return ENTRY_UPLOADED, ENTRY_DOCUMENT
    for name in names:
        if name.lower().endswith(".html"):
            return ENTRY_COPIED, name
    return ENTRY_GENERATED, None


def package_site(
    manifest: FileManifest,
    publish_root: Path,
    project_id: str,
    project_name: str | None = None,
) -> PackageResult:
    """Publish the staged files of ``manifest`` for ``project_id``.

    Raises:
        OSError: Any copy/write failure (missing staging dir, disk full).
    """
    publish_root = Path(publish_root)
    publish_root.mkdir(parents=True, exist_ok=True)
    target = publish_root / project_id

    names = manifest.names
    entry_source, entry_from = select_entry_source(names)

    work = Path(tempfile.mkdtemp(dir=publish_root, prefix=f".{project_id}.", suffix=".tmp"))
    try:
        for name in names:
            shutil.copy2(manifest.path_of(name), work / name)

        entry = work / ENTRY_DOCUMENT
        if entry_source == ENTRY_COPIED:
            shutil.copyfile(work / entry_from, entry)
        elif entry_source == ENTRY_GENERATED:
            entry.write_text(placeholder_document(project_name), encoding="utf-8")

        if target.exists():
            shutil.rmtree(target)
        work.rename(target)
    except BaseException:
        shutil.rmtree(work, ignore_errors=True)
        raise

    published = sorted(p.name for p in target.iterdir())
    logger.info(
        "Packaged %s: %d file(s), entry=%s%s",
        project_id, len(published), entry_source,
        f" (from {entry_from})" if entry_source == ENTRY_COPIED else "",
    )
    return PackageResult(
        project_id=project_id,
        publish_dir=target,
        entry_source=entry_source,
        entry_from=entry_from if entry_source == ENTRY_COPIED else None,
        files=published,
    )
