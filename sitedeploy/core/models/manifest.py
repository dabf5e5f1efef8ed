"""
FileManifest — the ephemeral hand-off from upload intake to packaging.

Not persisted.  Holds the staging directory and the validated file
descriptors in upload order.  Its lifetime ends once packaging has
consumed it (``discard()`` removes the staging directory).
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from sitedeploy.core.models.deployment import FileDescriptor

logger = logging.getLogger(__name__)


@dataclass
class FileManifest:
    """Validated upload, staged on disk."""

    upload_id: str
    staging_dir: Path
    files: list[FileDescriptor] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        """File names in upload order."""
        return [f.name for f in self.files]

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    def path_of(self, name: str) -> Path:
        return self.staging_dir / name

    def discard(self) -> None:
        """Remove the staging directory (missing directory is fine)."""
        if self.staging_dir.is_dir():
            shutil.rmtree(self.staging_dir, ignore_errors=True)
            logger.debug("Discarded staging dir %s", self.staging_dir)
