"""Repository context for a feature-dev session: archive upload and refresh."""

from __future__ import annotations

import base64
import hashlib
import io
import logging
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from qdev.config import SessionConfig
from qdev.errors import FeatureDevServiceError
from qdev.ingest.project import LocalProject

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RepositoryArchive:
    payload: bytes
    checksum: str
    file_paths: list[str]


class FeatureDevSessionContext:
    """Project root plus the operations a session performs on it."""

    def __init__(
        self,
        project_root: str | Path,
        *,
        config: SessionConfig | None = None,
        on_refresh: Callable[[Path], None] | None = None,
    ) -> None:
        self.project = LocalProject(project_root)
        self.config = config or SessionConfig()
        self._on_refresh = on_refresh

    @property
    def project_root(self) -> Path:
        return self.project.root

    def get_project_zip(self) -> RepositoryArchive:
        """Zip the project (minus VCS/build dirs) for upload.

        Raises `FeatureDevServiceError` when the uncompressed sources exceed
        `max_upload_bytes`.
        """

        buffer = io.BytesIO()
        file_paths: list[str] = []
        total = 0
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for file in self.project.iter_files():
                relative = self.project.relative_path(file)
                data = file.path.read_bytes()
                total += len(data)
                if total > self.config.max_upload_bytes:
                    raise FeatureDevServiceError(
                        f"Project exceeds upload limit of {self.config.max_upload_bytes} bytes"
                    )
                archive.writestr(relative, data)
                file_paths.append(relative)

        payload = buffer.getvalue()
        checksum = base64.b64encode(hashlib.sha256(payload).digest()).decode("ascii")
        LOGGER.debug("Zipped %d files (%d bytes) for upload", len(file_paths), len(payload))
        return RepositoryArchive(payload=payload, checksum=checksum, file_paths=file_paths)

    def refresh(self) -> None:
        if self._on_refresh is not None:
            self._on_refresh(self.project_root)
