"""Content-addressed artifact directories for recorded sensitivity schemes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from pathlib import Path, PurePosixPath
import shutil
import tempfile
from typing import Optional, Union

from sweep_platform.core import (
    MANIFEST_NAME,
    ArtifactManifest,
    dump_manifest,
    load_manifest,
    normalize_component,
)
from sweep_platform.errors import ArtifactError
from sweep_platform.logging_utils import get_logger

Payload = Union[str, bytes, bytearray]

_LOGGER = get_logger("store")


@dataclass(frozen=True)
class ArtifactCacheResult:
    path: Path
    reused: bool
    manifest: ArtifactManifest


def _payload_name(name: str) -> PurePosixPath:
    rel = PurePosixPath(name)
    if not rel.parts or rel.is_absolute() or ".." in rel.parts or rel.parts == (".",):
        raise ValueError(f"data file name must be a relative path: {name!r}")
    if rel.as_posix() == MANIFEST_NAME:
        raise ValueError(f"data files may not overwrite {MANIFEST_NAME}.")
    return rel


class ArtifactStore:
    """Artifacts live in ``<root>/<kind>/<id>/`` next to their manifest.

    A directory is published by renaming a fully written temporary sibling,
    so readers never observe a partial artifact. Writing an artifact whose
    directory already exists reuses it after checking that the stored
    manifest describes the same inputs and config.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def artifact_dir(self, kind: str, artifact_id: str) -> Path:
        return (
            self.root
            / normalize_component(kind, "kind")
            / normalize_component(artifact_id, "artifact_id")
        )

    def exists(self, kind: str, artifact_id: str) -> bool:
        return (self.artifact_dir(kind, artifact_id) / MANIFEST_NAME).is_file()

    def list_ids(self, kind: str) -> list[str]:
        kind_dir = self.root / normalize_component(kind, "kind")
        if not kind_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in kind_dir.iterdir()
            if not entry.name.startswith(".") and (entry / MANIFEST_NAME).is_file()
        )

    def read_manifest(self, kind: str, artifact_id: str) -> ArtifactManifest:
        path = self.artifact_dir(kind, artifact_id) / MANIFEST_NAME
        if not path.is_file():
            raise ArtifactError(f"Manifest not found: {path}")
        return load_manifest(path)

    def read_text(self, kind: str, artifact_id: str, name: str) -> str:
        path = self.artifact_dir(kind, artifact_id) / _payload_name(name)
        if not path.is_file():
            raise ArtifactError(f"Artifact file not found: {path}")
        return path.read_text(encoding="utf-8")

    def write_artifact(
        self,
        manifest: ArtifactManifest,
        data_files: Optional[Mapping[str, Payload]] = None,
    ) -> ArtifactCacheResult:
        """Publish ``manifest`` plus named payload files, or reuse a match."""
        files = {
            _payload_name(name): payload for name, payload in (data_files or {}).items()
        }
        target = self.artifact_dir(manifest.kind, manifest.id)
        if not target.exists() and self._publish(target, manifest, files):
            _LOGGER.debug("Wrote artifact %s/%s.", manifest.kind, manifest.id)
            return ArtifactCacheResult(path=target, reused=False, manifest=manifest)

        existing = self.read_manifest(manifest.kind, manifest.id)
        if existing.identity != manifest.identity:
            raise ArtifactError(
                "Existing artifact manifest does not match requested identity.",
                user_message=(
                    f"Artifact {manifest.kind}/{manifest.id} already exists with "
                    "different inputs or config."
                ),
                context={"kind": manifest.kind, "id": manifest.id},
            )
        return ArtifactCacheResult(path=target, reused=True, manifest=existing)

    def _publish(
        self,
        target: Path,
        manifest: ArtifactManifest,
        files: Mapping[PurePosixPath, Payload],
    ) -> bool:
        """Return False when another writer published ``target`` first."""
        target.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{manifest.id}.", dir=target.parent))
        try:
            dump_manifest(staging / MANIFEST_NAME, manifest)
            for rel, payload in files.items():
                path = staging / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                if isinstance(payload, str):
                    path.write_text(payload, encoding="utf-8")
                elif isinstance(payload, (bytes, bytearray)):
                    path.write_bytes(bytes(payload))
                else:
                    raise TypeError(
                        f"Unsupported payload type for {rel}: {type(payload).__name__}"
                    )
            try:
                os.rename(staging, target)
            except OSError:
                if target.exists():
                    return False
                raise
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        return True


__all__ = ["Payload", "ArtifactCacheResult", "ArtifactStore"]
