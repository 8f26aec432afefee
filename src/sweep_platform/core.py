"""Artifact manifests and content hashing for recorded schemes."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from fractions import Fraction
import hashlib
import json
from pathlib import Path, PurePath
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator
import pydantic
import yaml

from sweep_platform.errors import ArtifactError

SCHEMA_VERSION = 1
MANIFEST_NAME = "manifest.yaml"


class ArtifactManifest(BaseModel):
    """Identity and provenance of one stored artifact directory."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=SCHEMA_VERSION, ge=1)
    kind: str
    id: str
    created_at: str
    parents: List[str] = Field(default_factory=list)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)
    code: Dict[str, Any] = Field(default_factory=dict)
    provenance: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None

    @field_validator("kind", "id", "created_at")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    @property
    def identity(self) -> dict[str, Any]:
        """Fields that must agree when an artifact is reused."""
        return {
            "kind": self.kind,
            "id": self.id,
            "inputs": self.inputs,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArtifactManifest":
        return cls.model_validate(dict(data))

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        if data["notes"] is None:
            del data["notes"]
        return data


def load_manifest(path: Union[str, Path]) -> ArtifactManifest:
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)
    if not isinstance(payload, Mapping):
        raise ArtifactError(f"Invalid manifest in {path}: expected a mapping.")
    try:
        return ArtifactManifest.from_dict(payload)
    except pydantic.ValidationError as exc:
        raise ArtifactError(
            f"Invalid manifest in {path}: {exc}",
            user_message=f"Artifact manifest {path} is malformed.",
            context={"path": str(path), "errors": exc.error_count()},
        ) from exc


def dump_manifest(path: Union[str, Path], manifest: ArtifactManifest) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(
            manifest.to_dict(),
            handle,
            default_flow_style=False,
            sort_keys=True,
        )


def normalize_component(value: Any, label: str) -> str:
    """Check that ``value`` names exactly one directory level."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string.")
    parts = PurePath(value).parts
    if len(parts) != 1 or parts[0] in {".", ".."} or PurePath(value).is_absolute():
        raise ValueError(f"{label} must be a single path component: {value!r}")
    return value


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def canonicalize(obj: Any, exclude_keys: Optional[Iterable[str]] = None) -> Any:
    """Reduce ``obj`` to JSON-compatible values with a deterministic layout.

    Mappings are key-sorted, arrays keep dtype and shape, fractions stay exact
    and enums collapse to their values, so equal schemes hash equally.
    """
    return _jsonable(obj, frozenset(str(key) for key in exclude_keys or ()))


def _jsonable(obj: Any, skip: frozenset) -> Any:
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, Enum):
        return _jsonable(obj.value, skip)
    if isinstance(obj, Fraction):
        return {"__fraction__": [obj.numerator, obj.denominator]}
    if isinstance(obj, np.generic):
        return _jsonable(obj.item(), skip)
    if isinstance(obj, np.ndarray):
        return {
            "__ndarray__": _jsonable(obj.tolist(), skip),
            "dtype": str(obj.dtype),
            "shape": list(obj.shape),
        }
    if isinstance(obj, (bytes, bytearray)):
        return {"__bytes__": bytes(obj).hex()}
    if isinstance(obj, PurePath):
        return obj.as_posix()
    if isinstance(obj, BaseModel):
        return _jsonable(obj.model_dump(), skip)
    if is_dataclass(obj) and not isinstance(obj, type):
        return _jsonable({f.name: getattr(obj, f.name) for f in fields(obj)}, skip)
    if isinstance(obj, Mapping):
        out = {}
        for key, value in obj.items():
            name = key.value if isinstance(key, Enum) else str(key)
            if name not in skip:
                out[name] = _jsonable(value, skip)
        return dict(sorted(out.items()))
    if isinstance(obj, (set, frozenset)):
        return sorted((_jsonable(item, skip) for item in obj), key=_dumps)
    if isinstance(obj, Sequence):
        return [_jsonable(item, skip) for item in obj]
    raise TypeError(f"Cannot canonicalize {type(obj).__name__!r} for hashing.")


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def stable_hash(
    obj: Any,
    *,
    exclude_keys: Optional[Iterable[str]] = None,
    length: Optional[int] = 16,
) -> str:
    """SHA-256 of the canonical JSON form, truncated to ``length`` hex chars."""
    if length is not None and length <= 0:
        raise ValueError("length must be a positive integer or None.")
    digest = hashlib.sha256(_dumps(canonicalize(obj, exclude_keys)).encode("utf-8"))
    return digest.hexdigest()[:length]


def make_artifact_id(
    *,
    inputs: Optional[Mapping[str, Any]] = None,
    config: Optional[Mapping[str, Any]] = None,
    code: Optional[Mapping[str, Any]] = None,
    exclude_keys: Optional[Iterable[str]] = None,
    length: Optional[int] = 16,
) -> str:
    return stable_hash(
        {"inputs": inputs or {}, "config": config or {}, "code": code or {}},
        exclude_keys=exclude_keys,
        length=length,
    )


def build_manifest(
    *,
    kind: str,
    artifact_id: str,
    inputs: Optional[Mapping[str, Any]] = None,
    config: Optional[Mapping[str, Any]] = None,
    code: Optional[Mapping[str, Any]] = None,
    provenance: Optional[Mapping[str, Any]] = None,
    parents: Optional[Sequence[str]] = None,
    notes: Optional[str] = None,
) -> ArtifactManifest:
    return ArtifactManifest(
        kind=kind,
        id=artifact_id,
        created_at=utc_timestamp(),
        parents=list(parents or []),
        inputs=dict(inputs or {}),
        config=dict(config or {}),
        code=dict(code or {}),
        provenance=dict(provenance or {}),
        notes=notes,
    )


__all__ = [
    "SCHEMA_VERSION",
    "MANIFEST_NAME",
    "ArtifactManifest",
    "load_manifest",
    "dump_manifest",
    "normalize_component",
    "utc_timestamp",
    "canonicalize",
    "stable_hash",
    "make_artifact_id",
    "build_manifest",
]
