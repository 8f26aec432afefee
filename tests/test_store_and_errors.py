import json
import logging
from fractions import Fraction

import numpy as np
import pytest

from sweep_platform.core import (
    ArtifactManifest,
    build_manifest,
    dump_manifest,
    load_manifest,
    make_artifact_id,
    stable_hash,
)
from sweep_platform.errors import ArtifactError, BackendError, ConfigError, VariationError
from sweep_platform.logging_utils import (
    configure_logging,
    get_logger,
    log_exception,
    run_with_error_handling,
)
from sweep_platform.registry import Registry, resolve_backend, resolve_method
from sweep_platform.store import ArtifactStore


def _make_manifest(kind: str = "sensitivity", artifact_id: str = "scheme-1") -> ArtifactManifest:
    return ArtifactManifest(
        schema_version=1,
        kind=kind,
        id=artifact_id,
        created_at="2026-10-01T00:00:00Z",
        parents=[],
        inputs={"columns": ["A", "B"]},
        config={"method": "sobol"},
        code={"package": "sweep_platform", "version": "0.1.0"},
        provenance={"python": "3.11"},
    )


def test_manifest_roundtrip(tmp_path) -> None:
    manifest = _make_manifest()
    path = tmp_path / "manifest.yaml"
    dump_manifest(path, manifest)
    assert load_manifest(path).to_dict() == manifest.to_dict()


def test_manifest_rejects_unknown_fields(tmp_path) -> None:
    payload = _make_manifest().to_dict()
    payload["extra"] = "nope"
    path = tmp_path / "manifest.yaml"
    path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(ArtifactError) as exc:
        load_manifest(path)
    assert "Invalid manifest" in str(exc.value)
    assert exc.value.context["errors"] == 1


def test_artifact_store_roundtrip(tmp_path) -> None:
    store = ArtifactStore(tmp_path / "artifacts")
    manifest = _make_manifest()
    result = store.write_artifact(manifest, data_files={"sobol_scheme.csv": "A,B\n1,2\n"})

    assert result.path == tmp_path / "artifacts" / "sensitivity" / "scheme-1"
    assert not result.reused
    assert store.exists("sensitivity", "scheme-1")
    assert store.read_manifest("sensitivity", "scheme-1").to_dict() == manifest.to_dict()
    assert store.read_text("sensitivity", "scheme-1", "sobol_scheme.csv") == "A,B\n1,2\n"

    again = store.write_artifact(manifest, data_files={"sobol_scheme.csv": "ignored"})
    assert again.reused
    assert store.list_ids("sensitivity") == ["scheme-1"]
    assert store.list_ids("missing-kind") == []
    assert store.read_text("sensitivity", "scheme-1", "sobol_scheme.csv") == "A,B\n1,2\n"


def test_artifact_identity_conflict(tmp_path) -> None:
    store = ArtifactStore(tmp_path / "artifacts")
    store.write_artifact(_make_manifest())
    conflicting = _make_manifest()
    conflicting.config["method"] = "rbd"
    with pytest.raises(ArtifactError):
        store.write_artifact(conflicting)
    with pytest.raises(ArtifactError) as exc:
        store.read_manifest("sensitivity", "missing")
    assert "Manifest not found" in str(exc.value)
    with pytest.raises(ValueError):
        store.artifact_dir("sensitivity", "../escape")


def test_stable_hash_ignores_key_order() -> None:
    left = {"b": [1, 2], "a": {"y": Fraction(1, 2), "x": np.arange(3)}}
    right = {"a": {"x": np.arange(3), "y": Fraction(1, 2)}, "b": [1, 2]}
    assert stable_hash(left) == stable_hash(right)
    assert stable_hash(left) != stable_hash({**left, "b": [2, 1]})
    assert make_artifact_id(config={"n": 1}) == make_artifact_id(config={"n": 1})
    manifest = build_manifest(kind="sensitivity", artifact_id="x", config={"n": 1})
    assert manifest.parents == []
    assert manifest.schema_version == 1


def test_backend_registry() -> None:
    from sweep_platform.backends import DummyBackend

    assert resolve_backend("dummy") is DummyBackend
    with pytest.raises(BackendError) as exc:
        resolve_backend("missing-backend", registry=Registry())
    assert "missing-backend" in str(exc.value)
    with pytest.raises(ConfigError):
        resolve_method("missing-method", registry=Registry())

    registry = Registry()
    registry.register("method", "grid", object)
    with pytest.raises(ValueError):
        registry.register("method", "grid", object)
    assert registry.names("method") == ["grid"]

    @registry.register("method", "lhs")
    def _lhs_factory() -> None:
        return None

    assert registry.get("method", "lhs") is _lhs_factory
    assert registry.names("method") == ["grid", "lhs"]
    with pytest.raises(KeyError):
        registry.get("observable", "grid")


def test_run_with_error_handling_logs_and_reraises(caplog) -> None:
    logger = get_logger("test")

    def _raise_variation_error() -> None:
        raise VariationError(
            "Duplicate target overall/max_time.",
            user_message="Each target may only be varied once.",
        )

    with caplog.at_level(logging.INFO, logger=logger.name):
        with pytest.raises(VariationError):
            run_with_error_handling(_raise_variation_error, logger=logger)

    assert logger.name == "sweep_platform.test"
    assert any(
        "Each target may only be varied once." in record.getMessage()
        for record in caplog.records
    )


def test_log_exception_emits_traceback_at_debug_level(caplog) -> None:
    logger = get_logger("test.debug")

    with caplog.at_level(logging.DEBUG, logger=logger.name):
        message = log_exception(
            logger,
            ConfigError("Config not found: configs/missing.yaml", context={"path": "configs"}),
        )

    assert message == "Config not found: configs/missing.yaml"
    assert any(record.exc_info for record in caplog.records)
    assert any("Error context" in record.getMessage() for record in caplog.records)


def test_configure_logging_sets_area_levels() -> None:
    identity_logger = get_logger("identity")
    previous = (get_logger().level, identity_logger.level, logging.getLogger().level)
    try:
        logger = configure_logging("warning", areas={"identity": "DEBUG"})
        assert logger.name == "sweep_platform"
        assert logger.level == logging.WARNING
        assert identity_logger.level == logging.DEBUG
        with pytest.raises(ValueError):
            configure_logging("loud")
    finally:
        get_logger().setLevel(previous[0])
        identity_logger.setLevel(previous[1])
        logging.getLogger().setLevel(previous[2])
