"""Hydra composition plus seeding and logging setup from a composed config."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from pathlib import Path
import random
from typing import Any, Optional, Union

from hydra import compose, initialize_config_dir
from hydra.core.global_hydra import GlobalHydra
import numpy as np
from omegaconf import OmegaConf

from sweep_platform.errors import ConfigError
from sweep_platform.logging_utils import configure_logging

DEFAULT_CONFIG_PATH = "configs"
DEFAULT_CONFIG_NAME = "default"
DEFAULT_SEED_PATHS = ("common.seed", "seed")

_MISSING = object()


def compose_config(
    *,
    config_path: Union[Path, str] = DEFAULT_CONFIG_PATH,
    config_name: str = DEFAULT_CONFIG_NAME,
    overrides: Optional[Sequence[str]] = None,
) -> Any:
    """Compose ``config_name`` from ``config_path`` on top of ``schema/base``.

    Relative paths resolve against the working directory. A ``.yaml`` suffix
    on the name is accepted; empty and ``--`` overrides are dropped so
    argv slices can be passed as-is.
    """
    from sweep_platform.config.schema import register_configs

    register_configs()
    config_dir = Path(config_path).expanduser()
    if not config_dir.is_absolute():
        config_dir = Path.cwd() / config_dir
    config_dir = config_dir.resolve()
    if not config_dir.is_dir():
        raise ConfigError(
            f"Config directory not found: {config_dir}",
            context={"config_name": config_name},
        )
    name = Path(config_name).stem if config_name.endswith((".yaml", ".yml")) else config_name
    global_hydra = GlobalHydra.instance()
    if global_hydra.is_initialized():
        global_hydra.clear()
    with initialize_config_dir(config_dir=str(config_dir), version_base=None):
        return compose(
            config_name=name,
            overrides=[item for item in overrides or () if item and item != "--"],
        )


def resolve_config(cfg: Any) -> dict[str, Any]:
    """Plain ``dict`` with interpolations resolved."""
    if OmegaConf.is_config(cfg):
        resolved = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=False)
    elif isinstance(cfg, Mapping):
        resolved = dict(cfg)
    else:
        raise ConfigError("Config must be a mapping or an OmegaConf config.")
    if not isinstance(resolved, dict):
        raise ConfigError("Resolved config must be a mapping.")
    return resolved


def format_config(cfg: Any) -> str:
    node = cfg if OmegaConf.is_config(cfg) else OmegaConf.create(dict(cfg))
    return OmegaConf.to_yaml(node, resolve=True)


def _lookup(cfg: Any, path: str) -> Any:
    if OmegaConf.is_config(cfg):
        value = OmegaConf.select(cfg, path, default=_MISSING)
        return None if value is _MISSING else value
    node = cfg
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def config_seed(
    cfg: Any,
    *,
    seed_paths: Sequence[str] = DEFAULT_SEED_PATHS,
) -> Optional[int]:
    """First seed found along ``seed_paths``, as an int."""
    for path in seed_paths:
        value = _lookup(cfg, path)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"Seed must be an integer, got {value!r}.",
                context={"path": path},
            ) from exc
    return None


def seed_everything(
    cfg: Any,
    *,
    seed_paths: Sequence[str] = DEFAULT_SEED_PATHS,
) -> Optional[int]:
    seed = config_seed(cfg, seed_paths=seed_paths)
    if seed is not None:
        random.seed(seed)
        np.random.seed(seed)
    return seed


def make_rng(
    cfg: Any,
    *,
    seed_paths: Sequence[str] = DEFAULT_SEED_PATHS,
) -> np.random.Generator:
    """Generator for sampling methods; unseeded when the config has no seed."""
    return np.random.default_rng(config_seed(cfg, seed_paths=seed_paths))


def configure_logging_from_config(cfg: Any) -> logging.Logger:
    """Apply ``common.log_level`` and ``common.log_areas``."""
    level = _lookup(cfg, "common.log_level") or "INFO"
    areas = _lookup(cfg, "common.log_areas") or {}
    if OmegaConf.is_config(areas):
        areas = OmegaConf.to_container(areas, resolve=True)
    try:
        return configure_logging(level, areas=areas)
    except ValueError as exc:
        raise ConfigError(
            str(exc),
            user_message=f"Invalid logging level in config: {exc}",
        ) from exc


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_SEED_PATHS",
    "compose_config",
    "resolve_config",
    "format_config",
    "config_seed",
    "seed_everything",
    "make_rng",
    "configure_logging_from_config",
]
