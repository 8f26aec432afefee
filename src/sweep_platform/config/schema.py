"""Structured config schema for Hydra."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional


@dataclass
class CommonConfig:
    seed: int = 0
    log_level: str = "INFO"
    # per-area overrides, e.g. {identity: DEBUG}
    log_areas: Dict[str, str] = field(default_factory=dict)


@dataclass
class StoreConfig:
    root: str = "artifacts"


@dataclass
class SensitivityConfig:
    method: str = "sobol"
    n: int = 64
    num_harmonics: int = 6
    first_order: str = "Jansen1999"
    total_order: str = "Jansen1999"
    use_sobol: bool = True
    add_noise: bool = False
    orthogonalize: bool = True
    n_replicates: int = 1
    # false, true, or a number of points to skip
    skip_start: Any = None
    include_one: Optional[bool] = None
    randomization: str = "none"


@dataclass
class AppConfig:
    common: CommonConfig = field(default_factory=CommonConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sensitivity: SensitivityConfig = field(default_factory=SensitivityConfig)


def register_configs() -> None:
    from hydra.core.config_store import ConfigStore

    cs = ConfigStore.instance()
    try:
        cs.store(group="schema", name="base", node=AppConfig, package="_global_")
    except Exception as exc:
        logging.getLogger(__name__).warning(
            "Hydra config store registration failed: %s", exc
        )


__all__ = [
    "CommonConfig",
    "StoreConfig",
    "SensitivityConfig",
    "AppConfig",
    "register_configs",
]
