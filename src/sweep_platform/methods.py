"""Build sampling and sensitivity methods from config."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Union

import numpy as np
from omegaconf import OmegaConf

from sweep_platform.errors import ConfigError, SweepPlatformError
from sweep_platform.registry import register, resolve_method
from sweep_platform.sampling import GridVariation, LHSVariation, RBDVariation, SobolVariation
from sweep_platform.sensitivity import MOAT, RBD, Sobol

RngLike = Union[None, int, np.random.Generator]

_ALIASES = {
    "morris": "moat",
    "sobol_prime": "sobol",
    "latin_hypercube": "lhs",
    "full_factorial": "grid",
}


def _grid(cfg: Mapping[str, Any], rng: RngLike) -> GridVariation:
    return GridVariation()


def _lhs(cfg: Mapping[str, Any], rng: RngLike) -> LHSVariation:
    return LHSVariation(
        int(cfg.get("n", 4)),
        add_noise=bool(cfg.get("add_noise", False)),
        rng=rng,
        orthogonalize=bool(cfg.get("orthogonalize", True)),
    )


def _sobol_options(cfg: Mapping[str, Any], rng: RngLike) -> dict[str, Any]:
    return {
        "randomization": str(cfg.get("randomization", "none")),
        "skip_start": cfg.get("skip_start"),
        "include_one": cfg.get("include_one"),
        "rng": rng,
    }


def _sobol_sequence(cfg: Mapping[str, Any], rng: RngLike) -> SobolVariation:
    return SobolVariation(
        int(cfg.get("n", 64)),
        n_matrices=int(cfg.get("n_matrices", 1)),
        **_sobol_options(cfg, rng),
    )


def _rbd_sequence(cfg: Mapping[str, Any], rng: RngLike) -> RBDVariation:
    return RBDVariation(int(cfg.get("n", 64)), rng=rng, use_sobol=bool(cfg.get("use_sobol", True)))


def _moat(cfg: Mapping[str, Any], rng: RngLike) -> MOAT:
    return MOAT(lhs_variation=_lhs({"n": cfg.get("n", 15), **cfg}, rng))


def _sobol(cfg: Mapping[str, Any], rng: RngLike) -> Sobol:
    return Sobol(
        int(cfg.get("n", 64)),
        first_order=cfg.get("first_order"),
        total_order=cfg.get("total_order"),
        **_sobol_options(cfg, rng),
    )


def _rbd(cfg: Mapping[str, Any], rng: RngLike) -> RBD:
    return RBD(
        int(cfg.get("n", 64)),
        num_harmonics=int(cfg.get("num_harmonics", 6)),
        rng=rng,
        use_sobol=bool(cfg.get("use_sobol", True)),
    )


_BUILTIN_METHODS = {
    "grid": _grid,
    "lhs": _lhs,
    "sobol_sequence": _sobol_sequence,
    "rbd_sequence": _rbd_sequence,
    "moat": _moat,
    "sobol": _sobol,
    "rbd": _rbd,
}

for _name, _factory in _BUILTIN_METHODS.items():
    register("method", _name, _factory, overwrite=True)


def canonical_method_name(name: str) -> str:
    key = str(name).strip().lower().replace("-", "_").replace("'", "_prime")
    return _ALIASES.get(key, key)


def _as_mapping(cfg: Any) -> dict[str, Any]:
    if OmegaConf.is_config(cfg):
        cfg = OmegaConf.to_container(cfg, resolve=True)
    if not isinstance(cfg, Mapping):
        raise ConfigError(f"Method config must be a mapping, got {type(cfg).__name__}.")
    return dict(cfg)


def method_from_config(cfg: Any, *, rng: Optional[RngLike] = None) -> Any:
    """Build a method from a mapping with at least a ``method`` key.

    A full app config is accepted too; its ``sensitivity`` section is used.
    """
    payload = _as_mapping(cfg)
    if "method" not in payload and isinstance(payload.get("sensitivity"), Mapping):
        payload = dict(payload["sensitivity"])
    name = payload.get("method")
    if not name:
        raise ConfigError("Method config requires a 'method' name.")
    factory = resolve_method(canonical_method_name(name))
    payload = {key: value for key, value in payload.items() if value is not None}
    try:
        return factory(payload, rng)
    except SweepPlatformError as exc:
        raise ConfigError(
            f"Invalid {name!r} method config: {exc}",
            user_message=exc.user_message,
            context={"method": name},
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name!r} method config: {exc}") from exc


__all__ = ["canonical_method_name", "method_from_config"]
