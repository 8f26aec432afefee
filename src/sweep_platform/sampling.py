"""Sampling methods that produce CDF coordinates for latent parameters.

All generators return arrays with one row per sample point and one column
per latent dimension. Sobol' samples carry an extra matrix axis:
``(n, n_matrices, d)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
import math
from typing import Optional, Union
import warnings

import numpy as np
from scipy.stats import qmc

from sweep_platform.errors import ValidationError
from sweep_platform.logging_utils import get_logger

RANDOMIZATIONS = ("none", "shift", "scramble")

SkipStart = Union[None, bool, int]

_LOGGER = get_logger("sampling")


def _resolve_rng(rng: Union[None, int, np.random.Generator]) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


def _is_pow2(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


def _require_int(value: int, label: str, *, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ValidationError(f"{label} must be an integer, got {value!r}.")
    if value < minimum:
        raise ValidationError(f"{label} must be >= {minimum}, got {value}.")
    return int(value)


# ---------------------------------------------------------------------------
# Method descriptors


@dataclass(frozen=True)
class GridVariation:
    """Full-factorial sampling over discrete variations."""


@dataclass(frozen=True)
class LHSVariation:
    n: int = 4
    add_noise: bool = False
    rng: Union[None, int, np.random.Generator] = None
    orthogonalize: bool = True

    def __post_init__(self) -> None:
        _require_int(self.n, "LHS n", minimum=0)


@dataclass(frozen=True)
class SobolVariation:
    n: int
    n_matrices: int = 1
    randomization: str = "none"
    skip_start: SkipStart = None
    include_one: Optional[bool] = None
    rng: Union[None, int, np.random.Generator] = None

    def __post_init__(self) -> None:
        _require_int(self.n, "Sobol n")
        _require_int(self.n_matrices, "Sobol n_matrices")
        if self.randomization not in RANDOMIZATIONS:
            raise ValidationError(
                f"Unknown Sobol randomization {self.randomization!r}. "
                f"Available: {', '.join(RANDOMIZATIONS)}."
            )

    @classmethod
    def from_pow2(cls, pow2: int = 1, **kwargs) -> "SobolVariation":
        return cls(2**pow2, **kwargs)


@dataclass(frozen=True)
class RBDVariation:
    """Random Balance Design; Sobol'-based unless ``use_sobol`` is False."""

    n: int
    rng: Union[None, int, np.random.Generator] = None
    use_sobol: bool = True
    pow2_diff: Optional[int] = None
    num_cycles: Union[None, int, Fraction] = None

    def __post_init__(self) -> None:
        n = _require_int(self.n, "RBD n")
        if self.use_sobol:
            k = int(round(math.log2(n)))
            pow2_diff = n - 2**k
            if self.pow2_diff is not None and self.pow2_diff != pow2_diff:
                raise ValidationError(
                    f"pow2_diff must be n - 2**k = {pow2_diff} for Sobol-based RBD."
                )
            if abs(pow2_diff) > 1:
                raise ValidationError(
                    f"Sobol-based RBD needs n within 1 of a power of 2, got n={n}.",
                    user_message=(
                        f"RBD with Sobol sequences needs n within 1 of a power of 2 "
                        f"(got {n}); choose e.g. {2**k} or use use_sobol=False."
                    ),
                )
            if self.num_cycles is not None and Fraction(self.num_cycles) != Fraction(1, 2):
                raise ValidationError("num_cycles must be 1/2 for Sobol-based RBD.")
            object.__setattr__(self, "pow2_diff", pow2_diff)
            object.__setattr__(self, "num_cycles", Fraction(1, 2))
        else:
            if self.num_cycles is not None and Fraction(self.num_cycles) != 1:
                raise ValidationError("num_cycles must be 1 for random RBD.")
            object.__setattr__(self, "pow2_diff", None)
            object.__setattr__(self, "num_cycles", Fraction(1))


SamplingMethod = Union[GridVariation, LHSVariation, SobolVariation, RBDVariation]


# ---------------------------------------------------------------------------
# Latin hypercube


def orthogonal_lhs(
    k: int,
    d: int,
    rng: Union[None, int, np.random.Generator] = None,
) -> np.ndarray:
    """Return 0-based bin indices (k**d, d) of an orthogonal Latin hypercube."""
    rng = _resolve_rng(rng)
    n = k**d
    lhs_inds = np.zeros((n, d), dtype=int)
    for i in range(d):
        n_bins = k**i
        bin_size = k ** (d - i)
        if i == 0:
            lhs_inds[:, 0] = np.arange(n)
        else:
            # rows sharing a box in dims < i are contiguous after the sort below
            bin_inds_gps = [
                list(range(j * bin_size, (j + 1) * bin_size)) for j in range(n_bins)
            ]
            for pt_ind in range(bin_size):
                ind = np.empty(n_bins, dtype=int)
                for j, bin_inds in enumerate(bin_inds_gps):
                    ind[j] = bin_inds.pop(int(rng.integers(len(bin_inds))))
                lhs_inds[ind, i] = rng.permutation(n_bins) + pt_ind * n_bins
        keys = lhs_inds[:, : i + 1] // (n // k)
        order = np.lexsort(keys.T[::-1])
        lhs_inds[:, : i + 1] = lhs_inds[order, : i + 1]
    return lhs_inds


def generate_lhs_cdfs(
    n: int,
    d: int,
    *,
    add_noise: bool = False,
    rng: Union[None, int, np.random.Generator] = None,
    orthogonalize: bool = True,
) -> np.ndarray:
    """Latin hypercube CDF coordinates, shape (n, d)."""
    n = _require_int(n, "n", minimum=0)
    rng = _resolve_rng(rng)
    if d == 0 or n == 0:
        return np.zeros((n, d))
    if add_noise:
        cdfs = (np.arange(n)[:, None] + rng.random((n, d))) / n
    else:
        cdfs = np.repeat(((np.arange(n) + 0.5) / n)[:, None], d, axis=1)
    k = int(round(n ** (1.0 / d)))
    if orthogonalize and n == k**d:
        lhs_inds = orthogonal_lhs(k, d, rng)
    else:
        lhs_inds = np.column_stack([rng.permutation(n) for _ in range(d)])
    return np.take_along_axis(cdfs, lhs_inds, axis=0)


# ---------------------------------------------------------------------------
# Sobol sequence


def _sobol_skip_count(skip_start: Union[bool, int], n_draws: int) -> int:
    if isinstance(skip_start, (bool, np.bool_)):
        if not skip_start:
            return 0
        if n_draws <= 1:
            return 1
        # smallest dyadic block with at least n_draws points
        return 2 ** (int(math.floor(math.log2(n_draws - 1))) + 1)
    if skip_start < 0:
        raise ValidationError(f"skip_start must be >= 0, got {skip_start}.")
    return int(skip_start)


def _draw_sobol_points(
    dim: int,
    n_draws: int,
    num_to_skip: int,
    *,
    scramble: bool,
    rng: np.random.Generator,
) -> np.ndarray:
    engine = qmc.Sobol(d=dim, scramble=scramble, rng=rng)
    if num_to_skip:
        engine.fast_forward(num_to_skip)
    with warnings.catch_warnings():
        # non power-of-two draws are intended
        warnings.simplefilter("ignore", category=UserWarning)
        return engine.random(n_draws)


def generate_sobol_cdfs(
    n: int,
    d: int,
    *,
    n_matrices: int = 1,
    randomization: str = "none",
    skip_start: SkipStart = None,
    include_one: Optional[bool] = None,
    rng: Union[None, int, np.random.Generator] = None,
) -> np.ndarray:
    """Sobol' sequence CDF coordinates, shape (n, n_matrices, d).

    With ``skip_start=None``: for ``n = 2**k - 1`` the all-zero point is
    skipped; otherwise the sequence starts at 0, and for ``n = 2**k + 1`` an
    all-ones point is appended unless ``include_one`` is False.
    ``skip_start=True`` skips to the smallest dyadic block holding the
    draws; an integer skips that many points.
    """
    n = _require_int(n, "n")
    n_matrices = _require_int(n_matrices, "n_matrices")
    if randomization not in RANDOMIZATIONS:
        raise ValidationError(
            f"Unknown Sobol randomization {randomization!r}. "
            f"Available: {', '.join(RANDOMIZATIONS)}."
        )
    rng = _resolve_rng(rng)
    if skip_start is None:
        if _is_pow2(n + 1):
            skip_start = 1
        else:
            skip_start = False
            if _is_pow2(n - 1) and include_one is None:
                include_one = True
    include_one = include_one is True
    n_draws = n - int(include_one)
    dim = d * n_matrices
    if dim == 0:
        return np.zeros((n, n_matrices, 0))

    num_to_skip = _sobol_skip_count(skip_start, n_draws)
    if n_draws > 0:
        points = _draw_sobol_points(
            dim,
            n_draws,
            num_to_skip,
            scramble=randomization == "scramble",
            rng=rng,
        )
        if randomization == "shift":
            points = np.mod(points + rng.random(dim), 1.0)
    else:
        points = np.zeros((0, dim))
    if include_one:
        points = np.vstack([points, np.ones((1, dim))])
    _LOGGER.debug(
        "Generated %d Sobol points in %d dims (skipped %d, include_one=%s).",
        n,
        dim,
        num_to_skip,
        include_one,
    )
    return points.reshape(n, n_matrices, d)


# ---------------------------------------------------------------------------
# Random balance design


def generate_rbd_cdfs(
    method: RBDVariation,
    d: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(cdfs, sorting_inds)``, both shaped (n, d).

    ``sorting_inds[:, j]`` orders the sample points along the search curve of
    dimension ``j``.
    """
    n = method.n
    if method.use_sobol:
        if n == 1:
            return np.full((1, d), 0.5), np.zeros((1, d), dtype=int)
        if method.pow2_diff == -1:
            skip_start: Union[bool, int] = 1
        elif method.pow2_diff == 0:
            skip_start = True
        else:
            skip_start = False
        cdfs = generate_sobol_cdfs(
            n,
            d,
            n_matrices=1,
            randomization="none",
            skip_start=skip_start,
            include_one=method.pow2_diff == 1,
        ).reshape(n, d)
        sorting_inds = np.argsort(cdfs, axis=0, kind="stable")
        return cdfs, sorting_inds

    rng = _resolve_rng(method.rng)
    sorted_s = np.linspace(-np.pi, np.pi, n + 1)[:-1]
    if d == 0:
        return np.zeros((n, 0)), np.zeros((n, 0), dtype=int)
    permuted_s = np.column_stack([sorted_s[rng.permutation(n)] for _ in range(d)])
    cdfs = 0.5 + np.arcsin(np.sin(permuted_s)) / np.pi
    sorting_inds = np.argsort(permuted_s, axis=0, kind="stable")
    return cdfs, sorting_inds


__all__ = [
    "RANDOMIZATIONS",
    "GridVariation",
    "LHSVariation",
    "SobolVariation",
    "RBDVariation",
    "SamplingMethod",
    "orthogonal_lhs",
    "generate_lhs_cdfs",
    "generate_sobol_cdfs",
    "generate_rbd_cdfs",
]
