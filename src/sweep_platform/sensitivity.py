"""Global sensitivity analysis: Morris (MOAT), Sobol', and RBD.

A GSA run samples the latent space, materializes every sample point as a
monad, runs the monads through the campaign backend, and records a scheme
table of monad IDs. Indices are computed per scoring function from that
table and cached on the sampling.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Optional, Union

import numpy as np
import pandas as pd
from scipy import fft

from sweep_platform.campaign import (
    CampaignContext,
    Monad,
    Sampling,
    monads_for,
    run_sampling,
)
from sweep_platform.core import build_manifest, make_artifact_id
from sweep_platform.errors import UnsupportedFeatureError, ValidationError
from sweep_platform.identity import InputFolders, VariationID
from sweep_platform.logging_utils import get_logger
from sweep_platform.materialize import add_cdf_variations, add_variations
from sweep_platform.metadata import code_metadata, provenance_metadata
from sweep_platform.sampling import LHSVariation, RBDVariation, SobolVariation
from sweep_platform.store import ArtifactCacheResult, ArtifactStore
from sweep_platform.variations import ParsedVariations

FIRST_ORDER_METHODS = ("Sobol1993", "Jansen1999", "Saltelli2010")
TOTAL_ORDER_METHODS = ("Homma1996", "Jansen1999", "Sobol2007")
DEFAULT_NUM_HARMONICS = 6
SCHEME_ARTIFACT_KIND = "sensitivity"

ScoreFunction = Callable[[int], float]

_LOGGER = get_logger("sensitivity")


# ---------------------------------------------------------------------------
# Methods


@dataclass(frozen=True)
class SobolIndexMethods:
    first_order: str = "Jansen1999"
    total_order: str = "Jansen1999"

    def __post_init__(self) -> None:
        if self.first_order not in FIRST_ORDER_METHODS:
            raise ValidationError(
                f"Unknown first-order Sobol' estimator {self.first_order!r}. "
                f"Available: {', '.join(FIRST_ORDER_METHODS)}."
            )
        if self.total_order not in TOTAL_ORDER_METHODS:
            raise ValidationError(
                f"Unknown total-order Sobol' estimator {self.total_order!r}. "
                f"Available: {', '.join(TOTAL_ORDER_METHODS)}."
            )


class MOAT:
    """Morris one-at-a-time screening around Latin hypercube base points."""

    def __init__(self, n: int = 15, *, lhs_variation: Optional[LHSVariation] = None, **lhs_kwargs: Any) -> None:
        self.lhs_variation = lhs_variation or LHSVariation(n, **lhs_kwargs)

    def __repr__(self) -> str:
        return f"MOAT({self.lhs_variation!r})"


class Sobol:
    """Sobol' first and total order indices from two Sobol' design matrices."""

    def __init__(
        self,
        n: int,
        *,
        index_methods: Optional[SobolIndexMethods] = None,
        first_order: Optional[str] = None,
        total_order: Optional[str] = None,
        **sobol_kwargs: Any,
    ) -> None:
        if "n_matrices" in sobol_kwargs:
            raise ValidationError("Sobol' analysis always uses two design matrices.")
        if index_methods is None:
            index_methods = SobolIndexMethods(
                first_order=first_order or "Jansen1999",
                total_order=total_order or "Jansen1999",
            )
        self.index_methods = index_methods
        self.sobol_variation = SobolVariation(n, n_matrices=2, **sobol_kwargs)

    def __repr__(self) -> str:
        return f"Sobol({self.sobol_variation!r}, {self.index_methods!r})"


class RBD:
    """Random Balance Design indices from a Fourier decomposition."""

    def __init__(self, n: int, *, num_harmonics: int = DEFAULT_NUM_HARMONICS, **rbd_kwargs: Any) -> None:
        if isinstance(num_harmonics, bool) or not isinstance(num_harmonics, int) or num_harmonics < 1:
            raise ValidationError(f"num_harmonics must be a positive integer, got {num_harmonics!r}.")
        self.rbd_variation = RBDVariation(n, **rbd_kwargs)
        self.num_harmonics = num_harmonics

    def __repr__(self) -> str:
        return f"RBD({self.rbd_variation!r}, num_harmonics={self.num_harmonics})"


GSAMethod = Union[MOAT, Sobol, RBD]


# ---------------------------------------------------------------------------
# Results and samplings


@dataclass(frozen=True)
class MorrisResult:
    means: np.ndarray
    means_star: np.ndarray
    variances: np.ndarray
    elementary_effects: np.ndarray


@dataclass(frozen=True)
class SobolResult:
    first_order: np.ndarray
    total_order: np.ndarray


@dataclass
class GSASampling:
    """Scheme table of monad IDs plus the simulations behind them."""

    sampling: Sampling
    monad_ids_df: pd.DataFrame
    context: CampaignContext
    results: dict[Any, Any] = field(default_factory=dict)

    @property
    def simulation_ids(self) -> list[int]:
        return self.sampling.all_simulation_ids


@dataclass
class MOATSampling(GSASampling):
    pass


@dataclass
class SobolSampling(GSASampling):
    index_methods: SobolIndexMethods = field(default_factory=SobolIndexMethods)


@dataclass
class RBDSampling(GSASampling):
    num_harmonics: int = DEFAULT_NUM_HARMONICS
    num_cycles: Fraction = Fraction(1)


def method_string(gsa_sampling: GSASampling) -> str:
    name = type(gsa_sampling).__name__.lower()
    return name[: -len("sampling")] if name.endswith("sampling") else name


def _function_name(f: Any) -> str:
    return getattr(f, "__name__", repr(f))


# ---------------------------------------------------------------------------
# Sampling


def perturb_variation(
    pv: ParsedVariations,
    inputs: InputFolders,
    reference: VariationID,
    cdf_row: Sequence[float],
) -> list[VariationID]:
    """One-at-a-time perturbations of a base point, one per latent dimension."""
    cdf_row = np.asarray(cdf_row, dtype=float)
    d = cdf_row.shape[0]
    perturbed = np.tile(cdf_row, (d, 1))
    for i in range(d):
        perturbed[i, i] += 0.5 if cdf_row[i] < 0.5 else -0.5
    return add_cdf_variations(inputs, pv, reference, perturbed)


def _scheme_frame(monads: Sequence[Sequence[Monad]], columns: Sequence[str]) -> pd.DataFrame:
    ids = [[monad.monad_id for monad in row] for row in monads]
    return pd.DataFrame(ids, columns=list(columns), dtype="int64")


def _flatten(monads: Sequence[Sequence[Monad]]) -> list[Monad]:
    return [monad for row in monads for monad in row]


def _check_ignore_indices(ignore_indices: Sequence[int], d: int) -> set[int]:
    ignored = set()
    for index in ignore_indices:
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise ValidationError(f"ignore_indices must hold integers, got {index!r}.")
        if not 0 <= index < d:
            raise ValidationError(f"ignore index {index} is out of range for {d} latent dims.")
        ignored.add(int(index))
    return ignored


def _sample_moat(
    method: MOAT,
    context: CampaignContext,
    pv: ParsedVariations,
    reference: VariationID,
    ignore_indices: Sequence[int],
    run_kwargs: dict[str, Any],
) -> MOATSampling:
    if ignore_indices:
        raise UnsupportedFeatureError(
            "MOAT does not support ignore_indices; only Sobol' does."
        )
    result = add_variations(method.lhs_variation, context.inputs, pv, reference)
    rows = []
    for base_id, cdf_row in zip(result.variation_ids, result.cdfs):
        perturbed = perturb_variation(pv, context.inputs, base_id, cdf_row)
        rows.append([base_id, *perturbed])
    monads = monads_for(context, rows)
    frame = _scheme_frame(monads, ["base", *pv.latent_parameter_names])
    sampling = run_sampling(context, _flatten(monads), **run_kwargs)
    return MOATSampling(sampling=sampling, monad_ids_df=frame, context=context)


def _sample_sobol(
    method: Sobol,
    context: CampaignContext,
    pv: ParsedVariations,
    reference: VariationID,
    ignore_indices: Sequence[int],
    run_kwargs: dict[str, Any],
) -> SobolSampling:
    d = pv.n_latent_dims
    ignored = _check_ignore_indices(ignore_indices, d)
    result = add_variations(method.sobol_variation, context.inputs, pv, reference)
    a_cdfs = result.cdfs[:, 0, :]
    b_cdfs = result.cdfs[:, 1, :]
    focus = [i for i in range(d) if i not in ignored]
    hybrid_ids = []
    for i in focus:
        ab_cdfs = a_cdfs.copy()
        ab_cdfs[:, i] = b_cdfs[:, i]
        hybrid_ids.append(add_cdf_variations(context.inputs, pv, reference, ab_cdfs))
    rows = [
        [ids[0], ids[1], *(column[k] for column in hybrid_ids)]
        for k, ids in enumerate(result.variation_ids)
    ]
    names = pv.latent_parameter_names
    monads = monads_for(context, rows)
    frame = _scheme_frame(monads, ["A", "B", *(names[i] for i in focus)])
    sampling = run_sampling(context, _flatten(monads), **run_kwargs)
    return SobolSampling(
        sampling=sampling,
        monad_ids_df=frame,
        context=context,
        index_methods=method.index_methods,
    )


def _sample_rbd(
    method: RBD,
    context: CampaignContext,
    pv: ParsedVariations,
    reference: VariationID,
    ignore_indices: Sequence[int],
    run_kwargs: dict[str, Any],
) -> RBDSampling:
    if ignore_indices:
        raise UnsupportedFeatureError(
            "RBD does not support ignore_indices; only Sobol' does."
        )
    result = add_variations(method.rbd_variation, context.inputs, pv, reference)
    monads = monads_for(context, result.variation_matrix)
    frame = _scheme_frame(monads, pv.latent_parameter_names)
    sampling = run_sampling(context, _flatten(monads), **run_kwargs)
    return RBDSampling(
        sampling=sampling,
        monad_ids_df=frame,
        context=context,
        num_harmonics=method.num_harmonics,
        num_cycles=method.rbd_variation.num_cycles,
    )


def run_sensitivity(
    method: GSAMethod,
    context: CampaignContext,
    variations: Union[ParsedVariations, Iterable[Any]],
    *,
    reference: Union[None, VariationID, Monad] = None,
    functions: Iterable[ScoreFunction] = (),
    ignore_indices: Sequence[int] = (),
    n_replicates: int = 1,
    use_previous: bool = True,
) -> GSASampling:
    """Sample, run, and score a global sensitivity analysis.

    ``reference`` fixes the values of every non-varied target; it defaults
    to the base values of the input folders. ``ignore_indices`` are 0-based
    latent dimensions left out of the Sobol' hybrid matrices.
    """
    pv = variations if isinstance(variations, ParsedVariations) else ParsedVariations(variations)
    if isinstance(reference, Monad):
        reference = reference.variation_id
    if reference is None:
        reference = context.inputs.base_variation_id()
    run_kwargs = {"n_replicates": n_replicates, "use_previous": use_previous}

    if isinstance(method, MOAT):
        gsa_sampling: GSASampling = _sample_moat(method, context, pv, reference, ignore_indices, run_kwargs)
    elif isinstance(method, Sobol):
        gsa_sampling = _sample_sobol(method, context, pv, reference, ignore_indices, run_kwargs)
    elif isinstance(method, RBD):
        gsa_sampling = _sample_rbd(method, context, pv, reference, ignore_indices, run_kwargs)
    else:
        raise ValidationError(f"Unsupported sensitivity method {type(method).__name__!r}.")

    context.get_logger().info(
        "%s scheme has %d row(s) over %d unique monad(s).",
        method_string(gsa_sampling),
        len(gsa_sampling.monad_ids_df),
        len(gsa_sampling.sampling.monad_ids),
    )
    calculate_gsa(gsa_sampling, list(functions))
    if context.store is not None:
        record_sensitivity_scheme(gsa_sampling, context.store)
    return gsa_sampling


# ---------------------------------------------------------------------------
# Evaluation


def evaluate_function_on_sampling(gsa_sampling: GSASampling, f: ScoreFunction) -> np.ndarray:
    """Mean of ``f`` over each monad's simulations, shaped like the scheme table."""
    matrix = gsa_sampling.monad_ids_df.to_numpy(dtype="int64")
    unique_ids = list(dict.fromkeys(int(mid) for mid in matrix.ravel()))

    def _monad_value(monad_id: int) -> float:
        simulation_ids = gsa_sampling.sampling.simulation_ids[monad_id]
        return float(np.mean([float(f(sim_id)) for sim_id in simulation_ids]))

    max_workers = gsa_sampling.context.max_workers
    if max_workers > 1 and len(unique_ids) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            values = dict(zip(unique_ids, pool.map(_monad_value, unique_ids)))
    else:
        values = {monad_id: _monad_value(monad_id) for monad_id in unique_ids}

    out = np.empty(matrix.shape, dtype=float)
    for index, monad_id in np.ndenumerate(matrix):
        out[index] = values[int(monad_id)]
    return out


def _morris_indices(gsa_sampling: MOATSampling, vals: np.ndarray) -> MorrisResult:
    effects = 2.0 * (vals[:, 1:] - vals[:, [0]])
    d = effects.shape[1]
    if effects.shape[0] == 0:
        _LOGGER.warning("MOAT sampling has no base points; reporting zero effects.")
        zeros = np.zeros(d)
        return MorrisResult(zeros, zeros.copy(), zeros.copy(), effects)
    if effects.shape[0] > 1:
        variances = effects.var(axis=0, ddof=1)
    else:
        variances = np.full(d, np.nan)
    return MorrisResult(
        means=effects.mean(axis=0),
        means_star=np.abs(effects).mean(axis=0),
        variances=variances,
        elementary_effects=effects,
    )


def _sobol_indices(gsa_sampling: SobolSampling, vals: np.ndarray) -> SobolResult:
    a_values = vals[:, 0]
    b_values = vals[:, 1]
    hybrid_values = vals[:, 2:]
    d = hybrid_values.shape[1]
    expected_value_sq = np.mean(a_values * b_values)
    total_variance = np.var(np.concatenate([a_values, b_values]), ddof=1)
    first_method = gsa_sampling.index_methods.first_order
    total_method = gsa_sampling.index_methods.total_order

    first_order_variances = np.zeros(d)
    total_order_variances = np.zeros(d)
    for i in range(d):
        ab_values = hybrid_values[:, i]
        if first_method == "Sobol1993":
            first_order_variances[i] = np.mean(b_values * ab_values) - expected_value_sq
        elif first_method == "Jansen1999":
            first_order_variances[i] = total_variance - 0.5 * np.mean((b_values - ab_values) ** 2)
        else:
            first_order_variances[i] = np.mean(b_values * (ab_values - a_values))

        if total_method == "Homma1996":
            total_order_variances[i] = (
                total_variance - np.mean(a_values * ab_values) + expected_value_sq
            )
        elif total_method == "Jansen1999":
            total_order_variances[i] = 0.5 * np.mean((ab_values - a_values) ** 2)
        else:
            total_order_variances[i] = np.mean(a_values * (a_values - ab_values))

    with np.errstate(divide="ignore", invalid="ignore"):
        return SobolResult(
            first_order=first_order_variances / total_variance,
            total_order=total_order_variances / total_variance,
        )


def _rbd_indices(gsa_sampling: RBDSampling, vals: np.ndarray) -> np.ndarray:
    if gsa_sampling.num_cycles == Fraction(1, 2):
        # mirror the half cycle into a full period
        vals = np.vstack([vals, vals[-2:0:-1]])
    n_points = vals.shape[0]
    ys = np.abs(fft.fft(vals, axis=0)) ** 2 / n_points
    total = ys[1:].sum(axis=0)
    partial = 2.0 * ys[1:min(n_points, gsa_sampling.num_harmonics + 1)].sum(axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        return partial / total


def calculate_gsa(
    gsa_sampling: GSASampling,
    f: Union[ScoreFunction, Iterable[ScoreFunction]],
) -> None:
    """Compute and cache indices for ``f`` (or each of several functions)."""
    if not callable(f):
        for func in f:
            calculate_gsa(gsa_sampling, func)
        return
    if f in gsa_sampling.results:
        return
    vals = evaluate_function_on_sampling(gsa_sampling, f)
    if isinstance(gsa_sampling, MOATSampling):
        result: Any = _morris_indices(gsa_sampling, vals)
    elif isinstance(gsa_sampling, SobolSampling):
        result = _sobol_indices(gsa_sampling, vals)
    elif isinstance(gsa_sampling, RBDSampling):
        result = _rbd_indices(gsa_sampling, vals)
    else:
        raise ValidationError(f"Unsupported sampling type {type(gsa_sampling).__name__!r}.")
    gsa_sampling.results[f] = result
    _LOGGER.info(
        "Computed %s indices for %s.",
        method_string(gsa_sampling),
        _function_name(f),
    )


# ---------------------------------------------------------------------------
# Recording


def _method_config(gsa_sampling: GSASampling) -> dict[str, Any]:
    config: dict[str, Any] = {"method": method_string(gsa_sampling)}
    if isinstance(gsa_sampling, SobolSampling):
        config["first_order"] = gsa_sampling.index_methods.first_order
        config["total_order"] = gsa_sampling.index_methods.total_order
    elif isinstance(gsa_sampling, RBDSampling):
        config["num_harmonics"] = gsa_sampling.num_harmonics
        config["num_cycles"] = str(gsa_sampling.num_cycles)
    return config


def record_sensitivity_scheme(
    gsa_sampling: GSASampling,
    store: ArtifactStore,
) -> ArtifactCacheResult:
    """Write ``<method>_scheme.csv`` into a content-addressed artifact."""
    method = method_string(gsa_sampling)
    frame = gsa_sampling.monad_ids_df
    inputs = {
        "columns": [str(column) for column in frame.columns],
        "monad_ids": frame.to_numpy(dtype="int64").tolist(),
    }
    config = _method_config(gsa_sampling)
    artifact_id = make_artifact_id(inputs=inputs, config=config)
    manifest = build_manifest(
        kind=SCHEME_ARTIFACT_KIND,
        artifact_id=artifact_id,
        inputs={"columns": inputs["columns"], "n_rows": len(frame)},
        config=config,
        code=code_metadata(),
        provenance=provenance_metadata(),
    )
    result = store.write_artifact(
        manifest,
        {f"{method}_scheme.csv": frame.to_csv(index=False)},
    )
    _LOGGER.info(
        "%s scheme %s at %s.",
        method,
        "reused" if result.reused else "recorded",
        result.path,
    )
    return result


__all__ = [
    "FIRST_ORDER_METHODS",
    "TOTAL_ORDER_METHODS",
    "DEFAULT_NUM_HARMONICS",
    "SCHEME_ARTIFACT_KIND",
    "SobolIndexMethods",
    "MOAT",
    "Sobol",
    "RBD",
    "GSAMethod",
    "MorrisResult",
    "SobolResult",
    "GSASampling",
    "MOATSampling",
    "SobolSampling",
    "RBDSampling",
    "method_string",
    "perturb_variation",
    "run_sensitivity",
    "evaluate_function_on_sampling",
    "calculate_gsa",
    "record_sensitivity_scheme",
]
