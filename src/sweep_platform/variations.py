"""Variation specifications and their latent-parameter normal form.

Every user variation (discrete, distributed, co-varied, or latent) is
converted into a :class:`LatentVariation`: a set of latent parameters that
the sampling engines draw CDF coordinates for, plus one mapping function per
target parameter turning a realized latent vector into the target value.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from functools import partial
import itertools
import math
from typing import Any, Optional, Union

import numpy as np
from scipy import stats

from sweep_platform.errors import VariationError
from sweep_platform.locations import Location, XMLPath, as_xml_path, variation_location

TargetLike = Union[XMLPath, str, Sequence[str]]
ScalarType = type

_SQLITE_TYPES = {bool: "TEXT", int: "INT", float: "REAL"}


def _is_distribution(value: Any) -> bool:
    return hasattr(value, "ppf") and hasattr(value, "cdf")


def _to_python_scalar(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    return value


def infer_scalar_type(value: Any) -> ScalarType:
    """Return the target scalar type (bool, int, float, or str) of ``value``."""
    value = _to_python_scalar(value)
    if isinstance(value, bool):
        return bool
    if isinstance(value, int):
        return int
    if isinstance(value, float):
        return float
    if isinstance(value, str):
        return str
    raise VariationError(
        f"Unsupported target value type {type(value).__name__!r}.",
        context={"value": repr(value)},
    )


def sqlite_data_type(value_type: ScalarType) -> str:
    return _SQLITE_TYPES.get(value_type, "TEXT")


# ---------------------------------------------------------------------------
# Latent parameters


@dataclass(frozen=True)
class DiscreteLatent:
    """Latent parameter taking one of a finite, ordered set of values."""

    values: tuple

    def __post_init__(self) -> None:
        values = tuple(_to_python_scalar(v) for v in self.values)
        if not values:
            raise VariationError("Discrete latent parameters need at least one value.")
        object.__setattr__(self, "values", values)

    @property
    def cardinality(self) -> int:
        return len(self.values)

    def sample_value(self) -> Any:
        return self.values[0]

    def index_at(self, cdf: float) -> int:
        # cdf == 1.0 clamps to the last value
        index = int(math.floor(float(cdf) * len(self.values)))
        return min(max(index, 0), len(self.values) - 1)

    def realize(self, cdf: float) -> Any:
        return self.values[self.index_at(cdf)]


@dataclass(frozen=True)
class ContinuousLatent:
    """Latent parameter drawn from a univariate distribution via its ppf."""

    distribution: Any

    def __post_init__(self) -> None:
        if not _is_distribution(self.distribution):
            raise VariationError(
                "Continuous latent parameters need a distribution with ppf/cdf."
            )

    def sample_value(self) -> float:
        return float(self.distribution.ppf(0.5))

    def realize(self, cdf: float) -> float:
        return float(self.distribution.ppf(cdf))


LatentParameter = Union[DiscreteLatent, ContinuousLatent]


def as_latent_parameter(value: Any) -> LatentParameter:
    if isinstance(value, (DiscreteLatent, ContinuousLatent)):
        return value
    if _is_distribution(value):
        return ContinuousLatent(value)
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise VariationError(
            f"Latent parameters must be value sequences or distributions, got {value!r}."
        )
    return DiscreteLatent(tuple(value))


# ---------------------------------------------------------------------------
# Elementary variations


def _as_value_tuple(values: Any) -> tuple:
    if isinstance(values, np.ndarray):
        return tuple(_to_python_scalar(v) for v in values.ravel())
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        return (_to_python_scalar(values),)
    return tuple(_to_python_scalar(v) for v in values)


@dataclass(frozen=True)
class DiscreteVariation:
    """Vary one target over an explicit list of values."""

    target: XMLPath
    values: tuple

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", as_xml_path(self.target))
        values = _as_value_tuple(self.values)
        if not values:
            raise VariationError(
                f"Discrete variation of {self.target.column_name!r} has no values."
            )
        object.__setattr__(self, "values", values)

    @property
    def location(self) -> Location:
        return variation_location(self.target)

    @property
    def column_name(self) -> str:
        return self.target.column_name

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class DistributedVariation:
    """Vary one target according to a distribution, optionally flipped."""

    target: XMLPath
    distribution: Any
    flip: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", as_xml_path(self.target))
        if not _is_distribution(self.distribution):
            raise VariationError(
                f"Distributed variation of {self.target.column_name!r} needs a "
                "distribution with ppf/cdf."
            )

    @property
    def location(self) -> Location:
        return variation_location(self.target)

    @property
    def column_name(self) -> str:
        return self.target.column_name

    def quantile(self, cdf: float) -> float:
        cdf = 1.0 - cdf if self.flip else cdf
        return float(self.distribution.ppf(cdf))


ElementaryVariation = Union[DiscreteVariation, DistributedVariation]


def uniform_distributed_variation(
    target: TargetLike,
    lb: float,
    ub: float,
    *,
    flip: bool = False,
) -> DistributedVariation:
    if not ub > lb:
        raise VariationError(f"Uniform bounds must satisfy lb < ub, got [{lb}, {ub}].")
    return DistributedVariation(target, stats.uniform(loc=lb, scale=ub - lb), flip=flip)


def normal_distributed_variation(
    target: TargetLike,
    mu: float,
    sigma: float,
    *,
    lb: float = -math.inf,
    ub: float = math.inf,
    flip: bool = False,
) -> DistributedVariation:
    """Normal variation, truncated to [lb, ub] when either bound is finite."""
    if sigma <= 0:
        raise VariationError(f"Normal variation needs sigma > 0, got {sigma}.")
    if math.isinf(lb) and math.isinf(ub):
        distribution = stats.norm(loc=mu, scale=sigma)
    else:
        distribution = stats.truncnorm(
            (lb - mu) / sigma, (ub - mu) / sigma, loc=mu, scale=sigma
        )
    return DistributedVariation(target, distribution, flip=flip)


def elementary_variation(target: TargetLike, values: Any, *, flip: bool = False):
    if _is_distribution(values):
        return DistributedVariation(target, values, flip=flip)
    return DiscreteVariation(target, values)


class CoVariation:
    """Vary several targets together along one shared latent dimension."""

    def __init__(self, *variations: ElementaryVariation) -> None:
        if len(variations) == 1 and isinstance(variations[0], (list, tuple)):
            variations = tuple(variations[0])
        if not variations:
            raise VariationError("CoVariation needs at least one variation.")
        if all(isinstance(v, DiscreteVariation) for v in variations):
            lengths = {len(v) for v in variations}
            if len(lengths) != 1:
                raise VariationError(
                    "Discrete CoVariation members must have the same number of values.",
                    context={"lengths": [len(v) for v in variations]},
                )
        elif not all(isinstance(v, DistributedVariation) for v in variations):
            raise VariationError(
                "CoVariation members must be all discrete or all distributed."
            )
        self.variations: tuple[ElementaryVariation, ...] = tuple(variations)

    @property
    def is_discrete(self) -> bool:
        return isinstance(self.variations[0], DiscreteVariation)

    @property
    def targets(self) -> list[XMLPath]:
        return [v.target for v in self.variations]

    @property
    def column_name(self) -> str:
        return " AND ".join(v.column_name for v in self.variations)

    def __len__(self) -> int:
        if self.is_discrete:
            return len(self.variations[0])
        return -1

    def __repr__(self) -> str:
        return f"CoVariation({', '.join(repr(v) for v in self.variations)})"


# ---------------------------------------------------------------------------
# Latent variation


def default_latent_parameter_names(n_latent: int, targets: Sequence[XMLPath]) -> list[str]:
    par_names = " | ".join(target.column_name for target in targets)
    return [f"{par_names} | lp#{i}" for i in range(1, n_latent + 1)]


class LatentVariation:
    """Latent parameters mapped onto one or more target parameters."""

    def __init__(
        self,
        latent_parameters: Sequence[Any],
        targets: Sequence[TargetLike],
        maps: Sequence[Callable[[list[Any]], Any]],
        latent_parameter_names: Optional[Sequence[str]] = None,
    ) -> None:
        latents = [as_latent_parameter(lp) for lp in latent_parameters]
        if not latents:
            raise VariationError("LatentVariation needs at least one latent parameter.")
        kinds = {type(lp) for lp in latents}
        if len(kinds) != 1:
            raise VariationError(
                "Latent parameters must be all discrete or all continuous."
            )
        xml_targets = [as_xml_path(target) for target in targets]
        maps = list(maps)
        if len(xml_targets) != len(maps):
            raise VariationError(
                "LatentVariation needs one map per target; found "
                f"{len(xml_targets)} targets and {len(maps)} maps."
            )
        if not xml_targets:
            raise VariationError("LatentVariation needs at least one target.")
        if latent_parameter_names is None or len(latent_parameter_names) == 0:
            names = default_latent_parameter_names(len(latents), xml_targets)
        else:
            names = [str(name) for name in latent_parameter_names]
        if len(names) != len(latents):
            raise VariationError(
                "LatentVariation needs one name per latent parameter; found "
                f"{len(latents)} parameters and {len(names)} names."
            )

        self.latent_parameters: tuple[LatentParameter, ...] = tuple(latents)
        self.latent_parameter_names: tuple[str, ...] = tuple(names)
        self.targets: tuple[XMLPath, ...] = tuple(xml_targets)
        self.locations: tuple[Location, ...] = tuple(
            variation_location(target) for target in xml_targets
        )
        self.maps: tuple[Callable[[list[Any]], Any], ...] = tuple(maps)
        sample_input = [lp.sample_value() for lp in latents]
        self.types: tuple[ScalarType, ...] = tuple(
            infer_scalar_type(fn(sample_input)) for fn in maps
        )

    @property
    def is_discrete(self) -> bool:
        return isinstance(self.latent_parameters[0], DiscreteLatent)

    @property
    def n_latent_dims(self) -> int:
        return len(self.latent_parameters)

    @property
    def n_target_dims(self) -> int:
        return len(self.targets)

    @property
    def shape(self) -> tuple[int, ...]:
        """Cardinality per latent parameter; -1 for continuous ones."""
        return tuple(
            lp.cardinality if isinstance(lp, DiscreteLatent) else -1
            for lp in self.latent_parameters
        )

    @property
    def column_names(self) -> list[str]:
        return [target.column_name for target in self.targets]

    def evaluate(self, latent_values: Sequence[Any]) -> list[Any]:
        realized = list(latent_values)
        return [_to_python_scalar(fn(realized)) for fn in self.maps]

    def realize(self, cdfs: Sequence[float]) -> list[Any]:
        if len(cdfs) != self.n_latent_dims:
            raise VariationError(
                "CDF vector length must match the number of latent parameters; "
                f"got {len(cdfs)} for {self.n_latent_dims}.",
                context={"latent_parameters": list(self.latent_parameter_names)},
            )
        return [lp.realize(cdf) for lp, cdf in zip(self.latent_parameters, cdfs)]

    def describe(self) -> str:
        kind = "Discrete" if self.is_discrete else "Distribution"
        title = f"LatentVariation ({kind}), {self.n_latent_dims} -> {self.n_target_dims}:"
        lines = [title, "-" * len(title), f"  Latent Parameters (n = {self.n_latent_dims}):"]
        for index, (name, lp) in enumerate(
            zip(self.latent_parameter_names, self.latent_parameters), start=1
        ):
            detail = (
                "[" + ", ".join(str(v) for v in lp.values) + "]"
                if isinstance(lp, DiscreteLatent)
                else repr(lp.distribution)
            )
            lines.append(f"    lp#{index}. {name} ({detail})")
        lines.append(f"  Target Parameters (n = {self.n_target_dims}):")
        for index, (location, target) in enumerate(
            zip(self.locations, self.targets), start=1
        ):
            lines.append(f"    tp#{index}. {target.column_name} [{location.value}]")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LatentVariation(n_latent={self.n_latent_dims}, "
            f"targets={self.column_names!r})"
        )


def _first(latent_values: list[Any]) -> Any:
    return latent_values[0]


def _quantile_of_first(
    variation: DistributedVariation,
    latent_values: list[Any],
) -> float:
    return variation.quantile(float(latent_values[0]))


def _value_at_first_index(
    variation: DiscreteVariation,
    latent_values: list[Any],
) -> Any:
    return variation.values[int(latent_values[0])]


def to_latent_variation(variation: Any) -> LatentVariation:
    """Convert any supported variation into its latent normal form."""
    if isinstance(variation, LatentVariation):
        return variation
    if isinstance(variation, DiscreteVariation):
        return LatentVariation(
            [DiscreteLatent(variation.values)],
            [variation.target],
            [_first],
            [variation.column_name],
        )
    if isinstance(variation, DistributedVariation):
        return LatentVariation(
            [ContinuousLatent(stats.uniform(0.0, 1.0))],
            [variation.target],
            [partial(_quantile_of_first, variation)],
            [variation.column_name],
        )
    if isinstance(variation, CoVariation):
        if variation.is_discrete:
            return LatentVariation(
                [DiscreteLatent(tuple(range(len(variation))))],
                variation.targets,
                [partial(_value_at_first_index, v) for v in variation.variations],
                [variation.column_name],
            )
        return LatentVariation(
            [ContinuousLatent(stats.uniform(0.0, 1.0))],
            variation.targets,
            [partial(_quantile_of_first, v) for v in variation.variations],
            [variation.column_name],
        )
    raise VariationError(
        f"Unsupported variation type {type(variation).__name__!r}."
    )


# ---------------------------------------------------------------------------
# Evaluation


def _combination_matrix(lv: LatentVariation) -> list[list[Any]]:
    # first latent parameter varies fastest
    value_sets = [lp.values for lp in reversed(lv.latent_parameters)]
    columns: list[list[Any]] = [[] for _ in lv.targets]
    for combo in itertools.product(*value_sets):
        for row, value in zip(columns, lv.evaluate(combo[::-1])):
            row.append(value)
    return columns


def variation_values(variation: Any, cdfs: Any = None) -> Any:
    """Evaluate a variation, optionally at CDF coordinates.

    * Discrete latent variation, no ``cdfs``: a targets x combinations matrix
      (list of lists) in column-major combination order.
    * Latent variation with a 1-D ``cdfs`` vector: one value per target.
    * Latent variation with a 2-D ``cdfs`` array (samples x latent dims): one
      list of target values per sample.
    * Elementary variations: all discrete values, or the value at scalar
      ``cdfs``.
    """
    if isinstance(variation, DiscreteVariation):
        if cdfs is None:
            return list(variation.values)
        return DiscreteLatent(variation.values).realize(float(cdfs))
    if isinstance(variation, DistributedVariation):
        if cdfs is None:
            raise VariationError(
                f"Distributed variation of {variation.column_name!r} needs CDF values."
            )
        return variation.quantile(float(cdfs))

    lv = to_latent_variation(variation)
    if cdfs is None:
        if not lv.is_discrete:
            raise VariationError(
                "Continuous latent variations can only be evaluated at CDF values.",
                context={"targets": lv.column_names},
            )
        return _combination_matrix(lv)
    array = np.asarray(cdfs, dtype=float)
    if array.ndim == 1:
        return lv.evaluate(lv.realize(array))
    if array.ndim == 2:
        return [lv.evaluate(lv.realize(row)) for row in array]
    raise VariationError(f"CDF values must be 1-D or 2-D, got shape {array.shape}.")


def cdf(variation: ElementaryVariation, value: Any) -> float:
    """Return the CDF coordinate at which ``variation`` takes ``value``."""
    if isinstance(variation, DiscreteVariation):
        if value not in variation.values:
            raise VariationError(
                f"Value {value!r} is not among the values of {variation.column_name!r}.",
                context={"values": list(variation.values)},
            )
        n_values = len(variation.values)
        if n_values == 1:
            return 0.0
        return variation.values.index(value) / (n_values - 1)
    if isinstance(variation, DistributedVariation):
        out = float(variation.distribution.cdf(value))
        return 1.0 - out if variation.flip else out
    raise VariationError(f"cdf is not defined for {type(variation).__name__!r}.")


def variation_data_type(variation: ElementaryVariation) -> ScalarType:
    if isinstance(variation, DiscreteVariation):
        return infer_scalar_type(variation.values[0])
    return float


# ---------------------------------------------------------------------------
# Parsed variations


@dataclass(frozen=True)
class TargetSlot:
    """One target of a parsed variation set with its position in the value row."""

    location: Location
    target: XMLPath
    value_type: ScalarType
    variation_index: int


class ParsedVariations:
    """Ordered latent variations with unique (location, target) pairs."""

    def __init__(self, variations: Iterable[Any] = ()) -> None:
        lvs = [to_latent_variation(v) for v in variations]
        seen: set[tuple[Location, XMLPath]] = set()
        for lv in lvs:
            for location, target in zip(lv.locations, lv.targets):
                key = (location, target)
                if key in seen:
                    raise VariationError(
                        f"Target {target.column_name!r} in {location.value} is set "
                        "by more than one variation.",
                        user_message=(
                            f"The XML path {target.column_name!r} for location "
                            f"{location.value} is repeated; each target may only be "
                            "varied once."
                        ),
                        context={"location": location.value, "target": target.column_name},
                    )
                seen.add(key)
        self.latent_variations = lvs

    def __len__(self) -> int:
        return len(self.latent_variations)

    def __iter__(self):
        return iter(self.latent_variations)

    @property
    def is_empty(self) -> bool:
        return not self.latent_variations

    @property
    def n_latent_dims(self) -> int:
        return sum(lv.n_latent_dims for lv in self.latent_variations)

    @property
    def n_target_dims(self) -> int:
        return sum(lv.n_target_dims for lv in self.latent_variations)

    @property
    def latent_parameter_names(self) -> list[str]:
        return [name for lv in self.latent_variations for name in lv.latent_parameter_names]

    @property
    def latent_parameters(self) -> list[LatentParameter]:
        return [lp for lv in self.latent_variations for lp in lv.latent_parameters]

    @property
    def all_discrete(self) -> bool:
        return all(lv.is_discrete for lv in self.latent_variations)

    @property
    def target_slots(self) -> list[TargetSlot]:
        slots = []
        for index, lv in enumerate(self.latent_variations):
            for location, target, value_type in zip(lv.locations, lv.targets, lv.types):
                slots.append(TargetSlot(location, target, value_type, index))
        return slots

    @property
    def locations(self) -> list[Location]:
        found: list[Location] = []
        for lv in self.latent_variations:
            for location in lv.locations:
                if location not in found:
                    found.append(location)
        return found

    def values_at(self, cdf_row: Sequence[float]) -> list[Any]:
        """Target values for one sample point, in ``target_slots`` order."""
        if len(cdf_row) != self.n_latent_dims:
            raise VariationError(
                f"Expected {self.n_latent_dims} CDF coordinates, got {len(cdf_row)}."
            )
        values: list[Any] = []
        offset = 0
        for lv in self.latent_variations:
            chunk = cdf_row[offset:offset + lv.n_latent_dims]
            values.extend(lv.evaluate(lv.realize(chunk)))
            offset += lv.n_latent_dims
        return values

    def grid_values(self) -> list[list[Any]]:
        """Full-factorial target value rows; first latent parameter fastest."""
        if not self.all_discrete:
            raise VariationError(
                "Grid sampling only supports discrete variations.",
                user_message=(
                    "Grid sampling needs discrete variations; use LHS, Sobol, or RBD "
                    "for distributed ones."
                ),
            )
        per_variation = []
        for lv in self.latent_variations:
            matrix = _combination_matrix(lv)
            per_variation.append([list(col) for col in zip(*matrix)])
        rows: list[list[Any]] = []
        for combo in itertools.product(*reversed(per_variation)):
            row: list[Any] = []
            for part in reversed(combo):
                row.extend(part)
            rows.append(row)
        return rows


__all__ = [
    "DiscreteLatent",
    "ContinuousLatent",
    "LatentParameter",
    "as_latent_parameter",
    "DiscreteVariation",
    "DistributedVariation",
    "ElementaryVariation",
    "CoVariation",
    "LatentVariation",
    "ParsedVariations",
    "TargetSlot",
    "uniform_distributed_variation",
    "normal_distributed_variation",
    "elementary_variation",
    "default_latent_parameter_names",
    "to_latent_variation",
    "variation_values",
    "cdf",
    "variation_data_type",
    "infer_scalar_type",
    "sqlite_data_type",
]
