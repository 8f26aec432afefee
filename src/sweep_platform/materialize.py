"""Turn sampled variation values into deduplicated variation IDs."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np

from sweep_platform.errors import VariationError
from sweep_platform.identity import ColumnSpec, InputFolders, VariationID, key_value
from sweep_platform.locations import Location
from sweep_platform.logging_utils import get_logger
from sweep_platform.sampling import (
    GridVariation,
    LHSVariation,
    RBDVariation,
    SobolVariation,
    generate_lhs_cdfs,
    generate_rbd_cdfs,
    generate_sobol_cdfs,
)
from sweep_platform.variations import ParsedVariations, TargetSlot

_LOGGER = get_logger("materialize")


@dataclass(frozen=True)
class AddGridVariationsResult:
    variation_ids: list[VariationID]


@dataclass(frozen=True)
class AddLHSVariationsResult:
    cdfs: np.ndarray
    variation_ids: list[VariationID]


@dataclass(frozen=True)
class AddSobolVariationsResult:
    """``variation_ids[i][m]`` is sample ``i`` of design matrix ``m``."""

    cdfs: np.ndarray
    variation_ids: list[list[VariationID]]


@dataclass(frozen=True)
class AddRBDVariationsResult:
    """``variation_matrix[i][j]`` is the i-th point along dimension j's curve."""

    cdfs: np.ndarray
    variation_ids: list[VariationID]
    variation_matrix: list[list[VariationID]]
    sorting_inds: np.ndarray


AddVariationsResult = Union[
    AddGridVariationsResult,
    AddLHSVariationsResult,
    AddSobolVariationsResult,
    AddRBDVariationsResult,
]


@dataclass(frozen=True)
class _LocationPlan:
    location: Location
    positions: list[int]
    specs: list[ColumnSpec]


def _plan_locations(inputs: InputFolders, slots: Sequence[TargetSlot]) -> list[_LocationPlan]:
    by_location: dict[Location, list[int]] = {}
    for position, slot in enumerate(slots):
        by_location.setdefault(slot.location, []).append(position)
    plans = []
    for location, positions in by_location.items():
        location_input = inputs[location]
        specs = []
        for position in positions:
            slot = slots[position]
            spec = location_input.column_spec(slot.target, slot.value_type)
            key_value(spec.default)
            specs.append(spec)
        plans.append(_LocationPlan(location, positions, specs))
    return plans


def _validate_rows(rows: Sequence[Sequence[Any]], slots: Sequence[TargetSlot]) -> None:
    for row in rows:
        if len(row) != len(slots):
            raise VariationError(
                f"Expected {len(slots)} target values per sample, got {len(row)}."
            )
        for value, slot in zip(row, slots):
            try:
                key_value(value)
            except VariationError as exc:
                raise VariationError(
                    f"Target {slot.target.column_name!r} has a non-numeric value "
                    f"{value!r}; it cannot be stored in a parameter key.",
                    context={"location": slot.location.value},
                ) from exc


def add_variation_rows(
    inputs: InputFolders,
    pv: ParsedVariations,
    reference: VariationID,
    rows: Sequence[Sequence[Any]],
) -> list[VariationID]:
    """Resolve one VariationID per row of target values (``target_slots`` order)."""
    slots = pv.target_slots
    if not slots:
        return [reference for _ in rows]
    plans = _plan_locations(inputs, slots)
    _validate_rows(rows, slots)

    # every location's rows are built before the first write to any store
    full_rows_by_location: dict[Location, list[dict[str, Any]]] = {}
    for plan in plans:
        reference_id = reference.get(plan.location)
        if reference_id is None or reference_id < 0:
            raise VariationError(
                f"Reference variation has no ID for location {plan.location.value!r}.",
                context={"location": plan.location.value},
            )
        reference_row = inputs[plan.location].store.row_values(reference_id)
        full_rows = []
        for row in rows:
            full_row = dict(reference_row)
            for spec, position in zip(plan.specs, plan.positions):
                full_row[spec.name] = row[position]
            full_rows.append(full_row)
        full_rows_by_location[plan.location] = full_rows

    ids_by_location: dict[Location, list[int]] = {}
    for plan in plans:
        store = inputs[plan.location].store
        store.add_columns(plan.specs)
        resolved = store.lookup_or_create_many(full_rows_by_location[plan.location])
        n_new = sum(1 for _, created in resolved if created)
        _LOGGER.info(
            "Resolved %d sample point(s) in %s: %d new, %d reused.",
            len(resolved),
            plan.location.table_name,
            n_new,
            len(resolved) - n_new,
        )
        ids_by_location[plan.location] = [variation_id for variation_id, _ in resolved]

    variation_ids = []
    for index in range(len(rows)):
        updates = {loc.value: ids[index] for loc, ids in ids_by_location.items()}
        variation_ids.append(reference.replace(**updates))
    return variation_ids


def add_cdf_variations(
    inputs: InputFolders,
    pv: ParsedVariations,
    reference: VariationID,
    cdfs: np.ndarray,
) -> list[VariationID]:
    """Resolve one VariationID per CDF row (samples x latent dims)."""
    cdfs = np.asarray(cdfs, dtype=float)
    if cdfs.ndim != 2 or cdfs.shape[1] != pv.n_latent_dims:
        raise VariationError(
            f"CDF array must have shape (n, {pv.n_latent_dims}), got {cdfs.shape}."
        )
    rows = [pv.values_at(row) for row in cdfs]
    return add_variation_rows(inputs, pv, reference, rows)


def _as_parsed(variations: Union[ParsedVariations, Iterable[Any]]) -> ParsedVariations:
    if isinstance(variations, ParsedVariations):
        return variations
    return ParsedVariations(variations)


def add_variations(
    method: Any,
    inputs: InputFolders,
    variations: Union[ParsedVariations, Iterable[Any]],
    reference: Optional[VariationID] = None,
) -> AddVariationsResult:
    """Sample ``variations`` with ``method`` and resolve the variation IDs."""
    pv = _as_parsed(variations)
    if reference is None:
        reference = inputs.base_variation_id()
    d = pv.n_latent_dims

    if isinstance(method, GridVariation):
        if pv.is_empty:
            return AddGridVariationsResult([reference])
        rows = pv.grid_values()
        return AddGridVariationsResult(add_variation_rows(inputs, pv, reference, rows))

    if isinstance(method, LHSVariation):
        cdfs = generate_lhs_cdfs(
            method.n,
            d,
            add_noise=method.add_noise,
            rng=method.rng,
            orthogonalize=method.orthogonalize,
        )
        return AddLHSVariationsResult(cdfs, add_cdf_variations(inputs, pv, reference, cdfs))

    if isinstance(method, SobolVariation):
        cdfs = generate_sobol_cdfs(
            method.n,
            d,
            n_matrices=method.n_matrices,
            randomization=method.randomization,
            skip_start=method.skip_start,
            include_one=method.include_one,
            rng=method.rng,
        )
        flat = cdfs.reshape(method.n * method.n_matrices, d)
        ids = add_cdf_variations(inputs, pv, reference, flat)
        grouped = [
            ids[i * method.n_matrices:(i + 1) * method.n_matrices] for i in range(method.n)
        ]
        return AddSobolVariationsResult(cdfs, grouped)

    if isinstance(method, RBDVariation):
        cdfs, sorting_inds = generate_rbd_cdfs(method, d)
        ids = add_cdf_variations(inputs, pv, reference, cdfs)
        matrix = [
            [ids[int(sorting_inds[i, j])] for j in range(d)] for i in range(method.n)
        ]
        return AddRBDVariationsResult(cdfs, ids, matrix, sorting_inds)

    raise VariationError(f"Unsupported sampling method {type(method).__name__!r}.")


__all__ = [
    "AddGridVariationsResult",
    "AddLHSVariationsResult",
    "AddSobolVariationsResult",
    "AddRBDVariationsResult",
    "AddVariationsResult",
    "add_variation_rows",
    "add_cdf_variations",
    "add_variations",
]
