import numpy as np
import pytest

from sweep_platform.errors import VariationError
from sweep_platform.identity import BASE_VARIATION_ID, VariationID
from sweep_platform.locations import Location
from sweep_platform.materialize import add_cdf_variations, add_variations
from sweep_platform.sampling import GridVariation, LHSVariation, RBDVariation, SobolVariation
from sweep_platform.variations import (
    DiscreteVariation,
    ParsedVariations,
    uniform_distributed_variation,
)

CONFIG_DEFAULTS = {"overall/a": 0, "overall/b": 0.0, "overall/flag": False}


def test_grid_creates_one_id_per_combination(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    variations = [
        DiscreteVariation(["overall", "a"], [1, 2, 3]),
        DiscreteVariation(["overall", "b"], [10.0, 20.0]),
    ]
    result = add_variations(GridVariation(), inputs, variations)
    config_ids = [vid[Location.CONFIG] for vid in result.variation_ids]
    assert len(config_ids) == 6
    assert len(set(config_ids)) == 6
    assert BASE_VARIATION_ID not in config_ids
    assert inputs["config"].store.row_values(config_ids[1]) == {"overall/a": 2, "overall/b": 10.0}

    again = add_variations(GridVariation(), inputs, variations)
    assert again.variation_ids == result.variation_ids
    assert inputs["config"].store.count() == 7


def test_grid_value_equal_to_default_reuses_base_row(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    result = add_variations(
        GridVariation(),
        inputs,
        [DiscreteVariation(["overall", "flag"], [False, True])],
    )
    assert result.variation_ids[0][Location.CONFIG] == BASE_VARIATION_ID
    assert result.variation_ids[1][Location.CONFIG] == 1


def test_grid_without_variations_returns_reference(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    result = add_variations(GridVariation(), inputs, [])
    assert result.variation_ids == [inputs.base_variation_id()]


def test_grid_rejects_distributed_variations(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    with pytest.raises(VariationError):
        add_variations(
            GridVariation(),
            inputs,
            [uniform_distributed_variation(["overall", "b"], 0.0, 1.0)],
        )


def test_lhs_result_shapes(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    result = add_variations(
        LHSVariation(4, rng=0),
        inputs,
        [
            uniform_distributed_variation(["overall", "b"], 0.0, 1.0),
            DiscreteVariation(["overall", "a"], [1, 2]),
        ],
    )
    assert result.cdfs.shape == (4, 2)
    assert len(result.variation_ids) == 4
    rows = [inputs["config"].store.row_values(vid["config"]) for vid in result.variation_ids]
    assert sorted(row["overall/b"] for row in rows) == [0.125, 0.375, 0.625, 0.875]


def test_sobol_ids_grouped_by_matrix(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    result = add_variations(
        SobolVariation(8, n_matrices=2),
        inputs,
        [uniform_distributed_variation(["overall", "b"], 0.0, 1.0)],
    )
    assert result.cdfs.shape == (8, 2, 1)
    assert len(result.variation_ids) == 8
    assert all(len(pair) == 2 for pair in result.variation_ids)
    store = inputs["config"].store
    for i, (a_id, b_id) in enumerate(result.variation_ids):
        assert store.row_values(a_id["config"])["overall/b"] == pytest.approx(result.cdfs[i, 0, 0])
        assert store.row_values(b_id["config"])["overall/b"] == pytest.approx(result.cdfs[i, 1, 0])


def test_rbd_matrix_follows_sorting_indices(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    result = add_variations(
        RBDVariation(9),
        inputs,
        [
            uniform_distributed_variation(["overall", "b"], 0.0, 1.0),
            DiscreteVariation(["overall", "a"], [1, 2, 3]),
        ],
    )
    assert len(result.variation_matrix) == 9
    for i in range(9):
        for j in range(2):
            assert result.variation_matrix[i][j] == result.variation_ids[result.sorting_inds[i, j]]


def test_multiple_locations_get_their_own_ids(make_inputs) -> None:
    inputs = make_inputs(
        {
            "config": CONFIG_DEFAULTS,
            "ic_cell": {"cell_patches:name:default/density": 0.5},
        }
    )
    variations = ParsedVariations(
        [
            DiscreteVariation(["overall", "a"], [1, 2]),
            DiscreteVariation(["cell_patches:name:default", "density"], [0.1, 0.2]),
        ]
    )
    result = add_variations(GridVariation(), inputs, variations)
    assert [vid["config"] for vid in result.variation_ids] == [1, 2, 1, 2]
    assert [vid["ic_cell"] for vid in result.variation_ids] == [1, 1, 2, 2]
    assert all(vid["ic_ecm"] == -1 for vid in result.variation_ids)


def test_unused_location_fails_before_writing(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    variations = [
        DiscreteVariation(["overall", "a"], [1, 2]),
        DiscreteVariation(["layer:ID:1", "thickness"], [1.0, 2.0]),
    ]
    with pytest.raises(VariationError):
        add_variations(GridVariation(), inputs, variations)
    assert inputs["config"].store.count() == 1
    assert inputs["config"].store.columns() == []


def test_reference_missing_a_later_location_fails_before_writing(make_inputs) -> None:
    inputs = make_inputs(
        {
            "config": CONFIG_DEFAULTS,
            "ic_cell": {"cell_patches:name:default/density": 0.5},
        }
    )
    variations = [
        DiscreteVariation(["overall", "a"], [1, 2]),
        DiscreteVariation(["cell_patches:name:default", "density"], [0.1, 0.2]),
    ]
    reference = VariationID({"config": BASE_VARIATION_ID})
    with pytest.raises(VariationError):
        add_variations(GridVariation(), inputs, variations, reference)
    for location in ("config", "ic_cell"):
        assert inputs[location].store.count() == 1
        assert inputs[location].store.columns() == []


def test_non_numeric_values_fail_before_writing(make_inputs) -> None:
    inputs = make_inputs({"config": {"overall/mode": "1"}})
    with pytest.raises(VariationError):
        add_variations(GridVariation(), inputs, [DiscreteVariation(["overall", "mode"], ["1", "fast"])])
    assert inputs["config"].store.count() == 1


def test_cdf_rows_must_match_latent_dims(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    pv = ParsedVariations([uniform_distributed_variation(["overall", "b"], 0.0, 1.0)])
    with pytest.raises(VariationError):
        add_cdf_variations(inputs, pv, inputs.base_variation_id(), np.zeros((2, 3)))


def test_reference_row_supplies_unvaried_values(make_inputs) -> None:
    inputs = make_inputs({"config": CONFIG_DEFAULTS})
    [reference] = add_variations(
        GridVariation(), inputs, [DiscreteVariation(["overall", "a"], [5])]
    ).variation_ids
    result = add_variations(
        LHSVariation(2, rng=1),
        inputs,
        [uniform_distributed_variation(["overall", "b"], 0.0, 1.0)],
        reference=reference,
    )
    for vid in result.variation_ids:
        assert inputs["config"].store.row_values(vid["config"])["overall/a"] == 5
