from fractions import Fraction

import numpy as np
import pytest

from sweep_platform.errors import ValidationError
from sweep_platform.sampling import (
    LHSVariation,
    RBDVariation,
    SobolVariation,
    generate_lhs_cdfs,
    generate_rbd_cdfs,
    generate_sobol_cdfs,
    orthogonal_lhs,
)


def test_lhs_without_noise_covers_every_bin() -> None:
    cdfs = generate_lhs_cdfs(5, 3, rng=0)
    expected = (np.arange(5) + 0.5) / 5
    assert cdfs.shape == (5, 3)
    for column in cdfs.T:
        np.testing.assert_allclose(np.sort(column), expected)


def test_lhs_with_noise_keeps_one_point_per_bin() -> None:
    cdfs = generate_lhs_cdfs(8, 2, add_noise=True, rng=1, orthogonalize=False)
    for column in cdfs.T:
        assert sorted(np.floor(column * 8).astype(int)) == list(range(8))


def test_orthogonal_lhs_fills_every_box() -> None:
    inds = orthogonal_lhs(3, 2, rng=2)
    assert inds.shape == (9, 2)
    for column in inds.T:
        assert sorted(column) == list(range(9))
    boxes = {tuple(row // 3) for row in inds}
    assert len(boxes) == 9


def test_lhs_empty_requests() -> None:
    assert generate_lhs_cdfs(0, 3).shape == (0, 3)
    assert generate_lhs_cdfs(4, 0).shape == (4, 0)
    with pytest.raises(ValidationError):
        LHSVariation(-1)


def test_sobol_appends_ones_row_after_power_of_two() -> None:
    cdfs = generate_sobol_cdfs(9, 3)
    assert cdfs.shape == (9, 1, 3)
    np.testing.assert_array_equal(cdfs[-1, 0], np.ones(3))
    np.testing.assert_array_equal(cdfs[0, 0], np.zeros(3))


def test_sobol_skips_zero_row_before_power_of_two() -> None:
    cdfs = generate_sobol_cdfs(7, 3).reshape(7, 3)
    assert not np.any(np.all(cdfs == 0.0, axis=1))


def test_sobol_include_one_false() -> None:
    cdfs = generate_sobol_cdfs(9, 2, include_one=False).reshape(9, 2)
    assert not np.all(cdfs[-1] == 1.0)


def test_sobol_matrices_and_randomization() -> None:
    cdfs = generate_sobol_cdfs(16, 2, n_matrices=2, randomization="shift", rng=3)
    assert cdfs.shape == (16, 2, 2)
    assert np.all((cdfs >= 0.0) & (cdfs < 1.0))
    scrambled = generate_sobol_cdfs(16, 2, randomization="scramble", rng=3)
    assert np.all((scrambled >= 0.0) & (scrambled < 1.0))


def test_sobol_skip_start_counts() -> None:
    skipped = generate_sobol_cdfs(4, 1, skip_start=True).ravel()
    assert 0.0 not in skipped
    np.testing.assert_allclose(sorted(skipped), [0.125, 0.375, 0.625, 0.875])
    with pytest.raises(ValidationError):
        generate_sobol_cdfs(4, 1, skip_start=-1)


def test_sobol_variation_validation() -> None:
    assert SobolVariation.from_pow2(3).n == 8
    with pytest.raises(ValidationError):
        SobolVariation(8, randomization="owen")
    with pytest.raises(ValidationError):
        SobolVariation(0)


def test_rbd_variation_settings() -> None:
    assert RBDVariation(63).pow2_diff == -1
    assert RBDVariation(65).pow2_diff == 1
    assert RBDVariation(64).num_cycles == Fraction(1, 2)
    assert RBDVariation(10, use_sobol=False).num_cycles == Fraction(1)
    with pytest.raises(ValidationError):
        RBDVariation(10)
    with pytest.raises(ValidationError):
        RBDVariation(64, num_cycles=1)


def test_rbd_sorting_indices_order_each_dimension() -> None:
    cdfs, sorting_inds = generate_rbd_cdfs(RBDVariation(33), 2)
    assert cdfs.shape == (33, 2)
    for j in range(2):
        assert np.all(np.diff(cdfs[sorting_inds[:, j], j]) >= 0)


def test_random_rbd_follows_triangle_wave() -> None:
    cdfs, sorting_inds = generate_rbd_cdfs(RBDVariation(16, use_sobol=False, rng=4), 3)
    assert cdfs.shape == (16, 3)
    assert np.all((cdfs >= 0.0) & (cdfs <= 1.0))
    along_curve = cdfs[sorting_inds[:, 0], 0]
    assert along_curve[0] == pytest.approx(0.5, abs=1e-12)
    assert along_curve.min() == pytest.approx(0.0, abs=1e-12)
    assert along_curve.max() == pytest.approx(1.0, abs=1e-12)
