import logging
from pathlib import Path

import numpy as np
import pytest

from sweep_platform.errors import ConfigError
from sweep_platform.methods import canonical_method_name, method_from_config
from sweep_platform.sampling import GridVariation, LHSVariation, RBDVariation, SobolVariation
from sweep_platform.sensitivity import MOAT, RBD, Sobol


def _config_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "configs"


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Morris", "moat"),
        ("sobol'", "sobol"),
        ("sobol_prime", "sobol"),
        ("latin-hypercube", "lhs"),
        ("grid", "grid"),
    ],
)
def test_method_aliases(name, expected) -> None:
    assert canonical_method_name(name) == expected


def test_method_from_mapping() -> None:
    moat = method_from_config({"method": "morris", "n": 6, "add_noise": True})
    assert isinstance(moat, MOAT)
    assert moat.lhs_variation.n == 6
    assert moat.lhs_variation.add_noise

    sobol = method_from_config(
        {"method": "sobol", "n": 32, "first_order": "Saltelli2010", "randomization": "shift"},
        rng=np.random.default_rng(0),
    )
    assert isinstance(sobol, Sobol)
    assert sobol.index_methods.first_order == "Saltelli2010"
    assert sobol.index_methods.total_order == "Jansen1999"
    assert sobol.sobol_variation.randomization == "shift"

    rbd = method_from_config({"method": "rbd", "n": 33, "num_harmonics": 4})
    assert isinstance(rbd, RBD)
    assert rbd.num_harmonics == 4


def test_sampling_methods_from_mapping() -> None:
    assert isinstance(method_from_config({"method": "grid"}), GridVariation)
    assert method_from_config({"method": "lhs", "n": 3}) == LHSVariation(3)
    sequence = method_from_config({"method": "sobol_sequence", "n": 8, "n_matrices": 2})
    assert sequence == SobolVariation(8, n_matrices=2)
    assert isinstance(method_from_config({"method": "rbd_sequence", "n": 7}), RBDVariation)


def test_method_from_app_config_section() -> None:
    method = method_from_config({"common": {"seed": 1}, "sensitivity": {"method": "moat", "n": 3}})
    assert isinstance(method, MOAT)


def test_invalid_method_configs_raise_config_error() -> None:
    with pytest.raises(ConfigError) as exc:
        method_from_config({"method": "fast99"})
    assert "fast99" in str(exc.value)
    with pytest.raises(ConfigError):
        method_from_config({"n": 8})
    with pytest.raises(ConfigError):
        method_from_config(["sobol"])
    with pytest.raises(ConfigError) as exc:
        method_from_config({"method": "rbd", "n": 10})
    assert "power of 2" in exc.value.user_message
    with pytest.raises(ConfigError):
        method_from_config({"method": "sobol", "n": 8, "total_order": "Saltelli2010"})


def test_hydra_compose_defaults() -> None:
    pytest.importorskip("hydra")
    from sweep_platform.hydra_utils import (
        compose_config,
        format_config,
        make_rng,
        resolve_config,
        seed_everything,
    )

    cfg = compose_config(
        config_path=_config_dir(),
        config_name="default",
        overrides=["sensitivity.method=rbd", "sensitivity.n=65", "common.seed=3"],
    )
    resolved = resolve_config(cfg)
    assert resolved["common"]["seed"] == 3
    assert resolved["sensitivity"]["num_harmonics"] == 6
    assert "sensitivity:" in format_config(cfg)
    assert seed_everything(cfg) == 3
    assert isinstance(make_rng(cfg), np.random.Generator)

    method = method_from_config(cfg, rng=make_rng(cfg))
    assert isinstance(method, RBD)
    assert method.rbd_variation.n == 65


def test_compose_config_missing_directory(tmp_path) -> None:
    pytest.importorskip("hydra")
    from sweep_platform.hydra_utils import compose_config, seed_everything

    with pytest.raises(ConfigError):
        compose_config(config_path=tmp_path / "missing")
    assert seed_everything({"seed": "7"}) == 7
    assert seed_everything({}) is None
    with pytest.raises(ConfigError):
        seed_everything({"common": {"seed": "seven"}})


def test_logging_from_config() -> None:
    pytest.importorskip("hydra")
    from sweep_platform.hydra_utils import config_seed, configure_logging_from_config
    from sweep_platform.logging_utils import get_logger

    sensitivity_logger = get_logger("sensitivity")
    previous = (get_logger().level, sensitivity_logger.level, logging.getLogger().level)
    try:
        configure_logging_from_config(
            {"common": {"log_level": "ERROR", "log_areas": {"sensitivity": "INFO"}}}
        )
        assert get_logger().level == logging.ERROR
        assert sensitivity_logger.level == logging.INFO
        with pytest.raises(ConfigError):
            configure_logging_from_config({"common": {"log_level": "chatty"}})
    finally:
        get_logger().setLevel(previous[0])
        sensitivity_logger.setLevel(previous[1])
        logging.getLogger().setLevel(previous[2])
    assert config_seed({"common": {"seed": 5}, "seed": 9}) == 5
    assert config_seed({}) is None
