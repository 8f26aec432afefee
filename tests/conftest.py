from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    src_root = Path(__file__).resolve().parents[1] / "src"
    src_path = str(src_root)
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture
def make_inputs(tmp_path):
    """Build InputFolders with one SQLite identity store per location."""
    from sweep_platform.identity import InputFolders, LocationInput, SQLiteIdentityStore
    from sweep_platform.locations import as_location

    def _make(defaults_by_location):
        inputs = {}
        for location, defaults in defaults_by_location.items():
            location = as_location(location)
            store = SQLiteIdentityStore(tmp_path / f"{location.value}.db", location)
            inputs[location] = LocationInput(
                folder=f"{location.value}_default",
                store=store,
                defaults=defaults,
            )
        return InputFolders(inputs)

    return _make
