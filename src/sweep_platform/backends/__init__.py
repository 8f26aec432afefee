"""Simulation backends."""

from sweep_platform.backends.base import Simulation, SimulationBackend
from sweep_platform.backends.dummy import DummyBackend

__all__ = ["Simulation", "SimulationBackend", "DummyBackend"]
