"""Backend interface for executing one simulation of a campaign."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sweep_platform.identity import VariationID


@dataclass(frozen=True)
class Simulation:
    """One replicate run of a monad's parameter vector."""

    simulation_id: int
    monad_id: int
    variation_id: VariationID
    parameters: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def flat_parameters(self) -> dict[str, Any]:
        """Parameters keyed by column name across all locations."""
        flat: dict[str, Any] = {}
        for values in self.parameters.values():
            flat.update(values)
        return flat


class SimulationBackend(ABC):
    """Base class for simulation backends."""

    name: str

    @abstractmethod
    def run(self, simulation: Simulation) -> None:
        """Execute ``simulation``; outputs are kept by the backend."""


__all__ = ["Simulation", "SimulationBackend"]
