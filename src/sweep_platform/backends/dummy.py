"""Deterministic in-process backend driven by a Python model function."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import math
import threading
from typing import Any, Optional

from sweep_platform.backends.base import Simulation, SimulationBackend
from sweep_platform.errors import BackendError, VariationError
from sweep_platform.identity import key_value
from sweep_platform.registry import register


def _as_float(value: Any, label: str) -> float:
    try:
        return key_value(value)
    except VariationError as exc:
        raise BackendError(f"{label} must be numeric, got {value!r}.") from exc


def _sum_model(parameters: Mapping[str, Any]) -> float:
    return math.fsum(_as_float(v, name) for name, v in parameters.items())


class DummyBackend(SimulationBackend):
    """Evaluate ``model(parameters)`` and keep the output per simulation ID.

    ``parameters`` maps column names to stored values, with booleans and
    numeric text converted to floats. The default model sums all parameters.
    """

    name = "dummy"

    def __init__(self, model: Optional[Callable[[dict[str, float]], Any]] = None) -> None:
        self.model = model or _sum_model
        self._outputs: dict[int, Any] = {}
        self._lock = threading.Lock()
        self.run_count = 0

    def run(self, simulation: Simulation) -> None:
        if not isinstance(simulation, Simulation):
            raise BackendError("DummyBackend.run expects a Simulation.")
        parameters = {
            name: _as_float(value, name)
            for name, value in simulation.flat_parameters().items()
        }
        try:
            output = self.model(parameters)
        except Exception as exc:
            raise BackendError(
                f"Model failed for simulation {simulation.simulation_id}: {exc}",
                context={"simulation_id": simulation.simulation_id},
            ) from exc
        with self._lock:
            self._outputs[simulation.simulation_id] = output
            self.run_count += 1

    def output(self, simulation_id: int) -> Any:
        with self._lock:
            if simulation_id not in self._outputs:
                raise BackendError(f"No output recorded for simulation {simulation_id}.")
            return self._outputs[simulation_id]

    def has_output(self, simulation_id: int) -> bool:
        with self._lock:
            return simulation_id in self._outputs


register("backend", DummyBackend.name, DummyBackend)


__all__ = ["DummyBackend"]
